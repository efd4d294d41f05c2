"""Services package.

Keep this module lightweight: importing `services` should not start threads
or spawn processes. The scheduler and process utilities are imported lazily.
"""

from __future__ import annotations

import importlib

from .logger import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]


_LAZY_EXPORTS = {
    "TaskScheduler": ("services.task_scheduler", "TaskScheduler"),
    "ProcessHandle": ("services.process_utils", "ProcessHandle"),
    "OutputStream": ("services.process_utils", "OutputStream"),
    "schedule_spawn": ("services.process_utils", "schedule_spawn"),
    "signal_kill": ("services.process_utils", "signal_kill"),
}


def __getattr__(name: str):
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        module = importlib.import_module(module_name)
        value = getattr(module, attr)
        globals()[name] = value
        if name not in __all__:
            __all__.append(name)
        return value
    raise AttributeError(f"module 'services' has no attribute {name!r}")
