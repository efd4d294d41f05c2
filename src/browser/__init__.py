"""
Browser Module

Local browser controllers for test runners.

Structure:
- local_chrome.py - chromedriver / direct Chrome launch and supervision
- capabilities.py - Chrome flags and capability keys
- errors.py - controller exceptions

Main exports for common use:
- BrowserLocalChrome, ControllerMode, ProcessKind
- BrowserError and its subclasses
"""

from __future__ import annotations

import importlib
from typing import Any

_LAZY_EXPORTS = {
    "BrowserLocalChrome": ("browser.local_chrome", "BrowserLocalChrome"),
    "ControllerMode": ("browser.local_chrome", "ControllerMode"),
    "ProcessKind": ("browser.local_chrome", "ProcessKind"),
    "BrowserError": ("browser.errors", "BrowserError"),
    "BrowserAlreadyRunningError": ("browser.errors", "BrowserAlreadyRunningError"),
    "MissingDriverError": ("browser.errors", "MissingDriverError"),
    "UnexpectedBrowserError": ("browser.errors", "UnexpectedBrowserError"),
    "PacketCaptureNotSupportedError": ("browser.errors", "PacketCaptureNotSupportedError"),
}


__all__ = [
    # Intentionally omit lazy exports from `__all__` to keep lint/typecheck
    # tools happy; direct imports (`from browser import BrowserLocalChrome`)
    # still work via PEP 562 module `__getattr__`.
]


def __getattr__(name: str) -> Any:
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        module = importlib.import_module(module_name)
        value = getattr(module, attr)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'browser' has no attribute {name!r}")
