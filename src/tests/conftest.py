"""
Shared test fixtures for pytest
"""

import os
import stat
import sys
import textwrap
from concurrent.futures import Future

import pytest

from services.logger import cleanup_logging, setup_logging
from services.process_utils import OutputStream


@pytest.fixture(autouse=True)
def setup_test_logging(tmp_path, monkeypatch):
    """Setup logging into a per-test directory"""
    monkeypatch.setenv("LOCAL_CHROME_LOG_DIR", str(tmp_path / "logs"))
    setup_logging({"colored_output": False})
    yield
    cleanup_logging()


class InlineScheduler:
    """Runs each step as soon as it is scheduled, on the calling thread."""

    def __init__(self):
        self.labels = []

    def schedule(self, label, fn):
        self.labels.append(label)
        future = Future()
        try:
            future.set_result(fn())
        except Exception as e:
            future.set_exception(e)
        return future


class FakeProcessHandle:
    """Stands in for services.process_utils.ProcessHandle"""

    def __init__(self, command, args, pid=4242):
        self.command = command
        self.args = list(args)
        self.pid = pid
        self.stdout = OutputStream(f"{command} stdout")
        self.stderr = OutputStream(f"{command} stderr")
        self.exit_callbacks = []

    def on_exit(self, callback):
        self.exit_callbacks.append(callback)

    def exit(self, code=0, signal_name=None):
        for callback in self.exit_callbacks:
            callback(code, signal_name)


class FakeSpawner:
    """
    Replacement for schedule_spawn.

    Records every spawn. With ``fail`` set, the spawn future fails with it.
    With ``hold`` set, the spawn future stays pending until ``release()``.
    """

    def __init__(self):
        self.spawned = []
        self.fail = None
        self.hold = False
        self._held = []

    def __call__(self, scheduler, command, args, on_started=None):
        future = Future()
        if self.fail is not None:
            future.set_exception(self.fail)
            return future

        handle = FakeProcessHandle(command, args, pid=4242 + len(self.spawned))
        self.spawned.append(handle)
        if self.hold:
            self._held.append((future, handle, on_started))
        else:
            self._complete(future, handle, on_started)
        return future

    def release(self):
        held, self._held = self._held, []
        for future, handle, on_started in held:
            self._complete(future, handle, on_started)

    @staticmethod
    def _complete(future, handle, on_started):
        if on_started is not None:
            on_started(handle)
        future.set_result(handle)


@pytest.fixture
def inline_scheduler():
    return InlineScheduler()


@pytest.fixture
def fake_spawner(monkeypatch):
    spawner = FakeSpawner()
    monkeypatch.setattr("browser.local_chrome.schedule_spawn", spawner)
    return spawner


@pytest.fixture
def fake_kill(monkeypatch):
    from unittest.mock import MagicMock

    kill = MagicMock()
    monkeypatch.setattr("browser.local_chrome.signal_kill", kill)
    return kill


@pytest.fixture
def scheduler():
    """A started TaskScheduler, stopped after the test"""
    from services.task_scheduler import TaskScheduler

    scheduler = TaskScheduler("TestFlow")
    scheduler.start()
    yield scheduler
    scheduler.stop()


@pytest.fixture
def fake_server(tmp_path):
    """
    Executable that stands in for chromedriver/Chrome: prints its arguments
    and a line on stderr, then sleeps until killed.
    """
    script = tmp_path / "fake_server"
    script.write_text(
        f"#!{sys.executable}\n"
        + textwrap.dedent(
            """
            import sys
            import time

            print("ARGS " + " ".join(sys.argv[1:]), flush=True)
            print("starting", file=sys.stderr, flush=True)
            while True:
                time.sleep(0.1)
            """
        )
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


@pytest.fixture
def python_executable():
    return os.path.realpath(sys.executable)
