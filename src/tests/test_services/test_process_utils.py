"""
Tests for process utilities - real child processes via the current interpreter
"""

import gc
import signal
import textwrap
import threading

import pytest

from services.process_utils import OutputStream, schedule_spawn, signal_kill
from services.task_scheduler import TaskScheduler


def python_args(code):
    """Arguments to run ``code`` with the current interpreter"""
    return ["-c", textwrap.dedent(code)]


def wait_for_exit(handle, timeout=10):
    """Block until the handle's exit observer fires; return (code, signal_name)."""
    done = threading.Event()
    result = []

    def on_exit(code, sig):
        result.append((code, sig))
        done.set()

    handle.on_exit(on_exit)
    assert done.wait(timeout), "process did not exit"
    return result[0]


class TestOutputStream:
    def test_emit_calls_observers_in_order(self):
        stream = OutputStream("test")
        seen = []
        stream.on_data(lambda chunk: seen.append(("a", chunk)))
        stream.on_data(lambda chunk: seen.append(("b", chunk)))

        stream.emit("hello")

        assert seen == [("a", "hello"), ("b", "hello")]

    def test_failing_observer_does_not_block_others(self):
        stream = OutputStream("test")
        seen = []

        def broken(chunk):
            raise RuntimeError("observer bug")

        stream.on_data(broken)
        stream.on_data(seen.append)

        stream.emit("data")

        assert seen == ["data"]


class TestSpawn:
    """schedule_spawn with real processes"""

    def test_stdout_and_exit_code(self, scheduler, python_executable):
        chunks = []

        def on_started(handle):
            handle.stdout.on_data(chunks.append)

        handle = schedule_spawn(
            scheduler,
            python_executable,
            python_args("print('hello from child')"),
            on_started=on_started,
        ).result(timeout=10)

        assert wait_for_exit(handle) == (0, None)
        assert "hello from child" in "".join(chunks)

    def test_stderr_observed(self, scheduler, python_executable):
        chunks = []
        handle = schedule_spawn(
            scheduler,
            python_executable,
            python_args("import sys; sys.stderr.write('oops'); sys.exit(3)"),
            on_started=lambda h: h.stderr.on_data(chunks.append),
        ).result(timeout=10)

        assert wait_for_exit(handle) == (3, None)
        assert "".join(chunks) == "oops"

    def test_handle_attributes(self, scheduler, python_executable):
        args = python_args("pass")

        handle = schedule_spawn(scheduler, python_executable, args).result(timeout=10)

        assert handle.command == python_executable
        assert handle.args == args
        assert handle.pid > 0
        wait_for_exit(handle)
        assert handle.returncode == 0
        assert handle.has_exited() is True

    def test_exit_observer_registered_late_fires_immediately(self, scheduler, python_executable):
        handle = schedule_spawn(scheduler, python_executable, python_args("pass")).result(
            timeout=10
        )
        wait_for_exit(handle)

        late = []
        handle.on_exit(lambda code, sig: late.append((code, sig)))

        assert late == [(0, None)]

    def test_transport_closed_after_exit(self, scheduler, python_executable):
        handle = schedule_spawn(scheduler, python_executable, python_args("pass")).result(
            timeout=10
        )

        wait_for_exit(handle)

        assert handle.process._transport.is_closing()

    @pytest.mark.filterwarnings("error::pytest.PytestUnraisableExceptionWarning")
    def test_scheduler_stop_after_quick_exit_leaves_nothing_open(self, python_executable):
        scheduler = TaskScheduler("ShortFlow")
        scheduler.start()
        handle = schedule_spawn(scheduler, python_executable, python_args("pass")).result(
            timeout=10
        )
        wait_for_exit(handle)

        scheduler.stop()
        del handle
        gc.collect()

    def test_scheduler_stop_closes_running_child(self, python_executable):
        scheduler = TaskScheduler("ShortFlow")
        scheduler.start()
        handle = schedule_spawn(
            scheduler, python_executable, python_args("import time; time.sleep(60)")
        ).result(timeout=10)

        scheduler.stop()

        assert handle.process._transport.is_closing()

    def test_missing_executable_fails_future(self, scheduler, tmp_path):
        future = schedule_spawn(scheduler, str(tmp_path / "no-such-binary"), [])

        with pytest.raises(FileNotFoundError):
            future.result(timeout=10)

    def test_spawn_step_label(self):
        from unittest.mock import MagicMock

        scheduler = MagicMock()

        schedule_spawn(scheduler, "chromedriver", ["-port=4444"])

        label = scheduler.schedule.call_args[0][0]
        assert label == "spawn chromedriver -port=4444"


class TestSignalKill:
    def test_sigterm_reports_signal(self, scheduler, python_executable):
        handle = schedule_spawn(
            scheduler, python_executable, python_args("import time; time.sleep(60)")
        ).result(timeout=10)

        signal_kill(handle, "sleeper")

        assert wait_for_exit(handle) == (None, "SIGTERM")

    def test_custom_signal(self, scheduler, python_executable):
        handle = schedule_spawn(
            scheduler, python_executable, python_args("import time; time.sleep(60)")
        ).result(timeout=10)

        signal_kill(handle, "sleeper", signal.SIGKILL)

        assert wait_for_exit(handle) == (None, "SIGKILL")

    def test_kill_after_exit_is_noop(self, scheduler, python_executable):
        handle = schedule_spawn(scheduler, python_executable, python_args("pass")).result(
            timeout=10
        )
        wait_for_exit(handle)

        signal_kill(handle, "done")

    def test_kill_of_vanished_process_is_not_raised(self, monkeypatch):
        from unittest.mock import MagicMock

        handle = MagicMock()
        handle.has_exited.return_value = False
        handle.pid = 999999

        def missing(pid):
            raise ProcessLookupError(pid)

        monkeypatch.setattr("services.process_utils.os.getpgid", missing)

        signal_kill(handle, "ghost")
