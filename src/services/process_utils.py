"""
Process utilities - spawn and signal supervised child processes

Child processes are created on the scheduler's event loop. Their output and
exit are delivered to observers registered on the returned ProcessHandle, and
all observers run on the scheduler thread.
"""

import asyncio
import logging
import os
import signal
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future

from services.task_scheduler import TaskScheduler

logger = logging.getLogger(__name__)

ExitCallback = Callable[[int | None, str | None], None]


class OutputStream:
    """Observer registry for one output pipe of a child process."""

    def __init__(self, name: str):
        self.name = name
        self._callbacks: list[Callable[[str], None]] = []

    def on_data(self, callback: Callable[[str], None]) -> None:
        self._callbacks.append(callback)

    def emit(self, chunk: str) -> None:
        for callback in list(self._callbacks):
            try:
                callback(chunk)
            except Exception as e:
                logger.error(f"{self.name} observer failed: {e}")


class ProcessHandle:
    """
    Handle to a running child process.

    Exit observers receive ``(code, signal_name)``: ``code`` is the exit status
    for a normal exit and ``None`` when a signal ended the process, in which
    case ``signal_name`` is e.g. ``"SIGTERM"``.
    """

    def __init__(self, process: asyncio.subprocess.Process, command: str, args: Sequence[str]):
        self.process = process
        self.pid = process.pid
        self.command = command
        self.args = list(args)
        self.stdout = OutputStream(f"{command} stdout")
        self.stderr = OutputStream(f"{command} stderr")
        self.exit_code: int | None = None
        self.exit_signal: str | None = None
        self._exited = False
        self._exit_callbacks: list[ExitCallback] = []
        self._exit_lock = threading.Lock()
        self._supervisor: asyncio.Future | None = None

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    def has_exited(self) -> bool:
        return self._exited

    def on_exit(self, callback: ExitCallback) -> None:
        """Register an exit observer; called at once if the process already exited."""
        with self._exit_lock:
            if not self._exited:
                self._exit_callbacks.append(callback)
                return
        callback(self.exit_code, self.exit_signal)

    def _dispatch_exit(self, returncode: int) -> None:
        if returncode is not None and returncode < 0:
            self.exit_code = None
            try:
                self.exit_signal = signal.Signals(-returncode).name
            except ValueError:
                self.exit_signal = str(-returncode)
        else:
            self.exit_code = returncode
            self.exit_signal = None
        with self._exit_lock:
            self._exited = True
            callbacks, self._exit_callbacks = self._exit_callbacks, []

        for callback in callbacks:
            try:
                callback(self.exit_code, self.exit_signal)
            except Exception as e:
                logger.error(f"{self.command} exit observer failed: {e}")

    def close(self) -> None:
        """Release the pipe transport; a process still running is killed."""
        # asyncio.subprocess.Process has no public close()
        transport = getattr(self.process, "_transport", None)
        if transport is not None:
            transport.close()

    def __repr__(self) -> str:
        return f"ProcessHandle(command={self.command!r}, pid={self.pid})"


async def _pump(reader: asyncio.StreamReader, stream: OutputStream) -> None:
    while True:
        data = await reader.read(4096)
        if not data:
            return
        stream.emit(data.decode(errors="replace"))


async def _supervise(handle: ProcessHandle, pumps: list[asyncio.Task]) -> None:
    try:
        returncode = await handle.process.wait()
        # Drain remaining output before reporting the exit
        await asyncio.gather(*pumps, return_exceptions=True)
    finally:
        # Also runs when the scheduler cancels us on shutdown
        handle.close()
    logger.debug(f"{handle!r} exited with {returncode}")
    handle._dispatch_exit(returncode)


async def spawn(command: str, args: Sequence[str]) -> ProcessHandle:
    """
    Start ``command`` with ``args`` and begin supervising it.

    Must run on the scheduler loop. The process gets its own session so that
    signal_kill reaches any children it forks.

    Raises:
        FileNotFoundError / PermissionError: if the executable cannot be run
    """
    logger.info(f"Spawning {command} {' '.join(args)}")
    process = await asyncio.create_subprocess_exec(
        command,
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        start_new_session=True,
    )
    handle = ProcessHandle(process, command, args)
    logger.info(f"Started {command} with PID {process.pid}")

    pumps = [
        asyncio.ensure_future(_pump(process.stdout, handle.stdout)),
        asyncio.ensure_future(_pump(process.stderr, handle.stderr)),
    ]
    handle._supervisor = asyncio.ensure_future(_supervise(handle, pumps))
    return handle


def schedule_spawn(
    scheduler: TaskScheduler,
    command: str,
    args: Sequence[str],
    on_started: Callable[[ProcessHandle], None] | None = None,
) -> Future:
    """
    Schedule a spawn step

    Args:
        scheduler: Scheduler that runs the spawn and owns the child's observers
        command: Executable to run
        args: Arguments for the executable
        on_started: Called with the new handle inside the spawn step, before
            any output or exit of the child is delivered

    Returns:
        Future resolved with the ProcessHandle, or with the spawn error
    """
    args = list(args)

    async def spawn_step() -> ProcessHandle:
        handle = await spawn(command, args)
        if on_started is not None:
            on_started(handle)
        return handle

    return scheduler.schedule(f"spawn {command} {' '.join(args)}", spawn_step)


def signal_kill(handle: ProcessHandle, name: str, sig: int = signal.SIGTERM) -> None:
    """
    Send ``sig`` to the process group of ``handle``

    A process that is already gone is logged, not raised.
    """
    if handle.has_exited():
        logger.debug(f"{name} (PID {handle.pid}) already exited")
        return

    logger.info(f"Killing {name} (PID {handle.pid}) with {signal.Signals(sig).name}")
    try:
        os.killpg(os.getpgid(handle.pid), sig)
    except ProcessLookupError:
        logger.debug(f"{name} (PID {handle.pid}) already dead")
