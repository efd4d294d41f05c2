"""
Task Scheduler - ordered execution of named steps

A single dedicated thread runs an asyncio loop and one worker coroutine that
drains a FIFO queue of steps. Each step runs to completion, including any
awaitable it returns, before the next one starts, so callers get the same
strict ordering as a control flow without managing the loop themselves.

Usage:
    scheduler = TaskScheduler()
    scheduler.start()

    future = scheduler.schedule("Set WD server URL", set_url)
    future.result(timeout=10)

    scheduler.stop()
"""

import asyncio
import inspect
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any

logger = logging.getLogger(__name__)

_SHUTDOWN = object()


class TaskScheduler:
    """
    Runs named steps one at a time, in submission order, on a dedicated loop.

    Steps are plain callables. A callable returning an awaitable (a coroutine
    function, or a function that returns a coroutine) is awaited in place.
    A failing step puts its exception on its own Future; later steps still run.
    """

    def __init__(self, name: str = "ControlFlow"):
        """Initialize scheduler (does not start loop yet)"""
        self.name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._started = False
        self._stopping = False

    def start(self) -> None:
        """
        Start dedicated event loop thread and the step worker

        Must be called before schedule()
        """
        if self._started:
            logger.warning(f"{self.name} already started")
            return

        logger.info(f"Starting {self.name} scheduler thread")
        self._ready.clear()

        def run_loop():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            queue = asyncio.Queue()
            self._loop, self._queue = loop, queue
            worker = loop.create_task(self._worker(queue))
            self._ready.set()

            try:
                loop.run_until_complete(worker)
            finally:
                # Cancel output pumps and exit watchers left by spawned processes
                pending = asyncio.all_tasks(loop)
                for task in pending:
                    task.cancel()
                if pending:
                    loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
                # Let closed subprocess transports finish their callbacks
                loop.run_until_complete(asyncio.sleep(0))
                loop.run_until_complete(loop.shutdown_asyncgens())
                loop.close()
                logger.info(f"{self.name} event loop closed")

        self._thread = threading.Thread(target=run_loop, daemon=True, name=f"{self.name}Thread")
        self._thread.start()
        self._started = True

        if not self._ready.wait(timeout=2.0):
            raise RuntimeError(f"Failed to start {self.name} event loop")

        logger.info(f"{self.name} started successfully")

    async def _worker(self, queue: asyncio.Queue) -> None:
        """Drain the step queue, one step at a time."""
        while True:
            item = await queue.get()
            if item is _SHUTDOWN:
                self._cancel_pending(queue)
                return

            label, fn, future = item
            if not future.set_running_or_notify_cancel():
                logger.debug(f"Skipping cancelled step: {label}")
                continue

            started = time.monotonic()
            logger.debug(f"Step started: {label}")
            try:
                result = fn()
                if inspect.isawaitable(result):
                    result = await result
            except asyncio.CancelledError as e:
                # Already running, so Future.cancel() would be a no-op
                future.set_exception(e)
                raise
            except Exception as e:
                logger.error(f"Step failed: {label}: {e}")
                future.set_exception(e)
            else:
                future.set_result(result)
                logger.debug(f"Step done: {label} ({time.monotonic() - started:.3f}s)")

    def _cancel_pending(self, queue: asyncio.Queue) -> None:
        while not queue.empty():
            item = queue.get_nowait()
            if item is not _SHUTDOWN:
                item[2].cancel()

    def schedule(self, label: str, fn: Callable[[], Any]) -> Future:
        """
        Enqueue a named step

        Args:
            label: Step description, used in logs
            fn: Callable run on the scheduler thread

        Returns:
            concurrent.futures.Future resolved with the step's result
        """
        if not self._started or self._loop is None:
            raise RuntimeError(f"{self.name} not started. Call start() first.")

        if self._stopping:
            raise RuntimeError(f"{self.name} is shutting down")

        future: Future = Future()
        self._loop.call_soon_threadsafe(self._queue.put_nowait, (label, fn, future))
        return future

    def call_soon(self, fn: Callable[..., Any], *args: Any) -> None:
        """Run a callback on the scheduler thread, outside the step queue."""
        if self._loop is None or self._loop.is_closed():
            raise RuntimeError(f"{self.name} not running")
        self._loop.call_soon_threadsafe(fn, *args)

    def in_scheduler_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop the worker, cancel pending steps and join the thread

        Args:
            timeout: Max seconds to wait for shutdown
        """
        if not self._started:
            return

        self._stopping = True
        logger.info(f"Stopping {self.name}")

        if self._loop and not self._loop.is_closed():
            try:
                self._loop.call_soon_threadsafe(self._queue.put_nowait, _SHUTDOWN)
            except RuntimeError:
                # Loop closed between the check and the call
                pass

        if self._thread and self._thread.is_alive() and not self.in_scheduler_thread():
            self._thread.join(timeout=timeout)

            if self._thread.is_alive():
                logger.warning(f"{self.name} thread did not stop within {timeout}s")
            else:
                logger.info(f"{self.name} thread stopped successfully")

        self._started = False
        self._stopping = False
        self._loop = None
        self._queue = None
        self._thread = None

    def is_running(self) -> bool:
        """Check if loop is running"""
        return self._started and self._loop is not None and self._loop.is_running()

    def __enter__(self) -> "TaskScheduler":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
