"""
Local Chrome controller

Launches a local chromedriver (for WebDriver tests) or a plain Chrome (for
DevTools-only sessions) as a supervised child process, and reports the
endpoints a test runner connects to.

Usage:
    scheduler = TaskScheduler()
    scheduler.start()

    chrome = BrowserLocalChrome(scheduler, chromedriver="/usr/bin/chromedriver")
    caps = {"browserName": "chrome"}
    chrome.start_wd_server(caps).result(timeout=30)
    chrome.get_server_url()  # "http://localhost:4444"
    ...
    chrome.stop()
"""

import logging
import threading
from concurrent.futures import Future
from enum import Enum
from typing import Any

from browser.capabilities import (
    CHROME,
    add_chrome_options,
    chrome_flags,
    devtools_capabilities,
    requested_browser,
)
from browser.errors import (
    BrowserAlreadyRunningError,
    MissingDriverError,
    PacketCaptureNotSupportedError,
    UnexpectedBrowserError,
)
from services.process_utils import ProcessHandle, schedule_spawn, signal_kill
from services.task_scheduler import TaskScheduler

logger = logging.getLogger(__name__)

DEFAULT_CHROME = "chrome"
DEFAULT_SERVER_PORT = 4444  # Chromedriver listen port
DEFAULT_DEVTOOLS_PORT = 1234  # If running without chromedriver


class ProcessKind(Enum):
    """What the supervised child process is, for log labels"""

    WD_SERVER = "WD server"
    CHROME = "Chrome"


class ControllerMode(Enum):
    """Controller lifecycle states"""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"


class BrowserLocalChrome:
    """
    Desktop Chrome, driven through chromedriver or launched directly.

    At most one child process exists at a time: either start path fails with
    BrowserAlreadyRunningError unless the controller is idle. The server and
    DevTools URLs exist only while the matching process is alive, and are
    cleared by stop() or when the process exits on its own.

    Every start bumps a generation number, and so does stop(). Scheduled work
    from an older generation (a URL step, or a spawn that finishes after
    stop()) does not touch the current state.
    """

    def __init__(
        self,
        scheduler: TaskScheduler,
        chromedriver: str | None = None,
        chrome: str | None = None,
        server_port: int = DEFAULT_SERVER_PORT,
        devtools_port: int = DEFAULT_DEVTOOLS_PORT,
    ):
        """
        Args:
            scheduler: Runs spawn and URL steps in order
            chromedriver: chromedriver executable, 2.x or later; None means
                only start_browser() is usable
            chrome: Chrome binary; None means "chrome" on PATH (or
                chromedriver's own choice)
            server_port: chromedriver listen port
            devtools_port: remote debugging port for start_browser()
        """
        logger.info("BrowserLocalChrome(%s, %s)", chromedriver, chrome)
        self.scheduler = scheduler
        self.chromedriver = chromedriver or None
        self.chrome = chrome or None
        self.server_port = server_port
        self.devtools_port = devtools_port

        self._lock = threading.RLock()
        self._mode = ControllerMode.IDLE
        self._generation = 0
        self._process: ProcessHandle | None = None
        self._process_kind: ProcessKind | None = None
        self._server_url: str | None = None
        self._devtools_url: str | None = None

    @classmethod
    def from_args(cls, scheduler: TaskScheduler, args: dict[str, Any]) -> "BrowserLocalChrome":
        """Build from browser options such as ``{"chromedriver": ..., "chrome": ...}``"""
        return cls(
            scheduler,
            chromedriver=args.get("chromedriver"),
            chrome=args.get("chrome"),
            server_port=int(args.get("server_port", DEFAULT_SERVER_PORT)),
            devtools_port=int(args.get("devtools_port", DEFAULT_DEVTOOLS_PORT)),
        )

    @classmethod
    def from_config(cls, scheduler: TaskScheduler, app_config=None) -> "BrowserLocalChrome":
        """Build from the BROWSER section of the application config"""
        if app_config is None:
            from config import config as app_config

        browser = app_config.BROWSER
        return cls(
            scheduler,
            chromedriver=browser.get("chromedriver"),
            chrome=browser.get("chrome_binary"),
            server_port=browser.get("server_port", DEFAULT_SERVER_PORT),
            devtools_port=browser.get("devtools_port", DEFAULT_DEVTOOLS_PORT),
        )

    # ========================================================================
    # START / STOP
    # ========================================================================

    def start_wd_server(self, browser_caps: dict) -> Future:
        """
        Start chromedriver.

        ``browser_caps`` is updated in place with the Chrome startup flags, the
        Chrome binary (when configured) and performance logging, ready to be
        passed to the WebDriver session request.

        Args:
            browser_caps: capabilities; ``browserName`` must be "chrome"

        Returns:
            Future of the "Set WD server URL" step. It resolves to the server
            URL, to None if stop() ran first, or fails with the spawn error.
        """
        requested = requested_browser(browser_caps)
        if requested != CHROME:
            raise UnexpectedBrowserError(requested)
        if not self.chromedriver:
            raise MissingDriverError()

        generation = self._begin_start(ProcessKind.WD_SERVER)
        server_url = f"http://localhost:{self.server_port}"
        try:
            spawned = self._start_child_process(
                self.chromedriver, [f"-port={self.server_port}"], ProcessKind.WD_SERVER, generation
            )
            url_future = self.scheduler.schedule(
                "Set WD server URL",
                lambda: self._set_url(generation, spawned, "_server_url", server_url),
            )
        except Exception:
            self._abort_start(generation)
            raise

        add_chrome_options(browser_caps, self.chrome)
        return url_future

    def start_browser(self) -> Future:
        """
        Start the standard non-webdriver Chrome, which can't run scripts.

        Returns:
            Future of the "Set DevTools URL" step, resolving like the one from
            start_wd_server()
        """
        generation = self._begin_start(ProcessKind.CHROME)
        # TODO: launch with a fresh --user-data-dir so runs don't share a profile
        devtools_url = f"http://localhost:{self.devtools_port}/json"
        try:
            spawned = self._start_child_process(
                self.chrome or DEFAULT_CHROME,
                chrome_flags() + [f"-remote-debugging-port={self.devtools_port}"],
                ProcessKind.CHROME,
                generation,
            )
            return self.scheduler.schedule(
                "Set DevTools URL",
                lambda: self._set_url(generation, spawned, "_devtools_url", devtools_url),
            )
        except Exception:
            self._abort_start(generation)
            raise

    def _begin_start(self, kind: ProcessKind) -> int:
        # We expect start_wd_server or start_browser, but not both!
        with self._lock:
            if self._mode is not ControllerMode.IDLE:
                raise BrowserAlreadyRunningError(
                    self._process_kind.value if self._process_kind else None
                )
            self._generation += 1
            self._mode = ControllerMode.STARTING
            self._process_kind = kind
            return self._generation

    def _abort_start(self, generation: int) -> None:
        # Scheduling failed; a spawn step that did get queued must not claim the state
        with self._lock:
            if generation != self._generation:
                return
            proc = self._process
            name = self._process_kind.value if self._process_kind else "Browser"
            self._generation += 1
            self._clear()

        if proc is not None:
            signal_kill(proc, name)

    def _start_child_process(
        self, command: str, args: list[str], kind: ProcessKind, generation: int
    ) -> Future:
        return schedule_spawn(
            self.scheduler,
            command,
            args,
            on_started=lambda proc: self._on_process_started(proc, kind, generation),
        )

    def _on_process_started(self, proc: ProcessHandle, kind: ProcessKind, generation: int) -> None:
        with self._lock:
            current = generation == self._generation
            if current:
                self._process = proc
                self._process_kind = kind
                self._mode = ControllerMode.RUNNING

        if not current:
            logger.warning(f"{kind.value} started after stop(), killing PID {proc.pid}")
            signal_kill(proc, kind.value)
            return

        proc.on_exit(lambda code, sig: self._on_process_exit(proc, code, sig))
        proc.stdout.on_data(lambda data: logger.info("Chrome(driver) STDOUT: %s", data))
        # WD STDERR only gets log level warn because it outputs a lot of harmless
        # information over STDERR
        proc.stderr.on_data(lambda data: logger.warning("Chrome(driver) STDERR: %s", data))

    def _on_process_exit(self, proc: ProcessHandle, code: int | None, sig: str | None) -> None:
        logger.info("Chrome(driver) EXIT code %s signal %s", code, sig)
        with self._lock:
            # An older process may exit after a newer one was started
            if self._process is not proc:
                return
            self._clear()

    def _set_url(self, generation: int, spawned: Future, attr: str, url: str) -> str | None:
        spawn_error = spawned.exception() if spawned.done() else None
        with self._lock:
            current = generation == self._generation
            if current and spawn_error is not None:
                self._clear()
            elif current and self._process is not None:
                setattr(self, attr, url)
                return url

        if spawn_error is not None:
            raise spawn_error
        logger.debug(f"Not setting {url}: process stopped before it was ready")
        return None

    def _clear(self) -> None:
        self._process = None
        self._server_url = None
        self._devtools_url = None
        self._mode = ControllerMode.IDLE

    def stop(self) -> None:
        """Kill the child process, if any, and forget its endpoints."""
        with self._lock:
            proc = self._process
            name = self._process_kind.value if self._process_kind else "Browser"
            self._generation += 1
            self._clear()

        if proc is not None:
            signal_kill(proc, name)
        else:
            logger.debug("%s process already unset", name)

    kill = stop

    # ========================================================================
    # ACCESSORS
    # ========================================================================

    def is_running(self) -> bool:
        return self._process is not None

    def get_server_url(self) -> str | None:
        """WebDriver server URL, or None"""
        return self._server_url

    def get_devtools_url(self) -> str | None:
        """DevTools URL, or None"""
        return self._devtools_url

    @property
    def mode(self) -> ControllerMode:
        return self._mode

    def schedule_get_capabilities(self) -> Future:
        """Future resolving to the fixed capability dict."""
        return self.scheduler.schedule(
            "get capabilities",
            lambda: devtools_capabilities(bool(self.chromedriver)),
        )

    def schedule_start_packet_capture(self, filename: str | None = None):
        """
        Starts packet capture.

        Args:
            filename: local file where to copy the pcap result
        """
        raise PacketCaptureNotSupportedError()

    def schedule_stop_packet_capture(self):
        """Stops packet capture and copies the result to a local file."""
        raise PacketCaptureNotSupportedError()

    def status(self) -> dict[str, Any]:
        """Convert current state to a JSON-serializable dict."""
        with self._lock:
            return {
                "mode": self._mode.value,
                "process_kind": self._process_kind.value if self._process_kind else None,
                "pid": self._process.pid if self._process else None,
                "server_url": self._server_url,
                "devtools_url": self._devtools_url,
            }
