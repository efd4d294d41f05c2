"""
Main Entry Point for Local Chrome Agent

Starts chromedriver (default) or a plain Chrome with remote debugging, logs
the endpoint to connect to, and supervises the process until it exits or the
user interrupts.
"""

__version__ = "1.0.0"

import argparse
import logging
import signal
import sys
import threading

from config import ConfigError, config
from services.logger import setup_logging
from services.task_scheduler import TaskScheduler

from browser.errors import BrowserError
from browser.local_chrome import BrowserLocalChrome

POLL_INTERVAL = 0.5  # seconds between liveness checks
START_TIMEOUT = 30.0  # seconds to wait for the spawn + URL steps


class Application:
    """
    Main application controller
    Coordinates logging, the scheduler and the browser controller
    """

    def __init__(self, args: argparse.Namespace):
        self.args = args
        self.logger = setup_logging({"console_level": args.log_level} if args.log_level else None)
        config.set_logger(self.logger)

        if args.chromedriver:
            config.set("browser", "chromedriver", args.chromedriver)
        if args.chrome:
            config.set("browser", "chrome_binary", args.chrome)
        if args.server_port:
            config.set("browser", "server_port", args.server_port)
        if args.devtools_port:
            config.set("browser", "devtools_port", args.devtools_port)
        config.validate()

        scheduler_config = config.SCHEDULER
        self.stop_timeout = scheduler_config["stop_timeout"]
        self.scheduler = TaskScheduler(scheduler_config["name"])
        self.browser = BrowserLocalChrome.from_config(self.scheduler, config)
        self._stop_event = threading.Event()

    def start(self) -> str | None:
        """Start the scheduler and the requested process; return its endpoint"""
        self.scheduler.start()

        if self.args.direct:
            self.logger.info("MODE: DIRECT CHROME (DevTools only)")
            future = self.browser.start_browser()
        else:
            self.logger.info("MODE: WEBDRIVER SERVER")
            caps = {"browserName": "chrome"}
            future = self.browser.start_wd_server(caps)
            self.logger.info(f"Session capabilities: {caps}")

        url = future.result(timeout=START_TIMEOUT)
        if url is None:
            self.logger.error("Browser process exited during startup")
        else:
            self.logger.info(f"Ready: {url}")
        return url

    def request_stop(self, signum=None, frame=None):
        self.logger.info("Shutdown signal received")
        self._stop_event.set()

    def run(self) -> int:
        """Run until interrupted or until the child process exits"""
        signal.signal(signal.SIGINT, self.request_stop)
        signal.signal(signal.SIGTERM, self.request_stop)

        if self.start() is None:
            return 1

        while not self._stop_event.wait(POLL_INTERVAL):
            if not self.browser.is_running():
                self.logger.warning("Browser process exited")
                return 1
        return 0

    def shutdown(self):
        """Clean shutdown of application"""
        self.logger.info("Shutting down...")
        try:
            self.browser.stop()
        finally:
            self.scheduler.stop(timeout=self.stop_timeout)
            self.logger.info("Shutdown complete")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="local-chrome",
        description="Launch and supervise a local chromedriver or Chrome",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --chromedriver /usr/bin/chromedriver   # WebDriver server on :4444
  %(prog)s --direct --chrome /usr/bin/google-chrome  # DevTools on :1234/json

Paths default to the CHROMEDRIVER and CHROME_BINARY environment variables.
        """,
    )
    parser.add_argument("--chromedriver", help="chromedriver executable")
    parser.add_argument("--chrome", help="Chrome binary")
    parser.add_argument(
        "--direct",
        action="store_true",
        help="launch Chrome itself with remote debugging instead of chromedriver",
    )
    parser.add_argument("--server-port", type=int, help="chromedriver listen port")
    parser.add_argument("--devtools-port", type=int, help="remote debugging port")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="console log level",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    app = None
    try:
        app = Application(args)
        return app.run()
    except (BrowserError, ConfigError, OSError) as e:
        logging.error(str(e))
        return 2
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    finally:
        if app is not None:
            app.shutdown()


if __name__ == "__main__":
    sys.exit(main())
