"""Exceptions raised by the local browser controllers."""


class BrowserError(Exception):
    """Base class for browser controller errors"""
    pass


class UnexpectedBrowserError(BrowserError):
    """Capabilities asked for a browser this controller does not drive"""

    def __init__(self, requested_browser):
        self.requested_browser = requested_browser
        super().__init__(f"BrowserLocalChrome called with unexpected browser {requested_browser}")


class MissingDriverError(BrowserError):
    """No chromedriver path was configured"""

    def __init__(self):
        super().__init__("Must set chromedriver before starting it")


class BrowserAlreadyRunningError(BrowserError):
    """A start was requested while a process is running or starting"""

    def __init__(self, process_name=None):
        self.process_name = process_name
        detail = f" ({process_name})" if process_name else ""
        super().__init__(f"Internal error: WD server already running{detail}")


class PacketCaptureNotSupportedError(BrowserError, NotImplementedError):
    """Packet capture is not available for this browser"""

    def __init__(self, browser_name="Chrome"):
        super().__init__(f"Packet capture requested, but not implemented for {browser_name}")
