"""
Chrome capability helpers

Flags and capability keys shared by the chromedriver and direct launch paths.
Key names come from selenium so requests match what its Remote driver sends.
"""

from selenium.webdriver import DesiredCapabilities
from selenium.webdriver.chrome.options import Options as ChromeOptions

BROWSER_NAME = "browserName"
CHROME = DesiredCapabilities.CHROME["browserName"]
CHROME_OPTIONS = ChromeOptions.KEY
LOGGING_PREFS = "goog:loggingPrefs"

# Performance log captures DevTools events
PERFORMANCE_LOG = "performance"
LOG_LEVEL_ALL = "ALL"

CHROME_FLAGS = (
    "--disable-fre",
    "--enable-benchmarking",
    "--metrics-recording-only",
)


def chrome_flags() -> list[str]:
    """Fresh, mutable copy of the fixed Chrome flags"""
    return list(CHROME_FLAGS)


def requested_browser(browser_caps: dict) -> str | None:
    return browser_caps.get(BROWSER_NAME)


def add_chrome_options(browser_caps: dict, chrome_binary: str | None = None) -> dict:
    """
    Add Chrome startup flags and performance logging to ``browser_caps``.

    The dict is updated in place and returned.
    """
    chrome_options = {"args": chrome_flags()}
    if chrome_binary:
        chrome_options["binary"] = chrome_binary
    browser_caps[CHROME_OPTIONS] = chrome_options
    browser_caps[LOGGING_PREFS] = {PERFORMANCE_LOG: LOG_LEVEL_ALL}
    return browser_caps


def devtools_capabilities(webdriver: bool) -> dict:
    """What the controller offers on top of WebDriver, all over DevTools"""
    return {
        "webdriver": webdriver,
        "wkrdp.Page.captureScreenshot": True,
        "wkrdp.Network.clearBrowserCache": True,
        "wkrdp.Network.clearBrowserCookies": True,
    }
