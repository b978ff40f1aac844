"""
Browser Control Channel: Thin Synchronous Wrapper over Selenium

Calls return when the driver answers, but the page keeps rendering and
navigating on its own. Callers wait for DOM-dependent state explicitly
(wait_until, wait_for_document_ready).

Error mapping:
- Dead browser or driver (invalid session, unreachable, refused) -> ChannelError
- Stale element handle -> ElementNotFoundError
- Lookups that match nothing, or invalid selectors -> []
- Anything else is raised as the original WebDriverException
"""

from __future__ import annotations

import base64
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar
import logging

from selenium.common.exceptions import (
    InvalidSelectorException,
    InvalidSessionIdException,
    NoSuchWindowException,
    StaleElementReferenceException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.chromium.webdriver import ChromiumDriver
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.webelement import WebElement
from selenium.webdriver.support.ui import WebDriverWait
from urllib3.exceptions import HTTPError as TransportError

from ..errors import ChannelError, ElementNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Phrases chromedriver uses when the browser side is gone
_DEAD_CHANNEL_HINTS = (
    "disconnected: not connected to devtools",
    "disconnected: received inspector.detached",
    "chrome not reachable",
    "no such session",
    "session deleted because of page crash",
    "invalid session id",
    "connection refused",
    "target window already closed",
    "browser has closed",
)

# Page-load failures (net::ERR_INTERNET_DISCONNECTED, ...) leave the browser alive
_NETWORK_ERROR_PREFIX = "net::err_"

DIALOG_OVERRIDES_JS = """
(function() {
    window.alert = function() { return undefined; };
    window.confirm = function() { return true; };
    window.prompt = function() { return null; };
    window.open = function(url) {
        if (url) { window.location.href = url; }
        return window;
    };
})();
"""


def is_dead_channel_error(exc: BaseException) -> bool:
    """True when a driver error means the browser or driver is gone."""
    if isinstance(exc, (InvalidSessionIdException, NoSuchWindowException, ConnectionError, TransportError)):
        return True
    if isinstance(exc, WebDriverException):
        msg = (exc.msg or str(exc) or "").lower()
        if _NETWORK_ERROR_PREFIX in msg:
            return False
        return any(hint in msg for hint in _DEAD_CHANNEL_HINTS)
    return False


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except StaleElementReferenceException as e:
        raise ElementNotFoundError(f"{operation}: stale element ({e.msg})") from e
    except (WebDriverException, ConnectionError, TransportError) as e:
        if is_dead_channel_error(e):
            logger.error(f"[CHANNEL] {operation} failed, browser channel is gone: {e}")
            raise ChannelError(f"{operation}: browser channel is gone ({e})") from e
        raise


class DevToolsClient:
    """
    Explicit Chrome DevTools Protocol client.

    Only drivers built on Selenium's Chromium driver expose
    execute_cdp_cmd; anything else reports no capability and every
    command becomes a no-op returning False.
    """

    PROTOCOL_VERSION = "1.3"

    def __init__(self, driver: Any):
        self._driver = driver
        self.available = self.supports_devtools(driver)

    @staticmethod
    def supports_devtools(driver: Any) -> bool:
        return isinstance(driver, ChromiumDriver)

    def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send one protocol command. Raises WebDriverException on protocol errors."""
        if not self.available:
            raise ChannelError(f"DevTools protocol not supported by {type(self._driver).__name__}")
        logger.debug(f"[CDP] v{self.PROTOCOL_VERSION} {method}")
        with _translate_errors(method):
            return self._driver.execute_cdp_cmd(method, params or {}) or {}

    def set_download_behavior(self, directory: str) -> bool:
        """
        Pin downloads to a directory.

        Prefers Browser.setDownloadBehavior and falls back to the
        deprecated Page.setDownloadBehavior on older browsers.
        """
        if not self.available:
            logger.info("[CDP] Driver has no DevTools support, relying on profile preferences")
            return False

        commands = (
            ("Browser.setDownloadBehavior", {"behavior": "allow", "downloadPath": directory, "eventsEnabled": False}),
            ("Page.setDownloadBehavior", {"behavior": "allow", "downloadPath": directory}),
        )
        for method, params in commands:
            try:
                self.send(method, params)
                logger.info(f"[CDP] {method} -> {directory}")
                return True
            except ChannelError:
                raise
            except WebDriverException as e:
                logger.warning(f"[CDP] {method} rejected: {e.msg}")
        return False

    def add_script_on_new_document(self, source: str) -> bool:
        if not self.available:
            return False
        try:
            self.send("Page.addScriptToEvaluateOnNewDocument", {"source": source})
            return True
        except ChannelError:
            raise
        except WebDriverException as e:
            logger.warning(f"[CDP] addScriptToEvaluateOnNewDocument rejected: {e.msg}")
            return False

    def print_to_pdf(self, options: Optional[Dict[str, Any]] = None) -> Optional[bytes]:
        """
        Render the current page with Page.printToPDF.

        Returns the PDF bytes, or None when the driver has no DevTools
        support, the command is rejected or the reply carries no data.
        """
        if not self.available:
            return None
        params: Dict[str, Any] = {"printBackground": True, "preferCSSPageSize": True}
        params.update(options or {})
        try:
            reply = self.send("Page.printToPDF", params)
        except ChannelError:
            raise
        except WebDriverException as e:
            logger.warning(f"[CDP] Page.printToPDF rejected: {e.msg}")
            return None

        encoded = reply.get("data")
        if not encoded:
            logger.warning("[CDP] Page.printToPDF returned no data")
            return None
        try:
            return base64.b64decode(encoded, validate=True)
        except (ValueError, TypeError) as e:
            logger.warning(f"[CDP] Page.printToPDF returned undecodable data: {e}")
            return None


class BrowserChannel:
    """
    Control channel for one live browser session.

    Usage:
        channel = BrowserChannel(driver)
        channel.install_dialog_overrides()
        channel.set_download_behavior("/tmp/downloads/abc")
        channel.navigate("https://example.com/letters")
        links = channel.find_elements("a.download-button")
    """

    def __init__(self, driver: Any, devtools: Optional[DevToolsClient] = None):
        self._driver = driver
        self.devtools = devtools or DevToolsClient(driver)

    @property
    def driver(self) -> Any:
        return self._driver

    @property
    def current_url(self) -> str:
        with _translate_errors("current_url"):
            return self._driver.current_url or ""

    def navigate(self, url: str) -> None:
        logger.info(f"[CHANNEL] Navigating to {url}")
        with _translate_errors("navigate"):
            self._driver.get(url)

    def execute_script(self, js: str, *args: Any) -> Any:
        with _translate_errors("execute_script"):
            return self._driver.execute_script(js, *args)

    def execute_async_script(self, js: str, *args: Any, timeout_s: Optional[float] = None) -> Any:
        """Run a callback-style script; the callback is the last argument."""
        with _translate_errors("execute_async_script"):
            if timeout_s is not None:
                self._driver.set_script_timeout(timeout_s)
            return self._driver.execute_async_script(js, *args)

    def find_elements(self, selector: str) -> List[WebElement]:
        """Return all matches for a CSS selector, or [] when nothing matches."""
        try:
            with _translate_errors("find_elements"):
                return list(self._driver.find_elements(By.CSS_SELECTOR, selector) or [])
        except InvalidSelectorException:
            logger.warning(f"[CHANNEL] Invalid selector ignored: {selector!r}")
            return []

    def click(self, element: WebElement) -> None:
        with _translate_errors("click"):
            element.click()

    def scroll_into_view(self, element: WebElement) -> None:
        self.execute_script("arguments[0].scrollIntoView({block: 'center', inline: 'center'});", element)

    def wait_until(
        self,
        condition: Callable[["BrowserChannel"], Optional[T]],
        timeout_s: float,
        poll_interval_s: float = 0.5,
    ) -> Optional[T]:
        """
        Explicit wait for a condition on this channel.

        Returns the first truthy value of condition, or None on timeout.
        Exceptions raised by condition (other than a missing element)
        propagate immediately.
        """
        wait = WebDriverWait(self._driver, timeout_s, poll_frequency=poll_interval_s)
        try:
            return wait.until(lambda _driver: condition(self))
        except TimeoutException:
            return None

    def wait_for_document_ready(self, timeout_s: float = 10.0) -> bool:
        ready = self.wait_until(
            lambda ch: ch.execute_script("return document.readyState") == "complete",
            timeout_s,
        )
        return bool(ready)

    def set_download_behavior(self, directory: str) -> bool:
        return self.devtools.set_download_behavior(directory)

    def print_to_pdf(self, **options: Any) -> Optional[bytes]:
        return self.devtools.print_to_pdf(options or None)

    def install_dialog_overrides(self) -> None:
        """Neutralise alert/confirm/prompt/window.open on this and every future document."""
        persisted = self.devtools.add_script_on_new_document(DIALOG_OVERRIDES_JS)
        try:
            self.execute_script(DIALOG_OVERRIDES_JS)
        except ChannelError:
            raise
        except WebDriverException as e:
            logger.warning(f"[CHANNEL] Could not override dialogs on current page: {e.msg}")
        logger.info(f"[CHANNEL] Dialog overrides installed (persisted across navigation: {persisted})")

    def browser_logs(self) -> List[Dict[str, Any]]:
        """Console entries captured by the browser. Empty when unsupported."""
        try:
            return list(self._driver.get_log("browser") or [])
        except (WebDriverException, AttributeError, ValueError) as e:
            logger.debug(f"[CHANNEL] Browser logs unavailable: {e}")
            return []

    def quit(self) -> None:
        """Terminate the browser and driver service. Never raises."""
        try:
            self._driver.quit()
            logger.info("[CHANNEL] Browser closed")
            return
        except Exception as e:
            logger.warning(f"[CHANNEL] driver.quit() failed: {e}")

        # Fall back to stopping the driver service directly
        service = getattr(self._driver, "service", None)
        if service is not None:
            try:
                service.stop()
            except Exception as e:
                logger.warning(f"[CHANNEL] Driver service stop failed: {e}")
