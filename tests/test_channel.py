"""
Tests for doccapture.browser.channel module.
"""

import base64
from unittest.mock import MagicMock

import pytest
from selenium.common.exceptions import (
    InvalidSelectorException,
    InvalidSessionIdException,
    JavascriptException,
    StaleElementReferenceException,
    WebDriverException,
)

from doccapture.browser.channel import (
    DIALOG_OVERRIDES_JS,
    BrowserChannel,
    DevToolsClient,
    is_dead_channel_error,
)
from doccapture.errors import ChannelError, ElementNotFoundError


class TestDeadChannelDetection:
    """Test is_dead_channel_error function."""

    @pytest.mark.parametrize("exc", [
        InvalidSessionIdException("invalid session id"),
        WebDriverException("chrome not reachable"),
        WebDriverException("disconnected: not connected to DevTools"),
        ConnectionRefusedError(111, "Connection refused"),
    ])
    def test_dead(self, exc):
        """Should classify lost-browser errors as dead channel."""
        assert is_dead_channel_error(exc) is True

    @pytest.mark.parametrize("exc", [
        JavascriptException("javascript error: x is not defined"),
        WebDriverException("element click intercepted"),
        WebDriverException("unknown error: net::ERR_INTERNET_DISCONNECTED"),
        WebDriverException("unknown error: net::ERR_CONNECTION_REFUSED"),
        ValueError("unrelated"),
    ])
    def test_alive(self, exc):
        """Should leave ordinary driver errors and page-load failures alone."""
        assert is_dead_channel_error(exc) is False

    def test_navigate_network_error_is_not_channel_loss(self, fake_driver):
        """Should re-raise a page-load failure as the driver error, not ChannelError."""
        fake_driver.get.side_effect = WebDriverException("unknown error: net::ERR_INTERNET_DISCONNECTED")

        with pytest.raises(WebDriverException) as excinfo:
            BrowserChannel(fake_driver).navigate("https://example.com/a")

        assert not isinstance(excinfo.value, ChannelError)


class TestBrowserChannel:
    """Test BrowserChannel operations and error mapping."""

    def test_navigate(self, fake_driver):
        """Should call driver.get with the URL."""
        BrowserChannel(fake_driver).navigate("https://example.com/a")
        fake_driver.get.assert_called_once_with("https://example.com/a")

    def test_navigate_on_dead_session(self, fake_driver):
        """Should raise ChannelError when the session is gone."""
        fake_driver.get.side_effect = InvalidSessionIdException("invalid session id")

        with pytest.raises(ChannelError):
            BrowserChannel(fake_driver).navigate("https://example.com")

    def test_script_error_propagates_unchanged(self, fake_driver):
        """Should not turn a page script error into ChannelError."""
        fake_driver.execute_script.side_effect = JavascriptException("boom")

        with pytest.raises(JavascriptException):
            BrowserChannel(fake_driver).execute_script("return boom()")

    def test_find_elements_empty(self, fake_driver):
        """Should return [] when nothing matches."""
        assert BrowserChannel(fake_driver).find_elements("a.none") == []

    def test_find_elements_returns_matches_in_order(self, fake_driver):
        """Should return the driver's matches as a list."""
        first, second = MagicMock(), MagicMock()
        fake_driver.find_elements.return_value = [first, second]

        assert BrowserChannel(fake_driver).find_elements("a") == [first, second]

    def test_find_elements_invalid_selector(self, fake_driver):
        """Should swallow invalid selectors and return []."""
        fake_driver.find_elements.side_effect = InvalidSelectorException("bad")

        assert BrowserChannel(fake_driver).find_elements("a[[") == []

    def test_click_stale_element(self, fake_driver):
        """Should raise ElementNotFoundError for a stale handle."""
        element = MagicMock()
        element.click.side_effect = StaleElementReferenceException("stale")

        with pytest.raises(ElementNotFoundError):
            BrowserChannel(fake_driver).click(element)

    def test_wait_until_returns_value(self, fake_driver):
        """Should return the first truthy condition value."""
        calls = iter([None, None, "found"])

        value = BrowserChannel(fake_driver).wait_until(lambda ch: next(calls), timeout_s=2, poll_interval_s=0.01)

        assert value == "found"

    def test_wait_until_times_out_with_none(self, fake_driver):
        """Should return None instead of raising on timeout."""
        assert BrowserChannel(fake_driver).wait_until(lambda ch: None, timeout_s=0.1, poll_interval_s=0.02) is None

    def test_wait_for_document_ready(self, fake_driver):
        """Should report a completed document."""
        fake_driver.execute_script.return_value = "complete"

        assert BrowserChannel(fake_driver).wait_for_document_ready(1) is True

    def test_install_dialog_overrides(self, fake_driver):
        """Should register overrides for new documents and the current one."""
        BrowserChannel(fake_driver).install_dialog_overrides()

        fake_driver.execute_cdp_cmd.assert_any_call(
            "Page.addScriptToEvaluateOnNewDocument", {"source": DIALOG_OVERRIDES_JS}
        )
        fake_driver.execute_script.assert_any_call(DIALOG_OVERRIDES_JS)

    def test_browser_logs_unsupported(self, fake_driver):
        """Should return [] when the driver cannot provide logs."""
        fake_driver.get_log.side_effect = WebDriverException("unknown log type")

        assert BrowserChannel(fake_driver).browser_logs() == []

    def test_execute_async_script_sets_timeout(self, fake_driver):
        """Should apply the script timeout before running a callback script."""
        fake_driver.execute_async_script.return_value = "done"

        assert BrowserChannel(fake_driver).execute_async_script("cb()", 1, timeout_s=30) == "done"

        fake_driver.set_script_timeout.assert_called_once_with(30)
        fake_driver.execute_async_script.assert_called_once_with("cb()", 1)

    def test_quit_never_raises(self, fake_driver):
        """Should fall back to stopping the service when quit fails."""
        fake_driver.quit.side_effect = WebDriverException("already gone")
        fake_driver.service = MagicMock()

        BrowserChannel(fake_driver).quit()

        fake_driver.service.stop.assert_called_once()


class TestDevToolsClient:
    """Test DevToolsClient capability check and download behavior."""

    def test_capability_check(self, fake_driver):
        """Should only support Chromium-based drivers."""
        assert DevToolsClient.supports_devtools(fake_driver) is True
        assert DevToolsClient.supports_devtools(MagicMock()) is False

    def test_prefers_browser_domain(self, fake_driver):
        """Should use Browser.setDownloadBehavior when accepted."""
        assert DevToolsClient(fake_driver).set_download_behavior("/tmp/dl") is True

        method, params = fake_driver.execute_cdp_cmd.call_args[0]
        assert method == "Browser.setDownloadBehavior"
        assert params["downloadPath"] == "/tmp/dl"
        assert params["behavior"] == "allow"

    def test_falls_back_to_page_domain(self, fake_driver):
        """Should retry with Page.setDownloadBehavior on older browsers."""
        fake_driver.execute_cdp_cmd.side_effect = [WebDriverException("'Browser.setDownloadBehavior' wasn't found"), {}]

        assert DevToolsClient(fake_driver).set_download_behavior("/tmp/dl") is True

        methods = [c[0][0] for c in fake_driver.execute_cdp_cmd.call_args_list]
        assert methods == ["Browser.setDownloadBehavior", "Page.setDownloadBehavior"]

    def test_both_rejected(self, fake_driver):
        """Should return False when neither command works."""
        fake_driver.execute_cdp_cmd.side_effect = WebDriverException("unsupported")

        assert DevToolsClient(fake_driver).set_download_behavior("/tmp/dl") is False

    def test_no_devtools_support(self):
        """Should do nothing for drivers without DevTools."""
        driver = MagicMock()

        assert DevToolsClient(driver).set_download_behavior("/tmp/dl") is False
        driver.execute_cdp_cmd.assert_not_called()

    def test_dead_channel_propagates(self, fake_driver):
        """Should raise ChannelError instead of trying the fallback."""
        fake_driver.execute_cdp_cmd.side_effect = WebDriverException("chrome not reachable")

        with pytest.raises(ChannelError):
            DevToolsClient(fake_driver).set_download_behavior("/tmp/dl")

    def test_print_to_pdf(self, fake_driver):
        """Should decode the base64 payload of Page.printToPDF."""
        fake_driver.execute_cdp_cmd.return_value = {"data": base64.b64encode(b"%PDF-1.7 page").decode("ascii")}

        assert DevToolsClient(fake_driver).print_to_pdf() == b"%PDF-1.7 page"

        method, params = fake_driver.execute_cdp_cmd.call_args[0]
        assert method == "Page.printToPDF"
        assert params["printBackground"] is True

    @pytest.mark.parametrize("reply", [{}, {"data": ""}, {"data": "not base64!"}])
    def test_print_to_pdf_without_usable_data(self, fake_driver, reply):
        """Should return None for an empty or undecodable reply."""
        fake_driver.execute_cdp_cmd.return_value = reply

        assert DevToolsClient(fake_driver).print_to_pdf() is None

    def test_print_to_pdf_rejected(self, fake_driver):
        """Should return None when the browser rejects the command."""
        fake_driver.execute_cdp_cmd.side_effect = WebDriverException("Printing is not available")

        assert DevToolsClient(fake_driver).print_to_pdf() is None

    def test_print_to_pdf_without_devtools(self):
        """Should not attempt printing on drivers without DevTools."""
        driver = MagicMock()

        assert DevToolsClient(driver).print_to_pdf() is None
        driver.execute_cdp_cmd.assert_not_called()

    def test_print_to_pdf_on_dead_browser(self, fake_driver):
        """Should raise ChannelError when the browser is gone."""
        fake_driver.execute_cdp_cmd.side_effect = WebDriverException("disconnected: not connected to DevTools")

        with pytest.raises(ChannelError):
            DevToolsClient(fake_driver).print_to_pdf()
