"""
Tests for doccapture.acquisition.strategies module.

The mocked driver simulates the browser saving a file by writing into
the download directory from its click/get/script side effects.
"""

import base64
import json
from unittest.mock import MagicMock

import pytest
from selenium.common.exceptions import WebDriverException

from doccapture.acquisition import strategies
from doccapture.acquisition.http_fetcher import HttpFetchResult
from doccapture.acquisition.poller import PollStatus
from doccapture.acquisition.strategies import (
    FIND_AND_CLICK_JS,
    STRATEGY_ORDER,
    DirectNavigationStrategy,
    DirectorySweepStrategy,
    OutOfBandFetchStrategy,
    PagePrintStrategy,
    ScriptClickStrategy,
    SelectorClickStrategy,
    StrategyContext,
    TargetDocument,
    default_strategies,
)
from doccapture.acquisition.validator import DocumentFormat
from doccapture.errors import ChannelError, StrategyFailure

from tests.conftest import make_pdf


def make_ctx(session, target, timeout_s=1.0):
    return StrategyContext(
        channel=session.channel,
        download_dir=session.download_dir,
        target=target,
        timeout_s=timeout_s,
        poll_interval_s=0.05,
    )


def test_fixed_order():
    """Should expose the strategies in their fixed order."""
    assert [s.name for s in default_strategies()] == list(STRATEGY_ORDER)
    assert STRATEGY_ORDER == (
        "selector_click",
        "direct_navigation",
        "script_click",
        "out_of_band_fetch",
        "directory_sweep",
    )


def test_page_print_is_opt_in():
    """Should append page printing only when asked."""
    assert "page_print" not in [s.name for s in default_strategies()]
    assert [s.name for s in default_strategies(include_page_print=True)][-1] == "page_print"


class TestTargetDocument:
    """Test TargetDocument.link_selectors."""

    def test_href_selector_appended(self):
        """Should append an href-substring selector after the configured ones."""
        target = TargetDocument(selectors=("a.download-button",), href_contains="/letters/42")

        assert target.link_selectors() == ["a.download-button", 'a[href*="/letters/42"]']


class TestSelectorClick:
    """Test SelectorClickStrategy."""

    def test_clicks_first_matching_selector(self, fake_session, fake_driver):
        """Should click the first match of the first selector that resolves."""
        link = MagicMock()
        link.click.side_effect = lambda: (fake_session.download_dir / "letter.pdf").write_bytes(make_pdf())
        fake_driver.find_elements.side_effect = lambda by, sel: [link] if sel == "a.second" else []
        target = TargetDocument(selectors=("a.first", "a.second"))

        poll, detail = SelectorClickStrategy().run(make_ctx(fake_session, target))

        assert poll.status == PollStatus.SUCCESS
        assert poll.path.name == "letter.pdf"
        assert "a.second" in detail
        link.click.assert_called_once()
        scrolled = [c for c in fake_driver.execute_script.call_args_list if "scrollIntoView" in c[0][0]]
        assert scrolled and scrolled[0][0][1] is link

    def test_navigates_to_page_first(self, fake_session, fake_driver):
        """Should open the target page when the browser is elsewhere."""
        fake_driver.find_elements.return_value = []
        target = TargetDocument(page_url="https://example.com/letters", selectors=("a.x",))

        with pytest.raises(StrategyFailure):
            SelectorClickStrategy().run(make_ctx(fake_session, target, timeout_s=0.2))

        fake_driver.get.assert_called_once_with("https://example.com/letters")

    def test_no_selectors(self, fake_session):
        """Should fail without touching the browser when nothing is configured."""
        with pytest.raises(StrategyFailure):
            SelectorClickStrategy().run(make_ctx(fake_session, TargetDocument()))

    def test_no_match(self, fake_session):
        """Should fail when no selector resolves in time."""
        target = TargetDocument(selectors=("a.missing",))

        with pytest.raises(StrategyFailure, match="No element matched"):
            SelectorClickStrategy().run(make_ctx(fake_session, target, timeout_s=0.2))

    def test_intercepted_click_is_strategy_failure(self, fake_session, fake_driver):
        """Should turn ordinary driver errors into StrategyFailure."""
        link = MagicMock()
        link.click.side_effect = WebDriverException("element click intercepted")
        fake_driver.find_elements.return_value = [link]

        with pytest.raises(StrategyFailure):
            SelectorClickStrategy().run(make_ctx(fake_session, TargetDocument(selectors=("a",))))

    def test_dead_browser_is_channel_error(self, fake_session, fake_driver):
        """Should surface a dead browser as ChannelError."""
        fake_driver.find_elements.side_effect = WebDriverException("chrome not reachable")

        with pytest.raises(ChannelError):
            SelectorClickStrategy().run(make_ctx(fake_session, TargetDocument(selectors=("a",))))


class TestDirectNavigation:
    """Test DirectNavigationStrategy."""

    def test_navigates_to_document(self, fake_session, fake_driver):
        """Should point the browser at the document URL and poll."""
        fake_driver.get.side_effect = lambda url: (fake_session.download_dir / "doc.pdf").write_bytes(make_pdf())
        target = TargetDocument(document_url="https://example.com/doc.pdf")

        poll, _ = DirectNavigationStrategy().run(make_ctx(fake_session, target))

        assert poll.ok
        fake_driver.get.assert_called_once_with("https://example.com/doc.pdf")

    def test_load_error_still_polls(self, fake_session, fake_driver):
        """Should keep polling when navigation reports an error after starting a download."""
        def get(url):
            (fake_session.download_dir / "doc.pdf").write_bytes(make_pdf())
            raise WebDriverException("net::ERR_ABORTED")

        fake_driver.get.side_effect = get

        poll, _ = DirectNavigationStrategy().run(make_ctx(fake_session, TargetDocument(document_url="https://x/d.pdf")))

        assert poll.ok

    def test_requires_document_url(self, fake_session):
        """Should fail without a document URL."""
        with pytest.raises(StrategyFailure):
            DirectNavigationStrategy().run(make_ctx(fake_session, TargetDocument(selectors=("a",))))


class TestScriptClick:
    """Test ScriptClickStrategy."""

    def test_script_click(self, fake_session, fake_driver):
        """Should pass selectors and href substring to the in-page script."""
        def execute(js, *args):
            if js == FIND_AND_CLICK_JS:
                (fake_session.download_dir / "s.pdf").write_bytes(make_pdf())
                return "href https://example.com/letters/42.pdf"
            return None

        fake_driver.execute_script.side_effect = execute
        target = TargetDocument(selectors=("a.download-button",), href_contains="/letters/")

        poll, detail = ScriptClickStrategy().run(make_ctx(fake_session, target))

        assert poll.ok
        assert "letters/42" in detail
        fake_driver.execute_script.assert_any_call(FIND_AND_CLICK_JS, ["a.download-button"], "/letters/")

    def test_nothing_found(self, fake_session, fake_driver):
        """Should fail when the script finds no link."""
        fake_driver.execute_script.return_value = None

        with pytest.raises(StrategyFailure):
            ScriptClickStrategy().run(make_ctx(fake_session, TargetDocument(href_contains="x")))


class TestOutOfBandFetch:
    """Test OutOfBandFetchStrategy."""

    def test_writes_direct_file(self, fake_session, monkeypatch):
        """Should save the response body as direct_<ms>.pdf."""
        monkeypatch.setattr(
            strategies, "fetch_bytes",
            lambda url, timeout_s: HttpFetchResult(ok=True, status=200, content=make_pdf(4096)),
        )

        poll, _ = OutOfBandFetchStrategy().run(make_ctx(fake_session, TargetDocument(document_url="https://x/d.pdf")))

        assert poll.ok
        assert poll.path.name.startswith("direct_")
        assert poll.path.suffix == ".pdf"
        assert poll.size_bytes == 4096

    def test_http_error(self, fake_session, monkeypatch):
        """Should fail on a non-2xx response."""
        monkeypatch.setattr(
            strategies, "fetch_bytes",
            lambda url, timeout_s: HttpFetchResult(ok=False, status=403, error="HTTP 403"),
        )

        with pytest.raises(StrategyFailure, match="403"):
            OutOfBandFetchStrategy().run(make_ctx(fake_session, TargetDocument(document_url="https://x/d.pdf")))


class TestDirectorySweep:
    """Test DirectorySweepStrategy."""

    def test_finds_nested_file(self, fake_session):
        """Should recover a file saved in a subdirectory."""
        nested = fake_session.download_dir / "unexpected" / "place"
        nested.mkdir(parents=True)
        (nested / "renamed.pdf").write_bytes(make_pdf())

        poll, _ = DirectorySweepStrategy().run(make_ctx(fake_session, TargetDocument()))

        assert poll.ok
        assert poll.path.name == "renamed.pdf"


class TestPagePrint:
    """Test PagePrintStrategy."""

    def test_prints_page_via_devtools(self, fake_session, fake_driver):
        """Should save the printToPDF output as page_<ms>.pdf for the poller."""
        fake_driver.execute_script.return_value = "complete"
        fake_driver.execute_cdp_cmd.side_effect = lambda method, params: (
            {"data": base64.b64encode(make_pdf(3000)).decode("ascii")} if method == "Page.printToPDF" else {}
        )

        poll, detail = PagePrintStrategy().run(make_ctx(fake_session, TargetDocument(), timeout_s=2.0))

        assert poll.ok
        assert poll.path.name.startswith("page_")
        assert poll.size_bytes == 3000
        assert "devtools" in detail
        assert not list(fake_session.download_dir.glob("*.part"))

    def test_falls_back_to_script(self, fake_session, fake_driver):
        """Should use html2pdf.js when printToPDF is rejected."""
        fake_driver.execute_script.return_value = "complete"
        fake_driver.execute_cdp_cmd.side_effect = WebDriverException("'Page.printToPDF' wasn't found")
        fake_driver.execute_async_script.return_value = json.dumps(
            {"success": True, "data": base64.b64encode(make_pdf(2500)).decode("ascii")}
        )

        poll, detail = PagePrintStrategy().run(make_ctx(fake_session, TargetDocument(), timeout_s=2.0))

        assert poll.ok
        assert "html2pdf" in detail

    def test_nothing_printed(self, fake_session, fake_driver):
        """Should fail when neither method yields a PDF."""
        fake_driver.execute_script.return_value = "complete"
        fake_driver.execute_cdp_cmd.side_effect = WebDriverException("unsupported")
        fake_driver.execute_async_script.return_value = json.dumps({"success": False, "error": "Failed to load html2pdf.js"})

        with pytest.raises(StrategyFailure, match="could not be printed"):
            PagePrintStrategy().run(make_ctx(fake_session, TargetDocument(), timeout_s=2.0))

    def test_only_for_pdf_targets(self, fake_session):
        """Should refuse targets expecting another format."""
        other = DocumentFormat(name="zip", extension=".zip", magic=b"PK", marker=b"PK\x03\x04")

        with pytest.raises(StrategyFailure, match="zip"):
            PagePrintStrategy().run(make_ctx(fake_session, TargetDocument(fmt=other)))
