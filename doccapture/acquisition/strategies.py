"""
Strategies: Ways to Trigger and Capture a Document Download

Each strategy triggers (or recovers) a download into the session's
download directory, then hands over to the completion poller. They run
in a fixed order, from most browser-native to most forgiving:

1. selector_click     - explicit wait for a known link, scroll, click
2. direct_navigation  - point the browser at the document URL
3. script_click       - find the link in-page and call its native click()
4. out_of_band_fetch  - plain HTTP GET, no browser session state
5. directory_sweep    - recursive scan for a file saved under any name
6. page_print         - opt-in: print the page itself when it is the document

Site-specific knowledge (page URL, document URL, selectors, href
substring) lives in TargetDocument so the engine can serve any site.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
import logging

from selenium.common.exceptions import WebDriverException

from ..browser.channel import BrowserChannel, is_dead_channel_error
from ..errors import AcquisitionCancelled, ChannelError, ElementNotFoundError, StrategyFailure
from .http_fetcher import fetch_bytes
from .page_capture import HTML2PDF_TIMEOUT_S, render_page_pdf
from .poller import DEFAULT_PARTIAL_SUFFIXES, PollResult, wait_for_download
from .validator import PDF, DocumentFormat

logger = logging.getLogger(__name__)

ELEMENT_POLL_S = 0.5
PAGE_READY_TIMEOUT_S = 10.0

FIND_AND_CLICK_JS = """
var selectors = arguments[0] || [];
var hrefPart = arguments[1];
var target = null;
var how = null;
for (var i = 0; i < selectors.length && !target; i++) {
    try {
        target = document.querySelector(selectors[i]);
        if (target) { how = 'selector ' + selectors[i]; }
    } catch (e) {}
}
if (!target && hrefPart) {
    var anchors = document.querySelectorAll('a[href]');
    for (var j = 0; j < anchors.length; j++) {
        if (anchors[j].href && anchors[j].href.indexOf(hrefPart) !== -1) {
            target = anchors[j];
            how = 'href ' + anchors[j].href;
            break;
        }
    }
}
if (!target) { return null; }
target.click();
return how;
"""


@dataclass(frozen=True)
class TargetDocument:
    """
    Where the document lives and how to recognise its link.

    Attributes:
        page_url: Page that shows the download link; None to use the current page
        document_url: Direct URL of the document, if known
        selectors: CSS selectors for the link, most specific first
        href_contains: Substring identifying the link's href
        fmt: Expected document format
    """
    page_url: Optional[str] = None
    document_url: Optional[str] = None
    selectors: Tuple[str, ...] = ()
    href_contains: Optional[str] = None
    fmt: DocumentFormat = PDF

    def link_selectors(self) -> List[str]:
        """Configured selectors plus an href-substring selector when one is set."""
        sels = list(self.selectors)
        if self.href_contains:
            escaped = self.href_contains.replace("\\", "\\\\").replace('"', '\\"')
            sels.append(f'a[href*="{escaped}"]')
        return sels


@dataclass
class StrategyContext:
    """Everything one strategy run needs. Built by the engine per attempt."""
    channel: BrowserChannel
    download_dir: Path
    target: TargetDocument
    timeout_s: float
    poll_interval_s: float
    cancel_event: threading.Event = field(default_factory=threading.Event)
    partial_suffixes: Sequence[str] = DEFAULT_PARTIAL_SUFFIXES
    deadline: float = 0.0

    def __post_init__(self) -> None:
        if not self.deadline:
            self.deadline = time.monotonic() + self.timeout_s

    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise AcquisitionCancelled()

    def poll(self, recursive: bool = False) -> PollResult:
        return wait_for_download(
            self.download_dir,
            extension=self.target.fmt.extension,
            partial_suffixes=self.partial_suffixes,
            timeout_s=self.remaining(),
            poll_interval_s=self.poll_interval_s,
            cancel_event=self.cancel_event,
            recursive=recursive,
        )

    def ensure_on_page(self) -> None:
        """Navigate to the target page unless the browser is already there."""
        page = self.target.page_url
        if not page:
            return
        if self.channel.current_url.rstrip("/") != page.rstrip("/"):
            self.channel.navigate(page)
            self.channel.wait_for_document_ready(min(PAGE_READY_TIMEOUT_S, self.remaining()))


def _write_complete(dest: Path, data: bytes) -> None:
    """Write via a partial-download name so the poller never sees half a file."""
    partial = dest.with_name(dest.name + ".part")
    try:
        partial.write_bytes(data)
        partial.replace(dest)
    except OSError as e:
        raise StrategyFailure(f"Could not write {dest.name}: {e}") from e


class Strategy:
    """
    Base strategy: trigger a download, then poll for it.

    Subclasses implement trigger(), returning a short description of
    what they did, or raise StrategyFailure when they cannot act.
    """

    name = "strategy"
    recursive = False

    def trigger(self, ctx: StrategyContext) -> str:
        raise NotImplementedError

    def run(self, ctx: StrategyContext) -> Tuple[PollResult, str]:
        ctx.check_cancelled()
        try:
            detail = self.trigger(ctx)
        except (StrategyFailure, ChannelError, AcquisitionCancelled):
            raise
        except ElementNotFoundError as e:
            raise StrategyFailure(str(e)) from e
        except WebDriverException as e:
            if is_dead_channel_error(e):
                raise ChannelError(f"{self.name}: browser channel is gone ({e})") from e
            raise StrategyFailure(f"{self.name}: {e.msg or e}") from e
        ctx.check_cancelled()
        logger.info(f"[ACQUIRE] {self.name}: {detail}, waiting up to {ctx.remaining():.0f}s")
        return ctx.poll(self.recursive), detail

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class SelectorClickStrategy(Strategy):
    name = "selector_click"

    def trigger(self, ctx: StrategyContext) -> str:
        selectors = ctx.target.link_selectors()
        if not selectors:
            raise StrategyFailure("No link selectors configured")

        ctx.ensure_on_page()

        def first_match(channel: BrowserChannel):
            ctx.check_cancelled()
            for sel in selectors:
                found = channel.find_elements(sel)
                if found:
                    return sel, found[0]
            return None

        hit = ctx.channel.wait_until(first_match, ctx.remaining(), poll_interval_s=ELEMENT_POLL_S)
        if hit is None:
            raise StrategyFailure(f"No element matched {len(selectors)} selector(s)")

        selector, element = hit
        ctx.channel.scroll_into_view(element)
        ctx.channel.click(element)
        return f"clicked {selector}"


class DirectNavigationStrategy(Strategy):
    name = "direct_navigation"

    def trigger(self, ctx: StrategyContext) -> str:
        url = ctx.target.document_url
        if not url:
            raise StrategyFailure("No document URL configured")
        try:
            ctx.channel.navigate(url)
        except WebDriverException as e:
            # A navigation that turns into a download can report a load error
            logger.warning(f"[ACQUIRE] Navigation to {url} reported: {e.msg}")
        return f"navigated to {url}"


class ScriptClickStrategy(Strategy):
    name = "script_click"

    def trigger(self, ctx: StrategyContext) -> str:
        if not ctx.target.selectors and not ctx.target.href_contains:
            raise StrategyFailure("No link selectors configured")

        ctx.ensure_on_page()
        how = ctx.channel.execute_script(
            FIND_AND_CLICK_JS,
            list(ctx.target.selectors),
            ctx.target.href_contains,
        )
        if not how:
            raise StrategyFailure("In-page script found no matching link")
        return f"script clicked {how}"


class OutOfBandFetchStrategy(Strategy):
    name = "out_of_band_fetch"

    def trigger(self, ctx: StrategyContext) -> str:
        url = ctx.target.document_url
        if not url:
            raise StrategyFailure("No document URL configured")

        result = fetch_bytes(url, timeout_s=max(1.0, ctx.remaining()))
        if not result.ok:
            raise StrategyFailure(f"Fetch failed: {result.error}")
        if not result.content:
            raise StrategyFailure(f"Fetch returned an empty body ({result.status})")

        ext = ctx.target.fmt.extension
        dest = ctx.download_dir / f"direct_{int(time.time() * 1000)}{ext}"
        _write_complete(dest, result.content)
        served_as = result.filename_from_header
        suffix = f" (served as {served_as})" if served_as else ""
        return f"fetched {result.content_length} bytes to {dest.name}{suffix}"


class DirectorySweepStrategy(Strategy):
    name = "directory_sweep"
    recursive = True

    def trigger(self, ctx: StrategyContext) -> str:
        return f"sweeping {ctx.download_dir}"


class PagePrintStrategy(Strategy):
    """
    Print the target page itself to PDF.

    Not part of the default order: the result is a rendering of the
    page rather than the file the site serves.
    """

    name = "page_print"

    def trigger(self, ctx: StrategyContext) -> str:
        if ctx.target.fmt.extension != PDF.extension:
            raise StrategyFailure(f"Page printing cannot produce {ctx.target.fmt.name}")

        ctx.ensure_on_page()
        ctx.channel.wait_for_document_ready(min(PAGE_READY_TIMEOUT_S, ctx.remaining()))
        ctx.check_cancelled()

        rendered = render_page_pdf(ctx.channel, script_timeout_s=max(1.0, min(HTML2PDF_TIMEOUT_S, ctx.remaining())))
        if rendered is None:
            raise StrategyFailure("Page could not be printed to PDF")

        dest = ctx.download_dir / f"page_{int(time.time() * 1000)}{PDF.extension}"
        _write_complete(dest, rendered.data)
        return f"printed page via {rendered.method} ({len(rendered.data)} bytes) to {dest.name}"


STRATEGY_ORDER: Tuple[str, ...] = (
    SelectorClickStrategy.name,
    DirectNavigationStrategy.name,
    ScriptClickStrategy.name,
    OutOfBandFetchStrategy.name,
    DirectorySweepStrategy.name,
)


def default_strategies(include_page_print: bool = False) -> List[Strategy]:
    strategies: List[Strategy] = [
        SelectorClickStrategy(),
        DirectNavigationStrategy(),
        ScriptClickStrategy(),
        OutOfBandFetchStrategy(),
        DirectorySweepStrategy(),
    ]
    if include_page_print:
        strategies.append(PagePrintStrategy())
    return strategies
