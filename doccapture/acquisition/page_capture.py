"""
Page Capture: Render the Current Page as a PDF

For documents that only exist as a rendered page (a confirmation or a
letter shown as HTML) there is nothing to download. The page itself is
printed instead:

1. DevTools Page.printToPDF, when the driver speaks the protocol
2. html2pdf.js injected into the page, as a fallback

The bytes are returned to the caller, which still runs them through
the validator before accepting them.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

from selenium.common.exceptions import WebDriverException

from ..browser.channel import BrowserChannel
from ..errors import ChannelError

logger = logging.getLogger(__name__)

HTML2PDF_URL = "https://cdnjs.cloudflare.com/ajax/libs/html2pdf.js/0.10.1/html2pdf.bundle.min.js"
HTML2PDF_TIMEOUT_S = 30.0

HTML2PDF_JS = """
var libraryUrl = arguments[0];
var callback = arguments[arguments.length - 1];

function reply(payload) { callback(JSON.stringify(payload)); }

function generatePdf() {
    try {
        var opt = {
            margin: 10,
            filename: 'document.pdf',
            image: { type: 'jpeg', quality: 0.98 },
            html2canvas: { scale: 1, logging: false, useCORS: true, allowTaint: true, letterRendering: true },
            jsPDF: { unit: 'mm', format: 'a4', orientation: 'portrait' }
        };
        html2pdf().set(opt).from(document.body).toPdf().get('pdf').then(function(pdf) {
            var reader = new FileReader();
            reader.onloadend = function() { reply({ success: true, data: reader.result.split(',')[1] }); };
            reader.onerror = function() { reply({ success: false, error: 'Failed to convert to base64' }); };
            reader.readAsDataURL(pdf.output('blob'));
        }).catch(function(error) {
            reply({ success: false, error: error.toString() });
        });
    } catch (error) {
        reply({ success: false, error: error.toString() });
    }
}

if (window.html2pdf) {
    generatePdf();
} else {
    var script = document.createElement('script');
    script.src = libraryUrl;
    script.onload = function() { setTimeout(generatePdf, 500); };
    script.onerror = function() { reply({ success: false, error: 'Failed to load html2pdf.js' }); };
    document.head.appendChild(script);
}
"""


@dataclass(frozen=True)
class PageRender:
    """PDF bytes for the current page and how they were produced."""
    data: bytes
    method: str


def _parse_script_reply(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {"success": False, "error": f"unparseable reply {str(raw)[:80]!r}"}
    return parsed if isinstance(parsed, dict) else {}


def render_with_script(channel: BrowserChannel, timeout_s: float = HTML2PDF_TIMEOUT_S) -> Optional[bytes]:
    """Render the page with html2pdf.js. Returns None when the script fails."""
    try:
        raw = channel.execute_async_script(HTML2PDF_JS, HTML2PDF_URL, timeout_s=timeout_s)
    except ChannelError:
        raise
    except WebDriverException as e:
        logger.warning(f"[CAPTURE] html2pdf.js did not answer: {e.msg}")
        return None

    reply = _parse_script_reply(raw)
    if not reply.get("success"):
        logger.warning(f"[CAPTURE] html2pdf.js failed: {reply.get('error', 'no reply')}")
        return None
    try:
        return base64.b64decode(reply.get("data") or "", validate=True) or None
    except (ValueError, TypeError) as e:
        logger.warning(f"[CAPTURE] html2pdf.js returned undecodable data: {e}")
        return None


def render_page_pdf(
    channel: BrowserChannel,
    script_timeout_s: float = HTML2PDF_TIMEOUT_S,
    script_fallback: bool = True,
) -> Optional[PageRender]:
    """
    Print the page currently loaded in the browser.

    Args:
        channel: Live browser channel
        script_timeout_s: Budget for the html2pdf.js fallback
        script_fallback: Try html2pdf.js when printToPDF gives nothing

    Returns:
        PageRender, or None when every method failed

    Raises:
        ChannelError: The browser died while rendering
    """
    data = channel.print_to_pdf()
    if data:
        logger.info(f"[CAPTURE] Page printed via DevTools ({len(data)} bytes)")
        return PageRender(data=data, method="devtools")

    if not script_fallback:
        return None

    logger.info("[CAPTURE] printToPDF unavailable, falling back to html2pdf.js")
    data = render_with_script(channel, script_timeout_s)
    if data:
        logger.info(f"[CAPTURE] Page printed via html2pdf.js ({len(data)} bytes)")
        return PageRender(data=data, method="html2pdf")
    return None
