"""
HTTP Fetcher: Out-of-Band Document Download

Fetches a document URL with plain `requests`, independent of any browser
session: no cookies, no captured headers. This only works when the
resource does not need live session state, which is why it runs as a
late fallback strategy rather than first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional
import logging
import re

import requests

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


@dataclass(frozen=True)
class HttpFetchResult:
    """
    Result of an HTTP fetch operation.

    Attributes:
        ok: True if the request succeeded (2xx status)
        status: HTTP status code, 0 when no response was received
        headers: Response headers
        content: Response body as bytes
        error: Error message if request failed
        final_url: Final URL after redirects
    """
    ok: bool
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    content: bytes = b""
    error: Optional[str] = None
    final_url: Optional[str] = None

    @property
    def content_type(self) -> Optional[str]:
        """Get the Content-Type header if present."""
        return self.headers.get("Content-Type") or self.headers.get("content-type")

    @property
    def content_length(self) -> int:
        return len(self.content)

    @property
    def filename_from_header(self) -> Optional[str]:
        """
        Extract filename from Content-Disposition header if present.

        Examples:
            Content-Disposition: attachment; filename="report.pdf"
            Content-Disposition: attachment; filename*=UTF-8''report%20name.pdf
        """
        cd = self.headers.get("Content-Disposition") or self.headers.get("content-disposition")
        if not cd:
            return None
        match = re.search(r'filename[*]?=(?:UTF-8\'\')?["\']?([^"\';\s]+)["\']?', cd)
        if match:
            return match.group(1)
        return None


def _failed(error: str) -> HttpFetchResult:
    return HttpFetchResult(ok=False, status=0, error=error)


def fetch_bytes(
    url: str,
    timeout_s: float = 30,
    allow_redirects: bool = True,
    verify_ssl: bool = True,
    user_agent: str = DEFAULT_USER_AGENT,
) -> HttpFetchResult:
    """
    GET a URL without browser session state.

    Args:
        url: URL to fetch
        timeout_s: Request timeout in seconds
        allow_redirects: Whether to follow redirects
        verify_ssl: Whether to verify SSL certificates
        user_agent: User-Agent header to send

    Returns:
        HttpFetchResult with response data or error information
    """
    logger.info(f"[HTTP] Fetching: {url}")

    try:
        r = requests.get(
            url,
            headers={"User-Agent": user_agent, "Accept": "application/pdf,*/*"},
            timeout=timeout_s,
            allow_redirects=allow_redirects,
            verify=verify_ssl,
        )
    except requests.exceptions.Timeout:
        logger.error(f"[HTTP] Timeout after {timeout_s}s: {url}")
        return _failed(f"Timeout after {timeout_s}s")
    except requests.exceptions.SSLError as e:
        logger.error(f"[HTTP] SSL Error: {e}")
        return _failed(f"SSL Error: {e}")
    except requests.exceptions.ConnectionError as e:
        logger.error(f"[HTTP] Connection Error: {e}")
        return _failed(f"Connection Error: {e}")
    except requests.exceptions.RequestException as e:
        logger.error(f"[HTTP] Request failed: {e}")
        return _failed(str(e))

    result = HttpFetchResult(
        ok=bool(r.ok),
        status=int(r.status_code),
        headers={k: v for k, v in r.headers.items()},
        content=r.content or b"",
        error=None if r.ok else f"HTTP {r.status_code}",
        final_url=r.url if r.url != url else None,
    )

    if result.ok:
        logger.info(f"[HTTP] Success: {result.status}, {result.content_length} bytes")
    else:
        logger.warning(f"[HTTP] Failed: {result.status} - {url}")
    return result
