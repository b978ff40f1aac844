"""
Validator: Format Signature Checks for Captured Files

A file found by the poller is only accepted once its bytes look like the
expected document type. A buffer is valid when it is at least
`min_size` bytes long and either starts with the 4-byte magic signature
or carries the short text marker within its first 100 bytes.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union
import logging

logger = logging.getLogger(__name__)

HEADER_WINDOW = 100


@dataclass(frozen=True)
class DocumentFormat:
    """
    Expected document type.

    Attributes:
        name: Human-readable format name
        extension: File extension including the dot (".pdf")
        magic: Leading byte signature
        marker: Text marker that may appear in the header window
        min_size: Smallest plausible file size in bytes
        content_type: MIME type used when storing the artifact
    """
    name: str
    extension: str
    magic: bytes
    marker: bytes
    min_size: int = 100
    content_type: str = "application/octet-stream"


PDF = DocumentFormat(
    name="pdf",
    extension=".pdf",
    magic=b"%PDF",
    marker=b"%PDF-",
    min_size=100,
    content_type="application/pdf",
)


def is_valid_document(data: bytes, fmt: DocumentFormat = PDF) -> bool:
    """Check size and signature of a document buffer."""
    if data is None or len(data) < fmt.min_size:
        return False
    if data[:len(fmt.magic)] == fmt.magic:
        return True
    return fmt.marker in data[:HEADER_WINDOW]


def validate_file(path: Union[str, Path], fmt: DocumentFormat = PDF) -> Tuple[bool, Optional[str]]:
    """
    Validate a file on disk.

    Only the header window is read, plus a size check from stat.

    Returns:
        Tuple of (valid, reason). reason is None when valid.
    """
    p = Path(path)
    try:
        size = p.stat().st_size
        if size < fmt.min_size:
            return False, f"File too small: {size} bytes (minimum {fmt.min_size})"
        with p.open("rb") as fh:
            head = fh.read(max(HEADER_WINDOW, fmt.min_size))
    except FileNotFoundError:
        return False, f"File disappeared: {p.name}"
    except OSError as e:
        logger.warning(f"[VALIDATE] Could not read {p}: {e}")
        return False, f"Unreadable file: {e}"

    # head is truncated, so check the signature directly instead of the length
    if head[:len(fmt.magic)] == fmt.magic or fmt.marker in head[:HEADER_WINDOW]:
        return True, None
    return False, f"Missing {fmt.name} signature"
