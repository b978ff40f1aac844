"""
Completion Poller: Decide When a Browser Download Is Finished

Browsers expose no dependable "download complete" event, so completion is
detected by polling the download directory:

- Final candidate: a file with the expected extension and non-zero size
- In-progress marker: a file ending in a partial suffix (.crdownload, ...)

Success is declared on the first tick that sees at least one candidate
and no markers. Cancellation is checked while sleeping and always wins
over the timeout.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple
import logging

logger = logging.getLogger(__name__)

DEFAULT_PARTIAL_SUFFIXES: Tuple[str, ...] = (".crdownload", ".part", ".tmp")
SNAPSHOT_EVERY_S = 5.0


class PollStatus(str, Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PollResult:
    """
    Outcome of one wait_for_download call.

    Attributes:
        status: SUCCESS, TIMEOUT or CANCELLED
        path: Newest final candidate on success
        size_bytes: Size of that candidate
        elapsed_s: Time spent waiting
    """
    status: PollStatus
    path: Optional[Path] = None
    size_bytes: int = 0
    elapsed_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == PollStatus.SUCCESS


@dataclass(frozen=True)
class _Entry:
    path: Path
    size: int
    mtime: float


def _list_entries(directory: Path, recursive: bool) -> List[_Entry]:
    """List files with their size and mtime, skipping ones that vanish mid-scan."""
    if not directory.is_dir():
        return []
    try:
        paths: Iterable[Path] = directory.rglob("*") if recursive else directory.iterdir()
        entries = []
        for p in paths:
            try:
                st = p.stat()
            except (FileNotFoundError, NotADirectoryError):
                continue
            if not p.is_file():
                continue
            entries.append(_Entry(path=p, size=st.st_size, mtime=st.st_mtime))
        return entries
    except FileNotFoundError:
        # directory removed while iterating
        return []


def scan_directory(
    directory: Path,
    extension: str,
    partial_suffixes: Sequence[str] = DEFAULT_PARTIAL_SUFFIXES,
    recursive: bool = False,
) -> Tuple[List[_Entry], List[Path]]:
    """
    Take one snapshot of a download directory.

    Returns:
        Tuple of (final candidates, in-progress markers)
    """
    ext = extension.lower()
    suffixes = tuple(s.lower() for s in partial_suffixes)
    candidates: List[_Entry] = []
    markers: List[Path] = []
    for entry in _list_entries(Path(directory), recursive):
        name = entry.path.name.lower()
        if suffixes and name.endswith(suffixes):
            markers.append(entry.path)
        elif name.endswith(ext) and entry.size > 0:
            candidates.append(entry)
    return candidates, markers


def _newest(candidates: List[_Entry]) -> _Entry:
    return max(candidates, key=lambda e: (e.mtime, e.path.name))


def _log_listing(directory: Path, recursive: bool, level: int = logging.DEBUG) -> None:
    entries = _list_entries(directory, recursive)
    listing = ", ".join(f"{e.path.name} ({e.size}b)" for e in entries) or "<empty>"
    logger.log(level, f"[POLL] {directory}: {listing}")


def wait_for_download(
    directory: Path,
    extension: str = ".pdf",
    partial_suffixes: Sequence[str] = DEFAULT_PARTIAL_SUFFIXES,
    timeout_s: float = 30.0,
    poll_interval_s: float = 1.0,
    cancel_event: Optional[threading.Event] = None,
    recursive: bool = False,
) -> PollResult:
    """
    Wait for a completed download in a directory.

    Args:
        directory: Directory the browser downloads into
        extension: Expected file extension, e.g. ".pdf"
        partial_suffixes: Suffixes marking an unfinished download
        timeout_s: Total wait budget
        poll_interval_s: Sleep between ticks
        cancel_event: Cooperative cancellation signal
        recursive: Scan the whole tree instead of the top level

    Returns:
        PollResult. Never raises for timeout or cancellation.
    """
    directory = Path(directory)
    cancel = cancel_event or threading.Event()
    interval = max(0.01, float(poll_interval_s))

    start = time.monotonic()
    deadline = start + max(0.0, float(timeout_s))
    next_snapshot = start + SNAPSHOT_EVERY_S

    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break

        # Last sleep is clipped so timeout lands at expiry
        if cancel.wait(min(interval, remaining)):
            elapsed = time.monotonic() - start
            logger.info(f"[POLL] Cancelled after {elapsed:.1f}s: {directory}")
            return PollResult(status=PollStatus.CANCELLED, elapsed_s=elapsed)

        candidates, markers = scan_directory(directory, extension, partial_suffixes, recursive)
        if candidates and not markers:
            best = _newest(candidates)
            elapsed = time.monotonic() - start
            logger.info(f"[POLL] Download complete after {elapsed:.1f}s: {best.path.name} ({best.size} bytes)")
            return PollResult(
                status=PollStatus.SUCCESS,
                path=best.path,
                size_bytes=best.size,
                elapsed_s=elapsed,
            )

        now = time.monotonic()
        if now >= next_snapshot:
            logger.debug(
                f"[POLL] Waiting {now - start:.0f}s: {len(candidates)} candidate(s), {len(markers)} in progress"
            )
            _log_listing(directory, recursive)
            next_snapshot = now + SNAPSHOT_EVERY_S

    elapsed = time.monotonic() - start
    logger.warning(f"[POLL] Timed out after {elapsed:.1f}s waiting for *{extension} in {directory}")
    _log_listing(directory, recursive, level=logging.INFO)
    return PollResult(status=PollStatus.TIMEOUT, elapsed_s=elapsed)
