"""
Cleanup: Best-Effort Filesystem Housekeeping

Every function here swallows and logs its own errors. A browser may
rename or delete a partial download at any moment, so "already gone"
is never worth a log line, and no cleanup failure ever reaches the
caller.
"""

from __future__ import annotations

import shutil
import time
from pathlib import Path
from typing import Optional, Union
import logging

logger = logging.getLogger(__name__)

PROFILE_GLOB = "chrome-profile-*"
DRIVER_LOG_GLOB = "chromedriver-*.log"
CAPTURED_GLOB = "*"

PathLike = Union[str, Path]


def remove_file_quietly(path: PathLike) -> bool:
    """Delete one file. Returns True if it was deleted by this call."""
    try:
        Path(path).unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"[CLEANUP] Could not delete file {path}: {e}")
        return False


def remove_tree_quietly(path: PathLike) -> bool:
    """Delete a directory tree. Returns True if it was deleted by this call."""
    p = Path(path)
    try:
        shutil.rmtree(p)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"[CLEANUP] Could not delete directory {p}: {e}")
        return False


def clear_directory(path: PathLike) -> int:
    """
    Delete the top-level files of a directory, leaving subdirectories.

    Returns:
        Number of files removed
    """
    p = Path(path)
    removed = 0
    try:
        items = list(p.iterdir())
    except FileNotFoundError:
        return 0
    except OSError as e:
        logger.warning(f"[CLEANUP] Could not list {p}: {e}")
        return 0

    for item in items:
        try:
            if item.is_dir():
                continue
        except OSError:
            continue
        if remove_file_quietly(item):
            removed += 1

    if removed:
        logger.debug(f"[CLEANUP] Cleared {removed} file(s) from {p}")
    return removed


def _age_s(path: Path, now: float) -> Optional[float]:
    try:
        return now - path.stat().st_mtime
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning(f"[CLEANUP] Could not stat {path}: {e}")
        return None


def purge_stale_artifacts(root: PathLike, retention_s: float = 3600, now: Optional[float] = None) -> int:
    """
    Remove old browser profiles, captured directories and driver logs
    under a storage root.

    Looks at `<root>/profiles/chrome-profile-*` directories,
    `<root>/captured/*` directories and `<root>/logs/chromedriver-*.log`
    files; anything whose mtime is older than `retention_s` is deleted.
    A captured directory the caller has not collected within the window
    is treated as abandoned.

    Args:
        root: Base storage root shared by all sessions
        retention_s: Age threshold in seconds
        now: Reference time (epoch seconds), defaults to time.time()

    Returns:
        Number of items removed
    """
    base = Path(root)
    now = time.time() if now is None else now
    removed = 0

    profiles_dir = base / "profiles"
    captured_root = base / "captured"
    logs_dir = base / "logs"

    try:
        profiles = sorted(profiles_dir.glob(PROFILE_GLOB)) if profiles_dir.is_dir() else []
        captured = sorted(captured_root.glob(CAPTURED_GLOB)) if captured_root.is_dir() else []
        logs = sorted(logs_dir.glob(DRIVER_LOG_GLOB)) if logs_dir.is_dir() else []
    except OSError as e:
        logger.warning(f"[CLEANUP] Could not scan {base}: {e}")
        return 0

    for profile in profiles:
        age = _age_s(profile, now)
        if age is None or age <= retention_s:
            continue
        if profile.is_dir() and remove_tree_quietly(profile):
            removed += 1
            logger.info(f"[CLEANUP] Removed stale profile {profile.name} ({age / 60:.0f} min old)")

    for capture_dir in captured:
        age = _age_s(capture_dir, now)
        if age is None or age <= retention_s:
            continue
        if capture_dir.is_dir() and remove_tree_quietly(capture_dir):
            removed += 1
            logger.info(f"[CLEANUP] Removed abandoned captured directory {capture_dir.name}")

    for log_file in logs:
        age = _age_s(log_file, now)
        if age is None or age <= retention_s:
            continue
        if remove_file_quietly(log_file):
            removed += 1
            logger.info(f"[CLEANUP] Removed stale driver log {log_file.name}")

    if removed:
        logger.info(f"[CLEANUP] Purged {removed} stale item(s) under {base}")
    return removed
