"""
Diagnostics: Environment Snapshot for Failed Units of Work

Collected when provisioning fails or acquisition is exhausted, so a
failure report can show at a glance whether the browser binary, the
driver binary, memory or the page itself was to blame:

- Presence of each browser/driver binary in the fixed search lists
- CHROME_BIN / CHROMEDRIVER_PATH values and the binaries' --version output
- Tail of the per-session driver log
- Working directory, container detection, available memory and process RSS
- Browser console entries, when the session is still alive
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional
import logging

import psutil

from .config import BROWSER_SEARCH_PATHS, DRIVER_SEARCH_PATHS, EngineSettings, running_in_container

if TYPE_CHECKING:
    from .browser.channel import BrowserChannel

logger = logging.getLogger(__name__)

LOG_TAIL_BYTES = 16 * 1024
MAX_BROWSER_LOG_ENTRIES = 50


@dataclass(frozen=True)
class DiagnosticBundle:
    """
    Snapshot of the worker environment at failure time.

    Attributes:
        collected_at: ISO 8601 UTC timestamp
        mode: Deployment mode the session was provisioned in
        binaries: Path -> exists, for every searched browser/driver path
        env: CHROME_BIN / CHROMEDRIVER_PATH as seen by the process
        versions: Path -> --version output for configured binaries
        driver_log_path: Per-session driver log, if one was allocated
        driver_log_tail: Last LOG_TAIL_BYTES of that log
        cwd: Process working directory
        in_container: Container detection result
        available_memory_mb: System memory available
        process_rss_mb: Resident set size of this process
        browser_logs: Console entries from a live session
    """
    collected_at: str
    mode: str
    binaries: Dict[str, bool] = field(default_factory=dict)
    env: Dict[str, Optional[str]] = field(default_factory=dict)
    versions: Dict[str, str] = field(default_factory=dict)
    driver_log_path: Optional[str] = None
    driver_log_tail: str = ""
    cwd: str = ""
    in_container: bool = False
    available_memory_mb: Optional[float] = None
    process_rss_mb: Optional[float] = None
    browser_logs: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "collected_at": self.collected_at,
            "mode": self.mode,
            "binaries": dict(self.binaries),
            "env": dict(self.env),
            "versions": dict(self.versions),
            "driver_log_path": self.driver_log_path,
            "driver_log_tail": self.driver_log_tail,
            "cwd": self.cwd,
            "in_container": self.in_container,
            "available_memory_mb": self.available_memory_mb,
            "process_rss_mb": self.process_rss_mb,
            "browser_logs": list(self.browser_logs),
        }

    def log_summary(self) -> None:
        found = [p for p, ok in self.binaries.items() if ok]
        logger.error(
            f"[DIAG] mode={self.mode} container={self.in_container} "
            f"binaries_found={found or 'none'} "
            f"mem_available={self.available_memory_mb}MB rss={self.process_rss_mb}MB"
        )
        for path, version in self.versions.items():
            logger.error(f"[DIAG] {path}: {version}")
        if self.driver_log_tail:
            logger.error(f"[DIAG] Driver log tail ({self.driver_log_path}):\n{self.driver_log_tail}")
        for entry in self.browser_logs[-10:]:
            logger.error(f"[DIAG] Browser console: {entry.get('level')} {entry.get('message')}")


def read_log_tail(path: Optional[Path], max_bytes: int = LOG_TAIL_BYTES) -> str:
    if path is None:
        return ""
    try:
        with Path(path).open("rb") as fh:
            fh.seek(0, os.SEEK_END)
            size = fh.tell()
            fh.seek(max(0, size - max_bytes))
            return fh.read().decode("utf-8", errors="replace")
    except FileNotFoundError:
        return ""
    except OSError as e:
        return f"<unreadable: {e}>"


def binary_version(path: str, timeout_s: float = 5.0) -> str:
    """Run `<binary> --version`, returning its output or the failure reason."""
    try:
        proc = subprocess.run(
            [path, "--version"],
            capture_output=True,
            text=True,
            timeout=timeout_s,
            check=False,
        )
        return (proc.stdout or proc.stderr or "").strip() or f"exit code {proc.returncode}"
    except (OSError, subprocess.SubprocessError) as e:
        return f"<failed: {e}>"


def _memory_snapshot() -> Dict[str, Optional[float]]:
    try:
        available = psutil.virtual_memory().available / (1024 * 1024)
        rss = psutil.Process(os.getpid()).memory_info().rss / (1024 * 1024)
        return {"available": round(available, 1), "rss": round(rss, 1)}
    except (psutil.Error, OSError) as e:
        logger.warning(f"[DIAG] Memory snapshot failed: {e}")
        return {"available": None, "rss": None}


def collect_diagnostics(
    settings: EngineSettings,
    log_path: Optional[Path] = None,
    channel: Optional["BrowserChannel"] = None,
    probe_versions: bool = True,
) -> DiagnosticBundle:
    """
    Gather an environment snapshot. Never raises.

    Args:
        settings: Active engine settings (mode and configured binaries)
        log_path: Per-session driver log to tail
        channel: Live channel to pull browser console entries from
        probe_versions: Run --version on configured binaries that exist

    Returns:
        DiagnosticBundle
    """
    searched = list(BROWSER_SEARCH_PATHS) + list(DRIVER_SEARCH_PATHS)
    for configured in (settings.browser_binary, settings.driver_binary):
        if configured and configured not in searched:
            searched.append(configured)
    binaries = {path: os.path.exists(path) for path in searched}

    versions: Dict[str, str] = {}
    if probe_versions:
        for configured in (settings.browser_binary, settings.driver_binary):
            if configured and binaries.get(configured):
                versions[configured] = binary_version(configured)

    browser_logs: List[Dict[str, Any]] = []
    if channel is not None:
        try:
            browser_logs = channel.browser_logs()[-MAX_BROWSER_LOG_ENTRIES:]
        except Exception as e:
            logger.debug(f"[DIAG] Browser logs unavailable: {e}")

    mem = _memory_snapshot()
    bundle = DiagnosticBundle(
        collected_at=datetime.now(timezone.utc).isoformat(),
        mode=settings.mode.value,
        binaries=binaries,
        env={
            "CHROME_BIN": os.environ.get("CHROME_BIN"),
            "CHROMEDRIVER_PATH": os.environ.get("CHROMEDRIVER_PATH"),
        },
        versions=versions,
        driver_log_path=str(log_path) if log_path else None,
        driver_log_tail=read_log_tail(log_path),
        cwd=os.getcwd(),
        in_container=running_in_container(),
        available_memory_mb=mem["available"],
        process_rss_mb=mem["rss"],
        browser_logs=browser_logs,
    )
    return bundle
