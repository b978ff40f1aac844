"""
Configuration: Engine Settings from Environment Variables

All knobs are read from the environment (optionally populated from a .env
file by the entry points). Nothing here holds credentials.

Environment variables:
- DOCCAPTURE_MODE: "interactive" or "headless" (default: headless in containers)
- DOCCAPTURE_BASE_DIR: storage root for profiles, downloads and driver logs
- CHROME_BIN / CHROMEDRIVER_PATH: binary overrides for headless mode
- DOCCAPTURE_STRATEGY_TIMEOUT_S, DOCCAPTURE_POLL_INTERVAL_S
- DOCCAPTURE_RETENTION_S: age after which stale profiles/logs are purged
- DOCCAPTURE_PORT_MIN / DOCCAPTURE_PORT_MAX: remote-debugging port range
- DOCCAPTURE_STOP_ON_FIRST_SUCCESS, DOCCAPTURE_SELECTION_POLICY
- DOCCAPTURE_PAGE_PRINT_FALLBACK: append the page-print strategy
- DOCCAPTURE_ARTIFACT_DIR: optional local artifact store root
- DOCCAPTURE_LOG_DIR: directory for rotating log files
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class DeploymentMode(str, Enum):
    INTERACTIVE = "interactive"
    HEADLESS = "headless"


class SelectionPolicy(str, Enum):
    FIRST_SUCCESS = "first_success"
    LARGEST = "largest"


# Ordered search lists used for diagnostics
BROWSER_SEARCH_PATHS: Tuple[str, ...] = (
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/bin/google-chrome",
    "/opt/google/chrome/chrome",
)
DRIVER_SEARCH_PATHS: Tuple[str, ...] = (
    "/usr/local/bin/chromedriver",
    "/usr/bin/chromedriver",
    "/opt/chromedriver",
    "./chromedriver",
)

DEFAULT_BROWSER_BINARY = "/usr/bin/chromium"
DEFAULT_DRIVER_BINARY = "/usr/bin/chromedriver"
DEFAULT_RETENTION_S = 3600
DEFAULT_PORT_RANGE = (9223, 9998)


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.environ.get(name, "").strip()
    return value or default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"[CONFIG] Ignoring non-numeric {name}={value!r}")
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").strip().lower()
    if not value:
        return default
    return value in ("1", "true", "yes", "on")


def running_in_container() -> bool:
    """Detect a containerized worker (Docker, Kubernetes)."""
    return (
        os.environ.get("CONTAINER_ENV", "").lower() == "true"
        or bool(os.environ.get("KUBERNETES_SERVICE_HOST"))
        or Path("/.dockerenv").exists()
    )


def detect_mode() -> DeploymentMode:
    """Resolve the deployment mode from DOCCAPTURE_MODE or the environment."""
    raw = _env_str("DOCCAPTURE_MODE")
    if raw:
        try:
            return DeploymentMode(raw.lower())
        except ValueError:
            logger.warning(f"[CONFIG] Unknown DOCCAPTURE_MODE={raw!r}, auto-detecting")
    return DeploymentMode.HEADLESS if running_in_container() else DeploymentMode.INTERACTIVE


@dataclass(frozen=True)
class EngineSettings:
    """
    Resolved settings for provisioning, polling and cleanup.

    Attributes:
        mode: Interactive workstation or headless container
        base_dir: Root under which per-session directories are allocated
        browser_binary: Browser executable used in headless mode
        driver_binary: Driver executable; None lets Selenium resolve one
        strategy_timeout_s: Wait budget for each strategy
        poll_interval_s: Completion poller tick
        retention_s: Age after which stale profiles and logs are purged
        port_range: Inclusive remote-debugging port range
        stop_on_first_success: Short-circuit after the first valid artifact
        selection_policy: How the final artifact is chosen among successes
        page_print_fallback: Print the page itself when nothing else worked
        artifact_dir: Optional local artifact store root
        log_dir: Directory for rotating log files
    """
    mode: DeploymentMode = DeploymentMode.INTERACTIVE
    base_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "doccapture")
    browser_binary: Optional[str] = None
    driver_binary: Optional[str] = None
    strategy_timeout_s: float = 30.0
    poll_interval_s: float = 1.0
    retention_s: float = DEFAULT_RETENTION_S
    port_range: Tuple[int, int] = DEFAULT_PORT_RANGE
    stop_on_first_success: bool = True
    selection_policy: SelectionPolicy = SelectionPolicy.FIRST_SUCCESS
    page_print_fallback: bool = False
    artifact_dir: Optional[Path] = None
    log_dir: Path = Path("logs")

    @property
    def headless(self) -> bool:
        return self.mode == DeploymentMode.HEADLESS

    @staticmethod
    def from_env() -> "EngineSettings":
        """Build settings from environment variables."""
        mode = detect_mode()
        headless = mode == DeploymentMode.HEADLESS

        base_dir = Path(_env_str("DOCCAPTURE_BASE_DIR", str(Path(tempfile.gettempdir()) / "doccapture")))
        port_min = _env_int("DOCCAPTURE_PORT_MIN", DEFAULT_PORT_RANGE[0])
        port_max = _env_int("DOCCAPTURE_PORT_MAX", DEFAULT_PORT_RANGE[1])
        if port_min > port_max:
            logger.warning(f"[CONFIG] Port range {port_min}-{port_max} is inverted, using defaults")
            port_min, port_max = DEFAULT_PORT_RANGE

        policy_raw = (_env_str("DOCCAPTURE_SELECTION_POLICY") or SelectionPolicy.FIRST_SUCCESS.value).lower()
        try:
            policy = SelectionPolicy(policy_raw)
        except ValueError:
            logger.warning(f"[CONFIG] Unknown selection policy {policy_raw!r}, using first_success")
            policy = SelectionPolicy.FIRST_SUCCESS

        artifact_dir = _env_str("DOCCAPTURE_ARTIFACT_DIR")

        return EngineSettings(
            mode=mode,
            base_dir=base_dir,
            browser_binary=_env_str("CHROME_BIN", DEFAULT_BROWSER_BINARY if headless else None),
            driver_binary=_env_str("CHROMEDRIVER_PATH", DEFAULT_DRIVER_BINARY if headless else None),
            strategy_timeout_s=max(1.0, _env_float("DOCCAPTURE_STRATEGY_TIMEOUT_S", 30.0)),
            poll_interval_s=max(0.05, _env_float("DOCCAPTURE_POLL_INTERVAL_S", 1.0)),
            retention_s=max(0.0, _env_float("DOCCAPTURE_RETENTION_S", DEFAULT_RETENTION_S)),
            port_range=(port_min, port_max),
            stop_on_first_success=_env_bool("DOCCAPTURE_STOP_ON_FIRST_SUCCESS", True),
            selection_policy=policy,
            page_print_fallback=_env_bool("DOCCAPTURE_PAGE_PRINT_FALLBACK", False),
            artifact_dir=Path(artifact_dir) if artifact_dir else None,
            log_dir=Path(_env_str("DOCCAPTURE_LOG_DIR", "logs")),
        )
