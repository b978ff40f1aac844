"""
Session Provisioner: One Isolated Browser per Unit of Work

Each unit of work gets its own:
- Profile directory:   <root>/profiles/chrome-profile-<work>-<suffix>/
- Download directory:  <root>/downloads/<work>-<suffix>/
- Captured directory:  <root>/captured/<work>-<suffix>/
- Driver log:          <root>/logs/chromedriver-<work>-<suffix>-<pid>.log
- Remote-debugging port (headless mode), reserved in-process until close

The suffix is epoch milliseconds plus random hex, so two workers
provisioning the same work id at the same instant still never collide.

Browser configuration suppresses automation fingerprints and forces PDFs
to download instead of opening in the built-in viewer.
"""

from __future__ import annotations

import os
import random
import re
import socket
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Optional, Set, Tuple
import logging

from selenium import webdriver
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service

from ..cleanup import purge_stale_artifacts, remove_tree_quietly
from ..config import DEFAULT_BROWSER_BINARY, DEFAULT_DRIVER_BINARY, DeploymentMode, EngineSettings
from ..diagnostics import collect_diagnostics
from ..errors import ChannelError, ProvisioningError
from .channel import BrowserChannel

logger = logging.getLogger(__name__)

DriverFactory = Callable[..., Any]

MAX_LAUNCH_ATTEMPTS = 3
MAX_PORT_PICKS = 25
WINDOW_SIZE = "1920,1080"

_PORT_CONFLICT_HINTS = ("address already in use", "devtoolsactiveport")


def sanitize_work_id(work_id: str) -> str:
    """Reduce a work id to [A-Za-z0-9_-] for use in paths."""
    cleaned = re.sub(r"[^A-Za-z0-9_-]+", "_", str(work_id or "")).strip("_")
    return cleaned[:64] or "work"


def unique_suffix() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


class PortAllocator:
    """
    Random remote-debugging ports with in-process reservation.

    A port is handed out only if nothing else in this process holds it
    and it can be bound on the loopback interface right now.
    """

    def __init__(self, port_range: Tuple[int, int] = (9223, 9998)):
        self.port_range = port_range
        self._reserved: Set[int] = set()
        self._lock = threading.Lock()

    @staticmethod
    def is_free(port: int) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind(("127.0.0.1", port))
                return True
            except OSError:
                return False

    def reserve(self, port_range: Optional[Tuple[int, int]] = None, attempts: int = MAX_PORT_PICKS) -> int:
        low, high = port_range or self.port_range
        with self._lock:
            for _ in range(attempts):
                port = random.randint(low, high)
                if port in self._reserved:
                    continue
                if not self.is_free(port):
                    logger.debug(f"[SESSION] Port {port} busy, picking another")
                    continue
                self._reserved.add(port)
                return port
        raise ProvisioningError(f"No free remote-debugging port in {low}-{high} after {attempts} picks")

    def release(self, port: Optional[int]) -> None:
        if port is None:
            return
        with self._lock:
            self._reserved.discard(port)

    @property
    def reserved(self) -> Set[int]:
        with self._lock:
            return set(self._reserved)


_default_ports = PortAllocator()


@dataclass(frozen=True)
class SessionPaths:
    """Per-session filesystem locations."""
    profile_dir: Path
    download_dir: Path
    captured_dir: Path
    log_path: Path

    def create(self) -> None:
        for d in (self.profile_dir, self.download_dir, self.captured_dir, self.log_path.parent):
            d.mkdir(parents=True, exist_ok=True)

    def remove(self) -> None:
        remove_tree_quietly(self.profile_dir)
        remove_tree_quietly(self.download_dir)

    def remove_captured_if_empty(self) -> bool:
        try:
            self.captured_dir.rmdir()
            return True
        except OSError:
            # missing, or still holds an accepted artifact
            return False


def allocate_paths(base_dir: Path, work_id: str) -> SessionPaths:
    """Allocate unique, not-yet-existing paths for one session."""
    base = Path(base_dir).resolve()
    work = sanitize_work_id(work_id)
    while True:
        tag = f"{work}-{unique_suffix()}"
        paths = SessionPaths(
            profile_dir=base / "profiles" / f"chrome-profile-{tag}",
            download_dir=base / "downloads" / tag,
            captured_dir=base / "captured" / tag,
            log_path=base / "logs" / f"chromedriver-{tag}-{os.getpid()}.log",
        )
        if not paths.download_dir.exists() and not paths.profile_dir.exists():
            return paths


def ensure_writable(directory: Path) -> None:
    """Write and delete a probe file, raising ProvisioningError if the directory is not usable."""
    probe = Path(directory) / f".write-probe-{uuid.uuid4().hex[:8]}"
    try:
        probe.write_bytes(b"ok")
        probe.unlink()
    except OSError as e:
        raise ProvisioningError(f"Download directory is not writable: {directory} ({e})", cause=e) from e


def build_options(settings: EngineSettings, paths: SessionPaths, port: Optional[int]) -> Options:
    """
    Create Chrome options for one session.

    Args:
        settings: Engine settings (mode, binary override)
        paths: Allocated session paths
        port: Remote-debugging port, headless mode only

    Returns:
        Configured Options instance
    """
    opts = Options()
    opts.add_argument("--no-sandbox")
    opts.add_argument("--disable-dev-shm-usage")
    opts.add_argument("--disable-gpu")
    opts.add_argument("--disable-blink-features=AutomationControlled")
    opts.add_argument("--disable-infobars")
    opts.add_argument("--disable-popup-blocking")
    opts.add_argument(f"--window-size={WINDOW_SIZE}")
    opts.add_argument(f"--user-data-dir={paths.profile_dir}")
    opts.add_experimental_option("excludeSwitches", ["enable-automation"])
    opts.add_experimental_option("useAutomationExtension", False)

    if settings.mode == DeploymentMode.HEADLESS:
        if settings.browser_binary:
            opts.binary_location = settings.browser_binary
        opts.add_argument("--headless=new")
        if port is not None:
            opts.add_argument(f"--remote-debugging-port={port}")

    # Download PDFs instead of opening them in the viewer
    prefs = {
        "download.default_directory": str(paths.download_dir),
        "download.prompt_for_download": False,
        "download.directory_upgrade": True,
        "plugins.always_open_pdf_externally": True,
        "profile.default_content_setting_values.automatic_downloads": 1,
        "safebrowsing.enabled": True,
    }
    opts.add_experimental_option("prefs", prefs)
    opts.set_capability("goog:loggingPrefs", {"browser": "ALL"})
    return opts


def build_service(settings: EngineSettings, paths: SessionPaths) -> Service:
    return Service(
        executable_path=settings.driver_binary,
        log_output=str(paths.log_path),
        service_args=["--verbose"],
    )


def _looks_like_port_conflict(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return any(hint in msg for hint in _PORT_CONFLICT_HINTS)


@dataclass
class BrowserSession:
    """
    A live browser owned by exactly one unit of work.

    close() terminates the browser, releases the port and removes the
    profile and download directories. It runs once; later calls are no-ops.
    Accepted artifacts in captured_dir and the driver log are kept; an
    empty captured_dir is removed.
    """
    work_id: str
    mode: DeploymentMode
    channel: BrowserChannel
    paths: SessionPaths
    port: Optional[int] = None
    allocator: Optional[PortAllocator] = None
    _closed: bool = field(default=False, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def download_dir(self) -> Path:
        return self.paths.download_dir

    @property
    def profile_dir(self) -> Path:
        return self.paths.profile_dir

    @property
    def captured_dir(self) -> Path:
        return self.paths.captured_dir

    @property
    def log_path(self) -> Path:
        return self.paths.log_path

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> bool:
        """Tear down the session. Returns True only for the call that did the work."""
        with self._lock:
            if self._closed:
                return False
            self._closed = True

        logger.info(f"[SESSION] Closing session for {self.work_id}")
        try:
            self.channel.quit()
        finally:
            if self.allocator is not None:
                self.allocator.release(self.port)
            self.paths.remove()
            self.paths.remove_captured_if_empty()
        return True

    def __enter__(self) -> "BrowserSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class SessionProvisioner:
    """
    Builds BrowserSession instances.

    Usage:
        provisioner = SessionProvisioner(EngineSettings.from_env())
        session = provisioner.provision("case-123")
        try:
            ...
        finally:
            session.close()
    """

    def __init__(
        self,
        settings: EngineSettings,
        driver_factory: Optional[DriverFactory] = None,
        ports: Optional[PortAllocator] = None,
    ):
        self.settings = settings
        self.driver_factory = driver_factory or webdriver.Chrome
        self.ports = ports or _default_ports

    def provision(self, work_id: str, mode: Optional[DeploymentMode] = None) -> BrowserSession:
        """
        Launch a browser for one unit of work.

        Args:
            work_id: Unit-of-work identifier (sanitised for paths)
            mode: Overrides the configured deployment mode

        Returns:
            Live BrowserSession

        Raises:
            ProvisioningError: Directory, port or process launch failure
        """
        settings = self.settings
        mode = mode or settings.mode
        base = Path(settings.base_dir)

        purge_stale_artifacts(base, settings.retention_s)

        paths = allocate_paths(base, work_id)
        try:
            paths.create()
            ensure_writable(paths.download_dir)
        except OSError as e:
            paths.remove()
            raise ProvisioningError(f"Could not create session directories under {base}: {e}", cause=e) from e
        except ProvisioningError:
            paths.remove()
            raise

        logger.info(f"[SESSION] Provisioning {mode.value} browser for {work_id}: downloads={paths.download_dir}")

        effective = settings if mode == settings.mode else _with_mode(settings, mode)
        driver, port = self._launch(effective, paths)

        channel = BrowserChannel(driver)
        session = BrowserSession(
            work_id=work_id,
            mode=mode,
            channel=channel,
            paths=paths,
            port=port,
            allocator=self.ports,
        )

        try:
            channel.install_dialog_overrides()
            channel.set_download_behavior(str(paths.download_dir))
        except ChannelError as e:
            diagnostics = collect_diagnostics(effective, paths.log_path)
            session.close()
            remove_tree_quietly(paths.captured_dir)
            raise ProvisioningError(f"Browser died during session setup: {e}", cause=e, diagnostics=diagnostics) from e

        logger.info(f"[SESSION] Ready: work={work_id} port={port} profile={paths.profile_dir.name}")
        return session

    def _launch(self, settings: EngineSettings, paths: SessionPaths) -> Tuple[Any, Optional[int]]:
        headless = settings.mode == DeploymentMode.HEADLESS
        last_error: Optional[BaseException] = None

        for attempt in range(1, MAX_LAUNCH_ATTEMPTS + 1):
            port = None
            try:
                if headless:
                    port = self.ports.reserve(settings.port_range)
            except ProvisioningError as e:
                last_error = e
                break

            try:
                driver = self.driver_factory(
                    options=build_options(settings, paths, port),
                    service=build_service(settings, paths),
                )
                return driver, port
            except Exception as e:
                self.ports.release(port)
                last_error = e
                if headless and _looks_like_port_conflict(e) and attempt < MAX_LAUNCH_ATTEMPTS:
                    logger.warning(f"[SESSION] Launch on port {port} failed, retrying ({attempt}/{MAX_LAUNCH_ATTEMPTS}): {e}")
                    continue
                break

        logger.error(f"[SESSION] Browser launch failed: {last_error}")
        diagnostics = collect_diagnostics(settings, paths.log_path)
        diagnostics.log_summary()
        paths.remove()
        remove_tree_quietly(paths.captured_dir)
        raise ProvisioningError(
            f"Browser launch failed: {last_error}",
            cause=last_error,
            diagnostics=diagnostics,
        ) from last_error


def _with_mode(settings: EngineSettings, mode: DeploymentMode) -> EngineSettings:
    if mode == DeploymentMode.HEADLESS:
        return replace(
            settings,
            mode=mode,
            browser_binary=settings.browser_binary or DEFAULT_BROWSER_BINARY,
            driver_binary=settings.driver_binary or DEFAULT_DRIVER_BINARY,
        )
    return replace(settings, mode=mode)
