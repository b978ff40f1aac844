"""
Shared fixtures: fake drivers, fake sessions and fast settings.

Nothing here starts a real browser. Drivers are MagicMocks specced on
Selenium's ChromiumDriver so DevTools capability checks still pass.
"""

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from selenium.webdriver.chromium.webdriver import ChromiumDriver

from doccapture.browser.channel import BrowserChannel
from doccapture.config import DeploymentMode, EngineSettings


def make_pdf(size: int = 1024) -> bytes:
    """Bytes that pass PDF signature validation."""
    header = b"%PDF-1.7\n%\xe2\xe3\xcf\xd3\n"
    return header + b"0" * max(0, size - len(header))


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of settings."""
    for name in (
        "DOCCAPTURE_MODE",
        "DOCCAPTURE_BASE_DIR",
        "DOCCAPTURE_STRATEGY_TIMEOUT_S",
        "DOCCAPTURE_POLL_INTERVAL_S",
        "DOCCAPTURE_RETENTION_S",
        "DOCCAPTURE_PORT_MIN",
        "DOCCAPTURE_PORT_MAX",
        "DOCCAPTURE_STOP_ON_FIRST_SUCCESS",
        "DOCCAPTURE_SELECTION_POLICY",
        "DOCCAPTURE_ARTIFACT_DIR",
        "DOCCAPTURE_LOG_DIR",
        "CHROME_BIN",
        "CHROMEDRIVER_PATH",
        "CONTAINER_ENV",
        "KUBERNETES_SERVICE_HOST",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings(tmp_path):
    """Interactive settings with short waits under a temp root."""
    return EngineSettings(
        mode=DeploymentMode.INTERACTIVE,
        base_dir=tmp_path / "root",
        strategy_timeout_s=1.0,
        poll_interval_s=0.05,
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def fake_driver():
    driver = MagicMock(spec=ChromiumDriver)
    driver.current_url = "about:blank"
    driver.find_elements.return_value = []
    driver.execute_cdp_cmd.return_value = {}
    driver.execute_script.return_value = None
    driver.get_log = MagicMock(return_value=[])
    return driver


@pytest.fixture
def fake_session(tmp_path, fake_driver):
    """Session stand-in with real directories and a mocked channel."""
    download_dir = tmp_path / "downloads" / "case-1"
    captured_dir = tmp_path / "captured" / "case-1"
    download_dir.mkdir(parents=True)
    captured_dir.mkdir(parents=True)
    return SimpleNamespace(
        work_id="case-1",
        channel=BrowserChannel(fake_driver),
        download_dir=download_dir,
        captured_dir=captured_dir,
        log_path=tmp_path / "chromedriver-case-1.log",
    )


@pytest.fixture
def pdf_file(tmp_path):
    def _write(directory: Path, name: str = "document.pdf", size: int = 1024) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_bytes(make_pdf(size))
        return path
    return _write
