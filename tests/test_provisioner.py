"""
Tests for doccapture.browser.provisioner module.

Browsers are never launched: the provisioner takes a driver factory,
and tests hand it one that returns a mocked Chromium driver.
"""

import threading
from dataclasses import replace
from unittest.mock import MagicMock

import pytest
from selenium.common.exceptions import SessionNotCreatedException, WebDriverException
from selenium.webdriver.chromium.webdriver import ChromiumDriver

from doccapture.browser import provisioner as prov
from doccapture.browser.provisioner import (
    PortAllocator,
    SessionProvisioner,
    allocate_paths,
    build_options,
    sanitize_work_id,
)
from doccapture.config import DeploymentMode
from doccapture.errors import ProvisioningError


def _driver():
    driver = MagicMock(spec=ChromiumDriver)
    driver.current_url = "about:blank"
    driver.execute_cdp_cmd.return_value = {}
    return driver


class RecordingFactory:
    """Driver factory that records the options it was given."""

    def __init__(self, failures=()):
        self.calls = []
        self.drivers = []
        self._failures = list(failures)
        self._lock = threading.Lock()

    def __call__(self, options=None, service=None):
        with self._lock:
            self.calls.append((options, service))
            if self._failures:
                raise self._failures.pop(0)
            driver = _driver()
            self.drivers.append(driver)
            return driver


@pytest.fixture
def headless_settings(settings, tmp_path):
    return replace(
        settings,
        mode=DeploymentMode.HEADLESS,
        browser_binary=str(tmp_path / "bin" / "chromium"),
        driver_binary=str(tmp_path / "bin" / "chromedriver"),
    )


class TestPathAllocation:
    """Test sanitize_work_id and allocate_paths."""

    def test_sanitize_work_id(self):
        """Should reduce ids to safe path characters."""
        assert sanitize_work_id("case 42/../x") == "case_42_x"
        assert sanitize_work_id("") == "work"
        assert sanitize_work_id("ABC-def_1") == "ABC-def_1"

    def test_layout(self, tmp_path):
        """Should place each path under its own subdirectory of the root."""
        paths = allocate_paths(tmp_path, "case-1")

        assert paths.profile_dir.parent == (tmp_path / "profiles").resolve()
        assert paths.profile_dir.name.startswith("chrome-profile-case-1-")
        assert paths.download_dir.parent == (tmp_path / "downloads").resolve()
        assert paths.log_path.name.startswith("chromedriver-case-1-")
        assert paths.log_path.suffix == ".log"

    def test_same_work_id_never_collides(self, tmp_path):
        """Should allocate distinct directories for repeated ids."""
        allocated = [allocate_paths(tmp_path, "same") for _ in range(50)]

        assert len({p.download_dir for p in allocated}) == 50
        assert len({p.profile_dir for p in allocated}) == 50


class TestPortAllocator:
    """Test PortAllocator class."""

    def test_reserves_distinct_ports_in_range(self):
        """Should hand out unique ports inside the range."""
        ports = PortAllocator((9300, 9399))

        picked = [ports.reserve() for _ in range(10)]

        assert len(set(picked)) == 10
        assert all(9300 <= p <= 9399 for p in picked)
        assert ports.reserved == set(picked)

    def test_release(self):
        """Should forget released ports."""
        ports = PortAllocator((9400, 9410))
        port = ports.reserve()

        ports.release(port)

        assert port not in ports.reserved

    def test_exhausted_range(self, monkeypatch):
        """Should raise ProvisioningError when no port is free."""
        monkeypatch.setattr(PortAllocator, "is_free", staticmethod(lambda port: False))

        with pytest.raises(ProvisioningError):
            PortAllocator((9500, 9501)).reserve(attempts=5)


class TestBuildOptions:
    """Test build_options function."""

    def test_interactive(self, settings, tmp_path):
        """Should configure downloads and fingerprint suppression without headless flags."""
        paths = allocate_paths(tmp_path, "w")

        opts = build_options(settings, paths, port=None)

        assert "--no-sandbox" in opts.arguments
        assert "--disable-gpu" in opts.arguments
        assert "--disable-blink-features=AutomationControlled" in opts.arguments
        assert not any(a.startswith("--headless") for a in opts.arguments)
        assert not any(a.startswith("--remote-debugging-port") for a in opts.arguments)
        assert opts.experimental_options["excludeSwitches"] == ["enable-automation"]
        assert opts.experimental_options["useAutomationExtension"] is False
        prefs = opts.experimental_options["prefs"]
        assert prefs["download.default_directory"] == str(paths.download_dir)
        assert prefs["download.prompt_for_download"] is False
        assert prefs["plugins.always_open_pdf_externally"] is True

    def test_headless(self, headless_settings, tmp_path):
        """Should add headless rendering, the binary override and the port."""
        paths = allocate_paths(tmp_path, "w")

        opts = build_options(headless_settings, paths, port=9555)

        assert "--headless=new" in opts.arguments
        assert "--remote-debugging-port=9555" in opts.arguments
        assert opts.binary_location == headless_settings.browser_binary


class TestSessionProvisioner:
    """Test SessionProvisioner.provision and BrowserSession.close."""

    def test_provision_interactive(self, settings):
        """Should create directories and prepare the channel."""
        factory = RecordingFactory()

        session = SessionProvisioner(settings, driver_factory=factory).provision("case-7")

        assert session.download_dir.is_dir()
        assert session.profile_dir.is_dir()
        assert session.port is None
        driver = factory.drivers[0]
        methods = [c[0][0] for c in driver.execute_cdp_cmd.call_args_list]
        assert "Page.addScriptToEvaluateOnNewDocument" in methods
        assert "Browser.setDownloadBehavior" in methods
        session.close()

    def test_close_exactly_once(self, headless_settings):
        """Should quit once, release the port and keep captured files."""
        ports = PortAllocator((9600, 9699))
        factory = RecordingFactory()
        session = SessionProvisioner(headless_settings, driver_factory=factory, ports=ports).provision("c")
        (session.captured_dir / "kept.pdf").write_bytes(b"x")

        assert session.close() is True
        assert session.close() is False

        factory.drivers[0].quit.assert_called_once()
        assert session.port not in ports.reserved
        assert not session.download_dir.exists()
        assert not session.profile_dir.exists()
        assert (session.captured_dir / "kept.pdf").exists()

    def test_close_removes_empty_captured_dir(self, settings):
        """Should not leave an empty captured directory behind."""
        session = SessionProvisioner(settings, driver_factory=RecordingFactory()).provision("empty")
        assert session.captured_dir.is_dir()

        session.close()

        assert not session.captured_dir.exists()

    def test_concurrent_headless_sessions_are_isolated(self, headless_settings):
        """Should give concurrent sessions distinct ports and directories (scenario C)."""
        ports = PortAllocator((9700, 9799))
        provisioner = SessionProvisioner(headless_settings, driver_factory=RecordingFactory(), ports=ports)
        sessions = []
        errors = []
        barrier = threading.Barrier(2)

        def worker(work_id):
            try:
                barrier.wait()
                sessions.append(provisioner.provision(work_id))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(f"case-{i}",)) for i in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert len(sessions) == 2
        a, b = sessions
        assert a.port != b.port
        assert a.download_dir != b.download_dir
        assert a.profile_dir != b.profile_dir
        for s in sessions:
            s.close()
        assert ports.reserved == set()

    def test_launch_failure_raises_with_diagnostics(self, headless_settings):
        """Should raise ProvisioningError carrying the cause and diagnostics."""
        ports = PortAllocator((9800, 9899))
        cause = SessionNotCreatedException("cannot find Chrome binary")
        factory = RecordingFactory(failures=[cause])

        with pytest.raises(ProvisioningError) as excinfo:
            SessionProvisioner(headless_settings, driver_factory=factory, ports=ports).provision("broken")

        err = excinfo.value
        assert err.cause is cause
        assert err.diagnostics is not None
        assert err.diagnostics.binaries[headless_settings.browser_binary] is False
        assert ports.reserved == set()
        downloads = headless_settings.base_dir / "downloads"
        assert list(downloads.iterdir()) == []

    def test_retries_on_port_conflict(self, headless_settings):
        """Should pick a new port and relaunch when the port was taken."""
        ports = PortAllocator((9900, 9998))
        factory = RecordingFactory(failures=[WebDriverException("DevToolsActivePort file doesn't exist")])

        session = SessionProvisioner(headless_settings, driver_factory=factory, ports=ports).provision("retry")

        assert len(factory.calls) == 2
        assert ports.reserved == {session.port}
        session.close()

    def test_unwritable_download_dir(self, settings, monkeypatch):
        """Should fail before launching when the write probe fails."""
        def refuse(directory):
            raise ProvisioningError(f"Download directory is not writable: {directory}")

        monkeypatch.setattr(prov, "ensure_writable", refuse)
        factory = RecordingFactory()

        with pytest.raises(ProvisioningError):
            SessionProvisioner(settings, driver_factory=factory).provision("ro")

        assert factory.calls == []

    def test_purges_stale_profiles_first(self, settings, monkeypatch):
        """Should run the stale artifact purge before allocating."""
        seen = []
        monkeypatch.setattr(prov, "purge_stale_artifacts", lambda root, retention: seen.append((root, retention)))

        SessionProvisioner(settings, driver_factory=RecordingFactory()).provision("p").close()

        assert seen == [(settings.base_dir, settings.retention_s)]
