"""
doccapture: Browser-Driven Document Acquisition

Captures a server-generated document (PDF) from a web workflow using an
isolated browser session per unit of work and an ordered set of
fallback strategies.

Components:
- SessionProvisioner: Isolated browser process, profile, download dir, port
- BrowserChannel: Navigation, scripts, element lookup, DevTools download pinning
- wait_for_download: Directory poller for completed downloads
- AcquisitionEngine: Ordered strategies with an attempt audit trail
- Diagnostics/Cleanup: Failure snapshots, stale profile purging
- run_work_item: One unit of work from provisioning to teardown

Design Philosophy:
1. One session per unit of work, torn down exactly once
2. Poll, don't wait for events: downloads are done when the files say so
3. Every attempt is recorded, successful or not
"""

from .config import DeploymentMode, EngineSettings, SelectionPolicy
from .errors import (
    AcquisitionCancelled,
    AcquisitionFailure,
    ChannelError,
    DocCaptureError,
    ElementNotFoundError,
    ProvisioningError,
    StrategyFailure,
)
from .acquisition import (
    AcquisitionAttempt,
    AcquisitionEngine,
    AcquisitionResult,
    AttemptOutcome,
    PDF,
    DocumentFormat,
    PollResult,
    PollStatus,
    TargetDocument,
    wait_for_download,
)
from .browser import BrowserChannel, BrowserSession, SessionProvisioner
from .diagnostics import DiagnosticBundle, collect_diagnostics
from .cleanup import clear_directory, purge_stale_artifacts
from .runner import WorkItem, capture_page, run_work_item

__version__ = "1.0.0"

__all__ = [
    "DeploymentMode",
    "EngineSettings",
    "SelectionPolicy",
    "AcquisitionCancelled",
    "AcquisitionFailure",
    "ChannelError",
    "DocCaptureError",
    "ElementNotFoundError",
    "ProvisioningError",
    "StrategyFailure",
    "AcquisitionAttempt",
    "AcquisitionEngine",
    "AcquisitionResult",
    "AttemptOutcome",
    "PDF",
    "DocumentFormat",
    "PollResult",
    "PollStatus",
    "TargetDocument",
    "wait_for_download",
    "BrowserChannel",
    "BrowserSession",
    "SessionProvisioner",
    "DiagnosticBundle",
    "collect_diagnostics",
    "clear_directory",
    "purge_stale_artifacts",
    "WorkItem",
    "capture_page",
    "run_work_item",
]
