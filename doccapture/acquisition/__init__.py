"""
Acquisition: Strategies, Polling, Validation and Storage

Components:
- wait_for_download: Completion poller over a download directory
- validator: Format signature checks (PDF built in)
- strategies: selector click, direct navigation, script click,
  out-of-band fetch, directory sweep, and the opt-in page print
- render_page_pdf: Print the current page via DevTools or html2pdf.js
- AcquisitionEngine: Runs strategies in order and records every attempt
- ArtifactStore: Interface for persisting the chosen document
"""

from .validator import PDF, DocumentFormat, is_valid_document, validate_file
from .poller import PollResult, PollStatus, wait_for_download
from .http_fetcher import HttpFetchResult, fetch_bytes
from .page_capture import PageRender, render_page_pdf
from .strategies import STRATEGY_ORDER, Strategy, StrategyContext, TargetDocument, default_strategies
from .engine import AcquisitionAttempt, AcquisitionEngine, AcquisitionResult, AttemptOutcome, choose_artifact
from .artifact_store import ArtifactStore, DiskArtifactStore, StoredArtifact, artifact_name

__all__ = [
    "PDF",
    "DocumentFormat",
    "is_valid_document",
    "validate_file",
    "PollResult",
    "PollStatus",
    "wait_for_download",
    "HttpFetchResult",
    "fetch_bytes",
    "PageRender",
    "render_page_pdf",
    "STRATEGY_ORDER",
    "Strategy",
    "StrategyContext",
    "TargetDocument",
    "default_strategies",
    "AcquisitionAttempt",
    "AcquisitionEngine",
    "AcquisitionResult",
    "AttemptOutcome",
    "choose_artifact",
    "ArtifactStore",
    "DiskArtifactStore",
    "StoredArtifact",
    "artifact_name",
]
