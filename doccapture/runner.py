"""
Runner: One Unit of Work from Provisioning to Teardown

This is the entry point an orchestrator calls per case/record:

1. Provision an isolated browser session (purging stale profiles first)
2. Run the caller's workflow hook, if any, to drive the site to the
   page that offers the document
3. Run the acquisition engine
4. Optionally persist the chosen artifact to an ArtifactStore
5. Always tear the session down exactly once; a failed run also loses
   its captured directory

Failures are raised with the engine's error taxonomy. Exhaustion and
channel loss get a DiagnosticBundle attached before the session closes.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Optional
import logging

from selenium.common.exceptions import WebDriverException

from .acquisition.artifact_store import ArtifactStore, StoredArtifact, artifact_name
from .acquisition.engine import AcquisitionEngine, AcquisitionResult
from .acquisition.page_capture import render_page_pdf
from .acquisition.strategies import TargetDocument
from .acquisition.validator import PDF, is_valid_document
from .browser.channel import is_dead_channel_error
from .browser.provisioner import BrowserSession, SessionProvisioner, sanitize_work_id
from .cleanup import remove_tree_quietly
from .config import DeploymentMode, EngineSettings
from .diagnostics import collect_diagnostics
from .errors import AcquisitionFailure, ChannelError
from .provenance import Provenance

logger = logging.getLogger(__name__)

Workflow = Callable[[BrowserSession], None]


@dataclass
class WorkItem:
    """
    What the orchestrator supplies for one unit of work.

    Attributes:
        work_id: Unique identifier of the case/record
        target: Document descriptor
        mode: Deployment mode override; None uses the configured mode
        cancel_event: Cooperative cancellation signal
        base_dir: Storage root override
        workflow: Drives the site up to the document page
        label: Human-readable name used in the stored artifact name
    """
    work_id: str
    target: TargetDocument
    mode: Optional[DeploymentMode] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    base_dir: Optional[Path] = None
    workflow: Optional[Workflow] = None
    label: Optional[str] = None


def persist_result(
    result: AcquisitionResult,
    store: ArtifactStore,
    item: WorkItem,
) -> StoredArtifact:
    """Hand the chosen artifact to a store under its deterministic name."""
    chosen = result.chosen
    if chosen is None or chosen.artifact_path is None:
        raise ValueError(f"No artifact to persist for {item.work_id}")

    fmt = item.target.fmt
    name = artifact_name(item.work_id, item.label or "document", chosen.strategy, fmt.extension)
    provenance = Provenance.now(
        source_url=item.target.document_url or item.target.page_url or "",
        work_id=item.work_id,
        strategy=chosen.strategy,
        artifact_hash=chosen.sha256,
        meta={"attempts": len(result.attempts)},
    )
    return store.put(
        bytes_data=result.read_bytes(),
        name=name,
        content_type=fmt.content_type,
        tags={"work_id": item.work_id, "strategy": chosen.strategy, "format": fmt.name},
        provenance=provenance,
    )


def capture_page(session: BrowserSession, label: str) -> Optional[Path]:
    """
    Print the page the session is showing into its captured directory.

    Meant for workflow hooks that need a record of a confirmation or
    error page alongside the document. The rendering is validated like
    any download.

    Returns:
        Path of the saved PDF, or None when the page could not be printed
    """
    session.channel.wait_for_document_ready()
    rendered = render_page_pdf(session.channel)
    if rendered is None:
        logger.warning(f"[RUN] Could not print page {label!r} for {session.work_id}")
        return None
    if not is_valid_document(rendered.data, PDF):
        logger.warning(f"[RUN] Printed page {label!r} is not a valid PDF ({len(rendered.data)} bytes)")
        return None

    session.captured_dir.mkdir(parents=True, exist_ok=True)
    path = session.captured_dir / f"{sanitize_work_id(label)}-page.pdf"
    path.write_bytes(rendered.data)
    logger.info(f"[RUN] Saved page {label!r} as {path.name} via {rendered.method}")
    return path


def run_work_item(
    item: WorkItem,
    settings: Optional[EngineSettings] = None,
    provisioner: Optional[SessionProvisioner] = None,
    engine: Optional[AcquisitionEngine] = None,
    store: Optional[ArtifactStore] = None,
) -> AcquisitionResult:
    """
    Run one unit of work end to end.

    Args:
        item: Work item from the orchestrator
        settings: Engine settings; read from the environment when omitted
        provisioner: Session provisioner (injectable for tests)
        engine: Acquisition engine (injectable for tests)
        store: Optional artifact store for the chosen document

    Returns:
        AcquisitionResult with a chosen artifact

    Raises:
        ProvisioningError, ChannelError, AcquisitionFailure, AcquisitionCancelled
    """
    settings = settings or EngineSettings.from_env()
    if item.base_dir is not None:
        settings = replace(settings, base_dir=Path(item.base_dir))

    provisioner = provisioner or SessionProvisioner(settings)
    engine = engine or AcquisitionEngine.from_settings(settings)

    logger.info(f"[RUN] Starting unit of work {item.work_id}")
    session = provisioner.provision(item.work_id, item.mode)
    succeeded = False

    try:
        if item.workflow is not None:
            logger.info(f"[RUN] Running workflow for {item.work_id}")
            try:
                item.workflow(session)
            except WebDriverException as e:
                if is_dead_channel_error(e):
                    raise ChannelError(f"Browser died during workflow: {e}") from e
                raise

        result = engine.acquire(session, item.target, item.cancel_event)

        if store is not None:
            stored = persist_result(result, store, item)
            logger.info(
                f"[RUN] Stored {stored.name} for {item.work_id} "
                f"(provenance {stored.provenance.fingerprint()[:12]})"
            )
        succeeded = True
        return result

    except AcquisitionFailure as e:
        e.diagnostics = collect_diagnostics(settings, session.log_path, session.channel)
        e.diagnostics.log_summary()
        raise
    except ChannelError as e:
        e.diagnostics = collect_diagnostics(settings, session.log_path)
        e.diagnostics.log_summary()
        raise
    finally:
        session.close()
        if not succeeded:
            # Partial captures from a failed run are never handed out
            remove_tree_quietly(session.captured_dir)
        logger.info(f"[RUN] Finished unit of work {item.work_id}")
