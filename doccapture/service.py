"""
Acquisition Service: HTTP Surface for the Acquisition Engine

A FastAPI app exposing one narrow operation: "capture this document
for this unit of work". Each request provisions its own browser session,
so concurrent requests never share a driver.

USAGE:
    uvicorn doccapture.service:app --host 0.0.0.0 --port 8081

    POST /acquire
    {
        "work_id": "case-42",
        "page_url": "https://example.com/letters/42",
        "document_url": "https://example.com/letters/42.pdf",
        "selectors": ["a.download-button", "a[download]"],
        "href_contains": "/letters/42"
    }

The endpoint never raises for acquisition problems; failures come back
with ok=false, the error type, the attempt log and diagnostics.
"""

from __future__ import annotations

import base64
from dataclasses import replace
from typing import Optional
import logging

from fastapi import Depends, FastAPI

from .acquisition.artifact_store import DiskArtifactStore
from .acquisition.engine import AcquisitionResult
from .acquisition.strategies import TargetDocument
from .cleanup import remove_tree_quietly
from .config import EngineSettings
from .errors import AcquisitionCancelled, AcquisitionFailure, ChannelError, DocCaptureError, ProvisioningError
from .runner import WorkItem, run_work_item
from .schemas import AcquireRequest, AcquireResponse, AttemptModel

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Document Capture Service",
    description="Browser-driven document acquisition with fallback strategies",
    version="1.0.0"
)

_settings: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Settings are read from the environment once per process."""
    global _settings
    if _settings is None:
        _settings = EngineSettings.from_env()
    return _settings


def _attempt_models(attempts) -> list:
    return [AttemptModel(**a.to_dict()) for a in attempts]


def _success_response(req: AcquireRequest, result: AcquisitionResult) -> AcquireResponse:
    path = result.artifact_path
    content_b64 = None
    if req.include_content and path is not None:
        content_b64 = base64.b64encode(result.read_bytes()).decode("ascii")
        # Content is delivered inline, the captured copy is no longer needed
        remove_tree_quietly(path.parent)

    return AcquireResponse(
        ok=True,
        work_id=req.work_id,
        strategy=result.strategy,
        filename=path.name if path else None,
        artifact_path=str(path) if path and not req.include_content else None,
        size_bytes=result.size_bytes,
        sha256=result.chosen.sha256 if result.chosen else None,
        content_b64=content_b64,
        attempts=_attempt_models(result.attempts),
        summary=result.summary(),
    )


@app.post("/acquire", response_model=AcquireResponse)
def acquire(req: AcquireRequest, settings: EngineSettings = Depends(get_settings)) -> AcquireResponse:
    """
    Capture one document.

    Runs in FastAPI's threadpool: the engine blocks on polling.
    """
    if not (req.page_url or req.document_url):
        return AcquireResponse(ok=False, work_id=req.work_id, error="page_url or document_url is required")

    overrides = {}
    if req.stop_on_first_success is not None:
        overrides["stop_on_first_success"] = req.stop_on_first_success
    if req.strategy_timeout_s is not None:
        overrides["strategy_timeout_s"] = req.strategy_timeout_s
    if req.page_print_fallback is not None:
        overrides["page_print_fallback"] = req.page_print_fallback
    run_settings = replace(settings, **overrides) if overrides else settings

    item = WorkItem(
        work_id=req.work_id,
        target=TargetDocument(
            page_url=req.page_url,
            document_url=req.document_url,
            selectors=tuple(req.selectors),
            href_contains=req.href_contains,
        ),
        mode=req.mode,
        label=req.label,
    )
    store = DiskArtifactStore(str(run_settings.artifact_dir)) if run_settings.artifact_dir else None

    logger.info(f"[API] Acquire requested: {req.work_id}")
    try:
        result = run_work_item(item, settings=run_settings, store=store)
        return _success_response(req, result)

    except ProvisioningError as e:
        return AcquireResponse(
            ok=False,
            work_id=req.work_id,
            error=str(e),
            error_type=type(e).__name__,
            diagnostics=e.diagnostics.to_dict() if e.diagnostics else None,
        )
    except AcquisitionFailure as e:
        return AcquireResponse(
            ok=False,
            work_id=req.work_id,
            error=str(e),
            error_type=type(e).__name__,
            attempts=_attempt_models(e.attempts),
            summary=e.result.summary(),
            diagnostics=e.diagnostics.to_dict() if e.diagnostics else None,
        )
    except AcquisitionCancelled as e:
        return AcquireResponse(
            ok=False,
            work_id=req.work_id,
            error=str(e),
            error_type=type(e).__name__,
            attempts=_attempt_models(e.attempts),
        )
    except ChannelError as e:
        logger.error(f"[API] Browser lost for {req.work_id}: {e}")
        return AcquireResponse(
            ok=False,
            work_id=req.work_id,
            error=str(e),
            error_type=type(e).__name__,
            attempts=_attempt_models(e.attempts),
            diagnostics=e.diagnostics.to_dict() if e.diagnostics else None,
        )
    except DocCaptureError as e:
        logger.error(f"[API] Acquire failed for {req.work_id}: {e}")
        return AcquireResponse(ok=False, work_id=req.work_id, error=str(e), error_type=type(e).__name__)
    except Exception as e:
        logger.exception(f"[API] Unexpected error for {req.work_id}")
        return AcquireResponse(ok=False, work_id=req.work_id, error=str(e), error_type=type(e).__name__)
