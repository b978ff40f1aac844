"""
Pydantic schemas for the HTTP surface.
Defines the request/response bodies of the acquisition endpoint.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from .config import DeploymentMode


class AcquireRequest(BaseModel):
    """Target descriptor and run options for one unit of work."""
    work_id: str = Field(..., min_length=1)
    page_url: Optional[str] = None
    document_url: Optional[str] = None
    selectors: List[str] = []
    href_contains: Optional[str] = None
    label: Optional[str] = None
    mode: Optional[DeploymentMode] = None
    include_content: bool = True
    stop_on_first_success: Optional[bool] = None
    strategy_timeout_s: Optional[float] = Field(default=None, gt=0, le=600)
    page_print_fallback: Optional[bool] = None


class AttemptModel(BaseModel):
    """One strategy attempt from the audit log."""
    strategy: str
    started_at: str
    outcome: str
    artifact_path: Optional[str] = None
    size_bytes: int = 0
    message: str = ""
    duration_s: float = 0.0
    sha256: Optional[str] = None


class AcquireResponse(BaseModel):
    """Response model for the acquire endpoint."""
    ok: bool
    work_id: str
    strategy: Optional[str] = None
    filename: Optional[str] = None
    artifact_path: Optional[str] = None
    size_bytes: Optional[int] = None
    sha256: Optional[str] = None
    content_b64: Optional[str] = None
    attempts: List[AttemptModel] = []
    summary: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    diagnostics: Optional[Dict[str, Any]] = None
