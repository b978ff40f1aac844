"""
Errors: Failure Taxonomy for Document Acquisition

Fatal for the unit of work:
- ProvisioningError: browser/driver process failed to start (carries diagnostics)
- ChannelError: control channel died mid-session

Non-fatal:
- StrategyFailure: one strategy produced no valid artifact; the engine moves on
- ElementNotFoundError: a previously found element went stale

Reported to the caller:
- AcquisitionFailure: every strategy exhausted, carries the full attempt log
- AcquisitionCancelled: external abort, takes priority over timeouts
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional

if TYPE_CHECKING:
    from .acquisition.engine import AcquisitionAttempt, AcquisitionResult
    from .diagnostics import DiagnosticBundle


class DocCaptureError(Exception):
    """Base class for all acquisition engine errors."""


class ProvisioningError(DocCaptureError):
    """
    Browser or driver process failed to start.

    Attributes:
        cause: The underlying launch exception
        diagnostics: Environment snapshot gathered at failure time
    """

    def __init__(
        self,
        message: str,
        *,
        cause: Optional[BaseException] = None,
        diagnostics: Optional["DiagnosticBundle"] = None,
    ):
        super().__init__(message)
        self.cause = cause
        self.diagnostics = diagnostics


class ChannelError(DocCaptureError):
    """
    The browser process or its control channel is gone.

    Attributes:
        attempts: Attempts recorded up to and including the failing one,
            set when raised from the acquisition engine
        diagnostics: Environment snapshot, attached by the runner
    """

    def __init__(self, message: str, *, attempts: Optional[List[Any]] = None):
        super().__init__(message)
        self.attempts = list(attempts or [])
        self.diagnostics: Optional["DiagnosticBundle"] = None


class ElementNotFoundError(DocCaptureError):
    """An element handle is stale or no longer attached to the page."""


class StrategyFailure(DocCaptureError):
    """A single strategy produced no valid artifact."""


class AcquisitionFailure(DocCaptureError):
    """
    All strategies were exhausted without a valid artifact.

    Attributes:
        result: AcquisitionResult with every recorded attempt
        diagnostics: Environment snapshot, attached by the runner
    """

    def __init__(self, message: str, *, result: "AcquisitionResult"):
        super().__init__(message)
        self.result = result
        self.diagnostics: Optional["DiagnosticBundle"] = None

    @property
    def attempts(self) -> List["AcquisitionAttempt"]:
        return list(self.result.attempts)


class AcquisitionCancelled(DocCaptureError):
    """
    The cancellation signal fired during acquisition.

    Attributes:
        attempts: Attempts recorded up to and including the cancelled one
    """

    def __init__(self, message: str = "Acquisition cancelled", *, attempts: Optional[List[Any]] = None):
        super().__init__(message)
        self.attempts = list(attempts or [])
