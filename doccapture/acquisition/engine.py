"""
Acquisition Engine: Ordered Fallback Strategies with an Audit Trail

Runs the strategies against one live session. For every strategy:

1. Clear the top-level files of the download directory, so a later
   strategy is never credited with an earlier strategy's file
2. Trigger and poll (bounded by strategy_timeout_s)
3. Validate the polled file's format signature
4. Move an accepted file into the session's captured directory
5. Record exactly one AcquisitionAttempt

Run policy: stop after the first accepted artifact (default) or run every
strategy for a full diagnostic picture. Selection policy: keep the first
accepted artifact (default) or the largest one.
"""

from __future__ import annotations

import shutil
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from selenium.common.exceptions import WebDriverException

from ..browser.channel import is_dead_channel_error
from ..cleanup import clear_directory
from ..config import EngineSettings, SelectionPolicy
from ..errors import (
    AcquisitionCancelled,
    AcquisitionFailure,
    ChannelError,
    ElementNotFoundError,
    StrategyFailure,
)
from ..provenance import sha256_bytes
from .poller import PollStatus
from .strategies import Strategy, StrategyContext, TargetDocument, default_strategies
from .validator import validate_file

logger = logging.getLogger(__name__)


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AcquisitionAttempt:
    """
    Immutable record of one strategy run.

    Attributes:
        strategy: Strategy name
        started_at: ISO 8601 UTC start time
        outcome: success, failure or cancelled
        artifact_path: Accepted file (in the captured directory) on success
        size_bytes: Size of the accepted file
        message: What happened, in one line
        duration_s: Wall time spent in the strategy
        sha256: Hash of the accepted file
    """
    strategy: str
    started_at: str
    outcome: AttemptOutcome
    artifact_path: Optional[Path] = None
    size_bytes: int = 0
    message: str = ""
    duration_s: float = 0.0
    sha256: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "strategy": self.strategy,
            "started_at": self.started_at,
            "outcome": self.outcome.value,
            "artifact_path": str(self.artifact_path) if self.artifact_path else None,
            "size_bytes": self.size_bytes,
            "message": self.message,
            "duration_s": round(self.duration_s, 3),
            "sha256": self.sha256,
        }


@dataclass(frozen=True)
class AcquisitionResult:
    """
    All attempts of one acquisition plus the chosen artifact.

    Attributes:
        work_id: Unit-of-work identifier
        attempts: Attempts in execution order
        chosen: Attempt whose artifact was selected, if any succeeded
        selection_policy: Policy used to pick `chosen`
    """
    work_id: str
    attempts: Tuple[AcquisitionAttempt, ...] = ()
    chosen: Optional[AcquisitionAttempt] = None
    selection_policy: SelectionPolicy = SelectionPolicy.FIRST_SUCCESS

    @property
    def success(self) -> bool:
        return self.chosen is not None

    @property
    def artifact_path(self) -> Optional[Path]:
        return self.chosen.artifact_path if self.chosen else None

    @property
    def size_bytes(self) -> int:
        return self.chosen.size_bytes if self.chosen else 0

    @property
    def strategy(self) -> Optional[str]:
        return self.chosen.strategy if self.chosen else None

    def read_bytes(self) -> bytes:
        if not self.artifact_path:
            raise ValueError("No artifact was captured")
        return self.artifact_path.read_bytes()

    def summary(self) -> Dict[str, Any]:
        """Success count, total and rate across all attempts."""
        total = len(self.attempts)
        succeeded = sum(1 for a in self.attempts if a.succeeded)
        return {
            "total": total,
            "succeeded": succeeded,
            "success_rate": round(succeeded / total, 3) if total else 0.0,
            "chosen_strategy": self.strategy,
            "chosen_size_bytes": self.size_bytes,
            "selection_policy": self.selection_policy.value,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "work_id": self.work_id,
            "success": self.success,
            "artifact_path": str(self.artifact_path) if self.artifact_path else None,
            "size_bytes": self.size_bytes,
            "strategy": self.strategy,
            "attempts": [a.to_dict() for a in self.attempts],
            "summary": self.summary(),
        }


def choose_artifact(
    attempts: Sequence[AcquisitionAttempt],
    policy: SelectionPolicy = SelectionPolicy.FIRST_SUCCESS,
) -> Optional[AcquisitionAttempt]:
    """Pick the winning attempt. LARGEST breaks ties by execution order."""
    successes = [a for a in attempts if a.succeeded]
    if not successes:
        return None
    if policy == SelectionPolicy.LARGEST:
        return max(enumerate(successes), key=lambda pair: (pair[1].size_bytes, -pair[0]))[1]
    return successes[0]


class AcquisitionEngine:
    """
    Runs the ordered strategies against one session.

    Usage:
        engine = AcquisitionEngine.from_settings(settings)
        result = engine.acquire(session, TargetDocument(document_url=url), cancel_event)
        data = result.read_bytes()
    """

    def __init__(
        self,
        strategies: Optional[Sequence[Strategy]] = None,
        strategy_timeout_s: float = 30.0,
        poll_interval_s: float = 1.0,
        stop_on_first_success: bool = True,
        selection_policy: SelectionPolicy = SelectionPolicy.FIRST_SUCCESS,
    ):
        self.strategies: List[Strategy] = list(strategies) if strategies is not None else default_strategies()
        self.strategy_timeout_s = strategy_timeout_s
        self.poll_interval_s = poll_interval_s
        self.stop_on_first_success = stop_on_first_success
        self.selection_policy = selection_policy

    @classmethod
    def from_settings(cls, settings: EngineSettings, strategies: Optional[Sequence[Strategy]] = None) -> "AcquisitionEngine":
        if strategies is None:
            strategies = default_strategies(include_page_print=settings.page_print_fallback)
        return cls(
            strategies=strategies,
            strategy_timeout_s=settings.strategy_timeout_s,
            poll_interval_s=settings.poll_interval_s,
            stop_on_first_success=settings.stop_on_first_success,
            selection_policy=settings.selection_policy,
        )

    def acquire(
        self,
        session: Any,
        target: TargetDocument,
        cancel_event: Optional[threading.Event] = None,
    ) -> AcquisitionResult:
        """
        Run strategies until one is accepted (or all have run).

        Args:
            session: BrowserSession (channel, download_dir, captured_dir, work_id)
            target: Document descriptor
            cancel_event: Cooperative cancellation signal

        Returns:
            AcquisitionResult with a chosen artifact

        Raises:
            AcquisitionCancelled: cancel_event fired; carries attempts so far
            ChannelError: browser died; the failing attempt is logged first
            AcquisitionFailure: no strategy produced a valid artifact
        """
        cancel = cancel_event or threading.Event()
        work_id = getattr(session, "work_id", "")
        attempts: List[AcquisitionAttempt] = []

        logger.info(f"[ACQUIRE] Starting acquisition for {work_id}: {[s.name for s in self.strategies]}")

        for index, strategy in enumerate(self.strategies, start=1):
            started_at = datetime.now(timezone.utc).isoformat()
            try:
                attempt = self._run_one(index, strategy, session, target, cancel)
            except ChannelError as e:
                attempts.append(AcquisitionAttempt(
                    strategy=strategy.name,
                    started_at=started_at,
                    outcome=AttemptOutcome.FAILURE,
                    message=f"Browser channel lost: {e}",
                ))
                e.attempts = list(attempts)
                raise
            attempts.append(attempt)

            if attempt.outcome == AttemptOutcome.CANCELLED:
                logger.warning(f"[ACQUIRE] Cancelled during {strategy.name} for {work_id}")
                raise AcquisitionCancelled(attempts=attempts)
            if attempt.succeeded and self.stop_on_first_success:
                break

        chosen = choose_artifact(attempts, self.selection_policy)
        result = AcquisitionResult(
            work_id=work_id,
            attempts=tuple(attempts),
            chosen=chosen,
            selection_policy=self.selection_policy,
        )
        summary = result.summary()
        logger.info(
            f"[ACQUIRE] {work_id}: {summary['succeeded']}/{summary['total']} strategies succeeded, "
            f"chosen={summary['chosen_strategy']} ({summary['chosen_size_bytes']} bytes)"
        )

        if chosen is None:
            raise AcquisitionFailure(
                f"All {len(attempts)} strategies failed for {work_id}",
                result=result,
            )
        return result

    def _run_one(
        self,
        index: int,
        strategy: Strategy,
        session: Any,
        target: TargetDocument,
        cancel: threading.Event,
    ) -> AcquisitionAttempt:
        started_at = datetime.now(timezone.utc).isoformat()
        t0 = time.monotonic()

        def record(outcome: AttemptOutcome, message: str, **kwargs) -> AcquisitionAttempt:
            attempt = AcquisitionAttempt(
                strategy=strategy.name,
                started_at=started_at,
                outcome=outcome,
                message=message,
                duration_s=time.monotonic() - t0,
                **kwargs,
            )
            level = logging.INFO if outcome == AttemptOutcome.SUCCESS else logging.WARNING
            logger.log(level, f"[ACQUIRE] {strategy.name}: {outcome.value} - {message}")
            return attempt

        if cancel.is_set():
            return record(AttemptOutcome.CANCELLED, "Cancelled before start")

        download_dir = Path(session.download_dir)
        clear_directory(download_dir)

        ctx = StrategyContext(
            channel=session.channel,
            download_dir=download_dir,
            target=target,
            timeout_s=self.strategy_timeout_s,
            poll_interval_s=self.poll_interval_s,
            cancel_event=cancel,
        )

        try:
            poll, detail = strategy.run(ctx)
        except AcquisitionCancelled:
            return record(AttemptOutcome.CANCELLED, "Cancelled while triggering")
        except ChannelError as e:
            logger.error(f"[ACQUIRE] {strategy.name}: browser channel lost - {e}")
            raise
        except (StrategyFailure, ElementNotFoundError) as e:
            return record(AttemptOutcome.FAILURE, str(e))
        except WebDriverException as e:
            if is_dead_channel_error(e):
                raise ChannelError(f"{strategy.name}: browser channel is gone ({e})") from e
            return record(AttemptOutcome.FAILURE, f"Driver error: {e.msg or e}")

        if poll.status == PollStatus.CANCELLED:
            return record(AttemptOutcome.CANCELLED, f"Cancelled after {detail}")
        if poll.status == PollStatus.TIMEOUT or poll.path is None:
            return record(AttemptOutcome.FAILURE, f"{detail}; no completed download within {self.strategy_timeout_s:.0f}s")

        valid, reason = validate_file(poll.path, target.fmt)
        if not valid:
            return record(AttemptOutcome.FAILURE, f"{detail}; rejected {poll.path.name}: {reason}")

        try:
            captured = self._capture(index, strategy.name, poll.path, Path(session.captured_dir))
            if captured is None:
                return record(AttemptOutcome.FAILURE, f"{detail}; {poll.path.name} vanished before capture")
            data = captured.read_bytes()
        except OSError as e:
            logger.error(f"[ACQUIRE] {strategy.name}: could not capture {poll.path.name}: {e}")
            return record(AttemptOutcome.FAILURE, f"{detail}; could not capture {poll.path.name}: {e}")

        return record(
            AttemptOutcome.SUCCESS,
            f"{detail}; accepted {poll.path.name}",
            artifact_path=captured,
            size_bytes=len(data),
            sha256=sha256_bytes(data),
        )

    @staticmethod
    def _capture(index: int, strategy_name: str, source: Path, captured_dir: Path) -> Optional[Path]:
        """Move an accepted file out of the download directory."""
        captured_dir.mkdir(parents=True, exist_ok=True)
        dest = captured_dir / f"{index:02d}-{strategy_name}-{source.name}"
        try:
            shutil.move(str(source), str(dest))
        except FileNotFoundError:
            return None
        return dest
