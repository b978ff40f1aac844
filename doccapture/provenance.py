"""
Provenance: Audit Traceability for Captured Documents

Immutable provenance objects that track:
- When a document was captured
- Where it came from (page/document URL, capturing strategy)
- Cryptographic hash of the artifact bytes
- The unit of work that produced it

Attach Provenance to every artifact handed to an ArtifactStore so the
stored file can always be traced back to the exact acquisition attempt.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional
from datetime import datetime, timezone
import hashlib
import json


def sha256_bytes(b: bytes) -> str:
    """Compute SHA-256 hash of raw bytes."""
    return hashlib.sha256(b).hexdigest()


def sha256_json(obj: Any) -> str:
    """Compute SHA-256 hash of canonical JSON representation."""
    data = json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return sha256_bytes(data)


@dataclass(frozen=True)
class Provenance:
    """
    Traceability record for one captured artifact.

    Attributes:
        captured_at: ISO 8601 timestamp when the artifact was accepted
        source_url: Document or page URL the artifact came from
        work_id: Unit-of-work identifier
        strategy: Name of the strategy that produced the artifact
        artifact_hash: SHA-256 hash over the artifact bytes
        meta: Additional metadata dictionary
    """
    captured_at: str  # ISO 8601
    source_url: str
    work_id: Optional[str] = None
    strategy: Optional[str] = None
    artifact_hash: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def now(source_url: str, **kwargs) -> "Provenance":
        """
        Create a Provenance object with current timestamp.

        Args:
            source_url: The URL the artifact was captured from
            **kwargs: Additional fields (work_id, strategy, artifact_hash, meta)

        Returns:
            Provenance object with current UTC timestamp
        """
        ts = datetime.now(timezone.utc).isoformat()
        return Provenance(captured_at=ts, source_url=source_url, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "captured_at": self.captured_at,
            "source_url": self.source_url,
            "work_id": self.work_id,
            "strategy": self.strategy,
            "artifact_hash": self.artifact_hash,
            "meta": self.meta,
        }

    def with_artifact_hash(self, artifact_bytes: bytes) -> "Provenance":
        """Return a copy with artifact_hash computed from the given bytes."""
        return replace(self, artifact_hash=sha256_bytes(artifact_bytes))

    def fingerprint(self) -> str:
        """Stable hash of the whole record, used as an audit key."""
        return sha256_json(self.to_dict())
