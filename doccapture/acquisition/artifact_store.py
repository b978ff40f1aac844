"""
Artifact Store: Downstream Persistence for Captured Documents

The engine itself only produces a file in the session's captured
directory. Persisting it is the caller's business; this module defines
the interface callers code against plus a local disk backend.

Storage backends:
- DiskArtifactStore: Local filesystem (development, single worker)
- Object storage backends implement the same ArtifactStore protocol

Each stored artifact is saved under a deterministic name (see
artifact_name) and carries classification tags and provenance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Optional, List, Dict, Any
from pathlib import Path
from datetime import datetime, timezone
import json
import logging
import re
import uuid

from ..provenance import Provenance

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "captures"


def _clean(part: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_.-]+", "_", str(part or "")).strip("._")
    return cleaned or "unknown"


def artifact_name(
    work_id: str,
    label: str,
    strategy: str,
    extension: str = ".pdf",
    prefix: str = DEFAULT_PREFIX,
) -> str:
    """
    Deterministic storage name for a captured document.

    Example:
        artifact_name("case-42", "Acme Corp", "selector_click")
        -> "captures/case-42/Acme_Corp-selector_click.pdf"
    """
    ext = extension if extension.startswith(".") else f".{extension}"
    return f"{_clean(prefix)}/{_clean(work_id)}/{_clean(label)}-{_clean(strategy)}{ext}"


@dataclass(frozen=True)
class StoredArtifact:
    """
    A stored artifact with its metadata.

    Attributes:
        artifact_id: Unique identifier for this artifact
        name: Deterministic storage name
        path: Storage location (filesystem path, object key, ...)
        size_bytes: Size of the artifact in bytes
        content_type: MIME type of the artifact
        tags: Classification tags
        provenance: Traceability record
        stored_at: ISO 8601 timestamp when the artifact was stored
    """
    artifact_id: str
    name: str
    path: str
    size_bytes: int
    content_type: Optional[str]
    provenance: Provenance
    tags: Dict[str, str] = field(default_factory=dict)
    stored_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "artifact_id": self.artifact_id,
            "name": self.name,
            "path": self.path,
            "size_bytes": self.size_bytes,
            "content_type": self.content_type,
            "tags": dict(self.tags),
            "provenance": self.provenance.to_dict(),
            "stored_at": self.stored_at,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "StoredArtifact":
        return StoredArtifact(
            artifact_id=data["artifact_id"],
            name=data["name"],
            path=data["path"],
            size_bytes=data["size_bytes"],
            content_type=data.get("content_type"),
            provenance=Provenance(**data["provenance"]),
            tags=dict(data.get("tags") or {}),
            stored_at=data.get("stored_at"),
        )


class ArtifactStore(Protocol):
    """
    Abstract store interface.

    Implement this protocol to back artifact storage with local disk,
    S3, Azure Blob Storage, or any object store that supports tags.
    """

    def put(
        self,
        *,
        bytes_data: bytes,
        name: str,
        content_type: Optional[str],
        tags: Optional[Dict[str, str]] = None,
        provenance: Provenance,
    ) -> StoredArtifact:
        """Store an artifact and return the stored artifact record."""
        ...

    def get(self, artifact_id: str) -> Optional[bytes]:
        """Retrieve artifact bytes by ID."""
        ...

    def get_metadata(self, artifact_id: str) -> Optional[StoredArtifact]:
        """Retrieve artifact metadata by ID."""
        ...

    def delete(self, artifact_id: str) -> bool:
        """Delete an artifact by ID."""
        ...


class DiskArtifactStore:
    """
    Filesystem-based artifact store.

    Directory structure:
    root_dir/
        artifacts/
            {name}            (deterministic, may contain subdirectories)
        index/
            {artifact_id}.json  (metadata)
    """

    def __init__(self, root_dir: str):
        self.root = Path(root_dir)
        self.artifacts_dir = self.root / "artifacts"
        self.index_dir = self.root / "index"

        self.artifacts_dir.mkdir(parents=True, exist_ok=True)
        self.index_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"[STORE] Initialized DiskArtifactStore at {self.root}")

    def _resolve(self, name: str) -> Path:
        """Map a storage name to a path inside artifacts_dir."""
        parts = [_clean(p) for p in name.replace("\\", "/").split("/") if p not in ("", ".", "..")]
        return self.artifacts_dir.joinpath(*parts) if parts else self.artifacts_dir / "artifact"

    def put(
        self,
        *,
        bytes_data: bytes,
        name: str,
        content_type: Optional[str],
        tags: Optional[Dict[str, str]] = None,
        provenance: Provenance,
    ) -> StoredArtifact:
        """
        Store an artifact on disk. Storing the same name twice overwrites the file.

        Args:
            bytes_data: Raw bytes of the artifact
            name: Deterministic storage name
            content_type: MIME type of the artifact
            tags: Classification tags
            provenance: Provenance object for traceability

        Returns:
            StoredArtifact with storage details
        """
        artifact_id = str(uuid.uuid4())
        stored_at = datetime.now(timezone.utc).isoformat()

        path = self._resolve(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(bytes_data)

        if provenance.artifact_hash is None:
            provenance = provenance.with_artifact_hash(bytes_data)

        stored = StoredArtifact(
            artifact_id=artifact_id,
            name=name,
            path=str(path),
            size_bytes=len(bytes_data),
            content_type=content_type,
            provenance=provenance,
            tags=dict(tags or {}),
            stored_at=stored_at,
        )

        index_path = self.index_dir / f"{artifact_id}.json"
        index_path.write_text(json.dumps(stored.to_dict(), indent=2))

        logger.info(f"[STORE] Stored artifact: {name} ({len(bytes_data)} bytes, {content_type})")
        return stored

    def get(self, artifact_id: str) -> Optional[bytes]:
        meta = self.get_metadata(artifact_id)
        if meta is None:
            logger.warning(f"[STORE] Artifact not found: {artifact_id}")
            return None
        try:
            return Path(meta.path).read_bytes()
        except FileNotFoundError:
            logger.warning(f"[STORE] Artifact file missing: {meta.path}")
            return None

    def get_metadata(self, artifact_id: str) -> Optional[StoredArtifact]:
        index_path = self.index_dir / f"{artifact_id}.json"
        if not index_path.exists():
            return None
        try:
            return StoredArtifact.from_dict(json.loads(index_path.read_text()))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"[STORE] Error reading metadata: {e}")
            return None

    def delete(self, artifact_id: str) -> bool:
        meta = self.get_metadata(artifact_id)
        deleted = False
        if meta is not None:
            try:
                Path(meta.path).unlink()
                deleted = True
            except FileNotFoundError:
                pass

        index_path = self.index_dir / f"{artifact_id}.json"
        try:
            index_path.unlink()
            deleted = True
        except FileNotFoundError:
            pass

        if deleted:
            logger.info(f"[STORE] Deleted artifact: {artifact_id}")
        return deleted

    def list_by_work(self, work_id: str) -> List[StoredArtifact]:
        """List all artifacts whose provenance names the given unit of work."""
        return [a for a in self.list_all(limit=10_000) if a.provenance.work_id == work_id]

    def list_all(self, limit: int = 100) -> List[StoredArtifact]:
        artifacts = []
        for f in sorted(self.index_dir.glob("*.json"))[:limit]:
            try:
                artifacts.append(StoredArtifact.from_dict(json.loads(f.read_text())))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.error(f"[STORE] Error reading index: {e}")
        return artifacts

    def stats(self) -> Dict[str, Any]:
        """Get storage statistics."""
        artifact_count = len(list(self.index_dir.glob("*.json")))
        total_size = sum(f.stat().st_size for f in self.artifacts_dir.rglob("*") if f.is_file())
        return {
            "artifact_count": artifact_count,
            "total_size_bytes": total_size,
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "storage_path": str(self.root),
        }
