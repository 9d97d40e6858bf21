"""Catalog of committed artifacts, looked up by the rest of the application."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import UTC

from upload_pipeline.data.db import get_session
from upload_pipeline.data.models import StoredArtifact
from upload_pipeline.models.upload import AssembledArtifact


class ArtifactCatalog(ABC):
    """Abstract record of assembled artifacts."""

    @abstractmethod
    def add(self, artifact: AssembledArtifact) -> None:
        """Record a newly committed artifact."""

    @abstractmethod
    def get(self, artifact_id: str) -> AssembledArtifact | None:
        """Return the artifact, or None when unknown."""


def _row_to_artifact(row: StoredArtifact) -> AssembledArtifact:
    created_at = row.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    return AssembledArtifact(
        artifact_id=row.artifact_id,
        owner_id=row.owner_id,
        category=row.category,
        file_name=row.file_name,
        content_type=row.content_type,
        byte_length=row.byte_length,
        storage_locator=row.storage_locator,
        checksum=row.checksum,
        url=row.url,
        created_at=created_at,
    )


class SqlArtifactCatalog(ArtifactCatalog):
    """Catalog stored in the ``artifacts`` table."""

    def add(self, artifact: AssembledArtifact) -> None:
        with get_session() as session:
            session.add(
                StoredArtifact(
                    artifact_id=artifact.artifact_id,
                    owner_id=artifact.owner_id,
                    category=artifact.category,
                    file_name=artifact.file_name,
                    content_type=artifact.content_type,
                    byte_length=artifact.byte_length,
                    storage_locator=artifact.storage_locator,
                    checksum=artifact.checksum,
                    url=artifact.url,
                    created_at=artifact.created_at,
                )
            )

    def get(self, artifact_id: str) -> AssembledArtifact | None:
        with get_session() as session:
            row = session.get(StoredArtifact, artifact_id)
            return _row_to_artifact(row) if row is not None else None


class InMemoryArtifactCatalog(ArtifactCatalog):
    """Catalog held in process memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._artifacts: dict[str, AssembledArtifact] = {}

    def add(self, artifact: AssembledArtifact) -> None:
        with self._lock:
            self._artifacts[artifact.artifact_id] = artifact

    def get(self, artifact_id: str) -> AssembledArtifact | None:
        with self._lock:
            return self._artifacts.get(artifact_id)
