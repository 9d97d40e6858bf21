"""Upload pipeline facade binding the four stages to their collaborators."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta

from upload_pipeline.config import get_finalize_lock_timeout, get_max_part_bytes
from upload_pipeline.models.upload import (
    AssembledArtifact,
    CategoryRule,
    PartAck,
    SessionProgress,
    UploadSession,
    VerificationResult,
)
from upload_pipeline.services import finalizer, initiator, part_receiver, sweeper, verifier
from upload_pipeline.services.artifact_catalog import ArtifactCatalog, SqlArtifactCatalog
from upload_pipeline.services.blob_store import BlobStore, build_blob_store
from upload_pipeline.services.categories import load_categories
from upload_pipeline.services.part_storage import PartStorage
from upload_pipeline.services.session_store import SessionStore, SqlSessionStore

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class UploadPipeline:
    """Chunked upload pipeline: start, receive parts, verify, finalize.

    Every collaborator is injected so the ledger, fragment storage and
    artifact storage can be swapped independently (for example an
    ``InMemorySessionStore`` in tests and ``SqlSessionStore`` in the service).

    Args:
        store: Ledger of sessions and received parts.
        part_storage: Transient fragment storage.
        blob_store: Durable sink for assembled artifacts.
        catalog: Record of committed artifacts.
        categories: Category table; loaded from configuration when omitted.
        clock: Source of the current UTC time.
        max_part_bytes: Largest accepted fragment; configuration when omitted.
        lock_timeout: Age after which a finalize claim counts as abandoned.
    """

    def __init__(
        self,
        store: SessionStore,
        part_storage: PartStorage,
        blob_store: BlobStore,
        catalog: ArtifactCatalog,
        categories: Mapping[str, CategoryRule] | None = None,
        *,
        clock: Callable[[], datetime] = _utc_now,
        max_part_bytes: int | None = None,
        lock_timeout: timedelta | None = None,
    ) -> None:
        self.store = store
        self.part_storage = part_storage
        self.blob_store = blob_store
        self.catalog = catalog
        self.categories = dict(categories) if categories is not None else load_categories()
        self.clock = clock
        self.max_part_bytes = max_part_bytes if max_part_bytes is not None else get_max_part_bytes()
        self.lock_timeout = (
            lock_timeout if lock_timeout is not None else get_finalize_lock_timeout()
        )

    def start_session(
        self,
        owner_id: str,
        category: str,
        original_name: str,
        declared_size: int,
        *,
        content_type: str | None = None,
        total_parts: int | None = None,
    ) -> UploadSession:
        return initiator.start_session(
            self.store,
            self.categories,
            owner_id,
            category,
            original_name,
            declared_size,
            content_type=content_type,
            total_parts=total_parts,
            now=self.clock(),
        )

    def receive_part(
        self,
        session_id: str,
        index: int,
        total_parts: int,
        data: bytes,
        *,
        owner_id: str | None = None,
        checksum: str | None = None,
        original_name: str | None = None,
        original_size: int | None = None,
    ) -> PartAck:
        return part_receiver.receive_part(
            self.store,
            self.part_storage,
            session_id,
            index,
            total_parts,
            data,
            owner_id=owner_id,
            checksum=checksum,
            original_name=original_name,
            original_size=original_size,
            max_part_bytes=self.max_part_bytes,
            now=self.clock(),
        )

    def verify_complete(
        self, session_id: str, total_parts: int, *, owner_id: str | None = None
    ) -> VerificationResult:
        return verifier.verify_complete(self.store, session_id, total_parts, owner_id=owner_id)

    def finalize(
        self,
        session_id: str,
        owner_id: str,
        category: str,
        original_name: str,
        declared_size: int,
        total_parts: int,
    ) -> AssembledArtifact:
        return finalizer.finalize(
            self.store,
            self.part_storage,
            self.blob_store,
            self.catalog,
            session_id,
            owner_id,
            category,
            original_name,
            declared_size,
            total_parts,
            now=self.clock(),
            lock_timeout=self.lock_timeout,
        )

    def cancel_session(self, session_id: str, *, owner_id: str | None = None) -> None:
        sweeper.cancel_session(
            self.store,
            self.part_storage,
            session_id,
            owner_id=owner_id,
            now=self.clock(),
            lock_timeout=self.lock_timeout,
        )

    def sweep_expired_sessions(self, max_age: timedelta | None = None) -> int:
        return sweeper.sweep_expired_sessions(
            self.store,
            self.part_storage,
            max_age=max_age,
            now=self.clock(),
            lock_timeout=self.lock_timeout,
        )

    def list_sessions(
        self, owner_id: str, *, limit: int = 20, offset: int = 0
    ) -> tuple[list[SessionProgress], int]:
        """Return one page of the owner's sessions with their progress."""
        return self.store.list_for_owner(owner_id, limit=limit, offset=offset)

    def get_artifact(
        self, artifact_id: str, *, owner_id: str | None = None
    ) -> AssembledArtifact | None:
        """Return a committed artifact, or None when unknown or owned by someone else."""
        artifact = self.catalog.get(artifact_id)
        if artifact is None or (owner_id is not None and artifact.owner_id != owner_id):
            return None
        return artifact


def build_default_pipeline() -> UploadPipeline:
    """Return a pipeline wired to the database ledger and configured storage."""
    blob_store = build_blob_store()
    logger.info("Upload pipeline using %s", type(blob_store).__name__)
    return UploadPipeline(
        store=SqlSessionStore(),
        part_storage=PartStorage(),
        blob_store=blob_store,
        catalog=SqlArtifactCatalog(),
    )
