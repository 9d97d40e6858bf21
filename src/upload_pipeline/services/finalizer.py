"""Finalizer: reassemble a complete session into one durable artifact.

Parts are streamed in ascending index order into a staging file next to the
fragments. Each part's SHA-256 is recomputed on the way and compared with the
digest recorded at receipt. Only a staging file whose length equals the
declared size is handed to the blob store; every other outcome leaves the
parts in place and publishes nothing.
"""

from __future__ import annotations

import hashlib
import logging
import os
import secrets
import tempfile
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path, PurePosixPath

from upload_pipeline.config import get_finalize_lock_timeout
from upload_pipeline.models.upload import (
    AssembledArtifact,
    FinalizeInProgressError,
    IncompleteUploadError,
    InvalidUploadRequestError,
    PartIntegrityError,
    PartRecord,
    SizeMismatchError,
    StorageWriteError,
    UploadSession,
)
from upload_pipeline.services.artifact_catalog import ArtifactCatalog
from upload_pipeline.services.blob_store import BlobStore
from upload_pipeline.services.part_storage import PartStorage, safe_segment
from upload_pipeline.services.session_store import SessionStore, require_session
from upload_pipeline.services.verifier import verify_complete

logger = logging.getLogger(__name__)


def build_storage_key(category: str, owner_id: str, original_name: str, *, now: datetime) -> str:
    """Return ``{category}/{owner}/{timestamp_ms}-{random}.{extension}``."""
    extension = PurePosixPath(safe_segment(original_name)).suffix.lower()
    timestamp_ms = int(now.timestamp() * 1000)
    return (
        f"{safe_segment(category)}/{safe_segment(owner_id)}/"
        f"{timestamp_ms}-{secrets.token_hex(4)}{extension}"
    )


def _check_metadata(
    upload: UploadSession,
    category: str,
    original_name: str,
    declared_size: int,
    total_parts: int,
) -> None:
    mismatches = []
    if category != upload.category:
        mismatches.append("category")
    if original_name != upload.original_name:
        mismatches.append("original_name")
    if declared_size != upload.declared_size:
        mismatches.append("original_size")
    if mismatches:
        raise InvalidUploadRequestError(
            f"Finalize metadata does not match the session: {', '.join(mismatches)}"
        )
    if not 1 <= total_parts <= declared_size:
        raise InvalidUploadRequestError(
            f"Total parts must be between 1 and {declared_size}, got {total_parts}"
        )


def _write_parts(
    part_storage: PartStorage,
    parts: list[PartRecord],
    staging_file,
) -> tuple[int, str]:
    """Append every part to ``staging_file``; return (byte count, whole-file digest)."""
    artifact_hash = hashlib.sha256()
    total = 0
    for part in parts:
        part_hash = hashlib.sha256()
        try:
            for block in part_storage.iter_part(part.storage_locator):
                part_hash.update(block)
                artifact_hash.update(block)
                staging_file.write(block)
                total += len(block)
        except FileNotFoundError as exc:
            raise PartIntegrityError(
                part.index, f"Part {part.index} is missing from storage"
            ) from exc
        if part_hash.hexdigest() != part.checksum:
            raise PartIntegrityError(part.index)
    staging_file.flush()
    os.fsync(staging_file.fileno())
    return total, artifact_hash.hexdigest()


def _assemble(
    store: SessionStore,
    part_storage: PartStorage,
    blob_store: BlobStore,
    catalog: ArtifactCatalog,
    upload: UploadSession,
    total_parts: int,
    now: datetime,
) -> AssembledArtifact:
    verification = verify_complete(store, upload.session_id, total_parts)
    if not verification.complete:
        logger.info(
            "Session %s is missing parts %s", upload.session_id, verification.missing
        )
        raise IncompleteUploadError(verification.missing)

    parts = [part for part in store.list_parts(upload.session_id) if part.index < total_parts]

    staging_dir = part_storage.session_dir(upload.owner_id, upload.session_id)
    staging_path: Path | None = None
    try:
        staging_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="wb", dir=staging_dir, prefix=".assembly-", suffix=".tmp", delete=False
        ) as staging_file:
            staging_path = Path(staging_file.name)
            byte_length, checksum = _write_parts(part_storage, parts, staging_file)

        if byte_length != upload.declared_size:
            logger.warning(
                "Size mismatch for session %s: expected %d, assembled %d",
                upload.session_id,
                upload.declared_size,
                byte_length,
            )
            raise SizeMismatchError(upload.declared_size, byte_length)

        key = build_storage_key(upload.category, upload.owner_id, upload.original_name, now=now)
        blob_store.put_file(key, staging_path, upload.content_type)
        artifact = AssembledArtifact(
            artifact_id=str(uuid.uuid4()),
            owner_id=upload.owner_id,
            category=upload.category,
            file_name=upload.original_name,
            content_type=upload.content_type,
            byte_length=byte_length,
            storage_locator=key,
            checksum=checksum,
            url=blob_store.url_for(key),
            created_at=now,
        )
        try:
            catalog.add(artifact)
        except Exception:
            blob_store.delete(key)
            raise
        return artifact
    except OSError as exc:
        raise StorageWriteError(
            f"Failed to assemble upload session {upload.session_id}"
        ) from exc
    finally:
        if staging_path is not None:
            staging_path.unlink(missing_ok=True)


def _discard_session(store: SessionStore, part_storage: PartStorage, upload: UploadSession) -> None:
    # The artifact is already committed; failures here are left for the sweep.
    try:
        store.delete(upload.session_id)
    except Exception:
        logger.exception("Failed to delete ledger for session %s", upload.session_id)
    try:
        part_storage.remove_session(upload.owner_id, upload.session_id)
    except OSError:
        logger.exception("Failed to remove parts for session %s", upload.session_id)


def finalize(
    store: SessionStore,
    part_storage: PartStorage,
    blob_store: BlobStore,
    catalog: ArtifactCatalog,
    session_id: str,
    owner_id: str,
    category: str,
    original_name: str,
    declared_size: int,
    total_parts: int,
    *,
    now: datetime | None = None,
    lock_timeout: timedelta | None = None,
) -> AssembledArtifact:
    """Verify, concatenate and commit a session as a single artifact.

    The caller re-supplies the metadata it started the session with; any
    disagreement with the recorded session is rejected before work begins.
    At most one finalize runs per session at a time. A claim older than
    ``lock_timeout`` is treated as abandoned and taken over.

    Returns:
        The committed artifact. Its ``byte_length`` always equals
        ``declared_size``.

    Raises:
        SessionNotFoundError: Unknown session, or not owned by ``owner_id``.
        InvalidUploadRequestError: Metadata disagrees with the session.
        FinalizeInProgressError: Another finalize holds the session.
        IncompleteUploadError: One or more indices were never received.
        PartIntegrityError: A stored part no longer matches its digest.
        SizeMismatchError: The assembled length differs from ``declared_size``.
        StorageWriteError: Staging or publishing the artifact failed.
    """
    upload = require_session(store, session_id, owner_id)
    _check_metadata(upload, category, original_name, declared_size, total_parts)

    started = now or datetime.now(UTC)
    timeout = lock_timeout if lock_timeout is not None else get_finalize_lock_timeout()
    if not store.claim_finalize(session_id, now=started, stale_before=started - timeout):
        require_session(store, session_id, owner_id)
        raise FinalizeInProgressError(session_id)

    try:
        artifact = _assemble(store, part_storage, blob_store, catalog, upload, total_parts, started)
    except Exception:
        store.release_finalize(session_id)
        raise

    _discard_session(store, part_storage, upload)
    logger.info(
        "Finalized session %s into artifact %s (%s, %d bytes)",
        session_id,
        artifact.artifact_id,
        artifact.storage_locator,
        artifact.byte_length,
    )
    return artifact
