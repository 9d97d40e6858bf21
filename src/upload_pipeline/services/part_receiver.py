"""Part receiver: durably store one fragment and record it in the ledger."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from upload_pipeline.models.upload import (
    SESSION_FINALIZING,
    FinalizeInProgressError,
    IndexOutOfRangeError,
    InvalidUploadRequestError,
    PartAck,
    PartIntegrityError,
    PartRecord,
    SessionNotFoundError,
    SizeLimitExceededError,
    StorageWriteError,
    UploadSession,
)
from upload_pipeline.services.part_storage import PartStorage, sha256_hex
from upload_pipeline.services.session_store import SessionStore, require_session

logger = logging.getLogger(__name__)


def _check_metadata(
    upload: UploadSession, original_name: str | None, original_size: int | None
) -> None:
    if original_name is not None and original_name != upload.original_name:
        raise InvalidUploadRequestError(
            f"Part metadata names {original_name!r} but the session is for "
            f"{upload.original_name!r}"
        )
    if original_size is not None and original_size != upload.declared_size:
        raise InvalidUploadRequestError(
            f"Part metadata declares {original_size} bytes but the session declares "
            f"{upload.declared_size}"
        )


def receive_part(
    store: SessionStore,
    part_storage: PartStorage,
    session_id: str,
    index: int,
    total_parts: int,
    data: bytes,
    *,
    owner_id: str | None = None,
    checksum: str | None = None,
    original_name: str | None = None,
    original_size: int | None = None,
    max_part_bytes: int | None = None,
    now: datetime | None = None,
) -> PartAck:
    """Store fragment ``index`` of a session, replacing any earlier copy.

    Re-delivering the same index is safe: the fragment file is swapped in
    atomically and the ledger row for ``(session_id, index)`` is overwritten,
    so a retry never duplicates or half-overwrites a part.

    Raises:
        SessionNotFoundError: Unknown session, or not owned by ``owner_id``.
        FinalizeInProgressError: A finalize currently holds the session.
        IndexOutOfRangeError: ``index`` is outside ``[0, total_parts)``.
        InvalidUploadRequestError: Empty data, bad part count, or metadata
            that disagrees with the session.
        SizeLimitExceededError: The fragment is larger than allowed.
        PartIntegrityError: ``checksum`` does not match the received bytes.
        StorageWriteError: The fragment could not be written.
    """
    upload = require_session(store, session_id, owner_id)
    if upload.status == SESSION_FINALIZING:
        raise FinalizeInProgressError(session_id)

    if total_parts < 1 or total_parts > upload.declared_size:
        raise InvalidUploadRequestError(
            f"Total parts must be between 1 and {upload.declared_size}, got {total_parts}"
        )
    if not 0 <= index < total_parts:
        raise IndexOutOfRangeError(index, total_parts)
    if not data:
        raise InvalidUploadRequestError(f"Part {index} is empty")
    if max_part_bytes is not None and len(data) > max_part_bytes:
        raise SizeLimitExceededError(
            f"Part {index} is {len(data)} bytes; the limit is {max_part_bytes}",
            limit=max_part_bytes,
        )
    if len(data) > upload.declared_size:
        raise SizeLimitExceededError(
            f"Part {index} is larger than the declared file size {upload.declared_size}",
            limit=upload.declared_size,
        )
    _check_metadata(upload, original_name, original_size)

    digest = sha256_hex(data)
    if checksum is not None and checksum.strip().lower() != digest:
        logger.warning("Checksum mismatch on part %d of session %s", index, session_id)
        raise PartIntegrityError(index)

    try:
        path = part_storage.write_part(upload.owner_id, session_id, index, data)
    except OSError as exc:
        logger.exception("Failed to write part %d of session %s", index, session_id)
        raise StorageWriteError(f"Failed to store part {index}") from exc

    received_at = now or datetime.now(UTC)
    try:
        store.put_part(
            PartRecord(
                session_id=session_id,
                index=index,
                byte_length=len(data),
                storage_locator=str(path),
                checksum=digest,
                received_at=received_at,
            )
        )
    except SessionNotFoundError:
        # Deleted while the fragment was being written; the write recreated
        # its directory.
        logger.warning(
            "Session %s was removed while part %d was stored; discarding it", session_id, index
        )
        part_storage.remove_session(upload.owner_id, session_id)
        raise
    except FinalizeInProgressError:
        # The claim holder owns the directory: a cancel or sweep removes it, and a
        # finalize either commits and removes it or re-checks every digest.
        logger.warning("Part %d of session %s arrived during finalize", index, session_id)
        raise

    store.touch(session_id, total_parts=total_parts, at=received_at)

    received = len(store.list_indices(session_id))
    logger.debug(
        "Stored part %d/%d of session %s (%d bytes)", index + 1, total_parts, session_id, len(data)
    )
    return PartAck(
        session_id=session_id,
        index=index,
        byte_length=len(data),
        checksum=digest,
        received_parts=received,
    )
