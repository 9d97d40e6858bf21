"""Session initiator: validate declared file metadata and open a session."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime

from upload_pipeline.models.upload import (
    CategoryRule,
    InvalidUploadRequestError,
    UploadError,
    UploadSession,
)
from upload_pipeline.services.categories import normalize_content_type, validate_declared_file
from upload_pipeline.services.session_store import SessionStore

logger = logging.getLogger(__name__)


def start_session(
    store: SessionStore,
    categories: Mapping[str, CategoryRule],
    owner_id: str,
    category: str,
    original_name: str,
    declared_size: int,
    *,
    content_type: str | None = None,
    total_parts: int | None = None,
    now: datetime | None = None,
) -> UploadSession:
    """Open an upload session with an empty part ledger.

    Args:
        store: Ledger that records the session.
        categories: Category table consulted for type and size rules.
        owner_id: Identity of the caller starting the upload.
        category: Category name, looked up in ``categories``.
        original_name: File name as supplied by the client.
        declared_size: Total byte length of the file.
        content_type: Declared MIME type; guessed from the name when omitted.
        total_parts: Optional part count known up front.
        now: Timestamp to record; defaults to the current UTC time.

    Returns:
        The newly created session.

    Raises:
        InvalidUploadRequestError: Blank owner or name, non-positive size,
            or an impossible part count.
        InvalidCategoryError: ``category`` is not in the table.
        InvalidFileTypeError: The MIME type is not allowed for the category.
        SizeLimitExceededError: ``declared_size`` is above the category ceiling.
    """
    if not owner_id or not owner_id.strip():
        raise InvalidUploadRequestError("Owner id is required")
    if not original_name or not original_name.strip():
        raise InvalidUploadRequestError("Original file name is required")
    if declared_size <= 0:
        raise InvalidUploadRequestError("Declared size must be a positive number of bytes")
    if total_parts is not None and not 1 <= total_parts <= declared_size:
        raise InvalidUploadRequestError(
            f"Total parts must be between 1 and {declared_size}, got {total_parts}"
        )

    resolved_type = normalize_content_type(content_type, original_name)
    try:
        validate_declared_file(categories, category, resolved_type, declared_size)
    except UploadError:
        logger.warning(
            "Rejected upload of %s (%s, %d bytes) in category %s for %s",
            original_name,
            resolved_type,
            declared_size,
            category,
            owner_id,
        )
        raise

    timestamp = now or datetime.now(UTC)
    upload = UploadSession(
        session_id=str(uuid.uuid4()),
        owner_id=owner_id,
        category=category,
        original_name=original_name,
        declared_size=declared_size,
        content_type=resolved_type,
        declared_total_parts=total_parts,
        created_at=timestamp,
        updated_at=timestamp,
    )
    store.put(upload)
    logger.info(
        "Started upload session %s for %s (%s, %d bytes)",
        upload.session_id,
        owner_id,
        category,
        declared_size,
    )
    return upload
