"""Completeness verifier: report which part indices are still missing."""

from __future__ import annotations

from collections.abc import Iterable

from upload_pipeline.models.upload import InvalidUploadRequestError, VerificationResult
from upload_pipeline.services.session_store import SessionStore, require_session


def missing_indices(received: Iterable[int], total_parts: int) -> list[int]:
    """Return the indices in ``[0, total_parts)`` absent from ``received``.

    Indices at or beyond ``total_parts`` are ignored.
    """
    present = set(received)
    return [index for index in range(total_parts) if index not in present]


def verify_complete(
    store: SessionStore,
    session_id: str,
    total_parts: int,
    *,
    owner_id: str | None = None,
) -> VerificationResult:
    """Check whether parts ``0..total_parts-1`` have all been received.

    This is read-only and may be called any number of times.
    """
    require_session(store, session_id, owner_id)
    if total_parts < 1:
        raise InvalidUploadRequestError(f"Total parts must be at least 1, got {total_parts}")
    missing = missing_indices(store.list_indices(session_id), total_parts)
    return VerificationResult(complete=not missing, missing=missing)
