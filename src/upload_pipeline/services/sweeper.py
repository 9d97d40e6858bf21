"""Removal of sessions that will never be finalized: explicit cancel and TTL sweep."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from upload_pipeline.config import get_finalize_lock_timeout, get_session_ttl
from upload_pipeline.models.upload import FinalizeInProgressError
from upload_pipeline.services.part_storage import PartStorage
from upload_pipeline.services.session_store import SessionStore, require_session

logger = logging.getLogger(__name__)


def cancel_session(
    store: SessionStore,
    part_storage: PartStorage,
    session_id: str,
    *,
    owner_id: str | None = None,
    now: datetime | None = None,
    lock_timeout: timedelta | None = None,
) -> None:
    """Drop a session's parts and ledger entry.

    The session is claimed first, so a cancel cannot pull parts out from
    under a running finalize.
    """
    upload = require_session(store, session_id, owner_id)
    current = now or datetime.now(UTC)
    timeout = lock_timeout if lock_timeout is not None else get_finalize_lock_timeout()
    if not store.claim_finalize(session_id, now=current, stale_before=current - timeout):
        raise FinalizeInProgressError(session_id)
    store.delete(session_id)
    part_storage.remove_session(upload.owner_id, session_id)
    logger.info("Cancelled upload session %s for %s", session_id, upload.owner_id)


def sweep_expired_sessions(
    store: SessionStore,
    part_storage: PartStorage,
    *,
    max_age: timedelta | None = None,
    now: datetime | None = None,
    lock_timeout: timedelta | None = None,
) -> int:
    """Delete sessions with no activity for longer than ``max_age``.

    Sessions held by a live finalize are skipped; a finalize claim older than
    ``lock_timeout`` is considered abandoned and swept with its session.

    Returns:
        Number of sessions removed.
    """
    current = now or datetime.now(UTC)
    ttl = max_age if max_age is not None else get_session_ttl()
    timeout = lock_timeout if lock_timeout is not None else get_finalize_lock_timeout()
    stale_claim_before = current - timeout

    removed = 0
    for session_id in store.list_stale(
        idle_before=current - ttl, stale_claim_before=stale_claim_before
    ):
        upload = store.get(session_id)
        if upload is None:
            continue
        if not store.claim_finalize(session_id, now=current, stale_before=stale_claim_before):
            logger.debug("Skipping session %s: finalize in progress", session_id)
            continue
        store.delete(session_id)
        part_storage.remove_session(upload.owner_id, session_id)
        removed += 1
        logger.info(
            "Swept expired session %s for %s (idle since %s)",
            session_id,
            upload.owner_id,
            upload.updated_at.isoformat(),
        )

    if removed:
        logger.info("Sweep removed %d expired upload session(s)", removed)
    return removed
