"""Session ledger: where upload sessions and their received parts are recorded.

The pipeline depends only on :class:`SessionStore`. ``SqlSessionStore`` keeps
the ledger in the application database; ``InMemorySessionStore`` keeps it in
process memory for tests and embedding.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import UTC, datetime

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from upload_pipeline.data.db import get_session
from upload_pipeline.data.models import UploadPartRow, UploadSessionRow
from upload_pipeline.models.upload import (
    SESSION_FINALIZING,
    SESSION_OPEN,
    FinalizeInProgressError,
    PartRecord,
    SessionNotFoundError,
    SessionProgress,
    UploadSession,
)


def _ensure_open(status: str | None, session_id: str) -> None:
    if status is None:
        raise SessionNotFoundError(session_id)
    if status != SESSION_OPEN:
        raise FinalizeInProgressError(session_id)


class SessionStore(ABC):
    """Abstract ledger of upload sessions and their parts."""

    @abstractmethod
    def put(self, upload: UploadSession) -> None:
        """Record a newly started session."""

    @abstractmethod
    def get(self, session_id: str) -> UploadSession | None:
        """Return the session, or None when it does not exist."""

    @abstractmethod
    def delete(self, session_id: str) -> None:
        """Remove the session and every part recorded for it."""

    @abstractmethod
    def touch(self, session_id: str, *, total_parts: int, at: datetime) -> None:
        """Record activity and the latest declared part count."""

    @abstractmethod
    def put_part(self, part: PartRecord) -> None:
        """Insert or replace the ledger entry for ``(session_id, index)``.

        The session must still exist and be open when the entry is written;
        the check and the write happen as one step. Recording a part also
        refreshes the session's activity time.

        Raises:
            SessionNotFoundError: The session was deleted.
            FinalizeInProgressError: A finalize, cancel or sweep holds the session.
        """

    @abstractmethod
    def list_indices(self, session_id: str) -> list[int]:
        """Return the recorded part indices in ascending order."""

    @abstractmethod
    def list_parts(self, session_id: str) -> list[PartRecord]:
        """Return the recorded parts in ascending index order."""

    @abstractmethod
    def claim_finalize(self, session_id: str, *, now: datetime, stale_before: datetime) -> bool:
        """Atomically move an open session to finalizing.

        A finalizing claim taken before ``stale_before`` counts as abandoned
        and may be taken over. Returns False when another finalize holds it.
        """

    @abstractmethod
    def release_finalize(self, session_id: str) -> None:
        """Return a finalizing session to the open state."""

    @abstractmethod
    def list_stale(self, *, idle_before: datetime, stale_claim_before: datetime) -> list[str]:
        """Return ids of sessions idle since ``idle_before`` and not actively finalizing."""

    @abstractmethod
    def list_for_owner(
        self, owner_id: str, *, limit: int, offset: int
    ) -> tuple[list[SessionProgress], int]:
        """Return one page of the owner's sessions (newest first) and the total count."""


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back; every stored timestamp is UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _row_to_session(row: UploadSessionRow) -> UploadSession:
    return UploadSession(
        session_id=row.session_id,
        owner_id=row.owner_id,
        category=row.category,
        original_name=row.original_name,
        declared_size=row.declared_size,
        content_type=row.content_type,
        declared_total_parts=row.declared_total_parts,
        status=row.status,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
        finalize_started_at=_as_utc(row.finalize_started_at),
    )


def _row_to_part(row: UploadPartRow) -> PartRecord:
    return PartRecord(
        session_id=row.session_id,
        index=row.part_index,
        byte_length=row.byte_length,
        storage_locator=row.storage_locator,
        checksum=row.checksum,
        received_at=_as_utc(row.received_at),
    )


def _claimable(session_id: str, stale_before: datetime):
    return and_(
        UploadSessionRow.session_id == session_id,
        or_(
            UploadSessionRow.status == SESSION_OPEN,
            and_(
                UploadSessionRow.status == SESSION_FINALIZING,
                UploadSessionRow.finalize_started_at < stale_before,
            ),
        ),
    )


class SqlSessionStore(SessionStore):
    """Ledger backed by the ``upload_sessions`` and ``upload_parts`` tables."""

    def put(self, upload: UploadSession) -> None:
        with get_session() as session:
            session.add(
                UploadSessionRow(
                    session_id=upload.session_id,
                    owner_id=upload.owner_id,
                    category=upload.category,
                    original_name=upload.original_name,
                    declared_size=upload.declared_size,
                    content_type=upload.content_type,
                    declared_total_parts=upload.declared_total_parts,
                    status=upload.status,
                    created_at=upload.created_at,
                    updated_at=upload.updated_at,
                    finalize_started_at=upload.finalize_started_at,
                )
            )

    def get(self, session_id: str) -> UploadSession | None:
        with get_session() as session:
            row = session.get(UploadSessionRow, session_id)
            return _row_to_session(row) if row is not None else None

    def delete(self, session_id: str) -> None:
        with get_session() as session:
            session.execute(delete(UploadPartRow).where(UploadPartRow.session_id == session_id))
            session.execute(
                delete(UploadSessionRow).where(UploadSessionRow.session_id == session_id)
            )

    def touch(self, session_id: str, *, total_parts: int, at: datetime) -> None:
        with get_session() as session:
            session.execute(
                update(UploadSessionRow)
                .where(UploadSessionRow.session_id == session_id)
                .values(declared_total_parts=total_parts, updated_at=at),
                execution_options={"synchronize_session": False},
            )

    def put_part(self, part: PartRecord) -> None:
        # Two concurrent first writes of one index can race on the insert;
        # the loser retries as an update.
        for attempt in range(2):
            try:
                with get_session() as session:
                    # The conditional update takes the write lock, so a delete or
                    # claim cannot slip in between the status check and the insert.
                    opened = session.execute(
                        update(UploadSessionRow)
                        .where(
                            UploadSessionRow.session_id == part.session_id,
                            UploadSessionRow.status == SESSION_OPEN,
                        )
                        .values(updated_at=part.received_at),
                        execution_options={"synchronize_session": False},
                    )
                    if opened.rowcount != 1:
                        _ensure_open(
                            session.scalar(
                                select(UploadSessionRow.status).where(
                                    UploadSessionRow.session_id == part.session_id
                                )
                            ),
                            part.session_id,
                        )
                    row = session.get(UploadPartRow, (part.session_id, part.index))
                    if row is None:
                        session.add(
                            UploadPartRow(
                                session_id=part.session_id,
                                part_index=part.index,
                                byte_length=part.byte_length,
                                storage_locator=part.storage_locator,
                                checksum=part.checksum,
                                received_at=part.received_at,
                            )
                        )
                    else:
                        row.byte_length = part.byte_length
                        row.storage_locator = part.storage_locator
                        row.checksum = part.checksum
                        row.received_at = part.received_at
                return
            except IntegrityError:
                if attempt:
                    raise

    def list_indices(self, session_id: str) -> list[int]:
        with get_session() as session:
            rows = session.execute(
                select(UploadPartRow.part_index)
                .where(UploadPartRow.session_id == session_id)
                .order_by(UploadPartRow.part_index)
            )
            return [index for (index,) in rows]

    def list_parts(self, session_id: str) -> list[PartRecord]:
        with get_session() as session:
            rows = session.scalars(
                select(UploadPartRow)
                .where(UploadPartRow.session_id == session_id)
                .order_by(UploadPartRow.part_index)
            )
            return [_row_to_part(row) for row in rows]

    def claim_finalize(self, session_id: str, *, now: datetime, stale_before: datetime) -> bool:
        with get_session() as session:
            result = session.execute(
                update(UploadSessionRow)
                .where(_claimable(session_id, stale_before))
                .values(status=SESSION_FINALIZING, finalize_started_at=now),
                execution_options={"synchronize_session": False},
            )
            return result.rowcount == 1

    def release_finalize(self, session_id: str) -> None:
        with get_session() as session:
            session.execute(
                update(UploadSessionRow)
                .where(UploadSessionRow.session_id == session_id)
                .values(status=SESSION_OPEN, finalize_started_at=None),
                execution_options={"synchronize_session": False},
            )

    def list_stale(self, *, idle_before: datetime, stale_claim_before: datetime) -> list[str]:
        with get_session() as session:
            rows = session.execute(
                select(UploadSessionRow.session_id).where(
                    UploadSessionRow.updated_at < idle_before,
                    or_(
                        UploadSessionRow.status == SESSION_OPEN,
                        UploadSessionRow.finalize_started_at < stale_claim_before,
                    ),
                )
            )
            return [session_id for (session_id,) in rows]

    def list_for_owner(
        self, owner_id: str, *, limit: int, offset: int
    ) -> tuple[list[SessionProgress], int]:
        with get_session() as session:
            total = session.scalar(
                select(func.count())
                .select_from(UploadSessionRow)
                .where(UploadSessionRow.owner_id == owner_id)
            )
            part_stats = (
                select(
                    UploadPartRow.session_id,
                    func.count(UploadPartRow.part_index).label("parts"),
                    func.coalesce(func.sum(UploadPartRow.byte_length), 0).label("bytes"),
                )
                .group_by(UploadPartRow.session_id)
                .subquery()
            )
            rows = session.execute(
                select(UploadSessionRow, part_stats.c.parts, part_stats.c.bytes)
                .outerjoin(part_stats, part_stats.c.session_id == UploadSessionRow.session_id)
                .where(UploadSessionRow.owner_id == owner_id)
                .order_by(UploadSessionRow.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            items = [
                SessionProgress(
                    session=_row_to_session(row),
                    received_parts=int(parts or 0),
                    received_bytes=int(byte_total or 0),
                )
                for row, parts, byte_total in rows
            ]
            return items, int(total or 0)


class InMemorySessionStore(SessionStore):
    """Thread-safe ledger held in process memory."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sessions: dict[str, UploadSession] = {}
        self._parts: dict[str, dict[int, PartRecord]] = {}

    def put(self, upload: UploadSession) -> None:
        with self._lock:
            self._sessions[upload.session_id] = replace(upload)
            self._parts.setdefault(upload.session_id, {})

    def get(self, session_id: str) -> UploadSession | None:
        with self._lock:
            upload = self._sessions.get(session_id)
            return replace(upload) if upload is not None else None

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)
            self._parts.pop(session_id, None)

    def touch(self, session_id: str, *, total_parts: int, at: datetime) -> None:
        with self._lock:
            upload = self._sessions.get(session_id)
            if upload is not None:
                upload.declared_total_parts = total_parts
                upload.updated_at = at

    def put_part(self, part: PartRecord) -> None:
        with self._lock:
            upload = self._sessions.get(part.session_id)
            _ensure_open(upload.status if upload is not None else None, part.session_id)
            upload.updated_at = part.received_at
            self._parts[part.session_id][part.index] = replace(part)

    def list_indices(self, session_id: str) -> list[int]:
        with self._lock:
            return sorted(self._parts.get(session_id, {}))

    def list_parts(self, session_id: str) -> list[PartRecord]:
        with self._lock:
            parts = self._parts.get(session_id, {})
            return [replace(parts[index]) for index in sorted(parts)]

    def claim_finalize(self, session_id: str, *, now: datetime, stale_before: datetime) -> bool:
        with self._lock:
            upload = self._sessions.get(session_id)
            if upload is None:
                return False
            if upload.status == SESSION_FINALIZING and (
                upload.finalize_started_at is None or upload.finalize_started_at >= stale_before
            ):
                return False
            upload.status = SESSION_FINALIZING
            upload.finalize_started_at = now
            return True

    def release_finalize(self, session_id: str) -> None:
        with self._lock:
            upload = self._sessions.get(session_id)
            if upload is not None:
                upload.status = SESSION_OPEN
                upload.finalize_started_at = None

    def list_stale(self, *, idle_before: datetime, stale_claim_before: datetime) -> list[str]:
        with self._lock:
            return [
                upload.session_id
                for upload in self._sessions.values()
                if upload.updated_at < idle_before
                and (
                    upload.status == SESSION_OPEN
                    or (
                        upload.finalize_started_at is not None
                        and upload.finalize_started_at < stale_claim_before
                    )
                )
            ]

    def list_for_owner(
        self, owner_id: str, *, limit: int, offset: int
    ) -> tuple[list[SessionProgress], int]:
        with self._lock:
            owned = sorted(
                (u for u in self._sessions.values() if u.owner_id == owner_id),
                key=lambda u: u.created_at,
                reverse=True,
            )
            page = owned[offset : offset + limit]
            items = []
            for upload in page:
                parts = self._parts.get(upload.session_id, {})
                items.append(
                    SessionProgress(
                        session=replace(upload),
                        received_parts=len(parts),
                        received_bytes=sum(p.byte_length for p in parts.values()),
                    )
                )
            return items, len(owned)


def require_session(
    store: SessionStore, session_id: str, owner_id: str | None = None
) -> UploadSession:
    """Return the session, treating another owner's session as unknown."""
    upload = store.get(session_id)
    if upload is None or (owner_id is not None and upload.owner_id != owner_id):
        raise SessionNotFoundError(session_id)
    return upload
