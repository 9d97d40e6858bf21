"""ORM model for chunked upload sessions (the part ledger header)."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from upload_pipeline.data.db import Base

if TYPE_CHECKING:
    from upload_pipeline.data.models.upload_part import UploadPartRow


class UploadSessionRow(Base):
    """Persisted state for one in-flight upload.

    Attributes:
        session_id: Opaque uuid4 identifier handed to the client.
        owner_id: Identity of the caller that started the session.
        category: Category key from the category table.
        original_name: File name as supplied by the client.
        declared_size: Byte size the client promised to send.
        content_type: Declared or inferred MIME type.
        declared_total_parts: Part count from the latest part request.
        status: ``open`` or ``finalizing``.
        created_at: UTC timestamp of session start.
        updated_at: UTC timestamp of the last part received.
        finalize_started_at: When the current finalize claim was taken.
    """

    __tablename__ = "upload_sessions"

    session_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    original_name: Mapped[str] = mapped_column(String(512), nullable=False)
    declared_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False)
    declared_total_parts: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open", index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True
    )
    finalize_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    parts: Mapped[list[UploadPartRow]] = relationship(
        "UploadPartRow", back_populates="session", cascade="all, delete-orphan"
    )
