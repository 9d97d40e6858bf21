"""ORM model for the per-index part ledger."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from upload_pipeline.data.db import Base

if TYPE_CHECKING:
    from upload_pipeline.data.models.upload_session import UploadSessionRow


class UploadPartRow(Base):
    """One received fragment. The composite key makes resends overwrite.

    Attributes:
        session_id: Foreign key to the owning upload session.
        part_index: Zero-based position of the fragment in the file.
        byte_length: Size of the stored fragment.
        storage_locator: Path of the fragment in transient storage.
        checksum: SHA-256 hex digest recorded at receipt.
        received_at: UTC timestamp of the latest write for this index.
    """

    __tablename__ = "upload_parts"

    session_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("upload_sessions.session_id", ondelete="CASCADE"),
        primary_key=True,
    )
    part_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    byte_length: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_locator: Mapped[str] = mapped_column(String(1024), nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    session: Mapped[UploadSessionRow] = relationship("UploadSessionRow", back_populates="parts")
