"""Pydantic schemas for chunked upload endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from upload_pipeline.api.schemas.common import PaginationMeta


class SessionCreateRequest(BaseModel):
    """Request schema for starting an upload session."""

    category: str = Field(..., description="Upload category, e.g. course-resource")
    original_name: str = Field(..., min_length=1, description="Original file name")
    original_size: int = Field(..., description="Total file size in bytes")
    content_type: str | None = Field(None, description="MIME type; guessed from the name if absent")
    total_parts: int | None = Field(None, description="Number of parts, if known up front")


class SessionResponse(BaseModel):
    """Response schema for an upload session."""

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    owner_id: str
    category: str
    original_name: str
    declared_size: int
    content_type: str
    declared_total_parts: int | None = None
    status: str
    created_at: datetime
    updated_at: datetime


class SessionProgressResponse(SessionResponse):
    """Upload session with the parts received so far."""

    received_parts: int = 0
    received_bytes: int = 0


class PaginatedSessionsResponse(BaseModel):
    """Paginated list of the caller's upload sessions."""

    items: list[SessionProgressResponse]
    pagination: PaginationMeta


class PartAckResponse(BaseModel):
    """Acknowledgement for a stored part."""

    model_config = ConfigDict(from_attributes=True)

    success: bool = True
    session_id: str
    index: int
    byte_length: int
    checksum: str
    received_parts: int


class VerificationResponse(BaseModel):
    """Completeness check result."""

    session_id: str
    complete: bool
    missing: list[int]


class FinalizeRequest(BaseModel):
    """Request schema for finalizing an upload.

    Field names follow the upload client's wire format.
    """

    session_id: str = Field(..., description="Upload session id")
    user_id: str = Field(..., description="Owner of the session")
    category: str = Field(..., description="Category given at session start")
    original_name: str = Field(..., description="File name given at session start")
    original_size: int = Field(..., description="File size given at session start")
    total_chunks: int = Field(..., description="Number of parts the file was split into")


class FileInfo(BaseModel):
    """Public description of an assembled file."""

    id: str
    name: str
    type: str
    size: int
    url: str
    uploadedAt: datetime  # noqa: N815
    category: str
    checksum: str


class FinalizeResponse(BaseModel):
    """Response schema for a successful finalize."""

    success: bool = True
    file: FileInfo
    fileUrl: str  # noqa: N815


class SweepResponse(BaseModel):
    """Result of a TTL sweep."""

    removed: int
