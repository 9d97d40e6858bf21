"""Chunked upload routes: sessions, parts, verification, finalize, sweep."""

from __future__ import annotations

from datetime import timedelta
from typing import Annotated

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)
from fastapi.concurrency import run_in_threadpool

from upload_pipeline.api.dependencies import (
    ADMIN_ROLE,
    get_current_role,
    get_current_user_id,
    get_pipeline,
)
from upload_pipeline.api.schemas.common import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    ErrorResponse,
    PaginationMeta,
)
from upload_pipeline.api.schemas.uploads import (
    FileInfo,
    FinalizeRequest,
    FinalizeResponse,
    PaginatedSessionsResponse,
    PartAckResponse,
    SessionCreateRequest,
    SessionProgressResponse,
    SessionResponse,
    SweepResponse,
    VerificationResponse,
)
from upload_pipeline.models.upload import AssembledArtifact, SessionProgress
from upload_pipeline.services.pipeline import UploadPipeline

router = APIRouter(prefix="/uploads", tags=["uploads"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Rejected upload request"},
    404: {"model": ErrorResponse, "description": "Upload session not found"},
}


def artifact_to_file_info(artifact: AssembledArtifact) -> FileInfo:
    return FileInfo(
        id=artifact.artifact_id,
        name=artifact.file_name,
        type=artifact.content_type,
        size=artifact.byte_length,
        url=artifact.url,
        uploadedAt=artifact.created_at,
        category=artifact.category,
        checksum=artifact.checksum,
    )


def _progress_to_response(progress: SessionProgress) -> SessionProgressResponse:
    return SessionProgressResponse.model_validate(progress.session).model_copy(
        update={
            "received_parts": progress.received_parts,
            "received_bytes": progress.received_bytes,
        }
    )


@router.post(
    "/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start an upload session",
    responses={**_ERROR_RESPONSES, 413: {"model": ErrorResponse}},
)
def create_session(
    data: SessionCreateRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)],
) -> SessionResponse:
    upload = pipeline.start_session(
        user_id,
        data.category,
        data.original_name,
        data.original_size,
        content_type=data.content_type,
        total_parts=data.total_parts,
    )
    return SessionResponse.model_validate(upload)


@router.get(
    "/sessions",
    response_model=PaginatedSessionsResponse,
    summary="List the caller's upload sessions",
)
def list_sessions(
    user_id: Annotated[str, Depends(get_current_user_id)],
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)],
    limit: int = Query(
        default=DEFAULT_LIMIT,
        ge=1,
        le=MAX_LIMIT,
        description=f"Maximum number of items to return (1-{MAX_LIMIT})",
    ),
    offset: int = Query(
        default=0,
        ge=0,
        description="Number of items to skip",
    ),
) -> PaginatedSessionsResponse:
    items, total = pipeline.list_sessions(user_id, limit=limit, offset=offset)
    return PaginatedSessionsResponse(
        items=[_progress_to_response(item) for item in items],
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            has_more=(offset + len(items)) < total,
        ),
    )


@router.post(
    "/parts",
    response_model=PartAckResponse,
    summary="Upload one part of a file",
    description="Store one fragment. Re-sending an index replaces the earlier fragment.",
    responses={
        **_ERROR_RESPONSES,
        409: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
    },
)
async def upload_part(
    user_id: Annotated[str, Depends(get_current_user_id)],
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)],
    session_id: Annotated[str, Form(description="Upload session id")],
    index: Annotated[int, Form(description="Zero-based part index")],
    total_parts: Annotated[int, Form(description="Total number of parts")],
    file: Annotated[UploadFile, File(description="Raw part bytes")],
    original_name: Annotated[str | None, Form(description="Original file name")] = None,
    original_size: Annotated[int | None, Form(description="Original file size")] = None,
    checksum: Annotated[str | None, Form(description="SHA-256 hex digest of the part")] = None,
) -> PartAckResponse:
    data = await file.read()
    ack = await run_in_threadpool(
        pipeline.receive_part,
        session_id,
        index,
        total_parts,
        data,
        owner_id=user_id,
        checksum=checksum,
        original_name=original_name,
        original_size=original_size,
    )
    return PartAckResponse.model_validate(ack)


@router.get(
    "/sessions/{session_id}/verify",
    response_model=VerificationResponse,
    summary="Check which parts are missing",
    responses=_ERROR_RESPONSES,
)
def verify_session(
    session_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)],
    total_parts: int = Query(..., description="Total number of parts the client sent"),
) -> VerificationResponse:
    result = pipeline.verify_complete(session_id, total_parts, owner_id=user_id)
    return VerificationResponse(
        session_id=session_id, complete=result.complete, missing=result.missing
    )


@router.post(
    "/finalize",
    response_model=FinalizeResponse,
    summary="Reassemble an upload",
    description=(
        "Verify that every part is present, concatenate them in order and commit the file."
    ),
    responses={
        **_ERROR_RESPONSES,
        403: {"description": "user_id does not match the caller"},
        409: {"model": ErrorResponse, "description": "Finalize already running"},
        500: {"model": ErrorResponse, "description": "Artifact could not be stored"},
    },
)
def finalize_upload(
    data: FinalizeRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)],
) -> FinalizeResponse:
    if data.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only finalize your own uploads",
        )
    artifact = pipeline.finalize(
        data.session_id,
        user_id,
        data.category,
        data.original_name,
        data.original_size,
        data.total_chunks,
    )
    return FinalizeResponse(file=artifact_to_file_info(artifact), fileUrl=artifact.url)


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Cancel an upload session",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def cancel_session(
    session_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)],
) -> Response:
    pipeline.cancel_session(session_id, owner_id=user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Delete expired upload sessions",
    responses={403: {"description": "Admin role required"}},
)
def sweep_sessions(
    user_id: Annotated[str, Depends(get_current_user_id)],
    role: Annotated[str | None, Depends(get_current_role)],
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)],
    max_age_hours: float | None = Query(
        default=None, gt=0, description="Override the configured session TTL"
    ),
) -> SweepResponse:
    if role != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators can sweep upload sessions",
        )
    max_age = timedelta(hours=max_age_hours) if max_age_hours is not None else None
    return SweepResponse(removed=pipeline.sweep_expired_sessions(max_age))
