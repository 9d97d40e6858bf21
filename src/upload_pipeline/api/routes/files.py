"""Lookup of committed artifacts."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from upload_pipeline.api.dependencies import get_current_user_id, get_pipeline
from upload_pipeline.api.routes.uploads import artifact_to_file_info
from upload_pipeline.api.schemas.uploads import FileInfo
from upload_pipeline.services.pipeline import UploadPipeline

router = APIRouter(prefix="/files", tags=["files"])


@router.get(
    "/{artifact_id}",
    response_model=FileInfo,
    summary="Get artifact metadata",
    responses={404: {"description": "Artifact not found"}},
)
def get_file(
    artifact_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)],
) -> FileInfo:
    artifact = pipeline.get_artifact(artifact_id, owner_id=user_id)
    if artifact is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File {artifact_id} not found",
        )
    return artifact_to_file_info(artifact)
