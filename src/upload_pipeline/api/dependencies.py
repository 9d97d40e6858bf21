"""Shared dependencies for API routes."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Header, HTTPException, status

from upload_pipeline.services.pipeline import UploadPipeline, build_default_pipeline

ADMIN_ROLE = "admin"


def get_current_user_id(
    x_user_id: Annotated[
        str | None,
        Header(
            description=(
                "Caller identity. Set by the authentication layer in front of this service."
            )
        ),
    ] = None,
) -> str:
    """Get the caller's user id from request context.

    Args:
        x_user_id: User id from the X-User-Id header.

    Returns:
        str: Authenticated user id.

    Raises:
        HTTPException: If authentication is missing (401).
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication. Please provide X-User-Id header.",
        )
    return x_user_id.strip()


def get_current_role(
    x_user_role: Annotated[
        str | None,
        Header(description="Caller role, e.g. admin. Optional."),
    ] = None,
) -> str | None:
    """Get the caller's role if provided."""
    return x_user_role.strip().lower() if x_user_role else None


@lru_cache(maxsize=1)
def get_pipeline() -> UploadPipeline:
    """Return the process-wide upload pipeline."""
    return build_default_pipeline()
