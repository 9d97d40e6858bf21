"""FastAPI application entry point for the upload pipeline service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from upload_pipeline import __version__
from upload_pipeline.api.routes import files, health, uploads
from upload_pipeline.models.upload import (
    FinalizeInProgressError,
    InvalidUploadRequestError,
    SessionNotFoundError,
    SizeLimitExceededError,
    StorageWriteError,
    UploadError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[UploadError], int] = {
    SessionNotFoundError: 404,
    SizeLimitExceededError: 413,
    FinalizeInProgressError: 409,
    StorageWriteError: 500,
}

_CODE_BY_HTTP_STATUS = {
    401: "Unauthorized",
    403: "Forbidden",
    404: "NotFound",
    405: "MethodNotAllowed",
}


def status_for_error(exc: UploadError) -> int:
    """Return the HTTP status for a pipeline error; 400 unless mapped."""
    for error_type, status_code in _STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return status_code
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialize resources on startup and clean up on shutdown."""
    from upload_pipeline.data.db import init_db

    init_db()
    yield


app = FastAPI(
    title="Upload Pipeline API",
    description="Chunked upload, verification and reassembly of large files",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(UploadError)
async def upload_error_handler(request: Request, exc: UploadError) -> JSONResponse:
    status_code = status_for_error(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    missing = [str(error["loc"][-1]) for error in errors if error["type"] == "missing"]
    if missing:
        message = f"Missing required parameters: {', '.join(missing)}"
    else:
        first = errors[0]
        message = f"Invalid parameter {first['loc'][-1]}: {first['msg']}"
    logger.info("%s %s rejected: %s", request.method, request.url.path, message)
    return JSONResponse(status_code=400, content=InvalidUploadRequestError(message).to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    content = {
        "error": str(exc.detail),
        "code": _CODE_BY_HTTP_STATUS.get(exc.status_code, "HTTPError"),
        "retryable": False,
    }
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


app.include_router(health.router)
app.include_router(uploads.router, prefix="/api")
app.include_router(files.router, prefix="/api")


def main(host: str = "0.0.0.0", port: int = 8000, reload: bool = False) -> None:
    """Start the API server."""
    import uvicorn

    uvicorn.run(
        "upload_pipeline.api.main:app",
        host=host,
        port=port,
        reload=reload,
    )


if __name__ == "__main__":
    main()
