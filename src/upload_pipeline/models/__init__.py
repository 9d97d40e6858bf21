"""Data models for chunked upload functionality."""

from upload_pipeline.models.upload import (
    AssembledArtifact,
    CategoryRule,
    FinalizeInProgressError,
    IncompleteUploadError,
    IndexOutOfRangeError,
    InvalidCategoryError,
    InvalidFileTypeError,
    InvalidUploadRequestError,
    PartAck,
    PartIntegrityError,
    PartRecord,
    SessionNotFoundError,
    SessionProgress,
    SizeLimitExceededError,
    SizeMismatchError,
    StorageWriteError,
    UploadError,
    UploadSession,
    VerificationResult,
)

__all__ = [
    "AssembledArtifact",
    "CategoryRule",
    "FinalizeInProgressError",
    "IncompleteUploadError",
    "IndexOutOfRangeError",
    "InvalidCategoryError",
    "InvalidFileTypeError",
    "InvalidUploadRequestError",
    "PartAck",
    "PartIntegrityError",
    "PartRecord",
    "SessionNotFoundError",
    "SessionProgress",
    "SizeLimitExceededError",
    "SizeMismatchError",
    "StorageWriteError",
    "UploadError",
    "UploadSession",
    "VerificationResult",
]
