"""Data models and error taxonomy for chunked uploads."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

SESSION_OPEN = "open"
SESSION_FINALIZING = "finalizing"


class UploadError(Exception):
    """Base class for every failure the pipeline reports to its caller.

    Attributes:
        code: Stable identifier clients switch on.
        retryable: Whether repeating the failed operation can succeed
            without starting a new session.
    """

    code = "UploadError"
    retryable = False

    def to_dict(self) -> dict[str, object]:
        return {"error": str(self), "code": self.code, "retryable": self.retryable}


class InvalidCategoryError(UploadError):
    """Raised when a session names a category missing from the category table."""

    code = "InvalidCategory"

    def __init__(self, category: str) -> None:
        super().__init__(f"Unknown upload category: {category}")
        self.category = category


class InvalidFileTypeError(UploadError):
    """Raised when the file's MIME type is not allowed for its category."""

    code = "InvalidFileType"

    def __init__(self, category: str, content_type: str) -> None:
        super().__init__(f"Invalid file type for {category}: {content_type}")
        self.category = category
        self.content_type = content_type


class SizeLimitExceededError(UploadError):
    """Raised when a declared file or a single part is larger than allowed."""

    code = "SizeLimitExceeded"

    def __init__(self, message: str, *, limit: int) -> None:
        super().__init__(message)
        self.limit = limit


class InvalidUploadRequestError(UploadError):
    """Raised for malformed metadata: bad sizes, empty parts, mismatched fields."""

    code = "InvalidUploadRequest"


class SessionNotFoundError(UploadError):
    """Raised when a session id is unknown, expired, or owned by someone else."""

    code = "SessionNotFound"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Upload session not found: {session_id}")
        self.session_id = session_id


class IndexOutOfRangeError(UploadError):
    """Raised when a part index falls outside ``[0, total_parts)``."""

    code = "IndexOutOfRange"

    def __init__(self, index: int, total_parts: int) -> None:
        super().__init__(f"Part index {index} is out of range (0-{total_parts - 1})")
        self.index = index
        self.total_parts = total_parts


class FinalizeInProgressError(UploadError):
    """Raised when another finalize currently holds the session."""

    code = "FinalizeInProgress"
    retryable = True

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Upload session {session_id} is already being finalized")
        self.session_id = session_id


class IncompleteUploadError(UploadError):
    """Raised by finalize when one or more part indices are absent."""

    code = "IncompleteUpload"
    retryable = True

    def __init__(self, missing: list[int]) -> None:
        super().__init__(f"Incomplete upload. Missing parts: {missing}")
        self.missing = list(missing)

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["missing"] = self.missing
        return payload


class SizeMismatchError(UploadError):
    """Raised when the reassembled length differs from the declared size."""

    code = "SizeMismatch"

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"File size mismatch. Expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class PartIntegrityError(UploadError):
    """Raised when a part's bytes do not match its recorded or supplied digest."""

    code = "PartIntegrity"
    retryable = True

    def __init__(self, index: int, message: str | None = None) -> None:
        super().__init__(message or f"Checksum mismatch for part {index}")
        self.index = index


class StorageWriteError(UploadError):
    """Raised when transient or final storage cannot be written."""

    code = "StorageWriteFailure"
    retryable = True


@dataclass(frozen=True, slots=True)
class CategoryRule:
    """Validation rule for one upload category.

    Attributes:
        allowed_types: MIME types accepted for the category.
        max_bytes: Largest declared size accepted for the category.
    """

    allowed_types: frozenset[str]
    max_bytes: int


@dataclass(slots=True)
class UploadSession:
    """Bookkeeping for one logical file upload."""

    session_id: str
    owner_id: str
    category: str
    original_name: str
    declared_size: int
    content_type: str
    declared_total_parts: int | None = None
    status: str = SESSION_OPEN
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finalize_started_at: datetime | None = None


@dataclass(slots=True)
class PartRecord:
    """Ledger entry for one stored fragment."""

    session_id: str
    index: int
    byte_length: int
    storage_locator: str
    checksum: str
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class PartAck:
    """Acknowledgement returned after a part is stored."""

    session_id: str
    index: int
    byte_length: int
    checksum: str
    received_parts: int


@dataclass(frozen=True, slots=True)
class VerificationResult:
    """Outcome of a completeness check."""

    complete: bool
    missing: list[int]


@dataclass(frozen=True, slots=True)
class AssembledArtifact:
    """The reassembled, immutable file committed by finalize."""

    artifact_id: str
    owner_id: str
    category: str
    file_name: str
    content_type: str
    byte_length: int
    storage_locator: str
    checksum: str
    url: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class SessionProgress:
    """Progress view of an open session for listings."""

    session: UploadSession
    received_parts: int
    received_bytes: int
