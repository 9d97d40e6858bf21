"""Category table: which MIME types and sizes each upload category accepts."""

from __future__ import annotations

import json
import logging
import mimetypes
from collections.abc import Mapping
from pathlib import Path, PurePosixPath

from upload_pipeline.config import get_categories_file
from upload_pipeline.models.upload import (
    CategoryRule,
    InvalidCategoryError,
    InvalidFileTypeError,
    SizeLimitExceededError,
)

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_IMAGE_TYPES = frozenset({"image/png", "image/jpeg", "image/jpg", "image/gif", "image/webp"})
_DOCUMENT_TYPES = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)
_OFFICE_TYPES = _DOCUMENT_TYPES | frozenset(
    {
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/zip",
        "application/x-zip-compressed",
        "text/plain",
    }
)
_VIDEO_TYPES = frozenset(
    {
        "video/mp4",
        "video/avi",
        "video/x-msvideo",
        "video/mov",
        "video/quicktime",
        "video/wmv",
        "video/x-ms-wmv",
        "video/flv",
        "video/x-flv",
        "video/webm",
    }
)

DEFAULT_CATEGORIES: dict[str, CategoryRule] = {
    "profile-picture": CategoryRule(_IMAGE_TYPES, 5 * MIB),
    "cv": CategoryRule(_DOCUMENT_TYPES, 10 * MIB),
    "certificate": CategoryRule(_IMAGE_TYPES | {"application/pdf"}, 10 * MIB),
    "course-thumbnail": CategoryRule(_IMAGE_TYPES | {"image/svg+xml"}, 10 * MIB),
    "course-resource": CategoryRule(_OFFICE_TYPES | {"image/png", "image/jpeg"}, 20 * MIB),
    "course-video": CategoryRule(_VIDEO_TYPES, 500 * MIB),
    "other": CategoryRule(_IMAGE_TYPES | _DOCUMENT_TYPES, 10 * MIB),
}

CONTENT_TYPE_ALIASES = {
    "image/pjpeg": "image/jpeg",
}


def load_categories(path: Path | None = None) -> dict[str, CategoryRule]:
    """Return the category table, read from JSON when a file is configured.

    The JSON shape is ``{"<category>": {"allowed_types": [...], "max_bytes": N}}``.
    """
    source = path if path is not None else get_categories_file()
    if source is None:
        return dict(DEFAULT_CATEGORIES)

    raw = json.loads(source.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Category file {source} must contain a JSON object")

    table: dict[str, CategoryRule] = {}
    for name, entry in raw.items():
        allowed = entry.get("allowed_types")
        max_bytes = entry.get("max_bytes")
        if not isinstance(allowed, list) or not isinstance(max_bytes, int) or max_bytes <= 0:
            raise ValueError(f"Invalid rule for category {name!r} in {source}")
        table[name] = CategoryRule(frozenset(str(t).lower() for t in allowed), max_bytes)
    logger.info("Loaded %d upload categories from %s", len(table), source)
    return table


def normalize_content_type(content_type: str | None, file_name: str) -> str:
    """Return a lower-cased MIME type, guessing from the file name when absent."""
    if content_type and content_type.strip():
        normalized = content_type.split(";", 1)[0].strip().lower()
        return CONTENT_TYPE_ALIASES.get(normalized, normalized)
    guessed, _ = mimetypes.guess_type(PurePosixPath(file_name).name)
    return guessed or DEFAULT_CONTENT_TYPE


def validate_declared_file(
    categories: Mapping[str, CategoryRule],
    category: str,
    content_type: str,
    declared_size: int,
) -> CategoryRule:
    """Check a declared file against its category rule and return the rule."""
    rule = categories.get(category)
    if rule is None:
        raise InvalidCategoryError(category)
    if content_type not in rule.allowed_types:
        raise InvalidFileTypeError(category, content_type)
    if declared_size > rule.max_bytes:
        max_mib = round(rule.max_bytes / MIB)
        raise SizeLimitExceededError(
            f"File too large. Maximum size for {category} is {max_mib}MB",
            limit=rule.max_bytes,
        )
    return rule
