"""Environment-driven settings for the upload pipeline.

Every setting is read lazily through a getter so tests can override it with
``monkeypatch.setenv`` without reloading modules. A local ``.env`` file is
loaded once on import.
"""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

_PROJECT_ROOT = Path(__file__).resolve().parents[2]

DEFAULT_SESSION_TTL_HOURS = 24
DEFAULT_FINALIZE_LOCK_SECONDS = 15 * 60
DEFAULT_MAX_PART_BYTES = 32 * 1024 * 1024


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_path(name: str, default_dir_name: str) -> Path:
    env_root = os.getenv(name)
    if env_root:
        return Path(env_root).expanduser().resolve()
    return _PROJECT_ROOT / default_dir_name


def get_database_url() -> str:
    """Return the ledger database URL; ``DB_URL`` overrides the SQLite default."""
    env_url = os.getenv("DB_URL")
    if env_url:
        return env_url
    return f"sqlite:///{(_PROJECT_ROOT / 'upload_pipeline.db').as_posix()}"


def get_part_storage_root() -> Path:
    """Return the root directory for transient upload parts."""
    return _env_path("UPLOAD_PIPELINE_PART_DIR", ".upload_parts")


def get_artifact_storage_root() -> Path:
    """Return the root directory for assembled artifacts on local disk."""
    return _env_path("UPLOAD_PIPELINE_ARTIFACT_DIR", ".upload_artifacts")


def get_public_base_url() -> str:
    """Return the URL prefix under which local artifacts are served."""
    return os.getenv("UPLOAD_PIPELINE_PUBLIC_BASE_URL", "/uploads").rstrip("/")


def get_storage_backend() -> str:
    """Return the configured artifact backend name (``local`` or ``minio``)."""
    return os.getenv("UPLOAD_PIPELINE_STORAGE_BACKEND", "local").strip().lower()


def get_minio_settings() -> dict[str, object]:
    """Return connection settings for the MinIO artifact backend."""
    return {
        "endpoint": os.getenv("UPLOAD_PIPELINE_MINIO_ENDPOINT", "localhost:9000"),
        "access_key": os.getenv("UPLOAD_PIPELINE_MINIO_ACCESS_KEY", "minioadmin"),
        "secret_key": os.getenv("UPLOAD_PIPELINE_MINIO_SECRET_KEY", "minioadmin"),
        "bucket": os.getenv("UPLOAD_PIPELINE_MINIO_BUCKET", "uploads"),
        "secure": os.getenv("UPLOAD_PIPELINE_MINIO_SECURE", "false").lower() == "true",
    }


def get_session_ttl() -> timedelta:
    """Return how long an idle session is kept before the sweep removes it."""
    return timedelta(hours=_env_int("UPLOAD_PIPELINE_SESSION_TTL_HOURS", DEFAULT_SESSION_TTL_HOURS))


def get_finalize_lock_timeout() -> timedelta:
    """Return the age after which a finalize claim is treated as abandoned."""
    return timedelta(
        seconds=_env_int("UPLOAD_PIPELINE_FINALIZE_LOCK_SECONDS", DEFAULT_FINALIZE_LOCK_SECONDS)
    )


def get_max_part_bytes() -> int:
    """Return the largest fragment accepted in a single part request."""
    return _env_int("UPLOAD_PIPELINE_MAX_PART_BYTES", DEFAULT_MAX_PART_BYTES)


def get_categories_file() -> Path | None:
    """Return the optional JSON file overriding the category table."""
    raw = os.getenv("UPLOAD_PIPELINE_CATEGORIES_FILE")
    if not raw:
        return None
    return Path(raw).expanduser().resolve()


def configure_logging() -> None:
    """Configure root logging for the server and CLI entry points."""
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
