"""Durable storage for assembled artifacts.

Artifacts are addressed by a key such as ``cv/user-1/1700000000000-ab12cd.pdf``.
``LocalBlobStore`` keeps them on disk; ``MinioBlobStore`` keeps them in an
S3-compatible bucket.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from urllib.parse import quote

from minio import Minio
from minio.error import S3Error

from upload_pipeline.config import (
    get_artifact_storage_root,
    get_minio_settings,
    get_public_base_url,
    get_storage_backend,
)
from upload_pipeline.models.upload import StorageWriteError

logger = logging.getLogger(__name__)


def _validate_key(key: str) -> str:
    parts = PurePosixPath(key).parts
    if not parts or key.startswith("/") or any(part in {"..", "."} for part in parts):
        raise ValueError(f"Invalid storage key: {key!r}")
    return key


class BlobStore(ABC):
    """Abstract durable blob sink with key addressing."""

    @abstractmethod
    def put_file(self, key: str, source: Path, content_type: str) -> None:
        """Publish ``source`` under ``key``; readers see all of it or nothing."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Return True if an object is stored under ``key``."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the object stored under ``key`` if present."""

    @abstractmethod
    def url_for(self, key: str) -> str:
        """Return the URL clients use to fetch ``key``."""


class LocalBlobStore(BlobStore):
    """Blob store rooted in a local directory."""

    def __init__(self, root: Path | None = None, base_url: str | None = None) -> None:
        self._root = root
        self._base_url = base_url

    @property
    def root(self) -> Path:
        return self._root if self._root is not None else get_artifact_storage_root()

    def path_for(self, key: str) -> Path:
        return self.root / _validate_key(key)

    def put_file(self, key: str, source: Path, content_type: str) -> None:
        target = self.path_for(key)
        temp_path: Path | None = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="wb", dir=target.parent, suffix=".tmp", delete=False
            ) as temp_file:
                temp_path = Path(temp_file.name)
                with open(source, "rb") as reader:
                    shutil.copyfileobj(reader, temp_file)
                temp_file.flush()
                os.fsync(temp_file.fileno())
            os.replace(temp_path, target)
        except OSError as exc:
            if temp_path is not None:
                with contextlib.suppress(FileNotFoundError):
                    temp_path.unlink()
            raise StorageWriteError(f"Failed to store artifact {key}") from exc
        logger.info("Stored artifact %s (%s)", key, content_type)

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def delete(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)

    def url_for(self, key: str) -> str:
        base_url = self._base_url if self._base_url is not None else get_public_base_url()
        return f"{base_url.rstrip('/')}/{quote(key)}"


class MinioBlobStore(BlobStore):
    """Blob store backed by a MinIO / S3 bucket.

    A single PUT is atomic in S3 semantics, so a partially uploaded object is
    never visible under its key.
    """

    def __init__(self, client: Minio, bucket: str, base_url: str | None = None) -> None:
        self.client = client
        self.bucket = bucket
        self._base_url = base_url

    @classmethod
    def from_env(cls) -> MinioBlobStore:
        settings = get_minio_settings()
        client = Minio(
            str(settings["endpoint"]),
            access_key=str(settings["access_key"]),
            secret_key=str(settings["secret_key"]),
            secure=bool(settings["secure"]),
        )
        return cls(client, str(settings["bucket"]))

    def ensure_bucket_exists(self) -> None:
        """Create the bucket if it doesn't exist."""
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)
            logger.info("Created MinIO bucket %s", self.bucket)

    def put_file(self, key: str, source: Path, content_type: str) -> None:
        _validate_key(key)
        try:
            self.client.fput_object(self.bucket, key, str(source), content_type=content_type)
        except (S3Error, OSError) as exc:
            raise StorageWriteError(f"Failed to store artifact {key}") from exc
        logger.info("Uploaded artifact %s to bucket %s", key, self.bucket)

    def exists(self, key: str) -> bool:
        try:
            self.client.stat_object(self.bucket, key)
            return True
        except S3Error:
            return False

    def delete(self, key: str) -> None:
        self.client.remove_object(self.bucket, key)

    def url_for(self, key: str) -> str:
        base_url = self._base_url if self._base_url is not None else get_public_base_url()
        return f"{base_url.rstrip('/')}/{quote(self.bucket)}/{quote(key)}"


def build_blob_store() -> BlobStore:
    """Return the blob store selected by ``UPLOAD_PIPELINE_STORAGE_BACKEND``."""
    backend = get_storage_backend()
    if backend == "local":
        return LocalBlobStore()
    if backend == "minio":
        store = MinioBlobStore.from_env()
        store.ensure_bucket_exists()
        return store
    raise ValueError(f"Unknown storage backend: {backend}")
