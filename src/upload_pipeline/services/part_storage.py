"""Transient on-disk storage for upload fragments.

Fragments live at ``<root>/<owner>/<session_id>/part-<index:06d>``; the
zero-padded index keeps lexical and numeric order identical.
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import os
import re
import shutil
import tempfile
from collections.abc import Iterator
from pathlib import Path

from upload_pipeline.config import get_part_storage_root

logger = logging.getLogger(__name__)

PART_INDEX_WIDTH = 6
_STREAM_CHUNK_SIZE = 1024 * 1024
_UNSAFE_SEGMENT = re.compile(r"[^A-Za-z0-9._-]")


def safe_segment(value: str) -> str:
    """Return ``value`` reduced to ``[A-Za-z0-9._-]`` and usable as one path segment."""
    cleaned = _UNSAFE_SEGMENT.sub("_", value).strip(".")
    return cleaned or "_"


def part_file_name(index: int) -> str:
    """Return the file name for a fragment index."""
    return f"part-{index:0{PART_INDEX_WIDTH}d}"


class PartStorage:
    """Write, read and remove fragments for upload sessions."""

    def __init__(self, root: Path | None = None) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root if self._root is not None else get_part_storage_root()

    def session_dir(self, owner_id: str, session_id: str) -> Path:
        return self.root / safe_segment(owner_id) / safe_segment(session_id)

    def part_path(self, owner_id: str, session_id: str, index: int) -> Path:
        return self.session_dir(owner_id, session_id) / part_file_name(index)

    def write_part(self, owner_id: str, session_id: str, index: int, data: bytes) -> Path:
        """Durably store one fragment, replacing any earlier copy of the same index.

        The bytes go to a temporary file in the session directory first and
        are moved into place with ``os.replace``, so readers never see a
        partially written fragment.
        """
        target = self.part_path(owner_id, session_id, index)
        target.parent.mkdir(parents=True, exist_ok=True)
        temp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="wb",
                dir=target.parent,
                prefix=f"{target.name}.",
                suffix=".tmp",
                delete=False,
            ) as temp_file:
                temp_path = Path(temp_file.name)
                temp_file.write(data)
                temp_file.flush()
                os.fsync(temp_file.fileno())
            os.replace(temp_path, target)
        except Exception:
            if temp_path is not None:
                with contextlib.suppress(FileNotFoundError):
                    temp_path.unlink()
            raise
        return target

    def iter_part(self, locator: str | Path) -> Iterator[bytes]:
        """Yield a stored fragment in bounded-size blocks."""
        with open(locator, "rb") as source:
            yield from iter(lambda: source.read(_STREAM_CHUNK_SIZE), b"")

    def remove_session(self, owner_id: str, session_id: str) -> None:
        """Delete every fragment stored for a session, including stale extras."""
        session_dir = self.session_dir(owner_id, session_id)
        if session_dir.exists():
            shutil.rmtree(session_dir)
            logger.debug("Removed part directory %s", session_dir)
        owner_dir = session_dir.parent
        with contextlib.suppress(OSError):
            owner_dir.rmdir()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
