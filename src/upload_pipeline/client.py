"""Client-side chunking driver for the upload pipeline HTTP API.

The driver splits a file into fixed-size parts, sends each part with its
SHA-256 digest, retries transient failures with exponential backoff, and
finalizes. When finalize reports missing parts it resends exactly those
parts once and finalizes again.
"""

from __future__ import annotations

import hashlib
import logging
import math
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024  # 1MB
DEFAULT_MAX_RETRIES = 3
RETRYABLE_STATUS_CODES = frozenset({409, 500, 502, 503, 504})


class UploadClientError(Exception):
    """Raised when the service rejects a request or retries are exhausted.

    Attributes:
        code: Error code reported by the service, or ``NetworkError``.
        status_code: HTTP status of the final response, if one was received.
        missing: Part indices the service reported as absent.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        missing: list[int] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.missing = list(missing or [])


class _RetryableResponseError(Exception):
    """A response whose status is worth another attempt."""

    def __init__(self, response: Any) -> None:
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def _error_from_response(response: Any) -> UploadClientError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = body.get("error") or body.get("detail") or response.text or "Request failed"
    return UploadClientError(
        str(message),
        code=body.get("code"),
        status_code=response.status_code,
        missing=body.get("missing"),
    )


class ChunkedUploader:
    """Upload files to the pipeline in parts.

    Args:
        base_url: Service root, e.g. ``http://localhost:8000``.
        user_id: Identity sent in the ``X-User-Id`` header.
        chunk_size: Bytes per part.
        max_retries: Retries per request after the first attempt.
        backoff_seconds: Base delay; attempt ``n`` waits ``backoff_seconds * 2**n``.
        max_workers: Parts sent concurrently.
        session: HTTP session; a ``requests.Session`` is created when omitted.
        sleep: Delay function, replaceable in tests.
        timeout: Per-request timeout in seconds.
        on_progress: Called with ``(parts_sent, total_parts)`` after each part.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_seconds: float = 1.0,
        max_workers: int = 1,
        session: Any | None = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = 30.0,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.chunk_size = chunk_size
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.max_workers = max(1, max_workers)
        self.session = session if session is not None else requests.Session()
        self.sleep = sleep
        self.timeout = timeout
        self.on_progress = on_progress

    def _send(self, method: str, url: str, headers: dict[str, str], **kwargs: Any) -> Any:
        response = self.session.request(
            method, url, headers=headers, timeout=self.timeout, **kwargs
        )
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise _RetryableResponseError(response)
        return response

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"X-User-Id": self.user_id}
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_seconds),
            retry=retry_if_exception_type((requests.RequestException, _RetryableResponseError)),
            sleep=self.sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            response = retrying(self._send, method, url, headers, **kwargs)
        except requests.RequestException as exc:
            raise UploadClientError(f"{method} {path} failed: {exc}", code="NetworkError") from exc
        except _RetryableResponseError as exc:
            raise _error_from_response(exc.response) from None

        if response.status_code >= 400:
            raise _error_from_response(response)
        return response.json() if response.content else {}

    def _read_part(self, path: Path, index: int) -> bytes:
        with open(path, "rb") as source:
            source.seek(index * self.chunk_size)
            return source.read(self.chunk_size)

    def send_part(
        self,
        path: Path,
        session_id: str,
        index: int,
        total_parts: int,
        file_size: int,
    ) -> dict[str, Any]:
        """Send one part of ``path`` and return the service acknowledgement."""
        data = self._read_part(path, index)
        return self._request(
            "POST",
            "/api/uploads/parts",
            data={
                "session_id": session_id,
                "index": str(index),
                "total_parts": str(total_parts),
                "original_name": path.name,
                "original_size": str(file_size),
                "checksum": hashlib.sha256(data).hexdigest(),
            },
            files={"file": (f"{path.name}.part{index}", data, "application/octet-stream")},
        )

    def _send_parts(
        self,
        path: Path,
        session_id: str,
        indices: Iterable[int],
        total_parts: int,
        file_size: int,
    ) -> None:
        pending = list(indices)
        sent = 0

        def _report() -> None:
            if self.on_progress is not None:
                self.on_progress(sent, len(pending))

        if self.max_workers == 1:
            for index in pending:
                self.send_part(path, session_id, index, total_parts, file_size)
                sent += 1
                _report()
            return

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [
                executor.submit(self.send_part, path, session_id, index, total_parts, file_size)
                for index in pending
            ]
            for future in futures:
                future.result()
                sent += 1
                _report()

    def upload_file(
        self,
        path: Path | str,
        category: str,
        content_type: str | None = None,
    ) -> dict[str, Any]:
        """Upload ``path`` and return the finalize response body.

        Raises:
            UploadClientError: The service rejected the upload, or a request
                kept failing after ``max_retries`` retries.
        """
        path = Path(path)
        file_size = path.stat().st_size
        if file_size == 0:
            raise UploadClientError("Cannot upload an empty file", code="InvalidUploadRequest")
        total_parts = math.ceil(file_size / self.chunk_size)

        created = self._request(
            "POST",
            "/api/uploads/sessions",
            json={
                "category": category,
                "original_name": path.name,
                "original_size": file_size,
                "content_type": content_type,
                "total_parts": total_parts,
            },
        )
        session_id = created["session_id"]
        logger.info("Uploading %s in %d part(s) as session %s", path.name, total_parts, session_id)

        self._send_parts(path, session_id, range(total_parts), total_parts, file_size)

        finalize_body = {
            "session_id": session_id,
            "user_id": self.user_id,
            "category": category,
            "original_name": path.name,
            "original_size": file_size,
            "total_chunks": total_parts,
        }
        try:
            return self._request("POST", "/api/uploads/finalize", json=finalize_body)
        except UploadClientError as exc:
            if exc.code != "IncompleteUpload" or not exc.missing:
                raise
            logger.warning("Resending missing parts %s for session %s", exc.missing, session_id)
            self._send_parts(path, session_id, exc.missing, total_parts, file_size)
            return self._request("POST", "/api/uploads/finalize", json=finalize_body)
