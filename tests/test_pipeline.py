"""End-to-end behaviour of the upload pipeline stages."""

from __future__ import annotations

import hashlib
import itertools
import re
import threading
from datetime import timedelta
from pathlib import Path

import pytest

from upload_pipeline.models.upload import (
    SESSION_OPEN,
    FinalizeInProgressError,
    IncompleteUploadError,
    IndexOutOfRangeError,
    InvalidCategoryError,
    InvalidFileTypeError,
    InvalidUploadRequestError,
    PartIntegrityError,
    SessionNotFoundError,
    SizeLimitExceededError,
    SizeMismatchError,
    StorageWriteError,
    UploadSession,
)
from upload_pipeline.services.artifact_catalog import InMemoryArtifactCatalog
from upload_pipeline.services.blob_store import LocalBlobStore
from upload_pipeline.services.pipeline import UploadPipeline

OWNER = "user-1"
PARTS = [b"a" * 100, b"b" * 100, b"c" * 100]


@pytest.fixture(params=["memory", "sql"])
def upload_pipeline(request: pytest.FixtureRequest) -> UploadPipeline:
    fixture_name = "pipeline" if request.param == "memory" else "sql_pipeline"
    return request.getfixturevalue(fixture_name)


def _start(
    pipeline: UploadPipeline, size: int = 300, total_parts: int | None = 3
) -> UploadSession:
    return pipeline.start_session(OWNER, "cv", "report.pdf", size, total_parts=total_parts)


def _send(
    pipeline: UploadPipeline, upload: UploadSession, index: int, data: bytes, total: int = 3
):
    return pipeline.receive_part(upload.session_id, index, total, data, owner_id=OWNER)


def _finalize(pipeline: UploadPipeline, upload: UploadSession, total: int = 3):
    return pipeline.finalize(
        upload.session_id, OWNER, "cv", upload.original_name, upload.declared_size, total
    )


def _artifact_files(root: Path) -> list[Path]:
    if not root.exists():
        return []
    return [path for path in root.rglob("*") if path.is_file()]


class TestConcreteScenarios:
    def test_in_order_parts_produce_full_artifact(
        self, upload_pipeline: UploadPipeline, blob_store: LocalBlobStore
    ) -> None:
        upload = _start(upload_pipeline)
        for index, data in enumerate(PARTS):
            _send(upload_pipeline, upload, index, data)

        artifact = _finalize(upload_pipeline, upload)

        assert artifact.byte_length == 300
        assert artifact.file_name == "report.pdf"
        assert artifact.content_type == "application/pdf"
        stored = blob_store.path_for(artifact.storage_locator).read_bytes()
        assert stored == b"".join(PARTS)
        assert artifact.checksum == hashlib.sha256(stored).hexdigest()

    def test_missing_part_is_reported_and_blocks_finalize(
        self, upload_pipeline: UploadPipeline, blob_store: LocalBlobStore
    ) -> None:
        upload = _start(upload_pipeline)
        _send(upload_pipeline, upload, 0, PARTS[0])
        _send(upload_pipeline, upload, 2, PARTS[2])

        result = upload_pipeline.verify_complete(upload.session_id, 3)
        assert result.complete is False
        assert result.missing == [1]

        with pytest.raises(IncompleteUploadError) as exc_info:
            _finalize(upload_pipeline, upload)
        assert exc_info.value.missing == [1]
        assert exc_info.value.retryable is True
        assert _artifact_files(blob_store.root) == []
        assert upload_pipeline.store.get(upload.session_id).status == SESSION_OPEN

    def test_out_of_order_arrival_is_reassembled_by_index(
        self, upload_pipeline: UploadPipeline, blob_store: LocalBlobStore
    ) -> None:
        upload = _start(upload_pipeline)
        for index in (2, 0, 1):
            _send(upload_pipeline, upload, index, PARTS[index])

        artifact = _finalize(upload_pipeline, upload)

        assert blob_store.path_for(artifact.storage_locator).read_bytes() == b"".join(PARTS)

    def test_resent_part_replaces_earlier_bytes(
        self, upload_pipeline: UploadPipeline, blob_store: LocalBlobStore
    ) -> None:
        upload = _start(upload_pipeline)
        for index, data in enumerate(PARTS):
            _send(upload_pipeline, upload, index, data)
        _send(upload_pipeline, upload, 1, b"z" * 100)

        artifact = _finalize(upload_pipeline, upload)

        expected = PARTS[0] + b"z" * 100 + PARTS[2]
        assert blob_store.path_for(artifact.storage_locator).read_bytes() == expected

    def test_short_upload_is_a_size_mismatch_and_keeps_parts(
        self, upload_pipeline: UploadPipeline, blob_store: LocalBlobStore
    ) -> None:
        upload = _start(upload_pipeline)
        for index, data in enumerate([b"a" * 100, b"b" * 100, b"c" * 50]):
            _send(upload_pipeline, upload, index, data)

        with pytest.raises(SizeMismatchError) as exc_info:
            _finalize(upload_pipeline, upload)

        assert exc_info.value.expected == 300
        assert exc_info.value.actual == 250
        assert _artifact_files(blob_store.root) == []
        session_dir = upload_pipeline.part_storage.session_dir(OWNER, upload.session_id)
        assert sorted(p.name for p in session_dir.iterdir()) == [
            "part-000000",
            "part-000001",
            "part-000002",
        ]
        assert upload_pipeline.store.list_indices(upload.session_id) == [0, 1, 2]

    def test_finalize_unknown_session(self, upload_pipeline: UploadPipeline) -> None:
        with pytest.raises(SessionNotFoundError):
            upload_pipeline.finalize("never-started", OWNER, "cv", "report.pdf", 300, 3)


class TestStartSession:
    def test_infers_content_type_and_records_empty_ledger(
        self, upload_pipeline: UploadPipeline
    ) -> None:
        upload = _start(upload_pipeline, total_parts=None)

        assert upload.content_type == "application/pdf"
        assert upload.owner_id == OWNER
        assert upload_pipeline.store.list_indices(upload.session_id) == []

    def test_session_ids_are_unique(self, pipeline: UploadPipeline) -> None:
        ids = {_start(pipeline).session_id for _ in range(20)}
        assert len(ids) == 20

    def test_unknown_category(self, pipeline: UploadPipeline) -> None:
        with pytest.raises(InvalidCategoryError):
            pipeline.start_session(OWNER, "spaceship", "report.pdf", 10)

    def test_size_above_category_ceiling(self, pipeline: UploadPipeline) -> None:
        with pytest.raises(SizeLimitExceededError) as exc_info:
            pipeline.start_session(OWNER, "profile-picture", "me.png", 2048)
        assert exc_info.value.limit == 1024

    def test_disallowed_type(self, pipeline: UploadPipeline) -> None:
        with pytest.raises(InvalidFileTypeError):
            pipeline.start_session(OWNER, "cv", "photo.png", 100)

    @pytest.mark.parametrize("size", [0, -5])
    def test_non_positive_size(self, pipeline: UploadPipeline, size: int) -> None:
        with pytest.raises(InvalidUploadRequestError):
            pipeline.start_session(OWNER, "cv", "report.pdf", size)

    def test_more_parts_than_bytes(self, pipeline: UploadPipeline) -> None:
        with pytest.raises(InvalidUploadRequestError):
            pipeline.start_session(OWNER, "cv", "report.pdf", 2, total_parts=3)

    def test_blank_name(self, pipeline: UploadPipeline) -> None:
        with pytest.raises(InvalidUploadRequestError):
            pipeline.start_session(OWNER, "cv", "  ", 100)


class TestReceivePart:
    def test_ack_reports_digest_and_progress(self, upload_pipeline: UploadPipeline) -> None:
        upload = _start(upload_pipeline)
        _send(upload_pipeline, upload, 0, PARTS[0])
        ack = _send(upload_pipeline, upload, 2, PARTS[2])

        assert ack.index == 2
        assert ack.byte_length == 100
        assert ack.checksum == hashlib.sha256(PARTS[2]).hexdigest()
        assert ack.received_parts == 2

    def test_resending_same_bytes_is_idempotent(self, upload_pipeline: UploadPipeline) -> None:
        upload = _start(upload_pipeline)
        _send(upload_pipeline, upload, 1, PARTS[1])
        first = upload_pipeline.store.list_parts(upload.session_id)
        ack = _send(upload_pipeline, upload, 1, PARTS[1])
        second = upload_pipeline.store.list_parts(upload.session_id)

        assert ack.received_parts == 1
        assert [(p.index, p.byte_length, p.checksum, p.storage_locator) for p in first] == [
            (p.index, p.byte_length, p.checksum, p.storage_locator) for p in second
        ]

    @pytest.mark.parametrize("index", [-1, 3, 10])
    def test_index_out_of_range(self, pipeline: UploadPipeline, index: int) -> None:
        upload = _start(pipeline)
        with pytest.raises(IndexOutOfRangeError):
            _send(pipeline, upload, index, b"x")

    def test_empty_part(self, pipeline: UploadPipeline) -> None:
        upload = _start(pipeline)
        with pytest.raises(InvalidUploadRequestError):
            _send(pipeline, upload, 0, b"")

    def test_unknown_session(self, pipeline: UploadPipeline) -> None:
        with pytest.raises(SessionNotFoundError):
            pipeline.receive_part("missing", 0, 1, b"x")

    def test_other_owner_sees_not_found(self, pipeline: UploadPipeline) -> None:
        upload = _start(pipeline)
        with pytest.raises(SessionNotFoundError):
            pipeline.receive_part(upload.session_id, 0, 3, PARTS[0], owner_id="intruder")

    def test_checksum_mismatch_stores_nothing(self, upload_pipeline: UploadPipeline) -> None:
        upload = _start(upload_pipeline)
        with pytest.raises(PartIntegrityError):
            upload_pipeline.receive_part(
                upload.session_id, 0, 3, PARTS[0], checksum=hashlib.sha256(b"other").hexdigest()
            )
        assert upload_pipeline.store.list_indices(upload.session_id) == []
        assert not upload_pipeline.part_storage.part_path(OWNER, upload.session_id, 0).exists()

    def test_checksum_is_case_insensitive(self, pipeline: UploadPipeline) -> None:
        upload = _start(pipeline)
        digest = hashlib.sha256(PARTS[0]).hexdigest().upper()
        ack = pipeline.receive_part(upload.session_id, 0, 3, PARTS[0], checksum=digest)
        assert ack.checksum == digest.lower()

    def test_metadata_must_match_session(self, pipeline: UploadPipeline) -> None:
        upload = _start(pipeline)
        with pytest.raises(InvalidUploadRequestError):
            pipeline.receive_part(upload.session_id, 0, 3, PARTS[0], original_size=301)
        with pytest.raises(InvalidUploadRequestError):
            pipeline.receive_part(upload.session_id, 0, 3, PARTS[0], original_name="other.pdf")

    def test_part_above_cap(self, pipeline: UploadPipeline) -> None:
        pipeline.max_part_bytes = 50
        upload = _start(pipeline)
        with pytest.raises(SizeLimitExceededError):
            _send(pipeline, upload, 0, PARTS[0])

    def test_latest_part_count_is_recorded(self, upload_pipeline: UploadPipeline) -> None:
        upload = _start(upload_pipeline, total_parts=None)
        _send(upload_pipeline, upload, 0, b"a" * 75, total=4)
        assert upload_pipeline.store.get(upload.session_id).declared_total_parts == 4


class TestVerifyComplete:
    def test_complete_after_all_parts(self, upload_pipeline: UploadPipeline) -> None:
        upload = _start(upload_pipeline)
        for index, data in enumerate(PARTS):
            _send(upload_pipeline, upload, index, data)

        result = upload_pipeline.verify_complete(upload.session_id, 3)

        assert result.complete is True
        assert result.missing == []

    def test_missing_lists_exactly_the_unsent_indices(self, pipeline: UploadPipeline) -> None:
        upload = pipeline.start_session(OWNER, "cv", "report.pdf", 600)
        for index in (1, 4):
            pipeline.receive_part(upload.session_id, index, 6, b"x" * 100)

        result = pipeline.verify_complete(upload.session_id, 6)

        assert result.complete is False
        assert result.missing == [0, 2, 3, 5]

    def test_extra_indices_beyond_total_are_ignored(self, pipeline: UploadPipeline) -> None:
        upload = pipeline.start_session(OWNER, "cv", "report.pdf", 300)
        for index in range(4):
            pipeline.receive_part(upload.session_id, index, 4, b"x" * 75)

        assert pipeline.verify_complete(upload.session_id, 3).complete is True

    def test_rejects_zero_parts(self, pipeline: UploadPipeline) -> None:
        upload = _start(pipeline)
        with pytest.raises(InvalidUploadRequestError):
            pipeline.verify_complete(upload.session_id, 0)

    def test_is_read_only(self, pipeline: UploadPipeline) -> None:
        upload = _start(pipeline)
        _send(pipeline, upload, 0, PARTS[0])
        before = pipeline.store.get(upload.session_id)

        pipeline.verify_complete(upload.session_id, 3)
        pipeline.verify_complete(upload.session_id, 3)

        assert pipeline.store.get(upload.session_id) == before


@pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
def test_any_submission_order_gives_identical_artifact(
    pipeline: UploadPipeline, blob_store: LocalBlobStore, order: tuple[int, ...]
) -> None:
    upload = _start(pipeline)
    for index in order:
        _send(pipeline, upload, index, PARTS[index])

    artifact = _finalize(pipeline, upload)

    assert blob_store.path_for(artifact.storage_locator).read_bytes() == b"".join(PARTS)


class TestFinalize:
    def test_success_removes_parts_and_session(self, upload_pipeline: UploadPipeline) -> None:
        upload = _start(upload_pipeline)
        for index, data in enumerate(PARTS):
            _send(upload_pipeline, upload, index, data)

        _finalize(upload_pipeline, upload)

        assert upload_pipeline.store.get(upload.session_id) is None
        assert upload_pipeline.store.list_indices(upload.session_id) == []
        session_dir = upload_pipeline.part_storage.session_dir(OWNER, upload.session_id)
        assert not session_dir.exists()

    def test_stale_extra_parts_are_cleaned_up(self, upload_pipeline: UploadPipeline) -> None:
        upload = _start(upload_pipeline, total_parts=None)
        for index in range(4):
            _send(upload_pipeline, upload, index, b"q" * 75, total=4)
        for index, data in enumerate(PARTS):
            _send(upload_pipeline, upload, index, data)

        artifact = _finalize(upload_pipeline, upload)

        assert artifact.byte_length == 300
        session_dir = upload_pipeline.part_storage.session_dir(OWNER, upload.session_id)
        assert not session_dir.exists()

    def test_locator_format(self, pipeline: UploadPipeline) -> None:
        upload = _start(pipeline)
        for index, data in enumerate(PARTS):
            _send(pipeline, upload, index, data)

        artifact = _finalize(pipeline, upload)

        assert re.fullmatch(r"cv/user-1/\d{13}-[0-9a-f]{8}\.pdf", artifact.storage_locator)
        assert artifact.url == f"/uploads/{artifact.storage_locator}"

    def test_metadata_mismatch_is_rejected(self, pipeline: UploadPipeline) -> None:
        upload = _start(pipeline)
        for index, data in enumerate(PARTS):
            _send(pipeline, upload, index, data)

        with pytest.raises(InvalidUploadRequestError):
            pipeline.finalize(upload.session_id, OWNER, "cv", "report.pdf", 299, 3)
        with pytest.raises(InvalidUploadRequestError):
            pipeline.finalize(upload.session_id, OWNER, "cv", "other.pdf", 300, 3)
        with pytest.raises(InvalidUploadRequestError):
            pipeline.finalize(upload.session_id, OWNER, "cv", "report.pdf", 300, 301)

    def test_finalize_part_count_wins_over_late_resend(
        self, upload_pipeline: UploadPipeline
    ) -> None:
        upload = _start(upload_pipeline, total_parts=None)
        for index, data in enumerate(PARTS):
            _send(upload_pipeline, upload, index, data)
        # A retry from an earlier attempt that split the file into four parts.
        _send(upload_pipeline, upload, 3, b"q" * 75, total=4)
        assert upload_pipeline.store.get(upload.session_id).declared_total_parts == 4

        artifact = _finalize(upload_pipeline, upload, total=3)

        assert artifact.byte_length == 300
        assert artifact.checksum == hashlib.sha256(b"".join(PARTS)).hexdigest()

    def test_other_owner_sees_not_found(self, pipeline: UploadPipeline) -> None:
        upload = _start(pipeline)
        with pytest.raises(SessionNotFoundError):
            pipeline.finalize(upload.session_id, "intruder", "cv", "report.pdf", 300, 3)

    def test_corrupted_part_is_detected(
        self, upload_pipeline: UploadPipeline, blob_store: LocalBlobStore
    ) -> None:
        upload = _start(upload_pipeline)
        for index, data in enumerate(PARTS):
            _send(upload_pipeline, upload, index, data)
        upload_pipeline.part_storage.part_path(OWNER, upload.session_id, 1).write_bytes(
            b"X" * 100
        )

        with pytest.raises(PartIntegrityError) as exc_info:
            _finalize(upload_pipeline, upload)

        assert exc_info.value.index == 1
        assert _artifact_files(blob_store.root) == []
        assert upload_pipeline.store.get(upload.session_id).status == SESSION_OPEN

    def test_vanished_part_file_is_detected(self, pipeline: UploadPipeline) -> None:
        upload = _start(pipeline)
        for index, data in enumerate(PARTS):
            _send(pipeline, upload, index, data)
        pipeline.part_storage.part_path(OWNER, upload.session_id, 0).unlink()

        with pytest.raises(PartIntegrityError) as exc_info:
            _finalize(pipeline, upload)
        assert exc_info.value.index == 0

    def test_storage_failure_publishes_nothing_and_can_be_retried(
        self, pipeline: UploadPipeline, blob_store: LocalBlobStore
    ) -> None:
        class FailingBlobStore(LocalBlobStore):
            def put_file(self, key: str, source: Path, content_type: str) -> None:
                raise StorageWriteError("disk full")

        upload = _start(pipeline)
        for index, data in enumerate(PARTS):
            _send(pipeline, upload, index, data)
        pipeline.blob_store = FailingBlobStore(blob_store.root)

        with pytest.raises(StorageWriteError):
            _finalize(pipeline, upload)
        assert pipeline.store.get(upload.session_id).status == SESSION_OPEN
        assert pipeline.store.list_indices(upload.session_id) == [0, 1, 2]

        pipeline.blob_store = blob_store
        artifact = _finalize(pipeline, upload)
        assert artifact.byte_length == 300

    def test_catalog_failure_withdraws_published_blob(
        self, pipeline: UploadPipeline, blob_store: LocalBlobStore
    ) -> None:
        class FailingCatalog(InMemoryArtifactCatalog):
            def add(self, artifact) -> None:
                raise RuntimeError("catalog unavailable")

        upload = _start(pipeline)
        for index, data in enumerate(PARTS):
            _send(pipeline, upload, index, data)
        pipeline.catalog = FailingCatalog()

        with pytest.raises(RuntimeError):
            _finalize(pipeline, upload)
        assert _artifact_files(blob_store.root) == []
        assert pipeline.store.get(upload.session_id).status == SESSION_OPEN

    def test_artifact_is_recorded_in_catalog(self, upload_pipeline: UploadPipeline) -> None:
        upload = _start(upload_pipeline)
        for index, data in enumerate(PARTS):
            _send(upload_pipeline, upload, index, data)

        artifact = _finalize(upload_pipeline, upload)

        assert upload_pipeline.get_artifact(artifact.artifact_id, owner_id=OWNER) == artifact
        assert upload_pipeline.get_artifact(artifact.artifact_id, owner_id="intruder") is None
        assert upload_pipeline.get_artifact("unknown") is None


class TestSingleFlight:
    def test_held_claim_blocks_finalize_and_parts(self, upload_pipeline: UploadPipeline, clock):
        upload = _start(upload_pipeline)
        for index, data in enumerate(PARTS):
            _send(upload_pipeline, upload, index, data)
        assert upload_pipeline.store.claim_finalize(
            upload.session_id, now=clock(), stale_before=clock() - timedelta(minutes=15)
        )

        with pytest.raises(FinalizeInProgressError):
            _finalize(upload_pipeline, upload)
        with pytest.raises(FinalizeInProgressError):
            _send(upload_pipeline, upload, 0, PARTS[0])

    def test_abandoned_claim_is_taken_over(self, upload_pipeline: UploadPipeline, clock) -> None:
        upload = _start(upload_pipeline)
        for index, data in enumerate(PARTS):
            _send(upload_pipeline, upload, index, data)
        upload_pipeline.store.claim_finalize(
            upload.session_id, now=clock(), stale_before=clock() - timedelta(minutes=15)
        )

        clock.advance(minutes=16)
        artifact = _finalize(upload_pipeline, upload)

        assert artifact.byte_length == 300

    def test_concurrent_finalize_commits_once(self, pipeline: UploadPipeline) -> None:
        upload = _start(pipeline)
        for index, data in enumerate(PARTS):
            _send(pipeline, upload, index, data)

        barrier = threading.Barrier(4)
        outcomes: list[object] = []
        lock = threading.Lock()

        def _run() -> None:
            barrier.wait()
            try:
                result: object = _finalize(pipeline, upload)
            except (FinalizeInProgressError, SessionNotFoundError) as exc:
                result = exc
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=_run) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        committed = [o for o in outcomes if not isinstance(o, Exception)]
        assert len(committed) == 1
        assert len(outcomes) == 4


class TestCancelAndSweep:
    def test_cancel_removes_parts_and_session(self, upload_pipeline: UploadPipeline) -> None:
        upload = _start(upload_pipeline)
        _send(upload_pipeline, upload, 0, PARTS[0])

        upload_pipeline.cancel_session(upload.session_id, owner_id=OWNER)

        assert upload_pipeline.store.get(upload.session_id) is None
        assert not upload_pipeline.part_storage.session_dir(OWNER, upload.session_id).exists()
        with pytest.raises(SessionNotFoundError):
            _send(upload_pipeline, upload, 1, PARTS[1])

    def test_cancel_by_other_owner(self, pipeline: UploadPipeline) -> None:
        upload = _start(pipeline)
        with pytest.raises(SessionNotFoundError):
            pipeline.cancel_session(upload.session_id, owner_id="intruder")
        assert pipeline.store.get(upload.session_id) is not None

    def test_part_racing_a_cancel_leaves_nothing_behind(
        self, upload_pipeline: UploadPipeline, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        upload = _start(upload_pipeline)
        _send(upload_pipeline, upload, 0, PARTS[0])
        storage = upload_pipeline.part_storage
        write_part = storage.write_part

        def cancel_then_write(*args, **kwargs):
            upload_pipeline.cancel_session(upload.session_id, owner_id=OWNER)
            return write_part(*args, **kwargs)

        monkeypatch.setattr(storage, "write_part", cancel_then_write)

        with pytest.raises(SessionNotFoundError):
            _send(upload_pipeline, upload, 0, PARTS[0])

        assert upload_pipeline.store.get(upload.session_id) is None
        assert upload_pipeline.store.list_indices(upload.session_id) == []
        assert not storage.session_dir(OWNER, upload.session_id).exists()
        assert upload_pipeline.sweep_expired_sessions(timedelta(seconds=0)) == 0

    def test_part_racing_a_finalize_claim_is_not_recorded(
        self, upload_pipeline: UploadPipeline, monkeypatch: pytest.MonkeyPatch, clock
    ) -> None:
        upload = _start(upload_pipeline)
        _send(upload_pipeline, upload, 0, PARTS[0])
        recorded = upload_pipeline.store.list_parts(upload.session_id)
        storage = upload_pipeline.part_storage
        write_part = storage.write_part

        def claim_then_write(*args, **kwargs):
            upload_pipeline.store.claim_finalize(
                upload.session_id, now=clock(), stale_before=clock() - timedelta(minutes=15)
            )
            return write_part(*args, **kwargs)

        monkeypatch.setattr(storage, "write_part", claim_then_write)

        with pytest.raises(FinalizeInProgressError):
            _send(upload_pipeline, upload, 0, PARTS[0])

        assert upload_pipeline.store.list_parts(upload.session_id) == recorded

    def test_cancel_during_finalize(self, pipeline: UploadPipeline, clock) -> None:
        upload = _start(pipeline)
        pipeline.store.claim_finalize(
            upload.session_id, now=clock(), stale_before=clock() - timedelta(minutes=15)
        )
        with pytest.raises(FinalizeInProgressError):
            pipeline.cancel_session(upload.session_id, owner_id=OWNER)

    def test_sweep_removes_only_idle_sessions(self, upload_pipeline: UploadPipeline, clock) -> None:
        idle = _start(upload_pipeline)
        _send(upload_pipeline, idle, 0, PARTS[0])
        clock.advance(hours=25)
        fresh = _start(upload_pipeline)

        removed = upload_pipeline.sweep_expired_sessions(timedelta(hours=24))

        assert removed == 1
        assert upload_pipeline.store.get(idle.session_id) is None
        assert upload_pipeline.store.get(fresh.session_id) is not None
        assert not upload_pipeline.part_storage.session_dir(OWNER, idle.session_id).exists()

    def test_part_activity_extends_session_life(
        self, upload_pipeline: UploadPipeline, clock
    ) -> None:
        upload = _start(upload_pipeline)
        clock.advance(hours=20)
        _send(upload_pipeline, upload, 0, PARTS[0])
        clock.advance(hours=10)

        assert upload_pipeline.sweep_expired_sessions(timedelta(hours=24)) == 0
        assert upload_pipeline.store.get(upload.session_id) is not None

    def test_sweep_skips_live_finalize_but_not_abandoned_one(
        self, upload_pipeline: UploadPipeline, clock
    ) -> None:
        upload = _start(upload_pipeline)
        clock.advance(hours=25)
        upload_pipeline.store.claim_finalize(
            upload.session_id, now=clock(), stale_before=clock() - timedelta(minutes=15)
        )

        assert upload_pipeline.sweep_expired_sessions(timedelta(hours=24)) == 0

        clock.advance(minutes=16)
        assert upload_pipeline.sweep_expired_sessions(timedelta(hours=24)) == 1


class TestListSessions:
    def test_pages_newest_first_with_progress(
        self, upload_pipeline: UploadPipeline, clock
    ) -> None:
        sessions = []
        for _ in range(3):
            sessions.append(_start(upload_pipeline))
            clock.advance(minutes=1)
        upload_pipeline.start_session("someone-else", "cv", "report.pdf", 300)
        _send(upload_pipeline, sessions[2], 0, PARTS[0])
        _send(upload_pipeline, sessions[2], 1, PARTS[1])

        items, total = upload_pipeline.list_sessions(OWNER, limit=2, offset=0)

        assert total == 3
        assert [item.session.session_id for item in items] == [
            sessions[2].session_id,
            sessions[1].session_id,
        ]
        assert items[0].received_parts == 2
        assert items[0].received_bytes == 200
        assert items[1].received_parts == 0

        rest, _ = upload_pipeline.list_sessions(OWNER, limit=2, offset=2)
        assert [item.session.session_id for item in rest] == [sessions[0].session_id]
