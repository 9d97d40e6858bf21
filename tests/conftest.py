from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

import upload_pipeline.data.db as app_db
from upload_pipeline.data.db import init_db
from upload_pipeline.models.upload import CategoryRule
from upload_pipeline.services.artifact_catalog import InMemoryArtifactCatalog, SqlArtifactCatalog
from upload_pipeline.services.blob_store import LocalBlobStore
from upload_pipeline.services.part_storage import PartStorage
from upload_pipeline.services.pipeline import UploadPipeline
from upload_pipeline.services.session_store import InMemorySessionStore, SqlSessionStore

TEST_CATEGORIES = {
    "cv": CategoryRule(frozenset({"application/pdf", "text/plain"}), 10 * 1024 * 1024),
    "profile-picture": CategoryRule(frozenset({"image/png", "image/jpeg"}), 1024),
}


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def api_db(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Use a temporary SQLite DB and storage roots for the test."""
    db_path = tmp_path / "api.db"
    monkeypatch.setenv("DB_URL", f"sqlite:///{db_path.as_posix()}")
    monkeypatch.setenv("UPLOAD_PIPELINE_PART_DIR", (tmp_path / "parts").as_posix())
    monkeypatch.setenv("UPLOAD_PIPELINE_ARTIFACT_DIR", (tmp_path / "artifacts").as_posix())
    monkeypatch.setenv("UPLOAD_PIPELINE_STORAGE_BACKEND", "local")
    monkeypatch.delenv("UPLOAD_PIPELINE_CATEGORIES_FILE", raising=False)
    app_db.reset_engine()
    init_db()
    yield
    # Dispose engine to release connections
    app_db.reset_engine()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def part_storage(tmp_path: Path) -> PartStorage:
    return PartStorage(tmp_path / "parts")


@pytest.fixture
def blob_store(tmp_path: Path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "artifacts", base_url="/uploads")


@pytest.fixture
def pipeline(
    part_storage: PartStorage, blob_store: LocalBlobStore, clock: FakeClock
) -> UploadPipeline:
    """Pipeline backed by the in-memory ledger and catalog."""
    return UploadPipeline(
        InMemorySessionStore(),
        part_storage,
        blob_store,
        InMemoryArtifactCatalog(),
        TEST_CATEGORIES,
        clock=clock,
        max_part_bytes=1024 * 1024,
        lock_timeout=timedelta(minutes=15),
    )


@pytest.fixture
def sql_pipeline(
    api_db: None, part_storage: PartStorage, blob_store: LocalBlobStore, clock: FakeClock
) -> UploadPipeline:
    """Pipeline backed by the SQLite ledger and catalog."""
    return UploadPipeline(
        SqlSessionStore(),
        part_storage,
        blob_store,
        SqlArtifactCatalog(),
        TEST_CATEGORIES,
        clock=clock,
        max_part_bytes=1024 * 1024,
        lock_timeout=timedelta(minutes=15),
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Automatically add api_db fixture to tests in API test files."""
    for item in items:
        test_file_path = Path(str(item.fspath))
        if "api" in test_file_path.stem.lower():
            item.add_marker(pytest.mark.usefixtures("api_db"))
