"""Ledger database: engine, session scope and schema creation.

Upload sessions, received parts and committed artifacts live in one
SQLAlchemy 2.x database. ``DB_URL`` selects it; the default is a SQLite
file next to the project. SQLite connections run in WAL mode with a busy
timeout so that part uploads served from worker threads do not fail with
``database is locked`` while another request holds the write lock.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from upload_pipeline.config import get_database_url

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_MS = 30_000


class Base(DeclarativeBase):
    """Base class for the ledger's ORM models."""


_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def _apply_sqlite_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    finally:
        cursor.close()


def _create_engine(database_url: str) -> Engine:
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, future=True, pool_pre_ping=True)

    engine = create_engine(
        database_url,
        future=True,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _apply_sqlite_pragmas)
    return engine


def _get_engine() -> Engine:
    global _engine
    if _engine is None:
        database_url = get_database_url()
        _engine = _create_engine(database_url)
        _create_tables(_engine)
        logger.debug("Ledger database ready at %s", _engine.url.render_as_string())
    return _engine


def _create_tables(engine: Engine) -> None:
    # Register the ORM tables on Base before create_all.
    from upload_pipeline.data.models import (  # noqa: F401
        stored_artifact,
        upload_part,
        upload_session,
    )

    Base.metadata.create_all(bind=engine)


def _get_session_factory() -> sessionmaker[Session]:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=_get_engine(), autoflush=False, expire_on_commit=False)
    return _SessionLocal


def init_db() -> None:
    """Create the ledger tables if they do not exist yet."""
    _get_engine()


def reset_engine() -> None:
    """Dispose the cached engine so the next access rereads ``DB_URL``."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


@contextmanager
def get_session() -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on error."""
    session = _get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
