"""Common helpers for storage repositories."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import NullPool
from sqlmodel import create_engine

logger = logging.getLogger(__name__)

DEFAULT_BUSY_TIMEOUT_MS = 5000


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def to_utc_aware_datetime(value: datetime) -> datetime:
    """Timezone-aware UTC datetime regardless of what the driver returned."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def normalize_database_url(database_url: str) -> str:
    """Map provider-style Postgres URLs onto the psycopg SQLAlchemy driver."""

    value = database_url.strip()
    if value.startswith("postgres://"):
        return "postgresql+psycopg://" + value[len("postgres://") :]
    if value.startswith("postgresql://"):
        return "postgresql+psycopg://" + value[len("postgresql://") :]
    return value


def is_sqlite_url(database_url: str) -> bool:
    return make_url(normalize_database_url(database_url)).get_backend_name() == "sqlite"


def build_engine(*, database_url: str, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> Engine:
    """Build SQLAlchemy engine with a consistent per-backend policy."""

    url = normalize_database_url(database_url)
    if is_sqlite_url(url):
        engine = create_engine(
            url,
            connect_args={
                "check_same_thread": False,
                "timeout": max(1.0, busy_timeout_ms / 1000.0),
            },
            poolclass=NullPool,
        )
        event.listen(
            engine,
            "connect",
            lambda dbapi_connection, _: _apply_sqlite_pragmas(
                dbapi_connection,
                busy_timeout_ms=busy_timeout_ms,
            ),
        )
        return engine

    return create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)


@contextmanager
def open_engine(
    *,
    database_url: str,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
) -> Iterator[Engine]:
    """Open an engine for the lifetime of the block and dispose it afterwards."""

    engine = build_engine(database_url=database_url, busy_timeout_ms=busy_timeout_ms)
    logger.info("Database engine opened (%s)", engine.url.get_backend_name())
    try:
        yield engine
    finally:
        engine.dispose()
        logger.info("Database engine closed")


def _apply_sqlite_pragmas(dbapi_connection: sqlite3.Connection, *, busy_timeout_ms: int) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute(f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}")
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()
