"""Async SQLAlchemy engine for the local capture queue database."""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import create_async_engine as _sa_create_async_engine

from workproof.core.config import QueueConfig, get_settings

_engine: AsyncEngine | None = None


def _on_sqlite_connect(dbapi_connection, _connection_record) -> None:
    # Hand transaction control to SQLAlchemy so _on_sqlite_begin decides how BEGIN looks.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def _on_sqlite_begin(conn) -> None:
    # Take the write lock up front: a budget check and the insert it guards
    # must not interleave with another process (capture CLI vs sync CLI).
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_async_engine(config: QueueConfig) -> AsyncEngine:
    """Create the queue engine. SQLite files get WAL, full fsync and immediate transactions."""
    url = config.async_url
    engine = _sa_create_async_engine(url, echo=config.echo)
    if url.startswith("sqlite"):
        event.listen(engine.sync_engine, "connect", _on_sqlite_connect)
        event.listen(engine.sync_engine, "begin", _on_sqlite_begin)
    return engine


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = create_async_engine(get_settings().queue)
    return _engine


async def reset_engine() -> None:
    """Dispose the shared engine. Used on shutdown and between tests."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
    _engine = None
