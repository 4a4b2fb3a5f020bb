# logstore/db/session.py
"""
Database engine and session utilities.

We use:
- SQLAlchemy 2.0 sync engine + Session (ingestion runs on worker threads)
- SQLite by default; any SQLAlchemy URL works for the `logs` table

SQLite pragmas, applied on every new connection:
- journal_mode=WAL: readers see committed snapshots while a writer works
- synchronous=FULL: a committed record survives a crash or power loss
- busy_timeout: concurrent writers wait a bounded time for the lock
"""

from __future__ import annotations

import os
from typing import Optional

import orjson
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from logstore.core.config import settings
from logstore.db.models import Base


def _json_dumps(value) -> str:
    # orjson keeps dict insertion order, which header blocks rely on
    return orjson.dumps(value).decode("utf-8")


def _is_sqlite(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def _ensure_sqlite_dir(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    database = make_url(url).database
    if not database or database == ":memory:":
        return
    parent = os.path.dirname(os.path.abspath(database))
    os.makedirs(parent, exist_ok=True)


def create_db_engine(
    database_url: Optional[str] = None,
    *,
    busy_timeout_ms: Optional[int] = None,
    echo: bool = False,
) -> Engine:
    """
    Build an engine for `database_url` (defaults to settings.DATABASE_URL).
    """
    url = database_url or settings.DATABASE_URL
    timeout_ms = settings.DB_BUSY_TIMEOUT_MS if busy_timeout_ms is None else busy_timeout_ms

    kwargs = {
        "echo": echo,
        "future": True,
        "json_serializer": _json_dumps,
        "json_deserializer": orjson.loads,
    }

    if not _is_sqlite(url):
        return create_engine(url, pool_pre_ping=True, **kwargs)

    _ensure_sqlite_dir(url)
    # worker threads share the pool; each connection is used by one thread at a time
    kwargs["connect_args"] = {"check_same_thread": False, "timeout": timeout_ms / 1000.0}
    if make_url(url).database in (None, "", ":memory:"):
        kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=FULL;")
        cursor.execute(f"PRAGMA busy_timeout={int(timeout_ms)};")
        cursor.close()

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,  # rows stay readable after commit
        class_=Session,
    )


def init_db(engine: Engine) -> None:
    """Create tables and indexes if they don't exist."""
    Base.metadata.create_all(engine)
