"""Database engine and session management.

SQLite (development, tests) gets foreign-key enforcement and a created data
directory; PostgreSQL (production) gets a sized connection pool.
"""

import os
from collections.abc import Generator
from typing import Annotated, Any, Dict

from fastapi import Depends
from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from grocery.core.config import settings


def _is_sqlite(url: URL) -> bool:
    return url.get_backend_name() == "sqlite"


def _engine_options(url: URL) -> Dict[str, Any]:
    if _is_sqlite(url):
        # Lock waits end in "database is locked" after lock_timeout_ms
        connect_args = {"check_same_thread": False, "timeout": settings.lock_timeout_ms / 1000}
        return {"connect_args": connect_args, "pool_pre_ping": True}
    return {
        "pool_size": 20,
        "max_overflow": 40,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }


def ensure_sqlite_directory(database_url: str = settings.database_url) -> None:
    """Create the directory of a file-backed SQLite database."""
    url = make_url(database_url)
    if not _is_sqlite(url) or not url.database or url.database == ":memory:":
        return
    directory = os.path.dirname(url.database)
    if directory:
        os.makedirs(directory, exist_ok=True)


def enable_sqlite_foreign_keys(target: Engine) -> None:
    """SQLite leaves foreign keys unenforced unless asked on every connection."""

    @event.listens_for(target, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


database_url = make_url(settings.database_url)
engine = create_engine(database_url, echo=False, **_engine_options(database_url))

if _is_sqlite(database_url):
    enable_sqlite_foreign_keys(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; routes and services own commit/rollback."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


DbSession = Annotated[Session, Depends(get_db)]
