"""
db/session.py

SQLAlchemy engine and session factory.

Services open their own short-lived sessions through `SessionLocal`; API
handlers receive one per request through `get_db`.
"""

from __future__ import annotations

import os
from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from db.config import resolve_database_url

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, ""))
    except ValueError:
        return default


def create_db_engine(database_url: str | None = None) -> Engine:
    """
    Build an engine for `database_url` (default: the configured URL).

    PostgreSQL gets a connection pool sized for one batch of concurrent item
    workers plus the orchestrator's own sessions. SQLite is accepted for
    tests and local tooling; its connections are shared across worker
    threads and wait on the database lock instead of failing.
    """

    url = database_url or resolve_database_url()
    echo = os.getenv("SQL_ECHO", "").strip().lower() in {"1", "true", "yes", "on"}

    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    if not url.startswith("postgresql"):
        raise RuntimeError("Only PostgreSQL (or SQLite for local tooling) URLs are supported.")

    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_recycle=_env_int("DB_POOL_RECYCLE", 1800),
        pool_size=_env_int("DB_POOL_SIZE", 10),
        max_overflow=_env_int("DB_MAX_OVERFLOW", 20),
    )


def get_engine() -> Engine:
    """Return the shared engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    # Run snapshots and claimed rows are read after commit by other threads.
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def SessionLocal() -> Session:
    """Open a session on the shared engine; the engine is created lazily."""
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
