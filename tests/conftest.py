"""
tests/conftest.py

Shared database fixtures.

Database tests run against a throwaway SQLite file so several threads can
hold their own connections, the way batch workers do against PostgreSQL.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from db.base import Base
from db.models import BatchRun, CrawlCandidate, CrawlRun, ImportQueueItem  # noqa: F401
from db.session import build_session_factory, create_db_engine


@pytest.fixture()
def engine(tmp_path) -> Iterator[Engine]:
    engine = create_db_engine(f"sqlite:///{tmp_path / 'pipeline.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return build_session_factory(engine)


@pytest.fixture()
def db(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
