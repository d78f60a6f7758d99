"""
Shared pytest fixtures.

Environment defaults are set before any application module is imported so the
cached Settings pick them up.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("SCRAPE_DELAY_BETWEEN_SOURCES_SECONDS", "0")
os.environ.setdefault("SCRAPE_DELAY_BETWEEN_PROJECTS_SECONDS", "0")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from narrative_signals.core.db import Base
from narrative_signals.models import (  # noqa: F401  register tables on Base.metadata
    ingestion,
    project,
    scrape_lock,
    scrape_log,
    signal,
    signal_evidence,
    source,
    usage_log,
)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
