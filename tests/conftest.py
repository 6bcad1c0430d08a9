"""Pytest fixtures for eodsignals tests."""

from __future__ import annotations

import os

import pytest

# Set test environment before importing app modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "text")

from sqlalchemy.orm import sessionmaker

from eodsignals.database.connection import create_db_engine, reset_engine
from eodsignals.database.orm import Base
from eodsignals.domain import Bar, Position

from factories import make_bars, make_position, trend_closes


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with the full schema."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def _reset_global_engine():
    """Never leak the module-level engine between tests."""
    yield
    reset_engine()


# =============================================================================
# DATA FIXTURES
# =============================================================================


@pytest.fixture
def uptrend_bars() -> list[Bar]:
    """250 trading days rising 0.5% per day."""
    return make_bars(trend_closes(250))


@pytest.fixture
def position() -> Position:
    return make_position()
