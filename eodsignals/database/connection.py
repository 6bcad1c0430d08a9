"""Database engine and session management with SQLAlchemy ORM.

Usage:
    from eodsignals.database.connection import get_session
    from eodsignals.database.orm import DailySymbolFeatures

    with get_session() as session:
        rows = session.scalars(select(DailySymbolFeatures)).all()
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from eodsignals.core.config import settings
from eodsignals.core.logging import get_logger
from eodsignals.database.orm import Base


logger = get_logger("database")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    kwargs: dict[str, Any] = {"echo": echo, "future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    return create_engine(url, **kwargs)


def init_engine(url: str | None = None) -> Engine:
    """Initialize the global engine and session factory."""
    global _engine, _session_factory

    if _engine is not None:
        return _engine

    _engine = create_db_engine(url or settings.database_url, echo=settings.db_echo)
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    logger.info("SQLAlchemy engine initialized")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _session_factory is None:
        init_engine()
    return _session_factory


@contextmanager
def get_session(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """Transactional session: commit on success, rollback on error.

    Usage:
        with get_session() as session:
            session.add(row)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine | None = None) -> None:
    """Create all tables that do not exist yet."""
    target = engine or init_engine()
    Base.metadata.create_all(target)
    logger.info("Database schema ensured")


def reset_engine() -> None:
    """Dispose the global engine (tests, reconfiguration)."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("SQLAlchemy engine closed")
