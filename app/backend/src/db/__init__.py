"""Database session helpers for the billing service."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ..models.base import Base

from .session import SessionLocal, engine as _engine

LOGGER = structlog.get_logger(__name__)


@contextmanager
def get_session() -> Iterator[Session]:
    """Yield a session; service functions decide when to commit."""

    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_session_dependency() -> Iterator[Session]:
    """FastAPI dependency wrapping :func:`get_session`."""

    with get_session() as session:
        yield session


def get_engine() -> Engine:
    return _engine


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide a transactional scope committed on success."""

    with get_session() as session:
        yield session
        session.commit()


def create_schema(engine: Engine | None = None) -> list[str]:
    """Create every billing table that does not exist yet."""

    # Registers the mapped classes on Base.metadata.
    from .. import models  # noqa: F401

    target = engine or _engine
    Base.metadata.create_all(bind=target)
    tables = sorted(Base.metadata.tables)
    LOGGER.info("database_schema_ready", tables=tables)
    return tables


__all__ = [
    "Base",
    "create_schema",
    "get_engine",
    "get_session",
    "get_session_dependency",
    "session_scope",
]
