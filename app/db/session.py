"""Database engine and session helpers."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import Settings

from .models import Base

logger = logging.getLogger(__name__)

_engine_cache: dict[str, Engine] = {}
_sessionmaker_cache: dict[str, sessionmaker[Session]] = {}


def _create_engine(database_url: str, echo: bool = False) -> Engine:
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    options: dict = {"connect_args": {"check_same_thread": False}, "echo": echo}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection so every session sees the same in-memory database.
        options["poolclass"] = StaticPool
    engine = create_engine(database_url, **options)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def get_engine(settings: Settings) -> Engine:
    engine = _engine_cache.get(settings.database_url)
    if engine is None:
        engine = _create_engine(settings.database_url, echo=settings.database_echo)
        _engine_cache[settings.database_url] = engine
    return engine


def get_sessionmaker(settings: Settings) -> sessionmaker[Session]:
    """Return (and cache) a sessionmaker for the configured database URL."""
    factory = _sessionmaker_cache.get(settings.database_url)
    if factory is None:
        factory = sessionmaker(bind=get_engine(settings), autoflush=False, expire_on_commit=False)
        _sessionmaker_cache[settings.database_url] = factory
    return factory


@contextmanager
def session_scope(settings: Settings) -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on error."""
    session = get_sessionmaker(settings)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(settings: Settings) -> None:
    Base.metadata.create_all(bind=get_engine(settings))
    logger.info("Database initialized at %s", settings.database_url)


def dispose_engine(settings: Settings) -> None:
    engine = _engine_cache.pop(settings.database_url, None)
    _sessionmaker_cache.pop(settings.database_url, None)
    if engine is not None:
        engine.dispose()
