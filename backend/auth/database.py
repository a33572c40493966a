"""
Gatekeeper - Database Engine

Engine and session-factory setup shared by the credential store, the
session registry and the lockout guard. PostgreSQL in production,
SQLite (file or in-memory) for development and tests.
"""

import threading
import weakref
from typing import Callable, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from backend.config import settings


POOL_SIZE = 5
MAX_OVERFLOW = 10

# One lock per shared-connection engine, however many factories wrap it
_engine_locks: "weakref.WeakKeyDictionary[Engine, threading.RLock]" = weakref.WeakKeyDictionary()


def get_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Build the engine for DATABASE_URL (or an explicit override).

    SQLite engines share one connection across threads via StaticPool,
    so an in-memory database outlives individual sessions. Every other
    backend gets a pre-pinged connection pool.
    """
    url = database_url or settings.DATABASE_URL

    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return create_engine(
        url,
        echo=echo,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def init_db(engine: Engine) -> None:
    """Create the users and sessions tables when they are missing."""
    # Registers the table models on SQLModel.metadata
    from backend.auth import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


class SerializedSession(Session):
    """
    Session over a connection shared by every thread (StaticPool).

    Holds the engine-wide lock from __enter__ to __exit__ so units of work
    running in worker threads never interleave their transactions.
    """

    def __init__(self, *args, unit_lock: threading.RLock, **kwargs):
        super().__init__(*args, **kwargs)
        self._unit_lock = unit_lock

    def __enter__(self):
        self._unit_lock.acquire()
        return super().__enter__()

    def __exit__(self, type_, value, traceback):
        try:
            super().__exit__(type_, value, traceback)
        finally:
            self._unit_lock.release()


def get_session_factory(engine: Engine) -> Callable[[], Session]:
    """
    Factory for the short-lived unit-of-work sessions each store call opens.

    Store calls run these sessions in worker threads. Loaded rows stay
    readable after commit (expire_on_commit=False) since they are handed
    back to callers once the session has closed.
    """
    if isinstance(engine.pool, StaticPool):
        unit_lock = _engine_locks.setdefault(engine, threading.RLock())

        def serialized_factory() -> Session:
            return SerializedSession(engine, expire_on_commit=False, unit_lock=unit_lock)

        return serialized_factory

    def session_factory() -> Session:
        return Session(engine, expire_on_commit=False)

    return session_factory


def check_connection(engine: Engine) -> bool:
    """True when the database answers SELECT 1."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
