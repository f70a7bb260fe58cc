# session.py — Database engine and session factory
#
# Reads DATABASE_URL from .env:
#   - Not set or empty → sqlite:///brainchat.db (working directory)
#   - Set → any SQLAlchemy URL
#
# Usage:
#   from brainchat.db.session import get_session, init_db
#   init_db()  # Creates tables if they don't exist
#   with get_session() as session:
#       session.add(...)

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Generator

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

load_dotenv()


def _make_engine(url: str) -> Engine:
    kwargs: dict = {"echo": False, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        # FastAPI serves requests from several threads
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


_DATABASE_URL = os.getenv("DATABASE_URL", "").strip() or "sqlite:///brainchat.db"

engine = _make_engine(_DATABASE_URL)
_SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)


def configure(url: str) -> None:
    """Reconfigure the engine (used by tests to inject in-memory SQLite)."""
    global engine, _SessionFactory
    engine = _make_engine(url)
    _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)


def init_db() -> None:
    """Create all tables if they don't exist."""
    Base.metadata.create_all(engine)


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Provide a transactional session scope.

    Auto-commits on exit, rolls back on exception.
    """
    session = _SessionFactory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
