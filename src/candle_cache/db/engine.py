"""Database engine and session management."""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import Session, sessionmaker

_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def ensure_psycopg_driver(url: str) -> str:
    """Rewrite postgresql:// to postgresql+psycopg:// for psycopg v3."""
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


def init_engine(url: str, **kwargs) -> Engine:
    """Create the process-wide engine and session factory.

    Connections are pinged on checkout unless the caller says otherwise;
    the live builder keeps one session open for the life of the process.
    """
    global _engine, _SessionLocal
    kwargs.setdefault("pool_pre_ping", True)
    _engine = create_engine(ensure_psycopg_driver(url), **kwargs)
    _SessionLocal = sessionmaker(bind=_engine)
    return _engine


def dispose_engine() -> None:
    """Close pooled connections and forget the engine."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine() -> Engine:
    """Return the global engine (must call init_engine first)."""
    if _engine is None:
        raise RuntimeError("Database engine not initialised; call init_engine() first")
    return _engine


def get_session() -> Generator[Session, None, None]:
    """Yield a session; roll back on error and always close it."""
    if _SessionLocal is None:
        raise RuntimeError("Database engine not initialised; call init_engine() first")
    session = _SessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Short-lived session for one unit of work, such as one rebuild job."""
    yield from get_session()
