"""Database layer — engine, session, ORM base."""

from candle_cache.db.base import Base
from candle_cache.db.engine import (
    dispose_engine,
    get_engine,
    get_session,
    init_engine,
    session_scope,
)

__all__ = ["Base", "dispose_engine", "get_engine", "get_session", "init_engine", "session_scope"]
