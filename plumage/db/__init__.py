"""Database layer for plumage."""

from plumage.db.connection import (
    async_session_factory,
    close_db,
    engine,
    init_db,
    session_scope,
)

__all__ = [
    "async_session_factory",
    "close_db",
    "engine",
    "init_db",
    "session_scope",
]
