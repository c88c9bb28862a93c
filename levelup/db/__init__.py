"""Database utilities for the LevelUp profile backend."""

from .session import (
    build_engine,
    dispose_engine,
    get_engine,
    get_session_factory,
    make_session_factory,
    session_scope,
)

__all__ = [
    "build_engine",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "make_session_factory",
    "session_scope",
]
