"""Async engine, session helpers and ORM models for LLM Navigator."""

from .connection import (
    async_session_maker,
    close_db,
    engine,
    get_db,
    get_db_context,
    init_db,
)
from .models import Base

__all__ = [
    "Base",
    "engine",
    "async_session_maker",
    "get_db",
    "get_db_context",
    "init_db",
    "close_db",
]
