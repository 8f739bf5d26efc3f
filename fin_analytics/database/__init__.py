"""
Database Package
Handles database connection, session management, and base models.
"""

from fin_analytics.database.connection import (
    async_engine,
    async_session_factory,
    build_engine,
    build_session_factory,
    get_async_session,
    init_db,
    close_db,
)
from fin_analytics.database.base import Base, JSONType, TimestampMixin, UUIDMixin

__all__ = [
    # Connection
    "async_engine",
    "async_session_factory",
    "build_engine",
    "build_session_factory",
    "get_async_session",
    "init_db",
    "close_db",
    # Base classes
    "Base",
    "JSONType",
    "TimestampMixin",
    "UUIDMixin",
]
