"""
Database package.

Exports:
  - Base, UUIDMixin, TimestampMixin: declarative base and mixins
  - get_async_engine, get_async_session_factory, get_async_db, create_all_tables

Dependencies: sqlalchemy, asyncpg
System role: Run persistence
"""

from testgen.boundary.db.base import Base, TimestampMixin, UUIDMixin
from testgen.boundary.db.connection import (
    create_all_tables,
    get_async_db,
    get_async_engine,
    get_async_session_factory,
)

__all__ = [
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "get_async_engine",
    "get_async_session_factory",
    "get_async_db",
    "create_all_tables",
]
