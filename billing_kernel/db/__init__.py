"""Database layer - engine and declarative base."""

from billing_kernel.db.base import Base, TimestampMixin
from billing_kernel.db.engine import (
    build_engine,
    create_tables,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "build_engine",
    "create_tables",
    "init_engine_from_url",
    "session_scope",
]
