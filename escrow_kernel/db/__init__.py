"""Database layer - engine, base classes, column types."""

from escrow_kernel.db.base import Base, TrackedBase, UUIDString
from escrow_kernel.db.engine import (
    build_engine,
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from escrow_kernel.db.types import enum_type, validate_currency

__all__ = [
    "build_engine",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "enum_type",
    "validate_currency",
]
