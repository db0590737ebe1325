"""Database layer - engine, session factory, and base classes."""

from equipment_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from equipment_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_engine_from_url",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
]
