"""Database layer - engine, base classes, types, and immutability."""

from patronage_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from patronage_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    session_scope,
)
from patronage_kernel.db.types import Currency, MinorUnits, Percentage, Rate

__all__ = [
    "get_engine",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "MinorUnits",
    "Percentage",
    "Rate",
    "Currency",
]
