"""Persistent store contract and its backends."""

from .base import (
    Credential,
    Filter,
    Order,
    Store,
    Table,
    eq,
    gte,
    in_,
    is_null,
    lt,
    neq,
    require_credential,
)
from .memory import MemoryStore

__all__ = [
    "Credential",
    "Filter",
    "MemoryStore",
    "Order",
    "Store",
    "Table",
    "eq",
    "gte",
    "in_",
    "is_null",
    "lt",
    "neq",
    "require_credential",
]
