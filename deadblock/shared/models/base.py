"""Helpers for turning store rows into typed records."""

from __future__ import annotations

from dataclasses import fields
from datetime import datetime
from typing import Any, TypeVar

T = TypeVar("T")


def parse_timestamp(value: Any) -> datetime | None:
    """Accept a datetime (asyncpg) or an ISO-8601 string (PostgREST)."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def pick_fields(cls: type[T], row: dict[str, Any]) -> dict[str, Any]:
    """Keep only the columns ``cls`` declares; stores may return extra ones."""
    names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    return {k: v for k, v in row.items() if k in names}
