"""Data model for the queue_entries table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .base import parse_timestamp, pick_fields


@dataclass
class QueueEntry:
    """A player waiting for an opponent. At most one per user."""

    user_id: str
    rating: int
    joined_at: datetime | None = None
    id: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> QueueEntry:
        data = pick_fields(cls, row)
        data["rating"] = int(data["rating"])
        data["joined_at"] = parse_timestamp(data.get("joined_at"))
        return cls(**data)
