"""Data models for the profiles table (owned by the auth/stats subsystem)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .base import pick_fields

DEFAULT_RATING = 1000


@dataclass
class ProfileSummary:
    """Display metadata for an opponent."""

    id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    rating: int = DEFAULT_RATING

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ProfileSummary:
        data = pick_fields(cls, row)
        if data.get("rating") is None:
            data["rating"] = DEFAULT_RATING
        return cls(**data)

    @property
    def label(self) -> str:
        return self.display_name or self.username
