"""Data models for the rematch_requests table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from .base import parse_timestamp, pick_fields
from .profile import ProfileSummary


class RematchStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"


@dataclass
class RematchRequest:
    """One rematch negotiation for a finished game."""

    id: str
    game_id: str
    from_user_id: str
    to_user_id: str
    first_player_id: str
    status: RematchStatus = RematchStatus.PENDING
    new_game_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> RematchRequest:
        data = pick_fields(cls, row)
        data["status"] = RematchStatus(data.get("status", RematchStatus.PENDING))
        for key in ("created_at", "updated_at", "expires_at"):
            data[key] = parse_timestamp(data.get(key))
        return cls(**data)

    @property
    def is_pending(self) -> bool:
        return self.status == RematchStatus.PENDING

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(UTC)) >= self.expires_at

    def is_live(self, now: datetime | None = None) -> bool:
        """Pending and not past its expiry."""
        return self.is_pending and not self.is_expired(now)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.from_user_id, self.to_user_id)

    def opponent_of(self, user_id: str) -> str:
        return self.to_user_id if user_id == self.from_user_id else self.from_user_id

    def player_order(self) -> tuple[str, str]:
        """(player1_id, player2_id) for the follow-up game; first player moves first."""
        return self.first_player_id, self.opponent_of(self.first_player_id)

    @property
    def watch_key(self) -> tuple[str, str | None]:
        return (self.status.value, self.new_game_id)


@dataclass
class PendingRematch:
    """A pending request as shown in a player's list."""

    request: RematchRequest
    is_sender: bool
    opponent: ProfileSummary | None = None


@dataclass
class RematchState:
    """Result of a per-game rematch status check."""

    has_pending: bool
    is_sender: bool = False
    request: RematchRequest | None = None
