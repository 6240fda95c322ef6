"""Data model for the games table."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from .base import parse_timestamp, pick_fields

BOARD_SIZE = 8


class GameStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


def empty_board() -> list[list[Any]]:
    """8x8 grid of empty (None) cells."""
    return [[None] * BOARD_SIZE for _ in range(BOARD_SIZE)]


@dataclass
class Game:
    """Game record.

    ``board`` is always BOARD_SIZE x BOARD_SIZE, ``current_player`` is 1 or 2
    and the two players differ; violating rows raise ``ValueError``.
    """

    id: str
    player1_id: str
    player2_id: str
    board: list[list[Any]] = field(default_factory=empty_board)
    board_pieces: dict[str, Any] = field(default_factory=dict)
    used_pieces: list[str] = field(default_factory=list)
    current_player: int = 1
    status: GameStatus = GameStatus.ACTIVE
    winner_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.player1_id == self.player2_id:
            raise ValueError(f"Game {self.id}: a player cannot face themselves")
        if self.current_player not in (1, 2):
            raise ValueError(f"Game {self.id}: current_player must be 1 or 2")
        if len(self.board) != BOARD_SIZE or any(len(r) != BOARD_SIZE for r in self.board):
            raise ValueError(f"Game {self.id}: board must be {BOARD_SIZE}x{BOARD_SIZE}")

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Game:
        data = pick_fields(cls, row)
        data["status"] = GameStatus(data.get("status", GameStatus.ACTIVE))
        data["current_player"] = int(data.get("current_player", 1))
        data["created_at"] = parse_timestamp(data.get("created_at"))
        data["updated_at"] = parse_timestamp(data.get("updated_at"))
        return cls(**data)

    @property
    def player_ids(self) -> tuple[str, str]:
        return (self.player1_id, self.player2_id)

    @property
    def is_active(self) -> bool:
        return self.status == GameStatus.ACTIVE

    def has_player(self, user_id: str) -> bool:
        return user_id in self.player_ids


def new_game_row(player1_id: str, player2_id: str) -> dict[str, Any]:
    """Insert payload for a fresh game: empty board, player 1 to move."""
    if player1_id == player2_id:
        raise ValueError("A player cannot face themselves")
    return {
        "player1_id": player1_id,
        "player2_id": player2_id,
        "board": empty_board(),
        "board_pieces": {},
        "used_pieces": [],
        "current_player": 1,
        "status": GameStatus.ACTIVE.value,
    }
