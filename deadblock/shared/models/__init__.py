"""Typed records for the coordination tables."""

from .game import BOARD_SIZE, Game, GameStatus, empty_board, new_game_row
from .profile import DEFAULT_RATING, ProfileSummary
from .queue import QueueEntry
from .rematch import PendingRematch, RematchRequest, RematchState, RematchStatus

__all__ = [
    "BOARD_SIZE",
    "DEFAULT_RATING",
    "Game",
    "GameStatus",
    "PendingRematch",
    "ProfileSummary",
    "QueueEntry",
    "RematchRequest",
    "RematchState",
    "RematchStatus",
    "empty_board",
    "new_game_row",
]
