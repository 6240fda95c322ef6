"""Poll loops a player's client runs against the store."""

from .matchmaking import MatchmakingSearch
from .rematch import watch_options, watch_pending_rematch, watch_rematch_request

__all__ = [
    "MatchmakingSearch",
    "watch_options",
    "watch_pending_rematch",
    "watch_rematch_request",
]
