"""Store-agnostic repositories, one per coordination table."""

from .game import GameRepository
from .profile import ProfileRepository
from .queue import QueueRepository
from .rematch import RematchRepository

__all__ = [
    "GameRepository",
    "ProfileRepository",
    "QueueRepository",
    "RematchRepository",
]
