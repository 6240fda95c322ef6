"""API Routers package

Routers are organized by feature domain.
"""

from . import matchmaking_router, rematch_router

__all__ = [
    "matchmaking_router",
    "rematch_router",
]
