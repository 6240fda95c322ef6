"""Repository for the games table."""

from __future__ import annotations

import logging

from deadblock.shared.models.game import Game, GameStatus, new_game_row
from deadblock.shared.store import Credential, Store, Table, eq

logger = logging.getLogger(__name__)


class GameRepository:
    """Row operations for games. Gameplay mutations live elsewhere."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def create(self, credential: Credential, player1_id: str, player2_id: str) -> Game:
        """Insert a fresh active game with an empty board, player 1 to move."""
        row = await self.store.insert(
            Table.GAMES, new_game_row(player1_id, player2_id), credential=credential
        )
        return Game.from_row(row)

    async def get(self, credential: Credential, game_id: str) -> Game | None:
        rows = await self.store.select(
            Table.GAMES, [eq("id", game_id)], credential=credential, limit=1
        )
        return Game.from_row(rows[0]) if rows else None

    async def find_active_for_player(self, credential: Credential, user_id: str) -> list[Game]:
        """Active games listing the user in either seat, newest first."""
        games: dict[str, Game] = {}
        for seat in ("player1_id", "player2_id"):
            rows = await self.store.select(
                Table.GAMES,
                [eq(seat, user_id), eq("status", GameStatus.ACTIVE.value)],
                credential=credential,
            )
            for row in rows:
                game = Game.from_row(row)
                games[game.id] = game
        return sorted(
            games.values(),
            key=lambda g: (g.created_at is not None, g.created_at),
            reverse=True,
        )

    async def delete(self, credential: Credential, game_id: str) -> bool:
        """Remove a game row. Used only to undo a game that lost a race."""
        removed = await self.store.delete(Table.GAMES, [eq("id", game_id)], credential=credential)
        return removed == 1
