"""Response models shared by several routers."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from deadblock.shared.models import GameStatus, RematchStatus


class GameResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    player1_id: str
    player2_id: str
    board: list[list[Any]]
    board_pieces: dict[str, Any]
    used_pieces: list[str]
    current_player: int
    status: GameStatus
    winner_id: str | None = None
    created_at: datetime | None = None


class RematchRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    game_id: str
    from_user_id: str
    to_user_id: str
    first_player_id: str
    status: RematchStatus
    new_game_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    expires_at: datetime | None = None


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    rating: int
