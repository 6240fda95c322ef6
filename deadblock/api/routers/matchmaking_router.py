"""Matchmaking queue API routes."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from deadblock.api.core.config import get_settings
from deadblock.api.core.dependencies import (
    get_credential,
    get_match_pairer,
    get_profile_repository,
    get_queue_manager,
)
from deadblock.api.routers.models import GameResponse
from deadblock.shared.errors import StoreUnavailableError
from deadblock.shared.repositories import ProfileRepository
from deadblock.shared.services import MatchPairer, PairingStatus, QueueManager
from deadblock.shared.store import Credential

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/matchmaking", tags=["matchmaking"])


# ============================================
# Response / Request Models
# ============================================


class JoinQueueRequest(BaseModel):
    rating: int | None = Field(default=None, ge=0)


class QueueEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str | None = None
    user_id: str
    rating: int
    joined_at: datetime | None = None


class QueueStatusResponse(BaseModel):
    count: int
    queued: bool


class LeaveQueueResponse(BaseModel):
    left: bool


class PairingResponse(BaseModel):
    status: PairingStatus
    game: GameResponse | None = None
    opponent_id: str | None = None


# ============================================
# Queue Endpoints
# ============================================


@router.post("/queue", response_model=QueueEntryResponse)
async def join_queue(
    body: JoinQueueRequest | None = None,
    credential: Credential = Depends(get_credential),
    queue: QueueManager = Depends(get_queue_manager),
    profiles: ProfileRepository = Depends(get_profile_repository),
) -> QueueEntryResponse:
    """Join the matchmaking queue, replacing any existing entry."""
    user_id = credential.user_id
    rating = body.rating if body else None
    if rating is None:
        rating = await _profile_rating(credential, profiles, user_id)
    entry = await queue.join(credential, user_id, rating)
    return QueueEntryResponse.model_validate(entry)


@router.delete("/queue", response_model=LeaveQueueResponse)
async def leave_queue(
    credential: Credential = Depends(get_credential),
    queue: QueueManager = Depends(get_queue_manager),
) -> LeaveQueueResponse:
    """Leave the queue. Not being queued is not an error."""
    return LeaveQueueResponse(left=await queue.leave(credential, credential.user_id))


@router.get("/queue", response_model=QueueStatusResponse)
async def get_queue_status(
    credential: Credential = Depends(get_credential),
    queue: QueueManager = Depends(get_queue_manager),
) -> QueueStatusResponse:
    """Advisory queue size plus whether the caller is still queued."""
    count = await queue.queue_size(credential)
    queued = await queue.is_queued(credential, credential.user_id)
    return QueueStatusResponse(count=count, queued=queued)


@router.post("/pair", response_model=PairingResponse)
async def attempt_pairing(
    credential: Credential = Depends(get_credential),
    queue: QueueManager = Depends(get_queue_manager),
    pairer: MatchPairer = Depends(get_match_pairer),
) -> PairingResponse:
    """Run one pairing attempt for the caller."""
    entry = await queue.get_entry(credential, credential.user_id)
    rating = entry.rating if entry else get_settings().default_rating
    result = await pairer.attempt_pairing(credential, credential.user_id, rating)
    if result.status == PairingStatus.FAILED and result.error is not None:
        raise result.error
    return PairingResponse(
        status=result.status,
        game=GameResponse.model_validate(result.game) if result.game else None,
        opponent_id=result.opponent_id,
    )


async def _profile_rating(
    credential: Credential, profiles: ProfileRepository, user_id: str
) -> int:
    try:
        summary = await profiles.get_summary(credential, user_id)
    except StoreUnavailableError as e:
        logger.warning(f"Profile of {user_id} unavailable, using default rating: {e}")
        summary = None
    return summary.rating if summary else get_settings().default_rating
