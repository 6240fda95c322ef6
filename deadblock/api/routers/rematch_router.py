"""Rematch negotiation API routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from deadblock.api.core.dependencies import get_credential, get_rematch_negotiator
from deadblock.api.routers.models import GameResponse, ProfileResponse, RematchRequestResponse
from deadblock.shared.services import AcceptStatus, RematchNegotiator
from deadblock.shared.store import Credential

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rematch", tags=["rematch"])


# ============================================
# Response / Request Models
# ============================================


class RematchCreate(BaseModel):
    game_id: str
    to_user_id: str


class PendingRematchResponse(BaseModel):
    request: RematchRequestResponse
    is_sender: bool
    opponent: ProfileResponse | None = None


class RematchStateResponse(BaseModel):
    has_pending: bool
    is_sender: bool = False
    request: RematchRequestResponse | None = None


class AcceptResponse(BaseModel):
    status: AcceptStatus
    request: RematchRequestResponse
    game: GameResponse | None = None


class CancelResponse(BaseModel):
    cancelled: bool


# ============================================
# Request Endpoints
# ============================================


@router.post("/requests", response_model=RematchRequestResponse)
async def request_rematch(
    body: RematchCreate,
    credential: Credential = Depends(get_credential),
    negotiator: RematchNegotiator = Depends(get_rematch_negotiator),
) -> RematchRequestResponse:
    """Ask the opponent of a finished game for a rematch.

    If the opponent already asked, the response is their request, accepted.
    """
    request = await negotiator.request_rematch(
        credential, body.game_id, credential.user_id, body.to_user_id
    )
    return RematchRequestResponse.model_validate(request)


@router.get("/requests/pending", response_model=list[PendingRematchResponse])
async def list_pending_rematches(
    credential: Credential = Depends(get_credential),
    negotiator: RematchNegotiator = Depends(get_rematch_negotiator),
) -> list[PendingRematchResponse]:
    """Live pending requests the caller sent or received."""
    pending = await negotiator.list_pending_for_user(credential, credential.user_id)
    return [
        PendingRematchResponse(
            request=RematchRequestResponse.model_validate(p.request),
            is_sender=p.is_sender,
            opponent=ProfileResponse.model_validate(p.opponent) if p.opponent else None,
        )
        for p in pending
    ]


@router.get("/requests/{request_id}", response_model=RematchRequestResponse)
async def get_rematch_request(
    request_id: str,
    credential: Credential = Depends(get_credential),
    negotiator: RematchNegotiator = Depends(get_rematch_negotiator),
) -> RematchRequestResponse:
    """Current state of one request (the client's polling target)."""
    request = await negotiator.get_request(credential, request_id)
    if request is None or not request.involves(credential.user_id):
        raise HTTPException(status_code=404, detail="Rematch request not found")
    return RematchRequestResponse.model_validate(request)


@router.get("/games/{game_id}", response_model=RematchStateResponse)
async def check_rematch_status(
    game_id: str,
    credential: Credential = Depends(get_credential),
    negotiator: RematchNegotiator = Depends(get_rematch_negotiator),
) -> RematchStateResponse:
    """Whether the game has a live pending rematch, and who sent it."""
    state = await negotiator.check_status(credential, game_id, credential.user_id)
    return RematchStateResponse(
        has_pending=state.has_pending,
        is_sender=state.is_sender,
        request=RematchRequestResponse.model_validate(state.request) if state.request else None,
    )


# ============================================
# Resolution Endpoints
# ============================================


@router.post("/requests/{request_id}/accept", response_model=AcceptResponse)
async def accept_rematch(
    request_id: str,
    credential: Credential = Depends(get_credential),
    negotiator: RematchNegotiator = Depends(get_rematch_negotiator),
) -> AcceptResponse:
    """Accept a pending request. A request resolved elsewhere reports already_resolved."""
    result = await negotiator.accept_rematch(credential, request_id, credential.user_id)
    return AcceptResponse(
        status=result.status,
        request=RematchRequestResponse.model_validate(result.request),
        game=GameResponse.model_validate(result.game) if result.game else None,
    )


@router.post("/requests/{request_id}/decline", response_model=RematchRequestResponse)
async def decline_rematch(
    request_id: str,
    credential: Credential = Depends(get_credential),
    negotiator: RematchNegotiator = Depends(get_rematch_negotiator),
) -> RematchRequestResponse:
    request = await negotiator.decline_rematch(credential, request_id, credential.user_id)
    return RematchRequestResponse.model_validate(request)


@router.post("/requests/{request_id}/cancel", response_model=CancelResponse)
async def cancel_rematch(
    request_id: str,
    credential: Credential = Depends(get_credential),
    negotiator: RematchNegotiator = Depends(get_rematch_negotiator),
) -> CancelResponse:
    await negotiator.cancel_rematch(credential, request_id, credential.user_id)
    return CancelResponse(cancelled=True)
