"""Rematch Negotiator: agree on a follow-up game after a finished one.

A request goes ``pending`` → ``accepted`` | ``declined`` | ``cancelled``.
Every transition is a conditional update on ``status = pending``, so a
second attempt at the same transition sees zero affected rows and reports
the settled outcome instead of acting again.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from deadblock.shared.errors import (
    NotFoundError,
    NotPermittedError,
    StoreError,
    StoreUnavailableError,
)
from deadblock.shared.models.game import Game
from deadblock.shared.models.rematch import (
    PendingRematch,
    RematchRequest,
    RematchState,
    RematchStatus,
)
from deadblock.shared.repositories.game import GameRepository
from deadblock.shared.repositories.profile import ProfileRepository
from deadblock.shared.repositories.rematch import RematchRepository
from deadblock.shared.store import Credential, Store, eq

logger = logging.getLogger(__name__)

DEFAULT_REMATCH_TTL = 300.0


class AcceptStatus(StrEnum):
    ACCEPTED = "accepted"
    ALREADY_RESOLVED = "already_resolved"


@dataclass
class AcceptResult:
    status: AcceptStatus
    request: RematchRequest
    game: Game | None = None

    @property
    def accepted(self) -> bool:
        return self.status == AcceptStatus.ACCEPTED


def _creation_order(request: RematchRequest) -> tuple:
    return (request.created_at is None, request.created_at, request.id)


class RematchNegotiator:
    """Request / accept / decline / cancel rematches between two players."""

    def __init__(
        self,
        store: Store,
        *,
        ttl: float | None = DEFAULT_REMATCH_TTL,
        profiles: ProfileRepository | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.requests = RematchRepository(store)
        self.games = GameRepository(store)
        self.profiles = profiles or ProfileRepository(store)
        self.ttl = ttl
        self._rng = rng or random.SystemRandom()
        self._clock = clock or (lambda: datetime.now(UTC))

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request_rematch(
        self, credential: Credential, game_id: str, from_user_id: str, to_user_id: str
    ) -> RematchRequest:
        """Ask the opponent for a rematch.

        If the opponent already asked, this accepts their request instead, or
        asks afresh when it was withdrawn in the meantime. If the caller
        already asked, the existing request comes back as is.
        """
        if from_user_id == to_user_id:
            raise NotPermittedError("Cannot request a rematch against yourself")

        pending = await self._live_pending(credential, game_id)
        if pending:
            existing = pending[0]
            if existing.from_user_id == to_user_id and existing.to_user_id == from_user_id:
                logger.info(f"Opponent already requested rematch for {game_id}, auto-accepting")
                result = await self.accept_rematch(credential, existing.id, from_user_id)
                if result.accepted or result.request.status == RematchStatus.ACCEPTED:
                    return result.request
                # Withdrawn or expired before we got to it: ask afresh
                logger.info(f"Rematch {existing.id} was {result.request.status}, requesting anew")
            elif existing.from_user_id == from_user_id and existing.to_user_id == to_user_id:
                logger.debug(f"Rematch for {game_id} already requested by {from_user_id}")
                return existing
            else:
                raise NotPermittedError(
                    f"Game {game_id} already has a rematch between other players"
                )

        # Fixed at creation so both clients see the same seat assignment
        first_player_id = self._rng.choice([from_user_id, to_user_id])
        expires_at = None
        if self.ttl is not None:
            expires_at = self._clock() + timedelta(seconds=self.ttl)
        request = await self.requests.create(
            credential,
            game_id=game_id,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            first_player_id=first_player_id,
            expires_at=expires_at,
        )
        logger.info(f"Rematch {request.id} requested for {game_id}: {from_user_id} -> {to_user_id}")
        return await self._reconcile(credential, request)

    async def _reconcile(self, credential: Credential, mine: RematchRequest) -> RematchRequest:
        """Settle requests created concurrently for the same game.

        The earliest pending request between the two players stands. A later
        one withdraws itself; if the earliest came from the opponent, it is
        accepted on the spot. Both clients compute the same order, so at most
        one of them acts.
        """
        pending = [
            r
            for r in await self.requests.find_pending_for_game(credential, mine.game_id)
            if r.involves(mine.from_user_id) and r.involves(mine.to_user_id)
        ]
        if not pending:
            return mine
        earliest = min(pending, key=_creation_order)
        if earliest.id == mine.id:
            return mine

        withdrawn = await self.requests.transition(
            credential,
            mine.id,
            expected=RematchStatus.PENDING,
            status=RematchStatus.CANCELLED,
        )
        if withdrawn is None:
            # Already settled by the opponent (accepted or declined)
            current = await self.requests.get(credential, mine.id)
            return current or mine

        if earliest.from_user_id == mine.from_user_id:
            logger.info(f"Duplicate rematch {mine.id} withdrawn in favour of {earliest.id}")
            return earliest

        logger.info(f"Simultaneous rematch requests for {mine.game_id}, accepting {earliest.id}")
        result = await self.accept_rematch(credential, earliest.id, mine.from_user_id)
        return result.request

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def accept_rematch(
        self, credential: Credential, request_id: str, accepting_user_id: str
    ) -> AcceptResult:
        """Accept a pending request and create the follow-up game.

        A request that is no longer pending yields ``already_resolved`` and no
        game. If a concurrent acceptance wins the conditional update, the game
        created here is deleted again, so exactly one follow-up game survives.
        """
        request = await self._require(credential, request_id)
        if not request.involves(accepting_user_id):
            raise NotPermittedError("Only the two players can accept a rematch")
        if not request.is_pending:
            return AcceptResult(AcceptStatus.ALREADY_RESOLVED, request)
        if accepting_user_id != request.to_user_id:
            raise NotPermittedError("A rematch is accepted by the player it was sent to")
        if request.is_expired(self._clock()):
            expired = await self._expire(credential, request)
            return AcceptResult(AcceptStatus.ALREADY_RESOLVED, expired)

        player1_id, player2_id = request.player_order()
        game = await self.games.create(credential, player1_id, player2_id)

        try:
            updated = await self.requests.transition(
                credential,
                request.id,
                expected=RematchStatus.PENDING,
                status=RematchStatus.ACCEPTED,
                new_game_id=game.id,
            )
        except StoreError:
            current = await self._current_or_none(credential, request.id)
            if current is not None and current.new_game_id == game.id:
                return AcceptResult(AcceptStatus.ACCEPTED, current, game)
            await self._discard_game(credential, game)
            raise

        if updated is None:
            await self._discard_game(credential, game)
            current = await self.requests.get(credential, request.id)
            logger.info(f"Rematch {request.id} resolved concurrently; discarded game {game.id}")
            return AcceptResult(AcceptStatus.ALREADY_RESOLVED, current or request)

        logger.info(f"Rematch {request.id} accepted: game {game.id} ({player1_id} moves first)")
        return AcceptResult(AcceptStatus.ACCEPTED, updated, game)

    async def decline_rematch(
        self, credential: Credential, request_id: str, declining_user_id: str
    ) -> RematchRequest:
        request = await self._require(credential, request_id)
        if declining_user_id != request.to_user_id:
            raise NotPermittedError("Only the invited player can decline a rematch")
        return await self._settle(credential, request, RematchStatus.DECLINED)

    async def cancel_rematch(
        self, credential: Credential, request_id: str, requesting_user_id: str
    ) -> RematchRequest:
        request = await self._require(credential, request_id)
        if requesting_user_id != request.from_user_id:
            raise NotPermittedError("Only the requester can cancel a rematch")
        return await self._settle(
            credential,
            request,
            RematchStatus.CANCELLED,
            extra_filters=[eq("from_user_id", requesting_user_id)],
        )

    async def _settle(
        self,
        credential: Credential,
        request: RematchRequest,
        status: RematchStatus,
        extra_filters: list | None = None,
    ) -> RematchRequest:
        """pending → ``status``; repeating the same transition is a no-op."""
        if request.status == status:
            return request
        if not request.is_pending:
            raise NotPermittedError(f"Rematch {request.id} is already {request.status}")

        updated = await self.requests.transition(
            credential,
            request.id,
            expected=RematchStatus.PENDING,
            status=status,
            extra_filters=extra_filters,
        )
        if updated is not None:
            logger.info(f"Rematch {request.id} {status}")
            return updated

        current = await self._require(credential, request.id)
        if current.status == status:
            return current
        raise NotPermittedError(f"Rematch {request.id} is already {current.status}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_request(self, credential: Credential, request_id: str) -> RematchRequest | None:
        return await self.requests.get(credential, request_id)

    async def get_pending_for_game(
        self, credential: Credential, game_id: str
    ) -> RematchRequest | None:
        """The live pending request for a game, if any. No side effects."""
        now = self._clock()
        pending = await self.requests.find_pending_for_game(credential, game_id)
        return next((r for r in pending if not r.is_expired(now)), None)

    async def check_status(
        self, credential: Credential, game_id: str, user_id: str
    ) -> RematchState:
        request = await self.get_pending_for_game(credential, game_id)
        if request is None:
            return RematchState(has_pending=False)
        return RematchState(
            has_pending=True, is_sender=request.from_user_id == user_id, request=request
        )

    async def list_pending_for_user(
        self, credential: Credential, user_id: str
    ) -> list[PendingRematch]:
        """Live pending requests the user sent or received, with opponent details."""
        now = self._clock()
        requests = [
            r
            for r in await self.requests.find_pending_for_user(credential, user_id)
            if not r.is_expired(now)
        ]
        opponents = {}
        if requests:
            try:
                opponents = await self.profiles.get_summaries(
                    credential, [r.opponent_of(user_id) for r in requests]
                )
            except StoreUnavailableError as e:
                logger.warning(f"Opponent profiles unavailable, listing without them: {e}")
        return [
            PendingRematch(
                request=r,
                is_sender=r.from_user_id == user_id,
                opponent=opponents.get(r.opponent_of(user_id)),
            )
            for r in requests
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _require(self, credential: Credential, request_id: str) -> RematchRequest:
        request = await self.requests.get(credential, request_id)
        if request is None:
            raise NotFoundError(f"Rematch request {request_id} not found")
        return request

    async def _current_or_none(
        self, credential: Credential, request_id: str
    ) -> RematchRequest | None:
        try:
            return await self.requests.get(credential, request_id)
        except StoreError as e:
            logger.warning(f"Could not re-read rematch {request_id}: {e}")
            return None

    async def _live_pending(self, credential: Credential, game_id: str) -> list[RematchRequest]:
        """Pending requests for a game, cancelling any that have expired."""
        now = self._clock()
        live = []
        for request in await self.requests.find_pending_for_game(credential, game_id):
            if request.is_expired(now):
                await self._expire(credential, request)
            else:
                live.append(request)
        return live

    async def _expire(self, credential: Credential, request: RematchRequest) -> RematchRequest:
        expired = await self.requests.transition(
            credential,
            request.id,
            expected=RematchStatus.PENDING,
            status=RematchStatus.CANCELLED,
        )
        if expired is not None:
            logger.info(f"Rematch {request.id} expired")
            return expired
        return await self._require(credential, request.id)

    async def _discard_game(self, credential: Credential, game: Game) -> None:
        try:
            await self.games.delete(credential, game.id)
        except StoreError as e:
            logger.error(f"Failed to discard surplus rematch game {game.id}: {e}")
