"""Match Pairer: turn two queued players into exactly one game.

The store offers no cross-row transaction, so pairing is committed by
consuming queue rows:

1. delete the caller's own row; if nothing was deleted, another client
   already paired the caller and its game will show up on the next poll;
2. delete the chosen opponent's row; if nothing was deleted, the opponent
   was taken by a third party: put the caller back and keep searching;
3. only after both deletes affected exactly one row, create the game.

A queue row can be consumed once, so no player ends up in two games from
the same wait. The cost is an occasional spurious re-queue.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from deadblock.shared.errors import StoreError
from deadblock.shared.models.game import Game
from deadblock.shared.models.queue import QueueEntry
from deadblock.shared.repositories.game import GameRepository
from deadblock.shared.services.queue_manager import QueueManager
from deadblock.shared.store import Credential, Store

logger = logging.getLogger(__name__)

_LATEST = datetime.max.replace(tzinfo=UTC)


class PairingStatus(StrEnum):
    MATCHED = "matched"
    SEARCHING = "searching"  # nobody suitable, or our row was already consumed
    REQUEUED = "requeued"  # lost the race for the opponent; back in the queue
    FAILED = "failed"  # store error mid-protocol; no progress this tick


@dataclass
class PairingResult:
    status: PairingStatus
    game: Game | None = None
    opponent_id: str | None = None
    error: Exception | None = None

    @property
    def matched(self) -> bool:
        return self.status == PairingStatus.MATCHED


def choose_opponent(
    entries: Sequence[QueueEntry],
    user_id: str,
    rating: int,
    max_rating_gap: int | None = None,
) -> QueueEntry | None:
    """Closest rating wins; ties go to whoever has waited longest."""
    candidates = [
        e
        for e in entries
        if e.user_id != user_id
        and (max_rating_gap is None or abs(e.rating - rating) <= max_rating_gap)
    ]
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda e: (abs(e.rating - rating), e.joined_at or _LATEST, e.user_id),
    )


class MatchPairer:
    """Runs one pairing attempt per poll tick for one caller."""

    def __init__(
        self,
        store: Store,
        queue: QueueManager | None = None,
        *,
        max_rating_gap: int | None = None,
    ) -> None:
        self.queue = queue or QueueManager(store)
        self.games = GameRepository(store)
        self.max_rating_gap = max_rating_gap

    async def attempt_pairing(
        self, credential: Credential, user_id: str, rating: int
    ) -> PairingResult:
        try:
            entries = await self.queue.active_entries(credential)
        except StoreError as e:
            return PairingResult(PairingStatus.FAILED, error=e)

        opponent = choose_opponent(entries, user_id, rating, self.max_rating_gap)
        if opponent is None:
            return PairingResult(PairingStatus.SEARCHING)

        own = next((e for e in entries if e.user_id == user_id), None)
        own = own or QueueEntry(user_id=user_id, rating=rating)
        return await self._commit(credential, own, opponent)

    async def _commit(
        self, credential: Credential, own: QueueEntry, opponent: QueueEntry
    ) -> PairingResult:
        user_id = own.user_id
        try:
            removed_self = await self.queue.repo.remove_by_user(credential, user_id)
        except StoreError as e:
            logger.warning(f"Pairing {user_id}: could not claim own queue row: {e}")
            return PairingResult(PairingStatus.FAILED, error=e)

        if removed_self != 1:
            logger.info(f"Pairing {user_id}: own queue row already consumed")
            return PairingResult(PairingStatus.SEARCHING)

        try:
            removed_opponent = await self.queue.repo.remove_by_user(credential, opponent.user_id)
        except StoreError as e:
            # Own row is gone; the poll loop re-joins if no game turns up
            logger.warning(f"Pairing {user_id}: could not claim {opponent.user_id}: {e}")
            return PairingResult(PairingStatus.FAILED, opponent_id=opponent.user_id, error=e)

        if removed_opponent != 1:
            logger.info(f"Pairing {user_id}: lost race for {opponent.user_id}, re-queueing")
            try:
                await self.queue.rejoin(credential, own)
            except StoreError as e:
                return PairingResult(PairingStatus.FAILED, opponent_id=opponent.user_id, error=e)
            return PairingResult(PairingStatus.REQUEUED, opponent_id=opponent.user_id)

        try:
            game = await self.games.create(credential, user_id, opponent.user_id)
        except StoreError as e:
            # Both rows consumed, no game: both poll loops re-join on their own
            logger.warning(f"Pairing {user_id} vs {opponent.user_id}: game creation failed: {e}")
            return PairingResult(PairingStatus.FAILED, opponent_id=opponent.user_id, error=e)

        logger.info(
            f"Paired {user_id} ({own.rating}) with {opponent.user_id} ({opponent.rating}) "
            f"in game {game.id}"
        )
        return PairingResult(PairingStatus.MATCHED, game=game, opponent_id=opponent.user_id)
