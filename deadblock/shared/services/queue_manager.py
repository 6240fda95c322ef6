"""Queue Manager: who is waiting for an opponent.

Never retries. Transient store failures surface as ``QueueUnavailableError``
and the caller's poll loop decides whether to try again.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

from deadblock.shared.errors import (
    QueueUnavailableError,
    StoreConflictError,
    StoreUnavailableError,
)
from deadblock.shared.models.queue import QueueEntry
from deadblock.shared.repositories.queue import QueueRepository
from deadblock.shared.store import Credential, Store

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = 600.0


@asynccontextmanager
async def _queue_call(action: str) -> AsyncIterator[None]:
    try:
        yield
    except QueueUnavailableError:
        raise
    except StoreUnavailableError as e:
        logger.warning(f"Queue unavailable during {action}: {e}")
        raise QueueUnavailableError(str(e)) from e


class QueueManager:
    """Matchmaking queue operations.

    Entries older than ``stale_after`` seconds are left out of every read and
    removed by ``purge_stale``; ``None`` keeps entries forever.
    """

    def __init__(
        self,
        store: Store,
        *,
        stale_after: float | None = DEFAULT_STALE_AFTER,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repo = QueueRepository(store)
        self.stale_after = stale_after
        self._clock = clock or (lambda: datetime.now(UTC))

    def _fresh_since(self) -> datetime | None:
        if self.stale_after is None:
            return None
        return self._clock() - timedelta(seconds=self.stale_after)

    async def join(self, credential: Credential, user_id: str, rating: int) -> QueueEntry:
        """Put the user in the queue, replacing any entry they already have."""
        async with _queue_call("join"):
            replaced = await self.repo.remove_by_user(credential, user_id)
            try:
                entry = await self.repo.add_entry(credential, user_id, rating)
            except StoreConflictError:
                # A concurrent join for the same user landed between delete and insert
                existing = await self.repo.find_by_user(credential, user_id)
                if existing is None:
                    raise
                return existing
        logger.info(f"{user_id} joined queue (rating={entry.rating}, replaced={bool(replaced)})")
        return entry

    async def rejoin(self, credential: Credential, entry: QueueEntry) -> QueueEntry:
        """Put a previously removed entry back, keeping its original position."""
        async with _queue_call("rejoin"):
            try:
                restored = await self.repo.add_entry(
                    credential, entry.user_id, entry.rating, joined_at=entry.joined_at
                )
            except StoreConflictError:
                existing = await self.repo.find_by_user(credential, entry.user_id)
                if existing is None:
                    raise
                return existing
        logger.info(f"{entry.user_id} re-queued")
        return restored

    async def leave(self, credential: Credential, user_id: str) -> bool:
        """Remove the user's entry. Absent entries are not an error."""
        async with _queue_call("leave"):
            removed = await self.repo.remove_by_user(credential, user_id)
        if removed:
            logger.info(f"{user_id} left queue")
        return removed > 0

    async def queue_size(self, credential: Credential) -> int:
        """Advisory count for display. Never used for pairing decisions."""
        async with _queue_call("queue_size"):
            return await self.repo.count_active(credential, joined_after=self._fresh_since())

    async def active_entries(self, credential: Credential) -> list[QueueEntry]:
        """The authoritative waiting set, oldest first."""
        async with _queue_call("active_entries"):
            return await self.repo.get_active_entries(credential, joined_after=self._fresh_since())

    async def get_entry(self, credential: Credential, user_id: str) -> QueueEntry | None:
        async with _queue_call("get_entry"):
            return await self.repo.find_by_user(credential, user_id)

    async def is_queued(self, credential: Credential, user_id: str) -> bool:
        return await self.get_entry(credential, user_id) is not None

    async def purge_stale(self, credential: Credential) -> int:
        """Delete entries that have waited longer than ``stale_after``."""
        cutoff = self._fresh_since()
        if cutoff is None:
            return 0
        async with _queue_call("purge_stale"):
            removed = await self.repo.remove_stale(credential, cutoff)
        if removed:
            logger.info(f"Purged {removed} stale queue entr{'y' if removed == 1 else 'ies'}")
        return removed
