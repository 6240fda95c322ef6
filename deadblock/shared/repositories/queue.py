"""Repository for the queue_entries table."""

from __future__ import annotations

import logging
from datetime import datetime

from deadblock.shared.models.queue import QueueEntry
from deadblock.shared.store import Credential, Order, Store, Table, eq, gte, lt

logger = logging.getLogger(__name__)


class QueueRepository:
    """Row operations for queue_entries."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def add_entry(
        self,
        credential: Credential,
        user_id: str,
        rating: int,
        joined_at: datetime | None = None,
    ) -> QueueEntry:
        """Insert a queue row. Raises StoreConflictError if the user already has one.

        ``joined_at`` is only passed when re-queueing, to keep the original position.
        """
        row: dict = {"user_id": user_id, "rating": int(rating)}
        if joined_at is not None:
            row["joined_at"] = joined_at
        row = await self.store.insert(Table.QUEUE_ENTRIES, row, credential=credential)
        return QueueEntry.from_row(row)

    async def get_active_entries(
        self, credential: Credential, *, joined_after: datetime | None = None
    ) -> list[QueueEntry]:
        """All waiting entries, oldest first. ``joined_after`` hides stale rows."""
        filters = [gte("joined_at", joined_after)] if joined_after else []
        rows = await self.store.select(
            Table.QUEUE_ENTRIES,
            filters,
            credential=credential,
            order=[Order("joined_at")],
        )
        return [QueueEntry.from_row(r) for r in rows]

    async def find_by_user(self, credential: Credential, user_id: str) -> QueueEntry | None:
        rows = await self.store.select(
            Table.QUEUE_ENTRIES, [eq("user_id", user_id)], credential=credential, limit=1
        )
        return QueueEntry.from_row(rows[0]) if rows else None

    async def count_active(
        self, credential: Credential, *, joined_after: datetime | None = None
    ) -> int:
        return len(await self.get_active_entries(credential, joined_after=joined_after))

    async def remove_by_user(self, credential: Credential, user_id: str) -> int:
        """Delete the user's row. Returns the affected count (0 or 1)."""
        return await self.store.delete(
            Table.QUEUE_ENTRIES, [eq("user_id", user_id)], credential=credential
        )

    async def remove_stale(self, credential: Credential, before: datetime) -> int:
        """Delete rows that joined before ``before``. Returns count removed."""
        return await self.store.delete(
            Table.QUEUE_ENTRIES, [lt("joined_at", before)], credential=credential
        )
