"""In-process store backend.

Each operation is atomic on its own but yields to the event loop first, so
several simulated clients sharing one ``MemoryStore`` interleave the way
independent browser tabs do against the hosted database.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from deadblock.shared.errors import StoreConflictError, StoreError, StoreUnavailableError
from deadblock.shared.store.base import (
    Credential,
    Filter,
    Order,
    Table,
    check_columns,
    check_filters,
    require_credential,
)

logger = logging.getLogger(__name__)

# Columns stamped with the insert time when the caller leaves them out
_TIMESTAMP_DEFAULTS: dict[Table, tuple[str, ...]] = {
    Table.QUEUE_ENTRIES: ("joined_at",),
    Table.GAMES: ("created_at", "updated_at"),
    Table.REMATCH_REQUESTS: ("created_at", "updated_at"),
    Table.PROFILES: (),
}

_UNIQUE: dict[Table, tuple[str, ...]] = {
    Table.QUEUE_ENTRIES: ("user_id",),
    Table.PROFILES: ("username",),
}


class MemoryStore:
    """Dict-of-lists tables with the same contract as the hosted store."""

    def __init__(self) -> None:
        self._tables: dict[Table, list[dict[str, Any]]] = {t: [] for t in Table}
        self._failures: list[tuple[str, Table | None, Exception]] = []
        self.calls: list[tuple[str, Table]] = []

    # ── Test hooks ───────────────────────────────────────────────────

    def fail_next(
        self, operation: str, table: Table | None = None, error: Exception | None = None
    ) -> None:
        """Make the next matching ``operation`` raise ``error``."""
        self._failures.append((operation, table, error or StoreUnavailableError("injected")))

    def rows(self, table: Table) -> list[dict[str, Any]]:
        return copy.deepcopy(self._tables[Table(table)])

    def seed(self, table: Table, row: dict[str, Any]) -> dict[str, Any]:
        """Insert without a credential (fixtures only)."""
        return self._insert(Table(table), row)

    # ── Store contract ───────────────────────────────────────────────

    async def insert(
        self, table: Table, row: dict[str, Any], *, credential: Credential
    ) -> dict[str, Any]:
        table = await self._enter("insert", table, credential)
        check_columns(table, list(row))
        return self._insert(table, row)

    async def update(
        self,
        table: Table,
        filters: Sequence[Filter],
        patch: dict[str, Any],
        *,
        credential: Credential,
    ) -> list[dict[str, Any]]:
        table = await self._enter("update", table, credential)
        check_filters(table, filters)
        check_columns(table, list(patch))
        updated = []
        for row in self._tables[table]:
            if all(f.matches(row) for f in filters):
                row.update(copy.deepcopy(patch))
                updated.append(copy.deepcopy(row))
        return updated

    async def delete(
        self, table: Table, filters: Sequence[Filter], *, credential: Credential
    ) -> int:
        table = await self._enter("delete", table, credential)
        check_filters(table, filters)
        kept = [r for r in self._tables[table] if not all(f.matches(r) for f in filters)]
        removed = len(self._tables[table]) - len(kept)
        self._tables[table] = kept
        return removed

    async def select(
        self,
        table: Table,
        filters: Sequence[Filter] = (),
        *,
        credential: Credential,
        order: Sequence[Order] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        table = await self._enter("select", table, credential)
        check_filters(table, filters)
        rows = [copy.deepcopy(r) for r in self._tables[table] if all(f.matches(r) for f in filters)]
        for o in reversed(order or ()):
            check_columns(table, [o.column])
            rows.sort(key=lambda r, c=o.column: (r.get(c) is None, r.get(c)), reverse=o.descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def close(self) -> None:
        return None

    # ── Internals ────────────────────────────────────────────────────

    async def _enter(self, operation: str, table: Table, credential: Credential) -> Table:
        require_credential(credential)
        table = Table(table)
        await asyncio.sleep(0)
        self.calls.append((operation, table))
        for i, (op, tbl, error) in enumerate(self._failures):
            if op == operation and (tbl is None or tbl == table):
                del self._failures[i]
                logger.debug(f"Injected failure on {operation} {table}: {error!r}")
                raise error
        return table

    def _insert(self, table: Table, row: dict[str, Any]) -> dict[str, Any]:
        new = copy.deepcopy(row)
        new.setdefault("id", str(uuid.uuid4()))
        now = datetime.now(UTC)
        for column in _TIMESTAMP_DEFAULTS[table]:
            if new.get(column) is None:
                new[column] = now
        for column in _UNIQUE.get(table, ()):
            if any(r.get(column) == new.get(column) for r in self._tables[table]):
                raise StoreConflictError(
                    f"duplicate key value violates unique constraint on {table}.{column}"
                )
        if any(r["id"] == new["id"] for r in self._tables[table]):
            raise StoreError(f"duplicate id {new['id']} in {table}")
        self._tables[table].append(new)
        return copy.deepcopy(new)
