"""Repository for the rematch_requests table."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from deadblock.shared.models.rematch import RematchRequest, RematchStatus
from deadblock.shared.store import Credential, Filter, Order, Store, Table, eq

logger = logging.getLogger(__name__)

_CREATED_ORDER = [Order("created_at"), Order("id")]


class RematchRepository:
    """Row operations for rematch_requests."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def create(
        self,
        credential: Credential,
        *,
        game_id: str,
        from_user_id: str,
        to_user_id: str,
        first_player_id: str,
        expires_at: datetime | None = None,
    ) -> RematchRequest:
        row = await self.store.insert(
            Table.REMATCH_REQUESTS,
            {
                "game_id": game_id,
                "from_user_id": from_user_id,
                "to_user_id": to_user_id,
                "first_player_id": first_player_id,
                "status": RematchStatus.PENDING.value,
                "expires_at": expires_at,
            },
            credential=credential,
        )
        return RematchRequest.from_row(row)

    async def get(self, credential: Credential, request_id: str) -> RematchRequest | None:
        rows = await self.store.select(
            Table.REMATCH_REQUESTS, [eq("id", request_id)], credential=credential, limit=1
        )
        return RematchRequest.from_row(rows[0]) if rows else None

    async def find_pending_for_game(
        self, credential: Credential, game_id: str
    ) -> list[RematchRequest]:
        """Pending rows for a game, oldest first (expired ones included)."""
        rows = await self.store.select(
            Table.REMATCH_REQUESTS,
            [eq("game_id", game_id), eq("status", RematchStatus.PENDING.value)],
            credential=credential,
            order=_CREATED_ORDER,
        )
        return [RematchRequest.from_row(r) for r in rows]

    async def find_pending_for_user(
        self, credential: Credential, user_id: str
    ) -> list[RematchRequest]:
        """Pending rows where the user is either party, newest first."""
        found: dict[str, RematchRequest] = {}
        for side in ("from_user_id", "to_user_id"):
            rows = await self.store.select(
                Table.REMATCH_REQUESTS,
                [eq(side, user_id), eq("status", RematchStatus.PENDING.value)],
                credential=credential,
            )
            for row in rows:
                request = RematchRequest.from_row(row)
                found[request.id] = request
        return sorted(
            found.values(),
            key=lambda r: (r.created_at is not None, r.created_at, r.id),
            reverse=True,
        )

    async def transition(
        self,
        credential: Credential,
        request_id: str,
        *,
        expected: RematchStatus,
        status: RematchStatus,
        extra_filters: list[Filter] | None = None,
        **fields: Any,
    ) -> RematchRequest | None:
        """Conditionally move a request from ``expected`` to ``status``.

        Returns the updated request, or None when no row matched (the request
        changed underneath us, or ``extra_filters`` excluded it).
        """
        patch = {"status": status.value, "updated_at": datetime.now(UTC), **fields}
        rows = await self.store.update(
            Table.REMATCH_REQUESTS,
            [eq("id", request_id), eq("status", expected.value), *(extra_filters or [])],
            patch,
            credential=credential,
        )
        return RematchRequest.from_row(rows[0]) if rows else None
