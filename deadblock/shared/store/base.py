"""Persistent store contract.

Four coroutine operations over the coordination tables. Every call carries
an explicit ``Credential``; a store never falls back to ambient session
state and never retries.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

import jwt

from deadblock.shared.errors import StoreError, UnauthenticatedError


class Table(StrEnum):
    QUEUE_ENTRIES = "queue_entries"
    GAMES = "games"
    REMATCH_REQUESTS = "rematch_requests"
    PROFILES = "profiles"


# Column whitelist per table; anything else is rejected before reaching a backend
COLUMNS: dict[Table, frozenset[str]] = {
    Table.QUEUE_ENTRIES: frozenset({"id", "user_id", "rating", "joined_at"}),
    Table.GAMES: frozenset(
        {
            "id",
            "player1_id",
            "player2_id",
            "board",
            "board_pieces",
            "used_pieces",
            "current_player",
            "status",
            "winner_id",
            "created_at",
            "updated_at",
        }
    ),
    Table.REMATCH_REQUESTS: frozenset(
        {
            "id",
            "game_id",
            "from_user_id",
            "to_user_id",
            "first_player_id",
            "status",
            "new_game_id",
            "created_at",
            "updated_at",
            "expires_at",
        }
    ),
    Table.PROFILES: frozenset(
        {"id", "username", "display_name", "avatar_url", "rating", "games_played", "games_won"}
    ),
}

JSON_COLUMNS = frozenset({"board", "board_pieces", "used_pieces"})

OPERATORS = frozenset({"eq", "neq", "lt", "lte", "gt", "gte", "in", "is"})


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any

    def matches(self, row: dict[str, Any]) -> bool:
        current = row.get(self.column)
        if self.op == "eq":
            return current == self.value
        if self.op == "neq":
            return current != self.value
        if self.op == "in":
            return current in self.value
        if self.op == "is":
            return current is self.value
        if current is None:
            return False
        if self.op == "lt":
            return current < self.value
        if self.op == "lte":
            return current <= self.value
        if self.op == "gt":
            return current > self.value
        return current >= self.value


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", value)


def lt(column: str, value: Any) -> Filter:
    return Filter(column, "lt", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def in_(column: str, values: Sequence[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


def is_null(column: str) -> Filter:
    return Filter(column, "is", None)


@dataclass(frozen=True)
class Order:
    column: str
    descending: bool = False


@dataclass(frozen=True)
class Credential:
    """Bearer credential of the acting caller (a Supabase access token)."""

    access_token: str
    user_id: str | None = None

    @property
    def claims(self) -> dict[str, Any]:
        """Token payload, unverified. The API layer verifies signatures."""
        try:
            payload = jwt.decode(self.access_token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            payload = {}
        if self.user_id and "sub" not in payload:
            payload["sub"] = self.user_id
        return payload


def require_credential(credential: Credential | None) -> Credential:
    """Fail fast when the caller has no usable credential."""
    if credential is None or not credential.access_token:
        raise UnauthenticatedError("A bearer credential is required")
    return credential


def check_columns(table: Table, columns: Sequence[str]) -> None:
    allowed = COLUMNS[Table(table)]
    unknown = [c for c in columns if c not in allowed]
    if unknown:
        raise StoreError(f"Unknown column(s) for {table}: {', '.join(unknown)}")


def check_filters(table: Table, filters: Sequence[Filter]) -> None:
    check_columns(table, [f.column for f in filters])
    for f in filters:
        if f.op not in OPERATORS:
            raise StoreError(f"Unsupported filter operator: {f.op}")
        if f.op == "is" and f.value is not None:
            raise StoreError("'is' filters only support None")


class Store(Protocol):
    """Row-level operations the coordination core consumes."""

    async def insert(
        self, table: Table, row: dict[str, Any], *, credential: Credential
    ) -> dict[str, Any]: ...

    async def update(
        self,
        table: Table,
        filters: Sequence[Filter],
        patch: dict[str, Any],
        *,
        credential: Credential,
    ) -> list[dict[str, Any]]: ...

    async def delete(
        self, table: Table, filters: Sequence[Filter], *, credential: Credential
    ) -> int: ...

    async def select(
        self,
        table: Table,
        filters: Sequence[Filter] = (),
        *,
        credential: Credential,
        order: Sequence[Order] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def close(self) -> None: ...
