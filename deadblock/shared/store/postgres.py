"""Postgres store backend (asyncpg), talking straight to the Supabase database.

Each call runs in its own short transaction that publishes the caller's JWT
claims through ``request.jwt.claims`` so row-level-security policies apply
as they would behind PostgREST.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import asyncpg

from deadblock.shared.database import DatabaseManager
from deadblock.shared.errors import (
    StoreConflictError,
    StoreError,
    StoreUnavailableError,
)
from deadblock.shared.store.base import (
    JSON_COLUMNS,
    Credential,
    Filter,
    Order,
    Table,
    check_columns,
    check_filters,
    require_credential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_COMPARISONS = {"eq": "=", "neq": "<>", "lt": "<", "lte": "<=", "gt": ">", "gte": ">="}


def _ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _param(column: str, index: int) -> str:
    return f"${index}::jsonb" if column in JSON_COLUMNS else f"${index}"


def _encode(column: str, value: Any) -> Any:
    return json.dumps(value) if column in JSON_COLUMNS else value


def build_where(filters: Sequence[Filter], start: int = 1) -> tuple[str, list[Any]]:
    """Render filters as a WHERE clause with positional parameters from ``start``."""
    clauses: list[str] = []
    args: list[Any] = []
    for f in filters:
        column = _ident(f.column)
        if f.op == "is":
            clauses.append(f"{column} IS NULL")
        elif f.op == "in":
            args.append(list(f.value))
            clauses.append(f"{column} = ANY(${start + len(args) - 1})")
        else:
            args.append(_encode(f.column, f.value))
            clauses.append(f"{column} {_COMPARISONS[f.op]} {_param(f.column, start + len(args) - 1)}")
    if not clauses:
        return "", args
    return " WHERE " + " AND ".join(clauses), args


def build_insert(table: Table, row: dict[str, Any]) -> tuple[str, list[Any]]:
    columns = list(row)
    placeholders = ", ".join(_param(c, i) for i, c in enumerate(columns, start=1))
    sql = (
        f"INSERT INTO {_ident(table)} ({', '.join(_ident(c) for c in columns)}) "
        f"VALUES ({placeholders}) RETURNING *"
    )
    return sql, [_encode(c, row[c]) for c in columns]


def build_update(
    table: Table, filters: Sequence[Filter], patch: dict[str, Any]
) -> tuple[str, list[Any]]:
    columns = list(patch)
    assignments = ", ".join(
        f"{_ident(c)} = {_param(c, i)}" for i, c in enumerate(columns, start=1)
    )
    where, where_args = build_where(filters, start=len(columns) + 1)
    sql = f"UPDATE {_ident(table)} SET {assignments}{where} RETURNING *"
    return sql, [_encode(c, patch[c]) for c in columns] + where_args


def build_delete(table: Table, filters: Sequence[Filter]) -> tuple[str, list[Any]]:
    where, args = build_where(filters)
    return f"DELETE FROM {_ident(table)}{where}", args


def build_select(
    table: Table,
    filters: Sequence[Filter],
    order: Sequence[Order] | None,
    limit: int | None,
) -> tuple[str, list[Any]]:
    where, args = build_where(filters)
    sql = f"SELECT * FROM {_ident(table)}{where}"
    if order:
        sql += " ORDER BY " + ", ".join(
            f"{_ident(o.column)} {'DESC' if o.descending else 'ASC'}" for o in order
        )
    if limit is not None:
        args.append(int(limit))
        sql += f" LIMIT ${len(args)}"
    return sql, args


def decode_row(record: asyncpg.Record | dict[str, Any]) -> dict[str, Any]:
    row = dict(record)
    for key, value in row.items():
        if isinstance(value, uuid.UUID):
            row[key] = str(value)
        elif key in JSON_COLUMNS and isinstance(value, str):
            row[key] = json.loads(value)
    return row


class PostgresStore:
    """Store backed by an asyncpg pool."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def _run(
        self, credential: Credential, action: Callable[[asyncpg.Connection], Awaitable[T]]
    ) -> T:
        claims = json.dumps(require_credential(credential).claims)
        try:
            async with self.db.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute("SELECT set_config('request.jwt.claims', $1, true)", claims)
                    return await action(conn)
        except asyncpg.UniqueViolationError as e:
            raise StoreConflictError(str(e)) from e
        except (
            asyncpg.PostgresConnectionError,
            asyncpg.InterfaceError,
            asyncpg.TooManyConnectionsError,
            asyncpg.QueryCanceledError,
            OSError,
            TimeoutError,
        ) as e:
            logger.warning(f"Postgres store unavailable: {type(e).__name__}: {e}")
            raise StoreUnavailableError(str(e) or type(e).__name__) from e
        except RuntimeError as e:
            # Pool not connected yet
            raise StoreUnavailableError(str(e)) from e
        except asyncpg.PostgresError as e:
            raise StoreError(f"{type(e).__name__}: {e}") from e

    async def insert(
        self, table: Table, row: dict[str, Any], *, credential: Credential
    ) -> dict[str, Any]:
        check_columns(table, list(row))
        sql, args = build_insert(table, row)

        async def action(conn: asyncpg.Connection) -> dict[str, Any]:
            return decode_row(await conn.fetchrow(sql, *args))

        return await self._run(credential, action)

    async def update(
        self,
        table: Table,
        filters: Sequence[Filter],
        patch: dict[str, Any],
        *,
        credential: Credential,
    ) -> list[dict[str, Any]]:
        check_filters(table, filters)
        check_columns(table, list(patch))
        if not filters:
            raise StoreError("Refusing to update without filters")
        sql, args = build_update(table, filters, patch)

        async def action(conn: asyncpg.Connection) -> list[dict[str, Any]]:
            return [decode_row(r) for r in await conn.fetch(sql, *args)]

        return await self._run(credential, action)

    async def delete(
        self, table: Table, filters: Sequence[Filter], *, credential: Credential
    ) -> int:
        check_filters(table, filters)
        if not filters:
            raise StoreError("Refusing to delete without filters")
        sql, args = build_delete(table, filters)

        async def action(conn: asyncpg.Connection) -> int:
            result = await conn.execute(sql, *args)
            # result is like "DELETE N"
            return int(result.split()[-1])

        return await self._run(credential, action)

    async def select(
        self,
        table: Table,
        filters: Sequence[Filter] = (),
        *,
        credential: Credential,
        order: Sequence[Order] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        check_filters(table, filters)
        check_columns(table, [o.column for o in order or ()])
        sql, args = build_select(table, filters, order, limit)

        async def action(conn: asyncpg.Connection) -> list[dict[str, Any]]:
            return [decode_row(r) for r in await conn.fetch(sql, *args)]

        return await self._run(credential, action)

    async def close(self) -> None:
        await self.db.disconnect()
