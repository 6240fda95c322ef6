"""PostgREST store backend (httpx), the hosted Supabase REST interface.

Filters map to PostgREST query operators; the caller's access token is sent
as the bearer credential on every request, alongside the project's anon key.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import httpx

from deadblock.shared.errors import (
    StoreConflictError,
    StoreError,
    StoreUnavailableError,
    UnauthenticatedError,
)
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


def _literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def filter_params(filters: Sequence[Filter]) -> list[tuple[str, str]]:
    """Render filters as PostgREST query parameters (``col=op.value``)."""
    params: list[tuple[str, str]] = []
    for f in filters:
        if f.op == "in":
            items = ",".join(f'"{_literal(v)}"' for v in f.value)
            params.append((f.column, f"in.({items})"))
        elif f.op == "is":
            params.append((f.column, "is.null"))
        else:
            params.append((f.column, f"{f.op}.{_literal(f.value)}"))
    return params


def _jsonable(row: dict[str, Any]) -> dict[str, Any]:
    return {k: v.isoformat() if isinstance(v, datetime) else v for k, v in row.items()}


class RestStore:
    """Store backed by ``{supabase_url}/rest/v1``.

    Manages one shared ``httpx.AsyncClient`` for connection reuse.
    """

    def __init__(
        self,
        supabase_url: str,
        anon_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not supabase_url or not anon_key:
            raise ValueError("Supabase URL and anon key are required")

        self.base_url = supabase_url.rstrip("/") + "/rest/v1"
        self.anon_key = anon_key
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        """Close the shared HTTP client. Call on shutdown."""
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(
        self, credential: Credential, prefer: str = "return=representation"
    ) -> dict[str, str]:
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {credential.access_token}",
            "Content-Type": "application/json",
            "Prefer": prefer,
        }

    async def _request(
        self,
        method: str,
        table: Table,
        credential: Credential,
        *,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        require_credential(credential)
        url = f"{self.base_url}/{Table(table).value}"
        try:
            response = await self._http.request(
                method, url, params=params, json=json, headers=self._headers(credential)
            )
        except httpx.TransportError as e:
            logger.warning(f"PostgREST {method} /{table} transport error: {type(e).__name__}: {e}")
            raise StoreUnavailableError(f"{type(e).__name__}: {e}") from e

        if response.is_success:
            return response

        detail = response.text[:200]
        if response.status_code == 401:
            raise UnauthenticatedError(f"PostgREST rejected credential: {detail}")
        if response.status_code == 409 or '"23505"' in detail:
            raise StoreConflictError(detail)
        if response.status_code >= 500 or response.status_code == 429:
            logger.warning(f"PostgREST {method} /{table} returned {response.status_code}")
            raise StoreUnavailableError(f"HTTP {response.status_code}: {detail}")
        raise StoreError(f"HTTP {response.status_code}: {detail}")

    # ------------------------------------------------------------------
    # Store contract
    # ------------------------------------------------------------------

    async def insert(
        self, table: Table, row: dict[str, Any], *, credential: Credential
    ) -> dict[str, Any]:
        check_columns(table, list(row))
        response = await self._request("POST", table, credential, json=_jsonable(row))
        data = response.json()
        return data[0] if isinstance(data, list) else data

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
        response = await self._request(
            "PATCH", table, credential, params=filter_params(filters), json=_jsonable(patch)
        )
        return response.json()

    async def delete(
        self, table: Table, filters: Sequence[Filter], *, credential: Credential
    ) -> int:
        check_filters(table, filters)
        if not filters:
            raise StoreError("Refusing to delete without filters")
        params = filter_params(filters) + [("select", "id")]
        response = await self._request("DELETE", table, credential, params=params)
        return len(response.json())

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
        params = [("select", "*")] + filter_params(filters)
        if order:
            check_columns(table, [o.column for o in order])
            params.append(
                ("order", ",".join(f"{o.column}.{'desc' if o.descending else 'asc'}" for o in order))
            )
        if limit is not None:
            params.append(("limit", str(int(limit))))
        response = await self._request("GET", table, credential, params=params)
        return response.json()
