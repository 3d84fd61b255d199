"""
Table store collaborator.

The event log lives in a hosted Postgres exposed through a PostgREST-style
table API. Analytics code only needs a handful of operations (insert,
update, filtered select, count), described by TableStore. RestTableStore
talks to the hosted API with httpx; MemoryTableStore keeps rows in process
for local development and tests.

Stores are cheap to build and hold no connection between calls, so routes
construct one per request instead of sharing a module-level client.
"""
import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)

OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte")


class StoreError(Exception):
    """Raised when the table store rejects or fails a request."""
    pass


@dataclass(frozen=True)
class Filter:
    """A single `column <op> value` condition."""
    column: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def lt(column: str, value: Any) -> Filter:
    return Filter(column, "lt", value)


def _encode(value: Any) -> str:
    """Encode a filter value the way PostgREST expects it in a query string."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class TableStore:
    """Interface of the append/query store."""

    async def insert(self, table: str, row: dict) -> dict:
        """Insert one row and return it as stored (including its id)."""
        raise NotImplementedError

    async def update(self, table: str, values: dict, filters: Sequence[Filter]) -> list[dict]:
        """Update matching rows and return them."""
        raise NotImplementedError

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        columns: str = "*",
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """Return matching rows."""
        raise NotImplementedError

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        """Return the number of matching rows."""
        raise NotImplementedError


class RestTableStore(TableStore):
    """Client for a PostgREST table API (e.g. Supabase `/rest/v1`)."""

    def __init__(
        self,
        rest_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rest_url = rest_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self._transport = transport

    def _headers(self, prefer: Optional[str] = None) -> dict:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    @staticmethod
    def _filter_params(filters: Iterable[Filter]) -> list[tuple[str, str]]:
        return [(f.column, f"{f.op}.{_encode(f.value)}") for f in filters]

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[list] = None,
        json: Any = None,
        prefer: Optional[str] = None,
        extra_headers: Optional[dict] = None,
    ) -> httpx.Response:
        """Send one request to the table API."""
        headers = self._headers(prefer)
        if extra_headers:
            headers.update(extra_headers)
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.request(
                    method,
                    f"{self.rest_url}/{table}",
                    params=params or [],
                    json=json,
                    headers=headers,
                )
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as e:
            raise StoreError(
                f"{method} {table} failed with {e.response.status_code}: {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {table} failed: {e}") from e

    @staticmethod
    def _rows(response: httpx.Response) -> list[dict]:
        try:
            data = response.json()
        except ValueError as e:
            raise StoreError(f"Malformed response body: {e}") from e
        if not isinstance(data, list):
            raise StoreError(f"Expected a list of rows, got {type(data).__name__}")
        return data

    async def insert(self, table: str, row: dict) -> dict:
        response = await self._request("POST", table, json=row, prefer="return=representation")
        rows = self._rows(response)
        if not rows:
            raise StoreError(f"Insert into {table} returned no row")
        return rows[0]

    async def update(self, table: str, values: dict, filters: Sequence[Filter]) -> list[dict]:
        if not filters:
            raise StoreError("Refusing to update without filters")
        response = await self._request(
            "PATCH",
            table,
            params=self._filter_params(filters),
            json=values,
            prefer="return=representation",
        )
        return self._rows(response)

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        columns: str = "*",
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        params = [("select", columns)] + self._filter_params(filters)
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        response = await self._request("GET", table, params=params)
        return self._rows(response)

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        params = [("select", "id")] + self._filter_params(filters)
        response = await self._request(
            "HEAD",
            table,
            params=params,
            prefer="count=exact",
        )
        # Content-Range: 0-24/1234 or */0
        content_range = response.headers.get("content-range", "")
        total = content_range.rsplit("/", 1)[-1]
        if not total.isdigit():
            raise StoreError(f"Missing row count in Content-Range: {content_range!r}")
        return int(total)


class MemoryTableStore(TableStore):
    """In-process table store.

    Rows get a uuid4 `id` on insert. Timestamps should be stored as
    ISO-8601 strings in UTC so range filters compare correctly.
    """

    def __init__(self, tables: Optional[dict[str, list[dict]]] = None):
        self.tables: dict[str, list[dict]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }

    @staticmethod
    def _matches(row: dict, f: Filter) -> bool:
        value = row.get(f.column)
        target = f.value
        if isinstance(target, datetime):
            target = target.isoformat()
        if f.op == "eq":
            return value == target
        if f.op == "neq":
            return value != target
        if value is None or target is None:
            return False
        if f.op == "gt":
            return value > target
        if f.op == "gte":
            return value >= target
        if f.op == "lt":
            return value < target
        return value <= target

    def _filtered(self, table: str, filters: Sequence[Filter]) -> list[dict]:
        return [
            row for row in self.tables.get(table, [])
            if all(self._matches(row, f) for f in filters)
        ]

    async def insert(self, table: str, row: dict) -> dict:
        stored = dict(row)
        stored.setdefault("id", str(uuid.uuid4()))
        self.tables.setdefault(table, []).append(stored)
        return copy.deepcopy(stored)

    async def update(self, table: str, values: dict, filters: Sequence[Filter]) -> list[dict]:
        if not filters:
            raise StoreError("Refusing to update without filters")
        updated = []
        for row in self._filtered(table, filters):
            row.update(values)
            updated.append(copy.deepcopy(row))
        return updated

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        columns: str = "*",
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        rows = self._filtered(table, filters)
        if order_by:
            # Nulls sort last in both directions
            present = [r for r in rows if r.get(order_by) is not None]
            missing = [r for r in rows if r.get(order_by) is None]
            present.sort(key=lambda r: r[order_by], reverse=descending)
            rows = present + missing
        if limit is not None:
            rows = rows[:limit]
        if columns.strip() != "*":
            wanted = [c.strip() for c in columns.split(",") if c.strip()]
            rows = [{c: r.get(c) for c in wanted} for r in rows]
        return copy.deepcopy(rows)

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        return len(self._filtered(table, filters))
