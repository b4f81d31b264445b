"""Async Supabase catalog client.

Provides ``AsyncSupabaseCatalog``, an implementation of the
``CatalogClient`` protocol on top of the supabase-py async client (row
reads, RPC calls) and ``httpx`` (the PostgREST OpenAPI document and the
direct ``exec_sql`` call).

Privileged catalog queries need the optional ``exec_sql`` function to be
installed in the target database::

    CREATE OR REPLACE FUNCTION exec_sql(query text)
    RETURNS SETOF json LANGUAGE plpgsql SECURITY DEFINER AS $$ ... $$;

Without it every catalog query raises ``QueryUnavailable`` and discovery
degrades to REST-level probing.

Usage:
    from supabase_backup.adapters.supabase import AsyncSupabaseCatalog

    client = AsyncSupabaseCatalog(
        url="https://xyzproject.supabase.co",
        key="eyJ...",
        timeout=30.0,
    )
    rows = await client.fetch_row_range("users", offset=0, limit=1000)
    await client.close()
"""

import asyncio
import logging
from typing import Any

import httpx
from postgrest.exceptions import APIError
from postgrest.types import CountMethod
from supabase import AsyncClient, acreate_client

from supabase_backup.errors import QueryUnavailable, TableAccessDenied, TableReadFailed

logger = logging.getLogger(__name__)

EXEC_SQL_FUNCTION = "exec_sql"

# PostgreSQL / PostgREST error codes meaning "you may not read this"
_ACCESS_DENIED_CODES = {"42501", "PGRST301", "PGRST302"}
# PostgREST error codes meaning "no such function"
_MISSING_FUNCTION_CODES = {"PGRST202", "42883"}


def parse_openapi_resources(spec: dict[str, Any]) -> list[str]:
    """Extract resource names from a PostgREST OpenAPI document.

    Every path except the root becomes a resource; RPC paths keep their
    ``rpc/`` prefix.  ``definitions`` entries not already covered by a
    path are appended (older PostgREST versions list tables only there).

    Example:
        >>> parse_openapi_resources({"paths": {"/": {}, "/users": {}, "/rpc/f": {}}})
        ['users', 'rpc/f']
    """
    names: list[str] = []
    paths = spec.get("paths")
    if isinstance(paths, dict):
        for path in paths:
            name = str(path).strip("/")
            if name and name not in names:
                names.append(name)

    definitions = spec.get("definitions")
    if isinstance(definitions, dict):
        for name in definitions:
            name = str(name)
            if name and not name.startswith("rpc_") and name not in names:
                names.append(name)

    return names


def unwrap_exec_sql_payload(payload: Any) -> list[dict[str, Any]]:
    """Normalise the two result shapes produced by ``exec_sql`` variants.

    ``RETURNS TABLE(result jsonb)`` / ``SETOF json`` wrappers produce
    ``[{"result": [...rows...]}]``; a function returning rows directly
    produces the row list itself.  An ``{"error": ...}`` result means the
    function ran but rejected the query.

    Raises:
        QueryUnavailable: If the payload carries an error or has an
            unrecognised shape.
    """
    if payload is None:
        return []

    if isinstance(payload, dict):
        payload = [payload]

    if not isinstance(payload, list):
        raise QueryUnavailable(f"Unexpected exec_sql payload: {type(payload).__name__}")

    if not payload:
        return []

    first = payload[0]
    if isinstance(first, dict) and "result" in first and len(first) == 1:
        result = first["result"]
        if result is None:
            return []
        if isinstance(result, dict):
            if "error" in result:
                raise QueryUnavailable(f"exec_sql rejected query: {result['error']}")
            return [result]
        if isinstance(result, list):
            return [row for row in result if isinstance(row, dict)]
        raise QueryUnavailable(f"Unexpected exec_sql result: {type(result).__name__}")

    if isinstance(first, dict) and "error" in first and "code" in first:
        raise QueryUnavailable(f"exec_sql rejected query: {first['error']}")

    return [row for row in payload if isinstance(row, dict)]


class AsyncSupabaseCatalog:
    """Async Supabase implementation of the ``CatalogClient`` protocol.

    The supabase client is initialized lazily on first use with
    ``acreate_client`` protected by an ``asyncio.Lock``.  Every remote call
    is bounded by ``timeout`` seconds; a timeout fails that call only.

    Args:
        url: Supabase project URL.
        key: Service-role key (needs elevated read privileges).
        timeout: Per-call timeout in seconds.
    """

    def __init__(self, url: str, key: str, timeout: float = 30.0) -> None:
        self._url: str = url.rstrip("/")
        self._key: str = key
        self._timeout: float = timeout
        self._client: AsyncClient | None = None
        self._lock: asyncio.Lock = asyncio.Lock()
        self._http: httpx.AsyncClient | None = None
        # None = not tried yet, False = both exec_sql paths missing
        self._privileged_available: bool | None = None

    @property
    def rest_url(self) -> str:
        return f"{self._url}/rest/v1"

    async def _get_client(self) -> AsyncClient:
        """Get or create the async Supabase client."""
        if self._client is None:
            async with self._lock:
                # Double-check after acquiring lock
                if self._client is None:
                    self._client = await acreate_client(self._url, self._key)
        return self._client

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self._timeout,
                headers={
                    "apikey": self._key,
                    "Authorization": f"Bearer {self._key}",
                },
            )
        return self._http

    async def _bounded(self, awaitable: Any) -> Any:
        return await asyncio.wait_for(awaitable, timeout=self._timeout)

    async def _table(self, table: str, schema: str):
        client = await self._get_client()
        return client.schema(schema).table(table)

    # ------------------------------------------------------------------
    # Privileged SQL
    # ------------------------------------------------------------------

    async def run_catalog_query(self, query: str) -> list[dict[str, Any]]:
        """Run a catalog query via ``exec_sql``: client RPC first, then HTTP."""
        if self._privileged_available is False:
            raise QueryUnavailable("exec_sql is not installed on this endpoint")

        failures: list[str] = []
        missing = 0

        # Path 1: RPC through the supabase client
        try:
            client = await self._get_client()
            response = await self._bounded(
                client.rpc(EXEC_SQL_FUNCTION, {"query": query}).execute()
            )
            self._privileged_available = True
            return unwrap_exec_sql_payload(response.data)
        except APIError as e:
            if e.code in _MISSING_FUNCTION_CODES:
                missing += 1
            failures.append(f"rpc: {e.message}")
        except (httpx.HTTPError, TimeoutError) as e:
            failures.append(f"rpc: {e!r}")

        # Path 2: direct POST to the same endpoint
        try:
            response = await self._get_http().post(
                f"{self.rest_url}/rpc/{EXEC_SQL_FUNCTION}",
                json={"query": query},
            )
            if response.status_code == 404:
                missing += 1
            response.raise_for_status()
            self._privileged_available = True
            return unwrap_exec_sql_payload(response.json())
        except (httpx.HTTPError, ValueError) as e:
            failures.append(f"http: {e}")

        if missing == 2:
            self._privileged_available = False
        raise QueryUnavailable("; ".join(failures))

    # ------------------------------------------------------------------
    # Row access
    # ------------------------------------------------------------------

    async def probe_table(self, table: str, schema: str = "public") -> bool:
        """Zero-row read; any PostgREST error means the table is not usable."""
        try:
            query = await self._table(table, schema)
            await self._bounded(query.select("*").limit(0).execute())
            return True
        except (APIError, httpx.HTTPError, TimeoutError) as e:
            logger.debug(f"Probe {schema}.{table} failed: {e}")
            return False

    async def count_rows(self, table: str, schema: str = "public") -> int | None:
        """Exact count via a HEAD request, ``None`` if the count failed."""
        try:
            query = await self._table(table, schema)
            response = await self._bounded(
                query.select("*", count=CountMethod.exact, head=True).execute()
            )
        except (APIError, httpx.HTTPError, TimeoutError) as e:
            logger.debug(f"Count {schema}.{table} failed: {e}")
            return None
        return response.count

    async def fetch_row_range(
        self,
        table: str,
        offset: int,
        limit: int,
        schema: str = "public",
    ) -> list[dict[str, Any]]:
        """Ranged read; PostgREST ranges are inclusive on both ends."""
        qualified = f"{schema}.{table}"
        try:
            query = await self._table(table, schema)
            response = await self._bounded(
                query.select("*").range(offset, offset + limit - 1).execute()
            )
        except APIError as e:
            if e.code in _ACCESS_DENIED_CODES:
                raise TableAccessDenied(qualified, e.message or "permission denied") from e
            raise TableReadFailed(qualified, e.message or str(e)) from e
        except TimeoutError as e:
            raise TableReadFailed(qualified, f"timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise TableReadFailed(qualified, str(e)) from e
        return list(response.data or [])

    # ------------------------------------------------------------------
    # Discovery helpers
    # ------------------------------------------------------------------

    async def list_resources(self) -> list[str] | None:
        """Fetch the OpenAPI document served at the REST root."""
        try:
            response = await self._get_http().get(
                f"{self.rest_url}/",
                headers={"Accept": "application/openapi+json"},
            )
            response.raise_for_status()
            spec = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"OpenAPI listing failed: {e}")
            return None
        if not isinstance(spec, dict):
            return None
        return parse_openapi_resources(spec)

    async def call_function(self, name: str) -> bool:
        """Invoke without arguments; only "does not exist" counts as absent."""
        try:
            client = await self._get_client()
            await self._bounded(client.rpc(name).execute())
            return True
        except APIError as e:
            if e.code in _MISSING_FUNCTION_CODES:
                return False
            return "does not exist" not in (e.message or "")
        except (httpx.HTTPError, TimeoutError):
            return False

    async def test_connection(self) -> bool:
        """Try the ``version`` RPC, the REST root, then a bogus-table read."""
        if await self.call_function("version"):
            return True

        try:
            response = await self._get_http().get(f"{self.rest_url}/")
            if response.status_code != 404:
                return True
        except httpx.HTTPError as e:
            logger.debug(f"REST root unreachable: {e}")

        # Any PostgREST error response still proves the endpoint answers
        try:
            query = await self._table("__backup_connectivity_probe__", "public")
            await self._bounded(query.select("*").limit(0).execute())
            return True
        except APIError:
            return True
        except (httpx.HTTPError, TimeoutError):
            return False

    async def close(self) -> None:
        """Close HTTP sessions.  No-op if nothing was opened."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
        if self._client is not None:
            await self._client.postgrest.aclose()
            self._client = None
