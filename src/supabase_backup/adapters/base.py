"""Catalog client protocol definition.

Defines the ``CatalogClient`` Protocol that every remote access path must
implement.  All methods are ``async def`` -- network calls are the only
suspension points of a backup run.

Usage:
    from supabase_backup.adapters.base import CatalogClient

    async def count_everything(client: CatalogClient, tables: list[str]) -> int:
        total = 0
        for table in tables:
            total += await client.count_rows(table) or 0
        return total
"""

from typing import Any, Protocol

# Prefix marking RPC entries returned by ``list_resources()``
RPC_PREFIX = "rpc/"


class CatalogClient(Protocol):
    """Remote database interface used by discovery and extraction.

    Two capabilities are mandatory (ranged row reads and, for REST
    endpoints, the resource listing); privileged SQL execution is optional
    and callers must be ready for ``QueryUnavailable``.
    """

    async def run_catalog_query(self, query: str) -> list[dict[str, Any]]:
        """Run a read-only catalog query through the privileged path.

        Args:
            query: SQL text (introspection query).

        Returns:
            List of untyped row mappings.  Field values may be strings,
            numbers, nulls or nested structures.

        Raises:
            QueryUnavailable: If no execution path accepted the query.
        """
        ...

    async def probe_table(self, table: str, schema: str = "public") -> bool:
        """Return ``True`` if a zero-row read of the table succeeds."""
        ...

    async def count_rows(self, table: str, schema: str = "public") -> int | None:
        """Exact row count, or ``None`` when the count cannot be determined."""
        ...

    async def fetch_row_range(
        self,
        table: str,
        offset: int,
        limit: int,
        schema: str = "public",
    ) -> list[dict[str, Any]]:
        """Read rows ``offset`` .. ``offset + limit - 1``.

        Raises:
            TableAccessDenied: If the credential may not read the table.
            TableReadFailed: On any other read failure.
        """
        ...

    async def list_resources(self) -> list[str] | None:
        """Resource names from the endpoint's self-describing spec.

        RPC resources are returned with the ``rpc/`` prefix.  Returns
        ``None`` when the endpoint offers no listing.
        """
        ...

    async def call_function(self, name: str) -> bool:
        """Return ``True`` if invoking the function shows that it exists."""
        ...

    async def test_connection(self) -> bool:
        """Best-effort reachability check.  Never raises."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...
