"""Catalog client adapters package.

Provides the ``CatalogClient`` Protocol and the two concrete async
clients: ``AsyncSupabaseCatalog`` (REST + optional ``exec_sql`` RPC) and
``AsyncPostgresCatalog`` (direct database connection).

Usage:
    from supabase_backup.adapters import CatalogClient, AsyncSupabaseCatalog
"""

from supabase_backup.adapters.base import RPC_PREFIX, CatalogClient
from supabase_backup.adapters.postgres import AsyncPostgresCatalog
from supabase_backup.adapters.supabase import AsyncSupabaseCatalog

__all__ = [
    "CatalogClient",
    "RPC_PREFIX",
    "AsyncSupabaseCatalog",
    "AsyncPostgresCatalog",
]
