"""supabase-backup: tiered schema discovery and data backup for Supabase/PostgreSQL.

Discovers schema objects through privileged catalog queries when
available and degrades to REST-level probing when not, extracts table
data in pages, and writes replayable SQL scripts plus JSON and CSV
exports.

Usage:
    from supabase_backup import BackupRunner, BackupConfig, get_catalog_client
    from supabase_backup import resolve_profile, validate_backup
"""

__version__ = "0.1.0"

# Adapters
from supabase_backup.adapters.base import CatalogClient
from supabase_backup.adapters.postgres import AsyncPostgresCatalog
from supabase_backup.adapters.supabase import AsyncSupabaseCatalog

# Config
from supabase_backup.config.loader import load_db_config
from supabase_backup.config.models import BackupConfig, DatabaseConfig, DatabaseProfile

# Factory
from supabase_backup.factory import (
    ProfileNotFoundError,
    get_catalog_client,
    resolve_profile,
    resolve_url,
)

# Run
from supabase_backup.backup.models import RunContext, TableData
from supabase_backup.backup.validate import validate_backup
from supabase_backup.orchestrator import BackupResult, BackupRunner

__all__ = [
    # Adapters
    "CatalogClient",
    "AsyncSupabaseCatalog",
    "AsyncPostgresCatalog",
    # Config
    "load_db_config",
    "BackupConfig",
    "DatabaseConfig",
    "DatabaseProfile",
    # Factory
    "get_catalog_client",
    "resolve_profile",
    "resolve_url",
    "ProfileNotFoundError",
    # Run
    "BackupRunner",
    "BackupResult",
    "RunContext",
    "TableData",
    "validate_backup",
]
