"""Exception hierarchy for backup runs.

Discovery and extraction failures are caught at their own boundary and
recorded on the ``RunContext``; only ``ArtifactWriteFailed`` (and
``BackupCancelled``) propagate out of a run.

Usage:
    from supabase_backup.errors import QueryUnavailable

    try:
        rows = await client.run_catalog_query(query)
    except QueryUnavailable:
        rows = None  # try the next discovery tier
"""


class BackupError(Exception):
    """Base class for all backup errors."""


class ConnectivityUnavailable(BackupError):
    """The remote endpoint could not be reached at all."""


class QueryUnavailable(BackupError):
    """No privileged SQL execution path accepted the catalog query."""


class CategoryDiscoveryFailed(BackupError):
    """An object category could not be populated by any discovery tier."""

    def __init__(self, category: str, message: str) -> None:
        super().__init__(f"{category}: {message}")
        self.category = category


class TableReadFailed(BackupError):
    """Reading rows from one table failed."""

    def __init__(self, table: str, message: str) -> None:
        super().__init__(f"{table}: {message}")
        self.table = table


class TableAccessDenied(TableReadFailed):
    """The credential is not allowed to read the table."""


class ArtifactWriteFailed(BackupError):
    """An output artifact could not be persisted. Fatal to the run."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"Cannot write {path}: {message}")
        self.path = path


class BackupCancelled(BackupError):
    """The run was cancelled between two tables or categories."""
