"""Run-scoped models for a backup invocation.

``RunContext`` is the single accumulator of a run: the orchestrator owns
it and threads it through discovery, extraction and generation.  Dumped
with ``by_alias=True`` it is the canonical ``complete-backup.json``
snapshot.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from supabase_backup.config.models import BackupConfig
from supabase_backup.schema.models import (
    ColumnRecord,
    ConstraintRecord,
    EnumRecord,
    ExtensionRecord,
    IndexRecord,
    PolicyRecord,
    RoutineRecord,
    SchemaRecord,
    SequenceRecord,
    SnapshotModel,
    TableRecord,
    TriggerRecord,
    ViewRecord,
)

logger = logging.getLogger(__name__)

BACKUP_FORMAT_VERSION = "2.0"


class AccumulatorModel(BaseModel):
    """Mutable model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# Extracted Data
# ============================================================================


class TableData(SnapshotModel):
    """Extracted rows for one table.

    ``total_rows`` is the count reported by the endpoint (``None`` when it
    could not be determined); ``was_limited`` records that the row cap
    truncated the extraction.  ``error`` keeps a per-table failure while
    ``rows`` keeps whatever was fetched before it.
    """

    schema_name: str = Field("public", alias="schema")
    table: str
    rows: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    total_rows: int | None = None
    was_limited: bool = False
    skipped: bool = False
    skip_reason: str | None = None
    error: str | None = None
    backup_timestamp: str = Field(default_factory=utc_now_iso)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table}"


# ============================================================================
# Diagnostics and Statistics
# ============================================================================


class RunIssue(SnapshotModel):
    """One (context, message) diagnostic entry."""

    context: str
    message: str
    timestamp: str = Field(default_factory=utc_now_iso)


class RunStatistics(AccumulatorModel):
    schemas: int = 0
    tables: int = 0
    columns: int = 0
    functions: int = 0
    views: int = 0
    triggers: int = 0
    policies: int = 0
    indexes: int = 0
    sequences: int = 0
    enums: int = 0
    constraints: int = 0
    extensions: int = 0
    tables_with_data: int = 0
    total_rows: int = 0
    error_count: int = 0
    warning_count: int = 0
    duration_seconds: float = 0.0


class RunMetadata(AccumulatorModel):
    timestamp: str = Field(default_factory=utc_now_iso)
    endpoint: str = ""
    backup_version: str = BACKUP_FORMAT_VERSION
    tool: str = "supabase-backup"
    completed_at: str | None = None


class SchemaSnapshot(AccumulatorModel):
    """All discovered schema objects of a run.

    ``columns`` is keyed by qualified table name (``schema.table``).
    """

    schemas: list[SchemaRecord] = Field(default_factory=list)
    tables: list[TableRecord] = Field(default_factory=list)
    columns: dict[str, list[ColumnRecord]] = Field(default_factory=dict)
    functions: list[RoutineRecord] = Field(default_factory=list)
    views: list[ViewRecord] = Field(default_factory=list)
    triggers: list[TriggerRecord] = Field(default_factory=list)
    policies: list[PolicyRecord] = Field(default_factory=list)
    indexes: list[IndexRecord] = Field(default_factory=list)
    sequences: list[SequenceRecord] = Field(default_factory=list)
    enums: list[EnumRecord] = Field(default_factory=list)
    constraints: list[ConstraintRecord] = Field(default_factory=list)
    extensions: list[ExtensionRecord] = Field(default_factory=list)


# ============================================================================
# Run Context
# ============================================================================


class RunContext(AccumulatorModel):
    """State of one backup run.

    Example:
        >>> ctx = RunContext(config=BackupConfig())
        >>> ctx.add_warning("tables", "no tables found")
        >>> len(ctx.warnings)
        1
    """

    metadata: RunMetadata = Field(default_factory=RunMetadata)
    config: BackupConfig = Field(default_factory=BackupConfig)
    schema_snapshot: SchemaSnapshot = Field(default_factory=SchemaSnapshot, alias="schema")
    data: dict[str, TableData] = Field(default_factory=dict)
    statistics: RunStatistics = Field(default_factory=RunStatistics)
    errors: list[RunIssue] = Field(default_factory=list)
    warnings: list[RunIssue] = Field(default_factory=list)
    discovery_tiers: dict[str, str] = Field(default_factory=dict)

    def add_error(self, context: str, message: str) -> None:
        self.errors.append(RunIssue(context=context, message=message))
        logger.error(f"[{context}] {message}")

    def add_warning(self, context: str, message: str) -> None:
        self.warnings.append(RunIssue(context=context, message=message))
        logger.warning(f"[{context}] {message}")

    def columns_for(self, table: TableRecord) -> list[ColumnRecord]:
        return self.schema_snapshot.columns.get(table.qualified_name, [])

    def to_snapshot(self) -> dict[str, Any]:
        """JSON-compatible dict of the whole run (camelCase keys)."""
        return self.model_dump(mode="json", by_alias=True)
