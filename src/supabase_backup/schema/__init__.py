"""Schema records and type mapping.

Provides the immutable schema records produced by discovery and the pure
type helpers ``infer_type`` / ``map_sql_type``.  The tiered engine lives in
``supabase_backup.schema.discovery``.

Usage:
    from supabase_backup.schema import infer_type, map_sql_type
    from supabase_backup.schema import TableRecord, ColumnRecord
    from supabase_backup.schema.discovery import DiscoveryEngine
"""

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
    TableRecord,
    TriggerRecord,
    ViewRecord,
)
from supabase_backup.schema.types import infer_type, map_sql_type

__all__ = [
    "infer_type",
    "map_sql_type",
    "SchemaRecord",
    "TableRecord",
    "ColumnRecord",
    "RoutineRecord",
    "ViewRecord",
    "TriggerRecord",
    "PolicyRecord",
    "IndexRecord",
    "SequenceRecord",
    "EnumRecord",
    "ConstraintRecord",
    "ExtensionRecord",
]
