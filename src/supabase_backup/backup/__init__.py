"""Data extraction, script generation, and artifact persistence.

Provides the paged ``DataExtractor``, the ``ScriptGenerator`` (complete,
schema-only and data-only SQL), CSV/JSON/README exporters, artifact
persistence, and snapshot validation.

Usage:
    from supabase_backup.backup import DataExtractor, ScriptGenerator
    from supabase_backup.backup import write_artifacts, validate_backup
"""

from supabase_backup.backup.artifacts import backup_directory, write_artifacts
from supabase_backup.backup.extractor import DataExtractor
from supabase_backup.backup.generator import GeneratedScripts, ScriptGenerator
from supabase_backup.backup.models import RunContext, RunIssue, RunStatistics, TableData
from supabase_backup.backup.validate import validate_backup

__all__ = [
    "DataExtractor",
    "ScriptGenerator",
    "GeneratedScripts",
    "RunContext",
    "RunIssue",
    "RunStatistics",
    "TableData",
    "backup_directory",
    "write_artifacts",
    "validate_backup",
]
