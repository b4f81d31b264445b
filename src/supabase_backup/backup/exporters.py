"""CSV, JSON and Markdown renderers for a finished run.

All functions are pure: they return text (or dicts) and never touch the
filesystem.  ``supabase_backup.backup.artifacts`` writes the results.
"""

import csv
import io
import json
from typing import Any

from supabase_backup.backup.models import RunContext, TableData

CSV_DIR = "csv-data"

# ============================================================================
# CSV
# ============================================================================


def _csv_field(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def render_csv(rows: list[dict[str, Any]]) -> str:
    """Render rows as CSV with every field double-quoted.

    The header is the key list of the first row; later rows are written in
    the same column order, with missing keys as empty fields.

    Example:
        >>> render_csv([{"a": 1, "b": "x"}, {"a": 2}])
        '"a","b"\\n"1","x"\\n"2",""\\n'
    """
    if not rows:
        return ""
    headers = list(rows[0].keys())
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_csv_field(row.get(h)) for h in headers])
    return buffer.getvalue()


def csv_filename(data: TableData) -> str:
    """``<table>.csv`` for public tables, ``<schema>.<table>.csv`` otherwise."""
    if data.schema_name == "public":
        return f"{data.table}.csv"
    return f"{data.schema_name}.{data.table}.csv"


def render_csv_files(context: RunContext) -> dict[str, str]:
    """Filename -> CSV text for every table with extracted rows."""
    files = {}
    for key in sorted(context.data):
        data = context.data[key]
        if data.rows:
            files[csv_filename(data)] = render_csv(data.rows)
    return files


# ============================================================================
# JSON
# ============================================================================


def render_snapshot_json(context: RunContext) -> str:
    """The complete run, camelCase keys, lossless."""
    return json.dumps(context.to_snapshot(), indent=2, ensure_ascii=False, default=str)


def build_summary(context: RunContext, files: list[str]) -> dict[str, Any]:
    """Contents of ``backup-summary.json``."""
    snapshot = context.to_snapshot()
    return {
        "metadata": snapshot["metadata"],
        "statistics": snapshot["statistics"],
        "errors": snapshot["errors"],
        "warnings": snapshot["warnings"],
        "config": snapshot["config"],
        "discoveryTiers": snapshot["discoveryTiers"],
        "files": files,
    }


def render_summary_json(context: RunContext, files: list[str]) -> str:
    return json.dumps(build_summary(context, files), indent=2, ensure_ascii=False, default=str)


# ============================================================================
# README
# ============================================================================


def render_readme(context: RunContext, files: list[str]) -> str:
    """Human-readable documentation of the run."""
    stats = context.statistics
    meta = context.metadata

    lines = [
        "# Supabase Database Backup",
        "",
        f"- **Created:** {meta.timestamp}",
        f"- **Source:** {meta.endpoint or 'unknown'}",
        f"- **Format version:** {meta.backup_version}",
        f"- **Duration:** {stats.duration_seconds:.1f}s",
        "",
        "## Statistics",
        "",
        "| Object | Count |",
        "|---|---|",
    ]
    for label, value in [
        ("Schemas", stats.schemas),
        ("Tables", stats.tables),
        ("Columns", stats.columns),
        ("Views", stats.views),
        ("Functions", stats.functions),
        ("Triggers", stats.triggers),
        ("Indexes", stats.indexes),
        ("Policies", stats.policies),
        ("Sequences", stats.sequences),
        ("Enums", stats.enums),
        ("Constraints", stats.constraints),
        ("Extensions", stats.extensions),
        ("Tables with data", stats.tables_with_data),
        ("Total rows", stats.total_rows),
    ]:
        lines.append(f"| {label} | {value} |")

    limited = [d for d in context.data.values() if d.was_limited]
    if limited:
        lines += ["", "## Truncated Tables", ""]
        for data in limited:
            total = data.total_rows if data.total_rows is not None else "unknown"
            lines.append(f"- `{data.qualified_name}`: {data.row_count} of {total} rows")

    lines += ["", "## Files", ""]
    lines.extend(f"- `{name}`" for name in files)

    lines += [
        "",
        "## Restore",
        "",
        "```bash",
        "# Full restore (schema + data)",
        'psql "$DATABASE_URL" -f complete-restore.sql',
        "",
        "# Schema only",
        'psql "$DATABASE_URL" -f schema-only.sql',
        "",
        "# Data only (tables must exist)",
        'psql "$DATABASE_URL" -f data-only.sql',
        "```",
        "",
        "Sections marked as inferred or commented out were reconstructed without",
        "catalog access and should be reviewed before use.",
    ]

    if context.errors:
        lines += ["", f"## Errors ({len(context.errors)})", ""]
        lines.extend(f"- **{e.context}**: {e.message}" for e in context.errors)
    if context.warnings:
        lines += ["", f"## Warnings ({len(context.warnings)})", ""]
        lines.extend(f"- **{w.context}**: {w.message}" for w in context.warnings)

    return "\n".join(lines) + "\n"
