"""Structural validation of a ``complete-backup.json`` snapshot.

Sync -- local file read only.
"""

import json
from pathlib import Path

from supabase_backup.backup.models import BACKUP_FORMAT_VERSION

REQUIRED_KEYS = ("metadata", "schema", "data", "statistics", "errors", "warnings")


def validate_backup(backup_path: str | Path) -> dict:
    """Validate a JSON snapshot written by a backup run.

    Checks the required top-level keys, the format version, each table's
    ``rowCount`` against its row list, and ``statistics.totalRows``
    against the sum of row counts.

    Args:
        backup_path: Path to ``complete-backup.json``.

    Returns:
        Dict with ``valid`` (bool), ``errors`` (list[str]) and
        ``warnings`` (list[str]).
    """
    errors: list[str] = []
    warnings: list[str] = []

    try:
        with open(backup_path, "r", encoding="utf-8") as f:
            backup_data = json.load(f)
    except FileNotFoundError:
        errors.append(f"Backup file not found: {backup_path}")
        return {"valid": False, "errors": errors, "warnings": warnings}
    except json.JSONDecodeError as e:
        errors.append(f"Invalid JSON: {e}")
        return {"valid": False, "errors": errors, "warnings": warnings}

    if not isinstance(backup_data, dict):
        errors.append("Backup root must be a JSON object")
        return {"valid": False, "errors": errors, "warnings": warnings}

    for key in REQUIRED_KEYS:
        if key not in backup_data:
            errors.append(f"Missing required key: {key}")

    if errors:
        return {"valid": False, "errors": errors, "warnings": warnings}

    version = backup_data["metadata"].get("backupVersion")
    if version != BACKUP_FORMAT_VERSION:
        errors.append(
            f"Unsupported backup version '{version}' (expected '{BACKUP_FORMAT_VERSION}')"
        )

    total = 0
    for name, table in backup_data["data"].items():
        rows = table.get("rows", [])
        row_count = table.get("rowCount", 0)
        if len(rows) != row_count:
            errors.append(f"{name}: rowCount {row_count} != {len(rows)} rows")
        if table.get("wasLimited"):
            warnings.append(f"{name}: truncated to {row_count} rows")
        if table.get("error"):
            warnings.append(f"{name}: extraction error: {table['error']}")
        total += len(rows)

    reported = backup_data["statistics"].get("totalRows")
    if reported != total:
        errors.append(f"statistics.totalRows {reported} != {total} rows in data")

    if backup_data["errors"]:
        warnings.append(f"Backup recorded {len(backup_data['errors'])} error(s)")

    valid = len(errors) == 0
    return {"valid": valid, "errors": errors, "warnings": warnings}
