"""Artifact persistence.

Writes one run's output set into a timestamped directory::

    <output_root>/<YYYY-MM-DDTHH-MM-SS>/
        complete-restore.sql      (sql)
        schema-only.sql           (sql)
        data-only.sql             (sql)
        complete-backup.json      (json)
        csv-data/<table>.csv      (csv)
        README.md                 (generate_readme)
        backup-summary.json       (always)

Any ``OSError`` becomes ``ArtifactWriteFailed``, which is fatal to the run.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path

from supabase_backup.backup.exporters import (
    CSV_DIR,
    render_csv_files,
    render_readme,
    render_snapshot_json,
    render_summary_json,
)
from supabase_backup.backup.generator import GeneratedScripts
from supabase_backup.backup.models import RunContext
from supabase_backup.errors import ArtifactWriteFailed

logger = logging.getLogger(__name__)

COMPLETE_SQL = "complete-restore.sql"
SCHEMA_SQL = "schema-only.sql"
DATA_SQL = "data-only.sql"
SNAPSHOT_JSON = "complete-backup.json"
SUMMARY_JSON = "backup-summary.json"
README = "README.md"


def backup_directory(output_root: Path, started: datetime | None = None) -> Path:
    """``<output_root>/<UTC timestamp>`` with filesystem-safe separators."""
    started = started or datetime.now(timezone.utc)
    return output_root / started.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")


def _write(path: Path, content: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ArtifactWriteFailed(str(path), e.strerror or str(e)) from e
    logger.debug(f"Wrote {path} ({len(content)} chars)")


def write_artifacts(
    context: RunContext,
    scripts: GeneratedScripts,
    output_dir: Path,
) -> list[Path]:
    """Persist every enabled artifact of a run.

    Args:
        context: Finished run (statistics already computed).
        scripts: Generated SQL scripts.
        output_dir: Target directory (created if missing).

    Returns:
        Paths written, in write order.

    Raises:
        ArtifactWriteFailed: If any file cannot be written.
    """
    formats = set(context.config.export_formats)
    planned: dict[str, str] = {}

    if "sql" in formats:
        planned[COMPLETE_SQL] = scripts.complete
        planned[SCHEMA_SQL] = scripts.schema_only
        planned[DATA_SQL] = scripts.data_only

    if "json" in formats:
        planned[SNAPSHOT_JSON] = render_snapshot_json(context)

    if "csv" in formats:
        for filename, content in render_csv_files(context).items():
            planned[f"{CSV_DIR}/{filename}"] = content

    names = list(planned)
    if context.config.generate_readme:
        names.append(README)
    names.append(SUMMARY_JSON)

    if context.config.generate_readme:
        planned[README] = render_readme(context, names)
    planned[SUMMARY_JSON] = render_summary_json(context, names)

    written: list[Path] = []
    for name in names:
        path = output_dir / name
        _write(path, planned[name])
        written.append(path)

    logger.info(f"Wrote {len(written)} files to {output_dir}")
    return written
