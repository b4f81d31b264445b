"""End-to-end backup run.

``BackupRunner`` sequences one run::

    connectivity probe -> schemas -> tables
    -> columns, functions, views, triggers, policies, indexes,
       sequences, enums, constraints, extensions
    -> data extraction -> script generation -> artifact persistence
    -> final statistics

Every category is guarded at its own boundary: a failure is recorded on
the ``RunContext`` and the run continues.  Only ``ArtifactWriteFailed``
and ``BackupCancelled`` propagate.

Usage:
    from supabase_backup.orchestrator import BackupRunner

    runner = BackupRunner(client, BackupConfig(), Path("backups"))
    result = await runner.run()
    print(result.output_dir, result.context.statistics.total_rows)
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from supabase_backup.adapters.base import CatalogClient
from supabase_backup.backup.artifacts import backup_directory, write_artifacts
from supabase_backup.backup.extractor import DataExtractor
from supabase_backup.backup.generator import ScriptGenerator
from supabase_backup.backup.models import RunContext, RunMetadata, utc_now_iso
from supabase_backup.config.models import BackupConfig
from supabase_backup.errors import BackupCancelled, ConnectivityUnavailable
from supabase_backup.schema.discovery import DiscoveryEngine

logger = logging.getLogger(__name__)


class BackupResult(BaseModel):
    """Outcome of a completed run."""

    context: RunContext
    output_dir: Path
    files: list[Path]

    @property
    def succeeded_cleanly(self) -> bool:
        return not self.context.errors and not self.context.warnings


class BackupRunner:
    """Runs discovery, extraction, generation and persistence once.

    Args:
        client: Remote catalog client (owned by the caller).
        config: Backup options.
        output_root: Directory under which the timestamped run directory
            is created.
        endpoint: Endpoint identity recorded in the run metadata.
        cancel_event: Optional cooperative cancellation flag, checked
            between categories, tables and pages.
    """

    def __init__(
        self,
        client: CatalogClient,
        config: BackupConfig,
        output_root: Path,
        endpoint: str = "",
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._client = client
        self._config = config
        self._output_root = output_root
        self._cancel_event = cancel_event
        self.context = RunContext(config=config, metadata=RunMetadata(endpoint=endpoint))
        self._discovery = DiscoveryEngine(client, self.context, cancel_event)
        self._extractor = DataExtractor(client, config, cancel_event)

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise BackupCancelled("Backup cancelled")

    async def _guarded(self, category: str, step: Callable[[], Awaitable[Any]]) -> Any:
        """Run one category; record (not raise) anything but cancellation."""
        self._check_cancelled()
        try:
            return await step()
        except BackupCancelled:
            raise
        except Exception as e:
            logger.debug(f"{category} failed", exc_info=True)
            self.context.add_error(category, f"{type(e).__name__}: {e}")
            return None

    async def _probe_connectivity(self) -> None:
        if not await self._client.test_connection():
            self.context.add_warning(
                "connection",
                str(ConnectivityUnavailable("Endpoint did not answer the connectivity probe")),
            )
        else:
            logger.info("Connection verified")

    async def _discover(self) -> None:
        config = self._config
        snapshot = self.context.schema_snapshot
        discovery = self._discovery

        snapshot.schemas = await self._guarded("schemas", discovery.discover_schemas) or []
        snapshot.tables = await self._guarded("tables", discovery.discover_tables) or []
        tables = snapshot.tables

        if config.include_tables:
            snapshot.columns = (
                await self._guarded("columns", lambda: discovery.discover_columns(tables)) or {}
            )

        steps: list[tuple[str, bool, Callable[[], Awaitable[Any]]]] = [
            ("functions", config.include_functions, discovery.discover_functions),
            ("views", config.include_views, discovery.discover_views),
            ("triggers", config.include_triggers, discovery.discover_triggers),
            ("policies", config.include_policies, lambda: discovery.discover_policies(tables)),
            ("indexes", config.include_indexes, discovery.discover_indexes),
            ("sequences", config.include_sequences, discovery.discover_sequences),
            ("enums", config.include_enums, discovery.discover_enums),
            ("constraints", config.include_constraints, discovery.discover_constraints),
            ("extensions", config.include_extensions, discovery.discover_extensions),
        ]
        for category, enabled, step in steps:
            if not enabled:
                logger.debug(f"{category}: disabled")
                continue
            result = await self._guarded(category, step)
            setattr(snapshot, category, result or [])

    def _compute_statistics(self, started: float) -> None:
        snapshot = self.context.schema_snapshot
        stats = self.context.statistics
        stats.schemas = len(snapshot.schemas)
        stats.tables = len(snapshot.tables)
        stats.columns = sum(len(c) for c in snapshot.columns.values())
        stats.functions = len(snapshot.functions)
        stats.views = len(snapshot.views)
        stats.triggers = len(snapshot.triggers)
        stats.policies = len(snapshot.policies)
        stats.indexes = len(snapshot.indexes)
        stats.sequences = len(snapshot.sequences)
        stats.enums = len(snapshot.enums)
        stats.constraints = len(snapshot.constraints)
        stats.extensions = len(snapshot.extensions)
        stats.tables_with_data = sum(1 for d in self.context.data.values() if d.row_count > 0)
        stats.total_rows = sum(d.row_count for d in self.context.data.values())
        stats.error_count = len(self.context.errors)
        stats.warning_count = len(self.context.warnings)
        stats.duration_seconds = round(time.monotonic() - started, 3)

    async def run(self) -> BackupResult:
        """Execute the run.

        Returns:
            BackupResult with the context, output directory and files.

        Raises:
            ArtifactWriteFailed: If the output set cannot be persisted.
            BackupCancelled: If the cancel event was set.
        """
        started = time.monotonic()
        output_dir = backup_directory(self._output_root)
        logger.info(f"Starting backup into {output_dir}")

        await self._guarded("connection", self._probe_connectivity)
        await self._discover()

        if self._config.include_data:
            tables = self.context.schema_snapshot.tables
            await self._guarded("data", lambda: self._extractor.extract_all(tables, self.context))

        scripts = ScriptGenerator(self.context).generate()

        self.context.metadata.completed_at = utc_now_iso()
        self._compute_statistics(started)
        files = write_artifacts(self.context, scripts, output_dir)

        self._compute_statistics(started)
        logger.info(
            f"Backup finished in {self.context.statistics.duration_seconds:.1f}s: "
            f"{self.context.statistics.tables} tables, "
            f"{self.context.statistics.total_rows} rows, "
            f"{len(self.context.errors)} errors, {len(self.context.warnings)} warnings"
        )
        return BackupResult(context=self.context, output_dir=output_dir, files=files)
