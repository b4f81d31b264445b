"""Paged row extraction.

Reads every discovered table through ``CatalogClient.fetch_row_range`` in
fixed windows of ``PAGE_SIZE`` rows, honouring the per-table row cap and
the data exclusion list.  Failures stay inside the table's ``TableData``.

Usage:
    from supabase_backup.backup.extractor import DataExtractor

    extractor = DataExtractor(client, config)
    data = await extractor.extract_table(table)
    print(data.row_count, data.was_limited)
"""

import asyncio
import logging
from typing import Any

from supabase_backup.adapters.base import CatalogClient
from supabase_backup.backup.models import RunContext, TableData
from supabase_backup.config.models import BackupConfig
from supabase_backup.errors import BackupCancelled, BackupError, TableReadFailed
from supabase_backup.schema.models import TableRecord

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000


def is_excluded(table: TableRecord, excluded: list[str]) -> str | None:
    """Return the matching exclusion entry, or ``None``.

    Qualified entries (``auth.users``) are compared with ``schema.table``,
    bare entries with the bare table name, by substring in either
    direction.  ``auth.users`` therefore does not exclude ``public.users``.
    """
    qualified_name = table.qualified_name
    for entry in excluded:
        entry = entry.strip()
        if not entry:
            continue
        target = qualified_name if "." in entry else table.name
        if entry in target or target in entry:
            return entry
    return None


class DataExtractor:
    """Extracts rows of one table at a time.

    Args:
        client: Remote catalog client.
        config: Backup options (row cap, exclusions).
        cancel_event: Optional cooperative cancellation flag, checked
            between pages.
    """

    def __init__(
        self,
        client: CatalogClient,
        config: BackupConfig,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._client = client
        self._config = config
        self._cancel_event = cancel_event

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise BackupCancelled("Backup cancelled during data extraction")

    async def _page(self, table: TableRecord, offset: int, limit: int) -> list[dict[str, Any]]:
        return await self._client.fetch_row_range(table.name, offset, limit, table.schema_name)

    async def extract_table(self, table: TableRecord) -> TableData:
        """Extract one table's rows.

        Steps: exclusion check, exact count (or 1-row probe), cap, paged
        reads until the cap, a short page, or a read failure.

        Returns:
            TableData.  Never raises for read failures; the error is kept
            in ``TableData.error`` together with the rows already read.

        Raises:
            BackupCancelled: If the cancel event is set between pages.
        """
        base = {"schema_name": table.schema_name, "table": table.name}

        match = is_excluded(table, self._config.excluded_data_tables)
        if match is not None:
            logger.info(f"Skipping data of {table.qualified_name} (excluded by '{match}')")
            return TableData(**base, skipped=True, skip_reason=f"excluded by '{match}'")

        cap = self._config.max_rows_per_table
        total = await self._client.count_rows(table.name, table.schema_name)
        count_known = total is not None

        if not count_known:
            # Provisional count from a 1-row probe
            try:
                probe = await self._page(table, 0, 1)
            except TableReadFailed as e:
                return TableData(**base, error=str(e))
            if not probe:
                return TableData(**base, total_rows=0)
            target = cap
        else:
            if total == 0:
                return TableData(**base, total_rows=0)
            target = min(total, cap)

        rows: list[dict[str, Any]] = []
        error: str | None = None
        offset = 0

        while len(rows) < target:
            self._check_cancelled()
            limit = min(PAGE_SIZE, target - len(rows))
            try:
                page = await self._page(table, offset, limit)
            except TableReadFailed as e:
                # Keep what was already fetched
                error = str(e)
                logger.warning(f"Read of {table.qualified_name} stopped at offset {offset}: {e}")
                break
            rows.extend(page)
            offset += len(page)
            logger.debug(f"{table.qualified_name}: {len(rows)}/{target} rows")
            if len(page) < limit:
                break

        if count_known:
            was_limited = total > cap
        else:
            was_limited = False
            if error is None and len(rows) >= cap:
                # Unknown count: one row past the cap decides truncation
                try:
                    beyond = await self._page(table, cap, 1)
                    was_limited = bool(beyond)
                except TableReadFailed as e:
                    logger.debug(f"Truncation probe of {table.qualified_name} failed: {e}")
                    was_limited = True
            if not was_limited and error is None:
                total = len(rows)

        if was_limited:
            logger.info(
                f"{table.qualified_name}: limited to {len(rows)} rows "
                f"(max_rows_per_table={cap})"
            )

        return TableData(
            **base,
            rows=rows,
            row_count=len(rows),
            total_rows=total,
            was_limited=was_limited,
            error=error,
        )

    async def extract_all(self, tables: list[TableRecord], context: RunContext) -> None:
        """Extract every table into ``context.data``.

        Per-table errors are copied to the run's error log with the table
        name as context.
        """
        for table in tables:
            self._check_cancelled()
            try:
                data = await self.extract_table(table)
            except BackupCancelled:
                raise
            except BackupError as e:
                data = TableData(schema_name=table.schema_name, table=table.name, error=str(e))
            except Exception as e:
                logger.debug(f"Extraction of {table.qualified_name} failed", exc_info=True)
                data = TableData(
                    schema_name=table.schema_name,
                    table=table.name,
                    error=f"{type(e).__name__}: {e}",
                )
            context.data[table.qualified_name] = data
            if data.error:
                context.add_error(f"data:{table.qualified_name}", data.error)
            elif data.skipped:
                logger.debug(f"{table.qualified_name}: {data.skip_reason}")
            else:
                logger.info(f"{table.qualified_name}: {data.row_count} rows")
