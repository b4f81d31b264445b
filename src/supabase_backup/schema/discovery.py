"""Tiered schema discovery.

Each object category is discovered by an ordered list of tiers.  A tier
returns a list of records, or ``None`` when it could not run (privileged
SQL missing, no resource listing, read failure).  The first tier with a
usable result wins; results of different tiers are never merged.

Tier names recorded in ``RunContext.discovery_tiers``:

    catalog      privileged catalog query
    openapi      resource names from the REST endpoint's OpenAPI document
    name_probe   zero-row reads / invocations of well-known names
    manual       operator-supplied table list, verified by probing
    row_sample   column types inferred from one sampled row
    fallback     synthetic records (inferred policies, default extensions)
    none         no tier produced anything

Catalog rows are untyped mappings; they are coerced into the frozen
records of ``supabase_backup.schema.models`` here and nowhere else.

Usage:
    engine = DiscoveryEngine(client, context)
    schemas = await engine.discover_schemas()
    tables = await engine.discover_tables()
    columns = await engine.discover_columns(tables)
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from supabase_backup.adapters.base import RPC_PREFIX, CatalogClient
from supabase_backup.backup.models import RunContext
from supabase_backup.backup.sql import dollar_quote_tag, qualified, quote_string
from supabase_backup.errors import (
    BackupCancelled,
    BackupError,
    CategoryDiscoveryFailed,
    QueryUnavailable,
)
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
from supabase_backup.schema.types import INFERRED_VARCHAR_LENGTH, infer_type

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = "public"

# Guesses for endpoints that expose neither privileged SQL nor a resource listing
COMMON_TABLE_NAMES: tuple[str, ...] = (
    "users", "user", "profiles", "profile", "accounts", "account",
    "posts", "post", "articles", "article", "comments", "comment",
    "transactions", "transaction", "orders", "order", "products", "product",
    "categories", "category", "items", "item", "data", "records", "entries",
    "logs", "events", "notifications", "settings",
)

WELL_KNOWN_FUNCTIONS: tuple[str, ...] = ("version",)

# Setup helpers exposed over RPC that are not part of the user's schema
INTERNAL_FUNCTIONS = frozenset({"exec_sql"})

DEFAULT_EXTENSIONS: tuple[str, ...] = ("uuid-ossp", "pgcrypto")

SYNTHETIC_POLICY_NAME = "public_read_access"


# ============================================================================
# Row Coercion
# ============================================================================


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return int(value)
    return int(value)


def _bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("t", "true", "yes", "y", "1", "on")
    return bool(value)


def _split_pg_array(body: str) -> list[str]:
    """Split the inside of a ``{...}`` literal, honouring double quotes."""
    items: list[str] = []
    current: list[str] = []
    in_quotes = False
    escaped = False
    for ch in body:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == '"':
            in_quotes = not in_quotes
        elif ch == "," and not in_quotes:
            items.append("".join(current))
            current = []
        else:
            current.append(ch)
    items.append("".join(current))
    return items


def text_array(value: Any) -> list[str]:
    """Coerce a Postgres array (JSON array, ``{a,b}`` literal or scalar) to a list.

    Example:
        >>> text_array('{anon,"role with space"}')
        ['anon', 'role with space']
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None]
    text = str(value).strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return [str(v) for v in parsed if v is not None]
    if text.startswith("{") and text.endswith("}"):
        body = text[1:-1]
        return _split_pg_array(body) if body else []
    return [text] if text else []


def build_function_definition(
    schema: str,
    name: str,
    arguments: str | None,
    return_type: str | None,
    language: str | None,
    security_definer: bool,
    body: str | None,
) -> str:
    """Reconstruct a ``CREATE OR REPLACE FUNCTION`` from partial metadata.

    Unknown parts are replaced by placeholder comments so the statement
    shows exactly what is missing.
    """
    args = arguments if arguments is not None else "/* arguments unknown */"
    returns = return_type or "void /* return type unknown */"
    lang = language or "plpgsql /* language unknown */"
    source = body if body is not None else "-- function body unknown"
    tag = dollar_quote_tag(source)

    lines = [
        f"CREATE OR REPLACE FUNCTION {qualified(schema, name)}({args})",
        f" RETURNS {returns}",
        f" LANGUAGE {lang}",
    ]
    if security_definer:
        lines.append(" SECURITY DEFINER")
    lines.append(f"AS {tag}")
    lines.append(source.strip("\n"))
    lines.append(f"{tag};")
    return "\n".join(lines)


def _schema_of(row: dict[str, Any]) -> str:
    return _text(row.get("schema_name")) or DEFAULT_SCHEMA


def schema_from_row(row: dict[str, Any]) -> SchemaRecord:
    return SchemaRecord(name=str(row["schema_name"]), owner=_text(row.get("owner")))


def table_from_row(row: dict[str, Any]) -> TableRecord:
    return TableRecord(
        schema_name=_schema_of(row),
        name=str(row["table_name"]),
        table_type=_text(row.get("table_type")) or "BASE TABLE",
        row_estimate=_int(row.get("row_estimate")),
        size=_text(row.get("size")),
        comment=_text(row.get("comment")),
    )


def column_from_row(row: dict[str, Any], position: int) -> ColumnRecord:
    """Catalog column row -> ColumnRecord with a renumbered ordinal."""
    return ColumnRecord(
        name=str(row["column_name"]),
        data_type=_text(row.get("data_type")) or "text",
        udt_name=_text(row.get("udt_name")),
        is_nullable=_bool(row.get("is_nullable", True)),
        ordinal_position=position,
        default=_text(row.get("column_default")),
        max_length=_int(row.get("character_maximum_length")),
        numeric_precision=_int(row.get("numeric_precision")),
        numeric_scale=_int(row.get("numeric_scale")),
        comment=_text(row.get("comment")),
    )


def routine_from_row(row: dict[str, Any]) -> RoutineRecord:
    schema = _schema_of(row)
    name = str(row["name"])
    arguments = _text(row.get("arguments"))
    return_type = _text(row.get("return_type"))
    language = _text(row.get("language"))
    security_definer = _bool(row.get("security_definer", False))
    body = _text(row.get("body"))
    definition = _text(row.get("definition"))

    complete = bool(definition and definition.strip())
    if complete:
        full = definition.strip()
        if not full.endswith(";"):
            full += ";"
    else:
        full = build_function_definition(
            schema, name, arguments, return_type, language, security_definer, body
        )

    return RoutineRecord(
        schema_name=schema,
        name=name,
        arguments=arguments or "",
        return_type=return_type,
        language=language,
        security_definer=security_definer,
        body=body,
        full_definition=full,
        definition_complete=complete,
    )


def name_only_routine(name: str, schema: str = DEFAULT_SCHEMA) -> RoutineRecord:
    """Record for a function known only by name (REST listing or probe)."""
    return RoutineRecord(
        schema_name=schema,
        name=name,
        full_definition=build_function_definition(
            schema, name, None, None, None, False, None
        ),
        definition_complete=False,
        synthetic=True,
    )


def view_from_row(row: dict[str, Any]) -> ViewRecord:
    return ViewRecord(
        schema_name=_schema_of(row),
        name=str(row["name"]),
        definition=_text(row.get("definition")) or "",
    )


def trigger_from_row(row: dict[str, Any]) -> TriggerRecord:
    return TriggerRecord(
        schema_name=_schema_of(row),
        table=str(row["table_name"]),
        name=str(row["name"]),
        timing=_text(row.get("timing")) or "AFTER",
        event=_text(row.get("event")) or "INSERT",
        orientation=_text(row.get("orientation")) or "ROW",
        condition=_text(row.get("condition")),
        action=_text(row.get("action")) or "",
    )


def policy_from_row(row: dict[str, Any]) -> PolicyRecord:
    permissive = row.get("permissive", "PERMISSIVE")
    if isinstance(permissive, str):
        is_permissive = permissive.upper() != "RESTRICTIVE"
    else:
        is_permissive = bool(permissive)
    roles = text_array(row.get("roles")) or ["public"]
    return PolicyRecord(
        schema_name=_schema_of(row),
        table=str(row["table_name"]),
        name=str(row["name"]),
        command=(_text(row.get("command")) or "ALL").upper(),
        permissive=is_permissive,
        roles=roles,
        using=_text(row.get("using_expression")),
        check=_text(row.get("check_expression")),
    )


def index_from_row(row: dict[str, Any]) -> IndexRecord:
    return IndexRecord(
        schema_name=_schema_of(row),
        table=str(row["table_name"]),
        name=str(row["name"]),
        definition=_text(row.get("definition")) or "",
    )


def sequence_from_row(row: dict[str, Any]) -> SequenceRecord:
    return SequenceRecord(
        schema_name=_schema_of(row),
        name=str(row["name"]),
        data_type=_text(row.get("data_type")) or "bigint",
        start_value=_int(row.get("start_value")) or 1,
        minimum_value=_int(row.get("min_value")),
        maximum_value=_int(row.get("max_value")),
        increment=_int(row.get("increment_by")) or 1,
        cycle=_bool(row.get("cycle", False)),
    )


def enum_from_row(row: dict[str, Any]) -> EnumRecord:
    return EnumRecord(
        schema_name=_schema_of(row),
        name=str(row["name"]),
        labels=text_array(row.get("labels")),
    )


def constraint_from_row(row: dict[str, Any]) -> ConstraintRecord:
    return ConstraintRecord(
        schema_name=_schema_of(row),
        table=str(row["table_name"]),
        name=str(row["name"]),
        constraint_type=_text(row.get("constraint_type")) or "CHECK",
        definition=_text(row.get("definition")) or "",
    )


def extension_from_row(row: dict[str, Any]) -> ExtensionRecord:
    return ExtensionRecord(
        name=str(row["name"]),
        schema_name=_text(row.get("schema_name")),
        version=_text(row.get("version")),
    )


# ============================================================================
# Catalog Queries
# ============================================================================


def _not_in(column: str, values: list[str]) -> str:
    if not values:
        return "TRUE"
    return f"{column} NOT IN ({', '.join(quote_string(v) for v in values)})"


def schemas_query(excluded: list[str]) -> str:
    return f"""
        SELECT n.nspname AS schema_name,
               pg_get_userbyid(n.nspowner) AS owner
        FROM pg_namespace n
        WHERE {_not_in("n.nspname", excluded)}
          AND n.nspname NOT LIKE 'pg\\_%'
        ORDER BY n.nspname
    """


def tables_query(excluded: list[str]) -> str:
    return f"""
        SELECT t.table_schema AS schema_name,
               t.table_name,
               t.table_type,
               s.n_live_tup AS row_estimate,
               pg_size_pretty(pg_total_relation_size(c.oid)) AS size,
               obj_description(c.oid, 'pg_class') AS comment
        FROM information_schema.tables t
        JOIN pg_namespace n ON n.nspname = t.table_schema
        JOIN pg_class c ON c.relname = t.table_name AND c.relnamespace = n.oid
        LEFT JOIN pg_stat_user_tables s ON s.relid = c.oid
        WHERE t.table_type = 'BASE TABLE'
          AND {_not_in("t.table_schema", excluded)}
        ORDER BY t.table_schema, t.table_name
    """


def columns_query(schema: str, table: str) -> str:
    return f"""
        SELECT c.column_name,
               c.data_type,
               c.udt_name,
               c.is_nullable,
               c.ordinal_position,
               c.column_default,
               c.character_maximum_length,
               c.numeric_precision,
               c.numeric_scale,
               pgd.description AS comment
        FROM information_schema.columns c
        JOIN pg_namespace n ON n.nspname = c.table_schema
        JOIN pg_class cls ON cls.relname = c.table_name AND cls.relnamespace = n.oid
        LEFT JOIN pg_description pgd
            ON pgd.objoid = cls.oid AND pgd.objsubid = c.ordinal_position
        WHERE c.table_schema = {quote_string(schema)}
          AND c.table_name = {quote_string(table)}
        ORDER BY c.ordinal_position
    """


def functions_query(excluded: list[str]) -> str:
    # prokind = 'f' keeps plain functions; extension-owned functions are skipped
    return f"""
        SELECT n.nspname AS schema_name,
               p.proname AS name,
               pg_get_function_arguments(p.oid) AS arguments,
               pg_get_function_identity_arguments(p.oid) AS identity_arguments,
               pg_get_function_result(p.oid) AS return_type,
               l.lanname AS language,
               p.prosecdef AS security_definer,
               p.prosrc AS body,
               pg_get_functiondef(p.oid) AS definition
        FROM pg_proc p
        JOIN pg_namespace n ON n.oid = p.pronamespace
        JOIN pg_language l ON l.oid = p.prolang
        WHERE {_not_in("n.nspname", excluded)}
          AND p.prokind = 'f'
          AND NOT EXISTS (
              SELECT 1 FROM pg_depend d
              WHERE d.objid = p.oid AND d.deptype = 'e'
          )
        ORDER BY n.nspname, p.proname, identity_arguments
    """


def views_query(excluded: list[str]) -> str:
    return f"""
        SELECT schemaname AS schema_name,
               viewname AS name,
               definition
        FROM pg_views
        WHERE {_not_in("schemaname", excluded)}
        ORDER BY schemaname, viewname
    """


def triggers_query(excluded: list[str]) -> str:
    # One row per event in information_schema; collapse them per trigger
    return f"""
        SELECT trigger_schema AS schema_name,
               event_object_table AS table_name,
               trigger_name AS name,
               action_timing AS timing,
               string_agg(event_manipulation, ' OR ' ORDER BY event_manipulation) AS event,
               action_orientation AS orientation,
               action_condition AS condition,
               action_statement AS action
        FROM information_schema.triggers
        WHERE {_not_in("trigger_schema", excluded)}
        GROUP BY trigger_schema, event_object_table, trigger_name, action_timing,
                 action_orientation, action_condition, action_statement
        ORDER BY trigger_schema, trigger_name, event_object_table
    """


def policies_query(excluded: list[str]) -> str:
    return f"""
        SELECT schemaname AS schema_name,
               tablename AS table_name,
               policyname AS name,
               permissive,
               roles,
               cmd AS command,
               qual AS using_expression,
               with_check AS check_expression
        FROM pg_policies
        WHERE {_not_in("schemaname", excluded)}
        ORDER BY schemaname, policyname, tablename
    """


def indexes_query(excluded: list[str]) -> str:
    return f"""
        SELECT schemaname AS schema_name,
               tablename AS table_name,
               indexname AS name,
               indexdef AS definition
        FROM pg_indexes
        WHERE {_not_in("schemaname", excluded)}
        ORDER BY schemaname, indexname
    """


def sequences_query(excluded: list[str]) -> str:
    return f"""
        SELECT schemaname AS schema_name,
               sequencename AS name,
               data_type::text AS data_type,
               start_value,
               min_value,
               max_value,
               increment_by,
               cycle
        FROM pg_sequences
        WHERE {_not_in("schemaname", excluded)}
        ORDER BY schemaname, sequencename
    """


def enums_query(excluded: list[str]) -> str:
    return f"""
        SELECT n.nspname AS schema_name,
               t.typname AS name,
               array_agg(e.enumlabel ORDER BY e.enumsortorder) AS labels
        FROM pg_type t
        JOIN pg_enum e ON e.enumtypid = t.oid
        JOIN pg_namespace n ON n.oid = t.typnamespace
        WHERE {_not_in("n.nspname", excluded)}
        GROUP BY n.nspname, t.typname
        ORDER BY n.nspname, t.typname
    """


def constraints_query(excluded: list[str]) -> str:
    return f"""
        SELECT n.nspname AS schema_name,
               c.relname AS table_name,
               con.conname AS name,
               CASE con.contype
                   WHEN 'p' THEN 'PRIMARY KEY'
                   WHEN 'f' THEN 'FOREIGN KEY'
                   WHEN 'u' THEN 'UNIQUE'
                   WHEN 'c' THEN 'CHECK'
                   WHEN 'x' THEN 'EXCLUDE'
               END AS constraint_type,
               pg_get_constraintdef(con.oid) AS definition
        FROM pg_constraint con
        JOIN pg_class c ON c.oid = con.conrelid
        JOIN pg_namespace n ON n.oid = c.relnamespace
        WHERE con.contype IN ('p', 'f', 'u', 'c', 'x')
          AND {_not_in("n.nspname", excluded)}
        ORDER BY n.nspname, con.conname, c.relname
    """


def extensions_query() -> str:
    return """
        SELECT e.extname AS name,
               n.nspname AS schema_name,
               e.extversion AS version
        FROM pg_extension e
        JOIN pg_namespace n ON n.oid = e.extnamespace
        WHERE e.extname <> 'plpgsql'
        ORDER BY e.extname
    """


# ============================================================================
# Ordering
# ============================================================================


def _sort_key(record: Any) -> tuple[str, ...]:
    """(schema, name[, table][, arguments]) in code point order."""
    key = [getattr(record, "schema_name", None) or "", record.name]
    table = getattr(record, "table", None)
    if isinstance(table, str):
        key.append(table)
    if isinstance(record, RoutineRecord):
        key.append(record.arguments)
    return tuple(key)


def sort_records(records: list[Any]) -> list[Any]:
    return sorted(records, key=_sort_key)


# ============================================================================
# Discovery Engine
# ============================================================================


@dataclass(frozen=True)
class Tier:
    """One discovery strategy.

    ``fetch`` returns records, or ``None`` when the tier could not run.
    ``empty_is_final`` makes an empty (but successful) result stop the
    chain; otherwise an empty result falls through to the next tier.
    """

    name: str
    fetch: Callable[[], Awaitable[list[Any] | None]]
    empty_is_final: bool = False


class DiscoveryEngine:
    """Runs the per-category tier chains against one ``CatalogClient``.

    Failures are recorded on the ``RunContext``; only
    ``CategoryDiscoveryFailed`` (every tier of a multi-tier chain failed)
    and ``BackupCancelled`` leave a ``discover_*`` method.

    Args:
        client: Remote catalog client.
        context: Run accumulator (config, warnings, discovery tiers).
        cancel_event: Optional cooperative cancellation flag.
    """

    def __init__(
        self,
        client: CatalogClient,
        context: RunContext,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._client = client
        self._context = context
        self._cancel_event = cancel_event
        self._catalog_warned = False

    @property
    def config(self):
        return self._context.config

    @property
    def excluded_schemas(self) -> list[str]:
        return list(self.config.excluded_schemas)

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise BackupCancelled("Backup cancelled during discovery")

    # ------------------------------------------------------------------
    # Tier plumbing
    # ------------------------------------------------------------------

    async def _catalog(self, query: str) -> list[dict[str, Any]] | None:
        """Run a privileged catalog query; ``None`` if it was not answered.

        Each query is attempted on its own; a rejected query only affects
        its category.  The first failure of a run is recorded as a single
        ``catalog`` warning; later failures are only logged.
        """
        try:
            return await self._client.run_catalog_query(query)
        except QueryUnavailable as e:
            if self._catalog_warned:
                logger.debug(f"Catalog query unavailable: {e}")
                return None
            self._catalog_warned = True
            self._context.add_warning(
                "catalog",
                f"Privileged SQL execution unavailable, falling back to REST discovery: {e}",
            )
            return None

    async def _catalog_records(
        self,
        category: str,
        query: str,
        coerce: Callable[[dict[str, Any]], Any],
    ) -> list[Any] | None:
        rows = await self._catalog(query)
        if rows is None:
            return None
        records = []
        for row in rows:
            try:
                records.append(coerce(row))
            except (ValueError, TypeError, KeyError) as e:
                self._context.add_warning(category, f"Skipped malformed catalog row: {e}")
        return records

    async def _run_chain(self, category: str, tiers: list[Tier]) -> list[Any]:
        """Run tiers in order; first usable result wins.

        Raises:
            CategoryDiscoveryFailed: If a chain with fallbacks had no tier
                that could run at all.
        """
        self._check_cancelled()
        failures: list[str] = []
        ran_any = False

        for tier in tiers:
            self._check_cancelled()
            try:
                result = await tier.fetch()
            except BackupCancelled:
                raise
            except BackupError as e:
                failures.append(f"{tier.name}: {e}")
                logger.debug(f"{category}: tier {tier.name} failed: {e}")
                continue

            if result is None:
                failures.append(f"{tier.name}: unavailable")
                continue

            ran_any = True
            if result or tier.empty_is_final:
                self._context.discovery_tiers[category] = tier.name
                logger.info(f"{category}: {len(result)} found via {tier.name}")
                return sort_records(result)

        self._context.discovery_tiers[category] = "none"
        if not ran_any:
            if len(tiers) > 1:
                raise CategoryDiscoveryFailed(
                    category, "all discovery tiers failed (" + "; ".join(failures) + ")"
                )
            self._context.add_warning(
                category,
                f"{category} require privileged SQL access; section omitted",
            )
        return []

    # ------------------------------------------------------------------
    # Schemas
    # ------------------------------------------------------------------

    async def _default_schema_only(self) -> list[SchemaRecord]:
        self._context.add_warning(
            "schemas", f"Schema discovery failed; assuming only '{DEFAULT_SCHEMA}'"
        )
        return [SchemaRecord(name=DEFAULT_SCHEMA, owner="postgres")]

    async def discover_schemas(self) -> list[SchemaRecord]:
        """Namespaces outside the deny-list; ``public`` is always present."""
        records = await self._run_chain(
            "schemas",
            [
                Tier(
                    "catalog",
                    lambda: self._catalog_records(
                        "schemas", schemas_query(self.excluded_schemas), schema_from_row
                    ),
                    empty_is_final=True,
                ),
                Tier("fallback", self._default_schema_only),
            ],
        )

        by_name: dict[str, SchemaRecord] = {}
        for record in records:
            by_name.setdefault(record.name, record)
        by_name.setdefault(DEFAULT_SCHEMA, SchemaRecord(name=DEFAULT_SCHEMA, owner="postgres"))
        return [by_name[name] for name in sorted(by_name)]

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    async def _tables_from_catalog(self) -> list[TableRecord] | None:
        return await self._catalog_records(
            "tables", tables_query(self.excluded_schemas), table_from_row
        )

    async def _tables_from_openapi(self) -> list[TableRecord] | None:
        resources = await self._client.list_resources()
        if resources is None:
            return None
        return [
            TableRecord(schema_name=DEFAULT_SCHEMA, name=name)
            for name in dict.fromkeys(resources)
            if name and not name.startswith(RPC_PREFIX) and "/" not in name
        ]

    async def _tables_from_name_probe(self) -> list[TableRecord]:
        found = []
        for name in COMMON_TABLE_NAMES:
            self._check_cancelled()
            if await self._client.probe_table(name, DEFAULT_SCHEMA):
                found.append(TableRecord(schema_name=DEFAULT_SCHEMA, name=name))
        return found

    async def _tables_from_manual_list(self) -> list[TableRecord] | None:
        if not self.config.manual_tables:
            return None
        found = []
        for entry in self.config.manual_tables:
            self._check_cancelled()
            schema, _, name = entry.strip().rpartition(".")
            schema = schema or DEFAULT_SCHEMA
            if not name:
                continue
            if await self._client.probe_table(name, schema):
                found.append(TableRecord(schema_name=schema, name=name))
            else:
                self._context.add_warning("tables", f"Manual table {entry} is not accessible")
        return found

    async def discover_tables(self) -> list[TableRecord]:
        """Catalog -> OpenAPI listing -> common-name probe -> manual list."""
        tables = await self._run_chain(
            "tables",
            [
                Tier("catalog", self._tables_from_catalog),
                Tier("openapi", self._tables_from_openapi),
                Tier("name_probe", self._tables_from_name_probe),
                Tier("manual", self._tables_from_manual_list),
            ],
        )
        if not tables:
            self._context.add_warning(
                "tables",
                "No tables discovered; set MANUAL_TABLES (or manual_tables) to list them explicitly",
            )
        return tables

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    async def _columns_from_catalog(self, table: TableRecord) -> list[ColumnRecord] | None:
        rows = await self._catalog(columns_query(table.schema_name, table.name))
        if rows is None:
            return None

        def position(row: dict[str, Any]) -> int:
            try:
                return int(row.get("ordinal_position") or 0)
            except (TypeError, ValueError):
                return 0

        # Dropped columns leave gaps in ordinal_position; renumber 1..n
        ordered = sorted(rows, key=position)
        columns = []
        for row in ordered:
            try:
                columns.append(column_from_row(row, len(columns) + 1))
            except (ValueError, TypeError, KeyError) as e:
                self._context.add_warning(
                    "columns", f"Skipped malformed column row of {table.qualified_name}: {e}"
                )
        return columns

    async def _columns_from_row_sample(self, table: TableRecord) -> list[ColumnRecord] | None:
        try:
            rows = await self._client.fetch_row_range(table.name, 0, 1, table.schema_name)
        except BackupError as e:
            logger.debug(f"Row sample of {table.qualified_name} failed: {e}")
            return None
        if not rows:
            return []
        return infer_columns(rows[0])

    async def discover_table_columns(self, table: TableRecord) -> tuple[list[ColumnRecord], str]:
        """Columns of one table and the tier that produced them."""
        tiers: list[tuple[str, Callable[[], Awaitable[list[ColumnRecord] | None]]]] = [
            ("catalog", lambda: self._columns_from_catalog(table)),
            ("row_sample", lambda: self._columns_from_row_sample(table)),
        ]
        for name, fetch in tiers:
            columns = await fetch()
            if columns:
                return columns, name
        return [], "none"

    async def discover_columns(self, tables: list[TableRecord]) -> dict[str, list[ColumnRecord]]:
        """Columns for every table, keyed by qualified table name."""
        result: dict[str, list[ColumnRecord]] = {}
        used: set[str] = set()
        for table in tables:
            self._check_cancelled()
            columns, tier = await self.discover_table_columns(table)
            used.add(tier)
            if not columns:
                self._context.add_warning(
                    "columns", f"Could not determine columns of {table.qualified_name}"
                )
            result[table.qualified_name] = columns
        self._context.discovery_tiers["columns"] = "+".join(sorted(used)) if used else "none"
        return result

    # ------------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------------

    async def _functions_from_openapi(self) -> list[RoutineRecord] | None:
        resources = await self._client.list_resources()
        if resources is None:
            return None
        names = [
            name[len(RPC_PREFIX):]
            for name in dict.fromkeys(resources)
            if name.startswith(RPC_PREFIX)
        ]
        return [name_only_routine(name) for name in names if name and name not in INTERNAL_FUNCTIONS]

    async def _functions_from_probe(self) -> list[RoutineRecord]:
        found = []
        for name in WELL_KNOWN_FUNCTIONS:
            if await self._client.call_function(name):
                found.append(name_only_routine(name))
        return found

    async def discover_functions(self) -> list[RoutineRecord]:
        """Catalog definitions, else RPC names, else well-known names."""
        return await self._run_chain(
            "functions",
            [
                Tier(
                    "catalog",
                    lambda: self._catalog_records(
                        "functions", functions_query(self.excluded_schemas), routine_from_row
                    ),
                    empty_is_final=True,
                ),
                Tier("openapi", self._functions_from_openapi),
                Tier("name_probe", self._functions_from_probe),
            ],
        )

    # ------------------------------------------------------------------
    # Privileged-only categories
    # ------------------------------------------------------------------

    async def _catalog_only(
        self,
        category: str,
        query: str,
        coerce: Callable[[dict[str, Any]], Any],
    ) -> list[Any]:
        return await self._run_chain(
            category,
            [
                Tier(
                    "catalog",
                    lambda: self._catalog_records(category, query, coerce),
                    empty_is_final=True,
                ),
            ],
        )

    async def discover_views(self) -> list[ViewRecord]:
        return await self._catalog_only("views", views_query(self.excluded_schemas), view_from_row)

    async def discover_triggers(self) -> list[TriggerRecord]:
        return await self._catalog_only(
            "triggers", triggers_query(self.excluded_schemas), trigger_from_row
        )

    async def discover_indexes(self) -> list[IndexRecord]:
        return await self._catalog_only(
            "indexes", indexes_query(self.excluded_schemas), index_from_row
        )

    async def discover_sequences(self) -> list[SequenceRecord]:
        return await self._catalog_only(
            "sequences", sequences_query(self.excluded_schemas), sequence_from_row
        )

    async def discover_enums(self) -> list[EnumRecord]:
        return await self._catalog_only("enums", enums_query(self.excluded_schemas), enum_from_row)

    async def discover_constraints(self) -> list[ConstraintRecord]:
        return await self._catalog_only(
            "constraints", constraints_query(self.excluded_schemas), constraint_from_row
        )

    # ------------------------------------------------------------------
    # Categories with synthetic fallbacks
    # ------------------------------------------------------------------

    async def _policies_from_readable_tables(
        self, tables: list[TableRecord]
    ) -> list[PolicyRecord]:
        policies = []
        for table in tables:
            self._check_cancelled()
            if await self._client.probe_table(table.name, table.schema_name):
                policies.append(
                    PolicyRecord(
                        schema_name=table.schema_name,
                        table=table.name,
                        name=SYNTHETIC_POLICY_NAME,
                        command="SELECT",
                        permissive=True,
                        roles=["public"],
                        using="true",
                        synthetic=True,
                    )
                )
        if policies:
            self._context.add_warning(
                "policies",
                f"RLS policies could not be read; recorded {len(policies)} inferred "
                f"read policies (commented out in scripts)",
            )
        return policies

    async def discover_policies(self, tables: list[TableRecord]) -> list[PolicyRecord]:
        """Catalog policies, else one synthetic read policy per readable table."""
        return await self._run_chain(
            "policies",
            [
                Tier(
                    "catalog",
                    lambda: self._catalog_records(
                        "policies", policies_query(self.excluded_schemas), policy_from_row
                    ),
                    empty_is_final=True,
                ),
                Tier("fallback", lambda: self._policies_from_readable_tables(tables)),
            ],
        )

    async def _default_extensions(self) -> list[ExtensionRecord]:
        return [ExtensionRecord(name=name, synthetic=True) for name in DEFAULT_EXTENSIONS]

    async def discover_extensions(self) -> list[ExtensionRecord]:
        return await self._run_chain(
            "extensions",
            [
                Tier(
                    "catalog",
                    lambda: self._catalog_records(
                        "extensions", extensions_query(), extension_from_row
                    ),
                    empty_is_final=True,
                ),
                Tier("fallback", self._default_extensions),
            ],
        )


def infer_columns(row: dict[str, Any]) -> list[ColumnRecord]:
    """One inferred ColumnRecord per key of a sampled row."""
    columns = []
    for position, (name, value) in enumerate(row.items(), start=1):
        data_type = infer_type(value)
        columns.append(
            ColumnRecord(
                name=str(name),
                data_type=data_type,
                is_nullable=value is None,
                ordinal_position=position,
                max_length=INFERRED_VARCHAR_LENGTH if data_type == "character varying" else None,
                inferred=True,
            )
        )
    return columns
