"""Tests for tiered schema discovery.

Runs ``DiscoveryEngine`` against an in-memory catalog client that can
answer privileged catalog queries, serve a REST resource listing, and
report which tables are readable, so every fallback tier can be
exercised without a database.
"""

import asyncio
from typing import Any

import pytest

from supabase_backup.backup.models import RunContext
from supabase_backup.config.models import BackupConfig
from supabase_backup.errors import (
    BackupCancelled,
    CategoryDiscoveryFailed,
    ConnectivityUnavailable,
    QueryUnavailable,
    TableReadFailed,
)
from supabase_backup.schema.discovery import (
    SYNTHETIC_POLICY_NAME,
    DiscoveryEngine,
    build_function_definition,
    infer_columns,
    routine_from_row,
    text_array,
)
from supabase_backup.schema.models import TableRecord

# ---------------------------------------------------------------------------
# Catalog markers: a substring that identifies each catalog query
# ---------------------------------------------------------------------------
SCHEMAS = "pg_get_userbyid"
TABLES = "information_schema.tables"
FUNCTIONS = "pg_get_functiondef"
VIEWS = "FROM pg_views"
POLICIES = "FROM pg_policies"
EXTENSIONS = "pg_extension"


def columns_of(table: str) -> str:
    return f"c.table_name = '{table}'"


class FakeCatalog:
    """In-memory ``CatalogClient``.

    Args:
        catalog: marker -> rows for privileged queries; ``None`` makes
            every catalog query raise ``QueryUnavailable``.
        resources: REST resource listing (``None`` = no listing).
        readable: table names (or ``schema.table``) that probe as readable.
        rows: ``schema.table`` -> rows served by ``fetch_row_range``.
        functions: names ``call_function`` reports as existing.
    """

    def __init__(
        self,
        catalog: dict[str, list[dict[str, Any]]] | None = None,
        resources: list[str] | None = None,
        readable: tuple[str, ...] = (),
        rows: dict[str, list[dict[str, Any]]] | None = None,
        functions: tuple[str, ...] = (),
    ) -> None:
        self.catalog = catalog
        self.resources = resources
        self.readable = set(readable)
        self.rows = rows or {}
        self.functions = set(functions)
        self.calls: list[str] = []

    async def run_catalog_query(self, query: str) -> list[dict[str, Any]]:
        self.calls.append("run_catalog_query")
        if self.catalog is None:
            raise QueryUnavailable("exec_sql is not installed")
        for marker, rows in self.catalog.items():
            if marker in query:
                return rows
        return []

    async def probe_table(self, table: str, schema: str = "public") -> bool:
        self.calls.append("probe_table")
        return table in self.readable or f"{schema}.{table}" in self.readable

    async def count_rows(self, table: str, schema: str = "public") -> int | None:
        rows = self.rows.get(f"{schema}.{table}")
        return None if rows is None else len(rows)

    async def fetch_row_range(
        self, table: str, offset: int, limit: int, schema: str = "public"
    ) -> list[dict[str, Any]]:
        rows = self.rows.get(f"{schema}.{table}")
        if rows is None:
            raise TableReadFailed(f"{schema}.{table}", "relation does not exist")
        return rows[offset:offset + limit]

    async def list_resources(self) -> list[str] | None:
        self.calls.append("list_resources")
        return self.resources

    async def call_function(self, name: str) -> bool:
        self.calls.append("call_function")
        return name in self.functions

    async def test_connection(self) -> bool:
        return True

    async def close(self) -> None:
        return None


def _engine(
    client: FakeCatalog, config: BackupConfig | None = None
) -> tuple[DiscoveryEngine, RunContext]:
    context = RunContext(config=config or BackupConfig())
    return DiscoveryEngine(client, context), context


def _warning_contexts(context: RunContext) -> list[str]:
    return [w.context for w in context.warnings]


# ============================================================================
# Test: Table Tiers
# ============================================================================


class TestTableDiscoveryTiers:
    """Verify tier precedence for table discovery."""

    @pytest.mark.asyncio
    async def test_catalog_wins_over_rest(self) -> None:
        """A non-empty catalog answer stops the chain."""
        client = FakeCatalog(
            catalog={TABLES: [{"schema_name": "public", "table_name": "users"}]},
            resources=["posts"],
            readable=("users", "posts"),
        )
        engine, context = _engine(client)

        tables = await engine.discover_tables()

        assert [t.qualified_name for t in tables] == ["public.users"]
        assert "list_resources" not in client.calls
        assert "probe_table" not in client.calls
        assert context.discovery_tiers["tables"] == "catalog"

    @pytest.mark.asyncio
    async def test_degraded_uses_openapi_listing(self) -> None:
        """Without exec_sql the REST listing provides public tables."""
        client = FakeCatalog(catalog=None, resources=["posts", "comments", "rpc/do_thing"])
        engine, context = _engine(client)

        tables = await engine.discover_tables()

        assert [t.qualified_name for t in tables] == ["public.comments", "public.posts"]
        assert context.discovery_tiers["tables"] == "openapi"
        assert _warning_contexts(context).count("catalog") == 1

    @pytest.mark.asyncio
    async def test_catalog_warning_recorded_once(self) -> None:
        """Several degraded categories still produce one catalog warning."""
        client = FakeCatalog(catalog=None, resources=["posts"])
        engine, context = _engine(client)

        await engine.discover_schemas()
        await engine.discover_tables()
        await engine.discover_views()

        assert _warning_contexts(context).count("catalog") == 1

    @pytest.mark.asyncio
    async def test_rejected_query_affects_only_its_category(self) -> None:
        """A rejected schemas query does not stop the views query."""

        class RejectsSchemas(FakeCatalog):
            async def run_catalog_query(self, query: str) -> list[dict[str, Any]]:
                if SCHEMAS in query:
                    raise QueryUnavailable("exec_sql rejected query: permission denied")
                return await super().run_catalog_query(query)

        client = RejectsSchemas(
            catalog={VIEWS: [{"schema_name": "public", "name": "v_active",
                              "definition": " SELECT 1;"}]}
        )
        engine, context = _engine(client)

        await engine.discover_schemas()
        views = await engine.discover_views()

        assert [v.name for v in views] == ["v_active"]
        assert context.discovery_tiers["schemas"] == "fallback"
        assert context.discovery_tiers["views"] == "catalog"
        assert _warning_contexts(context).count("catalog") == 1

    @pytest.mark.asyncio
    async def test_name_probe_when_no_listing(self) -> None:
        """Common table names are probed when there is no listing."""
        client = FakeCatalog(catalog=None, resources=None, readable=("users", "orders"))
        engine, context = _engine(client)

        tables = await engine.discover_tables()

        assert [t.name for t in tables] == ["orders", "users"]
        assert context.discovery_tiers["tables"] == "name_probe"

    @pytest.mark.asyncio
    async def test_manual_list_is_last_resort(self) -> None:
        """Manual tables are verified by probing; inaccessible ones warn."""
        client = FakeCatalog(catalog=None, resources=[], readable=("ledger",))
        config = BackupConfig(manual_tables=["ledger", "billing.invoices"])
        engine, context = _engine(client, config)

        tables = await engine.discover_tables()

        assert [t.qualified_name for t in tables] == ["public.ledger"]
        assert context.discovery_tiers["tables"] == "manual"
        assert any("billing.invoices" in w.message for w in context.warnings)

    @pytest.mark.asyncio
    async def test_nothing_found_warns(self) -> None:
        """An empty result is not an error, but it is reported."""
        client = FakeCatalog(catalog=None, resources=None)
        engine, context = _engine(client)

        tables = await engine.discover_tables()

        assert tables == []
        assert context.discovery_tiers["tables"] == "none"
        assert any("MANUAL_TABLES" in w.message for w in context.warnings)

    @pytest.mark.asyncio
    async def test_all_tiers_failing_raises(self) -> None:
        """A multi-tier chain where no tier could run fails the category."""

        class Unreachable(FakeCatalog):
            async def probe_table(self, table: str, schema: str = "public") -> bool:
                raise ConnectivityUnavailable("connection refused")

        engine, _ = _engine(Unreachable(catalog=None, resources=None))

        with pytest.raises(CategoryDiscoveryFailed) as exc_info:
            await engine.discover_tables()
        assert exc_info.value.category == "tables"

    @pytest.mark.asyncio
    async def test_malformed_rows_skipped(self) -> None:
        """A catalog row missing its name is skipped with a warning."""
        client = FakeCatalog(
            catalog={TABLES: [{"schema_name": "public"}, {"table_name": "users"}]}
        )
        engine, context = _engine(client)

        tables = await engine.discover_tables()

        assert [t.qualified_name for t in tables] == ["public.users"]
        assert "tables" in _warning_contexts(context)

    @pytest.mark.asyncio
    async def test_results_sorted(self) -> None:
        """Records are ordered by (schema, name) regardless of source order."""
        client = FakeCatalog(
            catalog={
                TABLES: [
                    {"schema_name": "public", "table_name": "zeta"},
                    {"schema_name": "app", "table_name": "beta"},
                    {"schema_name": "public", "table_name": "alpha"},
                ]
            }
        )
        engine, _ = _engine(client)

        tables = await engine.discover_tables()

        assert [t.qualified_name for t in tables] == ["app.beta", "public.alpha", "public.zeta"]

    @pytest.mark.asyncio
    async def test_cancellation(self) -> None:
        """A set cancel event stops discovery."""
        event = asyncio.Event()
        event.set()
        context = RunContext(config=BackupConfig())
        engine = DiscoveryEngine(FakeCatalog(), context, cancel_event=event)

        with pytest.raises(BackupCancelled):
            await engine.discover_tables()


# ============================================================================
# Test: Schemas
# ============================================================================


class TestSchemaDiscovery:
    """Verify schema discovery and the public-schema guarantee."""

    @pytest.mark.asyncio
    async def test_public_always_present(self) -> None:
        """public is added when the catalog omits it."""
        client = FakeCatalog(catalog={SCHEMAS: [{"schema_name": "app", "owner": "postgres"}]})
        engine, _ = _engine(client)

        schemas = await engine.discover_schemas()

        assert [s.name for s in schemas] == ["app", "public"]

    @pytest.mark.asyncio
    async def test_degraded_assumes_public(self) -> None:
        """Without catalog access only public is assumed, with a warning."""
        engine, context = _engine(FakeCatalog(catalog=None))

        schemas = await engine.discover_schemas()

        assert [s.name for s in schemas] == ["public"]
        assert "schemas" in _warning_contexts(context)
        assert context.discovery_tiers["schemas"] == "fallback"

    @pytest.mark.asyncio
    async def test_empty_catalog_answer_is_final(self) -> None:
        """An answered but empty schema query is not a failure."""
        engine, context = _engine(FakeCatalog(catalog={}))

        schemas = await engine.discover_schemas()

        assert [s.name for s in schemas] == ["public"]
        assert context.discovery_tiers["schemas"] == "catalog"
        assert "schemas" not in _warning_contexts(context)


# ============================================================================
# Test: Columns
# ============================================================================


class TestColumnDiscovery:
    """Verify catalog columns and row-sample inference."""

    @pytest.mark.asyncio
    async def test_catalog_columns_renumbered(self) -> None:
        """Gaps left by dropped columns are closed."""
        client = FakeCatalog(
            catalog={
                columns_of("users"): [
                    {"column_name": "email", "data_type": "text", "is_nullable": "YES",
                     "ordinal_position": 3},
                    {"column_name": "id", "data_type": "integer", "is_nullable": "NO",
                     "ordinal_position": 1},
                ]
            }
        )
        engine, context = _engine(client)
        table = TableRecord(schema_name="public", name="users")

        columns = await engine.discover_columns([table])

        users = columns["public.users"]
        assert [(c.name, c.ordinal_position) for c in users] == [("id", 1), ("email", 2)]
        assert users[0].is_nullable is False
        assert not any(c.inferred for c in users)
        assert context.discovery_tiers["columns"] == "catalog"

    @pytest.mark.asyncio
    async def test_row_sample_inference(self) -> None:
        """Without catalog access columns are inferred from one row."""
        client = FakeCatalog(
            catalog=None,
            rows={
                "public.users": [
                    {"id": 1, "email": "a@example.com", "created_at": "2024-01-15T10:30:00Z"}
                ]
            },
        )
        engine, context = _engine(client)
        table = TableRecord(schema_name="public", name="users")

        columns = await engine.discover_columns([table])

        users = columns["public.users"]
        assert [(c.name, c.data_type) for c in users] == [
            ("id", "integer"),
            ("email", "character varying"),
            ("created_at", "timestamp with time zone"),
        ]
        assert all(c.inferred for c in users)
        assert context.discovery_tiers["columns"] == "row_sample"

    @pytest.mark.asyncio
    async def test_empty_table_warns(self) -> None:
        """No catalog and no rows leaves the column list empty."""
        client = FakeCatalog(catalog=None, rows={"public.empty": []})
        engine, context = _engine(client)

        columns = await engine.discover_columns([TableRecord(schema_name="public", name="empty")])

        assert columns == {"public.empty": []}
        assert "columns" in _warning_contexts(context)

    def test_infer_columns_nullable_from_value(self) -> None:
        """A null sample value marks the column nullable."""
        columns = infer_columns({"id": 1, "note": None})
        assert [c.is_nullable for c in columns] == [False, True]
        assert columns[1].data_type == "text"


# ============================================================================
# Test: Functions
# ============================================================================


class TestFunctionDiscovery:
    """Verify function tiers and definition reconstruction."""

    @pytest.mark.asyncio
    async def test_catalog_definition_is_complete(self) -> None:
        """pg_get_functiondef output is kept and terminated."""
        definition = (
            "CREATE OR REPLACE FUNCTION public.increment_count(n integer)\n"
            " RETURNS integer\n LANGUAGE sql\nAS $function$ SELECT n + 1 $function$\n"
        )
        client = FakeCatalog(
            catalog={
                FUNCTIONS: [
                    {"schema_name": "public", "name": "increment_count",
                     "arguments": "n integer", "definition": definition}
                ]
            }
        )
        engine, _ = _engine(client)

        functions = await engine.discover_functions()

        assert len(functions) == 1
        assert functions[0].definition_complete is True
        assert functions[0].full_definition.endswith("$function$;")

    @pytest.mark.asyncio
    async def test_empty_catalog_is_final(self) -> None:
        """An empty catalog answer does not fall through to REST."""
        client = FakeCatalog(catalog={}, resources=["rpc/hidden"])
        engine, context = _engine(client)

        assert await engine.discover_functions() == []
        assert "list_resources" not in client.calls
        assert context.discovery_tiers["functions"] == "catalog"

    @pytest.mark.asyncio
    async def test_rpc_names_from_listing(self) -> None:
        """RPC entries become name-only synthetic routines; exec_sql is skipped."""
        client = FakeCatalog(catalog=None, resources=["users", "rpc/get_stats", "rpc/exec_sql"])
        engine, context = _engine(client)

        functions = await engine.discover_functions()

        assert [f.name for f in functions] == ["get_stats"]
        assert functions[0].synthetic is True
        assert functions[0].definition_complete is False
        assert context.discovery_tiers["functions"] == "openapi"

    @pytest.mark.asyncio
    async def test_well_known_probe(self) -> None:
        """Without a listing, well-known names are invoked."""
        client = FakeCatalog(catalog=None, resources=None, functions=("version",))
        engine, context = _engine(client)

        functions = await engine.discover_functions()

        assert [f.name for f in functions] == ["version"]
        assert context.discovery_tiers["functions"] == "name_probe"

    def test_reconstruction_placeholders(self) -> None:
        """Unknown parts are marked in the reconstructed statement."""
        statement = build_function_definition(
            "public", "f", None, None, None, False, None
        )
        assert statement.startswith('CREATE OR REPLACE FUNCTION "public"."f"(/* arguments unknown */)')
        assert "return type unknown" in statement
        assert "-- function body unknown" in statement
        assert statement.endswith("$function$;")

    def test_reconstruction_from_partial_row(self) -> None:
        """A catalog row without pg_get_functiondef is rebuilt from its parts."""
        routine = routine_from_row(
            {"schema_name": "public", "name": "touch", "arguments": "",
             "return_type": "trigger", "language": "plpgsql",
             "security_definer": "t", "body": "BEGIN NEW.updated_at = now(); RETURN NEW; END;"}
        )
        assert routine.definition_complete is False
        assert " RETURNS trigger" in routine.full_definition
        assert " SECURITY DEFINER" in routine.full_definition
        assert "RETURN NEW" in routine.full_definition


# ============================================================================
# Test: Catalog-Only Categories
# ============================================================================


class TestCatalogOnlyCategories:
    """Verify categories with no REST fallback fail open."""

    @pytest.mark.asyncio
    async def test_views_omitted_without_catalog(self) -> None:
        """Empty list plus a warning naming the category."""
        engine, context = _engine(FakeCatalog(catalog=None))

        assert await engine.discover_views() == []
        assert any(
            w.context == "views" and "privileged SQL access" in w.message
            for w in context.warnings
        )
        assert context.discovery_tiers["views"] == "none"

    @pytest.mark.asyncio
    async def test_empty_catalog_is_not_a_warning(self) -> None:
        """A database without views is a valid answer."""
        engine, context = _engine(FakeCatalog(catalog={}))

        assert await engine.discover_views() == []
        assert context.warnings == []
        assert context.discovery_tiers["views"] == "catalog"

    @pytest.mark.asyncio
    async def test_views_from_catalog(self) -> None:
        """Catalog rows are coerced into ViewRecords."""
        client = FakeCatalog(
            catalog={VIEWS: [{"schema_name": "public", "name": "active_users",
                              "definition": " SELECT * FROM users;"}]}
        )
        engine, _ = _engine(client)

        views = await engine.discover_views()

        assert views[0].name == "active_users"
        assert views[0].definition.strip() == "SELECT * FROM users;"


# ============================================================================
# Test: Policies and Extensions
# ============================================================================


class TestSyntheticFallbacks:
    """Verify synthetic policy and extension fallbacks."""

    @pytest.mark.asyncio
    async def test_catalog_policies(self) -> None:
        """Roles arrive as a Postgres array literal."""
        client = FakeCatalog(
            catalog={
                POLICIES: [
                    {"schema_name": "public", "table_name": "users", "name": "own_rows",
                     "permissive": "PERMISSIVE", "roles": "{authenticated}", "command": "SELECT",
                     "using_expression": "(auth.uid() = id)"}
                ]
            }
        )
        engine, _ = _engine(client)

        policies = await engine.discover_policies([TableRecord(schema_name="public", name="users")])

        assert policies[0].roles == ["authenticated"]
        assert policies[0].synthetic is False

    @pytest.mark.asyncio
    async def test_readable_tables_get_synthetic_policy(self) -> None:
        """Each readable table gets one flagged read policy."""
        client = FakeCatalog(catalog=None, readable=("users",))
        engine, context = _engine(client)
        tables = [
            TableRecord(schema_name="public", name="orders"),
            TableRecord(schema_name="public", name="users"),
        ]

        policies = await engine.discover_policies(tables)

        assert len(policies) == 1
        policy = policies[0]
        assert (policy.table, policy.name, policy.command) == ("users", SYNTHETIC_POLICY_NAME, "SELECT")
        assert policy.synthetic is True
        assert "policies" in _warning_contexts(context)
        assert context.discovery_tiers["policies"] == "fallback"

    @pytest.mark.asyncio
    async def test_default_extensions(self) -> None:
        """Without catalog access default extensions are assumed."""
        engine, context = _engine(FakeCatalog(catalog=None))

        extensions = await engine.discover_extensions()

        assert [e.name for e in extensions] == ["pgcrypto", "uuid-ossp"]
        assert all(e.synthetic for e in extensions)
        assert context.discovery_tiers["extensions"] == "fallback"

    @pytest.mark.asyncio
    async def test_catalog_extensions(self) -> None:
        """Catalog extensions are authoritative."""
        client = FakeCatalog(
            catalog={EXTENSIONS: [{"name": "pg_trgm", "schema_name": "extensions", "version": "1.6"}]}
        )
        engine, _ = _engine(client)

        extensions = await engine.discover_extensions()

        assert [(e.name, e.synthetic) for e in extensions] == [("pg_trgm", False)]


# ============================================================================
# Test: Row Coercion
# ============================================================================


class TestTextArray:
    """Verify coercion of Postgres array values."""

    def test_list_passthrough(self) -> None:
        assert text_array(["a", None, "b"]) == ["a", "b"]

    def test_json_array(self) -> None:
        assert text_array('["anon", "authenticated"]') == ["anon", "authenticated"]

    def test_pg_literal_with_quotes(self) -> None:
        assert text_array('{anon,"role with space"}') == ["anon", "role with space"]

    def test_empty_and_scalar(self) -> None:
        assert text_array(None) == []
        assert text_array("{}") == []
        assert text_array("public") == ["public"]
