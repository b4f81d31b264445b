"""Restore script generation.

Turns the discovered schema and extracted rows of a ``RunContext`` into
three SQL scripts:

- ``complete``: every section below, in this order
- ``schema_only``: the same minus the data section
- ``data_only``: the data section wrapped in its own session/transaction

Section order of the complete script::

    preamble -> extensions -> schemas -> enums -> tables (+ foreign keys)
    -> views -> functions -> triggers -> indexes -> RLS + policies
    -> data -> sequences -> finalization -> summary trailer

Sections are emitted only when non-empty.  All identifiers and literals
go through ``supabase_backup.backup.sql``.
"""

import logging
import re
from collections import defaultdict
from typing import Any

from pydantic import BaseModel

from supabase_backup.backup.models import RunContext, TableData
from supabase_backup.backup.sql import (
    comment_out,
    dollar_quote_tag,
    qualified,
    quote_ident,
    quote_string,
    sql_literal,
)
from supabase_backup.schema.models import (
    ColumnRecord,
    ConstraintRecord,
    PolicyRecord,
    SequenceRecord,
    TableRecord,
)
from supabase_backup.schema.types import map_sql_type

logger = logging.getLogger(__name__)

INSERT_BATCH_SIZE = 100

# Constraint kinds written inside CREATE TABLE; foreign keys go after all tables
INLINE_CONSTRAINTS = ("PRIMARY KEY", "UNIQUE", "CHECK", "EXCLUDE")

_NEXTVAL_RE = re.compile(r"nextval\('((?:[^']|'')+)'(?:::regclass)?\)")
_CREATE_INDEX_RE = re.compile(r"^CREATE\s+(UNIQUE\s+)?INDEX\s+(?!IF\s+NOT\s+EXISTS)", re.IGNORECASE)


class GeneratedScripts(BaseModel):
    """The three SQL projections of one run."""

    complete: str
    schema_only: str
    data_only: str


def section_header(title: str) -> str:
    rule = "-- " + "=" * 76
    return f"{rule}\n-- {title}\n{rule}"


def _block(title: str, statements: list[str]) -> str | None:
    if not statements:
        return None
    return section_header(title) + "\n\n" + "\n\n".join(statements)


def _wrap_duplicate_safe(statement: str) -> str:
    """Wrap a statement in a DO block that ignores ``duplicate_object``."""
    tag = dollar_quote_tag(statement, "do")
    return (
        f"DO {tag} BEGIN\n"
        f"    {statement}\n"
        f"EXCEPTION\n"
        f"    WHEN duplicate_object THEN NULL;\n"
        f"END {tag};"
    )


def referenced_sequences(columns: list[ColumnRecord]) -> list[str]:
    """Sequence names (as written) used by ``nextval(...)`` column defaults."""
    names = []
    for column in columns:
        if not column.default:
            continue
        match = _NEXTVAL_RE.search(column.default)
        if match:
            names.append(match.group(1).replace("''", "'"))
    return names


class ScriptGenerator:
    """Renders restore scripts from a completed ``RunContext``.

    Example:
        >>> scripts = ScriptGenerator(context).generate()
        >>> scripts.complete.startswith("--")
        True
    """

    def __init__(self, context: RunContext) -> None:
        self.context = context
        self.config = context.config
        self.snapshot = context.schema_snapshot

    # ------------------------------------------------------------------
    # Preamble / finalization
    # ------------------------------------------------------------------

    def header(self, title: str) -> str:
        meta = self.context.metadata
        lines = [
            f"-- Supabase database backup: {title}",
            f"-- Generated: {meta.timestamp}",
            f"-- Source: {meta.endpoint or 'unknown'}",
            f"-- Format version: {meta.backup_version}",
        ]
        if self.context.errors or self.context.warnings:
            lines.append(
                f"-- Completed with {len(self.context.errors)} error(s) and "
                f"{len(self.context.warnings)} warning(s); see backup-summary.json"
            )
        return "\n".join(lines)

    def session_setup(self) -> str:
        return "\n".join(
            [
                "SET statement_timeout = 0;",
                "SET client_encoding = 'UTF8';",
                "SET standard_conforming_strings = on;",
                "SET client_min_messages = warning;",
                "SET session_replication_role = replica;",
                "",
                "BEGIN;",
            ]
        )

    def finalization(self, analyze: bool = True) -> str:
        lines = [section_header("FINALIZATION"), "", "SET session_replication_role = DEFAULT;"]
        if analyze and self.config.include_tables:
            for table in self.snapshot.tables:
                lines.append(f"ANALYZE {qualified(table.schema_name, table.name)};")
        lines.append("")
        lines.append("COMMIT;")
        return "\n".join(lines)

    def trailer(self) -> str:
        s = self.snapshot
        total_rows = sum(d.row_count for d in self.context.data.values())
        counts = [
            ("Schemas", len(s.schemas)),
            ("Tables", len(s.tables)),
            ("Columns", sum(len(c) for c in s.columns.values())),
            ("Views", len(s.views)),
            ("Functions", len(s.functions)),
            ("Triggers", len(s.triggers)),
            ("Indexes", len(s.indexes)),
            ("Policies", len(s.policies)),
            ("Sequences", len(s.sequences)),
            ("Enums", len(s.enums)),
            ("Constraints", len(s.constraints)),
            ("Extensions", len(s.extensions)),
            ("Rows", total_rows),
            ("Errors", len(self.context.errors)),
            ("Warnings", len(self.context.warnings)),
        ]
        lines = [section_header("BACKUP SUMMARY")]
        lines.extend(f"-- {label}: {value}" for label, value in counts)
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Schema sections
    # ------------------------------------------------------------------

    def extensions_section(self) -> str | None:
        statements = []
        for ext in self.snapshot.extensions:
            stmt = f"CREATE EXTENSION IF NOT EXISTS {quote_ident(ext.name)}"
            if ext.schema_name:
                stmt += f" WITH SCHEMA {quote_ident(ext.schema_name)}"
            stmt += ";"
            if ext.synthetic:
                stmt = "-- Assumed default extension, not read from the database:\n" + comment_out(stmt)
            statements.append(stmt)
        return _block("EXTENSIONS", statements)

    def schemas_section(self) -> str | None:
        statements = [
            f"CREATE SCHEMA IF NOT EXISTS {quote_ident(schema.name)};"
            for schema in self.snapshot.schemas
            if schema.name != "public"
        ]
        return _block("SCHEMAS", statements)

    def enums_section(self) -> str | None:
        statements = []
        for enum in self.snapshot.enums:
            labels = ", ".join(quote_string(label) for label in enum.labels)
            create = f"CREATE TYPE {qualified(enum.schema_name, enum.name)} AS ENUM ({labels});"
            statements.append(_wrap_duplicate_safe(create))
        return _block("ENUM TYPES", statements)

    def column_definition(self, column: ColumnRecord) -> str:
        sql_type = map_sql_type(
            column.data_type,
            column.udt_name,
            column.max_length,
            column.numeric_precision,
            column.numeric_scale,
        )
        parts = [quote_ident(column.name), sql_type]
        # One sampled row cannot justify NOT NULL
        if not column.is_nullable and not column.inferred:
            parts.append("NOT NULL")
        if column.default is not None:
            parts.append(f"DEFAULT {column.default}")
        return " ".join(parts)

    def _constraints_by_table(self) -> dict[tuple[str, str], list[ConstraintRecord]]:
        grouped: dict[tuple[str, str], list[ConstraintRecord]] = defaultdict(list)
        if self.config.include_constraints:
            for constraint in self.snapshot.constraints:
                grouped[(constraint.schema_name, constraint.table)].append(constraint)
        return grouped

    def table_statement(self, table: TableRecord, inline: list[ConstraintRecord]) -> str:
        name = qualified(table.schema_name, table.name)
        columns = self.context.columns_for(table)
        lines: list[str] = [f"-- Table: {name}"]

        if columns and all(c.inferred for c in columns):
            lines.append("-- Column types inferred from sampled data; verify before restoring")
        elif not columns:
            lines.append("-- Columns could not be determined")

        for sequence in referenced_sequences(columns):
            lines.append(f"CREATE SEQUENCE IF NOT EXISTS {sequence};")

        if self.config.include_drop_statements:
            lines.append(f"DROP TABLE IF EXISTS {name} CASCADE;")
            create = f"CREATE TABLE {name} ("
        else:
            create = f"CREATE TABLE IF NOT EXISTS {name} ("

        body = [f"    {self.column_definition(c)}" for c in columns]
        body.extend(
            f"    CONSTRAINT {quote_ident(c.name)} {c.definition}"
            for c in inline
            if c.constraint_type in INLINE_CONSTRAINTS
        )
        if body:
            lines.append(create)
            lines.append(",\n".join(body))
            lines.append(");")
        else:
            lines.append(create + ");")

        if table.comment:
            lines.append(f"COMMENT ON TABLE {name} IS {quote_string(table.comment)};")
        for column in columns:
            if column.comment:
                lines.append(
                    f"COMMENT ON COLUMN {name}.{quote_ident(column.name)} "
                    f"IS {quote_string(column.comment)};"
                )
        return "\n".join(lines)

    def tables_section(self) -> str | None:
        if not self.config.include_tables:
            return None
        constraints = self._constraints_by_table()
        statements = [
            self.table_statement(t, constraints.get((t.schema_name, t.name), []))
            for t in self.snapshot.tables
        ]

        foreign_keys = [
            c
            for c in self.snapshot.constraints
            if self.config.include_constraints and c.constraint_type == "FOREIGN KEY"
        ]
        for fk in foreign_keys:
            statements.append(
                _wrap_duplicate_safe(
                    f"ALTER TABLE {qualified(fk.schema_name, fk.table)} "
                    f"ADD CONSTRAINT {quote_ident(fk.name)} {fk.definition};"
                )
            )
        return _block("TABLES", statements)

    def views_section(self) -> str | None:
        statements = []
        for view in self.snapshot.views:
            definition = view.definition.strip().rstrip(";").strip()
            statements.append(
                f"CREATE OR REPLACE VIEW {qualified(view.schema_name, view.name)} AS\n{definition};"
            )
        return _block("VIEWS", statements)

    def functions_section(self) -> str | None:
        statements = []
        for routine in self.snapshot.functions:
            if routine.synthetic:
                statements.append(
                    f"-- Function {qualified(routine.schema_name, routine.name)} "
                    f"is known by name only; definition unavailable\n"
                    + comment_out(routine.full_definition)
                )
            elif not routine.definition_complete:
                statements.append(
                    "-- Reconstructed from partial metadata; verify before restoring\n"
                    + routine.full_definition
                )
            else:
                statements.append(routine.full_definition)
        return _block("FUNCTIONS", statements)

    def triggers_section(self) -> str | None:
        statements = []
        for trigger in self.snapshot.triggers:
            table = qualified(trigger.schema_name, trigger.table)
            create = (
                f"CREATE TRIGGER {quote_ident(trigger.name)} {trigger.timing} {trigger.event} "
                f"ON {table} FOR EACH {trigger.orientation}"
            )
            if trigger.condition:
                create += f" WHEN ({trigger.condition})"
            create += f" {trigger.action};"
            statements.append(
                f"DROP TRIGGER IF EXISTS {quote_ident(trigger.name)} ON {table};\n{create}"
            )
        return _block("TRIGGERS", statements)

    def indexes_section(self) -> str | None:
        statements = []
        for index in self.snapshot.indexes:
            if index.name.endswith("_pkey"):
                continue
            definition = _CREATE_INDEX_RE.sub(
                lambda m: f"CREATE {m.group(1) or ''}INDEX IF NOT EXISTS ",
                index.definition.strip().rstrip(";"),
            )
            statements.append(definition + ";")
        return _block("INDEXES", statements)

    def policy_statement(self, policy: PolicyRecord) -> str:
        table = qualified(policy.schema_name, policy.table)
        roles = ", ".join(
            "PUBLIC" if role.lower() == "public" else quote_ident(role) for role in policy.roles
        )
        kind = "PERMISSIVE" if policy.permissive else "RESTRICTIVE"
        create = (
            f"CREATE POLICY {quote_ident(policy.name)} ON {table} "
            f"AS {kind} FOR {policy.command} TO {roles}"
        )
        if policy.using and policy.command != "INSERT":
            create += f" USING ({policy.using})"
        if policy.check and policy.command in ("ALL", "INSERT", "UPDATE"):
            create += f" WITH CHECK ({policy.check})"
        create += ";"
        statement = f"DROP POLICY IF EXISTS {quote_ident(policy.name)} ON {table};\n{create}"
        if policy.synthetic:
            return "-- Inferred policy, not read from the database:\n" + comment_out(statement)
        return statement

    def policies_section(self) -> str | None:
        grouped: dict[tuple[str, str], list[PolicyRecord]] = defaultdict(list)
        for policy in self.snapshot.policies:
            grouped[(policy.schema_name, policy.table)].append(policy)

        statements = []
        for schema, table in sorted(grouped):
            policies = grouped[(schema, table)]
            enable = f"ALTER TABLE {qualified(schema, table)} ENABLE ROW LEVEL SECURITY;"
            if all(p.synthetic for p in policies):
                enable = comment_out(enable)
            statements.append(enable)
            statements.extend(self.policy_statement(p) for p in policies)
        return _block("ROW LEVEL SECURITY", statements)

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def insert_statements(self, data: TableData) -> list[str]:
        """Batched INSERTs; the column list is the union of all row keys."""
        if not data.rows:
            return []
        columns: list[str] = list(dict.fromkeys(key for row in data.rows for key in row))
        target = qualified(data.schema_name, data.table)
        column_list = ", ".join(quote_ident(c) for c in columns)

        statements = []
        for start in range(0, len(data.rows), INSERT_BATCH_SIZE):
            batch = data.rows[start:start + INSERT_BATCH_SIZE]
            values = ",\n".join(
                "(" + ", ".join(sql_literal(row.get(c)) for c in columns) + ")" for row in batch
            )
            statements.append(
                f"INSERT INTO {target} ({column_list}) VALUES\n{values}\n"
                f"ON CONFLICT DO NOTHING;"
            )
        return statements

    def _data_header(self, data: TableData) -> str:
        note = f"-- Data for {qualified(data.schema_name, data.table)}: {data.row_count} rows"
        if data.was_limited:
            total = data.total_rows if data.total_rows is not None else "unknown"
            note += f" (limited; {total} available)"
        if data.error:
            note += f" (partial: {data.error})"
        return note

    def data_section(self) -> str | None:
        statements = []
        for key in sorted(self.context.data):
            data = self.context.data[key]
            inserts = self.insert_statements(data)
            if inserts:
                statements.append(self._data_header(data) + "\n" + "\n\n".join(inserts))
        return _block("DATA", statements)

    def sequence_statement(self, sequence: SequenceRecord, referenced: set[str]) -> str:
        name = qualified(sequence.schema_name, sequence.name)
        options = [f"AS {sequence.data_type}", f"INCREMENT BY {sequence.increment}"]
        options.append(
            f"MINVALUE {sequence.minimum_value}" if sequence.minimum_value is not None else "NO MINVALUE"
        )
        options.append(
            f"MAXVALUE {sequence.maximum_value}" if sequence.maximum_value is not None else "NO MAXVALUE"
        )
        cycle = "CYCLE" if sequence.cycle else "NO CYCLE"
        lines = [
            f"CREATE SEQUENCE IF NOT EXISTS {name} {' '.join(options)} "
            f"START WITH {sequence.start_value} {cycle};"
        ]
        # Pre-created by a table default: apply the real parameters
        if f"{sequence.schema_name}.{sequence.name}" in referenced:
            lines.append(f"ALTER SEQUENCE {name} {' '.join(options)} {cycle};")
        return "\n".join(lines)

    def sequences_section(self) -> str | None:
        referenced: set[str] = set()
        for columns in self.snapshot.columns.values():
            referenced.update(_normalise_sequence_name(n) for n in referenced_sequences(columns))
        statements = [self.sequence_statement(s, referenced) for s in self.snapshot.sequences]
        return _block("SEQUENCES", statements)

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def schema_sections(self) -> list[str | None]:
        return [
            self.extensions_section(),
            self.schemas_section(),
            self.enums_section(),
            self.tables_section(),
            self.views_section(),
            self.functions_section(),
            self.triggers_section(),
            self.indexes_section(),
            self.policies_section(),
        ]

    def _assemble(self, title: str, sections: list[Any], analyze: bool = True) -> str:
        parts = [self.header(title), self.session_setup()]
        parts.extend(s for s in sections if s)
        parts.append(self.finalization(analyze=analyze))
        parts.append(self.trailer())
        return "\n\n".join(parts) + "\n"

    def generate(self) -> GeneratedScripts:
        schema = self.schema_sections()
        data = self.data_section()
        sequences = self.sequences_section()

        complete = self._assemble("complete restore", [*schema, data, sequences])
        schema_only = self._assemble("schema only", [*schema, sequences])
        data_only = self._assemble("data only", [data], analyze=False)

        logger.info(
            f"Generated scripts: complete={len(complete)} chars, "
            f"schema-only={len(schema_only)} chars, data-only={len(data_only)} chars"
        )
        return GeneratedScripts(complete=complete, schema_only=schema_only, data_only=data_only)


def _normalise_sequence_name(raw: str) -> str:
    """``"public"."x_seq"`` / ``public.x_seq`` / ``x_seq`` -> ``public.x_seq``."""
    parts = [p.strip('"') for p in re.split(r'\.(?=(?:[^"]*"[^"]*")*[^"]*$)', raw)]
    if len(parts) == 1:
        return f"public.{parts[0]}"
    return ".".join(parts[-2:])