"""Pydantic records for discovered schema objects.

Every record is an immutable snapshot of one catalog object.  Records
serialize with camelCase keys (``by_alias=True``) for the JSON snapshot;
Python code uses the snake_case field names.

This module contains:
- Base model: SnapshotModel
- Namespace/relation records: SchemaRecord, TableRecord, ColumnRecord,
  ViewRecord, SequenceRecord, EnumRecord, ExtensionRecord
- Table-attached records: ConstraintRecord, IndexRecord, TriggerRecord,
  PolicyRecord
- Routine record: RoutineRecord
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SnapshotModel(BaseModel):
    """Frozen model serialized with camelCase aliases."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ============================================================================
# Namespaces and Relations
# ============================================================================


class SchemaRecord(SnapshotModel):
    """A namespace."""

    name: str
    owner: str | None = None


class TableRecord(SnapshotModel):
    """A base table.

    Example:
        >>> table = TableRecord(schema_name="public", name="users")
        >>> table.qualified_name
        'public.users'
    """

    schema_name: str = Field("public", alias="schema")
    name: str
    table_type: str = "BASE TABLE"
    row_estimate: int | None = None
    size: str | None = None
    comment: str | None = None

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


class ColumnRecord(SnapshotModel):
    """A table column, either read from the catalog or inferred from a row.

    ``inferred=True`` marks columns typed by value inspection of a sampled
    row; their types are best guesses.
    """

    name: str
    data_type: str = "text"
    udt_name: str | None = None
    is_nullable: bool = True
    ordinal_position: int
    default: str | None = None
    max_length: int | None = None
    numeric_precision: int | None = None
    numeric_scale: int | None = None
    comment: str | None = None
    inferred: bool = False


class ViewRecord(SnapshotModel):
    schema_name: str = Field("public", alias="schema")
    name: str
    definition: str


class SequenceRecord(SnapshotModel):
    """An auto-increment sequence."""

    schema_name: str = Field("public", alias="schema")
    name: str
    data_type: str = "bigint"
    start_value: int = 1
    minimum_value: int | None = None
    maximum_value: int | None = None
    increment: int = 1
    cycle: bool = False


class EnumRecord(SnapshotModel):
    """An enumerated type; ``labels`` keep their declared sort order."""

    schema_name: str = Field("public", alias="schema")
    name: str
    labels: list[str] = Field(default_factory=list)


class ExtensionRecord(SnapshotModel):
    name: str
    schema_name: str | None = Field(None, alias="schema")
    version: str | None = None
    synthetic: bool = False


# ============================================================================
# Table-Attached Objects
# ============================================================================


class ConstraintRecord(SnapshotModel):
    """A table constraint.

    ``definition`` is the text produced by ``pg_get_constraintdef``, e.g.
    ``PRIMARY KEY (id)`` or ``FOREIGN KEY (user_id) REFERENCES users(id)``.
    """

    schema_name: str = Field("public", alias="schema")
    table: str
    name: str
    constraint_type: str  # PRIMARY KEY, FOREIGN KEY, UNIQUE, CHECK, EXCLUDE
    definition: str


class IndexRecord(SnapshotModel):
    schema_name: str = Field("public", alias="schema")
    table: str
    name: str
    definition: str


class TriggerRecord(SnapshotModel):
    """A trigger; several events collapse into one ``event`` string."""

    schema_name: str = Field("public", alias="schema")
    table: str
    name: str
    timing: str  # BEFORE, AFTER, INSTEAD OF
    event: str  # INSERT, UPDATE, DELETE, TRUNCATE, or "INSERT OR UPDATE"
    orientation: str = "ROW"
    condition: str | None = None
    action: str  # EXECUTE FUNCTION ...


class PolicyRecord(SnapshotModel):
    """A row-level security policy.

    ``synthetic=True`` marks a policy inferred from readability rather than
    read from the catalog.  Such policies are rendered commented out.
    """

    schema_name: str = Field("public", alias="schema")
    table: str
    name: str
    command: str = "ALL"  # ALL, SELECT, INSERT, UPDATE, DELETE
    permissive: bool = True
    roles: list[str] = Field(default_factory=lambda: ["public"])
    using: str | None = None
    check: str | None = None
    synthetic: bool = False


# ============================================================================
# Routines
# ============================================================================


class RoutineRecord(SnapshotModel):
    """A function.

    ``full_definition`` is always present: the catalog's complete statement
    when ``definition_complete`` is True, otherwise a reconstruction with
    placeholder comments for the unknown parts.  ``synthetic=True`` marks a
    record known by name only.
    """

    schema_name: str = Field("public", alias="schema")
    name: str
    arguments: str = ""
    return_type: str | None = None
    language: str | None = None
    security_definer: bool = False
    body: str | None = None
    full_definition: str
    definition_complete: bool = False
    synthetic: bool = False
