"""Column type inference and SQL type mapping.

Two pure functions shared by discovery and rendering:

- ``infer_type(value)`` guesses an information_schema-style type name from
  one sampled value (used when no structural metadata is available).
- ``map_sql_type(...)`` turns a declared or inferred type into the
  canonical SQL type written into ``CREATE TABLE`` statements.

Example:
    >>> infer_type("550e8400-e29b-41d4-a716-446655440000")
    'uuid'
    >>> map_sql_type("character varying", max_length=255)
    'VARCHAR(255)'
"""

import re
from datetime import datetime
from typing import Any

INFERRED_VARCHAR_LENGTH = 255

_UUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}:\d{2}")
# Explicit UTC marker or numeric offset at the end of the string
_TZ_SUFFIX_RE = re.compile(r"(Z|[+-]\d{2}(:?\d{2})?)$")


def _is_timestamptz(value: str) -> bool:
    if "T" not in value and " " not in value:
        return False
    if not _TZ_SUFFIX_RE.search(value):
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def infer_type(value: Any) -> str:
    """Infer an information_schema type name from a sampled value.

    Rules, first match wins: null -> text, bool -> boolean, integral
    number -> integer, other number -> numeric, canonical UUID -> uuid,
    ISO date-time with UTC marker -> timestamp with time zone,
    ``YYYY-MM-DD`` -> date, ``HH:MM:SS...`` -> time, short string ->
    character varying, long string -> text, object/array -> jsonb.
    """
    if value is None:
        return "text"
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "integer" if value.is_integer() else "numeric"
    if isinstance(value, str):
        if _UUID_RE.match(value):
            return "uuid"
        if _is_timestamptz(value):
            return "timestamp with time zone"
        if _DATE_RE.match(value):
            return "date"
        if _TIME_RE.match(value):
            return "time"
        if len(value.encode("utf-8")) <= INFERRED_VARCHAR_LENGTH:
            return "character varying"
        return "text"
    if isinstance(value, (dict, list)):
        return "jsonb"
    return "text"


# ============================================================================
# SQL Type Mapping
# ============================================================================

# information_schema data_type / udt_name -> canonical SQL type
_SIMPLE_TYPES: dict[str, str] = {
    "timestamp with time zone": "TIMESTAMP WITH TIME ZONE",
    "timestamptz": "TIMESTAMP WITH TIME ZONE",
    "timestamp without time zone": "TIMESTAMP",
    "timestamp": "TIMESTAMP",
    "uuid": "UUID",
    "jsonb": "JSONB",
    "json": "JSON",
    "boolean": "BOOLEAN",
    "bool": "BOOLEAN",
    "integer": "INTEGER",
    "int4": "INTEGER",
    "int": "INTEGER",
    "smallint": "SMALLINT",
    "int2": "SMALLINT",
    "bigint": "BIGINT",
    "int8": "BIGINT",
    "real": "REAL",
    "float4": "REAL",
    "double precision": "DOUBLE PRECISION",
    "float8": "DOUBLE PRECISION",
    "date": "DATE",
    "time": "TIME",
    "time without time zone": "TIME",
    "time with time zone": "TIME WITH TIME ZONE",
    "timetz": "TIME WITH TIME ZONE",
    "text": "TEXT",
    "bytea": "BYTEA",
    "inet": "INET",
    "interval": "INTERVAL",
}

_NUMERIC_TYPES = {"numeric", "decimal"}
_VARCHAR_TYPES = {"character varying", "varchar"}
_CHAR_TYPES = {"character", "char", "bpchar"}


def map_sql_type(
    data_type: str | None,
    udt_name: str | None = None,
    max_length: int | None = None,
    numeric_precision: int | None = None,
    numeric_scale: int | None = None,
) -> str:
    """Map a declared or inferred column type to a canonical SQL type.

    Args:
        data_type: information_schema ``data_type`` (or an inferred name).
        udt_name: Underlying type name; needed for ARRAY and USER-DEFINED.
        max_length: ``character_maximum_length``.
        numeric_precision: ``numeric_precision``.
        numeric_scale: ``numeric_scale``.

    Returns:
        SQL type text; ``TEXT`` when nothing is known.
    """
    if not data_type:
        return "TEXT"
    key = data_type.strip().lower()

    if key in _SIMPLE_TYPES:
        return _SIMPLE_TYPES[key]

    if key in _NUMERIC_TYPES:
        if numeric_precision is not None:
            if numeric_scale:
                return f"NUMERIC({numeric_precision},{numeric_scale})"
            return f"NUMERIC({numeric_precision})"
        return "NUMERIC"

    if key in _VARCHAR_TYPES:
        return f"VARCHAR({max_length})" if max_length else "VARCHAR"

    if key in _CHAR_TYPES:
        return f"CHAR({max_length})" if max_length else "CHAR"

    if key == "array":
        # udt_name of an array type is the element type prefixed with "_"
        element = (udt_name or "_text").lstrip("_")
        return f"{map_sql_type(element)}[]"

    if key == "user-defined":
        if udt_name:
            return '"' + udt_name.replace('"', '""') + '"'
        return "TEXT"

    return data_type.upper()
