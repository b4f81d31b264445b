"""Tests for column type inference and SQL type mapping.

Covers ``infer_type`` (value inspection of a sampled row) and
``map_sql_type`` (canonical SQL types written into CREATE TABLE).
"""

import pytest

from supabase_backup.schema.types import INFERRED_VARCHAR_LENGTH, infer_type, map_sql_type


# ============================================================================
# Test: infer_type
# ============================================================================


class TestInferType:
    """Verify the first-match-wins inference rules."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("550e8400-e29b-41d4-a716-446655440000", "uuid"),
            (42, "integer"),
            (3.14, "numeric"),
            (None, "text"),
            ("2024-01-15", "date"),
        ],
    )
    def test_documented_examples(self, value, expected) -> None:
        """The documented examples infer the documented types."""
        assert infer_type(value) == expected

    def test_bool_is_boolean_not_integer(self) -> None:
        """bool is checked before int."""
        assert infer_type(True) == "boolean"
        assert infer_type(False) == "boolean"

    def test_integral_float_is_integer(self) -> None:
        """JSON numbers like 5.0 are integer-valued."""
        assert infer_type(5.0) == "integer"

    def test_uppercase_uuid(self) -> None:
        """UUID detection is case-insensitive."""
        assert infer_type("550E8400-E29B-41D4-A716-446655440000") == "uuid"

    @pytest.mark.parametrize(
        "value",
        [
            "2024-01-15T10:30:00Z",
            "2024-01-15T10:30:00.123456+00:00",
            "2024-01-15 10:30:00+02:00",
        ],
    )
    def test_timestamp_with_utc_marker(self, value) -> None:
        """Date-times with Z or an offset are timestamptz."""
        assert infer_type(value) == "timestamp with time zone"

    def test_timestamp_without_marker_is_not_timestamptz(self) -> None:
        """A naive date-time is not treated as timestamptz."""
        assert infer_type("2024-01-15T10:30:00") == "character varying"

    def test_time_prefix(self) -> None:
        """HH:MM:SS prefix -> time."""
        assert infer_type("12:30:00") == "time"
        assert infer_type("12:30:00.5") == "time"

    def test_varchar_boundary(self) -> None:
        """Strings up to the varchar length are varchar, longer ones text."""
        assert infer_type("x" * INFERRED_VARCHAR_LENGTH) == "character varying"
        assert infer_type("x" * (INFERRED_VARCHAR_LENGTH + 1)) == "text"

    def test_varchar_limit_counts_bytes(self) -> None:
        """Multi-byte characters count by their UTF-8 length."""
        assert infer_type("é" * 200) == "text"

    def test_structured_values_are_jsonb(self) -> None:
        """Objects and arrays -> jsonb."""
        assert infer_type({"a": 1}) == "jsonb"
        assert infer_type([1, 2, 3]) == "jsonb"

    def test_deterministic(self) -> None:
        """Same value, same answer."""
        value = "2024-01-15T10:30:00Z"
        assert {infer_type(value) for _ in range(5)} == {"timestamp with time zone"}


# ============================================================================
# Test: map_sql_type
# ============================================================================


class TestMapSqlType:
    """Verify the centralized type lookup table."""

    @pytest.mark.parametrize(
        ("data_type", "expected"),
        [
            ("timestamp with time zone", "TIMESTAMP WITH TIME ZONE"),
            ("timestamp without time zone", "TIMESTAMP"),
            ("uuid", "UUID"),
            ("json", "JSON"),
            ("jsonb", "JSONB"),
            ("boolean", "BOOLEAN"),
            ("integer", "INTEGER"),
            ("bigint", "BIGINT"),
            ("date", "DATE"),
            ("time", "TIME"),
            ("text", "TEXT"),
            ("double precision", "DOUBLE PRECISION"),
        ],
    )
    def test_simple_types(self, data_type, expected) -> None:
        """Fixed mappings."""
        assert map_sql_type(data_type) == expected

    def test_case_insensitive(self) -> None:
        """information_schema casing does not matter."""
        assert map_sql_type("UUID") == "UUID"
        assert map_sql_type("Timestamp With Time Zone") == "TIMESTAMP WITH TIME ZONE"

    def test_numeric_precision_and_scale(self) -> None:
        """numeric keeps precision and scale when known."""
        assert map_sql_type("numeric", numeric_precision=10, numeric_scale=2) == "NUMERIC(10,2)"
        assert map_sql_type("numeric", numeric_precision=10, numeric_scale=0) == "NUMERIC(10)"
        assert map_sql_type("numeric") == "NUMERIC"

    def test_varchar_length(self) -> None:
        """character varying keeps its length."""
        assert map_sql_type("character varying", max_length=255) == "VARCHAR(255)"
        assert map_sql_type("character varying") == "VARCHAR"

    def test_char_length(self) -> None:
        """character keeps its length."""
        assert map_sql_type("character", max_length=2) == "CHAR(2)"

    def test_array_uses_element_type(self) -> None:
        """ARRAY resolves its element type from udt_name."""
        assert map_sql_type("ARRAY", udt_name="_int4") == "INTEGER[]"
        assert map_sql_type("ARRAY", udt_name="_text") == "TEXT[]"

    def test_user_defined_is_quoted(self) -> None:
        """Enum and domain types are written as quoted names."""
        assert map_sql_type("USER-DEFINED", udt_name="order_status") == '"order_status"'

    def test_unknown_defaults(self) -> None:
        """Missing type -> TEXT; unknown type passes through upper-cased."""
        assert map_sql_type(None) == "TEXT"
        assert map_sql_type("") == "TEXT"
        assert map_sql_type("tsvector") == "TSVECTOR"

    @pytest.mark.parametrize(
        "value",
        [True, 1, 1.5, "550e8400-e29b-41d4-a716-446655440000", "2024-01-15T10:30:00Z",
         "2024-01-15", "12:30:00", "short", {"k": "v"}],
    )
    def test_every_inferred_type_has_a_mapping(self, value) -> None:
        """Inferred types never fall back to TEXT (except text itself)."""
        assert map_sql_type(infer_type(value), max_length=INFERRED_VARCHAR_LENGTH) != "TEXT"
