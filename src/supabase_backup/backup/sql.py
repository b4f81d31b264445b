"""Identifier quoting and literal escaping for generated SQL.

Every emission site in the script generator goes through these helpers.
Scripts are emitted with ``standard_conforming_strings = on``, so a plain
``'...'`` literal treats backslashes literally; strings containing
backslashes are still written as ``E'...'`` literals so the script stays
correct if the setting is changed.
"""

import json
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID


def quote_ident(name: str) -> str:
    """Double-quote an identifier, doubling embedded quotes.

    Example:
        >>> quote_ident('my"table')
        '"my""table"'
    """
    return '"' + name.replace('"', '""') + '"'


def qualified(schema: str, name: str) -> str:
    """Schema-qualified, quoted identifier: ``"schema"."name"``."""
    return f"{quote_ident(schema)}.{quote_ident(name)}"


def quote_string(value: str) -> str:
    """Render a string literal, doubling quotes and escaping backslashes."""
    escaped = value.replace("'", "''")
    if "\\" in value:
        return "E'" + escaped.replace("\\", "\\\\") + "'"
    return "'" + escaped + "'"


def sql_literal(value: Any) -> str:
    """Render a Python value as a SQL literal.

    ``None`` -> ``NULL``, bools -> ``true``/``false``, numbers as-is,
    dicts/lists -> JSON text cast to ``jsonb``, temporal values -> ISO-8601
    strings, everything else -> escaped string literal.
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            # NaN / Infinity are only valid as quoted numeric input
            return f"'{value}'"
        return repr(value)
    if isinstance(value, (dict, list)):
        return quote_string(json.dumps(value, ensure_ascii=False)) + "::jsonb"
    if isinstance(value, (datetime, date, time)):
        return quote_string(value.isoformat())
    if isinstance(value, UUID):
        return quote_string(str(value))
    return quote_string(str(value))


def dollar_quote_tag(body: str, base: str = "function") -> str:
    """Return a ``$tag$`` delimiter that does not occur in ``body``."""
    tag = f"${base}$"
    n = 0
    while tag in body:
        n += 1
        tag = f"${base}{n}$"
    return tag


def comment_out(text: str) -> str:
    """Prefix every line with ``-- ``."""
    return "\n".join(f"-- {line}" if line else "--" for line in text.splitlines())
