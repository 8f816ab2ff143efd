"""
Shared helpers for rendering SQL fragments.

These are pure-Python helpers with no catalog or statement dependencies.
"""

from __future__ import annotations

import datetime
import decimal
import json
import re
import uuid as uuid_module
from typing import Any

# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


def quote_identifier(name: str) -> str:
    """Double-quote an identifier, doubling embedded quotes."""
    return '"' + name.replace('"', '""') + '"'


def quote_path(*parts: str | None) -> str:
    """Quote and dot-join the non-empty parts of a qualified name."""
    return ".".join(quote_identifier(p) for p in parts if p)


# ---------------------------------------------------------------------------
# Literals
# ---------------------------------------------------------------------------


def quote_literal(text: str) -> str:
    """Render a string as a single-quoted SQL literal."""
    return "'" + text.replace("'", "''") + "'"


def render_literal(value: Any) -> str:
    """
    Render a Python value as an inline SQL literal.

    Only used where a statement fragment must not carry parameters (join
    clauses, which are compiled once and shared by every query).
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int | float | decimal.Decimal):
        return str(value)
    if isinstance(value, datetime.datetime):
        return f"{quote_literal(value.isoformat())}::timestamptz"
    if isinstance(value, dict | list):
        return f"{quote_literal(json.dumps(value))}::jsonb"
    return quote_literal(str(value))


def timestamp_cast(value: Any) -> str:
    """Suffix for a placeholder bound to a timestamp value."""
    if isinstance(value, datetime.datetime):
        return "::timestamptz"
    return ""


# ---------------------------------------------------------------------------
# JSON text
# ---------------------------------------------------------------------------


def stringify(value: Any) -> Any:
    """
    Convert a comparison value to the text form JSON extraction returns.

    ``->>`` and ``#>>`` yield text, so values compared against them are
    converted too.  Lists are converted element-wise so that IN lists and
    array literals keep working.
    """
    if value is None:
        return None
    if isinstance(value, list | tuple):
        return [stringify(v) for v in value]
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict):
        return json.dumps(value)
    if isinstance(value, datetime.date | datetime.datetime):
        return value.isoformat()
    return str(value)


# ---------------------------------------------------------------------------
# Array literals
# ---------------------------------------------------------------------------

_ARRAY_SPECIAL_RE = re.compile(r'[,{}\s\\"]')
_ARRAY_ESCAPE_RE = re.compile(r'([\\"])')


def array_literal(values: list[Any] | tuple[Any, ...]) -> str:
    """
    Serialize a sequence into a single Postgres array literal.

    Strings that are empty, spell ``null`` or contain delimiter characters
    are double-quoted with backslash escapes.
    """
    return "{" + ",".join(_array_element(v) for v in values) + "}"


def _array_element(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        if value == "" or value.lower() == "null" or _ARRAY_SPECIAL_RE.search(value):
            return '"' + _ARRAY_ESCAPE_RE.sub(r"\\\1", value) + '"'
        return value
    return str(value)


# ---------------------------------------------------------------------------
# Primary-key sniffing
# ---------------------------------------------------------------------------

_INT_RE = re.compile(r"^\d+$")
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def looks_like_pk(value: Any) -> bool:
    """
    Return True when a bare criteria value looks like a primary key.

    Integers, UUIDs, and strings that are all digits or UUID-shaped
    qualify.  Natural string keys deliberately do not.
    """
    if isinstance(value, bool):
        return False
    if isinstance(value, int | uuid_module.UUID):
        return True
    if isinstance(value, str):
        return bool(_INT_RE.match(value) or _UUID_RE.match(value))
    return False
