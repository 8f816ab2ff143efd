"""
Field-reference parsing.

A key names a column and optionally, in order: JSON traversal with ``.``
and ``[]`` notation, an explicit ``::type`` cast, and a trailing operator
(the *remainder*).  Identifiers may be double-quoted to allow names that
would otherwise break tokenisation::

    "name"                       -> "name"
    "profile.address.city"       -> "profile"#>>'{address,city}'
    "tags[0]::int >="            -> ("tags"->>0)::int, remainder ">="
    "posts.title ilike"          -> "posts"."title" on a compound relation

Against a compound relation, leading tokens may name the origin or a
joined member.  ``schema.relation.field`` and ``field.key.key2`` look the
same to the lexer, so member names are stripped in a fixed precedence
before the remaining tokens are treated as column plus JSON path.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .exceptions import KeyResolutionError
from .utils import array_literal, quote_literal, quote_path

if TYPE_CHECKING:
    from .catalog import Relation
    from .join import CompoundRelation

_WHITESPACE = frozenset(" \t\r\n")
_INDEX_RE = re.compile(r"^-?\d+$")
_CAST_RE = re.compile(r"^[A-Za-z_][\w(),]*$")


@dataclass(frozen=True)
class LexedKey:
    """
    Raw tokenisation of a key.

    Attributes:
        tokens: Non-empty tokens in order of appearance.
        path_shape: One entry per JSON path segment; ``True`` for object
            keys (``.``), ``False`` for array indexes (``[``).
        has_cast: Whether a ``::`` cast was seen.
    """

    tokens: tuple[str, ...]
    path_shape: tuple[bool, ...]
    has_cast: bool


@dataclass(frozen=True)
class ResolvedKey:
    """A key resolved against a relation into a SQL expression."""

    field: str
    path: str
    lhs: str
    schema: str | None = None
    relation: str | None = None
    path_elements: tuple[str, ...] = ()
    json_elements: tuple[str, ...] = ()
    json_shape: tuple[bool, ...] = ()
    is_json: bool = False
    cast: str | None = None
    remainder: str | None = None
    alias: str | None = field(default=None, compare=False)


def lex_key(key: str) -> LexedKey:
    """Split a key into tokens, JSON path shape and cast marker."""
    path_shape: list[bool] = []
    tokens: list[list[str]] = [[]]
    buffer = tokens[0]
    in_quotation = False
    has_cast = False

    def next_token() -> list[str]:
        tokens.append([])
        return tokens[-1]

    for char in key.strip():
        if in_quotation and char != '"':
            buffer.append(char)
            continue

        if char == '"':
            # closing a quotation completes a token
            if in_quotation:
                buffer = next_token()
            in_quotation = not in_quotation
        elif char == ":":
            # a second consecutive colon marks a cast; only the first counts
            if buffer and buffer[-1] == ":":
                buffer.pop()
                if not has_cast:
                    has_cast = True
                    buffer = next_token()
            else:
                buffer.append(char)
        elif char == ".":
            path_shape.append(True)
            buffer = next_token()
        elif char == "[":
            path_shape.append(False)
            buffer = next_token()
        elif char == "]" or char in _WHITESPACE:
            buffer = next_token()
        else:
            buffer.append(char)

    joined = ("".join(t).strip() for t in tokens)
    return LexedKey(
        tokens=tuple(t for t in joined if t),
        path_shape=tuple(path_shape),
        has_cast=has_cast,
    )


def resolve_key(
    key: str,
    source: Relation | CompoundRelation | None,
    json_as_text: bool = True,
) -> ResolvedKey:
    """
    Resolve ``key`` against ``source``.

    Args:
        key: The field reference.
        source: Plain or compound relation the key is evaluated against.
        json_as_text: Use the text-extracting JSON operators (``->>``,
            ``#>>``).  Forced on when the key carries an explicit cast.

    Raises:
        KeyResolutionError: If the key names no field or its JSON path or
            cast is malformed.
    """
    lexed = lex_key(key)
    tokens = list(lexed.tokens)
    shape = list(lexed.path_shape)
    source_name = source.name if source is not None else None

    if not tokens:
        raise KeyResolutionError(key, source_name, "empty field reference")

    schema: str | None = None
    relation: str | None = None
    alias: str | None = None
    default_schema: str | None = None

    if source is not None and source.is_compound:
        origin = source.origin
        default_schema = origin.default_schema

        if tokens[0] == origin.name:
            relation = tokens.pop(0)
            del shape[:1]
        elif (
            len(tokens) > 1
            and tokens[0] == origin.schema_name
            and tokens[1] == origin.name
        ):
            # the only case where the schema is kept: joined members are
            # always referenced through their alias
            schema, relation = tokens.pop(0), tokens.pop(0)
            del shape[:2]
        else:
            for node in source.joins:
                if tokens[0] == node.alias:
                    alias = tokens.pop(0)
                    del shape[:1]
                elif tokens[0] == node.relation.name:
                    alias = node.alias
                    relation = tokens.pop(0)
                    del shape[:1]
                elif (
                    len(tokens) > 1
                    and tokens[0] == node.relation.schema_name
                    and tokens[1] == node.relation.name
                ):
                    alias = node.alias
                    schema, relation = tokens.pop(0), tokens.pop(0)
                    del shape[:2]
                else:
                    continue
                break
            else:
                schema = origin.schema_name
                relation = origin.name

    if not tokens:
        raise KeyResolutionError(key, source_name, "no field name")

    column = tokens.pop(0)
    path_elements = tuple(
        p
        for p in (
            None if alias or schema == default_schema else schema,
            alias or relation,
            column,
        )
        if p
    )
    path = quote_path(*path_elements)
    lhs = path
    json_elements: tuple[str, ...] = ()
    as_text = lexed.has_cast or json_as_text

    if len(shape) == 1:
        if not tokens:
            raise KeyResolutionError(key, source_name, "missing JSON path element")
        element = tokens.pop(0)
        json_elements = (element,)
        operator = "->>" if as_text else "->"
        if shape[0]:
            lhs = f"{path}{operator}{quote_literal(element)}"
        elif _INDEX_RE.match(element):
            lhs = f"{path}{operator}{element}"
        else:
            raise KeyResolutionError(
                key, source_name, f"array index {element!r} is not an integer"
            )
    elif shape:
        if len(tokens) < len(shape):
            raise KeyResolutionError(key, source_name, "incomplete JSON path")
        json_elements = tuple(tokens[: len(shape)])
        del tokens[: len(shape)]
        operator = "#>>" if as_text else "#>"
        lhs = f"{path}{operator}{quote_literal(array_literal(json_elements))}"

    cast: str | None = None
    if lexed.has_cast:
        if not tokens or not _CAST_RE.match(tokens[0]):
            raise KeyResolutionError(key, source_name, "malformed cast type")
        cast = tokens.pop(0)
        # parentheses are only needed around JSON traversal
        lhs = f"({lhs})::{cast}" if shape else f"{lhs}::{cast}"

    return ResolvedKey(
        schema=schema,
        relation=relation or alias or source_name,
        field=column,
        path_elements=path_elements,
        path=path,
        lhs=lhs,
        json_elements=json_elements,
        json_shape=tuple(shape),
        is_json=bool(shape),
        cast=cast,
        remainder=" ".join(tokens).lower() if tokens else None,
        alias=alias,
    )
