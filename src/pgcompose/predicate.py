"""
Compile a criteria mapping into a parameterized predicate.

A criteria mapping is first turned into a small expression tree
(:class:`Leaf`, :class:`And`, :class:`Or`) and then rendered by a single
recursive visitor.  The visitor threads the parameter offset through
siblings left to right, so placeholder ordinals stay contiguous across the
whole tree no matter how deeply groups nest.

Criteria syntax
---------------
- ``{"name": "Alice"}``: equality (``IS`` for null/booleans, ``IN`` for
  lists).
- ``{"age >=": 21}`` or ``{"age": {">=": 21}}``: explicit operator, either
  as the key remainder or as an operator map.
- ``{"or": [{...}, {...}]}``: disjunction of conjunctions.
- ``{"and": [{...}, {...}]}``: explicit conjunction of groups.

Document mode
-------------
Against document tables every key is prefixed with ``body.``.  Plain
equality becomes a containment test on the whole body; other comparisons
cast the extracted text according to the comparison value's type.
"""

from __future__ import annotations

import datetime
import decimal
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .exceptions import CompileError, SchemaError
from .keys import resolve_key
from .operators import OPERATORS, Condition, lookup
from .utils import looks_like_pk, quote_path, stringify

if TYPE_CHECKING:
    from .catalog import Relation
    from .join import CompoundRelation
    from .keys import ResolvedKey
    from .operators import OperatorSpec

DOCUMENT_COLUMN = "body"

_OR_KEYS = frozenset({"or", "$or"})
_AND_KEYS = frozenset({"and", "$and"})
# operators whose left side must stay jsonb when applied to a JSON path
_JSONB_CONTAINMENT = frozenset({"@>", "<@"})
_JSONB_EXISTENCE = frozenset({"?", "?|", "?&"})


# ---------------------------------------------------------------------------
# Expression tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Leaf:
    """A single comparison; ``operator`` is set when given as an operator map."""

    key: str
    value: Any
    operator: str | None = None


@dataclass(frozen=True)
class And:
    """
    A conjunction.

    ``grouped`` distinguishes an explicit ``and`` group, whose members are
    parenthesised individually, from the implicit conjunction of a mapping.
    """

    children: tuple[Node, ...]
    grouped: bool = False


@dataclass(frozen=True)
class Or:
    """A disjunction of conjunctions."""

    children: tuple[And, ...]


Node = Leaf | And | Or


@dataclass(frozen=True)
class CompiledPredicate:
    """Predicate text plus the parameters it references, in order."""

    text: str
    params: tuple[Any, ...] = ()


TRUE = CompiledPredicate("TRUE")


@dataclass(frozen=True)
class RawPredicate:
    """
    A caller-trusted predicate with its own parameters.

    ``conditions`` is interpolated verbatim and numbers its placeholders
    from ``$1``.  When ``where`` is given it is compiled after the raw
    parameters and ANDed on.

    Usage::

        RawPredicate("age > $1", (21,), where={"name ilike": "a%"})
    """

    conditions: str
    params: tuple[Any, ...] = ()
    where: Mapping[str, Any] | None = None
    is_document: bool | None = None


def build_tree(criteria: Mapping[str, Any]) -> And:
    """
    Turn a criteria mapping into an expression tree.

    Raises:
        CompileError: If a logical group is not a non-empty list of
            mappings.
    """
    children: list[Node] = []
    for key, value in criteria.items():
        if key in _OR_KEYS:
            children.append(Or(tuple(build_tree(g) for g in _groups(key, value))))
        elif key in _AND_KEYS:
            groups = tuple(build_tree(g) for g in _groups(key, value))
            children.append(And(groups, grouped=True))
        elif _is_operator_map(value):
            children.extend(Leaf(key, v, operator=op) for op, v in value.items())
        else:
            children.append(Leaf(key, value))
    return And(tuple(children))


def _groups(key: str, value: Any) -> list[Mapping[str, Any]]:
    if not isinstance(value, list | tuple):
        raise CompileError(f"'{key}' requires a list of criteria maps.", key=key)
    if not value:
        raise CompileError(f"'{key}' requires at least one criteria map.", key=key)
    for group in value:
        if not isinstance(group, Mapping):
            raise CompileError(
                f"Every member of '{key}' must be a criteria map, "
                f"got {type(group).__name__}.",
                key=key,
            )
    return list(value)


def _is_operator_map(value: Any) -> bool:
    return (
        isinstance(value, Mapping)
        and bool(value)
        and all(isinstance(k, str) and k.lower() in OPERATORS for k in value)
    )


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


class PredicateCompiler:
    """
    Render an expression tree against a relation.

    Args:
        source: Plain or compound relation keys are resolved against.
        document: Compile in document mode (keys traverse ``body``).
    """

    def __init__(
        self,
        source: Relation | CompoundRelation,
        *,
        document: bool = False,
    ) -> None:
        self.source = source
        self.document = document

    def compile(self, node: Node, offset: int = 0) -> CompiledPredicate:
        """Render ``node`` with placeholders numbered from ``offset + 1``."""
        if isinstance(node, Leaf):
            return self._leaf(node, offset)
        if isinstance(node, Or):
            parts, params = self._sequence(node.children, offset)
            text = "(" + " OR ".join(f"({p})" for p in parts) + ")"
            return CompiledPredicate(text, params)

        parts, params = self._sequence(node.children, offset)
        if node.grouped:
            text = "(" + " AND ".join(f"({p})" for p in parts) + ")"
        else:
            text = " AND ".join(parts) or "TRUE"
        return CompiledPredicate(text, params)

    def _sequence(
        self, nodes: tuple[Node, ...], offset: int
    ) -> tuple[list[str], tuple[Any, ...]]:
        parts: list[str] = []
        params: tuple[Any, ...] = ()
        for child in nodes:
            compiled = self.compile(child, offset + len(params))
            parts.append(compiled.text)
            params += compiled.params
        return parts, params

    # -- leaves --------------------------------------------------------------

    def _leaf(self, leaf: Leaf, offset: int) -> CompiledPredicate:
        key = f"{DOCUMENT_COLUMN}.{leaf.key}" if self.document else leaf.key
        resolved = resolve_key(key, self.source)
        if leaf.operator is not None:
            if resolved.remainder:
                raise CompileError(
                    f"Key {leaf.key!r} already names an operator.", key=leaf.key
                )
            spec = lookup(leaf.operator.lower())
        else:
            spec = lookup(resolved.remainder)

        value = leaf.value
        if resolved.is_json and resolved.cast is None:
            if spec.token in _JSONB_CONTAINMENT:
                resolved = resolve_key(key, self.source, json_as_text=False)
                value = json.dumps(value, default=str)
                return self._emit(leaf, resolved.lhs, spec, value, offset)
            if spec.token in _JSONB_EXISTENCE:
                resolved = resolve_key(key, self.source, json_as_text=False)
                return self._emit(leaf, resolved.lhs, spec, value, offset)

        if self.document:
            return self._document_leaf(leaf, resolved, spec, offset)
        if resolved.is_json:
            value = stringify(value)
        return self._emit(leaf, resolved.lhs, spec, value, offset)

    def _document_leaf(
        self,
        leaf: Leaf,
        resolved: ResolvedKey,
        spec: OperatorSpec,
        offset: int,
    ) -> CompiledPredicate:
        value = leaf.value
        if (
            spec.token == "="
            and value is not None
            and not isinstance(value, list | tuple)
            and resolved.cast is None
            and all(resolved.json_shape)
        ):
            # equality on the body is a containment test on the whole document
            nested: Any = value
            for element in reversed(resolved.json_elements):
                nested = {element: nested}
            body = quote_path(*resolved.path_elements)
            return CompiledPredicate(
                f"{body} @> ${offset + 1}", (json.dumps(nested, default=str),)
            )

        lhs = resolved.lhs
        if resolved.cast is None:
            lhs = _cast_for(lhs, value)
        return self._emit(leaf, lhs, spec, value, offset)

    def _emit(
        self,
        leaf: Leaf,
        lhs: str,
        spec: OperatorSpec,
        value: Any,
        offset: int,
    ) -> CompiledPredicate:
        condition = Condition(
            key=leaf.key,
            lhs=lhs,
            operator=spec.sql,
            value=value,
            offset=offset + 1,
        )
        condition = spec.apply(condition)
        return CompiledPredicate(condition.to_sql(), condition.params)


def _cast_for(lhs: str, value: Any) -> str:
    """Cast extracted document text to match the comparison value."""
    sample = value[0] if isinstance(value, list | tuple) and value else value
    if isinstance(sample, bool):
        return f"({lhs})::boolean"
    if isinstance(sample, int | float | decimal.Decimal):
        return f"({lhs})::decimal"
    if isinstance(sample, datetime.datetime):
        return f"({lhs})::timestamptz"
    return lhs


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def compile_predicate(
    source: Relation | CompoundRelation,
    criteria: Mapping[str, Any] | RawPredicate | None,
    offset: int = 0,
    *,
    document: bool = False,
) -> CompiledPredicate:
    """
    Compile criteria into predicate text and parameters.

    Args:
        source: Relation the criteria keys are resolved against.
        criteria: A criteria mapping or a :class:`RawPredicate`.  ``None``
            and ``{}`` compile to ``TRUE``.
        offset: Number of parameters already bound before this predicate.
        document: Compile in document mode.

    Raises:
        CompileError: On malformed criteria.
        KeyResolutionError: On unresolvable keys.
    """
    if isinstance(criteria, RawPredicate):
        return _compile_raw(source, criteria, offset, document)
    if not criteria:
        return TRUE
    compiler = PredicateCompiler(source, document=document)
    return compiler.compile(build_tree(criteria), offset)


def _compile_raw(
    source: Relation | CompoundRelation,
    raw: RawPredicate,
    offset: int,
    document: bool,
) -> CompiledPredicate:
    if offset:
        raise CompileError("A raw predicate must own the first parameters.")
    params = tuple(raw.params)
    if not raw.where:
        return CompiledPredicate(raw.conditions, params)
    use_document = document if raw.is_document is None else raw.is_document
    extra = compile_predicate(source, raw.where, len(params), document=use_document)
    text = f"{raw.conditions} AND {extra.text}"
    return CompiledPredicate(text, params + extra.params)


# ---------------------------------------------------------------------------
# Primary-key search
# ---------------------------------------------------------------------------


def is_pk_search(source: Relation | CompoundRelation, criteria: Any) -> bool:
    """True when ``criteria`` is a mapping keyed by exactly the primary key."""
    if not isinstance(criteria, Mapping) or not criteria or not source.primary_key:
        return False
    return set(criteria) == set(source.primary_key)


def expand_pk_value(source: Relation | CompoundRelation, value: Any) -> dict[str, Any]:
    """
    Turn a bare primary-key value into a criteria mapping.

    Raises:
        CompileError: If the value does not look like a primary key.
        SchemaError: If the relation has no single-column primary key.
    """
    if not looks_like_pk(value):
        raise CompileError(
            f"Unrecognised criteria value {value!r}; expected a mapping "
            "or a primary-key value."
        )
    if len(source.primary_key) != 1:
        raise SchemaError(
            f"Relation '{source.name}' needs a single-column primary key "
            "for primary-key lookups.",
            name=source.name,
        )
    return {source.primary_key[0]: value}
