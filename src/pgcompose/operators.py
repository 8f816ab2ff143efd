"""
Operator table for criteria keys.

Keys are the tokens recognised in a criteria key's remainder; values give
the SQL operator to emit and an optional *mutator*.  A mutator is a pure
function that receives the :class:`Condition` being compiled and returns a
new one with its operator, right-hand side and parameters settled.

Usage::

    spec = lookup("between")
    condition = spec.apply(Condition(key="age between", lhs='"age"', ...))
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any

from .exceptions import CompileError
from .utils import array_literal, timestamp_cast

logger = logging.getLogger("pgcompose.operators")


@dataclass(frozen=True)
class Condition:
    """
    A single comparison on its way to SQL.

    Attributes:
        key: The original criteria key (for error reporting).
        lhs: Left-hand SQL expression.
        operator: SQL operator, possibly rewritten by a mutator.
        value: The comparison value from the criteria.
        offset: Ordinal of the next placeholder (``$offset``).
        params: Parameters consumed so far by this condition.
        rhs: Right-hand SQL once settled.
    """

    key: str
    lhs: str
    operator: str
    value: Any
    offset: int
    params: tuple[Any, ...] = ()
    rhs: str | None = None

    def to_sql(self) -> str:
        return f"{self.lhs} {self.operator} {self.rhs}"


Mutator = Callable[[Condition], Condition]


def placeholder(condition: Condition) -> Condition:
    """Bind the value to a single placeholder."""
    return replace(
        condition,
        params=(*condition.params, condition.value),
        rhs=f"${condition.offset}",
    )


def build_is(condition: Condition) -> Condition:
    """Emit ``IS``/``IS NOT`` with the literal null or boolean value."""
    operator = "IS" if condition.operator in ("=", "IS") else "IS NOT"
    value = condition.value
    if value is None:
        rhs = "NULL"
    elif isinstance(value, bool):
        rhs = "TRUE" if value else "FALSE"
    else:
        raise CompileError(
            f"'{operator}' comparisons require null or a boolean, "
            f"got {type(value).__name__}.",
            key=condition.key,
        )
    return replace(condition, operator=operator, rhs=rhs)


def build_in(condition: Condition) -> Condition:
    """Emit an ``IN``/``NOT IN`` list, or an always-true/false empty test."""
    values = list(condition.value)
    if not values:
        rhs = "ANY('{}')" if condition.operator == "=" else "ALL('{}')"
        return replace(condition, rhs=rhs)

    operator = "IN" if condition.operator == "=" else "NOT IN"
    placeholders = ",".join(
        f"${condition.offset + idx}{timestamp_cast(v)}" for idx, v in enumerate(values)
    )
    return replace(
        condition,
        operator=operator,
        params=(*condition.params, *values),
        rhs=f"({placeholders})",
    )


def equality(condition: Condition) -> Condition:
    """Equality overloads: literal ``IS`` for null/booleans, ``IN`` for lists."""
    value = condition.value
    if value is None or isinstance(value, bool):
        return build_is(condition)
    if isinstance(value, list | tuple):
        return build_in(condition)
    return replace(
        condition,
        params=(*condition.params, value),
        rhs=f"${condition.offset}{timestamp_cast(value)}",
    )


def build_between(condition: Condition) -> Condition:
    """Emit ``$n AND $n+1`` for a two-element range."""
    value = condition.value
    if not isinstance(value, list | tuple) or len(value) != 2:
        raise CompileError(
            "'between' requires a sequence of exactly two bounds.",
            key=condition.key,
        )
    low, high = value
    offset = condition.offset
    return replace(
        condition,
        params=(*condition.params, low, high),
        rhs=f"${offset}{timestamp_cast(low)} AND ${offset + 1}{timestamp_cast(high)}",
    )


def literalize_array(condition: Condition) -> Condition:
    """Serialize a list into one Postgres array-literal parameter."""
    value = condition.value
    param = array_literal(value) if isinstance(value, list | tuple) else value
    return replace(
        condition,
        params=(*condition.params, param),
        rhs=f"${condition.offset}{timestamp_cast(value)}",
    )


def require_array(condition: Condition) -> Condition:
    """Like :func:`literalize_array`, but the value must be a list."""
    if not isinstance(condition.value, list | tuple):
        raise CompileError(
            f"Operator {condition.operator} needs a list value.", key=condition.key
        )
    return literalize_array(condition)


@dataclass(frozen=True)
class OperatorSpec:
    """An entry in the operator table."""

    token: str
    sql: str
    mutator: Mutator | None = None

    def apply(self, condition: Condition) -> Condition:
        """Run the mutator, or bind the value to a plain placeholder."""
        condition = replace(condition, operator=self.sql)
        if self.mutator is None:
            return placeholder(condition)
        return self.mutator(condition)


def _table(*specs: OperatorSpec) -> Mapping[str, OperatorSpec]:
    return MappingProxyType({s.token: s for s in specs})


OPERATORS: Mapping[str, OperatorSpec] = _table(
    # comparison
    OperatorSpec("=", "=", equality),
    OperatorSpec("!", "<>", equality),
    OperatorSpec("!=", "<>", equality),
    OperatorSpec("<>", "<>", equality),
    OperatorSpec(">", ">"),
    OperatorSpec("<", "<"),
    OperatorSpec(">=", ">="),
    OperatorSpec("<=", "<="),
    OperatorSpec("between", "BETWEEN", build_between),
    # array
    OperatorSpec("@>", "@>", literalize_array),
    OperatorSpec("<@", "<@", literalize_array),
    OperatorSpec("&&", "&&", require_array),
    # json
    OperatorSpec("?", "?"),
    OperatorSpec("?|", "?|", require_array),
    OperatorSpec("?&", "?&", require_array),
    OperatorSpec("@?", "@?"),
    OperatorSpec("@@", "@@"),
    # pattern matching
    OperatorSpec("~~", "LIKE"),
    OperatorSpec("like", "LIKE"),
    OperatorSpec("!~~", "NOT LIKE"),
    OperatorSpec("not like", "NOT LIKE"),
    OperatorSpec("~~*", "ILIKE"),
    OperatorSpec("ilike", "ILIKE"),
    OperatorSpec("!~~*", "NOT ILIKE"),
    OperatorSpec("not ilike", "NOT ILIKE"),
    # regex
    OperatorSpec("similar to", "SIMILAR TO"),
    OperatorSpec("not similar to", "NOT SIMILAR TO"),
    OperatorSpec("~", "~"),
    OperatorSpec("!~", "!~"),
    OperatorSpec("~*", "~*"),
    OperatorSpec("!~*", "!~*"),
    # comparison predicates
    OperatorSpec("is", "IS", build_is),
    OperatorSpec("is not", "IS NOT", build_is),
    OperatorSpec("is distinct from", "IS DISTINCT FROM"),
    OperatorSpec("is not distinct from", "IS NOT DISTINCT FROM"),
)

EQUALITY = OPERATORS["="]


def lookup(remainder: str | None) -> OperatorSpec:
    """Find the operator named by a key remainder, defaulting to equality."""
    if not remainder:
        return EQUALITY
    spec = OPERATORS.get(remainder)
    if spec is None:
        logger.debug("No operator matches %r; assuming equality", remainder)
        return EQUALITY
    return spec
