"""``SELECT`` statements."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..decompose import DecompositionSchema
from ..exceptions import ConfigurationError
from ..keys import resolve_key
from ..options import LockSpec, OrderSpec, SelectOptions, parse_options
from ..predicate import DOCUMENT_COLUMN
from ..utils import quote_identifier, quote_literal
from .base import BaseStatement

if TYPE_CHECKING:
    from ..catalog import Relation
    from ..join import CompoundRelation
    from ..predicate import RawPredicate


class Select(BaseStatement):
    """
    A ``SELECT`` against a plain or compound relation.

    Clause order is fixed: select list, ``FROM [ONLY]``, joins in pre-order,
    ``WHERE`` (plus the keyset comparison), ``ORDER BY``, lock,
    ``FETCH FIRST``, ``OFFSET``, ``LIMIT``.

    Usage::

        stmt = Select(users, {"age >=": 21}, {"order": [{"field": "name"}]})
        compiled = stmt.compile()
    """

    kind = "SELECT"
    accepts_raw_predicate = True

    def __init__(
        self,
        source: Relation | CompoundRelation,
        criteria: Mapping[str, Any] | RawPredicate | Any = None,
        options: SelectOptions | Mapping[str, Any] | None = None,
        *,
        decomposition: DecompositionSchema | None = None,
    ) -> None:
        opts = parse_options(SelectOptions, options)
        super().__init__(
            source,
            only=opts.only,
            single=opts.single,
            document=opts.document,
            returning=False,
        )
        self.options = opts
        self.distinct = opts.distinct
        self.lock = self._parse_lock(opts)

        self.set_criteria(criteria)

        self.select_list = self._build_select_list(opts.fields, opts.exprs)
        self.order = [self._order_entry(o, opts.order_body) for o in opts.order or ()]
        self.offset = opts.offset
        self.limit = opts.limit
        self.page_length = opts.page_length
        self.pagination = self._keyset_predicate(opts)

        if opts.decompose is not None:
            self.decomposition = DecompositionSchema.from_dict(opts.decompose)
        else:
            self.decomposition = decomposition

    # -- projection ----------------------------------------------------------

    def _build_select_list(
        self,
        fields: tuple[str, ...] | Mapping[str, Any] | None,
        exprs: tuple[str, ...] | Mapping[str, str] | None,
    ) -> list[str]:
        if isinstance(fields, Mapping):
            entries = list(self._expand_wildcard(fields).items())
        else:
            entries = [(f, f) for f in fields or ()]

        select_list: list[str] = []
        for alias, field in entries:
            if field == "*":
                select_list.append("*")
            elif self.document:
                lhs = resolve_key(f"{DOCUMENT_COLUMN}.{field}", self.source).lhs
                select_list.append(f"{lhs} AS {quote_identifier(alias)}")
            else:
                lhs = resolve_key(field, self.source).lhs
                if alias == field or lhs == quote_identifier(alias):
                    select_list.append(lhs)
                else:
                    select_list.append(f"{lhs} AS {quote_identifier(alias)}")

        if isinstance(exprs, Mapping):
            select_list.extend(
                f"{expr} AS {quote_identifier(name)}" for name, expr in exprs.items()
            )
        elif exprs:
            select_list.extend(exprs)

        if not select_list:
            if fields is None and exprs is None:
                return self._default_select_list()
            raise ConfigurationError(
                "At least one of fields or exprs, if supplied, must select "
                "a field or expression.",
                option="fields",
            )

        if self.document and fields:
            # document rows always carry their id
            select_list.insert(0, quote_identifier("id"))
        return select_list

    def _expand_wildcard(self, fields: Mapping[str, Any]) -> dict[str, str]:
        """Add unaliased columns for a ``{"*": True}`` entry."""
        expanded = {k: v for k, v in fields.items() if k != "*"}
        if fields.get("*"):
            mapped = set(expanded.values())
            for name in self.source.column_names:
                if name not in mapped:
                    expanded.setdefault(name, name)
        return expanded

    def _default_select_list(self) -> list[str]:
        if self.source.is_compound:
            return [
                f"{c.full_name} AS {quote_identifier(c.alias)}"
                for c in self.source.columns
            ]
        return ["*"]

    # -- ordering ------------------------------------------------------------

    def order_expression(self, spec: OrderSpec, use_body: bool = False) -> str:
        """Sort expression for one order entry, without direction."""
        as_text = spec.type is not None
        if spec.expr is not None:
            expr = spec.expr
        elif use_body:
            operator = "->>" if as_text else "->"
            field = spec.field or ""
            body = quote_identifier(DOCUMENT_COLUMN)
            expr = f"{body}{operator}{quote_literal(field)}"
        else:
            expr = resolve_key(spec.field or "", self.source, json_as_text=as_text).lhs

        if spec.type:
            return f"({expr})::{spec.type}"
        return expr

    def _order_entry(self, spec: OrderSpec, use_body: bool) -> str:
        entry = f"{self.order_expression(spec, use_body)} {spec.direction.upper()}"
        if spec.nulls:
            entry += f" NULLS {spec.nulls.upper()}"
        return entry

    # -- keyset pagination ---------------------------------------------------

    def _keyset_predicate(self, opts: SelectOptions) -> str | None:
        if opts.page_length is None:
            return None
        if not opts.order:
            raise ConfigurationError(
                "Keyset pagination with page_length requires an explicit order.",
                option="pageLength",
            )
        if {"offset", "limit"} & opts.model_fields_set:
            raise ConfigurationError(
                "Keyset pagination cannot be combined with offset or limit.",
                option="pageLength",
            )

        if opts.single:
            raise ConfigurationError(
                "Keyset pagination cannot be combined with single.",
                option="single",
            )

        with_last = [o.has_last for o in opts.order]
        if not any(with_last):
            # first page
            return None
        if not all(with_last):
            raise ConfigurationError(
                "Every order entry needs a last value once one has it.",
                option="order",
            )

        first = opts.order[0]

        columns = ",".join(self.order_expression(o) for o in opts.order)
        start = len(self.params)
        placeholders = ",".join(f"${start + i}" for i in range(1, len(opts.order) + 1))
        comparison = "<" if first.direction == "desc" else ">"
        self.params += tuple(o.last for o in opts.order)
        return f"({columns}) {comparison} ({placeholders})"

    # -- locking -------------------------------------------------------------

    @staticmethod
    def _parse_lock(opts: SelectOptions) -> LockSpec | None:
        given = [
            name
            for name in ("lock", "for_update", "for_share")
            if name in opts.model_fields_set and getattr(opts, name) is not None
        ]
        if len(given) > 1:
            raise ConfigurationError(
                "The lock, for_update and for_share options are mutually exclusive.",
                option=given[1],
            )
        if opts.for_update:
            return LockSpec(strength="UPDATE")
        if opts.for_share:
            return LockSpec(strength="SHARE")
        return opts.lock

    # -- rendering -----------------------------------------------------------

    def format(self) -> str:
        parts = ["SELECT"]
        if self.distinct:
            parts.append("DISTINCT")
        parts.append(",".join(self.select_list))
        parts.append("FROM")
        if self.only:
            parts.append("ONLY")
        parts.append(self.source.delimited_full_name)
        if self.source.is_compound:
            parts.extend(self.join_clauses(self.source.joins))
        parts.append(f"WHERE {self.predicate}")
        if self.pagination:
            parts.append(f"AND {self.pagination}")
        if self.order:
            parts.append(f"ORDER BY {','.join(self.order)}")
        if self.lock is not None:
            parts.append(f"FOR {self.lock.strength}")
            if self.lock.locked_rows:
                parts.append(self.lock.locked_rows)
        if self.page_length and not self.single:
            parts.append(f"FETCH FIRST {self.page_length} ROWS ONLY")
        if self.offset:
            parts.append(f"OFFSET {self.offset}")
        if self.single:
            parts.append("LIMIT 1")
        elif self.limit is not None:
            parts.append(f"LIMIT {self.limit}")
        return " ".join(parts)
