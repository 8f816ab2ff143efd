"""
``INSERT`` statements, including upserts and deep inserts.

A deep insert writes one record plus dependent records in other relations
as a single statement::

    WITH inserted AS (INSERT INTO "users" ... RETURNING *),
         q_0_0 AS (INSERT INTO "posts" ("user_id", "title")
                   SELECT "id", $3 FROM inserted)
    SELECT * FROM inserted

Dependent records mark the columns that receive the new row's primary key
with :data:`FROM_PARENT`.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Final

from ..exceptions import CompileError, ConfigurationError, SchemaError
from ..options import ConflictSpec, InsertOptions, parse_options
from ..utils import quote_identifier
from .base import BaseStatement

if TYPE_CHECKING:
    from ..catalog import Relation
    from ..join import CompoundRelation


class _FromParent:
    __slots__ = ()

    def __repr__(self) -> str:
        return "FROM_PARENT"


FROM_PARENT: Final = _FromParent()


class Insert(BaseStatement):
    """
    An ``INSERT`` of one record or a batch.

    The column list is the ordered union of keys across the batch,
    restricted to the relation's columns.  Keys that are not columns are
    *junctions*: with a compound source or ``deep_insert`` they name the
    relations that receive dependent records.
    """

    kind = "INSERT"

    def __init__(
        self,
        source: Relation | CompoundRelation,
        record: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        options: InsertOptions | Mapping[str, Any] | None = None,
    ) -> None:
        opts = parse_options(InsertOptions, options)
        super().__init__(
            source,
            fields=opts.fields,
            returning=opts.returning,
        )
        self.options = opts

        is_batch = not isinstance(record, Mapping)
        self.records: list[Mapping[str, Any]] = list(record) if is_batch else [record]
        if not self.records:
            raise CompileError("Nothing to insert: the batch is empty.")
        self.single = not is_batch

        keys = self._field_set(self.records)
        column_names = set(source.column_names)
        self.columns = [k for k in keys if k in column_names]
        junctions = [k for k in keys if k not in column_names]
        self.on_conflict = self._parse_on_conflict(opts)

        self.params = tuple(
            r.get(c) for r in self.records for c in self.columns
        )
        self.junctions: list[str] = []
        if junctions and (source.is_compound or opts.deep_insert):
            if len(self.records) > 1:
                raise CompileError(
                    "Deep and multi-relation inserts only support a single record."
                )
            self.junctions = junctions
            self.params += self._junction_params(self.records[0])

    @staticmethod
    def _field_set(records: Sequence[Mapping[str, Any]]) -> list[str]:
        seen: dict[str, None] = {}
        for record in records:
            for key in record:
                seen.setdefault(key, None)
        return list(seen)

    def _junction_params(self, record: Mapping[str, Any]) -> tuple[Any, ...]:
        params: list[Any] = []
        for junction in self.junctions:
            dependents = record[junction]
            if not isinstance(dependents, list | tuple):
                raise CompileError(
                    "Dependent records in a deep or multi-relation insert "
                    "must be supplied as lists.",
                    key=junction,
                )
            for dependent in dependents:
                if not isinstance(dependent, Mapping):
                    raise CompileError(
                        "Dependent records must be mappings.", key=junction
                    )
                params.extend(v for v in dependent.values() if v is not FROM_PARENT)
        return tuple(params)

    # -- conflict handling ---------------------------------------------------

    @staticmethod
    def _parse_on_conflict(opts: InsertOptions) -> ConflictSpec | None:
        given = [
            name
            for name, value in (
                ("on_conflict_ignore", opts.on_conflict_ignore or None),
                ("on_conflict_update", opts.on_conflict_update),
                ("on_conflict", opts.on_conflict),
            )
            if value is not None
        ]
        if len(given) > 1:
            raise ConfigurationError(
                "The on_conflict_ignore, on_conflict_update and on_conflict "
                "options are mutually exclusive.",
                option=given[1],
            )
        if opts.on_conflict_ignore:
            return ConflictSpec(action="ignore")
        if opts.on_conflict_update:
            return ConflictSpec(
                action="update",
                target=opts.on_conflict_update,
                exclude=opts.on_conflict_update_exclude,
            )
        return opts.on_conflict

    def _conflict_clause(self) -> str | None:
        conflict = self.on_conflict
        if conflict is None:
            return None
        if conflict.action is None:
            raise ConfigurationError(
                "on_conflict must specify an action of ignore or update.",
                option="on_conflict",
            )

        parts = ["ON CONFLICT"]
        if conflict.target:
            parts.append(f"({', '.join(quote_identifier(t) for t in conflict.target)})")
        elif conflict.target_expr:
            parts.append(f"({conflict.target_expr})")

        if conflict.action == "ignore":
            parts.append("DO NOTHING")
            return " ".join(parts)

        if not (conflict.target or conflict.target_expr):
            raise ConfigurationError(
                "ON CONFLICT DO UPDATE requires a conflict target.",
                option="on_conflict",
            )
        excluded = set(conflict.exclude) | set(conflict.target or ())
        assignments = [
            f"{quote_identifier(c)} = EXCLUDED.{quote_identifier(c)}"
            for c in self.columns
            if c not in excluded
        ]
        if not assignments:
            raise ConfigurationError(
                "ON CONFLICT DO UPDATE leaves no column to update.",
                option="on_conflict",
            )
        parts.append(f"DO UPDATE SET {', '.join(assignments)}")
        return " ".join(parts)

    # -- rendering -----------------------------------------------------------

    def _values_clause(self) -> str:
        if not self.columns:
            if len(self.records) > 1:
                raise CompileError("Nothing to insert: no record names a column.")
            return "DEFAULT VALUES"

        width = len(self.columns)
        rows = []
        for idx in range(len(self.records)):
            start = idx * width + 1
            placeholders = ", ".join(f"${n}" for n in range(start, start + width))
            rows.append(f"({placeholders})")
        columns = ", ".join(quote_identifier(c) for c in self.columns)
        return f"({columns}) VALUES {', '.join(rows)}"

    def _junction_target(self, junction: str) -> str:
        if self.source.is_compound:
            for node in self.source.joins:
                if node.alias == junction:
                    return node.relation.delimited_full_name
        return self.quote_relation_path(junction)

    def _junction_queries(self, offset: int) -> list[str]:
        primary_key = self.source.primary_key
        if not primary_key:
            raise SchemaError(
                f"Deep insert into '{self.source.name}' requires a primary key.",
                name=self.source.name,
            )
        parent_keys = ", ".join(quote_identifier(c) for c in primary_key)

        queries: list[str] = []
        for idx, junction in enumerate(self.junctions):
            target = self._junction_target(junction)
            for jdx, dependent in enumerate(self.records[0][junction]):
                key_columns = [k for k, v in dependent.items() if v is FROM_PARENT]
                value_columns = [
                    k for k, v in dependent.items() if v is not FROM_PARENT
                ]
                if len(key_columns) != len(primary_key):
                    raise CompileError(
                        f"Dependent records for '{junction}' must mark "
                        f"{len(primary_key)} column(s) with FROM_PARENT.",
                        key=junction,
                    )
                columns = ", ".join(
                    quote_identifier(c) for c in key_columns + value_columns
                )
                select_list = [parent_keys]
                select_list.extend(
                    f"${n}" for n in range(offset, offset + len(value_columns))
                )
                offset += len(value_columns)
                queries.append(
                    f"q_{idx}_{jdx} AS (INSERT INTO {target} ({columns}) "
                    f"SELECT {', '.join(select_list)} FROM inserted)"
                )
        return queries

    def format(self) -> str:
        parts = ["INSERT INTO"]
        parts.append(self.source.delimited_full_name)
        parts.append(self._values_clause())
        conflict = self._conflict_clause()
        if conflict:
            parts.append(conflict)

        if not self.junctions:
            returning = self.returning_clause()
            if returning:
                parts.append(returning)
            return " ".join(parts)

        # the CTE must return the parent row for dependents to reference
        parts.append(self.returning_clause() or "RETURNING *")
        offset = len(self.records) * len(self.columns) + 1
        queries = self._junction_queries(offset)
        head = " ".join(parts)
        return f"WITH inserted AS ({head}), {', '.join(queries)} SELECT * FROM inserted"
