"""``UPDATE`` statements."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..exceptions import CompileError
from ..options import UpdateOptions, parse_options
from ..predicate import DOCUMENT_COLUMN
from ..utils import quote_identifier, timestamp_cast
from .base import BaseStatement

if TYPE_CHECKING:
    from ..catalog import Relation
    from ..join import CompoundRelation


class Update(BaseStatement):
    """
    An ``UPDATE`` of the rows matching ``criteria``.

    ``changes`` is restricted to real columns and bound as parameters ahead
    of the criteria parameters; ``options.exprs`` assigns raw SQL.  In
    document mode ``changes`` is merged into the document body and criteria
    keys traverse it.
    """

    kind = "UPDATE"

    def __init__(
        self,
        source: Relation | CompoundRelation,
        changes: Mapping[str, Any],
        criteria: Mapping[str, Any] | Any = None,
        options: UpdateOptions | Mapping[str, Any] | None = None,
    ) -> None:
        opts = parse_options(UpdateOptions, options)
        super().__init__(
            source,
            only=opts.only,
            single=opts.single,
            document=opts.document,
            fields=opts.fields,
            returning=opts.returning,
        )
        self.options = opts
        exprs = dict(opts.exprs or {})

        duplicates = [k for k in changes if k in exprs]
        if duplicates:
            raise CompileError(
                f"Column {duplicates[0]!r} appears in both changes and exprs.",
                key=duplicates[0],
            )

        if opts.document:
            self.assignments, params = self._document_assignment(changes)
        else:
            self.assignments, params = self._column_assignments(changes)
        self.assignments.extend(
            f"{quote_identifier(k)} = {v}"
            for k, v in exprs.items()
            if k in source.column_names
        )
        if not self.assignments:
            raise CompileError(f"Nothing to update in '{source.name}'.")

        self.set_criteria(criteria, params)

    def _column_assignments(
        self, changes: Mapping[str, Any]
    ) -> tuple[list[str], list[Any]]:
        assignments: list[str] = []
        params: list[Any] = []
        for key, value in changes.items():
            if key not in self.source.column_names:
                continue
            params.append(value)
            assignments.append(
                f"{quote_identifier(key)} = ${len(params)}{timestamp_cast(value)}"
            )
        return assignments, params

    @staticmethod
    def _document_assignment(
        changes: Mapping[str, Any],
    ) -> tuple[list[str], list[Any]]:
        if not changes:
            return [], []
        body = quote_identifier(DOCUMENT_COLUMN)
        return [f"{body} = {body} || $1::jsonb"], [json.dumps(changes, default=str)]

    def format(self) -> str:
        parts = ["UPDATE"]
        if self.only:
            parts.append("ONLY")
        parts.append(self.source.delimited_full_name)
        parts.append(f"SET {', '.join(self.assignments)}")

        if self.source.is_compound and self.source.joins:
            # the first joined relation is the FROM item; its join
            # predicate moves into WHERE
            first, *rest = self.source.joins
            parts.append(f"FROM {first.target}")
            parts.extend(self.join_clauses(rest))
            parts.append(f"WHERE {first.on} AND ({self.predicate})")
            returning = self.compound_returning_clause()
        else:
            parts.append(f"WHERE {self.predicate}")
            returning = self.returning_clause()

        if returning:
            parts.append(returning)
        return " ".join(parts)
