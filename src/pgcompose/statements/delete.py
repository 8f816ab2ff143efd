"""``DELETE`` statements."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..options import DeleteOptions, parse_options
from .base import BaseStatement

if TYPE_CHECKING:
    from ..catalog import Relation
    from ..join import CompoundRelation


class Delete(BaseStatement):
    """
    A ``DELETE`` of the rows matching ``criteria``.

    Against a compound relation the first joined relation becomes the
    ``USING`` item and the rest are joined onto it.
    """

    kind = "DELETE"

    def __init__(
        self,
        source: Relation | CompoundRelation,
        criteria: Mapping[str, Any] | Any = None,
        options: DeleteOptions | Mapping[str, Any] | None = None,
    ) -> None:
        opts = parse_options(DeleteOptions, options)
        super().__init__(
            source,
            only=opts.only,
            single=opts.single,
            document=opts.document,
            fields=opts.fields,
            returning=opts.returning,
        )
        self.set_criteria(criteria)

    def format(self) -> str:
        parts = ["DELETE FROM"]
        if self.only:
            parts.append("ONLY")
        parts.append(self.source.delimited_full_name)

        if self.source.is_compound and self.source.joins:
            first, *rest = self.source.joins
            parts.append(f"USING {first.target}")
            parts.extend(self.join_clauses(rest))
            parts.append(f"WHERE {first.on} AND ({self.predicate})")
            returning = self.compound_returning_clause()
        else:
            parts.append(f"WHERE {self.predicate}")
            returning = self.returning_clause()

        if returning:
            parts.append(returning)
        return " ".join(parts)
