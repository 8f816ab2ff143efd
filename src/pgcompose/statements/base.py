"""
Shared statement machinery.

Every statement kind composes a :class:`BaseStatement`: the source
relation, the common ``only``/``single``/``document`` flags, the
``RETURNING`` list and the compiled predicate with its parameters.
Subclasses only decide how the pieces are laid out in :meth:`format`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from ..exceptions import CompileError
from ..keys import resolve_key
from ..predicate import (
    RawPredicate,
    compile_predicate,
    expand_pk_value,
    is_pk_search,
)
from ..utils import quote_path

if TYPE_CHECKING:
    from ..catalog import Relation
    from ..decompose import DecompositionSchema
    from ..join import CompoundRelation

logger = logging.getLogger("pgcompose.statements")


@dataclass(frozen=True)
class CompiledStatement:
    """
    A finished statement, ready for a driver.

    Attributes:
        sql: Statement text with ``$n`` placeholders.
        params: Values for the placeholders, in ordinal order.
        single: The caller expects at most one row.
        decomposition: Schema for folding joined rows into object trees.
        document: Rows come from a document table.
    """

    sql: str
    params: tuple[Any, ...] = ()
    single: bool = False
    decomposition: DecompositionSchema | None = None
    document: bool = False


class BaseStatement(ABC):
    """
    Common state for ``SELECT``, ``INSERT``, ``UPDATE`` and ``DELETE``.

    Statements are single-use: build, :meth:`compile`, discard.
    """

    kind: ClassVar[str] = "statement"
    accepts_raw_predicate: ClassVar[bool] = False

    def __init__(
        self,
        source: Relation | CompoundRelation,
        *,
        only: bool = False,
        single: bool = False,
        document: bool = False,
        fields: Sequence[str] | None = None,
        returning: bool = True,
    ) -> None:
        self.source = source
        self.only = only
        self.single = single
        self.document = document
        self.decomposition: DecompositionSchema | None = None
        self.returning: list[str] | None = (
            self._returning_list(fields) if returning else None
        )
        self.predicate = "TRUE"
        self.params: tuple[Any, ...] = ()

    def _returning_list(self, fields: Sequence[str] | None) -> list[str]:
        if not fields:
            return ["*"]
        return [resolve_key(f, self.source).lhs for f in fields]

    # -- criteria ------------------------------------------------------------

    def set_criteria(
        self,
        criteria: Mapping[str, Any] | RawPredicate | Any,
        initial_params: Sequence[Any] = (),
    ) -> None:
        """
        Compile ``criteria`` into this statement's predicate.

        ``initial_params`` are bound ahead of the criteria parameters (an
        ``UPDATE``'s assignments, for example).  A bare primary-key value
        or a mapping keyed by exactly the primary key is a primary-key
        search, which never uses document mode; a bare value also implies
        ``single`` against a plain relation.

        Raises:
            CompileError: If the criteria are malformed or a raw predicate
                is given to a statement that does not accept one.
        """
        initial = tuple(initial_params)
        document = self.document

        if isinstance(criteria, RawPredicate):
            if not self.accepts_raw_predicate:
                raise CompileError(
                    f"Raw predicates are not supported by {self.kind} statements."
                )
        elif criteria is None:
            criteria = {}
        elif not isinstance(criteria, Mapping):
            criteria = expand_pk_value(self.source, criteria)
            document = False
            if not self.source.is_compound:
                self.single = True
        elif is_pk_search(self.source, criteria):
            document = False

        compiled = compile_predicate(
            self.source, criteria, len(initial), document=document
        )
        self.predicate = compiled.text
        self.params = initial + compiled.params

    # -- rendering -----------------------------------------------------------

    def returning_clause(self) -> str | None:
        if self.returning is None:
            return None
        return f"RETURNING {', '.join(self.returning)}"

    def compound_returning_clause(self) -> str | None:
        """``RETURNING`` for writes through a join: the origin's columns."""
        if self.returning is None:
            return None
        if self.returning == ["*"]:
            return f"RETURNING {self.source.delimited_full_name}.*"
        return self.returning_clause()

    @staticmethod
    def join_clauses(nodes: Sequence[Any]) -> list[str]:
        return [f"{n.join_type} JOIN {n.target} ON {n.on}" for n in nodes]

    @staticmethod
    def quote_relation_path(path: str) -> str:
        return quote_path(*(p.strip().strip('"') for p in path.split(".")))

    @abstractmethod
    def format(self) -> str:
        """Render the statement text."""

    def compile(self) -> CompiledStatement:
        sql = self.format()
        logger.debug(
            "Compiled %s on %s with %d parameter(s): %s",
            self.kind,
            self.source.name,
            len(self.params),
            sql,
        )
        return CompiledStatement(
            sql=sql,
            params=self.params,
            single=self.single,
            decomposition=self.decomposition,
            document=self.document,
        )
