"""
Query engine facade.

``QueryEngine`` ties the catalog, the join composer and the statement
builders together.  Every method returns a :class:`CompiledStatement`; the
engine never talks to a database.

Usage::

    engine = QueryEngine(Catalog.from_snapshot(snapshot))
    stmt = engine.find("users", {"age >=": 21}, {"order": [{"field": "name"}]})
    rows = driver.fetch(stmt.sql, *stmt.params)
    result = shape_results(stmt, rows)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from .catalog import Catalog, Relation
from .config import EngineSettings
from .decompose import decompose, merge_documents
from .join import CompoundRelation, JoinComposer
from .keys import resolve_key
from .options import (
    DeleteOptions,
    InsertOptions,
    SearchPlan,
    SelectOptions,
    UpdateOptions,
    parse_options,
)
from .predicate import DOCUMENT_COLUMN, RawPredicate
from .statements import CompiledStatement, Delete, Insert, Select, Update
from .utils import quote_identifier

if TYPE_CHECKING:
    from .decompose import DecompositionSchema

Source = str | Relation | CompoundRelation

_PARSERS = {
    "plain": "plainto_tsquery",
    "phrase": "phraseto_tsquery",
    "websearch": "websearch_to_tsquery",
}
_DOCUMENT_SEARCH_VECTOR = "search"


def _with(
    model: type[SelectOptions],
    options: SelectOptions | Mapping[str, Any] | None,
    **updates: Any,
) -> SelectOptions:
    return parse_options(model, options).model_copy(update=updates)


class QueryEngine:
    """
    Compile reads and writes against a catalog.

    Sources may be given as ``"name"``/``"schema.name"`` strings, catalog
    relations, or compound relations from :meth:`join`.
    """

    def __init__(
        self,
        catalog: Catalog,
        settings: EngineSettings | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.catalog = catalog
        self.composer = JoinComposer(catalog, self.settings)

    # -- relations -----------------------------------------------------------

    def relation(self, source: Source) -> Relation | CompoundRelation:
        if isinstance(source, str):
            return self.catalog.resolve(source)
        return source

    def join(self, source: str | Relation, definition: Any) -> CompoundRelation:
        relation = self.relation(source)
        return self.composer.join(relation, definition)  # type: ignore[arg-type]

    def reload(self, catalog: Catalog) -> None:
        """Swap in a new catalog and drop every cached compound relation."""
        self.catalog = catalog
        self.composer.reload(catalog)

    # -- reads ---------------------------------------------------------------

    def find(
        self,
        source: Source,
        criteria: Any = None,
        options: SelectOptions | Mapping[str, Any] | None = None,
    ) -> CompiledStatement:
        relation = self.relation(source)
        opts = parse_options(SelectOptions, options)
        return Select(
            relation,
            criteria,
            opts,
            decomposition=self._decomposition(relation, opts),
        ).compile()

    def find_one(
        self,
        source: Source,
        criteria: Any = None,
        options: SelectOptions | Mapping[str, Any] | None = None,
    ) -> CompiledStatement:
        return self.find(source, criteria, _with(SelectOptions, options, single=True))

    def find_doc(
        self,
        source: Source,
        criteria: Any = None,
        options: SelectOptions | Mapping[str, Any] | None = None,
    ) -> CompiledStatement:
        return self.find(source, criteria, _with(SelectOptions, options, document=True))

    def count(
        self,
        source: Source,
        criteria: Any = None,
        params: Sequence[Any] = (),
    ) -> CompiledStatement:
        """``SELECT COUNT(1)``; a string criteria is a raw predicate."""
        if isinstance(criteria, str):
            criteria = RawPredicate(criteria, tuple(params))
        options = SelectOptions(exprs={"count": "COUNT(1)"}, single=True)
        return Select(self.relation(source), criteria, options).compile()

    def count_doc(self, source: Source, criteria: Any = None) -> CompiledStatement:
        options = SelectOptions(exprs={"count": "COUNT(1)"}, single=True, document=True)
        return Select(self.relation(source), criteria, options).compile()

    def where(
        self,
        source: Source,
        conditions: str,
        params: Any = (),
        options: SelectOptions | Mapping[str, Any] | None = None,
    ) -> CompiledStatement:
        """Select with a caller-trusted predicate and its parameters."""
        if not isinstance(params, list | tuple):
            params = (params,)
        relation = self.relation(source)
        opts = parse_options(SelectOptions, options)
        return Select(
            relation,
            RawPredicate(conditions, tuple(params)),
            opts,
            decomposition=self._decomposition(relation, opts),
        ).compile()

    def search(
        self,
        source: Source,
        plan: SearchPlan | Mapping[str, Any],
        options: SelectOptions | Mapping[str, Any] | None = None,
    ) -> CompiledStatement:
        """
        Full-text search over ``plan.fields`` (or the raw ``plan.tsv``).

        Raises:
            ConfigurationError: If the plan has no term, or neither fields
                nor a vector expression.
        """
        relation = self.relation(source)
        search = parse_options(SearchPlan, plan)
        opts = parse_options(SelectOptions, options)
        criteria = self._search_predicate(relation, search, opts.document)
        return Select(
            relation,
            criteria,
            opts,
            decomposition=self._decomposition(relation, opts),
        ).compile()

    def search_doc(
        self,
        source: Source,
        plan: SearchPlan | Mapping[str, Any],
        options: SelectOptions | Mapping[str, Any] | None = None,
    ) -> CompiledStatement:
        """Full-text search over document body keys, or the ``search`` column."""
        if isinstance(plan, Mapping) and not plan.get("fields") and not plan.get("tsv"):
            plan = {**plan, "tsv": quote_identifier(_DOCUMENT_SEARCH_VECTOR)}
        search = parse_options(SearchPlan, plan)
        if search.fields:
            fields = tuple(f"{DOCUMENT_COLUMN}.{f}" for f in search.fields)
            search = search.model_copy(update={"fields": fields})
        relation = self.relation(source)
        opts = _with(SelectOptions, options, document=True)
        criteria = self._search_predicate(relation, search, True)
        return Select(relation, criteria, opts).compile()

    @staticmethod
    def _search_predicate(
        relation: Relation | CompoundRelation,
        plan: SearchPlan,
        document: bool,
    ) -> RawPredicate:
        if plan.tsv:
            vector = plan.tsv
        else:
            fields = [resolve_key(f, relation).lhs for f in plan.fields or ()]
            if len(fields) == 1:
                document_text = fields[0]
            else:
                # words from adjacent fields must not run together
                document_text = "concat(" + ", ' ', ".join(fields) + ")"
            vector = f"to_tsvector({document_text})"
        parser = _PARSERS.get(plan.parser or "", "to_tsquery")
        return RawPredicate(
            f"{vector} @@ {parser}($1)",
            (plan.term,),
            where=plan.where,
            is_document=document,
        )

    @staticmethod
    def _decomposition(
        relation: Relation | CompoundRelation, opts: SelectOptions
    ) -> DecompositionSchema | None:
        if relation.is_compound and not opts.document:
            return relation.decomposition  # type: ignore[union-attr]
        return None

    # -- writes --------------------------------------------------------------

    def insert(
        self,
        source: Source,
        record: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        options: InsertOptions | Mapping[str, Any] | None = None,
    ) -> CompiledStatement:
        return Insert(self.relation(source), record, options).compile()

    def update(
        self,
        source: Source,
        criteria: Any,
        changes: Mapping[str, Any],
        options: UpdateOptions | Mapping[str, Any] | None = None,
    ) -> CompiledStatement:
        return Update(self.relation(source), changes, criteria, options).compile()

    def update_doc(
        self,
        source: Source,
        criteria: Any,
        changes: Mapping[str, Any],
        options: UpdateOptions | Mapping[str, Any] | None = None,
    ) -> CompiledStatement:
        """Merge ``changes`` into the document body of matching rows."""
        opts = parse_options(UpdateOptions, options)
        opts = opts.model_copy(update={"document": True})
        return Update(self.relation(source), changes, criteria, opts).compile()

    def destroy(
        self,
        source: Source,
        criteria: Any = None,
        options: DeleteOptions | Mapping[str, Any] | None = None,
    ) -> CompiledStatement:
        return Delete(self.relation(source), criteria, options).compile()


def shape_results(
    statement: CompiledStatement, rows: Iterable[Mapping[str, Any]]
) -> list[dict[str, Any]] | dict[str, Any] | None:
    """
    Turn driver rows into the result the statement promises.

    Joined rows are decomposed, document rows are merged with their body,
    and ``single`` statements yield the first result or ``None``.
    """
    if statement.decomposition is not None:
        results = decompose(statement.decomposition, rows)
    elif statement.document:
        results = merge_documents(rows)
    else:
        results = [dict(r) for r in rows]
    if statement.single:
        return results[0] if results else None
    return results
