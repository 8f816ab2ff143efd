"""
Compose relations into compound relations.

A join definition attaches relations to an origin relation::

    "posts"                                  # one relation by name
    ["posts", "audit.comments"]              # several, all off the origin
    {
        "posts": {
            "type": "LEFT OUTER",
            "comments": {"on": {"post_id": "posts.id"}},
        },
        "author": {"relation": "users", "on": {"id": "posts.user_id"},
                   "decomposeTo": "object"},
    }

Keys name a relation (optionally ``schema.name``) or, with ``relation``,
an alias.  When ``on`` is omitted the join predicate is derived from the
single foreign key connecting the relation to its parent.  Join clauses
and the aliased column list are kept in pre-order, since Postgres does not
reorder ``JOIN`` clauses for us.

Finished compound relations are memoized by a hash of the origin and the
definition.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from .decompose import DecompositionSchema
from .exceptions import ConfigurationError, KeyResolutionError, SchemaError
from .keys import lex_key, resolve_key
from .operators import OPERATORS, build_is, equality
from .utils import quote_identifier, quote_path, render_literal

if TYPE_CHECKING:
    from .catalog import Catalog, Relation
    from .config import EngineSettings
    from .keys import ResolvedKey

logger = logging.getLogger("pgcompose.join")

JOIN_TYPES = frozenset(
    {"INNER", "LEFT", "LEFT OUTER", "RIGHT", "RIGHT OUTER", "FULL", "FULL OUTER"}
)
_RESERVED_KEYS = frozenset(
    {"type", "on", "relation", "pk", "omit", "decomposeTo", "decompose_to"}
)


# ---------------------------------------------------------------------------
# Compound relation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JoinColumn:
    """A member column as it appears in a joined select list."""

    name: str
    full_name: str
    alias: str


@dataclass(frozen=True)
class JoinNode:
    """
    One joined relation.

    Attributes:
        alias: Unique name of the member within the compound relation.
        relation: The catalog relation joined in.
        join_type: ``INNER``, ``LEFT OUTER``, ...
        on: Rendered join predicate.
        target: ``FROM`` item: ``"alias"`` or ``"rel" AS "alias"``.
        parent_alias: Alias of the member this node hangs off.
    """

    alias: str
    relation: Relation
    join_type: str
    on: str
    target: str
    parent_alias: str
    on_map: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class CompoundRelation:
    """
    An origin relation plus joined members, queried like a single relation.

    Exposes the same read interface as :class:`~pgcompose.catalog.Relation`;
    names and column lists refer to the origin, while ``columns`` lists
    every member column under its ``<alias>__<column>`` alias.
    """

    origin: Relation
    joins: tuple[JoinNode, ...]
    columns: tuple[JoinColumn, ...]
    decomposition: DecompositionSchema
    primary_key: tuple[str, ...]

    @property
    def is_compound(self) -> bool:
        return True

    @property
    def name(self) -> str:
        return self.origin.name

    @property
    def schema_name(self) -> str:
        return self.origin.schema_name

    @property
    def default_schema(self) -> str:
        return self.origin.default_schema

    @property
    def identity(self) -> tuple[str, str]:
        return self.origin.identity

    @property
    def path(self) -> str:
        return self.origin.path

    @property
    def delimited_full_name(self) -> str:
        return self.origin.delimited_full_name

    @property
    def column_names(self) -> tuple[str, ...]:
        return self.origin.column_names

    def has_column(self, name: str) -> bool:
        return self.origin.has_column(name)

    def member(self, alias: str) -> JoinNode:
        for node in self.joins:
            if node.alias == alias:
                return node
        raise SchemaError(
            f"No member '{alias}' in the join on '{self.name}'.",
            name=alias,
            candidates=[n.alias for n in self.joins],
        )


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class CompoundRelationCache:
    """
    Compound relations keyed by definition hash.

    Insert-if-absent runs under a lock so a definition is built once.  With
    ``max_size`` set, the oldest entry is evicted first.
    """

    def __init__(self, max_size: int | None = None) -> None:
        self.max_size = max_size
        self._entries: OrderedDict[str, CompoundRelation] = OrderedDict()
        self._lock = threading.Lock()

    def get_or_create(
        self, key: str, factory: Callable[[], CompoundRelation]
    ) -> CompoundRelation:
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                logger.debug("Compound relation cache hit %s", key[:12])
                return cached
            value = factory()
            self._entries[key] = value
            if self.max_size is not None and len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted compound relation %s", evicted[:12])
            return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------


def definition_key(origin: Relation, definition: Any) -> str:
    """Hash of an origin and join definition, in declaration order."""
    normalised = json.dumps(definition, default=str)
    return hashlib.sha256(f"{origin.path}.{normalised}".encode()).hexdigest()


@dataclass
class _Build:
    seen: list[str]
    joins: list[JoinNode] = field(default_factory=list)
    columns: list[JoinColumn] = field(default_factory=list)


class JoinComposer:
    """
    Build :class:`CompoundRelation` values from join definitions.

    Usage::

        composer = JoinComposer(catalog, EngineSettings())
        users_posts = composer.join(catalog.get("users"), "posts")
    """

    def __init__(self, catalog: Catalog, settings: EngineSettings) -> None:
        self.catalog = catalog
        self.settings = settings
        self.cache = CompoundRelationCache(settings.max_cached_joins)

    def reload(self, catalog: Catalog) -> None:
        """Use ``catalog`` from now on; cached compound relations are dropped."""
        self.catalog = catalog
        dropped = len(self.cache)
        self.cache.clear()
        logger.info("Catalog reloaded; dropped %d compound relation(s)", dropped)

    def join(self, origin: Relation, definition: Any) -> CompoundRelation:
        """
        Compose ``origin`` with the relations named by ``definition``.

        Raises:
            SchemaError: On unknown relations, repeated aliases, missing
                primary keys, or missing/ambiguous foreign keys.
        """
        if origin.is_compound:
            raise SchemaError(f"'{origin.name}' is already a compound relation.")
        if not self.settings.cache_joins:
            return self._build(origin, definition)
        key = definition_key(origin, definition)
        return self.cache.get_or_create(key, lambda: self._build(origin, definition))

    # -- construction --------------------------------------------------------

    def _build(self, origin: Relation, definition: Any) -> CompoundRelation:
        tree = _normalise_definition(definition)
        root_pk = _as_tuple(tree.pop("pk", None)) or origin.primary_key
        if not root_pk:
            raise SchemaError(
                f"Missing explicit pk in join definition for '{origin.name}'.",
                name=origin.name,
            )

        state = _Build(
            seen=[origin.name],
            columns=[
                JoinColumn(
                    name=c,
                    full_name=quote_path(origin.name, c),
                    alias=origin.alias_field(c),
                )
                for c in origin.column_names
            ],
        )
        children: dict[str, DecompositionSchema] = {}
        for key, spec in tree.items():
            children.update(self._attach(key, spec, origin, origin.name, state))

        decomposition = DecompositionSchema(
            pk=tuple(origin.alias_field(c) for c in root_pk),
            columns={origin.alias_field(c): c for c in origin.column_names},
            children=children,
        )
        compound = CompoundRelation(
            origin=origin,
            joins=tuple(state.joins),
            columns=tuple(state.columns),
            decomposition=decomposition,
            primary_key=root_pk,
        )
        # join predicates reference other members, so they are rendered
        # once every member is known
        joins = tuple(
            replace(node, on=_render_on(node.on_map, node, compound))
            for node in compound.joins
        )
        compound = replace(compound, joins=joins)
        logger.debug(
            "Built compound relation on %s joining %s",
            origin.path,
            ", ".join(n.alias for n in joins),
        )
        return compound

    def _attach(
        self,
        key: str,
        spec: Any,
        parent: Relation,
        parent_ref: str,
        state: _Build,
    ) -> dict[str, DecompositionSchema]:
        node_spec = _normalise_node(key, spec)
        tokens = lex_key(node_spec.get("relation") or key).tokens
        if not tokens:
            raise SchemaError(f"Bad join definition: empty relation for '{key}'.")
        name = tokens[-1]
        schema = tokens[0] if len(tokens) > 1 else None
        alias = key if "relation" in node_spec else name

        relation = self.catalog.find(name, schema)
        if relation is None:
            raise SchemaError(
                f"Bad join definition: unknown relation "
                f"'{node_spec.get('relation') or key}'.",
                name=name,
                candidates=[r.name for r in self.catalog],
            )
        if alias in state.seen:
            raise SchemaError(
                f"Bad join definition: alias '{alias}' is repeated.", name=alias
            )
        pk = _as_tuple(node_spec.get("pk")) or relation.primary_key
        if not pk:
            raise SchemaError(
                f"Missing explicit pk in join definition for '{alias}'.", name=alias
            )
        state.seen.append(alias)

        on_map = node_spec.get("on")
        if on_map is None:
            on_map = _candidate_join_key(relation, parent, parent_ref, alias)
        elif not isinstance(on_map, Mapping) or not on_map:
            raise SchemaError(
                f"Bad join definition: 'on' for '{alias}' must be a non-empty mapping."
            )

        target = quote_identifier(alias)
        if target != relation.delimited_full_name:
            target = f"{relation.delimited_full_name} AS {target}"

        state.joins.append(
            JoinNode(
                alias=alias,
                relation=relation,
                join_type=self._join_type(node_spec.get("type")),
                on="",
                target=target,
                parent_alias=parent_ref,
                on_map=dict(on_map),
            )
        )
        state.columns.extend(
            JoinColumn(
                name=c,
                full_name=quote_path(alias, c),
                alias=f"{alias}__{c}",
            )
            for c in relation.column_names
        )

        grandchildren: dict[str, DecompositionSchema] = {}
        for child_key, child_spec in node_spec.items():
            if child_key not in _RESERVED_KEYS:
                grandchildren.update(
                    self._attach(child_key, child_spec, relation, alias, state)
                )

        if node_spec.get("omit"):
            # joined for filtering only: descendants attach to our parent
            return grandchildren
        return {
            alias: DecompositionSchema(
                pk=tuple(f"{alias}__{c}" for c in pk),
                columns={f"{alias}__{c}": c for c in relation.column_names},
                decompose_to=(
                    node_spec.get("decomposeTo")
                    or node_spec.get("decompose_to")
                    or "array"
                ),
                children=grandchildren,
            )
        }

    def _join_type(self, value: Any) -> str:
        if value is None:
            join_type = self.settings.default_join_type
        else:
            join_type = " ".join(str(value).upper().split())
        if join_type not in JOIN_TYPES:
            raise ConfigurationError(
                f"Unsupported join type {join_type!r}.", option="type"
            )
        return join_type


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _as_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def _normalise_definition(definition: Any) -> dict[str, Any]:
    if isinstance(definition, str):
        return {definition: {}}
    if isinstance(definition, list | tuple):
        return {d: {} for d in definition}
    if isinstance(definition, Mapping):
        return dict(definition)
    raise SchemaError(
        f"Bad join definition: expected a string, list or mapping, "
        f"got {type(definition).__name__}."
    )


def _normalise_node(key: str, spec: Any) -> Mapping[str, Any]:
    if spec is None or spec is True:
        return {}
    if isinstance(spec, Mapping):
        return spec
    raise SchemaError(f"Bad join definition for '{key}': expected a mapping.")


def _candidate_join_key(
    relation: Relation, parent: Relation, parent_ref: str, alias: str
) -> dict[str, str]:
    """
    Derive ``on`` from the one foreign key linking ``relation`` and ``parent``.

    Keys are columns of ``relation``; values reference parent columns
    through ``parent_ref``, whichever side declared the foreign key.
    """
    candidates: dict[str, dict[str, str]] = {}
    if relation.identity == parent.identity:
        # self join: the key's own columns reference the parent's
        links = [
            (fk, fk.origin_columns, fk.dependent_columns)
            for fk in relation.foreign_keys
            if (fk.origin_schema, fk.origin_name) == relation.identity
        ]
    else:
        links = [
            (fk, fk.dependent_columns, fk.origin_columns)
            for fk in relation.foreign_keys
            if (fk.origin_schema, fk.origin_name) == parent.identity
        ]
        links += [
            (fk, fk.origin_columns, fk.dependent_columns)
            for fk in parent.foreign_keys
            if (fk.origin_schema, fk.origin_name) == relation.identity
        ]
    for fk, left, right in links:
        candidates[fk.name] = {
            col: f"{parent_ref}.{ref}" for col, ref in zip(left, right, strict=True)
        }

    if not candidates:
        raise SchemaError(
            f"An explicit 'on' mapping is required for '{alias}': no foreign "
            f"key links it to '{parent.name}'.",
            name=alias,
        )
    if len(candidates) > 1:
        raise SchemaError(
            f"Ambiguous foreign keys for '{alias}' "
            f"({', '.join(sorted(candidates))}); define 'on' explicitly.",
            name=alias,
        )
    return next(iter(candidates.values()))


def _render_on(
    criteria: Mapping[str, Any], node: JoinNode, compound: CompoundRelation
) -> str:
    """
    Render an ``on`` mapping for ``node``.

    Keys are columns of the joined member, optionally followed by an
    operator.  String values naming a column of the compound relation
    become column references; other values are inlined as literals.
    """
    conjuncts = []
    for key, reference in criteria.items():
        if key == "or":
            if (
                not isinstance(reference, list | tuple)
                or not reference
                or not all(isinstance(r, Mapping) for r in reference)
            ):
                raise SchemaError(
                    f"Bad join definition: 'or' in the 'on' for '{node.alias}' "
                    "must be a non-empty list of mappings."
                )
            alternatives = [_render_on(r, node, compound) for r in reference]
            conjuncts.append(f"({' OR '.join(alternatives)})")
            continue

        resolved = resolve_key(f"{node.alias}.{key}", compound)
        if not _is_column(resolved, compound):
            raise SchemaError(
                f"Bad join definition: '{node.alias}' has no column "
                f"'{resolved.field}'.",
                name=resolved.field,
                candidates=list(node.relation.column_names),
            )
        spec = OPERATORS.get(resolved.remainder or "=")
        if spec is None or spec.mutator not in (None, equality, build_is):
            raise SchemaError(
                f"Bad join definition: operator {resolved.remainder!r} cannot "
                f"be used in the 'on' for '{node.alias}'."
            )

        operator = spec.sql
        if spec.mutator is equality and (
            reference is None or isinstance(reference, bool)
        ):
            operator = "IS" if spec.sql == "=" else "IS NOT"
        if isinstance(reference, str):
            rhs = _render_reference(reference, node, compound)
        else:
            rhs = render_literal(reference)
        conjuncts.append(f"({resolved.lhs} {operator} {rhs})")

    if len(conjuncts) > 1:
        return f"({' AND '.join(conjuncts)})"
    return conjuncts[0]


def _is_column(resolved: ResolvedKey, compound: CompoundRelation) -> bool:
    if resolved.alias is not None:
        return compound.member(resolved.alias).relation.has_column(resolved.field)
    return compound.origin.has_column(resolved.field)


def _render_reference(
    reference: str, node: JoinNode, compound: CompoundRelation
) -> str:
    """Column reference for ``reference``, or a literal when it names none."""
    origin = compound.origin
    names = {origin.name, origin.schema_name}
    for member in compound.joins:
        names.update((member.alias, member.relation.name))
    lexed = lex_key(reference)
    qualified = (
        len(lexed.tokens) > 1
        and bool(lexed.path_shape)
        and lexed.path_shape[0]
        and lexed.tokens[0] in names
    )

    resolved: ResolvedKey | None
    try:
        resolved = resolve_key(reference, compound)
    except KeyResolutionError:
        resolved = None
    if (
        resolved is not None
        and not resolved.remainder
        and _is_column(resolved, compound)
    ):
        return resolved.lhs
    if qualified:
        raise SchemaError(
            f"Bad join definition: {reference!r} in the 'on' for '{node.alias}' "
            "does not name a column.",
            name=reference,
            candidates=[c.full_name.replace('"', "") for c in compound.columns],
        )
    return render_literal(reference)
