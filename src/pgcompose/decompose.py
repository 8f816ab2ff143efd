"""
Fold flat joined rows back into object trees.

A :class:`DecompositionSchema` mirrors a join tree.  Each node names the
aliased primary-key columns that identify an object, the mapping from
column alias to output key, and how its objects hang off their parent::

    DecompositionSchema(
        pk=("users__id",),
        columns={"users__id": "id", "users__name": "name"},
        children={
            "posts": DecompositionSchema(
                pk=("posts__id",),
                columns={"posts__id": "id", "posts__title": "title"},
            ),
        },
    )

Rows are walked once, in order.  Objects are de-duplicated by primary key
and keep first-seen order; a child whose key columns are all null (an
outer join that matched nothing) contributes nothing.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .exceptions import DecompositionError

DECOMPOSE_MODES = frozenset({"array", "object", "dictionary"})
DOCUMENT_HIDDEN_COLUMNS = frozenset({"body", "search"})

_SCHEMA_KEYS = frozenset({"pk", "columns", "decomposeTo", "decompose_to"})


@dataclass(frozen=True)
class DecompositionSchema:
    """
    One node of a decomposition tree.

    Attributes:
        pk: Aliases of the columns identifying an object.
        columns: Column alias to output key.
        decompose_to: ``array`` (default), ``object`` (the first match) or
            ``dictionary`` (keyed by primary key).
        children: Child nodes by the key they are nested under.
    """

    pk: tuple[str, ...]
    columns: Mapping[str, str]
    decompose_to: str = "array"
    children: Mapping[str, DecompositionSchema] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.pk:
            raise DecompositionError("A decomposition node needs a primary key.")
        if self.decompose_to not in DECOMPOSE_MODES:
            raise DecompositionError(
                f"Unknown decomposeTo {self.decompose_to!r}; expected one of "
                f"{', '.join(sorted(DECOMPOSE_MODES))}."
            )
        object.__setattr__(self, "pk", tuple(self.pk))
        object.__setattr__(self, "columns", MappingProxyType(dict(self.columns)))
        object.__setattr__(self, "children", MappingProxyType(dict(self.children)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DecompositionSchema:
        """
        Parse a caller-supplied schema.

        ``columns`` may be a list (aliases equal output keys) or a mapping
        of alias to output key; any key besides ``pk``, ``columns`` and
        ``decomposeTo`` is a child node.

        Raises:
            DecompositionError: If the mapping is malformed.
        """
        if not isinstance(data, Mapping):
            raise DecompositionError(
                f"A decomposition node must be a mapping, got {type(data).__name__}."
            )
        pk = data.get("pk")
        if isinstance(pk, str):
            pk = (pk,)
        if not pk:
            raise DecompositionError("A decomposition node needs a primary key.")

        raw_columns = data.get("columns") or {}
        if isinstance(raw_columns, Mapping):
            columns = dict(raw_columns)
        else:
            columns = {c: c for c in raw_columns}

        return cls(
            pk=tuple(pk),
            columns=columns,
            decompose_to=data.get("decomposeTo", data.get("decompose_to")) or "array",
            children={
                key: cls.from_dict(value)
                for key, value in data.items()
                if key not in _SCHEMA_KEYS
            },
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "pk": list(self.pk),
            "columns": dict(self.columns),
            "decomposeTo": self.decompose_to,
        }
        result.update({k: v.to_dict() for k, v in self.children.items()})
        return result


class _Node:
    __slots__ = ("data", "children")

    def __init__(self, data: dict[str, Any]) -> None:
        self.data = data
        self.children: dict[str, dict[Any, _Node]] = {}


def _identity(schema: DecompositionSchema, row: Mapping[str, Any]) -> Any:
    values = tuple(row.get(alias) for alias in schema.pk)
    if all(v is None for v in values):
        return None
    return values[0] if len(values) == 1 else values


def _absorb(
    schema: DecompositionSchema,
    registry: dict[Any, _Node],
    row: Mapping[str, Any],
    identity: Any,
) -> None:
    node = registry.get(identity)
    if node is None:
        node = registry[identity] = _Node(
            {name: row.get(alias) for alias, name in schema.columns.items()}
        )
    for key, child in schema.children.items():
        siblings = node.children.setdefault(key, {})
        child_identity = _identity(child, row)
        if child_identity is not None:
            _absorb(child, siblings, row, child_identity)


def _materialise(schema: DecompositionSchema, node: _Node) -> dict[str, Any]:
    result = dict(node.data)
    for key, child in schema.children.items():
        built = {
            identity: _materialise(child, n)
            for identity, n in node.children.get(key, {}).items()
        }
        if child.decompose_to == "object":
            result[key] = next(iter(built.values()), None)
        elif child.decompose_to == "dictionary":
            result[key] = built
        else:
            result[key] = list(built.values())
    return result


def decompose(
    schema: DecompositionSchema, rows: Iterable[Mapping[str, Any]]
) -> list[dict[str, Any]]:
    """
    Build the object forest described by ``schema`` from ``rows``.

    Raises:
        DecompositionError: If a row's root primary key is null.
    """
    roots: dict[Any, _Node] = {}
    for index, row in enumerate(rows):
        identity = _identity(schema, row)
        if identity is None:
            raise DecompositionError(
                f"Row {index} has no value for the root primary key "
                f"({', '.join(schema.pk)}).",
                row_index=index,
            )
        _absorb(schema, roots, row, identity)
    return [_materialise(schema, node) for node in roots.values()]


def merge_documents(rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Flatten document-table rows into their body plus ``id`` and metadata."""
    documents = []
    for row in rows:
        document = dict(row.get("body") or {})
        if "id" in row:
            document["id"] = row["id"]
        for key, value in row.items():
            if key not in DOCUMENT_HIDDEN_COLUMNS:
                document.setdefault(key, value)
        documents.append(document)
    return documents
