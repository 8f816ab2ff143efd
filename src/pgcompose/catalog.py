"""
Catalog of known relations.

The catalog is loaded once (from an introspection snapshot or from
SQLAlchemy table metadata) and is read-only afterwards, so readers never
need synchronisation.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .exceptions import SchemaError
from .utils import quote_path

if TYPE_CHECKING:
    from sqlalchemy import MetaData, Table

logger = logging.getLogger("pgcompose.catalog")

DEFAULT_SCHEMA = "public"


class _CatalogModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Column(_CatalogModel):
    """A column of a relation."""

    name: str
    type: str | None = None


class ForeignKey(_CatalogModel):
    """
    A foreign key declared by the relation that owns it.

    ``dependent_columns`` belong to the declaring relation and reference
    ``origin_columns`` on ``origin_schema.origin_name``.
    """

    name: str
    origin_schema: str = DEFAULT_SCHEMA
    origin_name: str
    origin_columns: tuple[str, ...]
    dependent_columns: tuple[str, ...]


class Relation(_CatalogModel):
    """
    A table or view known to the catalog.

    Identity is ``(schema, name)``.  ``default_schema`` is bound by the
    owning :class:`Catalog` and only affects how the name is rendered.
    """

    schema_name: str = Field(default=DEFAULT_SCHEMA, alias="schema")
    name: str
    columns: tuple[Column, ...] = ()
    primary_key: tuple[str, ...] = ()
    foreign_keys: tuple[ForeignKey, ...] = ()
    is_view: bool = False
    is_materialized_view: bool = False
    default_schema: str = Field(default=DEFAULT_SCHEMA, repr=False)

    @field_validator("columns", mode="before")
    @classmethod
    def _coerce_columns(cls, value: Any) -> Any:
        if isinstance(value, Iterable) and not isinstance(value, str | Mapping):
            return [{"name": c} if isinstance(c, str) else c for c in value]
        return value

    @field_validator("primary_key", mode="before")
    @classmethod
    def _coerce_primary_key(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return value

    # -- identity ------------------------------------------------------------

    @property
    def identity(self) -> tuple[str, str]:
        return (self.schema_name, self.name)

    @property
    def path(self) -> str:
        return f"{self.schema_name}.{self.name}"

    @property
    def is_compound(self) -> bool:
        return False

    @property
    def delimited_full_name(self) -> str:
        """``"name"`` in the default schema, ``"schema"."name"`` elsewhere."""
        if self.schema_name == self.default_schema:
            return quote_path(self.name)
        return quote_path(self.schema_name, self.name)

    # -- columns -------------------------------------------------------------

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    def has_column(self, name: str) -> bool:
        return any(c.name == name for c in self.columns)

    def alias_field(self, column: str) -> str:
        """Alias for one of this relation's columns in a joined select list."""
        if self.schema_name == self.default_schema:
            return f"{self.name}__{column}"
        return f"{self.schema_name}__{self.name}__{column}"


class Catalog:
    """
    Immutable registry of relations keyed by ``(schema, name)``.

    Usage::

        catalog = Catalog.from_snapshot(introspected_relations)
        users = catalog.get("users")
        audit = catalog.get("log", schema="audit")
    """

    def __init__(
        self,
        relations: Iterable[Relation],
        *,
        default_schema: str = DEFAULT_SCHEMA,
    ) -> None:
        self.default_schema = default_schema
        registry: dict[tuple[str, str], Relation] = {}
        for relation in relations:
            bound = relation.model_copy(update={"default_schema": default_schema})
            if bound.identity in registry:
                raise SchemaError(f"Relation '{bound.path}' is declared twice.")
            registry[bound.identity] = bound
        self._relations: Mapping[tuple[str, str], Relation] = MappingProxyType(
            registry
        )
        logger.debug("Loaded catalog with %d relation(s)", len(registry))

    # -- construction --------------------------------------------------------

    @classmethod
    def from_snapshot(
        cls,
        snapshot: Iterable[Mapping[str, Any]],
        *,
        default_schema: str = DEFAULT_SCHEMA,
    ) -> Catalog:
        """Build a catalog from introspection output (plain mappings)."""
        return cls(
            (Relation.model_validate(item) for item in snapshot),
            default_schema=default_schema,
        )

    @classmethod
    def from_metadata(
        cls,
        metadata: MetaData,
        *,
        default_schema: str = DEFAULT_SCHEMA,
    ) -> Catalog:
        """Build a catalog from SQLAlchemy table declarations."""
        return cls(
            (
                _relation_from_table(table, default_schema)
                for table in metadata.tables.values()
            ),
            default_schema=default_schema,
        )

    # -- look-up -------------------------------------------------------------

    def find(self, name: str, schema: str | None = None) -> Relation | None:
        return self._relations.get((schema or self.default_schema, name))

    def get(self, name: str, schema: str | None = None) -> Relation:
        """
        Return the relation or raise :class:`SchemaError`.

        Raises:
            SchemaError: If no such relation exists.
        """
        relation = self.find(name, schema)
        if relation is None:
            path = f"{schema}.{name}" if schema else name
            raise SchemaError(
                f"Unknown relation '{path}'.",
                name=name,
                candidates=[r.name for r in self._relations.values()],
            )
        return relation

    def resolve(self, path: str) -> Relation:
        """Look up ``"name"`` or ``"schema.name"`` (identifiers may be quoted)."""
        parts = [p.strip().strip('"') for p in path.split(".")]
        if len(parts) == 1:
            return self.get(parts[0])
        if len(parts) == 2:
            return self.get(parts[1], schema=parts[0])
        raise SchemaError(f"Malformed relation path '{path}'.")

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str):
            return False
        try:
            self.resolve(path)
        except SchemaError:
            return False
        return True

    def __iter__(self) -> Iterator[Relation]:
        return iter(self._relations.values())

    def __len__(self) -> int:
        return len(self._relations)


def _relation_from_table(table: Table, default_schema: str) -> Relation:
    from sqlalchemy.dialects import postgresql
    from sqlalchemy.exc import CompileError as SQLCompileError

    dialect = postgresql.dialect()
    schema = table.schema or default_schema

    columns = []
    for column in table.columns:
        try:
            type_name: str | None = column.type.compile(dialect=dialect)
        except SQLCompileError:
            type_name = None
        columns.append(Column(name=column.name, type=type_name))

    foreign_keys = []
    for constraint in table.foreign_key_constraints:
        referred = constraint.referred_table
        dependent = tuple(e.parent.name for e in constraint.elements)
        foreign_keys.append(
            ForeignKey(
                name=constraint.name or f"{table.name}_{'_'.join(dependent)}_fkey",
                origin_schema=referred.schema or default_schema,
                origin_name=referred.name,
                origin_columns=tuple(e.column.name for e in constraint.elements),
                dependent_columns=dependent,
            )
        )

    return Relation(
        schema_name=schema,
        name=table.name,
        columns=tuple(columns),
        primary_key=tuple(c.name for c in table.primary_key.columns),
        foreign_keys=tuple(foreign_keys),
    )
