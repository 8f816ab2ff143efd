"""
Statement options.

Options arrive from calling code as plain mappings and are validated into
frozen models.  Keys may be given in snake_case or camelCase
(``page_length``/``pageLength``); unknown keys are rejected.

Cross-option rules (keyset paging without an order, more than one lock or
conflict option, ...) are checked by the statement that consumes the
options, since several of them depend on the relation being queried.

Usage::

    opts = parse_options(SelectOptions, {"order": [{"field": "id"}], "limit": 10})
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any, Literal, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .exceptions import ConfigurationError

logger = logging.getLogger("pgcompose.options")

M = TypeVar("M", bound=BaseModel)

_LOCK_STRENGTHS = frozenset({"UPDATE", "NO KEY UPDATE", "SHARE", "KEY SHARE"})
_LOCKED_ROWS = frozenset({"NOWAIT", "SKIP LOCKED"})
_CAST_TYPE_RE = re.compile(r"^[A-Za-z_][\w ()\[\],]*$")


def _upper_words(value: str) -> str:
    return " ".join(value.upper().split())


class _Options(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ---------------------------------------------------------------------------
# Nested option shapes
# ---------------------------------------------------------------------------


class OrderSpec(_Options):
    """
    One ``ORDER BY`` entry.

    Attributes:
        field: Field reference, resolved like a criteria key.
        expr: Raw SQL expression, interpolated verbatim.
        direction: ``asc`` or ``desc``.
        nulls: ``first`` or ``last``.
        type: Cast applied to the sort expression.
        last: Last-seen value for keyset pagination.  Presence matters, so
            an explicit ``None`` still takes part in the comparison.
    """

    field: str | None = None
    expr: str | None = None
    direction: Literal["asc", "desc"] = "asc"
    nulls: Literal["first", "last"] | None = None
    type: str | None = None
    last: Any = None

    @field_validator("direction", "nulls", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("type")
    @classmethod
    def _check_type(cls, value: str | None) -> str | None:
        if value is not None and not _CAST_TYPE_RE.match(value):
            raise ValueError(f"malformed cast type {value!r}")
        return value

    @model_validator(mode="after")
    def _field_or_expr(self) -> OrderSpec:
        if (self.field is None) == (self.expr is None):
            raise ValueError("an order entry needs exactly one of field or expr")
        return self

    @property
    def has_last(self) -> bool:
        return "last" in self.model_fields_set


class LockSpec(_Options):
    """Row-locking clause: ``FOR <strength> [NOWAIT | SKIP LOCKED]``."""

    strength: str = "UPDATE"
    locked_rows: str | None = None

    @field_validator("strength")
    @classmethod
    def _check_strength(cls, value: str) -> str:
        value = _upper_words(value)
        if value not in _LOCK_STRENGTHS:
            raise ValueError(f"unknown lock strength {value!r}")
        return value

    @field_validator("locked_rows")
    @classmethod
    def _check_locked_rows(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = _upper_words(value)
        if value not in _LOCKED_ROWS:
            raise ValueError(f"unknown locked-rows behaviour {value!r}")
        return value


class ConflictSpec(_Options):
    """
    Explicit ``ON CONFLICT`` policy.

    ``action`` is ``ignore`` (``DO NOTHING``) or ``update`` (``DO UPDATE``).
    An update needs a ``target`` column list or a ``target_expr``; columns
    in ``exclude`` are left untouched by the update.
    """

    action: Literal["ignore", "update"] | None = None
    target: tuple[str, ...] | None = None
    target_expr: str | None = None
    exclude: tuple[str, ...] = ()

    @field_validator("action", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("target", mode="before")
    @classmethod
    def _single_target(cls, value: Any) -> Any:
        return (value,) if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Statement options
# ---------------------------------------------------------------------------


class SelectOptions(_Options):
    """
    Options for ``SELECT``.

    ``fields`` is either a list of field references (``"*"`` includes every
    column) or a mapping of output alias to field reference.  ``exprs``
    holds raw SQL projections, as a list or as an alias mapping.
    """

    fields: tuple[str, ...] | dict[str, str | bool] | None = None
    exprs: tuple[str, ...] | dict[str, str] | None = None
    order: tuple[OrderSpec, ...] | None = None
    order_body: bool = False
    limit: int | None = Field(default=None, ge=0)
    offset: int | None = Field(default=None, ge=0)
    page_length: int | None = Field(default=None, ge=1)
    lock: LockSpec | None = None
    for_update: bool = False
    for_share: bool = False
    distinct: bool = False
    document: bool = False
    decompose: dict[str, Any] | None = None
    single: bool = False
    only: bool = False

    @field_validator("order", mode="before")
    @classmethod
    def _order_entries(cls, value: Any) -> Any:
        if isinstance(value, str | Mapping):
            value = [value]
        if isinstance(value, list | tuple):
            return [{"field": v} if isinstance(v, str) else v for v in value]
        return value

    @model_validator(mode="after")
    def _warn_deprecated_locks(self) -> SelectOptions:
        for name in ("for_update", "for_share"):
            if getattr(self, name):
                logger.warning(
                    "Option %r is deprecated; use lock={'strength': ...}", name
                )
        return self


class InsertOptions(_Options):
    """
    Options for ``INSERT``.

    Only one of ``on_conflict``, ``on_conflict_ignore`` and
    ``on_conflict_update`` may be given.
    """

    fields: tuple[str, ...] | None = None
    deep_insert: bool = False
    on_conflict: ConflictSpec | None = None
    on_conflict_ignore: bool = False
    on_conflict_update: tuple[str, ...] | None = None
    on_conflict_update_exclude: tuple[str, ...] = ()
    returning: bool = True

    @field_validator("on_conflict_update", mode="before")
    @classmethod
    def _single_target(cls, value: Any) -> Any:
        return (value,) if isinstance(value, str) else value


class UpdateOptions(_Options):
    """Options for ``UPDATE``; ``exprs`` maps columns to raw SQL values."""

    fields: tuple[str, ...] | None = None
    exprs: dict[str, str] | None = None
    only: bool = False
    single: bool = False
    document: bool = False
    returning: bool = True


class DeleteOptions(_Options):
    """Options for ``DELETE``."""

    fields: tuple[str, ...] | None = None
    only: bool = False
    single: bool = False
    document: bool = False
    returning: bool = True


def parse_options(model: type[M], options: Mapping[str, Any] | M | None) -> M:
    """
    Validate ``options`` into ``model``.

    Raises:
        ConfigurationError: If an option is unknown or malformed.
    """
    if options is None:
        return model()
    if isinstance(options, model):
        return options
    try:
        return model.model_validate(options)
    except ValidationError as exc:
        first = exc.errors()[0]
        option = ".".join(str(p) for p in first["loc"]) or None
        raise ConfigurationError(
            f"Invalid {model.__name__}: {first['msg']}"
            + (f" (at '{option}')" if option else ""),
            option=option,
        ) from exc


class SearchPlan(_Options):
    """
    Full-text search request.

    Attributes:
        fields: Field references concatenated into the search vector.
        term: The search term.
        parser: ``plain``, ``phrase`` or ``websearch``; anything else
            uses ``to_tsquery``.
        tsv: Raw text-search vector expression, used instead of ``fields``.
        where: Additional criteria ANDed onto the search.
    """

    fields: tuple[str, ...] | None = None
    term: str
    parser: Literal["plain", "phrase", "websearch", "tsquery"] | None = None
    tsv: str | None = None
    where: dict[str, Any] | None = None

    @field_validator("fields", mode="before")
    @classmethod
    def _single_field(cls, value: Any) -> Any:
        return (value,) if isinstance(value, str) else value

    @model_validator(mode="after")
    def _fields_or_tsv(self) -> SearchPlan:
        if not self.fields and not self.tsv:
            raise ValueError("a search plan needs fields or a tsv expression")
        if not self.term:
            raise ValueError("a search plan needs a non-empty term")
        return self
