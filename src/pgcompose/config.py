"""Engine-wide settings."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EngineSettings(BaseModel):
    """
    Immutable settings for a :class:`~pgcompose.engine.QueryEngine`.

    Attributes:
        cache_joins: Memoize compound relations by join definition.
        max_cached_joins: Evict the oldest compound relation once the
            cache grows past this size.  ``None`` keeps every entry.
        default_join_type: Join type for nodes that omit ``type``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    cache_joins: bool = True
    max_cached_joins: int | None = Field(default=None, ge=1)
    default_join_type: str = "INNER"

    @field_validator("default_join_type")
    @classmethod
    def _normalise_join_type(cls, value: str) -> str:
        return " ".join(value.upper().split())
