"""
Compilation exception hierarchy with fuzzy-match suggestions.

All exceptions inherit from ``PgComposeError`` and provide ``to_dict()``
for API-friendly error responses.  Every error is raised synchronously
while compiling or decomposing; nothing here is ever retried.
"""

from __future__ import annotations

from difflib import get_close_matches
from typing import Any


class PgComposeError(Exception):
    """Root exception for the whole query compiler."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": str(self),
        }


class SchemaError(PgComposeError):
    """
    A relation, alias, foreign key or primary key could not be resolved.

    When ``candidates`` is given, close matches for ``name`` are offered
    as suggestions.
    """

    def __init__(
        self,
        message: str,
        *,
        name: str | None = None,
        candidates: list[str] | None = None,
    ) -> None:
        self.message = message
        self.name = name
        self.suggestions = (
            get_close_matches(name, candidates, n=3, cutoff=0.6)
            if name and candidates
            else []
        )
        if self.suggestions:
            message += f" Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "SCHEMA_ERROR",
            "message": self.message,
            "name": self.name,
            "suggestions": self.suggestions,
        }


class ConfigurationError(PgComposeError):
    """Options are mutually exclusive, missing, or malformed."""

    def __init__(self, message: str, option: str | None = None) -> None:
        self.message = message
        self.option = option
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "CONFIGURATION_ERROR",
            "message": self.message,
            "option": self.option,
        }


class CompileError(PgComposeError):
    """The criteria, record or change set has an invalid shape."""

    def __init__(self, message: str, key: str | None = None) -> None:
        self.message = message
        self.key = key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "COMPILE_ERROR",
            "message": self.message,
            "key": self.key,
        }


class KeyResolutionError(CompileError):
    """
    A field reference could not be turned into a SQL expression.

    Example error message::

        Cannot resolve 'users.' against 'users': no field name.
    """

    def __init__(self, key: str, source_name: str | None, reason: str) -> None:
        self.source_name = source_name
        self.reason = reason
        target = f" against '{source_name}'" if source_name else ""
        super().__init__(f"Cannot resolve {key!r}{target}: {reason}.", key=key)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "KEY_RESOLUTION_ERROR",
            "key": self.key,
            "source": self.source_name,
            "reason": self.reason,
        }


class DecompositionError(PgComposeError):
    """Flat rows could not be folded into object trees."""

    def __init__(self, message: str, row_index: int | None = None) -> None:
        self.message = message
        self.row_index = row_index
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "DECOMPOSITION_ERROR",
            "message": self.message,
            "row_index": self.row_index,
        }
