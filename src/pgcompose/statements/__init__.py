"""Statement builders: ``SELECT``, ``INSERT``, ``UPDATE`` and ``DELETE``."""

from __future__ import annotations

from .base import BaseStatement, CompiledStatement
from .delete import Delete
from .insert import FROM_PARENT, Insert
from .select import Select
from .update import Update

__all__ = [
    "FROM_PARENT",
    "BaseStatement",
    "CompiledStatement",
    "Delete",
    "Insert",
    "Select",
    "Update",
]
