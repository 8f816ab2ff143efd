"""
pgcompose: compile declarative criteria into parameterized PostgreSQL.

Given a catalog of relations and a criteria mapping, pgcompose produces
statement text plus ordered parameters, composes relations into compound
relations joined on their foreign keys, and folds joined rows back into
object trees.
"""

from __future__ import annotations

from .catalog import Catalog, Column, ForeignKey, Relation
from .config import EngineSettings
from .decompose import DecompositionSchema, decompose, merge_documents
from .engine import QueryEngine, shape_results
from .exceptions import (
    CompileError,
    ConfigurationError,
    DecompositionError,
    KeyResolutionError,
    PgComposeError,
    SchemaError,
)
from .join import CompoundRelation, CompoundRelationCache, JoinComposer, JoinNode
from .keys import lex_key, resolve_key
from .operators import OPERATORS, lookup
from .options import (
    ConflictSpec,
    DeleteOptions,
    InsertOptions,
    LockSpec,
    OrderSpec,
    SearchPlan,
    SelectOptions,
    UpdateOptions,
    parse_options,
)
from .predicate import CompiledPredicate, RawPredicate, build_tree, compile_predicate
from .statements import (
    FROM_PARENT,
    CompiledStatement,
    Delete,
    Insert,
    Select,
    Update,
)

__all__ = [
    "FROM_PARENT",
    "OPERATORS",
    "Catalog",
    "Column",
    "CompileError",
    "CompiledPredicate",
    "CompiledStatement",
    "CompoundRelation",
    "CompoundRelationCache",
    "ConfigurationError",
    "ConflictSpec",
    "DecompositionError",
    "DecompositionSchema",
    "Delete",
    "DeleteOptions",
    "EngineSettings",
    "ForeignKey",
    "Insert",
    "InsertOptions",
    "JoinComposer",
    "JoinNode",
    "KeyResolutionError",
    "LockSpec",
    "OrderSpec",
    "PgComposeError",
    "QueryEngine",
    "RawPredicate",
    "Relation",
    "SchemaError",
    "SearchPlan",
    "Select",
    "SelectOptions",
    "Update",
    "UpdateOptions",
    "build_tree",
    "compile_predicate",
    "decompose",
    "lex_key",
    "lookup",
    "merge_documents",
    "parse_options",
    "resolve_key",
    "shape_results",
]
