"""Typed records shared by introspection, graph, simulation, and mutation."""

from __future__ import annotations

from schema_engine.models.graph import (
    ForeignKeyEdge,
    ForeignKeyGraph,
    GraphBuildFailure,
    TableNode,
    make_constraint_id,
)
from schema_engine.models.schema import (
    Column,
    FKAction,
    ForeignKeyInfo,
    IndexDefinition,
    IndexInfo,
    QueryResult,
    TableInfo,
    are_types_compatible,
    normalize_action,
    type_affinity,
    validate_declared_type,
)

__all__ = [
    "Column",
    "FKAction",
    "ForeignKeyEdge",
    "ForeignKeyGraph",
    "ForeignKeyInfo",
    "GraphBuildFailure",
    "IndexDefinition",
    "IndexInfo",
    "QueryResult",
    "TableInfo",
    "TableNode",
    "are_types_compatible",
    "make_constraint_id",
    "normalize_action",
    "type_affinity",
    "validate_declared_type",
]
