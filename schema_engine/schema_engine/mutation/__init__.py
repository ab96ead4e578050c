"""Schema mutation: direct ALTERs and table reconstruction."""

from __future__ import annotations

from schema_engine.mutation.engine import MutationResult, MutationStep, SchemaMutationEngine
from schema_engine.mutation.locks import TableLockRegistry
from schema_engine.mutation.table_definition import (
    CheckConstraint,
    ColumnAttributes,
    ColumnDefinition,
    ForeignKeyConstraint,
    TableDefinition,
    extract_checks,
    extract_column_attributes,
    render_default,
)

__all__ = [
    "CheckConstraint",
    "ColumnAttributes",
    "ColumnDefinition",
    "ForeignKeyConstraint",
    "MutationResult",
    "MutationStep",
    "SchemaMutationEngine",
    "TableDefinition",
    "TableLockRegistry",
    "extract_checks",
    "extract_column_attributes",
    "render_default",
]
