"""Foreign-key dependency analysis and schema mutation for SQLite-family databases."""

from __future__ import annotations

__version__ = "0.4.0"

from schema_engine.errors import (
    ConstraintNameMalformedError,
    NotFoundError,
    PartialGraphError,
    SchemaEngineError,
    TransientIOError,
    ValidationFailedError,
)
from schema_engine.service import CycleReport, SchemaService

__all__ = [
    "ConstraintNameMalformedError",
    "CycleReport",
    "NotFoundError",
    "PartialGraphError",
    "SchemaEngineError",
    "SchemaService",
    "TransientIOError",
    "ValidationFailedError",
    "__version__",
]
