"""Constraint validation over stored data."""

from __future__ import annotations

from schema_engine.validation.constraint_validator import (
    ConstraintValidator,
    ConstraintViolation,
    FixResult,
    FixStrategy,
    ValidationReport,
    ViolationSeverity,
    ViolationType,
)

__all__ = [
    "ConstraintValidator",
    "ConstraintViolation",
    "FixResult",
    "FixStrategy",
    "ValidationReport",
    "ViolationSeverity",
    "ViolationType",
]
