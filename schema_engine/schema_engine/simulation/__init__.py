"""Deletion impact simulation."""

from __future__ import annotations

from schema_engine.simulation.cascade_simulator import (
    AffectedTable,
    BlockingConstraint,
    CascadePath,
    CascadeSimulationResult,
    CascadeSimulator,
    CircularReference,
    SimulationWarning,
    WarningSeverity,
    WarningType,
)

__all__ = [
    "AffectedTable",
    "BlockingConstraint",
    "CascadePath",
    "CascadeSimulationResult",
    "CascadeSimulator",
    "CircularReference",
    "SimulationWarning",
    "WarningSeverity",
    "WarningType",
]
