"""Foreign-key graph construction and cycle analysis."""

from __future__ import annotations

from schema_engine.graph.cycle_detector import (
    BreakSuggestion,
    CircularDependencyCycle,
    CycleCheckResult,
    CycleSeverity,
    detect_cycles,
    normalize_cycle_key,
    suggest_break_points,
    would_create_cycle,
)
from schema_engine.graph.fk_graph_builder import (
    DependencyRef,
    TableDependencies,
    build_graph,
    get_table_dependencies,
    is_system_table,
)

__all__ = [
    "BreakSuggestion",
    "CircularDependencyCycle",
    "CycleCheckResult",
    "CycleSeverity",
    "DependencyRef",
    "TableDependencies",
    "build_graph",
    "detect_cycles",
    "get_table_dependencies",
    "is_system_table",
    "normalize_cycle_key",
    "suggest_break_points",
    "would_create_cycle",
]
