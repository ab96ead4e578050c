"""Circular foreign-key dependency detection.

Cycles are found by depth-first search with an explicit recursion stack:
whenever an edge reaches a table that is still on the stack, the stack
segment from that table to the current one, plus the closing edge, forms
a cycle.  Every cycle is keyed by a rotation- and reflection-invariant
string so that the same loop discovered from different starting tables is
reported once.

All functions here are pure: the input graph is never modified.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from enum import Enum

import networkx as nx
from pydantic import BaseModel, Field

from schema_engine.errors import NotFoundError
from schema_engine.models.graph import ForeignKeyEdge, ForeignKeyGraph
from schema_engine.models.schema import FKAction
from schema_engine.telemetry.profiling import profile_operation

logger = logging.getLogger(__name__)

_CANDIDATE_SOURCE_COLUMN = "candidate_column"
_CANDIDATE_TARGET_COLUMN = "candidate_target"


class CycleSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CircularDependencyCycle(BaseModel):
    """One elementary cycle in the foreign-key graph.

    ``tables`` is rotated to start at its lexicographically smallest member
    and keeps edge direction: ``edges[i]`` goes from ``tables[i]`` to
    ``tables[(i + 1) % len(tables)]``.
    """

    key: str = Field(..., description="Rotation/reflection-normalized identity.")
    tables: list[str]
    edges: list[ForeignKeyEdge]
    path: str
    severity: CycleSeverity
    cascade_risk: bool = False
    restrict_present: bool = False
    constraint_names: list[str] = Field(default_factory=list)
    message: str = ""

    def follows(self, source_table: str, target_table: str) -> bool:
        """Whether *target_table* comes immediately after *source_table*."""
        if source_table not in self.tables or target_table not in self.tables:
            return False
        idx = self.tables.index(source_table)
        return self.tables[(idx + 1) % len(self.tables)] == target_table


class CycleCheckResult(BaseModel):
    would_create_cycle: bool
    cycle: CircularDependencyCycle | None = None


class BreakSuggestion(BaseModel):
    """Advisory change to one edge of a cycle."""

    constraint_name: str
    source_table: str
    target_table: str
    current_action: FKAction
    suggestion: str
    reason: str


# ---------------------------------------------------------------------------
# Normalization and classification
# ---------------------------------------------------------------------------


def _rotation_start(tables: Sequence[str]) -> int:
    return min(range(len(tables)), key=lambda i: tables[i])


def normalize_cycle_key(tables: Sequence[str]) -> str:
    """Return the canonical key of a cycle given its table order.

    The list is rotated to start at its smallest table, and the smaller of
    the forward and reversed (re-rotated) sequences is kept, so every
    rotation and the mirror image of a cycle share one key.

    >>> normalize_cycle_key(["b", "c", "a"]) == normalize_cycle_key(["a", "c", "b"])
    True
    """
    if not tables:
        return ""
    start = _rotation_start(tables)
    rotated = list(tables[start:]) + list(tables[:start])
    forward = ",".join(rotated)
    backward = ",".join([rotated[0], *reversed(rotated[1:])])
    return min(forward, backward)


def classify_severity(length: int, cascade_risk: bool) -> CycleSeverity:
    if length > 3 or (cascade_risk and length > 2):
        return CycleSeverity.HIGH
    if length == 3 or cascade_risk:
        return CycleSeverity.MEDIUM
    return CycleSeverity.LOW


def _build_cycle(edges: list[ForeignKeyEdge]) -> CircularDependencyCycle:
    start = _rotation_start([e.source_table for e in edges])
    edges = edges[start:] + edges[:start]
    tables = [e.source_table for e in edges]

    cascade_risk = any(e.on_delete == FKAction.CASCADE for e in edges)
    restrict_present = any(e.on_delete == FKAction.RESTRICT for e in edges)
    path = " → ".join([*tables, tables[0]])

    message = f"Circular dependency detected: {path}"
    if cascade_risk:
        message += " (contains CASCADE operations)"
    if restrict_present:
        message += " (contains RESTRICT constraints)"

    return CircularDependencyCycle(
        key=normalize_cycle_key(tables),
        tables=tables,
        edges=edges,
        path=path,
        severity=classify_severity(len(tables), cascade_risk),
        cascade_risk=cascade_risk,
        restrict_present=restrict_present,
        constraint_names=[e.id for e in edges],
        message=message,
    )


# ---------------------------------------------------------------------------
# Depth-first search
# ---------------------------------------------------------------------------


def _iter_back_edge_cycles(graph: ForeignKeyGraph, roots: Sequence[str]) -> Iterator[list[ForeignKeyEdge]]:
    """Yield the edge list of every cycle closed by a DFS back edge.

    Iterative so that long reference chains cannot exhaust the interpreter
    stack.
    """
    adjacency: dict[str, list[ForeignKeyEdge]] = {name: [] for name in graph.table_names}
    for edge in graph.edges:
        adjacency[edge.source_table].append(edge)

    visited: set[str] = set()
    on_stack: set[str] = set()

    for root in roots:
        if root in visited:
            continue
        # Parallel stacks: tables on the current path, the edge taken out of
        # each, and the pending outbound edges of each.
        path: list[str] = [root]
        taken: list[ForeignKeyEdge] = []
        pending: list[Iterator[ForeignKeyEdge]] = [iter(adjacency[root])]
        visited.add(root)
        on_stack.add(root)

        while pending:
            edge = next(pending[-1], None)
            if edge is None:
                pending.pop()
                on_stack.discard(path.pop())
                if taken:
                    taken.pop()
                continue

            neighbor = edge.target_table
            if neighbor not in visited:
                visited.add(neighbor)
                on_stack.add(neighbor)
                path.append(neighbor)
                taken.append(edge)
                pending.append(iter(adjacency[neighbor]))
            elif neighbor in on_stack:
                start = path.index(neighbor)
                yield [*taken[start:], edge]


def _detect(graph: ForeignKeyGraph, roots: Sequence[str]) -> list[CircularDependencyCycle]:
    cycles: list[CircularDependencyCycle] = []
    seen: set[str] = set()
    for edges in _iter_back_edge_cycles(graph, roots):
        cycle = _build_cycle(edges)
        if cycle.key in seen:
            continue
        seen.add(cycle.key)
        cycles.append(cycle)
    return cycles


@profile_operation("cycles.detect")
def detect_cycles(graph: ForeignKeyGraph) -> list[CircularDependencyCycle]:
    """Find and classify the circular dependencies of *graph*.

    Self-referencing foreign keys are reported as cycles of length one
    with ``low`` severity (unless they cascade).

    Returns
    -------
    list[CircularDependencyCycle]
        Cycles in discovery order, de-duplicated by :attr:`CircularDependencyCycle.key`.
    """
    cycles = _detect(graph, graph.table_names)
    if cycles:
        logger.info(
            "Detected %d circular dependencies in %s",
            len(cycles),
            graph.database_id or "graph",
            extra={"database_id": graph.database_id},
        )
    return cycles


def would_create_cycle(graph: ForeignKeyGraph, source_table: str, target_table: str) -> CycleCheckResult:
    """Check whether a new foreign key ``source_table -> target_table`` closes a loop.

    A candidate ``NO ACTION`` edge is added to a copy of *graph* and cycle
    detection is re-run with the search rooted at *target_table*.  Every
    table reachable from the target is then explored while the target is
    still on the stack, so if *source_table* is reachable from the target,
    the candidate edge shows up as the closing edge of a detected cycle.
    A cycle only counts when it places *target_table* immediately after
    *source_table*.
    """
    for table in (source_table, target_table):
        if not graph.has_node(table):
            raise NotFoundError("table", table)

    # A new loop needs a path back from the target to the source.
    if source_table != target_table and not nx.has_path(graph.to_multidigraph(), target_table, source_table):
        return CycleCheckResult(would_create_cycle=False)

    candidate = ForeignKeyEdge(
        source_table=source_table,
        source_column=_CANDIDATE_SOURCE_COLUMN,
        target_table=target_table,
        target_column=_CANDIDATE_TARGET_COLUMN,
    )
    trial = graph.with_edge(candidate)
    roots = [target_table, *(n for n in trial.table_names if n != target_table)]

    # Not de-duplicated: a parallel edge may close the same loop first.
    for edges in _iter_back_edge_cycles(trial, roots):
        cycle = _build_cycle(edges)
        if cycle.follows(source_table, target_table):
            return CycleCheckResult(would_create_cycle=True, cycle=cycle)
    return CycleCheckResult(would_create_cycle=False)


def suggest_break_points(cycle: CircularDependencyCycle, graph: ForeignKeyGraph) -> list[BreakSuggestion]:
    """Propose edge changes that would break *cycle*.

    CASCADE edges are flagged for a downgrade and NO ACTION edges are
    offered as weak links.  Edges are looked up in *graph* so that the
    suggestion reflects the current action.
    """
    suggestions: list[BreakSuggestion] = []
    for cycle_edge in cycle.edges:
        edge = graph.edge(cycle_edge.id) or cycle_edge
        if edge.on_delete == FKAction.CASCADE:
            suggestions.append(
                BreakSuggestion(
                    constraint_name=edge.id,
                    source_table=edge.source_table,
                    target_table=edge.target_table,
                    current_action=edge.on_delete,
                    suggestion="Change ON DELETE to RESTRICT or SET NULL",
                    reason="CASCADE in a circular dependency can delete rows across the whole loop unexpectedly",
                )
            )
        elif edge.on_delete == FKAction.NO_ACTION:
            suggestions.append(
                BreakSuggestion(
                    constraint_name=edge.id,
                    source_table=edge.source_table,
                    target_table=edge.target_table,
                    current_action=edge.on_delete,
                    suggestion="Consider removing this constraint or changing to SET NULL",
                    reason="NO ACTION is the weakest link in the cycle and the easiest to relax",
                )
            )
    return suggestions
