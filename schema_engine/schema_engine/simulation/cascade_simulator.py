"""Deletion cascade impact simulation.

Estimates which rows a ``DELETE FROM <table> [WHERE ...]`` would touch
across the foreign-key graph **without** executing it.  Traversal is
breadth-first over inbound foreign keys, honouring each edge's
``ON DELETE`` action:

* ``CASCADE`` -- referencing rows are deleted; traversal continues into
  the referencing table.
* ``SET NULL`` / ``SET DEFAULT`` -- referencing rows are updated in place;
  traversal stops.
* ``RESTRICT`` / ``NO ACTION`` -- referencing rows block the deletion and
  are reported as constraints; traversal stops.

Row estimates
-------------
By default the rows affected through an edge are estimated as
``min(referencing table row count, parent rows affected)``.  This assumes
full overlap between the parent's matched rows and the child's references
and never runs a join, so it is cheap but approximate.  Pass
``exact=True`` to count referencing rows with nested ``IN (SELECT ...)``
filters instead; this costs one correlated count per edge visited.

Each table is expanded at most once and the traversal is bounded by
``max_depth``, so cyclic graphs terminate.
"""

from __future__ import annotations

import logging
from collections import deque
from enum import Enum

from pydantic import BaseModel, Field

from schema_engine.errors import NotFoundError
from schema_engine.introspection.introspector import SchemaSource
from schema_engine.introspection.predicate_guard import normalize_predicate
from schema_engine.models.graph import ForeignKeyEdge, ForeignKeyGraph
from schema_engine.models.schema import FKAction
from schema_engine.sanitize import quote_identifier
from schema_engine.telemetry.profiling import profile_operation

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10


# ---------------------------------------------------------------------------
# Enums and models
# ---------------------------------------------------------------------------


class WarningType(str, Enum):
    HIGH_IMPACT = "high_impact"
    DEEP_CASCADE = "deep_cascade"
    CIRCULAR_DEPENDENCY = "circular_dependency"
    MAX_DEPTH = "max_depth"


class WarningSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CascadePath(BaseModel):
    """One edge traversed during simulation."""

    id: str
    source_table: str = Field(..., description="Parent table whose rows are deleted.")
    target_table: str = Field(..., description="Referencing table reached through the edge.")
    action: FKAction
    depth: int
    affected_rows: int
    column: str = Field(..., description="Referencing column in target_table.")


class AffectedTable(BaseModel):
    """Before/after row counts for a table touched by the deletion."""

    table_name: str
    action: str = Field(..., description="'DELETE' for the target table, otherwise the ON DELETE action.")
    rows_before: int
    rows_after: int
    depth: int


class SimulationWarning(BaseModel):
    type: WarningType
    message: str
    severity: WarningSeverity


class BlockingConstraint(BaseModel):
    """A RESTRICT / NO ACTION foreign key that would reject the deletion."""

    table: str
    column: str
    constraint_name: str
    affected_rows: int
    message: str


class CircularReference(BaseModel):
    tables: list[str]
    message: str


class CascadeSimulationResult(BaseModel):
    """Complete outcome of a simulated deletion."""

    target_table: str
    predicate: str | None = None
    exact: bool = Field(default=False, description="Whether row counts come from correlated queries.")
    matched_rows: int = 0
    total_affected_rows: int = 0
    max_depth: int = 0
    cascade_paths: list[CascadePath] = Field(default_factory=list)
    affected_tables: list[AffectedTable] = Field(default_factory=list)
    warnings: list[SimulationWarning] = Field(default_factory=list)
    constraints: list[BlockingConstraint] = Field(default_factory=list)
    circular_dependencies: list[CircularReference] = Field(default_factory=list)
    graph_incomplete: bool = False

    @property
    def blocked(self) -> bool:
        return bool(self.constraints)


# ---------------------------------------------------------------------------
# Simulator
# ---------------------------------------------------------------------------


class CascadeSimulator:
    """Simulate the cascading effect of deleting rows from one table.

    Parameters
    ----------
    source:
        Used for the initial matched-row count and, in exact mode, for the
        per-edge correlated counts.
    max_depth:
        Traversal bound; reaching it adds a ``max_depth`` warning.
    exact:
        Count referencing rows with correlated sub-selects instead of the
        ``min()`` estimate.
    """

    def __init__(self, source: SchemaSource, *, max_depth: int = DEFAULT_MAX_DEPTH, exact: bool = False) -> None:
        if max_depth < 1:
            raise ValueError("max_depth must be >= 1")
        self._source = source
        self._max_depth = max_depth
        self._exact = exact

    @profile_operation("cascade.simulate")
    def simulate(
        self,
        graph: ForeignKeyGraph,
        target_table: str,
        predicate: str | None = None,
    ) -> CascadeSimulationResult:
        """Simulate ``DELETE FROM target_table [WHERE predicate]`` over *graph*.

        Raises
        ------
        NotFoundError
            If *target_table* is not a node of *graph*.
        ValidationFailedError
            If *predicate* is not a single boolean expression.
        """
        target_node = graph.node(target_table)
        if target_node is None:
            raise NotFoundError("table", target_table)
        if graph.incomplete:
            logger.warning(
                "Simulating cascade on an incomplete graph; %d table(s) could not be fully introspected",
                len({f.table for f in graph.failures}),
                extra={"database_id": graph.database_id, "table": target_table},
            )

        target_filter = normalize_predicate(predicate) if predicate else None
        database_id = graph.database_id
        matched = self._source.count_rows(database_id, target_table, target_filter)

        result = CascadeSimulationResult(
            target_table=target_table,
            predicate=predicate,
            exact=self._exact,
            matched_rows=matched,
            graph_incomplete=graph.incomplete,
        )
        if matched == 0:
            return result

        affected: dict[str, AffectedTable] = {
            target_table: AffectedTable(
                table_name=target_table,
                action="DELETE",
                rows_before=max(target_node.row_count, matched),
                rows_after=max(target_node.row_count - matched, 0),
                depth=0,
            )
        }
        circular: dict[str, list[str]] = {}
        total = matched
        reached_depth = 0

        # (table, depth, rows deleted from table, filter selecting those rows)
        queue: deque[tuple[str, int, int, str | None]] = deque([(target_table, 0, matched, target_filter)])
        visited: set[str] = set()

        while queue:
            table, depth, parent_rows, row_filter = queue.popleft()
            if depth >= self._max_depth:
                logger.warning(
                    "Cascade simulation from '%s' stopped at depth %d",
                    target_table,
                    self._max_depth,
                    extra={"database_id": database_id, "table": target_table},
                )
                result.warnings.append(
                    SimulationWarning(
                        type=WarningType.MAX_DEPTH,
                        message=f"Cascade analysis stopped at depth {self._max_depth} to prevent infinite loops",
                        severity=WarningSeverity.HIGH,
                    )
                )
                break
            reached_depth = max(reached_depth, depth)

            # Self-references cannot be estimated without the row data.
            inbound = [e for e in graph.edges_to(table) if e.source_table != table]
            for edge in inbound:
                child = edge.source_table
                if child in visited:
                    circular.setdefault(f"{table} -> {child}", [table, child])

                child_node = graph.node(child)
                child_rows = child_node.row_count if child_node else 0
                child_filter = _child_filter(edge, row_filter)
                if self._exact:
                    rows = self._source.count_rows(database_id, child, child_filter)
                else:
                    rows = min(child_rows, parent_rows)
                if rows <= 0:
                    continue

                action = edge.on_delete
                result.cascade_paths.append(
                    CascadePath(
                        id=f"path-{len(result.cascade_paths) + 1}",
                        source_table=table,
                        target_table=child,
                        action=action,
                        depth=depth + 1,
                        affected_rows=rows,
                        column=edge.source_column,
                    )
                )

                if action == FKAction.CASCADE:
                    total += rows
                    affected.setdefault(
                        child,
                        AffectedTable(
                            table_name=child,
                            action=action.value,
                            rows_before=child_rows,
                            rows_after=max(child_rows - rows, 0),
                            depth=depth + 1,
                        ),
                    )
                    if child not in visited:
                        queue.append((child, depth + 1, rows, child_filter))
                elif action in (FKAction.SET_NULL, FKAction.SET_DEFAULT):
                    affected.setdefault(
                        child,
                        AffectedTable(
                            table_name=child,
                            action=action.value,
                            rows_before=child_rows,
                            rows_after=child_rows,
                            depth=depth + 1,
                        ),
                    )
                else:
                    result.constraints.append(
                        BlockingConstraint(
                            table=child,
                            column=edge.source_column,
                            constraint_name=edge.id,
                            affected_rows=rows,
                            message=(
                                f'Table "{child}" has {rows} row(s) with {action.value} constraint '
                                "that will prevent deletion"
                            ),
                        )
                    )

            visited.add(table)

        result.total_affected_rows = total
        result.max_depth = reached_depth
        result.affected_tables = list(affected.values())
        result.circular_dependencies = [
            CircularReference(tables=tables, message=f"Circular reference detected: {path}")
            for path, tables in circular.items()
        ]
        result.warnings.extend(_summary_warnings(matched, total, len(affected) - 1, reached_depth, len(circular)))

        logger.debug(
            "Simulated deletion from %s: %d matched, %d total affected, depth %d, %d blocking",
            target_table,
            matched,
            total,
            reached_depth,
            len(result.constraints),
        )
        return result


def _child_filter(edge: ForeignKeyEdge, parent_filter: str | None) -> str:
    """Filter selecting rows of ``edge.source_table`` that reference the parent rows."""
    parent_select = f"SELECT {quote_identifier(edge.target_column)} FROM {quote_identifier(edge.target_table)}"
    if parent_filter:
        parent_select += f" WHERE {parent_filter}"
    return f"{quote_identifier(edge.source_column)} IN ({parent_select})"


def _summary_warnings(
    matched: int,
    total: int,
    other_tables: int,
    depth: int,
    circular_count: int,
) -> list[SimulationWarning]:
    warnings: list[SimulationWarning] = []

    additional = total - matched
    if additional > 0:
        if additional > 100:
            severity = WarningSeverity.HIGH
        elif additional > 10:
            severity = WarningSeverity.MEDIUM
        else:
            severity = WarningSeverity.LOW
        warnings.append(
            SimulationWarning(
                type=WarningType.HIGH_IMPACT,
                message=f"Deletion will cascade to {additional} additional row(s) across {other_tables} table(s)",
                severity=severity,
            )
        )

    if depth > 2:
        warnings.append(
            SimulationWarning(
                type=WarningType.DEEP_CASCADE,
                message=f"Cascade chain reaches depth of {depth} levels",
                severity=WarningSeverity.HIGH if depth > 5 else WarningSeverity.MEDIUM,
            )
        )

    if circular_count:
        warnings.append(
            SimulationWarning(
                type=WarningType.CIRCULAR_DEPENDENCY,
                message=f"Detected {circular_count} circular dependency path(s)",
                severity=WarningSeverity.MEDIUM,
            )
        )

    return warnings
