"""Foreign-key graph construction from live introspection.

:func:`build_graph` queries every user table of a database for its columns,
row count, and foreign-key list, and assembles a
:class:`~schema_engine.models.graph.ForeignKeyGraph`.  A failed metadata
query for one table never aborts the build: the failure is recorded on the
graph (``graph.incomplete`` becomes ``True``) and the remaining tables are
still processed, because cycle detection and cascade estimates over the
rest of the schema remain useful.

Cost is linear in table count: one table listing plus three queries per
table.  Builds above ``warn_threshold`` tables log a warning.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from pydantic import BaseModel, Field

from schema_engine.errors import NotFoundError, SchemaEngineError
from schema_engine.introspection.introspector import SchemaSource
from schema_engine.models.graph import (
    ForeignKeyEdge,
    ForeignKeyGraph,
    GraphBuildFailure,
    TableNode,
)
from schema_engine.models.schema import Column, FKAction, ForeignKeyInfo
from schema_engine.telemetry.profiling import profile_operation

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PREFIXES: tuple[str, ...] = ("sqlite_", "_cf_")
DEFAULT_WARN_THRESHOLD: int = 200


def is_system_table(name: str, prefixes: Sequence[str] = DEFAULT_SYSTEM_PREFIXES) -> bool:
    return any(name.startswith(p) for p in prefixes)


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------


@profile_operation("graph.build")
def build_graph(
    source: SchemaSource,
    database_id: str,
    *,
    system_prefixes: Sequence[str] = DEFAULT_SYSTEM_PREFIXES,
    warn_threshold: int = DEFAULT_WARN_THRESHOLD,
) -> ForeignKeyGraph:
    """Build the foreign-key graph of *database_id*.

    Parameters
    ----------
    source:
        Metadata source (normally a
        :class:`~schema_engine.introspection.SchemaIntrospector`).
    database_id:
        Database to introspect.
    system_prefixes:
        Tables whose name starts with any of these are excluded.
    warn_threshold:
        Table count above which a large-schema warning is logged.

    Returns
    -------
    ForeignKeyGraph
        One node per user table and one edge per foreign-key row.
        Foreign keys that reference a table absent from the graph are
        dropped so that every edge connects two nodes.

    Raises
    ------
    SchemaEngineError
        Only if the table listing itself fails.
    """
    tables = [
        t.name for t in source.list_tables(database_id) if t.type == "table" and not is_system_table(t.name, system_prefixes)
    ]
    if len(tables) > warn_threshold:
        logger.warning(
            "Building foreign-key graph for %d tables (threshold %d); this issues %d metadata queries",
            len(tables),
            warn_threshold,
            1 + 3 * len(tables),
            extra={"database_id": database_id},
        )

    nodes: list[TableNode] = []
    failures: list[GraphBuildFailure] = []
    foreign_keys: dict[str, list[ForeignKeyInfo]] = {}

    for table in tables:
        columns: list[Column] = []
        row_count = 0
        try:
            columns = source.table_info(database_id, table)
        except SchemaEngineError as exc:
            failures.append(_record_failure(database_id, table, "columns", exc))
        try:
            row_count = source.row_count(database_id, table)
        except SchemaEngineError as exc:
            failures.append(_record_failure(database_id, table, "row_count", exc))

        nodes.append(TableNode(name=table, columns=columns, row_count=row_count))

        try:
            foreign_keys[table] = source.foreign_keys(database_id, table)
        except SchemaEngineError as exc:
            failures.append(_record_failure(database_id, table, "foreign_keys", exc))

    edges = _build_edges(nodes, foreign_keys)

    logger.debug(
        "Built foreign-key graph for %s: %d tables, %d edges, %d failures",
        database_id,
        len(nodes),
        len(edges),
        len(failures),
    )
    return ForeignKeyGraph(database_id=database_id, nodes=nodes, edges=edges, failures=failures)


def _record_failure(database_id: str, table: str, stage: str, exc: Exception) -> GraphBuildFailure:
    logger.warning(
        "Skipping %s for table '%s' while building foreign-key graph: %s",
        stage,
        table,
        exc,
        extra={"database_id": database_id, "table": table},
    )
    return GraphBuildFailure(table=table, stage=stage, message=str(exc))


def _build_edges(nodes: list[TableNode], foreign_keys: dict[str, list[ForeignKeyInfo]]) -> list[ForeignKeyEdge]:
    by_name = {n.name: n for n in nodes}
    edges: list[ForeignKeyEdge] = []

    for table, fks in foreign_keys.items():
        for fk in sorted(fks, key=lambda f: (f.id, f.seq)):
            parent = by_name.get(fk.table)
            if parent is None:
                logger.debug("Foreign key %s.%s references unknown table '%s'", table, fk.from_column, fk.table)
                continue
            edges.append(
                ForeignKeyEdge(
                    source_table=table,
                    source_column=fk.from_column,
                    target_table=fk.table,
                    target_column=fk.to_column or _implicit_target_column(parent, fk.seq),
                    on_delete=fk.on_delete,
                    on_update=fk.on_update,
                )
            )

    return edges


def _implicit_target_column(parent: TableNode, seq: int) -> str:
    """Resolve ``REFERENCES parent`` without a column list to the parent's key."""
    pk = parent.primary_key_columns
    return pk[seq] if seq < len(pk) else "rowid"


# ---------------------------------------------------------------------------
# Per-table dependency view
# ---------------------------------------------------------------------------


class DependencyRef(BaseModel):
    """One foreign key seen from a particular table."""

    table: str = Field(..., description="The table on the other end of the foreign key.")
    column: str = Field(..., description="Referencing column.")
    on_delete: FKAction
    on_update: FKAction
    row_count: int = Field(..., description="Row count of the referencing table.")


class TableDependencies(BaseModel):
    """Outbound (this table references others) and inbound references."""

    outbound: list[DependencyRef] = Field(default_factory=list)
    inbound: list[DependencyRef] = Field(default_factory=list)


def get_table_dependencies(graph: ForeignKeyGraph, tables: Iterable[str]) -> dict[str, TableDependencies]:
    """Return inbound and outbound foreign keys for each requested table.

    Outbound references are de-duplicated per ``(target table, column)``.

    Raises
    ------
    NotFoundError
        If a requested table is not in the graph.
    """
    result: dict[str, TableDependencies] = {}
    for table in tables:
        node = graph.node(table)
        if node is None:
            raise NotFoundError("table", table)

        outbound: dict[tuple[str, str], DependencyRef] = {}
        for edge in graph.edges_from(table):
            outbound.setdefault(
                (edge.target_table, edge.source_column),
                DependencyRef(
                    table=edge.target_table,
                    column=edge.source_column,
                    on_delete=edge.on_delete,
                    on_update=edge.on_update,
                    row_count=node.row_count,
                ),
            )

        inbound: list[DependencyRef] = []
        for edge in graph.edges_to(table):
            if edge.source_table == table:
                continue
            child = graph.node(edge.source_table)
            inbound.append(
                DependencyRef(
                    table=edge.source_table,
                    column=edge.source_column,
                    on_delete=edge.on_delete,
                    on_update=edge.on_update,
                    row_count=child.row_count if child else 0,
                )
            )

        result[table] = TableDependencies(outbound=list(outbound.values()), inbound=inbound)
    return result
