"""Foreign-key graph data model.

A :class:`ForeignKeyGraph` is a snapshot of one database: one
:class:`TableNode` per user table and one :class:`ForeignKeyEdge` per
foreign-key column pair.  Edges point from the *referencing* (child) table
to the *referenced* (parent) table.  Graphs are built fresh for every
request and never persisted.
"""

from __future__ import annotations

import networkx as nx
from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from schema_engine.errors import PartialGraphError
from schema_engine.models.schema import Column, FKAction


def make_constraint_id(source_table: str, source_column: str, target_table: str, target_column: str) -> str:
    """Derive the stable identifier of a foreign-key edge."""
    return f"fk_{source_table}_{source_column}_{target_table}_{target_column}"


class TableNode(BaseModel):
    """A user table with its columns and a best-effort row count."""

    model_config = ConfigDict(frozen=True)

    name: str
    columns: list[Column] = Field(default_factory=list)
    row_count: int = 0

    @property
    def primary_key_columns(self) -> list[str]:
        """Primary-key column names in key order."""
        return [c.name for c in sorted(self.columns, key=lambda c: c.pk) if c.pk > 0]

    def column(self, name: str) -> Column | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None


class ForeignKeyEdge(BaseModel):
    """One foreign-key constraint column pair.

    Multiple edges between the same pair of tables are kept separate.
    """

    model_config = ConfigDict(frozen=True)

    source_table: str = Field(..., description="Referencing (child) table.")
    source_column: str
    target_table: str = Field(..., description="Referenced (parent) table.")
    target_column: str
    on_delete: FKAction = FKAction.NO_ACTION
    on_update: FKAction = FKAction.NO_ACTION

    @computed_field  # type: ignore[prop-decorator]
    @property
    def id(self) -> str:
        return make_constraint_id(self.source_table, self.source_column, self.target_table, self.target_column)


class GraphBuildFailure(BaseModel):
    """Metadata for one table could not be read while building the graph."""

    model_config = ConfigDict(frozen=True)

    table: str
    stage: str = Field(..., description="'columns', 'row_count', or 'foreign_keys'.")
    message: str


class ForeignKeyGraph(BaseModel):
    """Nodes and edges for one database at one point in time.

    Invariant: every edge's source and target table exists as a node.
    """

    database_id: str = ""
    nodes: list[TableNode] = Field(default_factory=list)
    edges: list[ForeignKeyEdge] = Field(default_factory=list)
    failures: list[GraphBuildFailure] = Field(default_factory=list)

    @model_validator(mode="after")
    def _edges_reference_nodes(self) -> ForeignKeyGraph:
        names = {n.name for n in self.nodes}
        for edge in self.edges:
            if edge.source_table not in names or edge.target_table not in names:
                raise ValueError(f"Edge {edge.id} references a table that is not a node")
        return self

    # -- Queries ------------------------------------------------------------

    @property
    def incomplete(self) -> bool:
        return bool(self.failures)

    @property
    def table_names(self) -> list[str]:
        return [n.name for n in self.nodes]

    def node(self, name: str) -> TableNode | None:
        for node in self.nodes:
            if node.name == name:
                return node
        return None

    def has_node(self, name: str) -> bool:
        return self.node(name) is not None

    def edge(self, constraint_id: str) -> ForeignKeyEdge | None:
        for edge in self.edges:
            if edge.id == constraint_id:
                return edge
        return None

    def edges_from(self, table: str) -> list[ForeignKeyEdge]:
        """Edges whose referencing table is *table* (outbound)."""
        return [e for e in self.edges if e.source_table == table]

    def edges_to(self, table: str) -> list[ForeignKeyEdge]:
        """Edges whose referenced table is *table* (inbound)."""
        return [e for e in self.edges if e.target_table == table]

    def raise_if_incomplete(self) -> None:
        if self.failures:
            raise PartialGraphError(sorted({f.table for f in self.failures}))

    # -- Derived graphs -------------------------------------------------------

    def with_edge(self, edge: ForeignKeyEdge) -> ForeignKeyGraph:
        """Return a copy of this graph with *edge* appended.  ``self`` is untouched."""
        return self.model_copy(update={"edges": [*self.edges, edge]})

    def to_multidigraph(self) -> nx.MultiDiGraph:
        """Convert to a NetworkX multigraph keyed by constraint id.

        Node data carries the :class:`TableNode` under ``"table"``; edge
        data carries the :class:`ForeignKeyEdge` under ``"fk"``.
        """
        graph = nx.MultiDiGraph()
        for node in self.nodes:
            graph.add_node(node.name, table=node)
        for edge in self.edges:
            graph.add_edge(edge.source_table, edge.target_table, key=edge.id, fk=edge)
        return graph
