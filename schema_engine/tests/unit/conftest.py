"""Shared fixtures for schema_engine unit tests.

``FakeSchemaSource`` answers the metadata queries of
:class:`~schema_engine.introspection.SchemaSource` from fixed in-memory
data so that graph, cycle, and cascade tests never touch a database.
Mutation and validation tests run against a real in-memory SQLite
database through :class:`~schema_engine.executor.LocalExecutor`.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from schema_engine.errors import SchemaEngineError
from schema_engine.executor.local_executor import LocalExecutor
from schema_engine.introspection.introspector import SchemaIntrospector
from schema_engine.models.schema import Column, ForeignKeyInfo, IndexInfo, TableInfo
from schema_engine.telemetry.profiling import ProfileCollector


class FakeSchemaSource:
    """In-memory ``SchemaSource`` with optional per-table failures.

    ``count_rows`` returns the table's row count unless a predicate-specific
    count was registered with :meth:`set_count`.
    """

    def __init__(self) -> None:
        self.columns: dict[str, list[Column]] = {}
        self.fks: dict[str, list[ForeignKeyInfo]] = {}
        self.rows: dict[str, int] = {}
        self.counts: dict[tuple[str, str | None], int] = {}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.count_calls: list[tuple[str, str | None]] = []

    def add_table(self, name: str, *columns: str, rows: int = 0, pk: str | None = "id") -> FakeSchemaSource:
        names = list(columns) or ["id"]
        self.columns[name] = [
            Column(cid=i, name=col, type="INTEGER", pk=1 if col == pk else 0) for i, col in enumerate(names)
        ]
        self.fks.setdefault(name, [])
        self.rows[name] = rows
        return self

    def add_fk(
        self,
        table: str,
        column: str,
        ref_table: str,
        ref_column: str | None = "id",
        on_delete: str = "NO ACTION",
        on_update: str = "NO ACTION",
    ) -> FakeSchemaSource:
        existing = self.fks.setdefault(table, [])
        existing.append(
            ForeignKeyInfo.model_validate(
                {
                    "id": len(existing),
                    "seq": 0,
                    "table": ref_table,
                    "from": column,
                    "to": ref_column,
                    "on_delete": on_delete,
                    "on_update": on_update,
                }
            )
        )
        return self

    def set_count(self, table: str, predicate: str | None, count: int) -> None:
        self.counts[(table, predicate)] = count

    def fail(self, table: str, method: str, exc: Exception | None = None) -> None:
        self.failures[(table, method)] = exc or SchemaEngineError(f"{method} failed for {table}")

    def _check(self, table: str, method: str) -> None:
        exc = self.failures.get((table, method))
        if exc is not None:
            raise exc

    # -- SchemaSource ---------------------------------------------------------

    def list_tables(self, database_id: str) -> list[TableInfo]:
        return [TableInfo(name=name) for name in self.columns]

    def table_info(self, database_id: str, table: str) -> list[Column]:
        self._check(table, "table_info")
        return list(self.columns.get(table, []))

    def foreign_keys(self, database_id: str, table: str) -> list[ForeignKeyInfo]:
        self._check(table, "foreign_keys")
        return list(self.fks.get(table, []))

    def index_list(self, database_id: str, table: str) -> list[IndexInfo]:
        return []

    def index_columns(self, database_id: str, table: str, index: str) -> list[str]:
        return []

    def row_count(self, database_id: str, table: str) -> int:
        self._check(table, "row_count")
        return self.rows.get(table, 0)

    def count_rows(self, database_id: str, table: str, predicate: str | None = None) -> int:
        self.count_calls.append((table, predicate))
        if (table, predicate) in self.counts:
            return self.counts[(table, predicate)]
        return self.rows.get(table, 0)


@pytest.fixture()
def fake_source() -> FakeSchemaSource:
    return FakeSchemaSource()


@pytest.fixture()
def local_executor() -> Iterator[LocalExecutor]:
    """Executor whose databases live in memory for the duration of one test."""
    with LocalExecutor() as executor:
        yield executor


@pytest.fixture()
def introspector(local_executor: LocalExecutor) -> SchemaIntrospector:
    return SchemaIntrospector(local_executor)


@pytest.fixture(autouse=True)
def _reset_profile_collector() -> Iterator[None]:
    ProfileCollector.reset()
    yield
    ProfileCollector.reset()
