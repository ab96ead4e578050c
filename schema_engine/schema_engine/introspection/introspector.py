"""Read-only metadata queries against a SQLite-family database.

:class:`SchemaIntrospector` issues the PRAGMA and catalog queries needed by
the graph builder, the cascade simulator, and the mutation engine, and
validates every result row into a typed record.  It never writes, except
through :meth:`SchemaIntrospector.execute`, which the mutation engine uses
for DDL/DML.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from schema_engine.errors import SchemaEngineError
from schema_engine.executor.base import QueryExecutor
from schema_engine.introspection.predicate_guard import normalize_predicate
from schema_engine.models.schema import (
    Column,
    ForeignKeyInfo,
    IndexDefinition,
    IndexInfo,
    QueryResult,
    TableInfo,
)
from schema_engine.sanitize import quote_identifier

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class SchemaSource(Protocol):
    """Read-only metadata surface consumed by graph building and simulation.

    :class:`SchemaIntrospector` is the production implementation; tests
    supply an in-memory fake returning fixed metadata.
    """

    def list_tables(self, database_id: str) -> list[TableInfo]: ...

    def table_info(self, database_id: str, table: str) -> list[Column]: ...

    def foreign_keys(self, database_id: str, table: str) -> list[ForeignKeyInfo]: ...

    def index_list(self, database_id: str, table: str) -> list[IndexInfo]: ...

    def index_columns(self, database_id: str, table: str, index: str) -> list[str]: ...

    def row_count(self, database_id: str, table: str) -> int: ...

    def count_rows(self, database_id: str, table: str, predicate: str | None = None) -> int: ...


def _parse_rows(model: type[M], rows: list[dict[str, Any]], what: str) -> list[M]:
    try:
        return [model.model_validate(row) for row in rows]
    except ValidationError as exc:
        raise SchemaEngineError(f"Unexpected {what} result shape: {exc}") from exc


class SchemaIntrospector:
    """Typed metadata access on top of a :class:`QueryExecutor`.

    Parameters
    ----------
    executor:
        Transport used for every statement.
    """

    def __init__(self, executor: QueryExecutor) -> None:
        self._executor = executor

    @property
    def executor(self) -> QueryExecutor:
        return self._executor

    def execute(self, database_id: str, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        """Run an arbitrary statement (DDL/DML during mutation)."""
        return self._executor.execute(database_id, sql, params)

    # -- Catalog ----------------------------------------------------------------

    def list_tables(self, database_id: str) -> list[TableInfo]:
        result = self._executor.execute(
            database_id,
            "SELECT name, type FROM sqlite_master WHERE type = 'table' ORDER BY name",
        )
        return _parse_rows(TableInfo, result.results, "table list")

    def table_info(self, database_id: str, table: str) -> list[Column]:
        result = self._executor.execute(database_id, f"PRAGMA table_info({quote_identifier(table)})")
        return _parse_rows(Column, result.results, "table_info")

    def table_xinfo(self, database_id: str, table: str) -> list[Column]:
        """Like :meth:`table_info`, but also reports generated columns."""
        result = self._executor.execute(database_id, f"PRAGMA table_xinfo({quote_identifier(table)})")
        return _parse_rows(Column, result.results, "table_xinfo")

    def foreign_keys(self, database_id: str, table: str) -> list[ForeignKeyInfo]:
        result = self._executor.execute(database_id, f"PRAGMA foreign_key_list({quote_identifier(table)})")
        return _parse_rows(ForeignKeyInfo, result.results, "foreign_key_list")

    def index_list(self, database_id: str, table: str) -> list[IndexInfo]:
        result = self._executor.execute(database_id, f"PRAGMA index_list({quote_identifier(table)})")
        return _parse_rows(IndexInfo, result.results, "index_list")

    def index_columns(self, database_id: str, table: str, index: str) -> list[str]:
        result = self._executor.execute(database_id, f"PRAGMA index_info({quote_identifier(index)})")
        return [str(row["name"]) for row in result.results if row.get("name") is not None]

    def table_sql(self, database_id: str, table: str) -> str | None:
        """Return the stored CREATE TABLE text, or ``None`` if absent."""
        result = self._executor.execute(
            database_id,
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?",
            [table],
        )
        if not result.results:
            return None
        return result.results[0].get("sql")

    def index_definitions(self, database_id: str, table: str) -> list[IndexDefinition]:
        """Stored DDL for every user-created index on *table*.

        Automatic indexes (PRIMARY KEY / UNIQUE constraints) have no stored
        SQL and are excluded.
        """
        result = self._executor.execute(
            database_id,
            "SELECT name, sql FROM sqlite_master WHERE type = 'index' AND tbl_name = ? AND sql IS NOT NULL ORDER BY name",
            [table],
        )
        definitions: list[IndexDefinition] = []
        for row in result.results:
            name = str(row["name"])
            definitions.append(
                IndexDefinition(
                    name=name,
                    sql=str(row["sql"]),
                    columns=self.index_columns(database_id, table, name),
                )
            )
        return definitions

    # -- Row counts -------------------------------------------------------------

    def row_count(self, database_id: str, table: str) -> int:
        return self.count_rows(database_id, table)

    def count_rows(self, database_id: str, table: str, predicate: str | None = None) -> int:
        """Count rows in *table*, optionally restricted by a guarded predicate."""
        sql = f"SELECT COUNT(*) AS count FROM {quote_identifier(table)}"
        if predicate:
            sql += f" WHERE {normalize_predicate(predicate)}"
        return self._executor.execute(database_id, sql).scalar("count")
