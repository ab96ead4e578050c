"""Tests for schema_engine.introspection.SchemaIntrospector and LocalExecutor.

Covers:
- typed PRAGMA records (table_info, foreign_key_list, index_list)
- table listing and stored DDL lookups
- row counting with guarded predicates
- LocalExecutor error classification and file-backed databases
"""

from __future__ import annotations

import pytest

from schema_engine.errors import SchemaEngineError, ValidationFailedError
from schema_engine.executor.local_executor import LocalExecutor
from schema_engine.introspection.introspector import SchemaIntrospector
from schema_engine.models.schema import FKAction

DB = "shop"


def _create_schema(executor: LocalExecutor) -> None:
    for sql in (
        "CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT UNIQUE, name TEXT NOT NULL DEFAULT 'anon')",
        "CREATE TABLE posts (id INTEGER PRIMARY KEY, user_id INTEGER REFERENCES users(id) ON DELETE CASCADE, title TEXT)",
        "CREATE INDEX idx_posts_title ON posts(title)",
        "INSERT INTO users (id, email) VALUES (1, 'a@example.com'), (2, 'b@example.com')",
        "INSERT INTO posts (id, user_id, title) VALUES (1, 1, 'x'), (2, 1, 'y'), (3, 2, 'z')",
    ):
        executor.execute(DB, sql)


@pytest.fixture()
def shop(local_executor, introspector) -> SchemaIntrospector:
    _create_schema(local_executor)
    return introspector


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestCatalog:
    def test_list_tables(self, shop):
        assert [t.name for t in shop.list_tables(DB)] == ["posts", "users"]

    def test_table_info(self, shop):
        columns = shop.table_info(DB, "users")
        assert [c.name for c in columns] == ["id", "email", "name"]
        assert columns[0].pk == 1
        assert columns[2].notnull is True
        assert columns[2].dflt_value == "'anon'"

    def test_table_info_missing_table_is_empty(self, shop):
        assert shop.table_info(DB, "nope") == []

    def test_foreign_keys(self, shop):
        (fk,) = shop.foreign_keys(DB, "posts")
        assert fk.table == "users"
        assert fk.from_column == "user_id"
        assert fk.to_column == "id"
        assert fk.on_delete is FKAction.CASCADE
        assert fk.on_update is FKAction.NO_ACTION

    def test_index_list_origins(self, shop):
        origins = {i.origin for i in shop.index_list(DB, "users")}
        assert "u" in origins
        posts = shop.index_list(DB, "posts")
        assert [i.name for i in posts if i.is_user_created] == ["idx_posts_title"]

    def test_index_columns(self, shop):
        assert shop.index_columns(DB, "posts", "idx_posts_title") == ["title"]

    def test_index_definitions_exclude_automatic(self, shop):
        assert shop.index_definitions(DB, "users") == []
        (definition,) = shop.index_definitions(DB, "posts")
        assert definition.name == "idx_posts_title"
        assert definition.columns == ["title"]
        assert definition.sql.startswith("CREATE INDEX")

    def test_table_sql(self, shop):
        assert "CREATE TABLE users" in (shop.table_sql(DB, "users") or "")
        assert shop.table_sql(DB, "missing") is None

    def test_identifiers_are_sanitised(self, shop):
        assert [c.name for c in shop.table_info(DB, 'users"); --')] == ["id", "email", "name"]


# ---------------------------------------------------------------------------
# Row counts
# ---------------------------------------------------------------------------


class TestRowCounts:
    def test_row_count(self, shop):
        assert shop.row_count(DB, "posts") == 3

    def test_count_with_predicate(self, shop):
        assert shop.count_rows(DB, "posts", "user_id = 1") == 2

    def test_count_with_subquery_predicate(self, shop):
        predicate = '"user_id" IN (SELECT "id" FROM "users" WHERE email = \'b@example.com\')'
        assert shop.count_rows(DB, "posts", predicate) == 1

    def test_dangerous_predicate_rejected(self, shop):
        with pytest.raises(ValidationFailedError):
            shop.count_rows(DB, "posts", "1 = 1; DELETE FROM posts")
        assert shop.row_count(DB, "posts") == 3


# ---------------------------------------------------------------------------
# LocalExecutor
# ---------------------------------------------------------------------------


class TestLocalExecutor:
    def test_meta_reports_changes(self, local_executor):
        local_executor.execute(DB, "CREATE TABLE t (id INTEGER PRIMARY KEY)")
        result = local_executor.execute(DB, "INSERT INTO t (id) VALUES (?), (?)", [1, 2])
        assert result.meta["changes"] == 2
        assert result.results == []

    def test_databases_are_isolated(self, local_executor):
        local_executor.execute("a", "CREATE TABLE t (id INTEGER)")
        tables = local_executor.execute("b", "SELECT name FROM sqlite_master WHERE type = 'table'").results
        assert tables == []

    def test_bad_sql_raises_schema_error(self, local_executor):
        with pytest.raises(SchemaEngineError, match="Query failed"):
            local_executor.execute(DB, "SELECT * FROM missing_table")

    def test_file_backed_database(self, tmp_path):
        with LocalExecutor(tmp_path) as executor:
            executor.execute("app", "CREATE TABLE t (id INTEGER)")
            assert executor.path_for("app") == tmp_path / "app.sqlite3"
        assert (tmp_path / "app.sqlite3").exists()

    def test_foreign_key_enforcement_opt_in(self):
        with LocalExecutor(enforce_foreign_keys=True) as executor:
            assert executor.execute(DB, "PRAGMA foreign_keys").scalar("foreign_keys") == 1
