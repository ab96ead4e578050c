"""Tests for schema_engine.mutation.engine.SchemaMutationEngine.

Every test runs against a real in-memory SQLite database so that the
rebuild sequence (STAGE -> COPY -> SWAP -> REINDEX) is exercised end to end.

Covers:
- direct ALTER operations (add / rename column)
- column modify / drop through table reconstruction
- foreign key add / modify / remove with pre-flight checks
- CLEANUP on failure between STAGE and SWAP
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest

from schema_engine.errors import (
    ConstraintNameMalformedError,
    NotFoundError,
    PartialGraphError,
    SchemaEngineError,
    TransientIOError,
    ValidationFailedError,
)
from schema_engine.executor.local_executor import LocalExecutor
from schema_engine.introspection.introspector import SchemaIntrospector
from schema_engine.models.schema import FKAction, QueryResult
from schema_engine.mutation.engine import MutationStep, SchemaMutationEngine
from schema_engine.mutation.locks import TableLockRegistry

DB = "app"
NOW = 1_700_000_000.0
REBUILD_STEPS = [
    MutationStep.VALIDATE,
    MutationStep.STAGE,
    MutationStep.COPY,
    MutationStep.SWAP,
    MutationStep.REINDEX,
    MutationStep.DONE,
]

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FailingExecutor:
    """Delegates to a real executor but fails statements starting with *prefix*."""

    def __init__(self, inner: LocalExecutor, prefix: str) -> None:
        self._inner = inner
        self._prefix = prefix
        self.statements: list[str] = []

    def execute(self, database_id: str, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        self.statements.append(sql)
        if sql.startswith(self._prefix):
            raise TransientIOError("simulated outage")
        return self._inner.execute(database_id, sql, params)


def _run(executor: LocalExecutor, *statements: str) -> None:
    for sql in statements:
        executor.execute(DB, sql)


def _rows(executor: LocalExecutor, sql: str) -> list[dict[str, Any]]:
    return executor.execute(DB, sql).results


def _tables(executor: LocalExecutor) -> list[str]:
    return [r["name"] for r in _rows(executor, "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")]


def _engine(executor, **kwargs) -> SchemaMutationEngine:
    return SchemaMutationEngine(SchemaIntrospector(executor), clock=lambda: NOW, **kwargs)


@pytest.fixture()
def people(local_executor) -> LocalExecutor:
    _run(
        local_executor,
        "CREATE TABLE people (id INTEGER PRIMARY KEY, name TEXT, age INTEGER, email TEXT)",
        "CREATE INDEX idx_people_name ON people(name)",
        "CREATE INDEX idx_people_email ON people(email)",
        "INSERT INTO people (id, name, age, email) VALUES (1, 'ada', 36, 'ada@example.com')",
        "INSERT INTO people (id, name, age, email) VALUES (2, 'alan', 41, 'alan@example.com')",
    )
    return local_executor


@pytest.fixture()
def blog(local_executor) -> LocalExecutor:
    _run(
        local_executor,
        "CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT UNIQUE, name TEXT)",
        "CREATE TABLE posts (id INTEGER PRIMARY KEY, user_id INTEGER, title TEXT NOT NULL DEFAULT '')",
        "INSERT INTO users (id, email, name) VALUES (1, 'a@example.com', 'ada'), (2, 'b@example.com', 'bob')",
        "INSERT INTO posts (id, user_id, title) VALUES (10, 1, 'hello'), (11, 2, 'world'), (12, NULL, 'draft')",
    )
    return local_executor


# ---------------------------------------------------------------------------
# add_column / rename_column
# ---------------------------------------------------------------------------


class TestAddColumn:
    def test_plain_column(self, people):
        result = _engine(people).add_column(DB, "people", "nickname")
        assert result.steps == [MutationStep.VALIDATE, MutationStep.DONE]
        assert result.temp_table is None
        column = next(c for c in result.columns if c.name == "nickname")
        assert column.type == "TEXT"
        assert not column.notnull

    def test_not_null_with_numeric_default(self, people):
        _engine(people).add_column(DB, "people", "score", "INTEGER", notnull=True, default="0")
        assert _rows(people, "SELECT score FROM people") == [{"score": 0}, {"score": 0}]

    def test_text_default_is_quoted(self, people):
        result = _engine(people).add_column(DB, "people", "motto", default="it's")
        column = next(c for c in result.columns if c.name == "motto")
        assert column.dflt_value == "'it''s'"
        assert _rows(people, "SELECT motto FROM people WHERE id = 1") == [{"motto": "it's"}]

    def test_not_null_without_default_rejected(self, people):
        with pytest.raises(ValidationFailedError, match="without a default"):
            _engine(people).add_column(DB, "people", "score", "INTEGER", notnull=True)

    def test_existing_column_rejected(self, people):
        with pytest.raises(ValidationFailedError, match="already exists"):
            _engine(people).add_column(DB, "people", "age", "INTEGER")

    def test_invalid_type_rejected(self, people):
        with pytest.raises(ValidationFailedError, match="Invalid column type"):
            _engine(people).add_column(DB, "people", "x", "INT); DROP TABLE people; --")
        assert "people" in _tables(people)

    def test_unknown_table(self, people):
        with pytest.raises(NotFoundError, match="ghosts"):
            _engine(people).add_column(DB, "ghosts", "x")

    def test_identifiers_sanitised(self, people):
        with pytest.raises(NotFoundError, match="peopleDROP"):
            _engine(people).add_column(DB, "people; DROP", "x")


class TestRenameColumn:
    def test_rename(self, people):
        result = _engine(people).rename_column(DB, "people", "name", "full_name")
        assert [c.name for c in result.columns] == ["id", "full_name", "age", "email"]
        assert _rows(people, "SELECT full_name FROM people WHERE id = 2") == [{"full_name": "alan"}]

    def test_target_name_taken(self, people):
        with pytest.raises(ValidationFailedError, match="already exists"):
            _engine(people).rename_column(DB, "people", "name", "email")

    def test_unknown_column(self, people):
        with pytest.raises(NotFoundError, match="Column 'nope' not found in table 'people'"):
            _engine(people).rename_column(DB, "people", "nope", "x")


# ---------------------------------------------------------------------------
# modify_column
# ---------------------------------------------------------------------------


class TestModifyColumn:
    def test_round_trip_not_null_default(self, people):
        before = _rows(people, "SELECT id, name, email FROM people ORDER BY id")

        result = _engine(people).modify_column(DB, "people", "age", notnull=True, default="0")

        age = next(c for c in SchemaIntrospector(people).table_info(DB, "people") if c.name == "age")
        assert age.notnull is True
        assert age.dflt_value == "0"
        assert age.type == "INTEGER"
        assert _rows(people, "SELECT id, name, email FROM people ORDER BY id") == before
        assert _rows(people, "SELECT age FROM people ORDER BY id") == [{"age": 36}, {"age": 41}]
        assert result.steps == REBUILD_STEPS
        assert result.temp_table == "people_temp_1700000000000"

    def test_temp_table_gone_and_indexes_recreated(self, people):
        _engine(people).modify_column(DB, "people", "age", column_type="BIGINT")

        assert _tables(people) == ["people"]
        indexes = [i.name for i in SchemaIntrospector(people).index_list(DB, "people")]
        assert sorted(indexes) == ["idx_people_email", "idx_people_name"]

    def test_column_order_preserved(self, people):
        result = _engine(people).modify_column(DB, "people", "name", column_type="VARCHAR(100)")
        assert [c.name for c in result.columns] == ["id", "name", "age", "email"]
        assert result.columns[1].type == "VARCHAR(100)"

    def test_drop_default(self, blog):
        result = _engine(blog).modify_column(DB, "posts", "title", drop_default=True)
        title = next(c for c in result.columns if c.name == "title")
        assert title.dflt_value is None
        assert title.notnull is True

    def test_make_nullable(self, blog):
        result = _engine(blog).modify_column(DB, "posts", "title", notnull=False)
        assert not next(c for c in result.columns if c.name == "title").notnull

    def test_not_null_rejected_when_nulls_exist(self, blog):
        with pytest.raises(ValidationFailedError, match="1 row"):
            _engine(blog).modify_column(DB, "posts", "user_id", notnull=True, default="0")
        assert not next(c for c in SchemaIntrospector(blog).table_info(DB, "posts") if c.name == "user_id").notnull

    def test_nothing_to_change(self, people):
        with pytest.raises(ValidationFailedError, match="No changes"):
            _engine(people).modify_column(DB, "people", "age")

    def test_autoincrement_preserved(self, local_executor):
        _run(
            local_executor,
            "CREATE TABLE events (id INTEGER PRIMARY KEY AUTOINCREMENT, kind TEXT)",
            "INSERT INTO events (kind) VALUES ('a'), ('b')",
        )
        _engine(local_executor).modify_column(DB, "events", "kind", notnull=True, default="x")

        sql = SchemaIntrospector(local_executor).table_sql(DB, "events") or ""
        assert "AUTOINCREMENT" in sql
        local_executor.execute(DB, "INSERT INTO events (kind) VALUES ('c')")
        assert _rows(local_executor, "SELECT MAX(id) AS id FROM events") == [{"id": 3}]

    def test_profiled(self, people):
        from schema_engine.telemetry.profiling import ProfileCollector

        _engine(people).modify_column(DB, "people", "age", column_type="BIGINT")
        assert ProfileCollector.get_instance().get_stats("mutation.rebuild")["count"] == 1


# ---------------------------------------------------------------------------
# drop_column
# ---------------------------------------------------------------------------


class TestDropColumn:
    def test_drop(self, people):
        result = _engine(people).drop_column(DB, "people", "email")

        assert [c.name for c in result.columns] == ["id", "name", "age"]
        assert _rows(people, "SELECT id, name, age FROM people ORDER BY id") == [
            {"id": 1, "name": "ada", "age": 36},
            {"id": 2, "name": "alan", "age": 41},
        ]

    def test_index_on_dropped_column_not_recreated(self, people):
        result = _engine(people).drop_column(DB, "people", "email")

        indexes = [i.name for i in SchemaIntrospector(people).index_list(DB, "people")]
        assert indexes == ["idx_people_name"]
        assert any("idx_people_email" in note for note in result.notes)

    def test_foreign_key_on_dropped_column_removed(self, local_executor):
        _run(
            local_executor,
            "CREATE TABLE users (id INTEGER PRIMARY KEY)",
            "CREATE TABLE posts (id INTEGER PRIMARY KEY, user_id INTEGER REFERENCES users(id), body TEXT)",
        )
        _engine(local_executor).drop_column(DB, "posts", "user_id")
        assert SchemaIntrospector(local_executor).foreign_keys(DB, "posts") == []

    def test_primary_key_rejected(self, people):
        with pytest.raises(ValidationFailedError, match="primary key"):
            _engine(people).drop_column(DB, "people", "id")

    def test_only_column_rejected(self, local_executor):
        _run(local_executor, "CREATE TABLE solo (value TEXT)")
        with pytest.raises(ValidationFailedError, match="only column"):
            _engine(local_executor).drop_column(DB, "solo", "value")

    def test_referenced_column_rejected(self, local_executor):
        _run(
            local_executor,
            "CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT UNIQUE)",
            "CREATE TABLE invites (id INTEGER PRIMARY KEY, email TEXT REFERENCES users(email))",
        )
        with pytest.raises(ValidationFailedError, match="fk_invites_email_users_email"):
            _engine(local_executor).drop_column(DB, "users", "email")

    def test_unknown_column(self, people):
        with pytest.raises(NotFoundError):
            _engine(people).drop_column(DB, "people", "nope")

    def test_unreadable_foreign_keys_block_drop(self, local_executor):
        _run(
            local_executor,
            "CREATE TABLE p (id INTEGER PRIMARY KEY, code TEXT UNIQUE)",
            "CREATE TABLE c (id INTEGER PRIMARY KEY, pcode TEXT REFERENCES p(code))",
        )
        failing = _FailingExecutor(local_executor, 'PRAGMA foreign_key_list("c")')

        with pytest.raises(PartialGraphError) as exc_info:
            _engine(failing).drop_column(DB, "p", "code")

        assert exc_info.value.tables == ["c"]
        assert "code" in [c.name for c in SchemaIntrospector(local_executor).table_info(DB, "p")]
        assert not any(s.startswith("CREATE TABLE") for s in failing.statements)


# ---------------------------------------------------------------------------
# Column attributes the catalog does not report
# ---------------------------------------------------------------------------


class _MissingDdlExecutor:
    """Delegates to a real executor but reports no stored CREATE TABLE text."""

    def __init__(self, inner: LocalExecutor) -> None:
        self._inner = inner

    def execute(self, database_id: str, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        if sql.startswith("SELECT sql FROM sqlite_master WHERE type = 'table'"):
            return QueryResult(results=[])
        return self._inner.execute(database_id, sql, params)


@pytest.fixture()
def totals(local_executor) -> LocalExecutor:
    _run(
        local_executor,
        "CREATE TABLE totals (id INTEGER PRIMARY KEY, a INTEGER, b INTEGER, "
        "s INTEGER GENERATED ALWAYS AS (a + 1) STORED, "
        "d INTEGER GENERATED ALWAYS AS (a * 2) VIRTUAL)",
        "INSERT INTO totals (id, a, b) VALUES (1, 1, 2), (2, 5, 6)",
    )
    return local_executor


class TestGeneratedColumns:
    def test_drop_keeps_generated_columns(self, totals):
        result = _engine(totals).drop_column(DB, "totals", "b")

        assert [c.name for c in result.columns] == ["id", "a", "s", "d"]
        hidden = {c.name: c.hidden for c in SchemaIntrospector(totals).table_xinfo(DB, "totals")}
        assert hidden == {"id": 0, "a": 0, "s": 3, "d": 2}
        assert _rows(totals, "SELECT id, a, s, d FROM totals ORDER BY id") == [
            {"id": 1, "a": 1, "s": 2, "d": 2},
            {"id": 2, "a": 5, "s": 6, "d": 10},
        ]

    def test_modify_other_column_keeps_generated_columns(self, totals):
        _engine(totals).modify_column(DB, "totals", "b", notnull=True, default="0")
        assert _rows(totals, "SELECT s FROM totals ORDER BY id") == [{"s": 2}, {"s": 6}]
        assert "GENERATED ALWAYS AS (a + 1) STORED" in (SchemaIntrospector(totals).table_sql(DB, "totals") or "")

    def test_drop_generated_column(self, totals):
        result = _engine(totals).drop_column(DB, "totals", "d")
        assert [c.name for c in result.columns] == ["id", "a", "b", "s"]

    def test_drop_source_of_generated_column_rejected(self, totals):
        with pytest.raises(ValidationFailedError, match="computed from it"):
            _engine(totals).drop_column(DB, "totals", "a")
        assert _tables(totals) == ["totals"]

    def test_modify_generated_column_rejected(self, totals):
        with pytest.raises(ValidationFailedError, match="generated column 's'"):
            _engine(totals).modify_column(DB, "totals", "s", notnull=True)

    def test_rebuild_refused_without_expression(self, totals):
        with pytest.raises(ValidationFailedError, match="could not be read"):
            _engine(_MissingDdlExecutor(totals)).drop_column(DB, "totals", "b")
        assert "b" in [c.name for c in SchemaIntrospector(totals).table_info(DB, "totals")]


class TestCollation:
    def test_collation_survives_rebuild(self, local_executor):
        _run(
            local_executor,
            "CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT COLLATE NOCASE UNIQUE, age INTEGER)",
            "INSERT INTO t (id, name, age) VALUES (1, 'Ada', 36)",
        )

        _engine(local_executor).modify_column(DB, "t", "age", notnull=True, default="0")

        assert "COLLATE NOCASE" in (SchemaIntrospector(local_executor).table_sql(DB, "t") or "")
        assert local_executor.execute(DB, "SELECT COUNT(*) AS count FROM t WHERE name = 'ADA'").scalar() == 1
        with pytest.raises(SchemaEngineError):
            local_executor.execute(DB, "INSERT INTO t (id, name) VALUES (2, 'ada')")


# ---------------------------------------------------------------------------
# Foreign keys
# ---------------------------------------------------------------------------


class TestAddForeignKey:
    def test_add(self, blog):
        result = _engine(blog).add_foreign_key(DB, "posts", "user_id", "users", "id", on_delete="cascade")

        (fk,) = SchemaIntrospector(blog).foreign_keys(DB, "posts")
        assert (fk.table, fk.from_column, fk.to_column) == ("users", "user_id", "id")
        assert fk.on_delete is FKAction.CASCADE
        assert result.steps == REBUILD_STEPS
        assert len(_rows(blog, "SELECT id FROM posts")) == 3

    def test_unique_index_target(self, blog):
        _run(blog, "ALTER TABLE posts ADD COLUMN author_email TEXT")
        _engine(blog).add_foreign_key(DB, "posts", "author_email", "users", "email")
        (fk,) = SchemaIntrospector(blog).foreign_keys(DB, "posts")
        assert fk.to_column == "email"

    def test_orphans_rejected(self, blog):
        _run(blog, "INSERT INTO posts (id, user_id, title) VALUES (13, 99, 'orphan')")
        with pytest.raises(ValidationFailedError, match="1 row"):
            _engine(blog).add_foreign_key(DB, "posts", "user_id", "users", "id")
        assert SchemaIntrospector(blog).foreign_keys(DB, "posts") == []

    def test_non_unique_target_rejected(self, blog):
        with pytest.raises(ValidationFailedError, match="UNIQUE"):
            _engine(blog).add_foreign_key(DB, "posts", "title", "users", "name")

    def test_type_mismatch_rejected(self, blog):
        with pytest.raises(ValidationFailedError, match="Type mismatch"):
            _engine(blog).add_foreign_key(DB, "posts", "title", "users", "id")

    def test_set_null_on_not_null_column_rejected(self, local_executor):
        _run(
            local_executor,
            "CREATE TABLE users (id INTEGER PRIMARY KEY)",
            "CREATE TABLE posts (id INTEGER PRIMARY KEY, user_id INTEGER NOT NULL DEFAULT 0)",
            "INSERT INTO users (id) VALUES (0)",
        )
        with pytest.raises(ValidationFailedError, match="SET NULL"):
            _engine(local_executor).add_foreign_key(DB, "posts", "user_id", "users", "id", on_delete="SET NULL")

    def test_invalid_action_rejected(self, blog):
        with pytest.raises(ValidationFailedError, match="Invalid foreign key action"):
            _engine(blog).add_foreign_key(DB, "posts", "user_id", "users", "id", on_delete="EXPLODE")

    def test_duplicate_rejected(self, blog):
        engine = _engine(blog)
        engine.add_foreign_key(DB, "posts", "user_id", "users", "id")
        with pytest.raises(ValidationFailedError, match="already exists"):
            engine.add_foreign_key(DB, "posts", "user_id", "users", "id")

    def test_self_column_rejected(self, blog):
        with pytest.raises(ValidationFailedError, match="itself"):
            _engine(blog).add_foreign_key(DB, "users", "id", "users", "id")

    def test_missing_reference(self, blog):
        with pytest.raises(NotFoundError):
            _engine(blog).add_foreign_key(DB, "posts", "user_id", "accounts", "id")

    def test_cycle_guard(self, local_executor):
        _run(
            local_executor,
            "CREATE TABLE a (id INTEGER PRIMARY KEY, b_id INTEGER REFERENCES b(id))",
            "CREATE TABLE b (id INTEGER PRIMARY KEY, a_id INTEGER)",
        )
        engine = _engine(local_executor)
        with pytest.raises(ValidationFailedError, match="circular dependency"):
            engine.add_foreign_key(DB, "b", "a_id", "a", "id")
        assert SchemaIntrospector(local_executor).foreign_keys(DB, "b") == []

        engine.add_foreign_key(DB, "b", "a_id", "a", "id", allow_cycle=True)
        assert len(SchemaIntrospector(local_executor).foreign_keys(DB, "b")) == 1

    def test_unreadable_foreign_keys_block_cycle_check(self, local_executor):
        _run(
            local_executor,
            "CREATE TABLE a (id INTEGER PRIMARY KEY, b_id INTEGER REFERENCES b(id))",
            "CREATE TABLE b (id INTEGER PRIMARY KEY, a_id INTEGER)",
        )
        failing = _FailingExecutor(local_executor, 'PRAGMA foreign_key_list("a")')

        with pytest.raises(PartialGraphError) as exc_info:
            _engine(failing).add_foreign_key(DB, "b", "a_id", "a", "id")

        assert exc_info.value.tables == ["a"]
        assert SchemaIntrospector(local_executor).foreign_keys(DB, "b") == []

    def test_self_reference_allowed(self, local_executor):
        _run(local_executor, "CREATE TABLE employees (id INTEGER PRIMARY KEY, manager_id INTEGER)")
        _engine(local_executor).add_foreign_key(DB, "employees", "manager_id", "employees", "id")
        (fk,) = SchemaIntrospector(local_executor).foreign_keys(DB, "employees")
        assert fk.table == "employees"


class TestModifyAndRemoveForeignKey:
    @pytest.fixture()
    def linked(self, blog) -> LocalExecutor:
        _engine(blog).add_foreign_key(DB, "posts", "user_id", "users", "id", on_delete="CASCADE")
        return blog

    def test_modify_actions(self, linked):
        _engine(linked).modify_foreign_key(DB, "fk_posts_user_id_users_id", on_delete="SET NULL", on_update="CASCADE")
        (fk,) = SchemaIntrospector(linked).foreign_keys(DB, "posts")
        assert fk.on_delete is FKAction.SET_NULL
        assert fk.on_update is FKAction.CASCADE

    def test_modify_keeps_unspecified_action(self, linked):
        _engine(linked).modify_foreign_key(DB, "fk_posts_user_id_users_id", on_update="RESTRICT")
        (fk,) = SchemaIntrospector(linked).foreign_keys(DB, "posts")
        assert fk.on_delete is FKAction.CASCADE
        assert fk.on_update is FKAction.RESTRICT

    def test_modify_requires_an_action(self, linked):
        with pytest.raises(ValidationFailedError):
            _engine(linked).modify_foreign_key(DB, "fk_posts_user_id_users_id")

    def test_remove(self, linked):
        result = _engine(linked).remove_foreign_key(DB, "fk_posts_user_id_users_id")
        assert SchemaIntrospector(linked).foreign_keys(DB, "posts") == []
        assert result.table == "posts"
        assert len(_rows(linked, "SELECT id FROM posts")) == 3

    @pytest.mark.parametrize("name", ["posts_user_id_users_id", "fk_posts_users", "fk_a_b_c"])
    def test_malformed_name(self, linked, name):
        with pytest.raises(ConstraintNameMalformedError):
            _engine(linked).remove_foreign_key(DB, name)

    def test_unknown_constraint(self, linked):
        with pytest.raises(NotFoundError, match="fk_posts_title_users_name"):
            _engine(linked).remove_foreign_key(DB, "fk_posts_title_users_name")


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


class TestCleanup:
    def test_copy_failure_drops_temp_and_keeps_original(self, people):
        failing = _FailingExecutor(people, "INSERT INTO")
        before_columns = SchemaIntrospector(people).table_info(DB, "people")
        before_rows = _rows(people, "SELECT * FROM people ORDER BY id")

        with pytest.raises(TransientIOError):
            _engine(failing).modify_column(DB, "people", "age", notnull=True, default="0")

        assert 'DROP TABLE IF EXISTS "people_temp_1700000000000"' in failing.statements
        assert _tables(people) == ["people"]
        assert SchemaIntrospector(people).table_info(DB, "people") == before_columns
        assert _rows(people, "SELECT * FROM people ORDER BY id") == before_rows

    def test_stage_failure_leaves_original(self, people):
        failing = _FailingExecutor(people, "CREATE TABLE")

        with pytest.raises(TransientIOError):
            _engine(failing).drop_column(DB, "people", "email")

        assert _tables(people) == ["people"]
        assert "email" in [c.name for c in SchemaIntrospector(people).table_info(DB, "people")]

    def test_rename_failure_keeps_data_in_temp(self, people):
        failing = _FailingExecutor(people, 'ALTER TABLE "people_temp_')

        with pytest.raises(TransientIOError):
            _engine(failing).modify_column(DB, "people", "age", column_type="BIGINT")

        assert _tables(people) == ["people_temp_1700000000000"]
        assert len(_rows(people, 'SELECT * FROM "people_temp_1700000000000"')) == 2
        assert not any(s.startswith("DROP TABLE IF EXISTS") for s in failing.statements)

    def test_cleanup_failure_does_not_mask_original_error(self, people):
        class _DoubleFailure(_FailingExecutor):
            def execute(self, database_id, sql, params=None):
                if sql.startswith("DROP TABLE IF EXISTS"):
                    raise SchemaEngineError("cleanup failed")
                return super().execute(database_id, sql, params)

        with pytest.raises(TransientIOError):
            _engine(_DoubleFailure(people, "INSERT INTO")).modify_column(DB, "people", "age", column_type="BIGINT")


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


class TestSerialization:
    def test_lock_taken_per_table(self, people):
        class _RecordingRegistry(TableLockRegistry):
            def __init__(self) -> None:
                super().__init__()
                self.held: list[tuple[str, str]] = []

            def hold(self, database_id, table):
                self.held.append((database_id, table))
                return super().hold(database_id, table)

        registry = _RecordingRegistry()
        engine = _engine(people, locks=registry)
        engine.modify_column(DB, "people", "age", column_type="BIGINT")
        engine.add_column(DB, "people", "nickname")
        assert registry.held == [(DB, "people"), (DB, "people")]

    def test_from_settings_uses_shared_registry(self, people):
        from schema_engine.config import load_settings

        engine = SchemaMutationEngine.from_settings(SchemaIntrospector(people), load_settings(serialize_mutations=True))
        assert engine._locks is TableLockRegistry.shared()

        unlocked = SchemaMutationEngine.from_settings(
            SchemaIntrospector(people), load_settings(serialize_mutations=False)
        )
        assert unlocked._locks is None
