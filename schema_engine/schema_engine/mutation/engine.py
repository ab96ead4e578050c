"""Schema changes the storage engine cannot express directly.

Adding and renaming a column map to a single ``ALTER TABLE``.  Dropping or
redefining a column, and adding, modifying, or removing a foreign key,
rebuild the table::

    VALIDATE -> STAGE -> COPY -> SWAP -> REINDEX -> DONE

A failure in STAGE, COPY, or SWAP moves to CLEANUP, which drops the
temporary table and re-raises.

The original table is dropped only once the replacement holds a full copy
of the data, so a failure before SWAP leaves the original untouched and
removes the temporary table.  There is no transaction around the sequence:
concurrent readers may briefly see the table missing between the drop and
the rename.  Mutations are never retried here; callers retry the whole
operation.
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import Callable, Sequence
from enum import Enum

from pydantic import BaseModel, Field

from schema_engine.config import Settings
from schema_engine.errors import (
    ConstraintNameMalformedError,
    NotFoundError,
    SchemaEngineError,
    ValidationFailedError,
)
from schema_engine.graph.cycle_detector import would_create_cycle
from schema_engine.graph.fk_graph_builder import DEFAULT_SYSTEM_PREFIXES, build_graph
from schema_engine.introspection.introspector import SchemaIntrospector
from schema_engine.models.graph import ForeignKeyEdge, ForeignKeyGraph
from schema_engine.models.schema import (
    Column,
    FKAction,
    are_types_compatible,
    normalize_action,
    validate_declared_type,
)
from schema_engine.mutation.locks import TableLockRegistry
from schema_engine.mutation.table_definition import ForeignKeyConstraint, TableDefinition
from schema_engine.sanitize import format_default_literal, quote_identifier, sanitize_identifier
from schema_engine.telemetry.profiling import profile_operation

logger = logging.getLogger(__name__)


class MutationStep(str, Enum):
    VALIDATE = "VALIDATE"
    STAGE = "STAGE"
    COPY = "COPY"
    SWAP = "SWAP"
    REINDEX = "REINDEX"
    DONE = "DONE"
    CLEANUP = "CLEANUP"


class MutationResult(BaseModel):
    """Outcome of a completed mutation."""

    database_id: str
    table: str
    operation: str
    steps: list[MutationStep] = Field(default_factory=list)
    temp_table: str | None = Field(default=None, description="Temporary table used by a rebuild.")
    columns: list[Column] = Field(default_factory=list, description="Column info re-read after the change.")
    notes: list[str] = Field(default_factory=list)


class SchemaMutationEngine:
    """Apply column and foreign-key changes to a table.

    Parameters
    ----------
    introspector:
        Metadata reads and statement execution.
    locks:
        Registry serializing mutations per ``(database_id, table)``.
        ``None`` disables serialization.
    system_prefixes:
        Table prefixes excluded from the graph used for pre-flight checks.
    clock:
        Source of the temporary-table timestamp suffix.
    """

    def __init__(
        self,
        introspector: SchemaIntrospector,
        *,
        locks: TableLockRegistry | None = None,
        system_prefixes: Sequence[str] = DEFAULT_SYSTEM_PREFIXES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._introspector = introspector
        self._locks = locks
        self._system_prefixes = tuple(system_prefixes)
        self._clock = clock

    @classmethod
    def from_settings(cls, introspector: SchemaIntrospector, settings: Settings) -> SchemaMutationEngine:
        return cls(
            introspector,
            locks=TableLockRegistry.shared() if settings.serialize_mutations else None,
            system_prefixes=settings.system_table_prefixes,
        )

    # -----------------------------------------------------------------------
    # Direct ALTER operations
    # -----------------------------------------------------------------------

    def add_column(
        self,
        database_id: str,
        table: str,
        column: str,
        column_type: str = "TEXT",
        *,
        notnull: bool = False,
        default: str | None = None,
    ) -> MutationResult:
        """Add a column with a single ``ALTER TABLE ... ADD COLUMN``.

        Raises
        ------
        ValidationFailedError
            If the column exists, the type is not allowed, or ``NOT NULL``
            is requested without a default.
        """
        table = sanitize_identifier(table)
        column = sanitize_identifier(column)
        declared = validate_declared_type(column_type) if column_type.strip() else ""
        has_default = default is not None and default != ""

        with self._serialized(database_id, table):
            columns = self._require_table(database_id, table)
            if any(c.name == column for c in columns):
                raise ValidationFailedError(f"Column '{column}' already exists in table '{table}'")
            if notnull and not has_default:
                raise ValidationFailedError(f"Cannot add NOT NULL column '{column}' without a default value")

            sql = f"ALTER TABLE {quote_identifier(table)} ADD COLUMN {quote_identifier(column)}"
            if declared:
                sql += f" {declared}"
            if notnull:
                sql += " NOT NULL"
            if has_default:
                sql += f" DEFAULT {format_default_literal(default)}"  # type: ignore[arg-type]
            self._execute(database_id, sql)

        logger.info("Added column %s.%s", table, column, extra={"database_id": database_id, "table": table})
        return self._result(database_id, table, "add_column", [MutationStep.VALIDATE, MutationStep.DONE])

    def rename_column(self, database_id: str, table: str, column: str, new_name: str) -> MutationResult:
        table = sanitize_identifier(table)
        column = sanitize_identifier(column)
        new_name = sanitize_identifier(new_name)

        with self._serialized(database_id, table):
            columns = self._require_table(database_id, table)
            self._require_column(columns, table, column)
            if any(c.name == new_name for c in columns):
                raise ValidationFailedError(f"Column '{new_name}' already exists in table '{table}'")
            self._execute(
                database_id,
                f"ALTER TABLE {quote_identifier(table)} RENAME COLUMN {quote_identifier(column)} TO {quote_identifier(new_name)}",
            )

        logger.info(
            "Renamed column %s.%s to %s", table, column, new_name, extra={"database_id": database_id, "table": table}
        )
        return self._result(database_id, table, "rename_column", [MutationStep.VALIDATE, MutationStep.DONE])

    # -----------------------------------------------------------------------
    # Column reconstruction
    # -----------------------------------------------------------------------

    def modify_column(
        self,
        database_id: str,
        table: str,
        column: str,
        *,
        column_type: str | None = None,
        notnull: bool | None = None,
        default: str | None = None,
        drop_default: bool = False,
    ) -> MutationResult:
        """Redefine a column's type, nullability, or default by rebuilding the table.

        ``None`` leaves an attribute unchanged.  A new *default* is quoted
        with :func:`~schema_engine.sanitize.format_default_literal`;
        *drop_default* removes the existing default.

        Raises
        ------
        ValidationFailedError
            If nothing changes, the column is generated, or ``NOT NULL`` is
            requested while the column holds NULLs.
        """
        table = sanitize_identifier(table)
        column = sanitize_identifier(column)

        updates: dict[str, object] = {}
        if column_type is not None:
            updates["type"] = validate_declared_type(column_type) if column_type.strip() else ""
        if notnull is not None:
            updates["notnull"] = notnull
        if drop_default:
            updates["default"] = None
        elif default is not None:
            updates["default"] = format_default_literal(default) if default != "" else None
        if not updates:
            raise ValidationFailedError(f"No changes requested for column '{column}'")

        with self._serialized(database_id, table):
            columns = self._require_table(database_id, table)
            current = self._require_column(columns, table, column)
            if current.is_generated:
                raise ValidationFailedError(f"Cannot modify generated column '{column}' of '{table}'")

            if updates.get("notnull") and not current.notnull:
                nulls = self._introspector.count_rows(database_id, table, f"{quote_identifier(column)} IS NULL")
                if nulls:
                    raise ValidationFailedError(
                        f"Cannot make column '{column}' NOT NULL: {nulls} row(s) in '{table}' contain NULL"
                    )

            definition = self._load_definition(database_id, table, columns)
            target = definition.column(column)
            if target is None:
                raise NotFoundError("column", column, table=table)
            definition = definition.with_column(target.model_copy(update=updates))
            return self._rebuild(database_id, table, definition, operation="modify_column")

    def drop_column(self, database_id: str, table: str, column: str) -> MutationResult:
        """Remove a column (and constraints that mention it) by rebuilding the table.

        Raises
        ------
        ValidationFailedError
            If the column is the table's only column, part of the primary
            key, referenced by another foreign key, or used by a generated
            column.
        PartialGraphError
            If the foreign keys of some table could not be read.
        """
        table = sanitize_identifier(table)
        column = sanitize_identifier(column)

        with self._serialized(database_id, table):
            columns = self._require_table(database_id, table)
            target = self._require_column(columns, table, column)
            if len(columns) == 1:
                raise ValidationFailedError(f"Cannot drop '{column}': it is the only column of '{table}'")
            if target.is_primary_key:
                raise ValidationFailedError(f"Cannot drop primary key column '{column}' of '{table}'")

            graph = self._graph(database_id)
            referencing = [
                e.id
                for e in graph.edges_to(table)
                if e.target_column == column and not (e.source_table == table and e.source_column == column)
            ]
            if referencing:
                raise ValidationFailedError(
                    f"Cannot drop '{table}.{column}': referenced by foreign key(s) {', '.join(referencing)}"
                )

            definition = self._load_definition(database_id, table, columns).without_column(column)
            return self._rebuild(
                database_id,
                table,
                definition,
                operation="drop_column",
                skip_index_columns=frozenset({column}),
            )

    # -----------------------------------------------------------------------
    # Foreign keys
    # -----------------------------------------------------------------------

    def add_foreign_key(
        self,
        database_id: str,
        table: str,
        column: str,
        ref_table: str,
        ref_column: str,
        *,
        on_delete: str | FKAction | None = FKAction.NO_ACTION,
        on_update: str | FKAction | None = FKAction.NO_ACTION,
        allow_cycle: bool = False,
    ) -> MutationResult:
        """Add ``FOREIGN KEY (column) REFERENCES ref_table(ref_column)``.

        Pre-flight checks, in order: both columns exist; the reference is
        not the column itself; the referenced column is a primary key or
        has a UNIQUE index; the column types are compatible; ``SET NULL``
        is not requested on a NOT NULL column; the constraint does not
        already exist; no orphan rows; and, unless *allow_cycle* is set or
        the key references its own table, no new circular dependency.

        Raises
        ------
        NotFoundError
            If a table or column is missing.
        ValidationFailedError
            If any other check fails.
        PartialGraphError
            If the cycle check cannot see every table's foreign keys.
        """
        table = sanitize_identifier(table)
        column = sanitize_identifier(column)
        ref_table = sanitize_identifier(ref_table)
        ref_column = sanitize_identifier(ref_column)
        delete_action = normalize_action(on_delete)
        update_action = normalize_action(on_update)

        with self._serialized(database_id, table):
            self._log_step(database_id, table, MutationStep.VALIDATE, "add_foreign_key")
            columns = self._require_table(database_id, table)
            source = self._require_column(columns, table, column)
            ref_columns = self._require_table(database_id, ref_table)
            target = self._require_column(ref_columns, ref_table, ref_column)

            if table == ref_table and column == ref_column:
                raise ValidationFailedError(f"Column '{table}.{column}' cannot reference itself")
            self._require_unique_target(database_id, ref_table, ref_columns, ref_column)
            if not are_types_compatible(source.type, target.type):
                raise ValidationFailedError(
                    f"Type mismatch: '{table}.{column}' is {source.type or 'untyped'} "
                    f"but '{ref_table}.{ref_column}' is {target.type or 'untyped'}"
                )
            self._reject_set_null_on_notnull(delete_action, update_action, [source])

            definition = self._load_definition(database_id, table, columns)
            if definition.find_foreign_key(column, ref_table, ref_column) is not None:
                raise ValidationFailedError(
                    f"Foreign key from '{table}.{column}' to '{ref_table}.{ref_column}' already exists"
                )

            orphans = self._count_orphans(database_id, table, column, ref_table, ref_column)
            if orphans:
                raise ValidationFailedError(
                    f"Cannot add foreign key: {orphans} row(s) in '{table}.{column}' "
                    f"have no matching value in '{ref_table}.{ref_column}'"
                )

            if table != ref_table and not allow_cycle:
                check = would_create_cycle(self._graph(database_id), table, ref_table)
                if check.would_create_cycle and check.cycle is not None:
                    raise ValidationFailedError(
                        f"Adding this foreign key would create a circular dependency: {check.cycle.path}"
                    )

            definition = definition.with_foreign_key(
                ForeignKeyConstraint(
                    columns=[column],
                    ref_table=ref_table,
                    ref_columns=[ref_column],
                    on_delete=delete_action,
                    on_update=update_action,
                )
            )
            return self._rebuild(database_id, table, definition, operation="add_foreign_key")

    def modify_foreign_key(
        self,
        database_id: str,
        constraint_name: str,
        *,
        on_delete: str | FKAction | None = None,
        on_update: str | FKAction | None = None,
    ) -> MutationResult:
        """Change the ON DELETE / ON UPDATE actions of an existing foreign key."""
        if on_delete is None and on_update is None:
            raise ValidationFailedError("Specify at least one of on_delete or on_update")
        edge = self.resolve_constraint(database_id, constraint_name)
        table = edge.source_table

        with self._serialized(database_id, table):
            self._log_step(database_id, table, MutationStep.VALIDATE, "modify_foreign_key")
            columns = self._require_table(database_id, table)
            definition = self._load_definition(database_id, table, columns)
            fk = self._require_foreign_key(definition, edge, constraint_name)

            delete_action = normalize_action(on_delete) if on_delete is not None else fk.on_delete
            update_action = normalize_action(on_update) if on_update is not None else fk.on_update
            self._reject_set_null_on_notnull(
                delete_action, update_action, [c for c in columns if c.name in fk.columns]
            )

            updated = fk.model_copy(update={"on_delete": delete_action, "on_update": update_action})
            definition = definition.replacing_foreign_key(fk, updated)
            return self._rebuild(database_id, table, definition, operation="modify_foreign_key")

    def remove_foreign_key(self, database_id: str, constraint_name: str) -> MutationResult:
        edge = self.resolve_constraint(database_id, constraint_name)
        table = edge.source_table

        with self._serialized(database_id, table):
            self._log_step(database_id, table, MutationStep.VALIDATE, "remove_foreign_key")
            columns = self._require_table(database_id, table)
            definition = self._load_definition(database_id, table, columns)
            fk = self._require_foreign_key(definition, edge, constraint_name)
            definition = definition.without_foreign_key(fk)
            return self._rebuild(database_id, table, definition, operation="remove_foreign_key")

    def resolve_constraint(self, database_id: str, constraint_name: str) -> ForeignKeyEdge:
        """Map ``fk_<src>_<col>_<tgt>_<col>`` to the edge it names.

        Table and column names may themselves contain underscores, so the
        name is matched against the identifiers of the live graph rather
        than split positionally.

        Raises
        ------
        ConstraintNameMalformedError
            If the name lacks the ``fk_`` prefix or has fewer than four parts.
        NotFoundError
            If no foreign key has this identifier.
        """
        if not constraint_name.startswith("fk_") or len(constraint_name[3:].split("_")) < 4:
            raise ConstraintNameMalformedError(constraint_name)
        edge = self._graph(database_id).edge(constraint_name)
        if edge is None:
            raise NotFoundError("constraint", constraint_name)
        return edge

    # -----------------------------------------------------------------------
    # Table reconstruction
    # -----------------------------------------------------------------------

    @profile_operation("mutation.rebuild")
    def _rebuild(
        self,
        database_id: str,
        table: str,
        definition: TableDefinition,
        *,
        operation: str,
        skip_index_columns: frozenset[str] = frozenset(),
    ) -> MutationResult:
        steps = [MutationStep.VALIDATE]
        notes: list[str] = []

        # Captured before STAGE; the originals vanish with DROP TABLE.
        indexes = []
        for index in self._introspector.index_definitions(database_id, table):
            if skip_index_columns & set(index.columns):
                notes.append(f"Index '{index.name}' dropped with column(s) {', '.join(sorted(skip_index_columns))}")
                logger.warning("Not recreating index %s on %s: it uses a dropped column", index.name, table)
                continue
            indexes.append(index)

        temp = f"{table}_temp_{int(self._clock() * 1000)}"
        column_list = ", ".join(quote_identifier(c) for c in definition.stored_column_names)
        step = MutationStep.STAGE
        awaiting_rename = False

        try:
            self._log_step(database_id, table, step, operation)
            self._execute(database_id, definition.render(temp))
            steps.append(step)

            step = MutationStep.COPY
            self._log_step(database_id, table, step, operation)
            self._execute(
                database_id,
                f"INSERT INTO {quote_identifier(temp)} ({column_list}) SELECT {column_list} FROM {quote_identifier(table)}",
            )
            steps.append(step)

            step = MutationStep.SWAP
            self._log_step(database_id, table, step, operation)
            self._execute(database_id, f"DROP TABLE {quote_identifier(table)}")
            awaiting_rename = True
            self._execute(database_id, f"ALTER TABLE {quote_identifier(temp)} RENAME TO {quote_identifier(table)}")
            awaiting_rename = False
            steps.append(step)

            step = MutationStep.REINDEX
            self._log_step(database_id, table, step, operation)
            for index in indexes:
                self._execute(database_id, index.sql)
            steps.append(step)
        except Exception:
            if awaiting_rename:
                logger.error(
                    "Table '%s' was dropped but '%s' could not be renamed; its data is in '%s'",
                    table,
                    temp,
                    temp,
                    extra={"database_id": database_id, "table": table, "step": step.value},
                )
                raise
            self._cleanup(database_id, table, temp, step)
            raise

        steps.append(MutationStep.DONE)
        self._log_step(database_id, table, MutationStep.DONE, operation)
        return self._result(database_id, table, operation, steps, temp_table=temp, notes=notes)

    def _cleanup(self, database_id: str, table: str, temp: str, failed_step: MutationStep) -> None:
        logger.warning(
            "%s failed for %s; dropping temporary table %s",
            failed_step.value,
            table,
            temp,
            extra={"database_id": database_id, "table": table, "step": MutationStep.CLEANUP.value},
        )
        try:
            self._execute(database_id, f"DROP TABLE IF EXISTS {quote_identifier(temp)}")
        except SchemaEngineError as exc:
            logger.warning("Failed to drop temporary table %s: %s", temp, exc, extra={"database_id": database_id})

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _serialized(self, database_id: str, table: str) -> contextlib.AbstractContextManager[None]:
        if self._locks is None:
            return contextlib.nullcontext()
        return self._locks.hold(database_id, table)

    def _execute(self, database_id: str, sql: str) -> None:
        logger.debug("Executing: %s", sql, extra={"database_id": database_id})
        self._introspector.execute(database_id, sql)

    def _log_step(self, database_id: str, table: str, step: MutationStep, operation: str) -> None:
        logger.info(
            "%s %s: %s",
            operation,
            table,
            step.value,
            extra={"database_id": database_id, "table": table, "operation": operation, "step": step.value},
        )

    def _graph(self, database_id: str) -> ForeignKeyGraph:
        graph = build_graph(self._introspector, database_id, system_prefixes=self._system_prefixes)
        graph.raise_if_incomplete()
        return graph

    def _require_table(self, database_id: str, table: str) -> list[Column]:
        columns = self._introspector.table_xinfo(database_id, table)
        if not columns:
            raise NotFoundError("table", table)
        return columns

    @staticmethod
    def _require_column(columns: list[Column], table: str, column: str) -> Column:
        for col in columns:
            if col.name == column:
                return col
        raise NotFoundError("column", column, table=table)

    @staticmethod
    def _require_foreign_key(definition: TableDefinition, edge: ForeignKeyEdge, name: str) -> ForeignKeyConstraint:
        fk = definition.find_foreign_key(edge.source_column, edge.target_table, edge.target_column)
        if fk is None:
            raise NotFoundError("constraint", name, table=edge.source_table)
        return fk

    @staticmethod
    def _reject_set_null_on_notnull(on_delete: FKAction, on_update: FKAction, columns: list[Column]) -> None:
        if FKAction.SET_NULL not in (on_delete, on_update):
            return
        for col in columns:
            if col.notnull:
                raise ValidationFailedError(f"SET NULL cannot be used on NOT NULL column '{col.name}'")

    def _load_definition(self, database_id: str, table: str, columns: list[Column]) -> TableDefinition:
        unique_sets = [
            self._introspector.index_columns(database_id, table, index.name)
            for index in self._introspector.index_list(database_id, table)
            if index.origin == "u"
        ]
        definition = TableDefinition.from_catalog(
            columns,
            self._introspector.foreign_keys(database_id, table),
            unique_sets,
            self._introspector.table_sql(database_id, table),
        )
        unreadable = [c.name for c in definition.columns if c.generated and not c.expression]
        if unreadable:
            raise ValidationFailedError(
                f"Cannot rebuild '{table}': the expression of generated column(s) "
                f"{', '.join(unreadable)} could not be read from its DDL"
            )
        return definition

    def _require_unique_target(self, database_id: str, ref_table: str, ref_columns: list[Column], ref_column: str) -> None:
        primary_key = [c.name for c in sorted(ref_columns, key=lambda c: c.pk) if c.pk > 0]
        if primary_key == [ref_column]:
            return
        for index in self._introspector.index_list(database_id, ref_table):
            if not index.unique or index.partial:
                continue
            if self._introspector.index_columns(database_id, ref_table, index.name) == [ref_column]:
                return
        raise ValidationFailedError(
            f"Referenced column '{ref_table}.{ref_column}' must be a PRIMARY KEY or have a UNIQUE index"
        )

    def _count_orphans(self, database_id: str, table: str, column: str, ref_table: str, ref_column: str) -> int:
        col = quote_identifier(column)
        ref = quote_identifier(ref_column)
        predicate = (
            f"{col} IS NOT NULL AND {col} NOT IN "
            f"(SELECT {ref} FROM {quote_identifier(ref_table)} WHERE {ref} IS NOT NULL)"
        )
        return self._introspector.count_rows(database_id, table, predicate)

    def _result(
        self,
        database_id: str,
        table: str,
        operation: str,
        steps: list[MutationStep],
        *,
        temp_table: str | None = None,
        notes: list[str] | None = None,
    ) -> MutationResult:
        return MutationResult(
            database_id=database_id,
            table=table,
            operation=operation,
            steps=steps,
            temp_table=temp_table,
            columns=self._introspector.table_xinfo(database_id, table),
            notes=notes or [],
        )
