"""Entry point used by the routing layer and the CLI.

:class:`SchemaService` wires the introspector, graph builder, cycle
detector, cascade simulator, constraint validator, and mutation engine
around one :class:`~schema_engine.executor.base.QueryExecutor`.  Every call
builds a fresh graph; nothing is cached between calls.

Read-only operations are retried as a whole on
:class:`~schema_engine.errors.TransientIOError`.  Mutations are never
retried.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from typing import TypeVar

from pydantic import BaseModel, Field

from schema_engine.config import Settings, load_settings
from schema_engine.executor.base import QueryExecutor
from schema_engine.executor.local_executor import LocalExecutor
from schema_engine.executor.remote_executor import RemoteExecutor
from schema_engine.executor.retry import RetryConfig, retry_with_backoff
from schema_engine.graph.cycle_detector import (
    BreakSuggestion,
    CircularDependencyCycle,
    CycleCheckResult,
    detect_cycles,
    suggest_break_points,
    would_create_cycle,
)
from schema_engine.graph.fk_graph_builder import TableDependencies, build_graph, get_table_dependencies
from schema_engine.introspection.introspector import SchemaIntrospector
from schema_engine.models.graph import ForeignKeyGraph
from schema_engine.models.schema import FKAction
from schema_engine.mutation.engine import MutationResult, SchemaMutationEngine
from schema_engine.simulation.cascade_simulator import CascadeSimulationResult, CascadeSimulator
from schema_engine.validation.constraint_validator import (
    ConstraintValidator,
    FixResult,
    FixStrategy,
    ValidationReport,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CycleReport(BaseModel):
    """A graph together with its cycles and how to break them."""

    graph: ForeignKeyGraph
    cycles: list[CircularDependencyCycle] = Field(default_factory=list)
    suggestions: dict[str, list[BreakSuggestion]] = Field(
        default_factory=dict,
        description="Break-point suggestions keyed by cycle key.",
    )


class SchemaService:
    """Schema dependency and mutation operations for one executor.

    Parameters
    ----------
    executor:
        Transport for every statement.
    settings:
        Configuration; loaded from the environment when omitted.
    sleep:
        Sleep function used between retries.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        settings: Settings | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or load_settings()
        self._introspector = SchemaIntrospector(executor)
        self._retry = RetryConfig.from_settings(self._settings)
        self._sleep = sleep
        self._mutations = SchemaMutationEngine.from_settings(self._introspector, self._settings)
        self._validator = ConstraintValidator(
            self._introspector,
            system_prefixes=self._settings.system_table_prefixes,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> SchemaService:
        """Use the hosted API when credentials are configured, local SQLite otherwise."""
        executor: QueryExecutor
        if settings.is_remote_configured():
            executor = RemoteExecutor.from_settings(settings)
        else:
            executor = LocalExecutor(settings.local_db_root)
        return cls(executor, settings)

    @property
    def introspector(self) -> SchemaIntrospector:
        return self._introspector

    @property
    def mutations(self) -> SchemaMutationEngine:
        return self._mutations

    def _read(self, fn: Callable[[], T]) -> T:
        return retry_with_backoff(fn, self._retry, sleep=self._sleep)

    def _build(self, database_id: str) -> ForeignKeyGraph:
        return build_graph(
            self._introspector,
            database_id,
            system_prefixes=self._settings.system_table_prefixes,
            warn_threshold=self._settings.large_schema_warning_threshold,
        )

    # -- Read-only operations ---------------------------------------------------

    def build_graph(self, database_id: str) -> ForeignKeyGraph:
        return self._read(lambda: self._build(database_id))

    def detect_cycles(self, database_id: str) -> list[CircularDependencyCycle]:
        return self._read(lambda: detect_cycles(self._build(database_id)))

    def foreign_keys_with_cycles(self, database_id: str) -> CycleReport:
        def run() -> CycleReport:
            graph = self._build(database_id)
            cycles = detect_cycles(graph)
            return CycleReport(
                graph=graph,
                cycles=cycles,
                suggestions={c.key: suggest_break_points(c, graph) for c in cycles},
            )

        return self._read(run)

    def would_create_cycle(self, database_id: str, source_table: str, target_table: str) -> CycleCheckResult:
        return self._read(lambda: would_create_cycle(self._build(database_id), source_table, target_table))

    def simulate(
        self,
        database_id: str,
        target_table: str,
        predicate: str | None = None,
        *,
        exact: bool = False,
    ) -> CascadeSimulationResult:
        simulator = CascadeSimulator(self._introspector, max_depth=self._settings.max_cascade_depth, exact=exact)
        return self._read(lambda: simulator.simulate(self._build(database_id), target_table, predicate))

    def dependencies(self, database_id: str, tables: Iterable[str]) -> dict[str, TableDependencies]:
        names = list(tables)
        return self._read(lambda: get_table_dependencies(self._build(database_id), names))

    def validate(self, database_id: str, table: str | None = None) -> ValidationReport:
        if table is None:
            return self._read(lambda: self._validator.validate_database(database_id))
        return self._read(lambda: self._validator.validate_table(database_id, table))

    # -- Writes -----------------------------------------------------------------

    def apply_fixes(self, database_id: str, violation_ids: list[str], strategy: FixStrategy | str) -> list[FixResult]:
        return self._validator.apply_fixes(database_id, violation_ids, strategy)

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
        return self._mutations.add_column(database_id, table, column, column_type, notnull=notnull, default=default)

    def rename_column(self, database_id: str, table: str, column: str, new_name: str) -> MutationResult:
        return self._mutations.rename_column(database_id, table, column, new_name)

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
        return self._mutations.modify_column(
            database_id,
            table,
            column,
            column_type=column_type,
            notnull=notnull,
            default=default,
            drop_default=drop_default,
        )

    def drop_column(self, database_id: str, table: str, column: str) -> MutationResult:
        return self._mutations.drop_column(database_id, table, column)

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
        return self._mutations.add_foreign_key(
            database_id,
            table,
            column,
            ref_table,
            ref_column,
            on_delete=on_delete,
            on_update=on_update,
            allow_cycle=allow_cycle,
        )

    def modify_foreign_key(
        self,
        database_id: str,
        constraint_name: str,
        *,
        on_delete: str | FKAction | None = None,
        on_update: str | FKAction | None = None,
    ) -> MutationResult:
        return self._mutations.modify_foreign_key(
            database_id, constraint_name, on_delete=on_delete, on_update=on_update
        )

    def remove_foreign_key(self, database_id: str, constraint_name: str) -> MutationResult:
        return self._mutations.remove_foreign_key(database_id, constraint_name)
