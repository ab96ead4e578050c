"""Data-level constraint validation and repair.

SQLite-family engines do not re-check existing rows when constraints are
added through table reconstruction or when enforcement was off while data
was written.  :class:`ConstraintValidator` scans for three kinds of
violation:

* **foreign_key** -- orphan rows reported by ``PRAGMA foreign_key_check``,
  grouped per foreign key.
* **not_null** -- NULLs stored in a NOT NULL column.
* **unique** -- duplicate values under a single-column UNIQUE index.

Foreign-key violations can be repaired with :meth:`ConstraintValidator.apply_fixes`
by deleting the orphan rows or nulling their foreign-key column.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field

from schema_engine.errors import NotFoundError, SchemaEngineError, ValidationFailedError
from schema_engine.graph.fk_graph_builder import DEFAULT_SYSTEM_PREFIXES, is_system_table
from schema_engine.introspection.introspector import SchemaIntrospector
from schema_engine.models.schema import Column, ForeignKeyInfo
from schema_engine.sanitize import quote_identifier

logger = logging.getLogger(__name__)


class ViolationType(str, Enum):
    FOREIGN_KEY = "foreign_key"
    NOT_NULL = "not_null"
    UNIQUE = "unique"


class ViolationSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class FixStrategy(str, Enum):
    DELETE = "delete"
    SET_NULL = "set_null"
    MANUAL = "manual"


class ConstraintViolation(BaseModel):
    id: str = Field(..., description="'fk:<table>:<column>:<fkid>', 'nn:<table>:<column>' or 'uq:<table>:<column>'.")
    type: ViolationType
    severity: ViolationSeverity
    table: str
    column: str | None = None
    affected_rows: int
    details: str
    fixable: bool = False
    fix_strategies: list[FixStrategy] = Field(default_factory=list)
    parent_table: str | None = None
    parent_column: str | None = None
    fk_id: int | None = None


class ValidationReport(BaseModel):
    database: str
    timestamp: str
    total_violations: int = 0
    violations_by_type: dict[ViolationType, int] = Field(default_factory=dict)
    violations: list[ConstraintViolation] = Field(default_factory=list)
    skipped_tables: list[str] = Field(default_factory=list, description="Tables whose checks failed to run.")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_healthy(self) -> bool:
        return self.total_violations == 0


class FixResult(BaseModel):
    violation_id: str
    success: bool
    rows_affected: int = 0
    error: str | None = None


def _plural(count: int, singular: str, plural: str | None = None) -> str:
    return singular if count == 1 else (plural or singular + "s")


class ConstraintValidator:
    """Scan tables for constraint violations and repair orphan rows.

    Parameters
    ----------
    introspector:
        Metadata reads and statement execution.
    system_prefixes:
        Tables excluded from database-wide validation.
    """

    def __init__(
        self,
        introspector: SchemaIntrospector,
        *,
        system_prefixes: Sequence[str] = DEFAULT_SYSTEM_PREFIXES,
    ) -> None:
        self._introspector = introspector
        self._system_prefixes = tuple(system_prefixes)

    # -- Validation -------------------------------------------------------------

    def validate_database(self, database_id: str) -> ValidationReport:
        tables = [
            t.name
            for t in self._introspector.list_tables(database_id)
            if t.type == "table" and not is_system_table(t.name, self._system_prefixes)
        ]
        return self._report(database_id, tables)

    def validate_table(self, database_id: str, table: str) -> ValidationReport:
        if not self._introspector.table_info(database_id, table):
            raise NotFoundError("table", table)
        return self._report(database_id, [table])

    def _report(self, database_id: str, tables: list[str]) -> ValidationReport:
        violations: list[ConstraintViolation] = []
        skipped: list[str] = []
        checks: tuple[Callable[[str, str], list[ConstraintViolation]], ...] = (
            self._foreign_key_violations,
            self._not_null_violations,
            self._unique_violations,
        )
        for check in checks:
            for table in tables:
                try:
                    violations.extend(check(database_id, table))
                except SchemaEngineError as exc:
                    logger.warning(
                        "Constraint check %s failed for table '%s': %s",
                        check.__name__.strip("_"),
                        table,
                        exc,
                        extra={"database_id": database_id, "table": table},
                    )
                    if table not in skipped:
                        skipped.append(table)

        by_type = {kind: sum(1 for v in violations if v.type == kind) for kind in ViolationType}
        report = ValidationReport(
            database=database_id,
            timestamp=datetime.now(UTC).isoformat(),
            total_violations=len(violations),
            violations_by_type=by_type,
            violations=violations,
            skipped_tables=skipped,
        )
        logger.info(
            "Validated %d table(s) in %s: %d violation(s)",
            len(tables),
            database_id,
            report.total_violations,
            extra={"database_id": database_id},
        )
        return report

    def _foreign_key_violations(self, database_id: str, table: str) -> list[ConstraintViolation]:
        rows = self._introspector.execute(database_id, f"PRAGMA foreign_key_check({quote_identifier(table)})").results
        if not rows:
            return []

        counts: dict[int, int] = {}
        for row in rows:
            if row.get("table") != table:
                continue
            fk_id = int(row.get("fkid") or 0)
            counts[fk_id] = counts.get(fk_id, 0) + 1

        fks = self._fk_by_id(database_id, table)
        columns = {c.name: c for c in self._introspector.table_info(database_id, table)}
        violations: list[ConstraintViolation] = []

        for fk_id, affected in counts.items():
            fk = fks.get(fk_id)
            if fk is None:
                continue
            column = columns.get(fk.from_column)
            strategies = [FixStrategy.DELETE]
            if column is not None and not column.notnull and not column.is_primary_key:
                strategies.append(FixStrategy.SET_NULL)

            if affected > 50:
                severity = ViolationSeverity.CRITICAL
            elif affected > 10:
                severity = ViolationSeverity.WARNING
            else:
                severity = ViolationSeverity.INFO

            violations.append(
                ConstraintViolation(
                    id=f"fk:{table}:{fk.from_column}:{fk_id}",
                    type=ViolationType.FOREIGN_KEY,
                    severity=severity,
                    table=table,
                    column=fk.from_column,
                    affected_rows=affected,
                    details=(
                        f"{affected} orphaned {_plural(affected, 'record references', 'records reference')} "
                        f"non-existent {fk.table}"
                    ),
                    fixable=True,
                    fix_strategies=strategies,
                    parent_table=fk.table,
                    parent_column=fk.to_column or self._primary_key(database_id, fk.table),
                    fk_id=fk_id,
                )
            )
        return violations

    def _not_null_violations(self, database_id: str, table: str) -> list[ConstraintViolation]:
        violations: list[ConstraintViolation] = []
        for column in self._introspector.table_info(database_id, table):
            if not column.notnull:
                continue
            count = self._introspector.count_rows(database_id, table, f"{quote_identifier(column.name)} IS NULL")
            if count:
                violations.append(
                    ConstraintViolation(
                        id=f"nn:{table}:{column.name}",
                        type=ViolationType.NOT_NULL,
                        severity=ViolationSeverity.CRITICAL,
                        table=table,
                        column=column.name,
                        affected_rows=count,
                        details=(
                            f"{count} {_plural(count, 'row has', 'rows have')} NULL value "
                            f'in NOT NULL column "{column.name}"'
                        ),
                        fix_strategies=[FixStrategy.MANUAL],
                    )
                )
        return violations

    def _unique_violations(self, database_id: str, table: str) -> list[ConstraintViolation]:
        violations: list[ConstraintViolation] = []
        for index in self._introspector.index_list(database_id, table):
            if not index.unique or index.origin == "pk":
                continue
            index_columns = self._introspector.index_columns(database_id, table, index.name)
            if len(index_columns) != 1:
                continue
            column = index_columns[0]
            col = quote_identifier(column)
            duplicates = self._introspector.execute(
                database_id,
                f"SELECT {col} AS value, COUNT(*) AS cnt FROM {quote_identifier(table)} "
                f"WHERE {col} IS NOT NULL GROUP BY {col} HAVING COUNT(*) > 1",
            ).results
            if not duplicates:
                continue
            total = sum(int(row["cnt"]) for row in duplicates)
            violations.append(
                ConstraintViolation(
                    id=f"uq:{table}:{column}",
                    type=ViolationType.UNIQUE,
                    severity=ViolationSeverity.WARNING,
                    table=table,
                    column=column,
                    affected_rows=total,
                    details=(
                        f"{len(duplicates)} duplicate {_plural(len(duplicates), 'value')} "
                        f'found in UNIQUE column "{column}"'
                    ),
                    fix_strategies=[FixStrategy.MANUAL],
                )
            )
        return violations

    # -- Repair -----------------------------------------------------------------

    def apply_fixes(
        self,
        database_id: str,
        violation_ids: Sequence[str],
        strategy: FixStrategy | str,
    ) -> list[FixResult]:
        """Repair foreign-key violations by id.

        Each id is handled independently; a failure is reported in its
        :class:`FixResult` and does not stop the remaining fixes.

        Raises
        ------
        ValidationFailedError
            If *strategy* is not ``delete`` or ``set_null``.
        """
        try:
            strategy = FixStrategy(strategy)
        except ValueError:
            raise ValidationFailedError(f"Unknown fix strategy '{strategy}'") from None
        if strategy == FixStrategy.MANUAL:
            raise ValidationFailedError("Manual violations cannot be fixed automatically")

        results: list[FixResult] = []
        for violation_id in violation_ids:
            try:
                results.append(self._apply_fix(database_id, violation_id, strategy))
            except SchemaEngineError as exc:
                logger.warning("Fix %s failed: %s", violation_id, exc, extra={"database_id": database_id})
                results.append(FixResult(violation_id=violation_id, success=False, error=str(exc)))
        return results

    def _apply_fix(self, database_id: str, violation_id: str, strategy: FixStrategy) -> FixResult:
        parts = violation_id.split(":")
        if len(parts) != 4 or parts[0] != "fk" or not parts[3].isdigit():
            return FixResult(violation_id=violation_id, success=False, error="Unsupported violation type")
        _, table, column, fk_id = parts

        fk = self._fk_by_id(database_id, table).get(int(fk_id))
        if fk is None or fk.from_column != column:
            return FixResult(violation_id=violation_id, success=False, error="Foreign key not found")

        if strategy == FixStrategy.SET_NULL:
            target = next((c for c in self._introspector.table_info(database_id, table) if c.name == column), None)
            if target is None or target.notnull or target.is_primary_key:
                return FixResult(
                    violation_id=violation_id,
                    success=False,
                    error=f"Column '{column}' cannot be set to NULL",
                )

        parent_column = fk.to_column or self._primary_key(database_id, fk.table)
        col = quote_identifier(column)
        parent = quote_identifier(parent_column)
        orphan_filter = (
            f"{col} IS NOT NULL AND {col} NOT IN "
            f"(SELECT {parent} FROM {quote_identifier(fk.table)} WHERE {parent} IS NOT NULL)"
        )
        if strategy == FixStrategy.DELETE:
            sql = f"DELETE FROM {quote_identifier(table)} WHERE {orphan_filter}"
        else:
            sql = f"UPDATE {quote_identifier(table)} SET {col} = NULL WHERE {orphan_filter}"

        result = self._introspector.execute(database_id, sql)
        changes = int(result.meta.get("changes") or 0)
        logger.info(
            "Applied %s fix to %s: %d row(s)",
            strategy.value,
            violation_id,
            changes,
            extra={"database_id": database_id, "table": table},
        )
        return FixResult(violation_id=violation_id, success=True, rows_affected=changes)

    # -- Helpers ----------------------------------------------------------------

    def _fk_by_id(self, database_id: str, table: str) -> dict[int, ForeignKeyInfo]:
        by_id: dict[int, ForeignKeyInfo] = {}
        for fk in sorted(self._introspector.foreign_keys(database_id, table), key=lambda f: f.seq):
            by_id.setdefault(fk.id, fk)
        return by_id

    def _primary_key(self, database_id: str, table: str) -> str:
        columns: list[Column] = self._introspector.table_info(database_id, table)
        pk = [c.name for c in sorted(columns, key=lambda c: c.pk) if c.pk > 0]
        return pk[0] if pk else "rowid"
