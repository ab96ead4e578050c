"""Error taxonomy shared by every schema-engine component.

``NotFoundError`` and ``ValidationFailedError`` describe caller mistakes and
are never retried.  ``TransientIOError`` wraps a failed call to the remote
execution API; callers retry the *whole* operation, never a single step.
"""

from __future__ import annotations


class SchemaEngineError(Exception):
    """Base class for all schema-engine errors."""


class NotFoundError(SchemaEngineError):
    """A table, column, or constraint does not exist."""

    def __init__(self, kind: str, name: str, *, table: str | None = None) -> None:
        self.kind = kind
        self.name = name
        self.table = table
        where = f" in table '{table}'" if table else ""
        super().__init__(f"{kind.capitalize()} '{name}' not found{where}")


class ValidationFailedError(SchemaEngineError):
    """A pre-flight check rejected the requested operation."""


class ConstraintNameMalformedError(ValidationFailedError):
    """A constraint identifier does not parse into its four components.

    Constraint identifiers have the form
    ``fk_<sourceTable>_<sourceColumn>_<targetTable>_<targetColumn>``.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Constraint name '{name}' is malformed; expected "
            "fk_<sourceTable>_<sourceColumn>_<targetTable>_<targetColumn>"
        )


class TransientIOError(SchemaEngineError):
    """The remote execution API failed (network, rate limit, or 5xx)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PartialGraphError(SchemaEngineError):
    """Raised on demand when a graph built with per-table failures is used
    by a caller that requires a complete graph.

    Attributes
    ----------
    tables:
        Names of the tables whose metadata could not be read.
    """

    def __init__(self, tables: list[str]) -> None:
        self.tables = tables
        super().__init__(f"Foreign-key graph is incomplete; metadata failed for: {', '.join(tables)}")
