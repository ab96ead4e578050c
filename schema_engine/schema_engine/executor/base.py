"""Abstract interface for SQL execution transports.

Every transport -- the hosted query API or a local SQLite file -- must
satisfy :class:`QueryExecutor` so that introspection and mutation code
stays transport-agnostic.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

from schema_engine.models.schema import QueryResult


class QueryExecutor(Protocol):
    """Structural interface for single-statement, synchronous execution.

    Implementations are **not** required to subclass this protocol; they
    only need a matching ``execute`` method.
    """

    def execute(
        self,
        database_id: str,
        sql: str,
        params: Sequence[Any] | None = None,
    ) -> QueryResult:
        """Execute one statement against *database_id*.

        Parameters
        ----------
        database_id:
            Identifier of the target database.
        sql:
            A single SQL statement.  Identifiers must already be sanitised.
        params:
            Positional ``?`` parameters for literal values.

        Returns
        -------
        QueryResult
            Result rows as dicts plus transport metadata (``changes``,
            ``last_row_id``, timing).

        Raises
        ------
        TransientIOError
            The transport failed in a way that may succeed on retry.
        SchemaEngineError
            The statement was rejected by the engine.
        """
        ...
