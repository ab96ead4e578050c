"""Local SQLite executor for development, the CLI, and tests.

Runs statements against embedded SQLite databases through the standard
library driver.  Each database id maps to ``<root>/<database_id>.sqlite3``,
or to a private in-memory database when no root is configured.  All
statements run in autocommit mode, one at a time, matching the hosted
API's single-statement semantics.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from schema_engine.errors import SchemaEngineError, TransientIOError
from schema_engine.models.schema import QueryResult
from schema_engine.sanitize import sanitize_identifier

logger = logging.getLogger(__name__)

_TRANSIENT_MESSAGES: tuple[str, ...] = ("database is locked", "database table is locked", "disk i/o error")


class LocalExecutor:
    """Execute statements against local SQLite databases.

    Implements the :class:`~schema_engine.executor.base.QueryExecutor`
    protocol.

    Parameters
    ----------
    root:
        Directory holding one ``.sqlite3`` file per database id.  Created
        on demand.  ``None`` keeps every database in memory for the
        lifetime of the executor.
    enforce_foreign_keys:
        Run ``PRAGMA foreign_keys=ON`` on every new connection.  Off by
        default because table reconstruction drops the original table,
        which fires ON DELETE actions while enforcement is on.
    """

    def __init__(self, root: Path | None = None, *, enforce_foreign_keys: bool = False) -> None:
        self._root = root
        self._enforce_foreign_keys = enforce_foreign_keys
        self._connections: dict[str, sqlite3.Connection] = {}
        self._lock = threading.Lock()

    # -- Connection management -----------------------------------------------

    def path_for(self, database_id: str) -> Path | None:
        if self._root is None:
            return None
        return self._root / f"{sanitize_identifier(database_id)}.sqlite3"

    def _get_connection(self, database_id: str) -> sqlite3.Connection:
        with self._lock:
            conn = self._connections.get(database_id)
            if conn is not None:
                return conn

            path = self.path_for(database_id)
            if path is None:
                target = ":memory:"
            else:
                path.parent.mkdir(parents=True, exist_ok=True)
                target = str(path)

            logger.info("Opening SQLite database %s at %s", database_id, target)
            conn = sqlite3.connect(target, isolation_level=None, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            if self._enforce_foreign_keys:
                conn.execute("PRAGMA foreign_keys=ON")
            self._connections[database_id] = conn
            return conn

    def close(self) -> None:
        """Close every open connection."""
        with self._lock:
            for database_id, conn in self._connections.items():
                try:
                    conn.close()
                except sqlite3.Error:
                    logger.debug("Ignoring error while closing SQLite database %s", database_id)
            self._connections.clear()

    def __enter__(self) -> LocalExecutor:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()

    # -- QueryExecutor implementation ----------------------------------------

    def execute(
        self,
        database_id: str,
        sql: str,
        params: Sequence[Any] | None = None,
    ) -> QueryResult:
        conn = self._get_connection(database_id)
        start = time.monotonic()
        try:
            cursor = conn.execute(sql, tuple(params or ()))
            rows = [dict(row) for row in cursor.fetchall()] if cursor.description else []
        except sqlite3.OperationalError as exc:
            if any(m in str(exc).lower() for m in _TRANSIENT_MESSAGES):
                raise TransientIOError(f"SQLite busy: {exc}") from exc
            raise SchemaEngineError(f"Query failed: {exc}") from exc
        except sqlite3.Error as exc:
            raise SchemaEngineError(f"Query failed: {exc}") from exc

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.debug("Executed on %s in %.2f ms: %s", database_id, elapsed_ms, sql)
        return QueryResult(
            results=rows,
            meta={
                "changes": max(cursor.rowcount, 0),
                "last_row_id": cursor.lastrowid,
                "duration": round(elapsed_ms, 3),
            },
        )
