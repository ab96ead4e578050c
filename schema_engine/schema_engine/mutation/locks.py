"""In-process serialization of schema mutations per table.

Table reconstruction is a multi-statement sequence with no transaction
around it; two reconstructions of the same table interleaving their
STAGE/SWAP steps would corrupt the rename sequence.  The registry hands out
one re-entrant lock per ``(database_id, table)`` so that mutations issued
from the same process run one at a time.  Locks are held weakly and vanish
once no mutation holds or waits on them.  It does not coordinate separate
processes.
"""

from __future__ import annotations

import logging
import threading
import weakref
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class TableLockRegistry:
    """Named re-entrant locks keyed by database and table."""

    _shared: TableLockRegistry | None = None
    _shared_guard = threading.Lock()

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[tuple[str, str], threading.RLock] = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    @classmethod
    def shared(cls) -> TableLockRegistry:
        """Process-wide registry used when no registry is injected."""
        with cls._shared_guard:
            if cls._shared is None:
                cls._shared = cls()
            return cls._shared

    def _lock_for(self, database_id: str, table: str) -> threading.RLock:
        key = (database_id, table)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, database_id: str, table: str) -> Iterator[None]:
        lock = self._lock_for(database_id, table)
        if not lock.acquire(blocking=False):
            logger.info(
                "Waiting for concurrent mutation of %s.%s",
                database_id,
                table,
                extra={"database_id": database_id, "table": table},
            )
            lock.acquire()
        try:
            yield
        finally:
            lock.release()

    def __len__(self) -> int:
        return len(self._locks)
