"""Timing instrumentation for graph, cycle, cascade, and rebuild operations.

``@profile_operation(name)`` wraps a function with ``perf_counter_ns``
timing, logs the duration at DEBUG, and records it into the process-wide
:class:`ProfileCollector`.  Every schema-engine call is a sequence of
blocking remote queries, so the recorded durations are dominated by the
transport and are the quickest way to spot a slow database.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True)
class Timing:
    """One measured call."""

    operation: str
    duration_ms: float
    failed: bool = False


class ProfileCollector:
    """Thread-safe ring buffer of recent timings per operation name."""

    _instance: ProfileCollector | None = None
    _instance_lock = threading.Lock()

    def __init__(self, max_results: int = 100) -> None:
        self._max_results = max_results
        self._timings: dict[str, deque[Timing]] = {}
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> ProfileCollector:
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = ProfileCollector()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton (tests only)."""
        with cls._instance_lock:
            cls._instance = None

    def record(self, timing: Timing) -> None:
        with self._lock:
            bucket = self._timings.setdefault(timing.operation, deque(maxlen=self._max_results))
            bucket.append(timing)

    def get_stats(self, operation: str) -> dict[str, Any] | None:
        """Return count, failures, mean, p50, p95, and max for *operation*."""
        with self._lock:
            timings = list(self._timings.get(operation, ()))
        if not timings:
            return None

        durations = sorted(t.duration_ms for t in timings)
        count = len(durations)
        return {
            "operation": operation,
            "count": count,
            "failures": sum(1 for t in timings if t.failed),
            "mean_ms": round(sum(durations) / count, 3),
            "p50_ms": durations[(count - 1) // 2],
            "p95_ms": durations[min(count - 1, int(round(0.95 * (count - 1))))],
            "max_ms": durations[-1],
        }

    def operations(self) -> list[str]:
        with self._lock:
            return sorted(self._timings)

    def get_all_stats(self) -> list[dict[str, Any]]:
        """Stats for every recorded operation, sorted by name."""
        results = []
        for op in self.operations():
            stats = self.get_stats(op)
            if stats is not None:
                results.append(stats)
        return results


def profile_operation(name: str) -> Callable[[F], F]:
    """Time every call of the decorated function under *name*."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_ns = time.perf_counter_ns()
            failed = False
            try:
                return func(*args, **kwargs)
            except Exception:
                failed = True
                raise
            finally:
                duration_ms = round((time.perf_counter_ns() - start_ns) / 1_000_000, 3)
                ProfileCollector.get_instance().record(Timing(name, duration_ms, failed))
                logger.debug("PROFILE %s: %.3f ms%s", name, duration_ms, " (failed)" if failed else "")

        return wrapper  # type: ignore[return-value]

    return decorator
