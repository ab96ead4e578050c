"""Operation timing for the schema engine."""

from __future__ import annotations

from schema_engine.telemetry.profiling import ProfileCollector, Timing, profile_operation

__all__ = [
    "ProfileCollector",
    "Timing",
    "profile_operation",
]
