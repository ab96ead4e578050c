"""Transports that execute SQL against a database."""

from __future__ import annotations

from schema_engine.executor.base import QueryExecutor
from schema_engine.executor.local_executor import LocalExecutor
from schema_engine.executor.remote_executor import RemoteExecutor
from schema_engine.executor.retry import RetryConfig, retry_with_backoff

__all__ = [
    "LocalExecutor",
    "QueryExecutor",
    "RemoteExecutor",
    "RetryConfig",
    "retry_with_backoff",
]
