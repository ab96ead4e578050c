"""Retry with exponential backoff for whole read-only operations.

Only complete operations are retried (build a graph, run a simulation),
never individual statements of a mutation: a half-finished rebuild leaves
intermediate state that must not be silently reused.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

from pydantic import BaseModel, Field

from schema_engine.config import Settings
from schema_engine.errors import TransientIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig(BaseModel):
    """Tuneable parameters for retry behaviour."""

    max_retries: int = Field(default=3, ge=0, description="Retry attempts before re-raising.")
    base_delay: float = Field(default=2.0, gt=0.0, description="Base delay in seconds.")
    max_delay: float = Field(default=60.0, gt=0.0, description="Upper bound on delay in seconds.")
    jitter: bool = Field(default=True, description="Randomise the delay within [0.5x, 1.5x].")

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryConfig:
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_backoff_base,
            max_delay=settings.retry_max_delay,
        )


def _compute_delay(attempt: int, config: RetryConfig) -> float:
    """Return the backoff delay for *attempt* given *config*."""
    delay: float = min(config.base_delay * (2**attempt), config.max_delay)
    if config.jitter:
        delay *= random.uniform(0.5, 1.5)  # noqa: S311
    return delay


def retry_with_backoff(
    fn: Callable[[], T],
    config: RetryConfig,
    retryable_exceptions: tuple[type[Exception], ...] = (TransientIOError,),
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *fn* until it succeeds or the retry budget is spent.

    Parameters
    ----------
    fn:
        Zero-argument callable, invoked from scratch on every attempt.
    config:
        Retry parameters.
    retryable_exceptions:
        Only these exception types trigger a retry; anything else
        propagates immediately.
    sleep:
        Sleep function (tests pass a no-op).

    Raises
    ------
    Exception
        The last retryable exception once attempts are exhausted.
    """
    last_exception: Exception | None = None

    for attempt in range(config.max_retries + 1):
        try:
            return fn()
        except retryable_exceptions as exc:
            last_exception = exc
            if attempt >= config.max_retries:
                break
            delay = _compute_delay(attempt, config)
            logger.warning(
                "Retry %d/%d after %.1fs: %s",
                attempt + 1,
                config.max_retries,
                delay,
                exc,
            )
            sleep(delay)

    assert last_exception is not None  # noqa: S101
    raise last_exception
