# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Retry engine with exponential backoff and selectable jitter.

:class:`RetryHandler` runs an operation, retrying failures classified as
transient by :func:`is_transient` up to ``max_attempts`` total attempts.
A query id is generated once per logical operation and passed unchanged to
every attempt, so the server can deduplicate retried inserts.

Logger: ``clickhouse_http.retry``; retry attempts are logged at DEBUG level.
"""

from __future__ import annotations

import enum
import logging
import random
import time
import uuid
import warnings
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx

from clickhouse_http.errors import ClickHouseConnectionError, ConfigurationError, PoolError, QueryError

T = TypeVar("T")

__all__ = [
    "Jitter",
    "NonIdempotentRetryWarning",
    "RetryConfig",
    "RetryHandler",
    "compute_delay",
    "is_transient",
]

_logger = logging.getLogger("clickhouse_http.retry")

_RETRYABLE_STATUS: frozenset[int] = frozenset({429})


class Jitter(enum.StrEnum):
    """How a computed backoff delay is randomized."""

    NONE = "none"
    EQUAL = "equal"
    FULL = "full"


class NonIdempotentRetryWarning(UserWarning):
    """Emitted when a non-idempotent operation is retried and may be duplicated."""


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retrying transient failures.

    Attributes:
        max_attempts: Total attempts including the first (``1`` disables retry).
        initial_backoff: Delay in seconds before the second attempt.
        max_backoff: Upper bound on any single delay, in seconds.
        multiplier: Growth factor applied per attempt.
        jitter: Randomization strategy applied to each delay.

    Raises:
        ConfigurationError: If any value is out of range.

    """

    max_attempts: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 120.0
    multiplier: float = 1.6
    jitter: Jitter = Jitter.EQUAL

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_backoff < 0:
            raise ConfigurationError(f"initial_backoff must be >= 0, got {self.initial_backoff}")
        if self.max_backoff < self.initial_backoff:
            raise ConfigurationError(
                f"max_backoff ({self.max_backoff}) must be >= initial_backoff ({self.initial_backoff})"
            )
        if self.multiplier < 1:
            raise ConfigurationError(f"multiplier must be >= 1, got {self.multiplier}")
        if not isinstance(self.jitter, Jitter):
            try:
                object.__setattr__(self, "jitter", Jitter(self.jitter))
            except ValueError:
                raise ConfigurationError(f"jitter must be one of {[j.value for j in Jitter]}, got {self.jitter!r}") from None


def compute_delay(attempt: int, config: RetryConfig, *, rand: Callable[[], float] = random.random) -> float:
    """Compute the backoff delay after a failed attempt.

    Args:
        attempt: One-based number of the attempt that just failed.
        config: Retry configuration.
        rand: Source of uniform values in ``[0, 1)``; injectable for tests.

    Returns:
        Delay in seconds: ``min(max_backoff, initial_backoff * multiplier ** (attempt - 1))``
        with the configured jitter applied.

    """
    delay = min(config.max_backoff, config.initial_backoff * config.multiplier ** (attempt - 1))
    if config.jitter is Jitter.EQUAL:
        return delay / 2 + rand() * delay / 2
    if config.jitter is Jitter.FULL:
        return rand() * delay
    return delay


def is_transient(error: BaseException) -> bool:
    """Whether *error* is likely to succeed if the request is repeated unchanged.

    Connection failures, pool waits, raw transport errors and server
    responses with HTTP 429 or any 5xx status are transient.  Everything
    else, including syntax errors and other 4xx responses, is fatal.
    """
    if isinstance(error, ClickHouseConnectionError | PoolError | httpx.TransportError):
        return True
    if isinstance(error, QueryError) and error.http_status is not None:
        return error.http_status in _RETRYABLE_STATUS or 500 <= error.http_status <= 599
    return False


class RetryHandler:
    """Runs operations under a :class:`RetryConfig`.

    Thread-safe: the handler holds no per-call state.
    """

    __slots__ = ("_config", "_rand", "_sleep")

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], object] = time.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        """Initialize with a configuration and injectable sleep/random sources."""
        self._config = config or RetryConfig()
        self._sleep = sleep
        self._rand = rand

    @property
    def config(self) -> RetryConfig:
        """The active retry configuration."""
        return self._config

    def run(
        self,
        operation: Callable[[str], T],
        *,
        idempotent: bool = True,
        query_id: str | None = None,
        label: str = "operation",
    ) -> T:
        """Call ``operation(query_id)`` until it succeeds or a fatal/final error occurs.

        Args:
            operation: Callable receiving the stable query id.
            idempotent: ``False`` emits :class:`NonIdempotentRetryWarning`
                before each retry.
            query_id: Id to reuse for every attempt; a UUID4 is generated
                when ``None``.
            label: Short description used in log messages.

        Returns:
            The operation's return value.

        Raises:
            Exception: The last error, unchanged, when it is fatal or
                attempts are exhausted.

        """
        if query_id is None:
            query_id = str(uuid.uuid4())
        max_attempts = self._config.max_attempts
        attempt = 1
        while True:
            try:
                return operation(query_id)
            except Exception as exc:
                if not is_transient(exc) or attempt >= max_attempts:
                    if attempt > 1:
                        _logger.debug(
                            "%s failed after %d attempt(s) (query_id=%s): %s", label, attempt, query_id, exc
                        )
                    raise
                delay = compute_delay(attempt, self._config, rand=self._rand)
                if not idempotent:
                    warnings.warn(
                        f"Retrying non-idempotent {label} (query_id={query_id}); possible duplicates",
                        NonIdempotentRetryWarning,
                        stacklevel=3,
                    )
                    _logger.warning("Retrying non-idempotent %s - possible duplicates (query_id=%s)", label, query_id)
                _logger.debug(
                    "Transient error on %s (attempt %d/%d, query_id=%s), retrying in %.2fs: %s",
                    label,
                    attempt,
                    max_attempts,
                    query_id,
                    delay,
                    exc,
                )
                self._sleep(delay)
                attempt += 1
