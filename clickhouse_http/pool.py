# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Thread-safe pool of reusable ClickHouse connections.

Connections are created lazily up to ``size``.  ``checkout`` prefers the
most recently returned idle connection, discarding any that turn out to be
unhealthy or stale, and blocks (bounded by ``timeout``) when every
connection is in use.  All bookkeeping happens under a single lock; waiters
sleep on a condition bound to that lock and are woken whenever a
connection is returned or destroyed.

Logger: ``clickhouse_http.pool``.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from clickhouse_http.connection import Connection
from clickhouse_http.errors import PoolError, PoolTimeout

__all__ = ["ConnectionPool", "PoolHealth", "PoolStats"]

_logger = logging.getLogger("clickhouse_http.pool")


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PoolStats:
    """Snapshot of pool counters and current state.

    Attributes:
        capacity: Maximum number of connections.
        available: Idle connections ready for checkout.
        in_use: Connections currently checked out.
        total_created: Connections created over the pool's lifetime.
        total_checkouts: Successful checkouts over the pool's lifetime.
        total_timeouts: Checkouts that gave up waiting.

    """

    capacity: int
    available: int
    in_use: int
    total_created: int
    total_checkouts: int
    total_timeouts: int


@dataclass(frozen=True)
class PoolHealth:
    """Result of :meth:`ConnectionPool.health_check`."""

    capacity: int
    available: int
    in_use: int
    total: int
    healthy: int
    unhealthy: int


# ---------------------------------------------------------------------------
# ConnectionPool
# ---------------------------------------------------------------------------


class ConnectionPool:
    """Bounded pool of :class:`Connection` objects.

    Every connection is in exactly one of the *available* or *in-use* sets,
    and ``available + in_use <= size`` at all times.
    """

    def __init__(
        self,
        factory: Callable[[], Connection],
        *,
        size: int = 5,
        timeout: float = 5.0,
        max_idle: float = 300.0,
    ) -> None:
        """Initialize an empty pool.

        Args:
            factory: Creates a new, not yet connected :class:`Connection`.
            size: Maximum number of connections.
            timeout: Default seconds ``checkout`` waits for a free connection.
            max_idle: Seconds after which an idle connection is stale.

        Raises:
            ValueError: If *size* < 1 or *timeout* < 0.

        """
        if size < 1:
            raise ValueError(f"size must be >= 1, got {size}")
        if timeout < 0:
            raise ValueError(f"timeout must be >= 0, got {timeout}")
        self._factory = factory
        self._size = size
        self._timeout = timeout
        self._max_idle = max_idle
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        self._available: list[Connection] = []
        self._in_use: set[Connection] = set()
        self._closed = False
        self._total_created = 0
        self._total_checkouts = 0
        self._total_timeouts = 0

    # -- properties -------------------------------------------------------------

    @property
    def size(self) -> int:
        """Maximum number of connections."""
        return self._size

    @property
    def available_count(self) -> int:
        """Idle connections ready for checkout."""
        with self._lock:
            return len(self._available)

    @property
    def in_use_count(self) -> int:
        """Connections currently checked out."""
        with self._lock:
            return len(self._in_use)

    @property
    def total_count(self) -> int:
        """All connections tracked by the pool."""
        with self._lock:
            return len(self._available) + len(self._in_use)

    @property
    def exhausted(self) -> bool:
        """Whether every connection is in use and no more can be created."""
        with self._lock:
            return not self._available and len(self._in_use) >= self._size

    @property
    def stats(self) -> PoolStats:
        """Snapshot of counters and current state."""
        with self._lock:
            return PoolStats(
                capacity=self._size,
                available=len(self._available),
                in_use=len(self._in_use),
                total_created=self._total_created,
                total_checkouts=self._total_checkouts,
                total_timeouts=self._total_timeouts,
            )

    # -- checkout / checkin -----------------------------------------------------

    def checkout(self, timeout: float | None = None) -> Connection:
        """Borrow a connection, creating one if below capacity.

        Args:
            timeout: Seconds to wait when the pool is exhausted; defaults to
                the pool's configured timeout.

        Returns:
            A connected :class:`Connection` for exclusive use until :meth:`checkin`.

        Raises:
            PoolTimeout: If no connection became available in time.
            PoolError: If the pool has been shut down.

        """
        wait = self._timeout if timeout is None else timeout
        deadline = time.monotonic() + wait
        with self._cond:
            while True:
                if self._closed:
                    raise PoolError("Connection pool has been shut down")
                while self._available:
                    conn = self._available.pop()
                    if conn.is_healthy() and not conn.is_stale(self._max_idle):
                        return self._lend(conn)
                    _logger.debug("Discarding unhealthy or stale connection %r", conn)
                    self._destroy(conn)
                if len(self._in_use) < self._size:
                    conn = self._factory()
                    conn.connect()
                    self._total_created += 1
                    _logger.debug("Created connection %d/%d", len(self._in_use) + 1, self._size)
                    return self._lend(conn)
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._total_timeouts += 1
                    _logger.warning(
                        "Connection pool checkout timed out after %.2fs (size=%d, in_use=%d)",
                        wait,
                        self._size,
                        len(self._in_use),
                    )
                    raise PoolTimeout(
                        f"Could not obtain a connection from the pool within {wait} seconds "
                        f"(pool size: {self._size}, in use: {len(self._in_use)})"
                    )
                self._cond.wait(remaining)

    def _lend(self, conn: Connection) -> Connection:
        # Called with the lock held
        self._in_use.add(conn)
        self._total_checkouts += 1
        return conn

    def checkin(self, conn: Connection | None) -> None:
        """Return a borrowed connection.

        Healthy, fresh connections go back to the available set; others are
        destroyed.  ``None`` is ignored.
        """
        if conn is None:
            return
        with self._cond:
            if conn not in self._in_use:
                # Already destroyed by shutdown(), or never lent by this pool
                self._destroy(conn)
                return
            self._in_use.remove(conn)
            if not self._closed and conn.is_healthy() and not conn.is_stale(self._max_idle):
                self._available.append(conn)
            else:
                self._destroy(conn)
            self._cond.notify()

    @contextlib.contextmanager
    def connection(self, timeout: float | None = None) -> Iterator[Connection]:
        """Check out a connection for the duration of a ``with`` block.

        The connection is checked in even when the block raises; the block's
        exception then propagates.
        """
        conn = self.checkout(timeout)
        try:
            yield conn
        finally:
            self.checkin(conn)

    # -- maintenance ------------------------------------------------------------

    def cleanup(self, max_idle_seconds: float = 300.0) -> int:
        """Destroy idle connections that are stale or unhealthy.

        Only available connections are examined; checked-out ones are never
        touched.

        Returns:
            The number of connections removed.

        """
        with self._cond:
            keep: list[Connection] = []
            removed = 0
            for conn in self._available:
                if conn.is_healthy() and not conn.is_stale(max_idle_seconds):
                    keep.append(conn)
                else:
                    self._destroy(conn)
                    removed += 1
            self._available = keep
            if removed:
                self._cond.notify_all()
        if removed:
            _logger.info("Pool cleanup removed %d idle connection(s)", removed)
        return removed

    def health_check(self) -> PoolHealth:
        """Ping every available connection and report the outcome.

        Connections that fail the ping are destroyed.
        """
        with self._cond:
            candidates = list(self._available)
            self._available.clear()
            in_use = len(self._in_use)
            self._in_use.update(candidates)
        healthy: list[Connection] = []
        unhealthy: list[Connection] = []
        for conn in candidates:
            (healthy if conn.ping() else unhealthy).append(conn)
        with self._cond:
            self._in_use.difference_update(candidates)
            if self._closed:
                for conn in candidates:
                    self._destroy(conn)
            else:
                self._available.extend(healthy)
                for conn in unhealthy:
                    self._destroy(conn)
            self._cond.notify_all()
            return PoolHealth(
                capacity=self._size,
                available=len(self._available),
                in_use=in_use,
                total=len(self._available) + len(self._in_use),
                healthy=len(healthy),
                unhealthy=len(unhealthy),
            )

    def shutdown(self) -> None:
        """Destroy every tracked connection; later checkouts raise :class:`PoolError`."""
        with self._cond:
            self._closed = True
            conns = [*self._available, *self._in_use]
            self._available.clear()
            self._in_use.clear()
            for conn in conns:
                self._destroy(conn)
            self._cond.notify_all()
        if conns:
            _logger.info("Connection pool shut down, closed %d connection(s)", len(conns))

    @staticmethod
    def _destroy(conn: Connection) -> None:
        try:
            conn.disconnect()
        except Exception:
            _logger.warning("Error disconnecting %r", conn, exc_info=True)

    def __repr__(self) -> str:
        stats = self.stats
        return f"<ConnectionPool size={stats.capacity} available={stats.available} in_use={stats.in_use}>"
