# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""ClickHouse HTTP client.

:class:`Client` ties the pieces together: requests go through a pooled
:class:`~clickhouse_http.connection.Connection`, failures are classified and
retried by :class:`~clickhouse_http.retry.RetryHandler`, and responses are
decoded into :class:`~clickhouse_http.result.Result` or streamed through
:class:`~clickhouse_http.streaming.StreamingResult`.

Usage::

    from clickhouse_http import Client, ClientConfig

    with Client(ClientConfig(host="localhost")) as client:
        result = client.execute("SELECT number FROM system.numbers LIMIT 3")
        client.insert("events", [{"id": 1, "name": "a"}])

Logger: ``clickhouse_http.client``; every query is logged at DEBUG with
``query_id``, ``operation`` and ``duration_ms`` extra fields.
"""

from __future__ import annotations

import enum
import json
import logging
import time
import uuid
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol, TypeVar

import httpx

from clickhouse_http.compression import compress
from clickhouse_http.config import ClientConfig
from clickhouse_http.connection import Connection, HttpResponse
from clickhouse_http.errors import ClickHouseConnectionError, PoolError, QueryError
from clickhouse_http.pool import ConnectionPool, PoolHealth, PoolStats
from clickhouse_http.result import Result
from clickhouse_http.retry import RetryHandler
from clickhouse_http.streaming import EXCEPTION_CODE_HEADER, ProgressCallback, StreamingResult
from clickhouse_http.types import TypeRegistry, default_registry

__all__ = ["Client", "QueryHook", "QueryInfo", "quote_identifier"]

_logger = logging.getLogger("clickhouse_http.client")

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QueryInfo:
    """Describes one logical operation for hooks and log records.

    Attributes:
        operation: ``execute``, ``insert`` or ``command``.
        sql: The statement (without the appended ``FORMAT`` clause).
        query_id: Id shared by every attempt of the operation.
        database: Target database.

    """

    operation: str
    sql: str
    query_id: str
    database: str


class QueryHook(Protocol):
    """Observer notified around every ``execute``/``insert``/``command`` call."""

    def on_query_start(self, info: QueryInfo) -> object:
        """Called before the first attempt; the return value is passed to ``on_query_end``."""
        ...

    def on_query_end(self, token: object, info: QueryInfo, error: BaseException | None) -> None:
        """Called once the operation succeeded or finally failed."""
        ...


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class Client:
    """Thread-safe ClickHouse client over the HTTP interface.

    A single instance may be shared between threads; concurrency is bounded
    by the connection pool size.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        registry: TypeRegistry | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], object] = time.sleep,
        **overrides: Any,
    ) -> None:
        """Initialize the client; no connection is opened until first use.

        Args:
            config: Client configuration; built from *overrides* when ``None``.
            registry: Type registry for decoding results; the shared default
                registry when ``None``.
            transport: Optional ``httpx`` transport for every connection
                (e.g. ``httpx.WSGITransport`` in tests).
            sleep: Sleep function used between retries.
            **overrides: ``ClientConfig`` fields applied on top of *config*.

        Raises:
            ConfigurationError: If the resulting configuration is invalid.

        """
        if config is None:
            config = ClientConfig(**overrides)
        elif overrides:
            config = config.replace(**overrides)
        self._config = config
        self._registry = registry if registry is not None else default_registry()
        self._transport = transport
        self._pool = ConnectionPool(
            self._new_connection,
            size=config.pool_size,
            timeout=config.pool_timeout,
            max_idle=config.pool_max_idle,
        )
        self._retry = RetryHandler(config.retry, sleep=sleep)
        self._hooks: list[QueryHook] = []

    @property
    def config(self) -> ClientConfig:
        """The client configuration."""
        return self._config

    @property
    def registry(self) -> TypeRegistry:
        """The type registry used to decode results."""
        return self._registry

    @property
    def pool(self) -> ConnectionPool:
        """The underlying connection pool."""
        return self._pool

    def add_hook(self, hook: QueryHook) -> None:
        """Register a hook notified around every query."""
        self._hooks.append(hook)

    def _new_connection(self) -> Connection:
        return Connection(self._config, transport=self._transport)

    # -- queries ----------------------------------------------------------------

    def execute(
        self,
        sql: str,
        settings: Mapping[str, Any] | None = None,
        *,
        query_id: str | None = None,
    ) -> Result:
        """Run a query and return its fully decoded result.

        The statement is sent as ``{sql} FORMAT JSONCompact`` and retried on
        transient failures.

        Args:
            sql: The query, without a ``FORMAT`` clause.
            settings: ClickHouse settings for this query.
            query_id: Id to use instead of a generated UUID.

        Raises:
            QueryError: If the server reports an error or returns invalid JSON.
            ClickHouseConnectionError: If the server is unreachable after retries.
            PoolTimeout: If no connection became available after retries.

        """
        statement = _strip_statement(sql)
        body = f"{statement} FORMAT JSONCompact".encode()

        def attempt(qid: str) -> Result:
            response = self._post(body, self._params(settings, qid), sql=statement)
            if not response.body.strip():
                return Result.empty()
            try:
                payload = json.loads(response.body)
            except ValueError as exc:
                preview = response.body[:200].decode("utf-8", errors="replace")
                raise QueryError(
                    f"Failed to parse JSONCompact response: {preview!r}",
                    http_status=response.status_code,
                    sql=statement,
                    original_error=exc,
                ) from exc
            return Result.from_json_compact(payload, registry=self._registry)

        return self._run("execute", statement, attempt, idempotent=True, query_id=query_id)

    def command(
        self,
        sql: str,
        settings: Mapping[str, Any] | None = None,
        *,
        query_id: str | None = None,
    ) -> bool:
        """Run a statement that returns no rows (DDL, ``OPTIMIZE``, ``SYSTEM`` ...).

        Commands are not retried.

        Raises:
            QueryError: If the server reports an error.

        """
        statement = _strip_statement(sql)

        def attempt(qid: str) -> bool:
            self._post(statement.encode(), self._params(settings, qid), sql=statement)
            return True

        return self._run("command", statement, attempt, idempotent=False, query_id=query_id, retry=False)

    def insert(
        self,
        table: str,
        rows: Iterable[Mapping[str, Any] | Sequence[Any]],
        columns: Sequence[str] | None = None,
        settings: Mapping[str, Any] | None = None,
        *,
        query_id: str | None = None,
    ) -> bool:
        """Insert rows with ``FORMAT JSONEachRow``.

        Retries reuse the same ``query_id`` and ``insert_deduplication_token``
        so the server can discard duplicate blocks.

        Args:
            table: Table name, optionally ``database.table``.
            rows: Mappings of column to value, or sequences when *columns*
                is given.
            columns: Column names; defaults to the keys of the first row.
            settings: ClickHouse settings for this insert.
            query_id: Id to use instead of a generated UUID.

        Returns:
            ``True`` once the server acknowledged the insert.

        Raises:
            ValueError: If *rows* is empty or rows do not match *columns*.
            QueryError: If the server rejects the insert.

        """
        materialized = list(rows)
        if not materialized:
            raise ValueError("rows must not be empty")
        names, records = _normalize_rows(materialized, columns)
        statement = (
            f"INSERT INTO {quote_identifier(table)} ({', '.join(quote_identifier(c) for c in names)}) FORMAT JSONEachRow"
        )
        payload = "".join(json.dumps(record, default=_json_default, ensure_ascii=False) + "\n" for record in records)
        body = payload.encode()

        def attempt(qid: str) -> bool:
            params = self._params(settings, qid)
            params["query"] = statement
            params.setdefault("insert_deduplication_token", qid)
            self._post(body, params, sql=statement)
            return True

        self._run("insert", statement, attempt, idempotent=False, query_id=query_id)
        _logger.info("Inserted %d row(s) into %s", len(records), table, extra={"table": table, "rows": len(records)})
        return True

    def stream_execute(
        self,
        sql: str,
        settings: Mapping[str, Any] | None = None,
        *,
        typed: bool = False,
        query_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> StreamingResult:
        """Prepare a streamed query; rows are decoded as they arrive.

        The query runs on a dedicated connection (not the pool) when the
        returned object is iterated, and is not retried.

        Args:
            sql: The query, without a ``FORMAT`` clause.
            settings: ClickHouse settings for this query.
            typed: Request ``JSONCompactEachRowWithNamesAndTypes`` and
                deserialize rows through the column codecs.  Otherwise rows
                are the JSON objects of ``JSONEachRow``.
            query_id: Id to use instead of a generated UUID.
            on_progress: Progress callback; enables inline progress records
                and progress headers.

        """
        statement = _strip_statement(sql)
        params = self._params(settings, query_id or str(uuid.uuid4()))
        if typed:
            fmt = "JSONCompactEachRowWithNamesAndTypes"
        elif on_progress is not None:
            fmt = "JSONEachRowWithProgress"
        else:
            fmt = "JSONEachRow"
        if on_progress is not None:
            params["send_progress_in_http_headers"] = 1
        stream = StreamingResult(
            self._open_stream_connection,
            statement,
            body=f"{statement} FORMAT {fmt}".encode(),
            params=params,
            typed=typed,
            registry=self._registry,
            with_progress=fmt == "JSONEachRowWithProgress",
        )
        if on_progress is not None:
            stream.on_progress(on_progress)
        return stream

    def iter_rows(self, sql: str, settings: Mapping[str, Any] | None = None, *, typed: bool = False) -> Iterator[dict[str, Any]]:
        """Iterate over the rows of a streamed query."""
        return iter(self.stream_execute(sql, settings, typed=typed))

    def iter_batches(
        self,
        sql: str,
        settings: Mapping[str, Any] | None = None,
        *,
        batch_size: int = 1000,
        typed: bool = False,
    ) -> Iterator[list[dict[str, Any]]]:
        """Iterate over a streamed query in lists of up to *batch_size* rows."""
        return self.stream_execute(sql, settings, typed=typed).batches(batch_size)

    def _open_stream_connection(self) -> Connection:
        conn = self._new_connection()
        conn.connect()
        return conn

    # -- server and pool --------------------------------------------------------

    def ping(self) -> bool:
        """Return ``True`` if the server answers ``/ping``; never raises for connectivity failures."""
        try:
            with self._pool.connection() as conn:
                return conn.ping()
        except (ClickHouseConnectionError, PoolError) as exc:
            _logger.debug("Ping failed: %s", exc)
            return False

    def server_version(self) -> str:
        """Return the server version string, e.g. ``24.3.1.2672``."""
        row = self.execute("SELECT version() AS version").first()
        if row is None:
            raise QueryError("SELECT version() returned no rows", sql="SELECT version() AS version")
        return str(row["version"])

    def pool_stats(self) -> PoolStats:
        """Snapshot of connection pool counters."""
        return self._pool.stats

    def health_check(self) -> PoolHealth:
        """Ping every idle pooled connection, dropping those that fail."""
        return self._pool.health_check()

    def cleanup_idle(self) -> int:
        """Close idle pooled connections older than ``pool_max_idle``; returns the count."""
        return self._pool.cleanup(self._config.pool_max_idle)

    def close(self) -> None:
        """Close every pooled connection.  The client cannot be used afterwards."""
        self._pool.shutdown()

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<Client {self._config.base_url} database={self._config.database!r}>"

    # -- internals --------------------------------------------------------------

    def _params(self, settings: Mapping[str, Any] | None, query_id: str) -> dict[str, Any]:
        params: dict[str, Any] = {"database": self._config.database}
        params.update(self._config.settings)
        if settings:
            params.update(settings)
        if self._config.compression_enabled:
            params["enable_http_compression"] = 1
        params["query_id"] = query_id
        return params

    def _post(self, body: bytes, params: Mapping[str, Any], *, sql: str) -> HttpResponse:
        headers: dict[str, str] = {}
        encoding = self._config.compression
        if encoding is not None and len(body) >= self._config.compression_threshold:
            body = compress(body, encoding)
            headers["Content-Encoding"] = encoding
        with self._pool.connection() as conn:
            response = conn.post("/", body, params=params, headers=headers)
        # ClickHouse may report an error mid-response with a 200 status
        if not response.ok or response.headers.get(EXCEPTION_CODE_HEADER):
            error = QueryError.from_response(response.text, http_status=response.status_code, sql=sql)
            _logger.warning(
                "ClickHouse returned HTTP %d: %s",
                response.status_code,
                error,
                extra={"query_id": params.get("query_id"), "http_status": response.status_code, "code": error.code},
            )
            raise error
        return response

    def _run(
        self,
        operation: str,
        sql: str,
        attempt: Callable[[str], T],
        *,
        idempotent: bool,
        query_id: str | None,
        retry: bool = True,
    ) -> T:
        info = QueryInfo(operation, sql, query_id or str(uuid.uuid4()), self._config.database)
        tokens: list[tuple[QueryHook, object]] = []
        for hook in self._hooks:
            try:
                tokens.append((hook, hook.on_query_start(info)))
            except Exception:
                _logger.warning("Query hook %r failed", hook, exc_info=True)
        start = time.monotonic()
        error: BaseException | None = None
        try:
            if retry:
                return self._retry.run(attempt, idempotent=idempotent, query_id=info.query_id, label=operation)
            return attempt(info.query_id)
        except BaseException as exc:
            error = exc
            raise
        finally:
            duration_ms = (time.monotonic() - start) * 1000
            _logger.debug(
                "%s %s in %.1fms",
                operation,
                "failed" if error is not None else "completed",
                duration_ms,
                extra={
                    "operation": operation,
                    "query_id": info.query_id,
                    "database": info.database,
                    "duration_ms": round(duration_ms, 3),
                    "sql": sql[:1000],
                },
            )
            for hook, token in tokens:
                try:
                    hook.on_query_end(token, info, error)
                except Exception:
                    _logger.warning("Query hook %r failed", hook, exc_info=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def quote_identifier(name: str) -> str:
    """Backquote an identifier; ``db.table`` is quoted part by part."""
    return ".".join("`" + part.replace("\\", "\\\\").replace("`", "\\`") + "`" for part in name.split("."))


def _strip_statement(sql: str) -> str:
    statement = sql.strip()
    while statement.endswith(";"):
        statement = statement[:-1].rstrip()
    return statement


def _normalize_rows(
    rows: list[Mapping[str, Any] | Sequence[Any]],
    columns: Sequence[str] | None,
) -> tuple[list[str], list[dict[str, Any]]]:
    first = rows[0]
    if columns is None:
        if not isinstance(first, Mapping):
            raise ValueError("columns are required when rows are sequences")
        names = [str(key) for key in first]
    else:
        names = list(columns)
        if not names:
            raise ValueError("columns must not be empty")
    records: list[dict[str, Any]] = []
    for index, row in enumerate(rows):
        if isinstance(row, Mapping):
            records.append({name: row.get(name) for name in names})
        else:
            if len(row) != len(names):
                raise ValueError(f"Row {index} has {len(row)} values, expected {len(names)} ({', '.join(names)})")
            records.append(dict(zip(names, row, strict=True)))
    return names, records


def _json_default(value: Any) -> Any:
    """Encode values ``json`` cannot handle natively, in forms ClickHouse accepts."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.timestamp()
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal | uuid.UUID):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, set | frozenset):
        return list(value)
    if isinstance(value, enum.Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
