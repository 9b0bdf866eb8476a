# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Incremental decoding of newline-delimited JSON responses.

:class:`StreamDecoder` turns arbitrarily split (and optionally gzip- or
zstd-compressed) byte chunks into parsed JSON records, holding at most the
current partial record in memory.  :class:`StreamingResult` drives it over a
dedicated HTTP connection and exposes per-row and batched iteration.

Logger: ``clickhouse_http.streaming``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Generator, Iterator, Mapping
from typing import Any

from clickhouse_http.compression import Decompressor, decompressor_for
from clickhouse_http.connection import Connection
from clickhouse_http.errors import QueryError, error_for_code
from clickhouse_http.types import Codec, TypeRegistry, default_registry

__all__ = ["ProgressCallback", "StreamDecoder", "StreamingResult"]

_logger = logging.getLogger("clickhouse_http.streaming")

ProgressCallback = Callable[[Mapping[str, Any]], object]
"""Receives progress objects such as ``{"read_rows": "10", "read_bytes": "80"}``."""

PROGRESS_HEADER = "X-ClickHouse-Progress"
EXCEPTION_CODE_HEADER = "X-ClickHouse-Exception-Code"

_SKIP = object()


class StreamDecoder:
    """Decode newline-delimited JSON from a sequence of byte chunks.

    Feed chunks in arrival order with :meth:`feed`, then call
    :meth:`finish` once the body ends.  Blank lines are ignored.  A
    single-key ``{"exception": ...}`` record raises the matching
    :class:`QueryError`.  With *with_progress* (``JSONEachRowWithProgress``)
    two more envelopes are understood:

    - ``{"progress": {...}}`` is passed to *on_progress* and not returned.
    - ``{"row": {...}}`` is unwrapped to the inner row.

    Without it, columns named ``progress`` or ``row`` are ordinary data.
    """

    __slots__ = ("_buffer", "_decompressor", "_on_progress", "_scan_from", "_sql", "_with_progress")

    def __init__(
        self,
        content_encoding: str | None = None,
        *,
        on_progress: ProgressCallback | None = None,
        sql: str | None = None,
        with_progress: bool = False,
    ) -> None:
        """Initialize.

        Args:
            content_encoding: ``gzip``, ``zstd`` or ``None`` for a plain body.
            with_progress: The body is ``JSONEachRowWithProgress``; unwrap
                ``row`` and ``progress`` envelopes.
            on_progress: Called with each progress record.
            sql: Query text attached to any raised :class:`QueryError`.

        """
        self._decompressor: Decompressor | None = decompressor_for(content_encoding)
        self._on_progress = on_progress
        self._with_progress = with_progress
        self._sql = sql
        self._buffer = bytearray()
        self._scan_from = 0

    @property
    def buffered(self) -> int:
        """Bytes held for the current incomplete record."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[Any]:
        """Consume one chunk and return the records it completed, in order."""
        if self._decompressor is not None:
            chunk = self._decompressor.decompress(chunk)
        if not chunk:
            return []
        self._buffer += chunk
        return self._drain()

    def finish(self) -> list[Any]:
        """Flush the decompressor and parse any unterminated final record."""
        records: list[Any] = []
        if self._decompressor is not None:
            tail = self._decompressor.flush()
            if tail:
                self._buffer += tail
                records.extend(self._drain())
        remainder = bytes(self._buffer).strip()
        self._buffer.clear()
        self._scan_from = 0
        if remainder:
            record = self._decode(remainder)
            if record is not _SKIP:
                records.append(record)
        return records

    def _drain(self) -> list[Any]:
        buf = self._buffer
        lines: list[bytes] = []
        start = 0
        # Only the bytes appended since the last scan can hold a new newline
        newline = buf.find(b"\n", self._scan_from)
        while newline >= 0:
            line = bytes(buf[start:newline]).strip()
            if line:
                lines.append(line)
            start = newline + 1
            newline = buf.find(b"\n", start)
        del buf[:start]
        self._scan_from = len(buf)
        records: list[Any] = []
        for line in lines:
            record = self._decode(line)
            if record is not _SKIP:
                records.append(record)
        return records

    def _decode(self, line: bytes) -> Any:
        if line.startswith(b"Code:"):
            raise QueryError.from_response(line.decode("utf-8", errors="replace"), sql=self._sql)
        try:
            record = json.loads(line)
        except ValueError as exc:
            preview = line[:200].decode("utf-8", errors="replace")
            raise QueryError(f"Malformed JSON record in stream: {preview!r}", sql=self._sql) from exc
        if isinstance(record, dict) and len(record) == 1:
            if "exception" in record:
                raise self._exception(record["exception"])
            if not self._with_progress:
                return record
            if "progress" in record:
                if self._on_progress is not None:
                    self._on_progress(record["progress"])
                return _SKIP
            if "row" in record:
                return record["row"]
        return record

    def _exception(self, payload: Any) -> QueryError:
        if isinstance(payload, Mapping):
            code = payload.get("code")
            code = int(code) if code is not None else None
            message = str(payload.get("message") or payload)
            return error_for_code(code)(message, code=code, sql=self._sql)
        return QueryError.from_response(str(payload), sql=self._sql)


class StreamingResult:
    """Lazily executed query whose rows are decoded as they arrive.

    The query runs when iteration starts, on a dedicated connection that
    is closed (never pooled) when iteration ends, fails, or is abandoned.
    Iterating again re-executes the query.
    """

    __slots__ = (
        "_body",
        "_chunk_size",
        "_headers",
        "_open_connection",
        "_params",
        "_progress_callbacks",
        "_registry",
        "_sql",
        "_typed",
        "_with_progress",
    )

    def __init__(
        self,
        open_connection: Callable[[], Connection],
        sql: str,
        *,
        body: bytes,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        typed: bool = False,
        registry: TypeRegistry | None = None,
        chunk_size: int | None = None,
        with_progress: bool = False,
    ) -> None:
        """Initialize without sending anything.

        Args:
            open_connection: Creates the dedicated connection for this stream.
            sql: Query text, for error context.
            body: Request body (the SQL with its ``FORMAT`` clause).
            params: URL parameters (database, settings, query id).
            headers: Extra request headers.
            typed: The body requests ``JSONCompactEachRowWithNamesAndTypes``;
                rows are deserialized through the column codecs.
            registry: Type registry for typed mode.
            chunk_size: Read size hint for the response body.
            with_progress: The body requests ``JSONEachRowWithProgress``.

        """
        self._open_connection = open_connection
        self._sql = sql
        self._body = body
        self._params = dict(params or {})
        self._headers = dict(headers or {})
        self._typed = typed
        self._registry = registry
        self._chunk_size = chunk_size
        self._with_progress = with_progress
        self._progress_callbacks: list[ProgressCallback] = []

    def on_progress(self, callback: ProgressCallback) -> StreamingResult:
        """Register a progress callback; returns ``self`` for chaining."""
        self._progress_callbacks.append(callback)
        return self

    def __iter__(self) -> Iterator[dict[str, Any]]:
        """Yield rows as dicts of column name to value."""
        if self._typed:
            return self._typed_rows()
        return self._records()

    def batches(self, size: int = 1000) -> Iterator[list[dict[str, Any]]]:
        """Yield lists of up to *size* rows; the final batch may be shorter.

        Raises:
            ValueError: If *size* < 1.

        """
        if size < 1:
            raise ValueError(f"batch size must be >= 1, got {size}")
        return self._batches(size)

    def _batches(self, size: int) -> Iterator[list[dict[str, Any]]]:
        rows = self._typed_rows() if self._typed else self._records()
        batch: list[dict[str, Any]] = []
        try:
            for row in rows:
                batch.append(row)
                if len(batch) >= size:
                    yield batch
                    batch = []
            if batch:
                yield batch
        finally:
            rows.close()

    def _progress(self, progress: Mapping[str, Any]) -> None:
        for callback in self._progress_callbacks:
            callback(progress)

    def _typed_rows(self) -> Generator[dict[str, Any], None, None]:
        registry = self._registry if self._registry is not None else default_registry()
        records = self._records()
        try:
            names = next(records, None)
            types = next(records, None)
            if names is None or types is None:
                return
            codecs: list[Codec] = [registry.lookup(t) for t in types]
            for record in records:
                yield {
                    name: codec.deserialize(value) for name, codec, value in zip(names, codecs, record, strict=True)
                }
        finally:
            records.close()

    def _records(self) -> Generator[Any, None, None]:
        conn = self._open_connection()
        try:
            with conn.stream_post("/", self._body, params=self._params, headers=self._headers) as response:
                if not response.ok or response.headers.get(EXCEPTION_CODE_HEADER):
                    text = response.read().decode("utf-8", errors="replace")
                    raise QueryError.from_response(text, http_status=response.status_code, sql=self._sql)
                for value in response.header_values(PROGRESS_HEADER):
                    try:
                        progress = json.loads(value)
                    except ValueError:
                        _logger.debug("Ignoring malformed %s header: %r", PROGRESS_HEADER, value)
                        continue
                    self._progress(progress)
                decoder = StreamDecoder(
                    response.headers.get("Content-Encoding"),
                    on_progress=self._progress if self._progress_callbacks else None,
                    with_progress=self._with_progress,
                    sql=self._sql,
                )
                rows = 0
                for chunk in response.iter_chunks(self._chunk_size):
                    for record in decoder.feed(chunk):
                        rows += 1
                        yield record
                for record in decoder.finish():
                    rows += 1
                    yield record
                _logger.debug("Stream finished after %d record(s)", rows)
        finally:
            conn.disconnect()
