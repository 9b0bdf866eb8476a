# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""In-process fake ClickHouse HTTP server for tests.

:class:`FakeClickHouse` is a small Falcon WSGI application speaking enough
of the ClickHouse HTTP interface to exercise the client end to end: queries,
``JSONEachRow`` inserts, ``/ping``, gzip/zstd response compression, chunked
streaming and error responses.  Clients reach it through
``httpx.WSGITransport``, so no socket or subprocess is needed.

Requires ``pip install clickhouse-http[testing]`` (falcon).

Usage::

    server = FakeClickHouse()
    server.respond_json([("n", "UInt8")], [[1], [2]])
    with server.client() as client:
        assert client.execute("SELECT n").column("n") == [1, 2]
"""

from __future__ import annotations

import json
import threading
from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import falcon
import httpx

from clickhouse_http.client import Client
from clickhouse_http.compression import compress, decompress
from clickhouse_http.config import ClientConfig

__all__ = ["FakeClickHouse", "FakeResponse", "RecordedRequest"]

DEFAULT_VERSION = "24.3.1.2672"


@dataclass(frozen=True)
class RecordedRequest:
    """One request received by the fake server.

    Attributes:
        method: HTTP method.
        path: Request path.
        params: Query-string parameters.
        headers: Request headers, with lower-case names.
        body: Request body after removing any ``Content-Encoding``.
        raw_body: Request body exactly as received.

    """

    method: str
    path: str
    params: Mapping[str, str]
    headers: Mapping[str, str]
    body: bytes
    raw_body: bytes

    @property
    def sql(self) -> str:
        """The statement: the ``query`` parameter if present, else the body."""
        return self.params.get("query") or self.body.decode("utf-8", errors="replace")

    @property
    def query_id(self) -> str | None:
        """The ``query_id`` parameter, if sent."""
        return self.params.get("query_id")


@dataclass
class FakeResponse:
    """A scripted response.

    Attributes:
        status: HTTP status code.
        body: Complete body; ignored when *chunks* is set.
        chunks: Body chunks sent one by one (streamed).
        headers: Extra response headers.
        compress: Honour the client's ``Accept-Encoding`` for this response.

    """

    status: int = 200
    body: bytes = b""
    chunks: Sequence[bytes] | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    compress: bool = True


class FakeClickHouse:
    """Scriptable fake ClickHouse server.

    Scripted responses are served first-in first-out to query requests.
    Without a script, inserts are recorded in :attr:`inserted`,
    ``SELECT version()`` answers :data:`DEFAULT_VERSION`, and any other
    query returns an empty result.
    """

    def __init__(self, *, version: str = DEFAULT_VERSION) -> None:
        """Initialize with an empty script."""
        self.version = version
        self.requests: list[RecordedRequest] = []
        self.inserted: dict[str, list[dict[str, Any]]] = {}
        self._script: deque[FakeResponse] = deque()
        self._drops = 0
        self._lock = threading.Lock()
        self.app = falcon.App()
        self.app.add_route("/", _QueryResource(self))
        self.app.add_route("/ping", _PingResource(self))

    # -- scripting --------------------------------------------------------------

    def enqueue(self, response: FakeResponse) -> None:
        """Append a scripted response."""
        with self._lock:
            self._script.append(response)

    def respond_json(
        self,
        columns: Sequence[tuple[str, str]],
        data: Sequence[Sequence[Any]],
        *,
        statistics: Mapping[str, Any] | None = None,
    ) -> None:
        """Script a ``JSONCompact`` result with ``(name, type)`` columns."""
        payload = {
            "meta": [{"name": name, "type": type_} for name, type_ in columns],
            "data": [list(row) for row in data],
            "rows": len(data),
            "statistics": dict(statistics or {"elapsed": 0.001, "rows_read": len(data), "bytes_read": 0}),
        }
        self.enqueue(FakeResponse(body=json.dumps(payload).encode()))

    def respond_error(self, code: int, message: str, *, status: int = 500, name: str = "EXCEPTION") -> None:
        """Script a server error in ClickHouse's ``Code: N. DB::Exception:`` format."""
        body = f"Code: {code}. DB::Exception: {message}. ({name}) (version {self.version})\n"
        self.enqueue(
            FakeResponse(status=status, body=body.encode(), headers={"X-ClickHouse-Exception-Code": str(code)})
        )

    def respond_stream(self, chunks: Iterable[bytes], *, headers: Mapping[str, str] | None = None) -> None:
        """Script a streamed body sent as the given chunks, uncompressed."""
        self.enqueue(FakeResponse(chunks=list(chunks), headers=dict(headers or {}), compress=False))

    def respond_rows(self, rows: Iterable[Mapping[str, Any]], *, chunk_size: int | None = None) -> None:
        """Script a ``JSONEachRow`` stream, optionally split every *chunk_size* bytes."""
        body = b"".join(json.dumps(row).encode() + b"\n" for row in rows)
        if chunk_size is None:
            self.enqueue(FakeResponse(chunks=[body]))
        else:
            self.enqueue(FakeResponse(chunks=[body[i : i + chunk_size] for i in range(0, len(body), chunk_size)]))

    def drop_connections(self, count: int = 1) -> None:
        """Refuse the next *count* requests with ``httpx.ConnectError``."""
        with self._lock:
            self._drops += count

    # -- client helpers ---------------------------------------------------------

    def transport(self) -> httpx.BaseTransport:
        """An ``httpx`` transport routing requests to this server in-process."""
        return _FakeTransport(self)

    def client(self, config: ClientConfig | None = None, **overrides: Any) -> Client:
        """A :class:`Client` wired to this server, with retry sleeps disabled."""
        return Client(config, transport=self.transport(), sleep=lambda _: None, **overrides)

    @property
    def queries(self) -> list[str]:
        """Statements of every query request received, in order."""
        return [r.sql for r in self.requests if r.path == "/"]

    # -- handling ---------------------------------------------------------------

    def _take_drop(self) -> bool:
        with self._lock:
            if self._drops > 0:
                self._drops -= 1
                return True
            return False

    def _handle(self, req: falcon.Request, resp: falcon.Response) -> None:
        raw = req.bounded_stream.read()
        headers = {k.lower(): v for k, v in req.headers.items()}
        body = decompress(raw, headers.get("content-encoding"))
        params = {k: str(v) for k, v in req.params.items()}
        record = RecordedRequest(req.method, req.path, params, headers, body, raw)
        with self._lock:
            self.requests.append(record)
            scripted = self._script.popleft() if self._script else None
        if scripted is None:
            scripted = self._default_response(record)
        self._write(req, resp, params, scripted)

    def _default_response(self, request: RecordedRequest) -> FakeResponse:
        sql = request.sql.strip()
        upper = sql.upper()
        if upper.startswith("INSERT INTO"):
            table = sql.split()[2].replace("`", "")
            rows = [json.loads(line) for line in request.body.splitlines() if line.strip()]
            with self._lock:
                self.inserted.setdefault(table, []).extend(rows)
            return FakeResponse()
        if upper.startswith("SELECT VERSION()"):
            payload = {"meta": [{"name": "version", "type": "String"}], "data": [[self.version]], "rows": 1}
            return FakeResponse(body=json.dumps(payload).encode())
        if " FORMAT JSONCOMPACT" in upper:
            return FakeResponse(body=json.dumps({"meta": [], "data": [], "rows": 0}).encode())
        return FakeResponse()

    def _write(self, req: falcon.Request, resp: falcon.Response, params: Mapping[str, str], scripted: FakeResponse) -> None:
        resp.status = falcon.code_to_http_status(scripted.status)
        for name, value in scripted.headers.items():
            resp.set_header(name, value)
        encoding = None
        if scripted.compress and params.get("enable_http_compression") == "1":
            accepted = req.get_header("Accept-Encoding") or ""
            encoding = next((e for e in ("zstd", "gzip") if e in accepted), None)
        if scripted.chunks is not None:
            chunks = list(scripted.chunks)
            if encoding is not None:
                # One independently compressed member per chunk
                chunks = [compress(chunk, encoding) for chunk in chunks]
                resp.set_header("Content-Encoding", encoding)
            resp.content_type = "application/x-ndjson"
            resp.stream = iter(chunks)
            return
        body = scripted.body
        if encoding is not None and body:
            body = compress(body, encoding)
            resp.set_header("Content-Encoding", encoding)
        resp.content_type = "application/json"
        resp.data = body


class _QueryResource:
    """Handles ``/`` queries (POST body or ``query`` parameter)."""

    def __init__(self, server: FakeClickHouse) -> None:
        self._server = server

    def on_get(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Handle a read-only query sent as a GET."""
        self._server._handle(req, resp)

    def on_post(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Handle a query or insert."""
        self._server._handle(req, resp)


class _PingResource:
    """Answers ``/ping`` with ``Ok.``."""

    def __init__(self, server: FakeClickHouse) -> None:
        self._server = server

    def on_get(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Record the ping and reply ``Ok.``."""
        with self._server._lock:
            self._server.requests.append(
                RecordedRequest(req.method, req.path, {}, {k.lower(): v for k, v in req.headers.items()}, b"", b"")
            )
        resp.content_type = falcon.MEDIA_TEXT
        resp.text = "Ok.\n"


class _FakeTransport(httpx.WSGITransport):
    """WSGI transport that can simulate refused connections."""

    def __init__(self, server: FakeClickHouse) -> None:
        super().__init__(app=server.app)
        self._server = server

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        """Route to the WSGI app, or raise ``ConnectError`` while drops are pending."""
        if self._server._take_drop():
            raise httpx.ConnectError("[Errno 111] Connection refused", request=request)
        return super().handle_request(request)
