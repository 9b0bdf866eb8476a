# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""A single HTTP connection to a ClickHouse server.

:class:`Connection` owns one ``httpx.Client`` (and therefore one keep-alive
socket) and is used by at most one caller at a time, either through the
:class:`~clickhouse_http.pool.ConnectionPool` or as a dedicated streaming
connection.  ``httpx`` transport failures are translated into the
:class:`~clickhouse_http.errors.ClickHouseConnectionError` family here, at
the seam where they occur.

Logger: ``clickhouse_http.connection``.
"""

from __future__ import annotations

import contextlib
import logging
import ssl
import time
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from clickhouse_http.config import ClientConfig
from clickhouse_http.errors import (
    ClickHouseConnectionError,
    ConnectionNotEstablished,
    ConnectionTimeout,
    SSLError,
)

__all__ = ["Connection", "HttpResponse", "StreamResponse"]

_logger = logging.getLogger("clickhouse_http.connection")

_USER_AGENT = "clickhouse-http-python"


@dataclass(frozen=True)
class HttpResponse:
    """A fully read HTTP response.

    Attributes:
        status_code: HTTP status code.
        body: Response body, already decoded from any ``Content-Encoding``.
        headers: Response headers (case-insensitive).

    """

    status_code: int
    body: bytes
    headers: Mapping[str, str]

    @property
    def ok(self) -> bool:
        """Whether the status is 2xx."""
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        """Body decoded as UTF-8 (invalid bytes replaced)."""
        return self.body.decode("utf-8", errors="replace")


class StreamResponse:
    """An HTTP response whose body is consumed incrementally."""

    __slots__ = ("_response",)

    def __init__(self, response: httpx.Response) -> None:
        """Wrap an open streaming ``httpx.Response``."""
        self._response = response

    @property
    def status_code(self) -> int:
        """HTTP status code."""
        return self._response.status_code

    @property
    def headers(self) -> Mapping[str, str]:
        """Response headers (case-insensitive)."""
        return self._response.headers

    @property
    def ok(self) -> bool:
        """Whether the status is 2xx."""
        return self._response.is_success

    def header_values(self, name: str) -> list[str]:
        """All values of a repeated header, in order."""
        return self._response.headers.get_list(name)

    def iter_chunks(self, chunk_size: int | None = None) -> Iterator[bytes]:
        """Yield raw (still compressed) body chunks as they arrive."""
        try:
            yield from self._response.iter_raw(chunk_size)
        except httpx.TransportError as exc:
            raise translate_transport_error(exc) from exc

    def read(self) -> bytes:
        """Read and return the remaining body, decoded from any ``Content-Encoding``."""
        try:
            return self._response.read()
        except httpx.TransportError as exc:
            raise translate_transport_error(exc) from exc


def translate_transport_error(exc: httpx.TransportError) -> ClickHouseConnectionError:
    """Map an ``httpx`` transport failure onto the connection error taxonomy."""
    if isinstance(exc, httpx.TimeoutException):
        return ConnectionTimeout(f"Timed out talking to ClickHouse: {exc}", original_error=exc)
    if _is_ssl_failure(exc):
        return SSLError(f"TLS failure talking to ClickHouse: {exc}", original_error=exc)
    if isinstance(exc, httpx.ConnectError):
        return ConnectionNotEstablished(f"Could not connect to ClickHouse: {exc}", original_error=exc)
    return ClickHouseConnectionError(f"Transport error talking to ClickHouse: {exc}", original_error=exc)


def _is_ssl_failure(exc: BaseException) -> bool:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, ssl.SSLError):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    text = str(exc)
    return "CERTIFICATE_VERIFY_FAILED" in text or "SSL:" in text


class Connection:
    """One ``httpx.Client`` bound to a ClickHouse server.

    Not thread-safe: a connection is held by one caller at a time.
    """

    __slots__ = ("_client", "_config", "_transport", "created_at", "last_used")

    def __init__(self, config: ClientConfig, *, transport: httpx.BaseTransport | None = None) -> None:
        """Initialize (without connecting).

        Args:
            config: Client configuration supplying URL, credentials and timeouts.
            transport: Optional ``httpx`` transport, e.g. ``httpx.WSGITransport``
                for in-process testing.

        """
        self._config = config
        self._transport = transport
        self._client: httpx.Client | None = None
        self.created_at = time.monotonic()
        self.last_used = self.created_at

    # -- lifecycle --------------------------------------------------------------

    @property
    def connected(self) -> bool:
        """Whether the underlying HTTP client is open."""
        return self._client is not None and not self._client.is_closed

    def connect(self) -> None:
        """Open the underlying ``httpx.Client`` if it is not already open."""
        if self.connected:
            return
        config = self._config
        headers = {"User-Agent": _USER_AGENT}
        if config.username is not None:
            headers["X-ClickHouse-User"] = config.username
        if config.password is not None:
            headers["X-ClickHouse-Key"] = config.password
        if config.compression is not None:
            headers["Accept-Encoding"] = config.compression
        self._client = httpx.Client(
            base_url=config.base_url,
            headers=headers,
            timeout=httpx.Timeout(
                connect=config.connect_timeout,
                read=config.read_timeout,
                write=config.write_timeout,
                pool=config.connect_timeout,
            ),
            verify=self._verify(),
            transport=self._transport,
            follow_redirects=True,
        )
        _logger.debug("Opened connection to %s", config.base_url)

    def disconnect(self) -> None:
        """Close the underlying HTTP client.  Safe to call repeatedly."""
        client, self._client = self._client, None
        if client is not None and not client.is_closed:
            client.close()
            _logger.debug("Closed connection to %s", self._config.base_url)

    def is_healthy(self) -> bool:
        """Whether the connection is open and usable."""
        return self.connected

    def is_stale(self, max_idle: float) -> bool:
        """Whether the connection has been idle for more than *max_idle* seconds."""
        return time.monotonic() - self.last_used > max_idle

    def _verify(self) -> ssl.SSLContext | bool:
        if not self._config.ssl_verify:
            return False
        if self._config.ssl_ca_path:
            return ssl.create_default_context(cafile=self._config.ssl_ca_path)
        return True

    # -- requests ---------------------------------------------------------------

    def get(
        self,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        """Send a GET request and read the full response."""
        return self._request("GET", path, params=params, headers=headers)

    def post(
        self,
        path: str,
        body: bytes,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        """Send a POST request and read the full response."""
        return self._request("POST", path, content=body, params=params, headers=headers)

    @contextlib.contextmanager
    def stream_post(
        self,
        path: str,
        body: bytes,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Iterator[StreamResponse]:
        """Send a POST request and yield the response before its body is read.

        The response is closed when the context exits, whether or not the
        body was fully consumed.
        """
        client = self._ensure_client()
        self.last_used = time.monotonic()
        try:
            with client.stream("POST", path, content=body, params=_clean(params), headers=headers) as response:
                yield StreamResponse(response)
        except httpx.TransportError as exc:
            self.disconnect()
            raise translate_transport_error(exc) from exc
        finally:
            self.last_used = time.monotonic()

    def ping(self) -> bool:
        """Return ``True`` if the server answers ``/ping`` with ``Ok.``.

        Connectivity failures return ``False`` rather than raising.
        """
        try:
            response = self.get("/ping")
        except ClickHouseConnectionError as exc:
            _logger.debug("Ping to %s failed: %s", self._config.base_url, exc)
            return False
        return response.ok and response.text.strip() == "Ok."

    def _ensure_client(self) -> httpx.Client:
        self.connect()
        assert self._client is not None
        return self._client

    def _request(
        self,
        method: str,
        path: str,
        *,
        content: bytes | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        client = self._ensure_client()
        try:
            response = client.request(method, path, content=content, params=_clean(params), headers=headers)
        except httpx.TransportError as exc:
            self.disconnect()
            raise translate_transport_error(exc) from exc
        finally:
            self.last_used = time.monotonic()
        return HttpResponse(response.status_code, response.content, response.headers)

    def __repr__(self) -> str:
        state = "connected" if self.connected else "disconnected"
        return f"<Connection {self._config.base_url} {state}>"


def _clean(params: Mapping[str, Any] | None) -> dict[str, str] | None:
    """Drop ``None`` values and render booleans the way ClickHouse expects."""
    if not params:
        return None
    cleaned: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        cleaned[key] = ("1" if value else "0") if isinstance(value, bool) else str(value)
    return cleaned
