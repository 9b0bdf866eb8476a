# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Exception hierarchy for clickhouse-http.

Every exception raised by the library derives from :class:`ClickHouseError`.
The hierarchy mirrors how failures are treated by the retry engine:

- :class:`ClickHouseConnectionError` and :class:`PoolError` are transient.
- :class:`QueryError` is transient only when it carries HTTP 429 or 5xx.
- :class:`TypeCastError` and :class:`ConfigurationError` are never retried.

Server-side failures are mapped onto :class:`QueryError` subclasses from the
``Code: N`` marker in the response body via :func:`error_for_code`.
"""

from __future__ import annotations

import re

__all__ = [
    "ClickHouseConnectionError",
    "ClickHouseError",
    "ConfigurationError",
    "ConnectionNotEstablished",
    "ConnectionTimeout",
    "ParseError",
    "PoolError",
    "PoolExhausted",
    "PoolTimeout",
    "QueryError",
    "QuerySyntaxError",
    "QueryTimeout",
    "SSLError",
    "StatementInvalid",
    "TypeCastError",
    "UnknownColumn",
    "UnknownDatabase",
    "UnknownTable",
    "error_for_code",
]

# SQL attached to errors is truncated to keep log lines bounded.
MAX_SQL_LENGTH = 1000

_CODE_RE = re.compile(r"Code:\s*(\d+)")
_MESSAGE_RE = re.compile(r"DB::Exception:\s*(.+?)(?:\s*\(version|$)", re.DOTALL)


class ClickHouseError(Exception):
    """Base class for all clickhouse-http errors.

    Attributes:
        original_error: The lower-level exception that caused this one, if any.

    """

    def __init__(self, message: str = "", *, original_error: BaseException | None = None) -> None:
        """Initialize with a message and optional underlying exception."""
        super().__init__(message)
        self.original_error = original_error


# ---------------------------------------------------------------------------
# Connection errors
# ---------------------------------------------------------------------------


class ClickHouseConnectionError(ClickHouseError):
    """The server could not be reached or the transport failed mid-request."""


class ConnectionNotEstablished(ClickHouseConnectionError):
    """The TCP connection was refused or could not be opened."""


class ConnectionTimeout(ClickHouseConnectionError):
    """Connecting, reading, or writing exceeded its timeout."""


class SSLError(ClickHouseConnectionError):
    """TLS negotiation or certificate verification failed."""


# ---------------------------------------------------------------------------
# Query errors
# ---------------------------------------------------------------------------


class QueryError(ClickHouseError):
    """The server rejected or failed to execute a query.

    Attributes:
        code: ClickHouse error code parsed from the response, if present.
        http_status: HTTP status code of the failed response, if any.
        sql: The offending SQL, truncated to 1000 characters.

    """

    def __init__(
        self,
        message: str = "",
        *,
        code: int | None = None,
        http_status: int | None = None,
        sql: str | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        """Initialize with the server message and request context."""
        super().__init__(message, original_error=original_error)
        self.code = code
        self.http_status = http_status
        self.sql = _truncate_sql(sql)

    def __str__(self) -> str:
        """Render the message followed by the code and HTTP status, when known."""
        parts = [super().__str__()]
        if self.code is not None:
            parts.append(f"(code {self.code})")
        if self.http_status is not None:
            parts.append(f"[HTTP {self.http_status}]")
        return " ".join(p for p in parts if p)

    @classmethod
    def from_response(cls, body: str, *, http_status: int | None = None, sql: str | None = None) -> QueryError:
        """Build the most specific ``QueryError`` for a failed response body.

        Args:
            body: Decoded response body, usually ``Code: N. DB::Exception: ...``.
            http_status: HTTP status of the response.
            sql: The SQL that was sent.

        Returns:
            An instance of the subclass registered for the parsed code, or
            plain ``QueryError`` when the code is absent or unmapped.

        """
        code = parse_error_code(body)
        message = parse_error_message(body) or body.strip() or f"HTTP {http_status}"
        error_cls = error_for_code(code)
        return error_cls(message, code=code, http_status=http_status, sql=sql)


class QuerySyntaxError(QueryError):
    """The SQL could not be parsed by the server (code 62)."""


class StatementInvalid(QueryError):
    """The statement is well-formed but invalid for the server."""


class QueryTimeout(QueryError):
    """The query exceeded its server-side execution time limit (code 159)."""


class UnknownTable(QueryError):
    """The referenced table does not exist (code 60)."""


class UnknownColumn(QueryError):
    """The referenced column or identifier does not exist (codes 16, 47)."""


class UnknownDatabase(QueryError):
    """The referenced database does not exist (code 81)."""


_ERROR_CODES: dict[int, type[QueryError]] = {
    16: UnknownColumn,
    47: UnknownColumn,
    60: UnknownTable,
    62: QuerySyntaxError,
    81: UnknownDatabase,
    159: QueryTimeout,
}


def error_for_code(code: int | None) -> type[QueryError]:
    """Return the ``QueryError`` subclass for a ClickHouse error code."""
    if code is None:
        return QueryError
    return _ERROR_CODES.get(code, QueryError)


def parse_error_code(body: str) -> int | None:
    """Extract the numeric code from a ``Code: N`` marker, if present."""
    match = _CODE_RE.search(body)
    return int(match.group(1)) if match else None


def parse_error_message(body: str) -> str | None:
    """Extract the text following ``DB::Exception:`` without the version suffix."""
    match = _MESSAGE_RE.search(body)
    return match.group(1).strip() if match else None


def _truncate_sql(sql: str | None) -> str | None:
    if sql is None or len(sql) <= MAX_SQL_LENGTH:
        return sql
    return sql[:MAX_SQL_LENGTH] + "..."


# ---------------------------------------------------------------------------
# Data, pool and configuration errors
# ---------------------------------------------------------------------------


class TypeCastError(ClickHouseError):
    """A host value could not be converted to a ClickHouse type.

    Attributes:
        from_type: Name of the host type of the rejected value.
        to_type: The ClickHouse type the value was being cast to.
        value: The rejected value.

    """

    def __init__(self, message: str, *, from_type: str, to_type: str, value: object) -> None:
        """Initialize with the conversion context."""
        super().__init__(message)
        self.from_type = from_type
        self.to_type = to_type
        self.value = value


class PoolError(ClickHouseError):
    """The connection pool could not satisfy a request."""


class PoolExhausted(PoolError):
    """Every connection in the pool is in use."""


class PoolTimeout(PoolError):
    """No connection became available within the checkout timeout."""


class ConfigurationError(ClickHouseError, ValueError):
    """Invalid client, retry, or type configuration."""


class ParseError(ClickHouseError, ValueError):
    """A type declaration could not be parsed.

    Attributes:
        position: Zero-based offset in *input* where parsing failed.
        input: The full text that was being parsed.

    """

    def __init__(self, message: str, *, position: int, input: str) -> None:
        """Initialize with the failure offset and the offending text."""
        super().__init__(f"{message} at position {position} in {input!r}")
        self.reason = message
        self.position = position
        self.input = input
