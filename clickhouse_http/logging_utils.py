# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Structured JSON log output for clickhouse-http.

The library only emits records on named loggers (``clickhouse_http.client``,
``clickhouse_http.pool``, ``clickhouse_http.retry`` ...), attaching context
such as ``query_id`` and ``duration_ms`` as ``extra`` fields.
:class:`JsonFormatter` renders those records as single-line JSON objects.

This module is not imported by ``clickhouse_http``; import it explicitly::

    import logging
    from clickhouse_http.logging_utils import JsonFormatter

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logging.getLogger("clickhouse_http").addHandler(handler)
"""

from __future__ import annotations

import json
import logging

__all__ = ["JsonFormatter"]

# Attributes every LogRecord carries; anything else arrived via ``extra``.
_STANDARD_ATTRS: frozenset[str] = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
}

_OUTPUT_KEYS: frozenset[str] = frozenset({"timestamp", "level", "logger", "message", "exception", "stack_info"})

_SECRET_KEYS: frozenset[str] = frozenset({"password", "x-clickhouse-key", "key", "secret", "token"})

_REDACTED = "***"


class JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON including ``extra`` fields.

    ``timestamp``, ``level``, ``logger`` and ``message`` are always present
    and cannot be overridden by extra fields.  Extra fields whose names look
    like credentials are redacted, and string fields longer than
    ``max_field_length`` (SQL text, typically) are truncated.

    Args:
        max_field_length: Longest string emitted for an extra field; ``None``
            disables truncation.

    """

    def __init__(self, *args: object, max_field_length: int | None = 1000, **kwargs: object) -> None:
        """Initialize; positional and keyword arguments go to ``logging.Formatter``."""
        super().__init__(*args, **kwargs)  # type: ignore[arg-type]
        self.max_field_length = max_field_length

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single-line JSON string."""
        record.message = record.getMessage()
        obj: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key in _OUTPUT_KEYS:
                continue
            obj[key] = self._field(key, value)
        if record.exc_info and record.exc_info[1]:
            obj["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            obj["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(obj, default=str)

    def _field(self, key: str, value: object) -> object:
        if key.lower() in _SECRET_KEYS:
            return _REDACTED
        if isinstance(value, str) and self.max_field_length is not None and len(value) > self.max_field_length:
            return value[: self.max_field_length] + "..."
        return value
