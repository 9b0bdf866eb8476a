# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""ClickHouse client over the HTTP interface, with pooling, retries and streaming."""

import contextlib
import logging

from clickhouse_http.client import Client, QueryHook, QueryInfo, quote_identifier
from clickhouse_http.compression import compress, decompress, decompressor_for
from clickhouse_http.config import ClientConfig, Compression
from clickhouse_http.connection import Connection
from clickhouse_http.errors import (
    ClickHouseConnectionError,
    ClickHouseError,
    ConfigurationError,
    ConnectionNotEstablished,
    ConnectionTimeout,
    ParseError,
    PoolError,
    PoolExhausted,
    PoolTimeout,
    QueryError,
    QuerySyntaxError,
    QueryTimeout,
    SSLError,
    StatementInvalid,
    TypeCastError,
    UnknownColumn,
    UnknownDatabase,
    UnknownTable,
)
from clickhouse_http.pool import ConnectionPool, PoolHealth, PoolStats
from clickhouse_http.result import QueryStatistics, Result, Row
from clickhouse_http.retry import Jitter, NonIdempotentRetryWarning, RetryConfig, RetryHandler
from clickhouse_http.streaming import StreamDecoder, StreamingResult
from clickhouse_http.types import Codec, TypeNode, TypeRegistry, default_registry, parse

# OpenTelemetry instrumentation (optional — requires `pip install clickhouse-http[otel]`)
with contextlib.suppress(ImportError):
    from clickhouse_http.otel import OtelConfig, instrument_client

__version__ = "0.1.0"

__all__ = [
    # Client
    "Client",
    "ClientConfig",
    "Compression",
    "QueryHook",
    "QueryInfo",
    "quote_identifier",
    # Results
    "QueryStatistics",
    "Result",
    "Row",
    "StreamDecoder",
    "StreamingResult",
    # Connections
    "Connection",
    "ConnectionPool",
    "PoolHealth",
    "PoolStats",
    # Retry
    "Jitter",
    "NonIdempotentRetryWarning",
    "RetryConfig",
    "RetryHandler",
    # Types
    "Codec",
    "TypeNode",
    "TypeRegistry",
    "default_registry",
    "parse",
    # Compression
    "compress",
    "decompress",
    "decompressor_for",
    # Errors
    "ClickHouseError",
    "ClickHouseConnectionError",
    "ConnectionNotEstablished",
    "ConnectionTimeout",
    "SSLError",
    "QueryError",
    "QuerySyntaxError",
    "QueryTimeout",
    "StatementInvalid",
    "UnknownColumn",
    "UnknownDatabase",
    "UnknownTable",
    "TypeCastError",
    "PoolError",
    "PoolExhausted",
    "PoolTimeout",
    "ConfigurationError",
    "ParseError",
]

# Conditionally include optional names only when actually imported
if "OtelConfig" in dir():
    __all__ += ["OtelConfig", "instrument_client"]

logging.getLogger("clickhouse_http").addHandler(logging.NullHandler())
