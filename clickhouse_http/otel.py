# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""OpenTelemetry instrumentation for the ClickHouse client.

Provides ``OtelConfig`` and ``instrument_client()``, which attach a
:class:`~clickhouse_http.client.QueryHook` opening a CLIENT span per
``execute``/``insert``/``command`` call and recording a request counter and
a duration histogram.

Requires ``pip install clickhouse-http[otel]`` (opentelemetry-api + opentelemetry-sdk).

Usage::

    from clickhouse_http import Client
    from clickhouse_http.otel import instrument_client

    client = instrument_client(Client(host="localhost"))
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from contextvars import Token
from dataclasses import dataclass, field

from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.metrics import Counter, Histogram, MeterProvider, get_meter_provider
from opentelemetry.trace import SpanKind, StatusCode, Tracer, TracerProvider, get_tracer_provider

from clickhouse_http.client import Client, QueryInfo
from clickhouse_http.errors import QueryError

__all__ = ["OtelConfig", "instrument_client"]

_logger = logging.getLogger("clickhouse_http.otel")

_INSTRUMENTATION_NAME = "clickhouse_http"
_INSTRUMENTATION_VERSION = "0.1.0"


@dataclass(frozen=True)
class OtelConfig:
    """Configuration for OpenTelemetry instrumentation.

    Attributes:
        tracer_provider: Custom ``TracerProvider``; uses the global provider when ``None``.
        meter_provider: Custom ``MeterProvider``; uses the global provider when ``None``.
        enable_tracing: Enable span creation (default ``True``).
        enable_metrics: Enable counter/histogram recording (default ``True``).
        record_exceptions: Record exceptions on error spans (default ``True``).
        record_statement: Attach the SQL text as ``db.statement`` (default ``True``).
        custom_attributes: Extra span/metric attributes merged into every query.

    """

    tracer_provider: TracerProvider | None = None
    meter_provider: MeterProvider | None = None
    enable_tracing: bool = True
    enable_metrics: bool = True
    record_exceptions: bool = True
    record_statement: bool = True
    custom_attributes: Mapping[str, str] = field(default_factory=dict)


def instrument_client(client: Client, config: OtelConfig | None = None) -> Client:
    """Attach OpenTelemetry tracing and metrics to a client.

    Call before sharing the client between threads.

    Args:
        client: The client to instrument.
        config: Optional configuration; uses global providers and defaults when ``None``.

    Returns:
        The same *client* instance (for chaining).

    """
    client.add_hook(_OtelQueryHook(config or OtelConfig(), client.config.host, client.config.port))
    return client


@dataclass
class _OtelHookToken:
    """Span and timing carried from on_query_start to on_query_end."""

    span: trace.Span | None
    otel_token: Token[Context] | None
    start_time: float


class _OtelQueryHook:
    """Implements ``QueryHook`` with OpenTelemetry spans and metrics."""

    __slots__ = ("_config", "_counter", "_histogram", "_host", "_port", "_tracer")

    def __init__(self, config: OtelConfig, host: str, port: int) -> None:
        self._config = config
        self._host = host
        self._port = port

        tp = config.tracer_provider or get_tracer_provider()
        self._tracer: Tracer = tp.get_tracer(_INSTRUMENTATION_NAME, _INSTRUMENTATION_VERSION)

        mp: MeterProvider = config.meter_provider or get_meter_provider()
        meter = mp.get_meter(_INSTRUMENTATION_NAME, _INSTRUMENTATION_VERSION)
        self._counter: Counter = meter.create_counter(
            "db.client.operations",
            unit="{operation}",
            description="Number of ClickHouse operations issued",
        )
        self._histogram: Histogram = meter.create_histogram(
            "db.client.operation.duration",
            unit="s",
            description="Duration of ClickHouse operations, including retries",
        )

    def on_query_start(self, info: QueryInfo) -> _OtelHookToken:
        """Start a span and record the start time."""
        span: trace.Span | None = None
        otel_token: Token[Context] | None = None
        if self._config.enable_tracing:
            attrs: dict[str, str | int] = {
                "db.system": "clickhouse",
                "db.name": info.database,
                "db.operation": info.operation,
                "db.clickhouse.query_id": info.query_id,
                "server.address": self._host,
                "server.port": self._port,
            }
            if self._config.record_statement:
                attrs["db.statement"] = info.sql
            attrs.update(self._config.custom_attributes)
            span = self._tracer.start_span(f"clickhouse/{info.operation}", kind=SpanKind.CLIENT, attributes=attrs)
            otel_token = otel_context.attach(trace.set_span_in_context(span))
        return _OtelHookToken(span=span, otel_token=otel_token, start_time=time.monotonic())

    def on_query_end(self, token: object, info: QueryInfo, error: BaseException | None) -> None:
        """End the span and record metrics."""
        if not isinstance(token, _OtelHookToken):
            return
        duration = time.monotonic() - token.start_time

        if token.span is not None:
            if error is not None:
                token.span.set_status(StatusCode.ERROR, str(error))
                token.span.set_attribute("error.type", type(error).__name__)
                if isinstance(error, QueryError) and error.code is not None:
                    token.span.set_attribute("db.clickhouse.error_code", error.code)
                if self._config.record_exceptions:
                    token.span.record_exception(error)
            else:
                token.span.set_status(StatusCode.OK)
            token.span.end()

        if token.otel_token is not None:
            otel_context.detach(token.otel_token)

        if self._config.enable_metrics:
            attrs: dict[str, str] = {
                "db.system": "clickhouse",
                "db.operation": info.operation,
                "status": "error" if error is not None else "ok",
                **self._config.custom_attributes,
            }
            self._counter.add(1, attrs)
            self._histogram.record(duration, attrs)
