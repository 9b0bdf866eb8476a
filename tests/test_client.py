"""End-to-end client tests against the in-process fake ClickHouse server."""

from __future__ import annotations

import gzip
import logging
import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

import pytest

from clickhouse_http import Client, ClientConfig, QueryInfo, RetryConfig
from clickhouse_http._testing import FakeClickHouse, FakeResponse
from clickhouse_http.client import quote_identifier
from clickhouse_http.errors import (
    ConfigurationError,
    ConnectionNotEstablished,
    QueryError,
    QuerySyntaxError,
    UnknownDatabase,
    UnknownTable,
)
from clickhouse_http.retry import NonIdempotentRetryWarning

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestClientConfig:
    """ClientConfig defaults, derived values and validation."""

    def test_defaults(self) -> None:
        """Defaults target a local server over plain HTTP."""
        config = ClientConfig()
        assert config.base_url == "http://localhost:8123"
        assert not config.use_ssl
        assert config.pool_size == 5
        assert config.compression is None

    @pytest.mark.parametrize("port", [443, 8443])
    def test_ssl_auto(self, port: int) -> None:
        """TLS ports enable HTTPS automatically."""
        assert ClientConfig(host="ch.example.com", port=port).base_url == f"https://ch.example.com:{port}"

    def test_ssl_explicit_off(self) -> None:
        """An explicit ssl=False wins over the port heuristic."""
        assert not ClientConfig(port=8443, ssl=False).use_ssl

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"host": ""},
            {"port": 0},
            {"port": 70000},
            {"database": ""},
            {"pool_size": 0},
            {"read_timeout": 0},
            {"compression": "lz4"},
            {"compression_threshold": -1},
        ],
    )
    def test_invalid(self, kwargs: dict[str, Any]) -> None:
        """Invalid values raise ConfigurationError at construction."""
        with pytest.raises(ConfigurationError):
            ClientConfig(**kwargs)

    def test_client_overrides(self) -> None:
        """Keyword overrides are applied on top of a config."""
        client = Client(ClientConfig(host="a"), database="analytics")
        assert client.config.host == "a"
        assert client.config.database == "analytics"
        assert repr(client) == "<Client http://a:8123 database='analytics'>"


# ---------------------------------------------------------------------------
# execute / command
# ---------------------------------------------------------------------------


class TestExecute:
    """Batch queries."""

    def test_execute_decodes_result(self, server: FakeClickHouse, client: Client) -> None:
        """Rows are decoded through the column types."""
        server.respond_json(
            [("id", "UInt64"), ("amount", "Decimal(10, 2)"), ("day", "Date")],
            [["1", "12.50", "2024-03-01"], ["2", "0.10", "2024-03-02"]],
            statistics={"elapsed": 0.002, "rows_read": 2, "bytes_read": 64},
        )
        result = client.execute("SELECT id, amount, day FROM payments;")
        assert result.column("id") == [1, 2]
        assert result[0]["amount"] == Decimal("12.50")
        assert result[1]["day"] == date(2024, 3, 2)
        assert result.rows_read == 2
        assert server.requests[-1].body == b"SELECT id, amount, day FROM payments FORMAT JSONCompact"

    def test_params(self, server: FakeClickHouse) -> None:
        """Database, settings and query id are sent as URL parameters."""
        with server.client(database="analytics", settings={"max_threads": 4}) as client:
            client.execute("SELECT 1", {"readonly": 1}, query_id="q-123")
        params = server.requests[-1].params
        assert params["database"] == "analytics"
        assert params["max_threads"] == "4"
        assert params["readonly"] == "1"
        assert params["query_id"] == "q-123"

    def test_credentials_headers(self, server: FakeClickHouse) -> None:
        """Credentials travel in X-ClickHouse headers, not the URL."""
        with server.client(username="alice", password="s3cret") as client:
            client.execute("SELECT 1")
        request = server.requests[-1]
        assert request.headers["x-clickhouse-user"] == "alice"
        assert request.headers["x-clickhouse-key"] == "s3cret"
        assert "password" not in request.params

    def test_empty_body_is_empty_result(self, server: FakeClickHouse, client: Client) -> None:
        """A statement with no output yields an empty result."""
        server.enqueue(FakeResponse(body=b""))
        assert client.execute("SELECT 1 WHERE 0").is_empty

    def test_invalid_json(self, server: FakeClickHouse, client: Client) -> None:
        """A non-JSON success body raises QueryError."""
        server.enqueue(FakeResponse(body=b"<html>proxy</html>"))
        with pytest.raises(QueryError, match="Failed to parse JSONCompact response"):
            client.execute("SELECT 1")

    @pytest.mark.parametrize(
        ("code", "status", "error_cls"),
        [(62, 400, QuerySyntaxError), (60, 404, UnknownTable), (81, 404, UnknownDatabase), (999, 400, QueryError)],
    )
    def test_server_errors_mapped(
        self, server: FakeClickHouse, client: Client, code: int, status: int, error_cls: type[QueryError]
    ) -> None:
        """Server error codes map to QueryError subclasses."""
        server.respond_error(code, "something failed", status=status)
        with pytest.raises(error_cls) as exc_info:
            client.execute("SELECT broken")
        error = exc_info.value
        assert type(error) is error_cls
        assert error.code == code
        assert error.http_status == status
        assert error.sql == "SELECT broken"
        assert str(error).startswith("something failed")
        assert str(error).endswith(f"(code {code}) [HTTP {status}]")
        assert "version" not in str(error)

    def test_exception_header_on_200(self, server: FakeClickHouse, client: Client) -> None:
        """An exception header on a 200 response is still an error."""
        server.enqueue(
            FakeResponse(
                status=200,
                body=b"Code: 62. DB::Exception: Syntax error (version 24.3)",
                headers={"X-ClickHouse-Exception-Code": "62"},
            )
        )
        with pytest.raises(QuerySyntaxError):
            client.execute("SELEC 1")

    def test_long_sql_truncated_in_error(self, server: FakeClickHouse, client: Client) -> None:
        """SQL attached to errors is capped at 1000 characters."""
        server.respond_error(62, "Syntax error", status=400)
        sql = "SELECT " + "x" * 2000
        with pytest.raises(QueryError) as exc_info:
            client.execute(sql)
        assert exc_info.value.sql is not None
        assert len(exc_info.value.sql) == 1003
        assert exc_info.value.sql.endswith("...")

    def test_command(self, server: FakeClickHouse, client: Client) -> None:
        """Commands are sent without a FORMAT clause."""
        assert client.command("CREATE TABLE t (x UInt8) ENGINE = Memory") is True
        assert server.requests[-1].body == b"CREATE TABLE t (x UInt8) ENGINE = Memory"

    def test_command_not_retried(self, server: FakeClickHouse, client: Client) -> None:
        """Commands fail on the first transient error."""
        server.respond_error(1002, "overloaded", status=503)
        with pytest.raises(QueryError):
            client.command("OPTIMIZE TABLE t")
        assert len(server.queries) == 1


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestRetry:
    """Transient failures through the full stack."""

    def test_retry_on_503_reuses_query_id(self, server: FakeClickHouse, client: Client) -> None:
        """A 503 is retried with the same query id."""
        server.respond_error(1002, "Too many simultaneous queries", status=503)
        server.respond_json([("n", "UInt8")], [[7]])
        assert client.execute("SELECT 7").column("n") == [7]
        ids = [r.query_id for r in server.requests]
        assert len(ids) == 2
        assert ids[0] == ids[1]

    def test_retry_on_refused_connection(self, server: FakeClickHouse, client: Client) -> None:
        """Refused connections are retried."""
        server.drop_connections(2)
        server.respond_json([("n", "UInt8")], [[1]])
        assert client.execute("SELECT 1").column("n") == [1]

    def test_exhausted(self, server: FakeClickHouse) -> None:
        """After max_attempts the connection error surfaces."""
        server.drop_connections(5)
        with server.client(retry=RetryConfig(max_attempts=2)) as client:
            with pytest.raises(ConnectionNotEstablished):
                client.execute("SELECT 1")
        assert server.requests == []

    def test_syntax_error_not_retried(self, server: FakeClickHouse, client: Client) -> None:
        """Fatal errors are raised after one request."""
        server.respond_error(62, "Syntax error", status=400)
        with pytest.raises(QuerySyntaxError):
            client.execute("SELEC")
        assert len(server.requests) == 1


# ---------------------------------------------------------------------------
# insert
# ---------------------------------------------------------------------------


class TestInsert:
    """Inserts in JSONEachRow."""

    def test_insert_dicts(self, server: FakeClickHouse, client: Client) -> None:
        """Rows are sent as newline-delimited JSON with the INSERT in the URL."""
        assert client.insert("events", [{"id": 1, "name": "a"}, {"id": 2, "name": None}]) is True
        request = server.requests[-1]
        assert request.params["query"] == "INSERT INTO `events` (`id`, `name`) FORMAT JSONEachRow"
        assert request.body == b'{"id": 1, "name": "a"}\n{"id": 2, "name": null}\n'
        assert request.params["insert_deduplication_token"] == request.params["query_id"]
        assert server.inserted["events"] == [{"id": 1, "name": "a"}, {"id": 2, "name": None}]

    def test_insert_sequences_with_columns(self, server: FakeClickHouse, client: Client) -> None:
        """Sequence rows need explicit columns."""
        client.insert("db.t", [(1, "x"), (2, "y")], columns=["a", "b"])
        assert server.requests[-1].params["query"].startswith("INSERT INTO `db`.`t` (`a`, `b`)")
        assert server.inserted["db.t"] == [{"a": 1, "b": "x"}, {"a": 2, "b": "y"}]

    def test_insert_value_encoding(self, server: FakeClickHouse, client: Client) -> None:
        """Dates, decimals and UUIDs are encoded in forms ClickHouse parses."""
        ident = uuid.UUID("12345678-1234-5678-1234-567812345678")
        client.insert(
            "t",
            [
                {
                    "d": date(2024, 1, 2),
                    "ts": datetime(2024, 1, 2, 3, 4, 5),
                    "aware": datetime(1970, 1, 1, 0, 0, 10, tzinfo=UTC),
                    "price": Decimal("1.50"),
                    "id": ident,
                    "tags": ("a", "b"),
                }
            ],
        )
        (row,) = server.inserted["t"]
        assert row == {
            "d": "2024-01-02",
            "ts": "2024-01-02 03:04:05",
            "aware": 10.0,
            "price": "1.50",
            "id": str(ident),
            "tags": ["a", "b"],
        }

    def test_empty_rows_rejected(self, client: Client) -> None:
        """Inserting nothing is an error."""
        with pytest.raises(ValueError, match="rows must not be empty"):
            client.insert("t", [])

    def test_sequence_rows_need_columns(self, client: Client) -> None:
        """Tuples without column names are rejected."""
        with pytest.raises(ValueError, match="columns are required"):
            client.insert("t", [(1, 2)])

    def test_row_length_mismatch(self, client: Client) -> None:
        """Rows must match the column count."""
        with pytest.raises(ValueError, match="Row 1 has 1 values, expected 2"):
            client.insert("t", [(1, 2), (3,)], columns=["a", "b"])

    def test_insert_retry_warns_and_keeps_token(self, server: FakeClickHouse, client: Client) -> None:
        """Retried inserts warn and reuse the deduplication token."""
        server.respond_error(1002, "overloaded", status=503)
        with pytest.warns(NonIdempotentRetryWarning):
            client.insert("t", [{"a": 1}])
        tokens = [r.params["insert_deduplication_token"] for r in server.requests]
        assert len(tokens) == 2
        assert tokens[0] == tokens[1]

    def test_compressed_insert(self, server: FakeClickHouse) -> None:
        """Bodies above the threshold are gzip-compressed."""
        rows = [{"id": i, "payload": "x" * 50} for i in range(100)]
        with server.client(compression="gzip", compression_threshold=1024) as client:
            client.insert("big", rows)
        request = server.requests[-1]
        assert request.headers["content-encoding"] == "gzip"
        assert gzip.decompress(request.raw_body) == request.body
        assert len(server.inserted["big"]) == 100

    def test_small_body_not_compressed(self, server: FakeClickHouse) -> None:
        """Bodies below the threshold are sent as-is."""
        with server.client(compression="zstd") as client:
            client.insert("t", [{"a": 1}])
        assert "content-encoding" not in server.requests[-1].headers


# ---------------------------------------------------------------------------
# Compression of responses
# ---------------------------------------------------------------------------


class TestResponseCompression:
    """Negotiated response compression."""

    @pytest.mark.parametrize("encoding", ["gzip", "zstd"])
    def test_compressed_response(self, server: FakeClickHouse, encoding: str) -> None:
        """Compressed JSONCompact responses are decoded transparently."""
        server.respond_json([("s", "String")], [["x" * 10]] * 50)
        with server.client(compression=encoding) as client:
            result = client.execute("SELECT s")
        assert len(result) == 50
        request = server.requests[-1]
        assert request.params["enable_http_compression"] == "1"
        assert encoding in request.headers["accept-encoding"]


# ---------------------------------------------------------------------------
# Server, pool and hooks
# ---------------------------------------------------------------------------


class TestServerAndPool:
    """ping, server_version, pool reporting and lifecycle."""

    def test_ping(self, client: Client) -> None:
        """ping answers True against a live server."""
        assert client.ping() is True

    def test_ping_unreachable(self, server: FakeClickHouse, client: Client) -> None:
        """ping returns False instead of raising."""
        server.drop_connections(1)
        assert client.ping() is False

    def test_server_version(self, server: FakeClickHouse, client: Client) -> None:
        """server_version reads SELECT version()."""
        assert client.server_version() == server.version

    def test_connections_reused(self, client: Client) -> None:
        """Sequential queries reuse one pooled connection."""
        for _ in range(3):
            client.execute("SELECT 1")
        stats = client.pool_stats()
        assert stats.total_created == 1
        assert stats.total_checkouts == 3
        assert stats.in_use == 0

    def test_health_check_and_cleanup(self, client: Client) -> None:
        """Maintenance calls report on idle connections."""
        client.execute("SELECT 1")
        assert client.health_check().healthy == 1
        assert client.cleanup_idle() == 0

    def test_closed_client(self, client: Client) -> None:
        """A closed client refuses further queries."""
        client.close()
        assert client.ping() is False

    def test_quote_identifier(self) -> None:
        """Identifiers are backquoted part by part with escaping."""
        assert quote_identifier("db.events") == "`db`.`events`"
        assert quote_identifier("we`ird") == "`we\\`ird`"


class _RecordingHook:
    """Records hook invocations."""

    def __init__(self) -> None:
        self.started: list[QueryInfo] = []
        self.ended: list[tuple[object, QueryInfo, BaseException | None]] = []

    def on_query_start(self, info: QueryInfo) -> object:
        self.started.append(info)
        return len(self.started)

    def on_query_end(self, token: object, info: QueryInfo, error: BaseException | None) -> None:
        self.ended.append((token, info, error))


class TestHooks:
    """Query hooks and logging."""

    def test_hook_called_once_per_operation(self, server: FakeClickHouse, client: Client) -> None:
        """Hooks see one start/end pair even when the call is retried."""
        hook = _RecordingHook()
        client.add_hook(hook)
        server.respond_error(1002, "overloaded", status=503)
        client.execute("SELECT 1", query_id="abc")
        assert [i.operation for i in hook.started] == ["execute"]
        token, info, error = hook.ended[0]
        assert token == 1
        assert info.query_id == "abc"
        assert info.database == "default"
        assert error is None

    def test_hook_sees_error(self, server: FakeClickHouse, client: Client) -> None:
        """The final error is passed to on_query_end."""
        hook = _RecordingHook()
        client.add_hook(hook)
        server.respond_error(60, "no table", status=404)
        with pytest.raises(UnknownTable):
            client.execute("SELECT * FROM nope")
        assert isinstance(hook.ended[0][2], UnknownTable)

    def test_failing_hook_does_not_break_query(
        self, server: FakeClickHouse, client: Client, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A hook raising in on_query_end is logged and ignored."""

        class _Broken(_RecordingHook):
            def on_query_end(self, token: object, info: QueryInfo, error: BaseException | None) -> None:
                raise RuntimeError("hook bug")

        client.add_hook(_Broken())
        with caplog.at_level(logging.WARNING, logger="clickhouse_http.client"):
            client.execute("SELECT 1")
        assert any("Query hook" in r.getMessage() for r in caplog.records)

    def test_failing_start_hook_does_not_break_query(
        self, server: FakeClickHouse, client: Client, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A hook raising in on_query_start is logged; the query and other hooks still run."""

        class _BrokenStart(_RecordingHook):
            def on_query_start(self, info: QueryInfo) -> object:
                raise RuntimeError("hook bug")

        broken = _BrokenStart()
        healthy = _RecordingHook()
        client.add_hook(broken)
        client.add_hook(healthy)
        server.respond_json([("n", "UInt8")], [[1]])
        with caplog.at_level(logging.WARNING, logger="clickhouse_http.client"):
            result = client.execute("SELECT 1")
        assert result[0]["n"] == 1
        assert broken.ended == []
        assert [i.operation for i in healthy.started] == ["execute"]
        assert len(healthy.ended) == 1
        assert any("Query hook" in r.getMessage() for r in caplog.records)

    def test_debug_log_extra_fields(self, client: Client, caplog: pytest.LogCaptureFixture) -> None:
        """Each operation logs query_id and duration_ms at DEBUG."""
        with caplog.at_level(logging.DEBUG, logger="clickhouse_http.client"):
            client.execute("SELECT 1", query_id="q-log")
        records = [r for r in caplog.records if getattr(r, "query_id", None) == "q-log"]
        assert records
        assert records[0].operation == "execute"  # type: ignore[attr-defined]
        assert records[0].duration_ms >= 0  # type: ignore[attr-defined]
