# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Client configuration.

:class:`ClientConfig` is a frozen dataclass validated on construction; an
invalid value raises :class:`~clickhouse_http.errors.ConfigurationError`
immediately rather than at first use.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from clickhouse_http.errors import ConfigurationError
from clickhouse_http.retry import RetryConfig

__all__ = ["ClientConfig", "Compression"]

Compression = Literal["gzip", "zstd"]

_SSL_PORTS = frozenset({443, 8443})
_COMPRESSIONS: frozenset[str] = frozenset({"gzip", "zstd"})


@dataclass(frozen=True)
class ClientConfig:
    """Connection, pool, compression and retry settings for a :class:`Client`.

    Attributes:
        host: Server host name.
        port: HTTP(S) port.
        database: Default database sent with every request.
        username: User name; sent as ``X-ClickHouse-User`` when set.
        password: Password; sent as ``X-ClickHouse-Key`` when set.
        ssl: Use HTTPS.  ``None`` enables it automatically for ports 443/8443.
        ssl_verify: Verify the server certificate.
        ssl_ca_path: Custom CA bundle for certificate verification.
        connect_timeout: Seconds to wait for a TCP connection.
        read_timeout: Seconds to wait for response data.
        write_timeout: Seconds to wait while sending the request body.
        pool_size: Maximum number of pooled connections.
        pool_timeout: Seconds ``checkout`` waits for a free connection.
        pool_max_idle: Seconds after which an idle pooled connection is stale.
        settings: ClickHouse settings sent with every query.
        compression: ``"gzip"``, ``"zstd"`` or ``None`` to disable.
        compression_threshold: Minimum request body size, in bytes, that is compressed.
        retry: Retry behaviour for transient failures.

    """

    host: str = "localhost"
    port: int = 8123
    database: str = "default"
    username: str | None = None
    password: str | None = None
    ssl: bool | None = None
    ssl_verify: bool = True
    ssl_ca_path: str | None = None
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    write_timeout: float = 60.0
    pool_size: int = 5
    pool_timeout: float = 5.0
    pool_max_idle: float = 300.0
    settings: Mapping[str, Any] = field(default_factory=dict)
    compression: Compression | None = None
    compression_threshold: int = 1024
    retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.host:
            raise ConfigurationError("host is required")
        if not 1 <= self.port <= 65535:
            raise ConfigurationError(f"port must be between 1 and 65535, got {self.port}")
        if not self.database:
            raise ConfigurationError("database is required")
        for name in ("connect_timeout", "read_timeout", "write_timeout", "pool_timeout", "pool_max_idle"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.pool_size < 1:
            raise ConfigurationError(f"pool_size must be >= 1, got {self.pool_size}")
        if self.compression is not None and self.compression not in _COMPRESSIONS:
            raise ConfigurationError(f"compression must be one of {sorted(_COMPRESSIONS)} or None, got {self.compression!r}")
        if self.compression_threshold < 0:
            raise ConfigurationError(f"compression_threshold must be >= 0, got {self.compression_threshold}")

    @property
    def use_ssl(self) -> bool:
        """Whether HTTPS is used, resolving the automatic default from the port."""
        if self.ssl is None:
            return self.port in _SSL_PORTS
        return self.ssl

    @property
    def base_url(self) -> str:
        """Scheme, host and port, e.g. ``http://localhost:8123``."""
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.host}:{self.port}"

    @property
    def compression_enabled(self) -> bool:
        """Whether response compression is negotiated."""
        return self.compression is not None

    def replace(self, **changes: Any) -> ClientConfig:
        """Return a copy with *changes* applied (and re-validated)."""
        return dataclasses.replace(self, **changes)
