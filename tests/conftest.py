"""Shared test fixtures for clickhouse-http tests."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from clickhouse_http import Client
from clickhouse_http._testing import FakeClickHouse
from clickhouse_http.types import TypeRegistry


@pytest.fixture
def registry() -> TypeRegistry:
    """A fresh registry with the built-in types, isolated from the shared default."""
    return TypeRegistry.with_defaults()


@pytest.fixture
def server() -> FakeClickHouse:
    """An in-process fake ClickHouse server."""
    return FakeClickHouse()


@pytest.fixture
def client(server: FakeClickHouse) -> Iterator[Client]:
    """A client wired to the fake server with retry sleeps disabled."""
    with server.client() as c:
        yield c
