# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""HTTP body compression helpers.

Request bodies are compressed in one shot with :func:`compress`.  Response
bodies that are consumed incrementally use a streaming decompressor from
:func:`decompressor_for`, which accepts arbitrarily split input and
concatenated members/frames (several independently compressed chunks in a
row decode to their concatenated payloads).
"""

from __future__ import annotations

import gzip
import zlib
from typing import Protocol

import zstandard

from clickhouse_http.errors import ClickHouseError

__all__ = ["Decompressor", "compress", "decompress", "decompressor_for"]

# 16 + MAX_WBITS selects the gzip container.
_GZIP_WBITS = 16 + zlib.MAX_WBITS


class Decompressor(Protocol):
    """Incremental decompressor for a response body."""

    def decompress(self, chunk: bytes) -> bytes:
        """Decompress the next piece of input, returning whatever output is ready."""
        ...

    def flush(self) -> bytes:
        """Return any buffered output at end of input."""
        ...


def compress(body: bytes, encoding: str, *, level: int | None = None) -> bytes:
    """Compress a request body for the given ``Content-Encoding``."""
    if encoding == "gzip":
        return gzip.compress(body, compresslevel=6 if level is None else level)
    if encoding == "zstd":
        return zstandard.ZstdCompressor(level=3 if level is None else level).compress(body)
    raise ClickHouseError(f"Unsupported content encoding {encoding!r}")


def decompress(body: bytes, encoding: str | None) -> bytes:
    """Decompress a complete body (no-op when *encoding* is empty or identity)."""
    decoder = decompressor_for(encoding)
    if decoder is None:
        return body
    return decoder.decompress(body) + decoder.flush()


def decompressor_for(encoding: str | None) -> Decompressor | None:
    """Return a streaming decompressor for a ``Content-Encoding`` value.

    Returns:
        ``None`` when the body is not compressed.

    Raises:
        ClickHouseError: If the encoding is not supported.

    """
    name = (encoding or "").strip().lower()
    if name in ("", "identity"):
        return None
    if name in ("gzip", "x-gzip"):
        return _GzipStream()
    if name == "zstd":
        return _ZstdStream()
    raise ClickHouseError(f"Unsupported content encoding {encoding!r}")


class _GzipStream:
    """Gzip decompressor that restarts on each new member."""

    __slots__ = ("_obj",)

    def __init__(self) -> None:
        self._obj = zlib.decompressobj(_GZIP_WBITS)

    def decompress(self, chunk: bytes) -> bytes:
        out = bytearray()
        data = chunk
        while data:
            try:
                out += self._obj.decompress(data)
            except zlib.error as exc:
                raise ClickHouseError(f"Failed to decompress gzip stream: {exc}") from exc
            if not self._obj.eof:
                break
            data = self._obj.unused_data
            self._obj = zlib.decompressobj(_GZIP_WBITS)
        return bytes(out)

    def flush(self) -> bytes:
        return self._obj.flush()


class _ZstdStream:
    """Zstandard decompressor that restarts on each new frame."""

    __slots__ = ("_dctx", "_obj")

    def __init__(self) -> None:
        self._dctx = zstandard.ZstdDecompressor()
        self._obj = self._dctx.decompressobj()

    def decompress(self, chunk: bytes) -> bytes:
        out = bytearray()
        data = chunk
        while data:
            try:
                out += self._obj.decompress(data)
            except zstandard.ZstdError as exc:
                raise ClickHouseError(f"Failed to decompress zstd stream: {exc}") from exc
            if not self._obj.eof:
                break
            data = self._obj.unused_data
            self._obj = self._dctx.decompressobj()
        return bytes(out)

    def flush(self) -> bytes:
        return b""
