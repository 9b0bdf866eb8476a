# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Batch query results.

A :class:`Result` is built from the ``JSONCompact`` payload returned by the
server (``meta``, row-major ``data`` and ``statistics``).  Every value is
deserialized eagerly through the codec for its column type, and the result
is immutable and repeatedly iterable.
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, overload

from clickhouse_http.types import Codec, TypeRegistry, default_registry

if TYPE_CHECKING:
    import pyarrow as pa

__all__ = ["QueryStatistics", "Result", "Row"]

Row = Mapping[str, Any]
"""One result row: a read-only mapping of column name to value."""


@dataclass(frozen=True)
class QueryStatistics:
    """Execution statistics reported by the server.

    Attributes:
        elapsed: Server-side execution time in seconds.
        rows_read: Rows scanned.
        bytes_read: Bytes scanned.

    """

    elapsed: float = 0.0
    rows_read: int = 0
    bytes_read: int = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> QueryStatistics:
        """Build from the ``statistics`` object of a JSON response."""
        if not data:
            return cls()
        return cls(
            elapsed=float(data.get("elapsed", 0.0)),
            rows_read=int(data.get("rows_read", 0)),
            bytes_read=int(data.get("bytes_read", 0)),
        )


class Result(Sequence[Row]):
    """Immutable, indexable collection of result rows."""

    __slots__ = ("_codecs", "_columns", "_rows", "_statistics", "_types")

    def __init__(
        self,
        columns: Sequence[str],
        types: Sequence[str],
        data: Sequence[Sequence[Any]],
        *,
        statistics: QueryStatistics | None = None,
        registry: TypeRegistry | None = None,
        deserialize: bool = True,
    ) -> None:
        """Build a result from column metadata and row-major raw values.

        Args:
            columns: Column names, in order.
            types: ClickHouse type string for each column.
            data: Row-major wire values.
            statistics: Server-reported execution statistics.
            registry: Type registry for codec lookup; the default registry
                when ``None``.
            deserialize: Convert wire values through the column codecs.
                When ``False`` raw JSON values are kept.

        Raises:
            ValueError: If the column/type counts differ or a row has the
                wrong number of values.

        """
        if len(columns) != len(types):
            raise ValueError(f"Got {len(columns)} column names but {len(types)} column types")
        self._columns = tuple(columns)
        self._types = tuple(types)
        self._statistics = statistics or QueryStatistics()
        codecs: tuple[Codec, ...] | None = None
        if deserialize:
            reg = registry if registry is not None else default_registry()
            codecs = tuple(reg.lookup(t) for t in self._types)
        self._codecs = codecs
        rows: list[Row] = []
        for index, raw in enumerate(data):
            if len(raw) != len(self._columns):
                raise ValueError(f"Row {index} has {len(raw)} values, expected {len(self._columns)}")
            if codecs is not None:
                values: Sequence[Any] = [codec.deserialize(value) for codec, value in zip(codecs, raw, strict=True)]
            else:
                values = raw
            rows.append(MappingProxyType(dict(zip(self._columns, values, strict=True))))
        self._rows = tuple(rows)

    # -- constructors -----------------------------------------------------------

    @classmethod
    def empty(cls) -> Result:
        """A result with no columns and no rows."""
        return cls((), (), ())

    @classmethod
    def from_json_compact(
        cls,
        payload: Mapping[str, Any] | str | bytes,
        *,
        registry: TypeRegistry | None = None,
        deserialize: bool = True,
    ) -> Result:
        """Build from a ``JSONCompact`` response (rows as arrays)."""
        doc = _load(payload)
        meta = doc.get("meta") or []
        return cls(
            [m["name"] for m in meta],
            [m["type"] for m in meta],
            doc.get("data") or [],
            statistics=QueryStatistics.from_mapping(doc.get("statistics")),
            registry=registry,
            deserialize=deserialize,
        )

    @classmethod
    def from_json(
        cls,
        payload: Mapping[str, Any] | str | bytes,
        *,
        registry: TypeRegistry | None = None,
        deserialize: bool = True,
    ) -> Result:
        """Build from a ``JSON`` response (rows as objects keyed by column)."""
        doc = _load(payload)
        meta = doc.get("meta") or []
        names = [m["name"] for m in meta]
        return cls(
            names,
            [m["type"] for m in meta],
            [[row.get(name) for name in names] for row in doc.get("data") or []],
            statistics=QueryStatistics.from_mapping(doc.get("statistics")),
            registry=registry,
            deserialize=deserialize,
        )

    # -- metadata ---------------------------------------------------------------

    @property
    def columns(self) -> tuple[str, ...]:
        """Column names in declaration order."""
        return self._columns

    @property
    def types(self) -> tuple[str, ...]:
        """ClickHouse type string for each column."""
        return self._types

    @property
    def column_types(self) -> dict[str, str]:
        """Mapping of column name to ClickHouse type string."""
        return dict(zip(self._columns, self._types, strict=True))

    @property
    def codecs(self) -> tuple[Codec, ...] | None:
        """Codec per column, or ``None`` when built with ``deserialize=False``."""
        return self._codecs

    @property
    def statistics(self) -> QueryStatistics:
        """Server-reported execution statistics."""
        return self._statistics

    @property
    def elapsed(self) -> float:
        """Server-side execution time in seconds."""
        return self._statistics.elapsed

    @property
    def rows_read(self) -> int:
        """Rows scanned by the server."""
        return self._statistics.rows_read

    @property
    def bytes_read(self) -> int:
        """Bytes scanned by the server."""
        return self._statistics.bytes_read

    # -- rows -------------------------------------------------------------------

    @property
    def rows(self) -> tuple[Row, ...]:
        """All rows."""
        return self._rows

    @property
    def is_empty(self) -> bool:
        """Whether the result has no rows."""
        return not self._rows

    def first(self) -> Row | None:
        """The first row, or ``None`` if empty."""
        return self._rows[0] if self._rows else None

    def last(self) -> Row | None:
        """The last row, or ``None`` if empty."""
        return self._rows[-1] if self._rows else None

    def column(self, name: str) -> list[Any]:
        """All values of one column, in row order.

        Raises:
            ValueError: If *name* is not a column of this result.

        """
        if name not in self._columns:
            raise ValueError(f"Unknown column {name!r}; available columns: {list(self._columns)}")
        return [row[name] for row in self._rows]

    def to_arrow(self) -> pa.Table:
        """Convert to a ``pyarrow.Table`` using the column types."""
        from clickhouse_http.arrow import result_to_table

        return result_to_table(self)

    def __len__(self) -> int:
        return len(self._rows)

    @overload
    def __getitem__(self, index: int) -> Row: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[Row, ...]: ...

    def __getitem__(self, index: int | slice) -> Row | tuple[Row, ...]:
        return self._rows[index]

    def __iter__(self) -> Iterator[Row]:
        return iter(self._rows)

    def __repr__(self) -> str:
        return f"<Result columns={list(self._columns)} rows={len(self._rows)}>"


def _load(payload: Mapping[str, Any] | str | bytes) -> Mapping[str, Any]:
    if isinstance(payload, str | bytes):
        loaded: Mapping[str, Any] = json.loads(payload)
        return loaded
    return payload
