# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Conversion of query results to Apache Arrow.

Maps each column codec to the closest Arrow type so a :class:`Result`
converts to a ``pyarrow.Table`` without per-value type inference.  Types
Arrow cannot hold natively (128/256-bit integers, UUIDs, enums) become
strings; unknown types are left to Arrow's inference.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pyarrow as pa

from clickhouse_http.types import (
    ArrayCodec,
    BooleanCodec,
    Codec,
    DateTimeCodec,
    DecimalCodec,
    EnumCodec,
    FloatCodec,
    IntegerCodec,
    LowCardinalityCodec,
    MapCodec,
    NullableCodec,
    StringCodec,
    TupleCodec,
    UUIDCodec,
)

if TYPE_CHECKING:
    from clickhouse_http.result import Result

__all__ = ["arrow_type", "result_to_table", "to_arrow_value"]

_MAX_DECIMAL128_PRECISION = 38


def _unwrap(codec: Codec) -> Codec:
    while isinstance(codec, NullableCodec | LowCardinalityCodec):
        codec = codec.inner
    return codec


def _tuple_names(codec: TupleCodec) -> list[str]:
    if codec.names:
        return [name or str(i + 1) for i, name in enumerate(codec.names)]
    return [str(i + 1) for i in range(len(codec.elements))]


def arrow_type(codec: Codec) -> pa.DataType | None:
    """Return the Arrow type for *codec*, or ``None`` to let Arrow infer it."""
    codec = _unwrap(codec)
    if isinstance(codec, BooleanCodec):
        return pa.bool_()
    if isinstance(codec, IntegerCodec):
        if codec.bits > 64:
            return pa.string()
        return getattr(pa, f"{'int' if codec.signed else 'uint'}{codec.bits}")()
    if isinstance(codec, FloatCodec):
        return pa.float32() if codec.bits == 32 else pa.float64()
    if isinstance(codec, DecimalCodec):
        if codec.precision <= _MAX_DECIMAL128_PRECISION:
            return pa.decimal128(codec.precision, codec.scale)
        return pa.decimal256(codec.precision, codec.scale)
    if isinstance(codec, StringCodec | UUIDCodec | EnumCodec):
        return pa.string()
    if isinstance(codec, DateTimeCodec):
        if codec.date_only:
            return pa.date32()
        return pa.timestamp("us", tz=codec.timezone)
    if isinstance(codec, ArrayCodec):
        element = arrow_type(codec.element)
        return pa.list_(element) if element is not None else None
    if isinstance(codec, MapCodec):
        key, value = arrow_type(codec.key), arrow_type(codec.value)
        return pa.map_(key, value) if key is not None and value is not None else None
    if isinstance(codec, TupleCodec):
        fields = [arrow_type(child) for child in codec.elements]
        if any(f is None for f in fields):
            return None
        return pa.struct([pa.field(name, f) for name, f in zip(_tuple_names(codec), fields, strict=True)])
    return None


def to_arrow_value(codec: Codec, value: Any) -> Any:
    """Convert one deserialized value into what ``pyarrow.array`` expects for ``arrow_type(codec)``."""
    if value is None:
        return None
    codec = _unwrap(codec)
    if isinstance(codec, UUIDCodec | EnumCodec) or (isinstance(codec, IntegerCodec) and codec.bits > 64):
        return str(value)
    if isinstance(codec, ArrayCodec):
        return [to_arrow_value(codec.element, item) for item in value]
    if isinstance(codec, MapCodec):
        return [(to_arrow_value(codec.key, k), to_arrow_value(codec.value, v)) for k, v in value.items()]
    if isinstance(codec, TupleCodec):
        return {
            name: to_arrow_value(child, item)
            for name, child, item in zip(_tuple_names(codec), codec.elements, value, strict=True)
        }
    return value


def result_to_table(result: Result) -> pa.Table:
    """Convert a :class:`~clickhouse_http.result.Result` to a ``pyarrow.Table``."""
    codecs = result.codecs
    arrays: list[pa.Array] = []
    for index, name in enumerate(result.columns):
        values = result.column(name)
        if codecs is None:
            arrays.append(pa.array(values))
            continue
        codec = codecs[index]
        arrays.append(pa.array([to_arrow_value(codec, v) for v in values], type=arrow_type(codec)))
    return pa.Table.from_arrays(arrays, names=list(result.columns))
