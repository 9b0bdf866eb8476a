# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""ClickHouse type system: parser, codecs and registry."""

from __future__ import annotations

from ._codecs import (
    NULL_LITERAL,
    BooleanCodec,
    Codec,
    DateTimeCodec,
    DecimalCodec,
    EnumCodec,
    FloatCodec,
    IntegerCodec,
    PassthroughCodec,
    StringCodec,
    UUIDCodec,
    quote_string,
)
from ._composite import ArrayCodec, LowCardinalityCodec, MapCodec, NullableCodec, TupleCodec
from ._parser import TypeNode, parse, render
from ._registry import CodecFactory, TypeRegistry, default_registry
from ._scanner import find_top_level, split_top_level, unquote

__all__ = [
    "NULL_LITERAL",
    "ArrayCodec",
    "BooleanCodec",
    "Codec",
    "CodecFactory",
    "DateTimeCodec",
    "DecimalCodec",
    "EnumCodec",
    "FloatCodec",
    "IntegerCodec",
    "LowCardinalityCodec",
    "MapCodec",
    "NullableCodec",
    "PassthroughCodec",
    "StringCodec",
    "TupleCodec",
    "TypeNode",
    "TypeRegistry",
    "UUIDCodec",
    "default_registry",
    "find_top_level",
    "parse",
    "quote_string",
    "render",
    "split_top_level",
    "unquote",
]
