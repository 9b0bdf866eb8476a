# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Type registry: maps type names to codec factories.

A factory receives the parsed :class:`TypeNode` and the codecs already
built for its non-literal arguments (children are built first), and
returns a :class:`Codec`.  ``lookup`` caches by the exact type string, so
repeated result decoding reuses the same codec objects.
"""

from __future__ import annotations

import functools
import logging
import threading
from collections.abc import Callable, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from clickhouse_http.errors import ConfigurationError

from ._codecs import (
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
)
from ._composite import ArrayCodec, LowCardinalityCodec, MapCodec, NullableCodec, TupleCodec
from ._parser import TypeNode, parse, render

__all__ = ["CodecFactory", "TypeRegistry", "default_registry"]

_logger = logging.getLogger("clickhouse_http.types")

CodecFactory = Callable[[TypeNode, Sequence[Codec]], Codec]
"""Builds a codec from a parsed node and its already-built child codecs."""

_MAX_DECIMAL_PRECISION = 76
_DECIMAL_PRECISIONS = {"Decimal32": 9, "Decimal64": 18, "Decimal128": 38, "Decimal256": 76}
_ENUM_RANGES = {"Enum8": (-128, 127), "Enum16": (-32768, 32767), "Enum": (-32768, 32767)}


class TypeRegistry:
    """Registry of codec factories keyed by type name.

    Registration is expected at setup time; lookups are thread-safe and
    cached per exact type string.
    """

    __slots__ = ("_cache", "_factories", "_lock")

    def __init__(self) -> None:
        """Create an empty registry (see :meth:`with_defaults`)."""
        self._factories: dict[str, CodecFactory] = {}
        self._cache: dict[str, Codec] = {}
        self._lock = threading.Lock()

    @classmethod
    def with_defaults(cls) -> TypeRegistry:
        """Return a new registry with every built-in ClickHouse type registered."""
        registry = cls()
        registry.register_defaults()
        return registry

    def register(self, name: str, factory: CodecFactory) -> None:
        """Register (or replace) the factory for *name* and clear the cache."""
        with self._lock:
            self._factories[name] = factory
            self._cache.clear()

    def registered(self, name: str) -> bool:
        """Whether a factory is registered for *name*."""
        return name in self._factories

    def lookup(self, type_string: str) -> Codec:
        """Return the codec for *type_string*, building and caching it on first use.

        Args:
            type_string: A ClickHouse type declaration, e.g. ``Array(Nullable(String))``.

        Returns:
            The codec.  Unregistered type names yield a :class:`PassthroughCodec`.

        Raises:
            ParseError: If *type_string* is malformed.
            ConfigurationError: If the type parameters are invalid.

        """
        codec = self._cache.get(type_string)
        if codec is not None:
            return codec
        codec = self.build(parse(type_string))
        with self._lock:
            return self._cache.setdefault(type_string, codec)

    def build(self, node: TypeNode) -> Codec:
        """Build a codec tree for a parsed node, children first."""
        children = [self.build(arg) for arg in node.args if not arg.is_literal]
        factory = self._factories.get(node.name)
        if factory is None:
            _logger.debug("No codec registered for %s, using passthrough", node.name)
            return PassthroughCodec(render(_unlabelled(node)))
        return factory(node, children)

    def clear_cache(self) -> None:
        """Drop every cached codec."""
        with self._lock:
            self._cache.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    # -- defaults ---------------------------------------------------------------

    def register_defaults(self) -> None:
        """Register the built-in ClickHouse types."""
        for bits in (8, 16, 32, 64, 128, 256):
            self.register(f"Int{bits}", functools.partial(_integer, bits=bits, signed=True))
            self.register(f"UInt{bits}", functools.partial(_integer, bits=bits, signed=False))
        self.register("Float32", functools.partial(_float, bits=32))
        self.register("Float64", functools.partial(_float, bits=64))
        for name in ("Decimal", *_DECIMAL_PRECISIONS):
            self.register(name, _decimal)
        self.register("String", _string)
        self.register("FixedString", _string)
        for name in ("Date", "Date32", "DateTime", "DateTime64"):
            self.register(name, _datetime)
        self.register("UUID", _simple(UUIDCodec))
        self.register("Bool", _simple(BooleanCodec))
        for name in ("Enum", "Enum8", "Enum16"):
            self.register(name, _enum)
        self.register("Array", _array)
        self.register("Map", _map)
        self.register("Tuple", _tuple)
        self.register("Nullable", _nullable)
        self.register("LowCardinality", _low_cardinality)


@functools.cache
def default_registry() -> TypeRegistry:
    """Return a shared registry with the built-in types.

    Convenience only: clients, results and streams all accept an explicit
    registry.
    """
    return TypeRegistry.with_defaults()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def _unlabelled(node: TypeNode) -> TypeNode:
    return TypeNode(node.name, node.args, node.quoted, None, node.value) if node.label else node


def _type_name(node: TypeNode) -> str:
    return render(_unlabelled(node))


def _literal_args(node: TypeNode) -> list[TypeNode]:
    return [arg for arg in node.args if arg.is_literal]


def _int_arg(node: TypeNode, arg: TypeNode) -> int:
    if arg.quoted:
        raise ConfigurationError(f"{_type_name(node)}: expected an integer parameter, got {render(arg)}")
    return int(arg.name)


def _expect_children(node: TypeNode, children: Sequence[Codec], count: int) -> None:
    if len(children) != count:
        raise ConfigurationError(f"{_type_name(node)} takes {count} type argument(s), got {len(children)}")


def _simple(codec_cls: type[Codec]) -> CodecFactory:
    def factory(node: TypeNode, children: Sequence[Codec]) -> Codec:
        return codec_cls(_type_name(node))

    return factory


def _integer(node: TypeNode, children: Sequence[Codec], *, bits: int, signed: bool) -> Codec:
    return IntegerCodec(_type_name(node), bits=bits, signed=signed)


def _float(node: TypeNode, children: Sequence[Codec], *, bits: int) -> Codec:
    return FloatCodec(_type_name(node), bits=bits)


def _decimal(node: TypeNode, children: Sequence[Codec]) -> Codec:
    params = [_int_arg(node, arg) for arg in _literal_args(node)]
    if node.name in _DECIMAL_PRECISIONS:
        if len(params) > 1:
            raise ConfigurationError(f"{_type_name(node)} takes only a scale parameter")
        precision = _DECIMAL_PRECISIONS[node.name]
        scale = params[0] if params else 0
    elif len(params) > 2:
        raise ConfigurationError(f"{_type_name(node)} takes at most precision and scale")
    else:
        precision = params[0] if params else 10
        scale = params[1] if len(params) > 1 else 0
    if not 1 <= precision <= _MAX_DECIMAL_PRECISION:
        raise ConfigurationError(f"Decimal precision must be between 1 and {_MAX_DECIMAL_PRECISION}, got {precision}")
    if not 0 <= scale <= precision:
        raise ConfigurationError(f"Decimal scale must be between 0 and {precision}, got {scale}")
    return DecimalCodec(_type_name(node), precision=precision, scale=scale)


def _string(node: TypeNode, children: Sequence[Codec]) -> Codec:
    if node.name != "FixedString":
        return StringCodec(_type_name(node))
    params = _literal_args(node)
    if len(params) != 1:
        raise ConfigurationError(f"FixedString requires exactly one length parameter, got {_type_name(node)}")
    length = _int_arg(node, params[0])
    if length < 1:
        raise ConfigurationError(f"FixedString length must be positive, got {length}")
    return StringCodec(_type_name(node), length=length)


def _datetime(node: TypeNode, children: Sequence[Codec]) -> Codec:
    if node.name in ("Date", "Date32"):
        return DateTimeCodec(_type_name(node), date_only=True)
    precision = 0
    timezone: str | None = None
    for arg in _literal_args(node):
        if arg.quoted:
            timezone = arg.name
        else:
            precision = int(arg.name)
    if node.name == "DateTime64" and not 0 <= precision <= 9:
        raise ConfigurationError(f"DateTime64 precision must be between 0 and 9, got {precision}")
    if timezone is not None:
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(f"Unknown time zone {timezone!r} in {_type_name(node)}") from exc
    return DateTimeCodec(_type_name(node), precision=precision, timezone=timezone)


def _enum(node: TypeNode, children: Sequence[Codec]) -> Codec:
    """Build an enum, auto-numbering entries that have no explicit value.

    The counter starts at 1; an explicit value ``N`` moves it to
    ``max(counter, N + 1)``.
    """
    low, high = _ENUM_RANGES[node.name]
    entries: list[tuple[str, int]] = []
    counter = 1
    for arg in node.args:
        if not arg.quoted:
            raise ConfigurationError(f"{_type_name(node)}: enum labels must be quoted, got {render(arg)}")
        if arg.value is None:
            value = counter
            counter += 1
        else:
            value = arg.value
            counter = max(counter, value + 1)
        if not low <= value <= high:
            raise ConfigurationError(f"{_type_name(node)}: value {value} for {arg.name!r} out of range [{low}, {high}]")
        entries.append((arg.name, value))
    return EnumCodec(_type_name(node), entries=tuple(entries))


def _array(node: TypeNode, children: Sequence[Codec]) -> Codec:
    _expect_children(node, children, 1)
    return ArrayCodec(_type_name(node), element=children[0])


def _map(node: TypeNode, children: Sequence[Codec]) -> Codec:
    _expect_children(node, children, 2)
    return MapCodec(_type_name(node), key=children[0], value=children[1])


def _tuple(node: TypeNode, children: Sequence[Codec]) -> Codec:
    names = tuple(arg.label for arg in node.args if not arg.is_literal)
    return TupleCodec(_type_name(node), elements=tuple(children), names=names if any(names) else ())


def _nullable(node: TypeNode, children: Sequence[Codec]) -> Codec:
    _expect_children(node, children, 1)
    return NullableCodec(_type_name(node), inner=children[0])


def _low_cardinality(node: TypeNode, children: Sequence[Codec]) -> Codec:
    _expect_children(node, children, 1)
    return LowCardinalityCodec(_type_name(node), inner=children[0])
