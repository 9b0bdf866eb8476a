# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Composite codecs: Array, Map, Tuple, Nullable and LowCardinality.

Composite codecs own child codecs built bottom-up by the registry.  Wire
values usually arrive as JSON arrays/objects, but the textual form
(``[1, 2]``, ``{'a': 1}``, ``(1, 'x')``) is accepted as well and split with
the depth- and quote-aware scanner.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ._codecs import NULL_LITERAL, Codec
from ._scanner import find_top_level, is_quoted, split_top_level, strip_brackets, unquote

__all__ = [
    "ArrayCodec",
    "LowCardinalityCodec",
    "MapCodec",
    "NullableCodec",
    "TupleCodec",
]

# Sentinel ClickHouse writes for NULL in text formats.
NULL_SENTINEL = "\\N"


def _element(token: str) -> Any:
    """Convert one scanned textual element into a wire value for a child codec."""
    if is_quoted(token):
        return unquote(token)
    if token == NULL_LITERAL or token == NULL_SENTINEL:
        return None
    return token


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence | set | frozenset) and not isinstance(value, str | bytes | bytearray)


@dataclass(frozen=True)
class ArrayCodec(Codec):
    """``Array(T)``; host values are lists."""

    element: Codec

    def _cast(self, value: Any) -> list[Any]:
        if not _is_sequence(value):
            raise self._fail(value, "expected a sequence")
        return [self.element.cast(item) for item in value]

    def _deserialize(self, value: Any) -> list[Any]:
        if isinstance(value, str):
            inner = strip_brackets(value, "[", "]")
            if inner is None:
                raise self._fail(value, "expected '[...]'")
            return [self.element.deserialize(_element(part)) for part in split_top_level(inner)]
        if not _is_sequence(value):
            raise self._fail(value, "expected a sequence")
        return [self.element.deserialize(item) for item in value]

    def _serialize(self, value: list[Any]) -> str:
        return "[" + ", ".join(self.element.serialize(item) for item in value) + "]"


@dataclass(frozen=True)
class MapCodec(Codec):
    """``Map(K, V)``; host values are dicts."""

    key: Codec
    value: Codec

    def _cast(self, value: Any) -> dict[Any, Any]:
        if not isinstance(value, Mapping):
            raise self._fail(value, "expected a mapping")
        return {self.key.cast(k): self.value.cast(v) for k, v in value.items()}

    def _deserialize(self, value: Any) -> dict[Any, Any]:
        if isinstance(value, str):
            inner = strip_brackets(value, "{", "}")
            if inner is None:
                raise self._fail(value, "expected '{...}'")
            result: dict[Any, Any] = {}
            for part in split_top_level(inner):
                colon = find_top_level(part, ":")
                if colon < 0:
                    raise self._fail(value, f"map entry {part!r} has no ':'")
                key = self.key.deserialize(_element(part[:colon].strip()))
                result[key] = self.value.deserialize(_element(part[colon + 1 :].strip()))
            return result
        if not isinstance(value, Mapping):
            raise self._fail(value, "expected a mapping")
        return {self.key.deserialize(k): self.value.deserialize(v) for k, v in value.items()}

    def _serialize(self, value: dict[Any, Any]) -> str:
        entries = (f"{self.key.serialize(k)}: {self.value.serialize(v)}" for k, v in value.items())
        return "{" + ", ".join(entries) + "}"


@dataclass(frozen=True)
class TupleCodec(Codec):
    """``Tuple(T1, T2, ...)``; host values are tuples.

    Named tuples (``Tuple(id UInt64, name String)``) also accept mappings
    keyed by element name, and deserialize JSON objects in element order.
    """

    elements: tuple[Codec, ...]
    names: tuple[str | None, ...] = ()

    def _cast(self, value: Any) -> tuple[Any, ...]:
        if isinstance(value, Mapping) and self.names and all(self.names):
            try:
                value = [value[name] for name in self.names]
            except KeyError as exc:
                raise self._fail(value, f"missing element {exc.args[0]!r}") from None
        if not _is_sequence(value) or isinstance(value, set | frozenset):
            raise self._fail(value, "expected a sequence")
        if len(value) != len(self.elements):
            raise self._fail(value, f"expected {len(self.elements)} elements, got {len(value)}")
        return tuple(codec.cast(item) for codec, item in zip(self.elements, value, strict=True))

    def _deserialize(self, value: Any) -> tuple[Any, ...]:
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("tuple("):
                text = text[len("tuple") :]
            inner = strip_brackets(text, "(", ")")
            if inner is None:
                raise self._fail(value, "expected '(...)'")
            items: list[Any] = [_element(part) for part in split_top_level(inner)]
        elif isinstance(value, Mapping):
            items = [value[n] for n in self.names] if self.names and all(self.names) else list(value.values())
        else:
            items = list(value)
        if len(items) != len(self.elements):
            raise self._fail(value, f"expected {len(self.elements)} elements, got {len(items)}")
        return tuple(codec.deserialize(item) for codec, item in zip(self.elements, items, strict=True))

    def _serialize(self, value: tuple[Any, ...]) -> str:
        body = ", ".join(codec.serialize(item) for codec, item in zip(self.elements, value, strict=True))
        # "(x)" is just a parenthesised expression in SQL
        return f"tuple({body})" if len(value) == 1 else f"({body})"


@dataclass(frozen=True)
class NullableCodec(Codec):
    """``Nullable(T)``; maps the ``\\N`` sentinel to ``None``."""

    inner: Codec

    @property
    def nullable(self) -> bool:
        """Always ``True``."""
        return True

    def _cast(self, value: Any) -> Any:
        return self.inner.cast(value)

    def _deserialize(self, value: Any) -> Any:
        if value == NULL_SENTINEL:
            return None
        return self.inner.deserialize(value)

    def _serialize(self, value: Any) -> str:
        return self.inner.serialize(value)


@dataclass(frozen=True)
class LowCardinalityCodec(Codec):
    """``LowCardinality(T)``; a transparent wrapper around its child."""

    inner: Codec

    @property
    def nullable(self) -> bool:
        """Whether the wrapped type is nullable."""
        return self.inner.nullable

    def cast(self, value: Any) -> Any:
        """Delegate to the wrapped codec."""
        return self.inner.cast(value)

    def deserialize(self, value: Any) -> Any:
        """Delegate to the wrapped codec."""
        return self.inner.deserialize(value)

    def serialize(self, value: Any) -> str:
        """Delegate to the wrapped codec."""
        return self.inner.serialize(value)

    def _cast(self, value: Any) -> Any:
        return self.inner.cast(value)

    def _deserialize(self, value: Any) -> Any:
        return self.inner.deserialize(value)

    def _serialize(self, value: Any) -> str:
        return self.inner.serialize(value)
