"""Tests for the type registry: lookup, caching, factories and validation."""

from __future__ import annotations

import threading
from collections.abc import Sequence

import pytest

from clickhouse_http.errors import ConfigurationError, ParseError
from clickhouse_http.types import (
    ArrayCodec,
    Codec,
    DecimalCodec,
    IntegerCodec,
    PassthroughCodec,
    StringCodec,
    TypeNode,
    TypeRegistry,
    default_registry,
)


class TestLookup:
    """Lookup and caching."""

    def test_cached_by_type_string(self, registry: TypeRegistry) -> None:
        """Repeated lookups return the same codec object."""
        assert registry.lookup("Array(UInt8)") is registry.lookup("Array(UInt8)")

    def test_builds_children_first(self, registry: TypeRegistry) -> None:
        """Composite codecs own codecs for their arguments."""
        codec = registry.lookup("Array(Nullable(UInt16))")
        assert isinstance(codec, ArrayCodec)
        assert codec.type_name == "Array(Nullable(UInt16))"
        assert codec.element.type_name == "Nullable(UInt16)"

    def test_unknown_type_is_passthrough(self, registry: TypeRegistry) -> None:
        """Unregistered names yield an identity codec, at any depth."""
        codec = registry.lookup("Array(IPv4)")
        assert isinstance(codec, ArrayCodec)
        assert isinstance(codec.element, PassthroughCodec)
        assert codec.deserialize(["10.0.0.1"]) == ["10.0.0.1"]

    def test_parse_error_propagates(self, registry: TypeRegistry) -> None:
        """Malformed declarations raise ParseError."""
        with pytest.raises(ParseError):
            registry.lookup("Array(")

    def test_default_registry_is_shared(self) -> None:
        """default_registry returns one instance."""
        assert default_registry() is default_registry()
        assert "UInt8" in default_registry()

    def test_concurrent_lookups_agree(self, registry: TypeRegistry) -> None:
        """Threads racing on a cold cache all receive the same codec."""
        barrier = threading.Barrier(8)
        seen: list[Codec] = []
        lock = threading.Lock()

        def worker() -> None:
            barrier.wait()
            codec = registry.lookup("Map(String, Array(Tuple(UInt8, String)))")
            with lock:
                seen.append(codec)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(seen) == 8
        assert all(codec is seen[0] for codec in seen)


class TestRegister:
    """Custom factories."""

    def test_register_custom_type(self, registry: TypeRegistry) -> None:
        """A registered factory receives the node and built children."""
        calls: list[tuple[TypeNode, int]] = []

        def factory(node: TypeNode, children: Sequence[Codec]) -> Codec:
            calls.append((node, len(children)))
            return StringCodec(str(node))

        registry.register("IPv4", factory)
        assert registry.registered("IPv4")
        codec = registry.lookup("IPv4")
        assert isinstance(codec, StringCodec)
        assert calls == [(TypeNode("IPv4"), 0)]

    def test_register_clears_cache(self, registry: TypeRegistry) -> None:
        """Replacing a factory invalidates cached codecs."""
        before = registry.lookup("UInt8")
        registry.register("UInt8", lambda node, children: StringCodec("UInt8"))
        after = registry.lookup("UInt8")
        assert isinstance(before, IntegerCodec)
        assert isinstance(after, StringCodec)

    def test_empty_registry(self) -> None:
        """A registry without defaults passes everything through."""
        assert isinstance(TypeRegistry().lookup("UInt8"), PassthroughCodec)


class TestValidation:
    """Invalid type parameters raise ConfigurationError."""

    def test_decimal_defaults(self, registry: TypeRegistry) -> None:
        """Bare Decimal is Decimal(10, 0)."""
        codec = registry.lookup("Decimal")
        assert isinstance(codec, DecimalCodec)
        assert (codec.precision, codec.scale) == (10, 0)

    @pytest.mark.parametrize("text", ["Decimal(0, 0)", "Decimal(77, 2)", "Decimal(5, 6)", "Decimal64(19)"])
    def test_decimal_bounds(self, registry: TypeRegistry, text: str) -> None:
        """Precision must be 1..76 and scale 0..P."""
        with pytest.raises(ConfigurationError, match="Decimal"):
            registry.lookup(text)

    @pytest.mark.parametrize("text", ["FixedString", "FixedString(0)", "FixedString(1, 2)", "FixedString('a')"])
    def test_fixed_string(self, registry: TypeRegistry, text: str) -> None:
        """FixedString needs exactly one positive integer length."""
        with pytest.raises(ConfigurationError):
            registry.lookup(text)

    def test_datetime64_precision(self, registry: TypeRegistry) -> None:
        """DateTime64 precision is limited to 9."""
        with pytest.raises(ConfigurationError, match="between 0 and 9"):
            registry.lookup("DateTime64(10)")

    def test_unknown_timezone(self, registry: TypeRegistry) -> None:
        """Unknown time zones are rejected when the codec is built."""
        with pytest.raises(ConfigurationError, match="Unknown time zone"):
            registry.lookup("DateTime('Mars/Olympus_Mons')")

    def test_enum_range(self, registry: TypeRegistry) -> None:
        """Enum8 values must fit in a signed byte."""
        with pytest.raises(ConfigurationError, match="out of range"):
            registry.lookup("Enum8('big' = 200)")

    def test_enum_unquoted_label(self, registry: TypeRegistry) -> None:
        """Enum labels must be string literals."""
        with pytest.raises(ConfigurationError, match="quoted"):
            registry.lookup("Enum8(a)")

    def test_wrong_arity(self, registry: TypeRegistry) -> None:
        """Composite types check their argument count."""
        with pytest.raises(ConfigurationError, match="takes 2 type argument"):
            registry.lookup("Map(String)")

    def test_configuration_error_is_value_error(self, registry: TypeRegistry) -> None:
        """ConfigurationError can be caught as ValueError."""
        with pytest.raises(ValueError):
            registry.lookup("Nullable(UInt8, UInt16)")
