"""Tests for the type declaration parser."""

from __future__ import annotations

import pytest

from clickhouse_http.errors import ParseError
from clickhouse_http.types import TypeNode, parse, render


class TestParse:
    """Parsing well-formed declarations into trees."""

    def test_simple_type(self) -> None:
        """A bare identifier parses to a leaf node."""
        assert parse("UInt64") == TypeNode("UInt64")

    def test_nested(self) -> None:
        """Nested composites become nested args."""
        node = parse("Array(Tuple(String, UInt64))")
        assert node.name == "Array"
        (inner,) = node.args
        assert inner.name == "Tuple"
        assert [a.name for a in inner.args] == ["String", "UInt64"]

    def test_whitespace_ignored(self) -> None:
        """Whitespace around names, commas and parentheses is insignificant."""
        assert parse("  Map( String ,  Array( UInt8 ) )  ") == parse("Map(String, Array(UInt8))")

    def test_numeric_literals(self) -> None:
        """Numeric parameters are literal nodes."""
        node = parse("Decimal(10, 2)")
        assert [a.name for a in node.args] == ["10", "2"]
        assert all(a.is_literal for a in node.args)

    def test_quoted_literal(self) -> None:
        """Quoted parameters are unescaped and flagged as quoted."""
        node = parse("DateTime64(3, 'Europe/Berlin')")
        tz = node.args[1]
        assert tz.quoted
        assert tz.name == "Europe/Berlin"

    def test_escaped_quote_in_literal(self) -> None:
        """Backslash escapes inside string literals are resolved."""
        node = parse(r"Enum8('it\'s' = 1)")
        assert node.args[0].name == "it's"

    def test_enum_values(self) -> None:
        """Explicit enum assignments are kept on the literal node."""
        node = parse("Enum8('a' = 1, 'b' = -2, 'c')")
        assert [(a.name, a.value) for a in node.args] == [("a", 1), ("b", -2), ("c", None)]

    def test_named_tuple(self) -> None:
        """Named tuple elements carry their label."""
        node = parse("Tuple(id UInt64, name Nullable(String))")
        assert [a.label for a in node.args] == ["id", "name"]
        assert node.args[1].name == "Nullable"

    def test_empty_args(self) -> None:
        """An empty argument list is allowed."""
        assert parse("Tuple()").args == ()

    def test_nodes_are_hashable(self) -> None:
        """Parsed trees can be used as dict keys."""
        assert {parse("Array(UInt8)"): 1}[parse("Array(UInt8)")] == 1


class TestRender:
    """Rendering trees back to canonical text."""

    @pytest.mark.parametrize(
        "text",
        [
            "UInt8",
            "Array(Tuple(String, UInt64))",
            "Map(String, Array(Nullable(Float64)))",
            "DateTime64(3, 'UTC')",
            "Enum8('a' = 1, 'b' = 2)",
            "Tuple(id UInt64, name String)",
            "Decimal(38, 10)",
        ],
    )
    def test_canonical_round_trip(self, text: str) -> None:
        """Canonical declarations render back unchanged."""
        assert render(parse(text)) == text

    def test_normalizes_whitespace(self) -> None:
        """Rendering normalizes spacing."""
        assert str(parse("Array( Nullable(String) )")) == "Array(Nullable(String))"

    def test_escapes_literals(self) -> None:
        """Quotes and control characters are escaped again on render."""
        assert render(TypeNode("a'b\n", quoted=True)) == r"'a\'b\n'"


class TestParseErrors:
    """Malformed declarations raise ParseError with a position."""

    def test_empty(self) -> None:
        """Empty input is rejected."""
        with pytest.raises(ParseError, match="Empty type declaration"):
            parse("   ")

    def test_unbalanced(self) -> None:
        """A missing closing parenthesis is reported."""
        with pytest.raises(ParseError, match="Unbalanced parentheses") as exc_info:
            parse("Array(UInt8")
        assert exc_info.value.position == len("Array(UInt8")
        assert exc_info.value.input == "Array(UInt8"

    def test_trailing_characters(self) -> None:
        """Text after a complete declaration is rejected."""
        with pytest.raises(ParseError, match="Unexpected character") as exc_info:
            parse("UInt8)")
        assert exc_info.value.position == 5

    def test_unterminated_string(self) -> None:
        """An unterminated string literal reports where it started."""
        with pytest.raises(ParseError, match="Unterminated string literal") as exc_info:
            parse("Enum8('a = 1)")
        assert exc_info.value.position == 6

    def test_missing_separator(self) -> None:
        """Two arguments without a comma are rejected."""
        with pytest.raises(ParseError, match="expected ',' or '\\)'"):
            parse("Map(String UInt8 UInt16)")

    def test_dangling_comma(self) -> None:
        """A trailing comma leaves a missing argument."""
        with pytest.raises(ParseError):
            parse("Tuple(String,)")

    def test_is_value_error(self) -> None:
        """ParseError can be caught as ValueError."""
        with pytest.raises(ValueError):
            parse("(")
