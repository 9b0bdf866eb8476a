# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Recursive-descent parser for ClickHouse type declarations.

Turns text such as ``Array(Tuple(String, UInt64))`` or
``Enum8('a' = 1, 'b' = 2)`` into an immutable :class:`TypeNode` tree, and
renders trees back to canonical text.  Parsing is pure, so parsed trees can
be cached freely.

Grammar::

    type     := literal | [label] identifier [ "(" [ type ("," type)* ] ")" ]
    literal  := ["-"] digits | "'" chars "'" [ "=" ["-"] digits ]
    label    := identifier            (named tuple element, e.g. ``id UInt64``)
"""

from __future__ import annotations

import string
from dataclasses import dataclass, field

from clickhouse_http.errors import ParseError

__all__ = ["TypeNode", "parse", "render"]

_IDENT_START = frozenset(string.ascii_letters + "_")
_IDENT_CHARS = frozenset(string.ascii_letters + string.digits + "_")
_DIGITS = frozenset(string.digits)
_WHITESPACE = frozenset(" \t\r\n")

_UNESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", "b": "\b", "f": "\f"}
_ESCAPES = {"\\": "\\\\", "'": "\\'", "\n": "\\n", "\t": "\\t", "\r": "\\r", "\0": "\\0"}


@dataclass(frozen=True)
class TypeNode:
    """One node of a parsed type declaration.

    Attributes:
        name: Type name (``Array``), numeric literal text (``3``), or the
            unescaped contents of a quoted literal (``UTC``).
        args: Child nodes, empty for simple types and literals.
        quoted: ``True`` when the node is a quoted string literal.
        label: Element name inside a named ``Tuple``, otherwise ``None``.
        value: Explicit enum assignment (``'a' = 1``).  Not part of equality.

    """

    name: str
    args: tuple[TypeNode, ...] = ()
    quoted: bool = False
    label: str | None = None
    value: int | None = field(default=None, compare=False)

    @property
    def is_literal(self) -> bool:
        """Whether this node is a quoted or numeric literal rather than a type."""
        return self.quoted or self.name[:1] in _DIGITS or self.name[:1] == "-"

    def __str__(self) -> str:
        """Render the node as canonical type text."""
        return render(self)


def parse(text: str) -> TypeNode:
    """Parse a complete type declaration.

    Args:
        text: The declaration, e.g. ``"Nullable(DateTime64(3, 'UTC'))"``.

    Returns:
        The root :class:`TypeNode`.

    Raises:
        ParseError: If the text is empty, malformed, unbalanced, or has
            trailing characters after the declaration.

    """
    return _Parser(text).parse()


def render(node: TypeNode) -> str:
    """Render a :class:`TypeNode` tree back to canonical text."""
    if node.quoted:
        text = "'" + "".join(_ESCAPES.get(ch, ch) for ch in node.name) + "'"
        if node.value is not None:
            text += f" = {node.value}"
    elif node.args:
        text = f"{node.name}({', '.join(render(arg) for arg in node.args)})"
    else:
        text = node.name
    if node.label is not None:
        text = f"{node.label} {text}"
    return text


class _Parser:
    """Index-cursor recursive-descent parser over one input string."""

    __slots__ = ("_pos", "_text")

    def __init__(self, text: str) -> None:
        self._text = text
        self._pos = 0

    def parse(self) -> TypeNode:
        self._skip_ws()
        if self._peek() is None:
            raise self._error("Empty type declaration")
        node = self._parse_type()
        self._skip_ws()
        ch = self._peek()
        if ch is not None:
            raise self._error(f"Unexpected character {ch!r}")
        return node

    # -- cursor helpers -------------------------------------------------------

    def _peek(self) -> str | None:
        return self._text[self._pos] if self._pos < len(self._text) else None

    def _skip_ws(self) -> None:
        while self._pos < len(self._text) and self._text[self._pos] in _WHITESPACE:
            self._pos += 1

    def _error(self, message: str, position: int | None = None) -> ParseError:
        return ParseError(message, position=self._pos if position is None else position, input=self._text)

    # -- productions ------------------------------------------------------------

    def _parse_type(self) -> TypeNode:
        self._skip_ws()
        ch = self._peek()
        if ch is None:
            raise self._error("Unexpected end of input, expected a type")
        if ch == "'":
            return self._parse_string()
        if ch in _DIGITS or ch == "-":
            return TypeNode(self._read_integer())
        if ch in _IDENT_START:
            name = self._read_identifier()
            self._skip_ws()
            if self._peek() == "(":
                return TypeNode(name, self._parse_args())
            return TypeNode(name)
        raise self._error(f"Unexpected character {ch!r}")

    def _parse_args(self) -> tuple[TypeNode, ...]:
        start = self._pos
        self._pos += 1  # "("
        self._skip_ws()
        if self._peek() == ")":
            self._pos += 1
            return ()
        args: list[TypeNode] = []
        while True:
            args.append(self._parse_element())
            self._skip_ws()
            ch = self._peek()
            if ch == ",":
                self._pos += 1
            elif ch == ")":
                self._pos += 1
                return tuple(args)
            elif ch is None:
                raise self._error(f"Unbalanced parentheses, expected ')' to close '(' at position {start}")
            else:
                raise self._error(f"Unexpected character {ch!r}, expected ',' or ')'")

    def _parse_element(self) -> TypeNode:
        """Parse one argument, accepting a leading element name (``id UInt64``)."""
        self._skip_ws()
        if self._peek() in _IDENT_START:
            mark = self._pos
            label = self._read_identifier()
            self._skip_ws()
            if self._pos > mark + len(label) and self._peek() in _IDENT_START:
                node = self._parse_type()
                return TypeNode(node.name, node.args, node.quoted, label, node.value)
            self._pos = mark
        return self._parse_type()

    def _parse_string(self) -> TypeNode:
        start = self._pos
        self._pos += 1  # opening quote
        chars: list[str] = []
        while True:
            ch = self._peek()
            if ch is None:
                raise self._error("Unterminated string literal", start)
            self._pos += 1
            if ch == "\\":
                escaped = self._peek()
                if escaped is None:
                    raise self._error("Unterminated string literal", start)
                self._pos += 1
                chars.append(_UNESCAPES.get(escaped, escaped))
            elif ch == "'":
                break
            else:
                chars.append(ch)
        value: int | None = None
        self._skip_ws()
        if self._peek() == "=":
            self._pos += 1
            self._skip_ws()
            value = int(self._read_integer())
        return TypeNode("".join(chars), quoted=True, value=value)

    def _read_integer(self) -> str:
        start = self._pos
        if self._peek() == "-":
            self._pos += 1
        digits_start = self._pos
        while self._pos < len(self._text) and self._text[self._pos] in _DIGITS:
            self._pos += 1
        if self._pos == digits_start:
            raise self._error("Expected digits", self._pos)
        return self._text[start : self._pos]

    def _read_identifier(self) -> str:
        start = self._pos
        while self._pos < len(self._text) and self._text[self._pos] in _IDENT_CHARS:
            self._pos += 1
        return self._text[start : self._pos]
