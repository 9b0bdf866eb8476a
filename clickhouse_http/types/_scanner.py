# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Delimited scanner for textual composite values.

Arrays, maps and tuples may arrive in their textual form, e.g.
``['a,b', 'c']`` or ``{'k': [1, 2]}``.  The helpers here locate separators
at nesting depth zero while tracking brackets, quoted strings and backslash
escapes, so separators inside quotes or nested brackets never split.
"""

from __future__ import annotations

from collections.abc import Iterator

_OPEN = frozenset("[({")
_CLOSE = frozenset("])}")
_QUOTES = frozenset("'\"")
_UNESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", "b": "\b", "f": "\f"}


def _top_level(text: str, targets: str) -> Iterator[int]:
    """Yield offsets of *targets* characters at depth zero outside quotes."""
    depth = 0
    quote: str | None = None
    escaped = False
    for i, ch in enumerate(text):
        if quote is not None:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in _QUOTES:
            quote = ch
        elif ch in _OPEN:
            depth += 1
        elif ch in _CLOSE:
            depth -= 1
        elif depth == 0 and ch in targets:
            yield i


def split_top_level(text: str, separator: str = ",") -> list[str]:
    """Split *text* on top-level *separator* characters, stripping each part.

    An empty or all-whitespace input yields an empty list.
    """
    if not text.strip():
        return []
    parts: list[str] = []
    start = 0
    for i in _top_level(text, separator):
        parts.append(text[start:i].strip())
        start = i + 1
    parts.append(text[start:].strip())
    return parts


def find_top_level(text: str, char: str) -> int:
    """Return the offset of the first top-level *char*, or ``-1``."""
    return next(_top_level(text, char), -1)


def strip_brackets(text: str, open_char: str, close_char: str) -> str | None:
    """Return the contents between enclosing brackets, or ``None`` if absent."""
    text = text.strip()
    if len(text) >= 2 and text[0] == open_char and text[-1] == close_char:
        return text[1:-1]
    return None


def is_quoted(token: str) -> bool:
    """Whether *token* is wrapped in matching single or double quotes."""
    return len(token) >= 2 and token[0] in _QUOTES and token[-1] == token[0]


def unescape(text: str) -> str:
    """Resolve backslash escapes (``\\n``, ``\\'``, ``\\\\`` ...)."""
    if "\\" not in text:
        return text
    out: list[str] = []
    chars = iter(text)
    for ch in chars:
        if ch == "\\":
            nxt = next(chars, "")
            out.append(_UNESCAPES.get(nxt, nxt))
        else:
            out.append(ch)
    return "".join(out)


def unquote(token: str) -> str:
    """Strip surrounding quotes from *token* and resolve its escapes.

    Unquoted tokens are returned stripped but otherwise unchanged.
    """
    token = token.strip()
    if is_quoted(token):
        return unescape(token[1:-1])
    return token
