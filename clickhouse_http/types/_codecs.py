# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Scalar codecs and the shared :class:`Codec` base.

A codec moves a value between three representations for one ClickHouse
type:

- ``cast``: any accepted host value to the canonical host value
  (raises :class:`~clickhouse_http.errors.TypeCastError` on mismatch).
- ``deserialize``: a wire value decoded from JSON to the host value.
- ``serialize``: a host value to a SQL literal.

``None`` is handled uniformly by the base class: ``cast`` and
``deserialize`` return ``None`` and ``serialize`` returns ``NULL``.
Codecs are frozen dataclasses and safe to share between threads.
"""

from __future__ import annotations

import abc
import math
import re
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from functools import cached_property
from typing import Any
from zoneinfo import ZoneInfo

from clickhouse_http.errors import TypeCastError

from ._scanner import is_quoted, unescape

__all__ = [
    "NULL_LITERAL",
    "BooleanCodec",
    "Codec",
    "DateTimeCodec",
    "DecimalCodec",
    "EnumCodec",
    "FloatCodec",
    "IntegerCodec",
    "PassthroughCodec",
    "StringCodec",
    "UUIDCodec",
    "quote_string",
]

NULL_LITERAL = "NULL"

_STRING_ESCAPES = str.maketrans({"\\": "\\\\", "'": "\\'", "\n": "\\n", "\r": "\\r", "\t": "\\t", "\0": "\\0"})


def quote_string(value: str) -> str:
    """Return *value* as a single-quoted SQL string literal."""
    return "'" + value.translate(_STRING_ESCAPES) + "'"


def _strip_quotes(value: str) -> str:
    return unescape(value[1:-1]) if is_quoted(value) else value


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Codec(abc.ABC):
    """Base class for all codecs.

    Attributes:
        type_name: Canonical rendering of the ClickHouse type, e.g. ``Array(UInt8)``.

    """

    type_name: str

    @property
    def nullable(self) -> bool:
        """Whether the type admits SQL NULL."""
        return False

    def cast(self, value: Any) -> Any:
        """Convert a host value to this type's canonical host value.

        Raises:
            TypeCastError: If the value has the wrong shape or is out of range.

        """
        if value is None:
            return None
        return self._cast(value)

    def deserialize(self, value: Any) -> Any:
        """Convert a wire value (as decoded from JSON) to a host value."""
        if value is None:
            return None
        return self._deserialize(value)

    def serialize(self, value: Any) -> str:
        """Render a host value as a SQL literal."""
        if value is None:
            return NULL_LITERAL
        return self._serialize(self._cast(value))

    @abc.abstractmethod
    def _cast(self, value: Any) -> Any: ...

    @abc.abstractmethod
    def _deserialize(self, value: Any) -> Any: ...

    @abc.abstractmethod
    def _serialize(self, value: Any) -> str: ...

    def _fail(self, value: Any, reason: str | None = None) -> TypeCastError:
        detail = f": {reason}" if reason else ""
        return TypeCastError(
            f"Cannot cast {type(value).__name__} {value!r} to {self.type_name}{detail}",
            from_type=type(value).__name__,
            to_type=self.type_name,
            value=value,
        )

    def __str__(self) -> str:
        return self.type_name


@dataclass(frozen=True)
class PassthroughCodec(Codec):
    """Identity codec used for type names the registry does not know."""

    def _cast(self, value: Any) -> Any:
        return value

    def _deserialize(self, value: Any) -> Any:
        return value

    def _serialize(self, value: Any) -> str:
        return str(value)


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IntegerCodec(Codec):
    """``Int8`` .. ``Int256`` and ``UInt8`` .. ``UInt256``."""

    bits: int
    signed: bool

    @property
    def min_value(self) -> int:
        """Smallest representable value."""
        return -(1 << (self.bits - 1)) if self.signed else 0

    @property
    def max_value(self) -> int:
        """Largest representable value."""
        return (1 << (self.bits - 1)) - 1 if self.signed else (1 << self.bits) - 1

    def _cast(self, value: Any) -> int:
        if isinstance(value, bool):
            result = int(value)
        elif isinstance(value, int):
            result = value
        elif isinstance(value, float | Decimal):
            finite = value.is_finite() if isinstance(value, Decimal) else math.isfinite(value)
            if not finite:
                raise self._fail(value, "not a finite number")
            result = int(value)
            if result != value:
                raise self._fail(value, "not an integral value")
        elif isinstance(value, str):
            text = value.strip()
            if not text:
                raise self._fail(value, "empty string")
            try:
                result = int(text, 10)
            except ValueError:
                raise self._fail(value, "not an integer") from None
        else:
            raise self._fail(value)
        if not self.min_value <= result <= self.max_value:
            raise self._fail(value, f"out of range [{self.min_value}, {self.max_value}]")
        return result

    def _deserialize(self, value: Any) -> int:
        # 64-bit and wider integers arrive as JSON strings
        if isinstance(value, int):
            return int(value)
        return self._cast(value)

    def _serialize(self, value: int) -> str:
        return str(value)


_FLOAT_WORDS: dict[str, float] = {
    "inf": math.inf,
    "+inf": math.inf,
    "infinity": math.inf,
    "-inf": -math.inf,
    "-infinity": -math.inf,
    "nan": math.nan,
    "+nan": math.nan,
    "-nan": math.nan,
}


@dataclass(frozen=True)
class FloatCodec(Codec):
    """``Float32`` and ``Float64``, including ``inf``, ``-inf`` and ``nan``."""

    bits: int = 64

    def _cast(self, value: Any) -> float:
        if isinstance(value, bool):
            raise self._fail(value)
        if isinstance(value, int | float | Decimal):
            return float(value)
        if isinstance(value, str):
            text = value.strip().lower()
            if text in _FLOAT_WORDS:
                return _FLOAT_WORDS[text]
            try:
                return float(text)
            except ValueError:
                raise self._fail(value, "not a number") from None
        raise self._fail(value)

    def _deserialize(self, value: Any) -> float:
        return self._cast(value)

    def _serialize(self, value: float) -> str:
        if math.isnan(value):
            return "nan"
        if math.isinf(value):
            return "inf" if value > 0 else "-inf"
        return repr(value)


@dataclass(frozen=True)
class DecimalCodec(Codec):
    """``Decimal(P, S)`` with precision-checked casts.

    Casting rejects values with more than ``P - S`` integer digits.
    Serializing truncates (rounds toward zero) to ``S`` fractional digits.
    """

    precision: int
    scale: int

    def _cast(self, value: Any) -> Decimal:
        if isinstance(value, bool):
            raise self._fail(value)
        try:
            if isinstance(value, Decimal):
                result = value
            elif isinstance(value, int):
                result = Decimal(value)
            elif isinstance(value, float):
                result = Decimal(repr(value))
            elif isinstance(value, str):
                result = Decimal(value.strip())
            else:
                raise self._fail(value)
        except InvalidOperation:
            raise self._fail(value, "not a decimal number") from None
        if not result.is_finite():
            raise self._fail(value, "not a finite number")
        integral = abs(result).to_integral_value(rounding=ROUND_DOWN)
        digits = 0 if integral == 0 else len(str(int(integral)))
        if digits > self.precision - self.scale:
            raise self._fail(
                value, f"{digits} integer digits exceed precision {self.precision} with scale {self.scale}"
            )
        return result

    def _deserialize(self, value: Any) -> Decimal:
        if isinstance(value, float):
            return Decimal(repr(value))
        try:
            return Decimal(_strip_quotes(value) if isinstance(value, str) else value)
        except (InvalidOperation, TypeError):
            raise self._fail(value, "not a decimal number") from None

    def _serialize(self, value: Decimal) -> str:
        with localcontext() as ctx:
            ctx.prec = 100
            truncated = value.quantize(Decimal(1).scaleb(-self.scale), rounding=ROUND_DOWN)
        return format(truncated, "f")


# ---------------------------------------------------------------------------
# Strings and booleans
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StringCodec(Codec):
    """``String`` and ``FixedString(N)``.

    ``FixedString`` values are NUL-padded to ``length`` bytes on cast and
    have trailing NULs stripped on deserialize.
    Wire values are raw text and are never unquoted, so a serialized
    literal does not read back as the original string.
    """

    length: int | None = None

    def _cast(self, value: Any) -> str:
        if isinstance(value, bytes | bytearray | memoryview):
            try:
                text = bytes(value).decode("utf-8")
            except UnicodeDecodeError:
                raise self._fail(value, "not valid UTF-8") from None
        elif isinstance(value, str):
            text = value
        elif isinstance(value, int | float | Decimal | uuid.UUID):
            text = str(value)
        else:
            raise self._fail(value)
        if self.length is not None:
            size = len(text.encode("utf-8"))
            if size > self.length:
                raise self._fail(value, f"{size} bytes exceed length {self.length}")
            text += "\0" * (self.length - size)
        return text

    def _deserialize(self, value: Any) -> str:
        text = value.decode("utf-8", errors="replace") if isinstance(value, bytes) else str(value)
        if self.length is not None:
            text = text.rstrip("\0")
        return text

    def _serialize(self, value: str) -> str:
        return quote_string(value)


_TRUE_VALUES = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE_VALUES = frozenset({"0", "false", "f", "no", "n", "off"})


@dataclass(frozen=True)
class BooleanCodec(Codec):
    """``Bool``, accepting the usual truthy and falsy spellings."""

    def _cast(self, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            text = value.strip().lower()
            if text in _TRUE_VALUES:
                return True
            if text in _FALSE_VALUES:
                return False
        raise self._fail(value)

    def _deserialize(self, value: Any) -> bool:
        return self._cast(_strip_quotes(value) if isinstance(value, str) else value)

    def _serialize(self, value: bool) -> str:
        return "true" if value else "false"


# ---------------------------------------------------------------------------
# Dates and times
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DateTimeCodec(Codec):
    """``Date``, ``Date32``, ``DateTime([tz])`` and ``DateTime64(p[, tz])``.

    Dates map to :class:`datetime.date`.  Date-times map to
    :class:`datetime.datetime`, timezone-aware when the column declares a
    zone and naive (UTC wall time) otherwise.  Fractional seconds are kept
    up to ``precision`` digits (microsecond resolution at most).
    """

    date_only: bool = False
    precision: int = 0
    timezone: str | None = None

    @cached_property
    def zone(self) -> ZoneInfo | None:
        """The declared time zone, if any."""
        return ZoneInfo(self.timezone) if self.timezone else None

    def _cast(self, value: Any) -> date | datetime:
        if isinstance(value, str):
            value = self._parse_text(value)
        elif isinstance(value, int | float) and not isinstance(value, bool):
            value = datetime.fromtimestamp(value, UTC)
        if self.date_only:
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, date):
                return value
            raise self._fail(value)
        if isinstance(value, datetime):
            return self._normalize(value)
        if isinstance(value, date):
            return self._normalize(datetime(value.year, value.month, value.day))
        raise self._fail(value)

    def _parse_text(self, value: str) -> date | datetime:
        text = _strip_quotes(value.strip())
        try:
            if self.date_only and len(text) == 10:
                return date.fromisoformat(text)
            return datetime.fromisoformat(text)
        except ValueError:
            raise self._fail(value, "not an ISO 8601 date/time") from None

    def _normalize(self, value: datetime) -> datetime:
        if value.tzinfo is not None:
            value = value.astimezone(self.zone or UTC)
            if self.zone is None:
                value = value.replace(tzinfo=None)
        elif self.zone is not None:
            value = value.replace(tzinfo=self.zone)
        step = 10 ** (6 - min(self.precision, 6))
        return value.replace(microsecond=value.microsecond - value.microsecond % step)

    def _deserialize(self, value: Any) -> date | datetime:
        return self._cast(value)

    def _serialize(self, value: date | datetime) -> str:
        if self.date_only:
            return f"'{value.isoformat()}'"
        text = value.strftime("%Y-%m-%d %H:%M:%S")
        if self.precision:
            digits = f"{value.microsecond:06d}"
            text += "." + (digits + "0" * self.precision)[: self.precision]
        return f"'{text}'"


# ---------------------------------------------------------------------------
# UUID and Enum
# ---------------------------------------------------------------------------

_HEX_RE = re.compile(r"^[0-9a-f]{32}$")


@dataclass(frozen=True)
class UUIDCodec(Codec):
    """``UUID``; host values are :class:`uuid.UUID`."""

    def _cast(self, value: Any) -> uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        if isinstance(value, bytes) and len(value) == 16:
            return uuid.UUID(bytes=value)
        if isinstance(value, str):
            text = _strip_quotes(value.strip()).strip("{}").lower().replace("-", "")
            if _HEX_RE.match(text):
                return uuid.UUID(hex=text)
        raise self._fail(value, "malformed UUID")

    def _deserialize(self, value: Any) -> uuid.UUID:
        return self._cast(value)

    def _serialize(self, value: uuid.UUID) -> str:
        return f"'{value}'"


@dataclass(frozen=True)
class EnumCodec(Codec):
    """``Enum8`` / ``Enum16``; host values are the string labels.

    Attributes:
        entries: ``(label, value)`` pairs in declaration order.

    """

    entries: tuple[tuple[str, int], ...] = ()

    @cached_property
    def values(self) -> dict[str, int]:
        """Mapping of label to numeric value."""
        return dict(self.entries)

    @cached_property
    def labels(self) -> dict[int, str]:
        """Mapping of numeric value to label."""
        return {v: k for k, v in self.entries}

    def _cast(self, value: Any) -> str:
        if isinstance(value, str):
            label = _strip_quotes(value)
            if label in self.values:
                return label
            raise self._fail(value, f"unknown label, expected one of {sorted(self.values)}")
        if isinstance(value, int) and not isinstance(value, bool):
            if value in self.labels:
                return self.labels[value]
            raise self._fail(value, "unknown enum value")
        raise self._fail(value)

    def _deserialize(self, value: Any) -> str | int:
        if isinstance(value, int) and not isinstance(value, bool):
            return self.labels.get(value, value)
        return _strip_quotes(str(value))

    def _serialize(self, value: str) -> str:
        return quote_string(value)
