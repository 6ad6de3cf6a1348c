"""Typed key values used to bound chunks: signed, unsigned or binary."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any

from .sqlutil import escape_string, remove_width

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
UINT64_MAX = 2**64 - 1

_SIGNED_RE = re.compile(r"[+-]?[0-9]+")
_UNSIGNED_RE = re.compile(r"[0-9]+")


class DatumType(IntEnum):
    """Simplified key type."""

    UNKNOWN = 0
    SIGNED = 1
    UNSIGNED = 2
    BINARY = 3


def mysql_type_to_datum_type(mysql_type: str) -> DatumType:
    """Classify a MySQL column type as signed, unsigned, binary or unknown."""
    tp = remove_width(mysql_type)
    if tp in ("int", "bigint", "smallint", "tinyint"):
        return DatumType.SIGNED
    if tp in ("int unsigned", "bigint unsigned", "smallint unsigned", "tinyint unsigned"):
        return DatumType.UNSIGNED
    if tp in ("varbinary", "blob", "binary"):
        return DatumType.BINARY
    return DatumType.UNKNOWN


def _parse_integer(text: str, signed: bool) -> int:
    pattern, low, high = (
        (_SIGNED_RE, INT64_MIN, INT64_MAX) if signed else (_UNSIGNED_RE, 0, UINT64_MAX)
    )
    if not pattern.fullmatch(text):
        raise ValueError(f"invalid integer value: {text!r}")
    number = int(text)
    if not low <= number <= high:
        raise ValueError(f"integer value out of range: {text!r}")
    return number


def _coerce(value: Any, tp: DatumType) -> Any:
    if tp not in (DatumType.SIGNED, DatumType.UNSIGNED):
        return value
    signed = tp is DatumType.SIGNED
    if isinstance(value, int) and not isinstance(value, bool):
        text = str(value)
    elif isinstance(value, bytes):
        text = value.decode()
    else:
        text = str(value)
    try:
        return _parse_integer(text, signed)
    except ValueError as exc:
        target = "int64" if signed else "uint64"
        raise ValueError(f"could not convert datum to {target}") from exc


@dataclass(frozen=True)
class Datum:
    """A key value together with its simplified type."""

    value: Any
    tp: DatumType

    def max_value(self) -> Datum:
        """Largest value representable by this datum's type."""
        if self.tp is DatumType.SIGNED:
            return Datum(INT64_MAX, DatumType.SIGNED)
        return Datum(UINT64_MAX, self.tp)

    def min_value(self) -> Datum:
        """Smallest value representable by this datum's type."""
        if self.tp is DatumType.SIGNED:
            return Datum(INT64_MIN, DatumType.SIGNED)
        return Datum(0, self.tp)

    def _require_numeric(self) -> None:
        if not self.is_numeric():
            raise TypeError("not supported on binary type")

    def add(self, amount: int) -> Datum:
        """Add ``amount``, saturating at the type's maximum."""
        self._require_numeric()
        limit = INT64_MAX if self.tp is DatumType.SIGNED else UINT64_MAX
        return replace(self, value=min(self.value + amount, limit))

    def range(self, other: Datum) -> int:
        """Difference between this datum and ``other`` as an unsigned 64-bit value."""
        self._require_numeric()
        return (self.value - other.value) % 2**64

    def __str__(self) -> str:
        if not self.is_numeric():
            return '"' + escape_string(self.value) + '"'
        return str(self.value)

    def is_numeric(self) -> bool:
        return self.tp in (DatumType.SIGNED, DatumType.UNSIGNED)

    def is_nil(self) -> bool:
        return self.value is None

    def greater_than_or_equal(self, other: Datum) -> bool:
        self._require_numeric()
        return self.value >= other.value


def new_datum(value: Any, tp: DatumType) -> Datum:
    """Build a datum, converting numeric values to integers of the right range."""
    return Datum(_coerce(value, tp), DatumType(tp))


def datum_from_mysql(value: str, mysql_type: str) -> Datum:
    """Build a datum from a string value and the column's MySQL type."""
    tp = mysql_type_to_datum_type(mysql_type)
    if tp in (DatumType.SIGNED, DatumType.UNSIGNED):
        return Datum(_parse_integer(value, tp is DatumType.SIGNED), tp)
    return Datum(value, tp)


def nil_datum(tp: DatumType) -> Datum:
    """A datum of the given type holding no value."""
    return Datum(None, DatumType(tp))