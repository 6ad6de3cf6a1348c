"""Helpers for building SQL fragments and normalising MySQL column types."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Sequence, TypeVar

T = TypeVar("T")

_WIDTH_RE = re.compile(r"\([0-9]+\)")
_DECIMAL_WIDTH_RE = re.compile(r"\([0-9]+,[0-9]+\)")

_ESCAPES = str.maketrans(
    {
        "\x00": "\\0",
        "\n": "\\n",
        "\r": "\\r",
        "\x1a": "\\Z",
        "'": "\\'",
        '"': '\\"',
        "\\": "\\\\",
    }
)


class Operator(str, Enum):
    """Comparison operators used in WHERE clauses."""

    GREATER_THAN = ">"
    GREATER_EQUAL = ">="
    LESS_THAN = "<"
    LESS_EQUAL = "<="


def lazy_find_p90(durations: Sequence[T]) -> T:
    """Return the value at position len/10 of the descending-sorted input.

    With ten values this is the p90; with a hundred it is closer to a p99.
    """
    ordered = sorted(durations, reverse=True)
    return ordered[len(ordered) // 10]


def remove_width(s: str) -> str:
    """Strip a display width such as ``(11)`` from a type."""
    return _WIDTH_RE.sub("", s).strip()


def remove_decimal_width(s: str) -> str:
    """Strip a precision/scale such as ``(6,2)`` from a type."""
    return _DECIMAL_WIDTH_RE.sub("", s).strip()


def remove_enum_set_opts(s: str) -> str:
    """Collapse ``enum(...)`` and ``set(...)`` to their bare type names."""
    if len(s) > 4 and s[:4].lower() == "enum":
        return "enum"
    if len(s) > 3 and s[:3].lower() == "set":
        return "set"
    return s


def remove_zerofill(s: str) -> str:
    """Remove the ``zerofill`` attribute from a type."""
    return s.replace(" zerofill", "")


def castable_type(tp: str) -> str:
    """Map a MySQL column type to a type usable inside CAST()."""
    new_tp = remove_decimal_width(
        remove_zerofill(remove_enum_set_opts(remove_width(tp)))
    )
    if new_tp in ("tinyint", "smallint", "mediumint", "int", "bigint"):
        return "signed"
    if new_tp in (
        "tinyint unsigned",
        "smallint unsigned",
        "mediumint unsigned",
        "int unsigned",
        "bigint unsigned",
    ):
        return "unsigned"
    if new_tp in ("timestamp", "datetime"):
        return "datetime"
    if new_tp in ("tinyblob", "blob", "mediumblob", "longblob", "varbinary"):
        return "binary"
    if new_tp == "binary":
        return "binary(0)"
    if new_tp in ("float", "double"):
        return "char"
    if new_tp == "json":
        return "json"
    if new_tp == "decimal":
        return tp
    # varchar, enum, set, text and friends: the new table may change charset,
    # so convert to the superset charset.
    return "char CHARACTER SET utf8mb4"


def quote_columns(cols: Sequence[str]) -> str:
    """Backtick-quote column names and join them with commas."""
    return ", ".join(f"`{col}`" for col in cols)


def escape_string(value: str) -> str:
    """Escape a string for inclusion inside a quoted MySQL literal."""
    return value.translate(_ESCAPES)


def expand_row_constructor_comparison(
    cols: Sequence[str], operator: Operator, values: Sequence[Any]
) -> str:
    """Expand ``(a,b,c) OP (x,y,z)`` into an equivalent chain of ORs.

    MySQL does not always optimise row constructor comparisons, so each
    column position gets its own condition.
    """
    if len(cols) != len(values):
        raise ValueError("cols should be same size as values")
    op = Operator(operator)
    if len(cols) == 1:
        return f"`{cols[0]}` {op.value} {values[0]}"
    intermediate = {
        Operator.GREATER_EQUAL: Operator.GREATER_THAN,
        Operator.LESS_EQUAL: Operator.LESS_THAN,
    }.get(op, op)
    conds: list[str] = []
    equalities: list[str] = []
    last = len(cols) - 1
    for position, (col, value) in enumerate(zip(cols, values)):
        current = op if position == last else intermediate
        if equalities:
            prefix = " AND ".join(equalities)
            conds.append(f"({prefix} AND `{col}` {current.value} {value})")
        else:
            conds.append(f"(`{col}` {current.value} {value})")
        equalities.append(f"`{col}` = {value}")
    return "(" + "\n OR ".join(conds) + ")"