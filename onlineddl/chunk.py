"""Chunks: key ranges of a table, with their SQL and checkpoint encodings."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from .datum import Datum, DatumType, new_datum
from .sqlutil import Operator, expand_row_constructor_comparison


class _TypedColumns(Protocol):
    def datum_type(self, col: str) -> DatumType: ...


@dataclass
class Boundary:
    """A lower or upper bound of a chunk."""

    value: list[Datum]
    inclusive: bool = False

    def to_json(self) -> str:
        """Encode as JSON with every value as a string."""
        inclusive = "true" if self.inclusive else "false"
        return f'{{"Value": [{self.values_string()}],"Inclusive":{inclusive}}}'

    def compares_to(self, other: Boundary) -> bool:
        """True if both boundaries hold the same values, ignoring inclusivity."""
        if len(self.value) != len(other.value):
            return False
        return all(
            a.tp == b.tp and a.value == b.value for a, b in zip(self.value, other.value)
        )

    def values_string(self) -> str:
        """Comma-joined quoted values; numeric values are quoted too."""
        return ",".join(f'"{v}"' if v.is_numeric() else str(v) for v in self.value)


@dataclass
class Chunk:
    """A range of rows, described by bounds on a list of key columns."""

    key: list[str]
    chunk_size: int = 0
    lower_bound: Optional[Boundary] = None
    upper_bound: Optional[Boundary] = None
    additional_conditions: str = ""

    def __str__(self) -> str:
        conds: list[str] = []
        if self.lower_bound is not None:
            op = Operator.GREATER_EQUAL if self.lower_bound.inclusive else Operator.GREATER_THAN
            conds.append(
                expand_row_constructor_comparison(self.key, op, self.lower_bound.value)
            )
        if self.upper_bound is not None:
            op = Operator.LESS_EQUAL if self.upper_bound.inclusive else Operator.LESS_THAN
            conds.append(
                expand_row_constructor_comparison(self.key, op, self.upper_bound.value)
            )
        if self.lower_bound is None and self.upper_bound is None:
            conds.append("1=1")
        if self.additional_conditions:
            conds.append(f"({self.additional_conditions})")
        return " AND ".join(conds)

    def to_json(self) -> str:
        """Encode as a checkpoint; both bounds must be present."""
        if self.lower_bound is None or self.upper_bound is None:
            raise ValueError("chunk needs both a lower and an upper bound to encode")
        keys = '","'.join(self.key)
        return (
            f'{{"Key":["{keys}"],"ChunkSize":{self.chunk_size},'
            f'"LowerBound":{self.lower_bound.to_json()},'
            f'"UpperBound":{self.upper_bound.to_json()}}}'
        )


def _strings_to_datums(
    table_info: _TypedColumns, keys: list[str], values: list[str]
) -> list[Datum]:
    if len(values) > len(keys):
        raise ValueError("boundary has more values than key columns")
    datums = [
        new_datum(value, table_info.datum_type(key)) for key, value in zip(keys, values)
    ]
    datums.extend(Datum(None, DatumType.UNKNOWN) for _ in keys[len(values):])
    return datums


def _string_list(raw: Any, name: str) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise ValueError(f"{name} must be a list of strings")
    return raw


def _bound_fields(raw: Any) -> tuple[list[str], bool]:
    if raw is None:
        return [], False
    if not isinstance(raw, dict):
        raise ValueError("boundary must be an object")
    inclusive = raw.get("Inclusive", False)
    if not isinstance(inclusive, bool):
        raise ValueError("Inclusive must be a boolean")
    return _string_list(raw.get("Value"), "Value"), inclusive


def chunk_from_json(table_info: _TypedColumns, json_str: str) -> Chunk:
    """Decode a checkpoint chunk, typing values by the table's column types."""
    data = json.loads(json_str)
    if not isinstance(data, dict):
        raise ValueError("chunk must be a JSON object")
    keys = _string_list(data.get("Key"), "Key")
    chunk_size = data.get("ChunkSize", 0)
    if not isinstance(chunk_size, int) or isinstance(chunk_size, bool) or chunk_size < 0:
        raise ValueError("ChunkSize must be a non-negative integer")
    lower_vals, lower_inclusive = _bound_fields(data.get("LowerBound"))
    upper_vals, upper_inclusive = _bound_fields(data.get("UpperBound"))
    return Chunk(
        key=keys,
        chunk_size=chunk_size,
        lower_bound=Boundary(_strings_to_datums(table_info, keys, lower_vals), lower_inclusive),
        upper_bound=Boundary(_strings_to_datums(table_info, keys, upper_vals), upper_inclusive),
    )