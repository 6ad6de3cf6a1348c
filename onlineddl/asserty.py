"""Assertions about the columns and indexes a table has."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .tableinfo import TableInfo


class TableAssertionError(AssertionError):
    """Raised when a table does not have the expected shape."""


@dataclass
class Table:
    """A loaded table whose structure can be asserted on."""

    table_info: TableInfo

    def contains_columns(self, *args: str) -> None:
        for col in args:
            if col not in self.table_info.columns:
                raise TableAssertionError(
                    f"missing column {col} on table {self.table_info.quoted_name}"
                )

    def not_contains_columns(self, *args: str) -> None:
        for col in args:
            if col in self.table_info.columns:
                raise TableAssertionError(
                    f"unexpected column {col} on table {self.table_info.quoted_name}"
                )

    def contains_indexes(self, *args: str) -> None:
        for idx in args:
            if idx not in self.table_info.indexes:
                raise TableAssertionError(
                    f"missing index {idx} on table {self.table_info.quoted_name}"
                )

    def not_contains_indexes(self, *args: str) -> None:
        for idx in args:
            if idx in self.table_info.indexes:
                raise TableAssertionError(
                    f"unexpected index {idx} on table {self.table_info.quoted_name}"
                )


def load_table(db: Any, schema: str, table_name: str) -> Table:
    """Discover a table's metadata and wrap it for assertions."""
    table_info = TableInfo(db, schema, table_name)
    table_info.set_info()
    return Table(table_info)