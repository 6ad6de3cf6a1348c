"""Table metadata discovered from MySQL's information schema."""

from __future__ import annotations

import threading
import time
from contextlib import closing
from typing import Any, Optional, Sequence

from .datum import Datum, DatumType, datum_from_mysql, mysql_type_to_datum_type, nil_datum
from .sqlutil import castable_type, remove_width

# Statistics older than this (in seconds) are considered stale.
LAST_CHUNK_STATISTICS_THRESHOLD = 10.0


class TableError(Exception):
    """Raised for problems with a table or its metadata."""


class TableIsReadError(TableError):
    """Raised when every chunk of a table has already been handed out."""

    def __init__(self, message: str = "table is read") -> None:
        super().__init__(message)


class TableNotOpenError(TableError):
    """Raised when a chunker is used before it was opened."""

    def __init__(self, message: str = "please call open() first") -> None:
        super().__init__(message)


class UnsupportedPKTypeError(TableError):
    """Raised when the primary key type cannot be used."""

    def __init__(self, message: str = "unsupported primary key type") -> None:
        super().__init__(message)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode()
    return str(value)


class TableInfo:
    """Columns, keys, indexes and statistics of one table.

    ``db`` is a DB-API connection using the ``format`` parameter style.
    """

    def __init__(self, db: Any, schema: str, table: str) -> None:
        self.db = db
        self.schema_name = schema
        self.table_name = table
        self.quoted_name = f"`{schema}`.`{table}`"
        self.estimated_rows = 0
        self.columns: list[str] = []
        self.non_generated_columns: list[str] = []
        self.indexes: list[str] = []
        self.columns_mysql_types: dict[str, str] = {}
        self.key_columns: list[str] = []
        self.key_columns_mysql_types: list[str] = []
        self.key_is_auto_inc = False
        self.key_datums: list[DatumType] = []
        self.min_value: Datum = nil_datum(DatumType.UNKNOWN)
        self.max_value: Datum = nil_datum(DatumType.UNKNOWN)
        self.statistics_last_updated: Optional[float] = None
        self.disable_auto_update_statistics = False
        self._statistics_lock = threading.Lock()
        self._closed = threading.Event()

    def _query(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        with closing(self.db.cursor()) as cursor:
            if params:
                cursor.execute(sql, tuple(params))
            else:
                cursor.execute(sql)
            return list(cursor.fetchall() or [])

    def primary_key_values(self, row: Sequence[Any]) -> list[Any]:
        """Extract the primary key values from a row image (before image)."""
        positions = {col: i for i, col in enumerate(self.columns)}
        values = []
        for key_col in self.key_columns:
            if key_col not in positions:
                continue
            value = row[positions[key_col]]
            if value is None:
                raise TableError(
                    "primary key column is NULL, possibly a bug sending "
                    "after-image instead of before"
                )
            values.append(value)
        return values

    def set_info(self) -> None:
        """Read all metadata for the table from the information schema."""
        with self._statistics_lock:
            self._set_row_estimate()
            self._set_columns()
            self._set_primary_key()
            self._set_indexes()
            self._set_min_max()

    def _set_row_estimate(self) -> None:
        self._query("ANALYZE TABLE " + self.quoted_name)
        rows = self._query(
            "SELECT IFNULL(table_rows,0) FROM information_schema.tables "
            "WHERE table_schema=%s AND table_name=%s",
            (self.schema_name, self.table_name),
        )
        if not rows:
            raise TableError(f"table {self.schema_name}.{self.table_name} does not exist")
        self.estimated_rows = int(_text(rows[0][0]))

    def _set_indexes(self) -> None:
        rows = self._query(
            "SELECT DISTINCT INDEX_NAME FROM INFORMATION_SCHEMA.STATISTICS "
            "WHERE table_schema=%s AND table_name=%s AND index_name != 'PRIMARY'",
            (self.schema_name, self.table_name),
        )
        self.indexes = [_text(row[0]) for row in rows]

    def _set_columns(self) -> None:
        rows = self._query(
            "SELECT column_name, column_type, GENERATION_EXPRESSION "
            "FROM information_schema.columns WHERE table_schema=%s AND table_name=%s "
            "ORDER BY ORDINAL_POSITION",
            (self.schema_name, self.table_name),
        )
        self.columns = []
        self.non_generated_columns = []
        self.columns_mysql_types = {}
        for col, tp, expression in rows:
            name = _text(col)
            self.columns.append(name)
            self.columns_mysql_types[name] = _text(tp)
            if not _text(expression):
                self.non_generated_columns.append(name)

    def desc_index(self, key_name: str) -> list[str]:
        """Return the columns of an index, in index order."""
        rows = self._query(
            "SELECT column_name FROM INFORMATION_SCHEMA.STATISTICS "
            "WHERE TABLE_SCHEMA=%s AND TABLE_NAME=%s AND index_name=%s "
            "ORDER BY seq_in_index",
            (self.schema_name, self.table_name, key_name),
        )
        return [_text(row[0]) for row in rows]

    def _set_primary_key(self) -> None:
        rows = self._query(
            "SELECT column_name FROM information_schema.key_column_usage "
            "WHERE table_schema=%s and table_name=%s and constraint_name='PRIMARY' "
            "ORDER BY ORDINAL_POSITION",
            (self.schema_name, self.table_name),
        )
        self.key_columns = [_text(row[0]) for row in rows]
        if not self.key_columns:
            raise TableError("no primary key found (not supported)")
        self.key_columns_mysql_types = []
        self.key_datums = []
        for position, col in enumerate(self.key_columns):
            found = self._query(
                "SELECT column_type, extra FROM information_schema.columns "
                "WHERE table_schema=%s AND table_name=%s and column_name=%s",
                (self.schema_name, self.table_name, col),
            )
            if not found:
                raise TableError(f"could not find type of primary key column {col}")
            pk_type = remove_width(_text(found[0][0]))
            extra = _text(found[0][1])
            self.key_columns_mysql_types.append(pk_type)
            self.key_datums.append(mysql_type_to_datum_type(pk_type))
            if position == 0:
                self.key_is_auto_inc = extra == "auto_increment"

    def primary_key_is_memory_comparable(self) -> None:
        """Raise unless every primary key column has a comparable type."""
        if not self.key_columns or not self.key_datums:
            raise TableError("please call set_info() first")
        if any(tp is DatumType.UNKNOWN for tp in self.key_datums):
            raise UnsupportedPKTypeError()

    def _set_min_max(self) -> None:
        if not self.key_datums or not self.key_columns_mysql_types:
            raise TableError("please call set_info() first")
        if self.key_datums[0] is DatumType.BINARY:
            return  # binary keys are not ranged by min/max
        key = self.key_columns[0]
        rows = self._query(
            f"SELECT IFNULL(min({key}),'0'), IFNULL(max({key}),'0') FROM {self.quoted_name}"
        )
        if not rows:
            raise TableError(f"could not read min/max of {self.quoted_name}")
        minimum, maximum = rows[0]
        mysql_type = self.key_columns_mysql_types[0]
        self.min_value = datum_from_mysql(_text(minimum), mysql_type)
        self.max_value = datum_from_mysql(_text(maximum), mysql_type)

    @property
    def closed(self) -> bool:
        """True once close() has been called."""
        return self._closed.is_set()

    def close(self) -> None:
        """Stop any running statistics refresh loop."""
        self._closed.set()

    def auto_update_statistics(
        self, interval: float, logger: Any, stop: Optional[threading.Event] = None
    ) -> None:
        """Refresh statistics every ``interval`` seconds until closed, stopped or disabled."""
        waiter = stop if stop is not None else self._closed
        while not self.disable_auto_update_statistics and not self._closed.is_set():
            if waiter.wait(interval) or self._closed.is_set():
                return
            try:
                self.update_table_statistics()
            except Exception as exc:  # noqa: BLE001 - driver errors vary
                logger.error("error updating table statistics: %s", exc)
            logger.info(
                "table statistics updated: estimated-rows=%d pk[0].max-value=%s",
                self.estimated_rows,
                self.max_value,
            )

    def statistics_need_updating(self) -> bool:
        """True if the statistics are older than the refresh threshold."""
        if self.statistics_last_updated is None:
            return True
        return self.statistics_last_updated < time.monotonic() - LAST_CHUNK_STATISTICS_THRESHOLD

    def update_table_statistics(self) -> None:
        """Recalculate the min/max key values and the row estimate."""
        with self._statistics_lock:
            self._set_min_max()
            self._set_row_estimate()
            self.statistics_last_updated = time.monotonic()

    def wrap_cast_type(self, col: str) -> str:
        """Wrap a column in a CAST() to a comparable type."""
        if col not in self.columns_mysql_types:
            raise KeyError(f"column not found: {col}")
        return f"CAST(`{col}` AS {castable_type(self.columns_mysql_types[col])})"

    def datum_type(self, col: str) -> DatumType:
        """The simplified datum type of a column."""
        if col not in self.columns_mysql_types:
            raise KeyError(f"column not found, can not determine datum type: {col}")
        return mysql_type_to_datum_type(self.columns_mysql_types[col])