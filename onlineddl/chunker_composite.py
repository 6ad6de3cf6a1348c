"""Chunker that finds each chunk's upper bound by prefetching from the index."""

from __future__ import annotations

import logging
import math
import threading
from contextlib import closing
from typing import Any, Optional

from .chunk import Boundary, Chunk, chunk_from_json
from .datum import Datum, new_datum
from .sqlutil import Operator, expand_row_constructor_comparison, lazy_find_p90
from .tableinfo import TableError, TableInfo, TableIsReadError, TableNotOpenError

# Initial number of rows per chunk.
STARTING_CHUNK_SIZE = 1000
# Largest factor by which one recalculation may grow the chunk size.
MAX_DYNAMIC_STEP_FACTOR = 1.5
# Smallest chunk size dynamic chunking may choose.
MIN_DYNAMIC_ROW_SIZE = 10
# Largest chunk size dynamic chunking may choose.
MAX_DYNAMIC_ROW_SIZE = 100000
# A chunk taking this many times the target shrinks the chunk size at once.
DYNAMIC_PANIC_FACTOR = 5
# Default time (in seconds) a chunk should take to process.
CHUNKER_DEFAULT_TARGET = 0.1


def _raw_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode()
    return str(value)


class CompositeChunker:
    """Chunks a table on any (possibly multi-column) key.

    Each upper bound is found with a ``LIMIT 1 OFFSET n`` query, which works
    for keys whose values cannot be predicted from their min and max.
    Durations are given in seconds.
    """

    def __init__(
        self,
        table_info: TableInfo,
        target: float = CHUNKER_DEFAULT_TARGET,
        logger: Optional[Any] = None,
    ) -> None:
        self.table_info = table_info
        self.target = target
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.chunk_size = 0
        self.chunk_ptrs: list[Datum] = []
        self.chunk_keys: list[str] = []
        self.key_name = ""
        self.where = ""
        self.final_chunk_sent = False
        self.is_open = False
        self.chunk_timing_info: list[float] = []
        self.watermark: Optional[Chunk] = None
        self.lower_bound_watermark_map: dict[str, Chunk] = {}
        self._lock = threading.Lock()

    def _additional_conditions_sql(self, where_sent: bool) -> str:
        if not self.where:
            return ""
        if where_sent:
            return f" AND ({self.where})"
        return " WHERE " + self.where

    def _is_first_chunk(self) -> bool:
        return not self.chunk_ptrs

    def next(self) -> Chunk:
        """Return the next chunk of the table."""
        with self._lock:
            if self.final_chunk_sent:
                raise TableIsReadError()
            if not self.is_open:
                raise TableNotOpenError()
            keys = ",".join(self.chunk_keys)
            prefix = (
                f"SELECT {keys} FROM {self.table_info.quoted_name} "
                f"FORCE INDEX ({self.key_name})"
            )
            suffix = f"ORDER BY {keys} LIMIT 1 OFFSET {self.chunk_size}"
            if self._is_first_chunk():
                query = f"{prefix} {self._additional_conditions_sql(False)} {suffix}"
            else:
                lower = expand_row_constructor_comparison(
                    self.chunk_keys, Operator.GREATER_THAN, self.chunk_ptrs
                )
                query = (
                    f"{prefix} WHERE {lower} "
                    f"{self._additional_conditions_sql(True)} {suffix}"
                )
            upper_datums = self._fetch_boundary(query)

            if not upper_datums:
                self.final_chunk_sent = True
                lower_bound = (
                    None if self._is_first_chunk() else Boundary(self.chunk_ptrs, True)
                )
                return Chunk(
                    key=self.chunk_keys,
                    chunk_size=self.chunk_size,
                    lower_bound=lower_bound,
                    additional_conditions=self.where,
                )

            lower_bound = None if self._is_first_chunk() else Boundary(self.chunk_ptrs, True)
            self.chunk_ptrs = upper_datums
            return Chunk(
                key=self.chunk_keys,
                chunk_size=self.chunk_size,
                lower_bound=lower_bound,
                upper_bound=Boundary(upper_datums, False),
                additional_conditions=self.where,
            )

    def _fetch_boundary(self, query: str) -> list[Datum]:
        with closing(self.table_info.db.cursor()) as cursor:
            cursor.execute(query)
            row = cursor.fetchone()
            names = [desc[0] for desc in (cursor.description or ())]
        if row is None:
            return []
        return [
            new_datum(_raw_text(value), self.table_info.datum_type(_raw_text(name)))
            for name, value in zip(names, row)
        ]

    def _open(self) -> None:
        if self.is_open:
            raise TableError("table is already open, did you mean to call reset()?")
        self.is_open = True
        if not self.chunk_keys:
            self.chunk_keys = list(self.table_info.key_columns)
            self.key_name = "PRIMARY"
        self.final_chunk_sent = False
        self.chunk_size = STARTING_CHUNK_SIZE

    def open(self) -> None:
        """Prepare to hand out chunks from the start of the table."""
        with self._lock:
            self._open()

    def open_at_watermark(self, checkpoint: str, high_ptr: Optional[Datum] = None) -> None:
        """Resume from a checkpoint; ``high_ptr`` is not used by this chunker."""
        with self._lock:
            self._open()
            chunk = chunk_from_json(self.table_info, checkpoint)
            # Resume from the lower bound to avoid off-by-one issues with "<".
            self.watermark = chunk
            self.chunk_ptrs = list(chunk.lower_bound.value) if chunk.lower_bound else []

    def close(self) -> None:
        """Discard pending timing feedback; the watermark stays readable."""
        with self._lock:
            self.chunk_timing_info = []

    def feedback(self, chunk: Chunk, duration: float) -> None:
        """Record how long ``chunk`` took, advancing the watermark and chunk size."""
        with self._lock:
            self._bump_watermark(chunk)
            if chunk.chunk_size != self.chunk_size:
                return  # feedback on an earlier chunk size is misleading
            threshold = self.target * DYNAMIC_PANIC_FACTOR
            if duration > threshold:
                new_target = int(self.chunk_size / (DYNAMIC_PANIC_FACTOR * 2))
                self.logger.info(
                    "high chunk processing time. time: %s threshold: %s "
                    "target-rows: %s target-ms: %s new-target-rows: %s",
                    duration,
                    threshold,
                    self.chunk_size,
                    self.target,
                    new_target,
                )
                self._update_chunker_target(new_target)
                return
            self.chunk_timing_info.append(duration)
            if len(self.chunk_timing_info) > 10:
                self._update_chunker_target(self._calculate_new_target_chunk_size())

    def get_low_watermark(self) -> str:
        """JSON checkpoint of the highest range known to be fully processed."""
        with self._lock:
            wm = self.watermark
            if wm is None or wm.upper_bound is None or wm.lower_bound is None:
                raise TableError("watermark not yet ready")
            return wm.to_json()

    def _is_special_restored_chunk(self, chunk: Chunk) -> bool:
        wm = self.watermark
        if (
            chunk.lower_bound is None
            or chunk.upper_bound is None
            or wm is None
            or wm.lower_bound is None
            or wm.upper_bound is None
        ):
            return False
        return chunk.lower_bound.compares_to(wm.lower_bound)

    def _bump_watermark(self, chunk: Chunk) -> None:
        if chunk.upper_bound is None:
            return
        first = self.watermark is None and chunk.lower_bound is None
        if not (first or self._is_special_restored_chunk(chunk)):
            if chunk.lower_bound is None:
                raise TableError(
                    "bump_watermark: nil lower bound value encountered more than once: "
                    f"{chunk}"
                )
            if self.watermark is None or not self.watermark.upper_bound.compares_to(
                chunk.lower_bound
            ):
                # Out of order: keep it until the watermark reaches it.
                self.lower_bound_watermark_map[chunk.lower_bound.values_string()] = chunk
                return
        self.watermark = chunk
        while self.watermark.upper_bound is not None:
            stored = self.lower_bound_watermark_map.pop(
                self.watermark.upper_bound.values_string(), None
            )
            if stored is None:
                break
            self.watermark = stored

    def is_read(self) -> bool:
        """True once the final chunk has been handed out."""
        with self._lock:
            return self.final_chunk_sent

    def _update_chunker_target(self, new_target: float) -> None:
        self.chunk_size = self._boundary_check_target_chunk_size(new_target)
        self.chunk_timing_info = []

    def _boundary_check_target_chunk_size(self, new_target: float) -> int:
        rows = min(
            float(new_target),
            self.chunk_size * MAX_DYNAMIC_STEP_FACTOR,
            float(MAX_DYNAMIC_ROW_SIZE),
        )
        return int(max(rows, float(MIN_DYNAMIC_ROW_SIZE)))

    def _calculate_new_target_chunk_size(self) -> float:
        p90 = lazy_find_p90(self.chunk_timing_info)
        if p90 <= 0:
            return math.inf
        return float(int(self.chunk_size * (self.target / p90)))

    def key_above_high_watermark(self, key: Any) -> bool:
        """Never discard a key: this chunker keeps no high watermark."""
        with self._lock:
            # Rows may arrive in any key order, so none can be safely skipped.
            tracks_high_watermark = False
            return tracks_high_watermark and key is not None

    def set_key(self, key_name: str, where: str) -> None:
        """Chunk on a secondary index, restricted by extra WHERE conditions."""
        if self.is_open:
            raise TableError("cannot set key after table is open")
        key_cols = self.table_info.desc_index(key_name)
        # InnoDB secondary indexes contain the primary key, so append the
        # primary key columns that are not already part of the index.
        key_cols.extend(
            col for col in self.table_info.key_columns if col not in key_cols
        )
        self.chunk_keys = key_cols
        self.key_name = key_name
        self.where = where