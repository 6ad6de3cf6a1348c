"""Chunker for single-column auto-increment keys that ranges by arithmetic."""

from __future__ import annotations

import logging
import math
import threading
from contextlib import closing
from typing import Any, Optional

from .chunk import Boundary, Chunk, chunk_from_json
from .chunker_composite import (
    CHUNKER_DEFAULT_TARGET,
    DYNAMIC_PANIC_FACTOR,
    MAX_DYNAMIC_ROW_SIZE,
    MAX_DYNAMIC_STEP_FACTOR,
    MIN_DYNAMIC_ROW_SIZE,
    STARTING_CHUNK_SIZE,
)
from .datum import Datum, DatumType, mysql_type_to_datum_type, new_datum, nil_datum
from .sqlutil import lazy_find_p90
from .tableinfo import (
    TableError,
    TableInfo,
    TableIsReadError,
    TableNotOpenError,
    UnsupportedPKTypeError,
)


class OptimisticChunker:
    """Chunks a table on a single numeric auto-increment key.

    Chunk bounds are computed by adding the chunk size to the current
    pointer. When the key sequence turns out to have very large gaps, the
    chunker switches to prefetching each upper bound from the table.
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
        self.chunk_ptr: Datum = nil_datum(DatumType.UNKNOWN)
        self.checkpoint_high_ptr: Datum = nil_datum(DatumType.UNKNOWN)
        self.final_chunk_sent = False
        self.is_open = False
        self.chunk_timing_info: list[float] = []
        self.disable_dynamic_chunker = False
        self.watermark: Optional[Chunk] = None
        self.lower_bound_watermark_map: dict[str, Chunk] = {}
        self.chunk_prefetching_enabled = False
        self._lock = threading.Lock()

    def _next_chunk_by_prefetching(self) -> Chunk:
        ti = self.table_info
        key = ti.key_columns[0]
        query = (
            f"SELECT {key} FROM {ti.quoted_name} WHERE {key} > %s "
            f"ORDER BY {key} LIMIT 1 OFFSET {self.chunk_size}"
        )
        with closing(ti.db.cursor()) as cursor:
            cursor.execute(query, (str(self.chunk_ptr),))
            row = cursor.fetchone()
        if row is not None:
            min_val = self.chunk_ptr
            max_val = new_datum(row[0], self.chunk_ptr.tp)
            self.chunk_ptr = max_val
            if max_val.range(min_val) < MAX_DYNAMIC_ROW_SIZE:
                self.logger.warning(
                    "disabling chunk prefetching: min-val=%s max-val=%s "
                    "max-dynamic-row-size=%d",
                    min_val,
                    max_val,
                    MAX_DYNAMIC_ROW_SIZE,
                )
                self.chunk_size = STARTING_CHUNK_SIZE
                self.chunk_prefetching_enabled = False
            return Chunk(
                key=ti.key_columns,
                chunk_size=self.chunk_size,
                lower_bound=Boundary([min_val], True),
                upper_bound=Boundary([max_val], False),
            )
        self.final_chunk_sent = True
        return Chunk(
            key=ti.key_columns,
            chunk_size=self.chunk_size,
            lower_bound=Boundary([self.chunk_ptr], True),
        )

    def next(self) -> Chunk:
        """Return the next chunk of the table."""
        with self._lock:
            if self.final_chunk_sent:
                raise TableIsReadError()
            if not self.is_open:
                raise TableNotOpenError()
            ti = self.table_info
            if self.chunk_ptr.is_nil():
                self.chunk_ptr = ti.min_value
                return Chunk(
                    key=ti.key_columns,
                    chunk_size=self.chunk_size,
                    upper_bound=Boundary([self.chunk_ptr], False),
                )
            if self.chunk_prefetching_enabled:
                return self._next_chunk_by_prefetching()

            # Refresh stale statistics before handing out an open-ended chunk,
            # in case the table has grown since they were read.
            if (
                self.chunk_ptr.greater_than_or_equal(ti.max_value)
                and ti.statistics_need_updating()
            ):
                self.logger.info(
                    "approaching the end of the table, synchronously updating statistics"
                )
                ti.update_table_statistics()

            if self.chunk_ptr.greater_than_or_equal(ti.max_value):
                self.final_chunk_sent = True
                return Chunk(
                    key=ti.key_columns,
                    chunk_size=self.chunk_size,
                    lower_bound=Boundary([self.chunk_ptr], True),
                )

            min_val = self.chunk_ptr
            max_val = self.chunk_ptr.add(self.chunk_size)
            self.chunk_ptr = max_val
            return Chunk(
                key=ti.key_columns,
                chunk_size=self.chunk_size,
                lower_bound=Boundary([min_val], True),
                upper_bound=Boundary([max_val], False),
            )

    def _open(self) -> None:
        ti = self.table_info
        if len(ti.key_columns) > 1:
            raise TableError("the optimistic chunker no longer supports key columns > 1")
        if mysql_type_to_datum_type(ti.key_columns_mysql_types[0]) is DatumType.UNKNOWN:
            raise UnsupportedPKTypeError()
        if self.is_open:
            raise TableError("table is already open, did you mean to call reset()?")
        self.is_open = True
        self.chunk_ptr = nil_datum(ti.key_datums[0])
        self.final_chunk_sent = False
        self.chunk_size = STARTING_CHUNK_SIZE
        if ti.min_value.is_nil():
            ti.min_value = self.chunk_ptr.min_value()
        if ti.max_value.is_nil():
            ti.max_value = self.chunk_ptr.max_value()

    def open(self) -> None:
        """Prepare to hand out chunks from the start of the table."""
        with self._lock:
            self._open()

    def set_dynamic_chunking(self, enabled: bool) -> None:
        """Turn feedback-driven chunk sizing on or off."""
        with self._lock:
            self.disable_dynamic_chunker = not enabled

    def open_at_watermark(self, checkpoint: str, high_ptr: Optional[Datum] = None) -> None:
        """Resume from a checkpoint; ``high_ptr`` is the high watermark seen on restore."""
        with self._lock:
            self._open()
            self.checkpoint_high_ptr = (
                high_ptr if high_ptr is not None else nil_datum(DatumType.UNKNOWN)
            )
            chunk = chunk_from_json(self.table_info, checkpoint)
            if chunk.lower_bound is None or not chunk.lower_bound.value:
                raise TableError("checkpoint has no lower bound")
            # Resume from the lower bound to avoid off-by-one issues with "<".
            self.watermark = chunk
            self.chunk_ptr = chunk.lower_bound.value[0]

    def close(self) -> None:
        """Release resources (none are held)."""

    def feedback(self, chunk: Chunk, duration: float) -> None:
        """Record how long ``chunk`` took, advancing the watermark and chunk size."""
        with self._lock:
            self._bump_watermark(chunk)
            if chunk.chunk_size != self.chunk_size or self.disable_dynamic_chunker:
                return
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
        new_target_rows = (
            math.inf if p90 <= 0 else self.chunk_size * (self.target / p90)
        )
        # Switch to prefetching when already at the maximum size, the target
        # wants to go higher still, and chunks take a fraction of the target.
        if (
            self.chunk_size == MAX_DYNAMIC_ROW_SIZE
            and new_target_rows > MAX_DYNAMIC_ROW_SIZE
            and p90 * 5 < self.target
        ):
            self.logger.warning(
                "dynamic chunking is not working as expected: target-time=%s "
                "p90-time=%s new-target-rows=%s max-dynamic-row-size=%d",
                self.target,
                p90,
                new_target_rows,
                MAX_DYNAMIC_ROW_SIZE,
            )
            self.logger.warning("switching to prefetch algorithm")
            self.chunk_size = STARTING_CHUNK_SIZE
            self.chunk_prefetching_enabled = True
        if math.isinf(new_target_rows):
            return new_target_rows
        return float(int(new_target_rows))

    def key_above_high_watermark(self, key: Any) -> bool:
        """True if ``key`` has not been copied yet; False whenever in doubt."""
        with self._lock:
            if self.chunk_ptr.is_nil() and self.checkpoint_high_ptr.is_nil():
                return True
            if self.final_chunk_sent:
                return False
            key_datum = new_datum(key, self.chunk_ptr.tp)
            # Keys at or below the restored high pointer may be phantom rows.
            if not self.checkpoint_high_ptr.is_nil() and (
                self.checkpoint_high_ptr.greater_than_or_equal(key_datum)
            ):
                return False
            return key_datum.greater_than_or_equal(self.chunk_ptr)