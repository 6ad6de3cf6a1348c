"""Choosing the right chunker for a table."""

from __future__ import annotations

from typing import Any, Optional, Protocol, Union, runtime_checkable

from .chunk import Chunk
from .chunker_composite import CHUNKER_DEFAULT_TARGET, CompositeChunker
from .chunker_optimistic import OptimisticChunker
from .datum import Datum
from .tableinfo import TableInfo


@runtime_checkable
class Chunker(Protocol):
    """What every chunker offers to code that copies a table chunk by chunk."""

    def open(self) -> None: ...

    def open_at_watermark(self, checkpoint: str, high_ptr: Optional[Datum] = None) -> None: ...

    def is_read(self) -> bool: ...

    def close(self) -> None: ...

    def next(self) -> Chunk: ...

    def feedback(self, chunk: Chunk, duration: float) -> None: ...

    def get_low_watermark(self) -> str: ...

    def key_above_high_watermark(self, key: Any) -> bool: ...


def new_chunker(
    table_info: TableInfo,
    target: float = 0.0,
    logger: Optional[Any] = None,
) -> Union[OptimisticChunker, CompositeChunker]:
    """Return the best chunker for the table.

    Tables with a single-column auto-increment key get the optimistic
    chunker; all others get the composite chunker. A target of zero
    means the default target.
    """
    if not target:
        target = CHUNKER_DEFAULT_TARGET
    if len(table_info.key_columns) == 1 and table_info.key_is_auto_inc:
        return OptimisticChunker(table_info, target, logger)
    return new_composite_chunker(table_info, target, logger, "", "")


def new_composite_chunker(
    table_info: TableInfo,
    target: float,
    logger: Optional[Any] = None,
    key_name: str = "",
    where: str = "",
) -> CompositeChunker:
    """Return a composite chunker, chunking on ``key_name`` when both it and ``where`` are given."""
    chunker = CompositeChunker(table_info, target, logger)
    if key_name and where:
        chunker.set_key(key_name, where)
    return chunker