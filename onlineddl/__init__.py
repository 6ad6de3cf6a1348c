"""Chunking, watermarks, throttling and ALTER checks for online MySQL schema changes."""

__version__ = "0.1.0"

__all__ = [
    "alter",
    "asserty",
    "chunk",
    "chunker",
    "chunker_composite",
    "chunker_optimistic",
    "datum",
    "sqlutil",
    "tableinfo",
    "throttler",
]