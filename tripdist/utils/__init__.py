"""Utility helpers for table IO."""

from .io import ensure_directory, read_table, write_table

__all__ = [
    "ensure_directory",
    "read_table",
    "write_table",
]
