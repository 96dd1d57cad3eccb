"""Filesystem utilities for reading and writing tabular inputs and outputs."""
from __future__ import annotations

from pathlib import Path

import pandas as pd

_CSV_SUFFIXES = {".csv", ".txt"}
_PARQUET_SUFFIXES = {".parquet", ".pq"}


def ensure_directory(path: Path) -> Path:
    """Create a directory if it does not exist and return the path."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def read_table(path: Path) -> pd.DataFrame:
    """Read a CSV or Parquet file into a DataFrame based on its suffix."""

    if not path.exists():
        raise FileNotFoundError(f"Table not found: {path}")
    suffix = path.suffix.lower()
    if suffix in _CSV_SUFFIXES:
        return pd.read_csv(path)
    if suffix in _PARQUET_SUFFIXES:
        return pd.read_parquet(path)
    raise ValueError(f"Unsupported table format: {path}")


def write_table(df: pd.DataFrame, path: Path) -> None:
    """Write a DataFrame as CSV or Parquet, ensuring parent directories exist."""

    suffix = path.suffix.lower()
    if suffix not in _CSV_SUFFIXES | _PARQUET_SUFFIXES:
        raise ValueError(f"Unsupported table format: {path}")
    ensure_directory(path.parent)
    if suffix in _CSV_SUFFIXES:
        df.to_csv(path, index=False)
    else:
        df.to_parquet(path, index=False)
