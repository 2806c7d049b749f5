"""Load input record tables from parquet or CSV."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import pandas as pd

from ..errors import DataError

logger = logging.getLogger(__name__)

PARQUET_SUFFIXES = {".parquet", ".pq"}
CSV_SUFFIXES = {".csv", ".txt"}


def load_table(path: Union[str, Path]) -> pd.DataFrame:
    """Read one table, choosing the reader from the file suffix."""
    path = Path(path)
    if not path.exists():
        raise DataError(f"Input table {path} does not exist")

    suffix = path.suffix.lower()
    if suffix in PARQUET_SUFFIXES:
        frame = pd.read_parquet(path)
    elif suffix in CSV_SUFFIXES:
        frame = pd.read_csv(path)
    else:
        raise DataError(f"Unsupported table format '{suffix}' for {path}")

    logger.info("Loaded %d records from %s", len(frame), path)
    return frame


__all__ = ["load_table"]
