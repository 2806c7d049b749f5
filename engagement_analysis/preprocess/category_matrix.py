"""
Category matrix: the immutable base table every analysis stage reads.

Category scores are stored internally as a normalized relation of
``(record_id, family, category, score)`` rows. Wide record × category views
are pivoted from it on demand, so callers never depend on how the input
boundary laid out its columns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from ..errors import DataError
from .schema import (
    DATE_COLUMN,
    ID_COLUMN,
    SOURCE_LABEL_COLUMN,
    SOURCE_TYPE_COLUMN,
    MatrixSchema,
)

logger = logging.getLogger(__name__)

SCORE_COLUMNS = [ID_COLUMN, "family", "category", "score"]


def _duplicate_ids(ids: pd.Series) -> List[str]:
    return sorted(ids[ids.duplicated()].unique().tolist())


def _require_columns(frame: pd.DataFrame, columns: Sequence[str], where: str) -> None:
    missing = [col for col in columns if col not in frame.columns]
    if missing:
        raise DataError(f"{where} is missing expected columns: {missing}")


def _normalize_ids(frame: pd.DataFrame, where: str) -> pd.DataFrame:
    df = frame.copy()
    if df[ID_COLUMN].isna().any():
        raise DataError(f"{where} contains records without an identifier")
    df[ID_COLUMN] = df[ID_COLUMN].astype(str)
    duplicates = _duplicate_ids(df[ID_COLUMN])
    if duplicates:
        raise DataError(
            f"{where} contains {len(duplicates)} duplicate identifiers, e.g. {duplicates[:5]}"
        )
    return df


def _prepare_record_table(records: pd.DataFrame, schema: MatrixSchema) -> pd.DataFrame:
    _require_columns(
        records,
        [ID_COLUMN, DATE_COLUMN, SOURCE_LABEL_COLUMN, *schema.metrics],
        "record table",
    )
    df = _normalize_ids(records, "record table")

    table = pd.DataFrame(index=pd.Index(df[ID_COLUMN], name=ID_COLUMN))
    table[DATE_COLUMN] = pd.to_datetime(df[DATE_COLUMN].to_numpy(), errors="coerce")
    missing_dates = int(table[DATE_COLUMN].isna().sum())
    if missing_dates:
        logger.warning("%d records have an unparseable or missing date", missing_dates)
    table[DATE_COLUMN] = table[DATE_COLUMN].dt.normalize()
    table[SOURCE_LABEL_COLUMN] = df[SOURCE_LABEL_COLUMN].to_numpy()
    table[SOURCE_TYPE_COLUMN] = schema.source_type(df[SOURCE_LABEL_COLUMN].tolist())

    for metric in schema.metrics:
        values = pd.to_numeric(df[metric], errors="coerce").astype(float).to_numpy()
        negative = np.sum(values < 0)
        if negative:
            logger.warning("Metric '%s': %d negative counters treated as missing", metric, negative)
            values = np.where(values < 0, np.nan, values)
        table[metric] = values
    return table


def _prepare_family_scores(
    family: str,
    frame: pd.DataFrame,
    record_ids: pd.Index,
    schema: MatrixSchema,
) -> pd.DataFrame:
    categories = list(schema.categories(family))
    where = f"'{family}' score table"
    _require_columns(frame, [ID_COLUMN, *categories], where)
    df = _normalize_ids(frame, where)

    unknown = ~df[ID_COLUMN].isin(record_ids)
    if unknown.any():
        logger.warning(
            "%s: %d rows reference unknown identifiers and are ignored", where, int(unknown.sum())
        )

    wide = df.set_index(ID_COLUMN)[categories].reindex(record_ids)
    wide = wide.apply(pd.to_numeric, errors="coerce").astype(float)

    out_of_range = (wide < 0) | (wide > 1)
    n_out = int(out_of_range.to_numpy().sum())
    if n_out:
        logger.warning("%s: %d out-of-range scores treated as missing", where, n_out)
        wide = wide.mask(out_of_range)

    all_missing = [name for name in categories if wide[name].isna().all()]
    if all_missing:
        raise DataError(f"{where} has all-missing category columns: {all_missing}")

    absent = int(wide.isna().all(axis=1).sum())
    if absent:
        logger.info("%s: %d records have no scores for this family", where, absent)

    long = (
        wide.rename_axis(ID_COLUMN)
        .reset_index()
        .melt(id_vars=ID_COLUMN, var_name="category", value_name="score")
    )
    long.insert(1, "family", family)
    return long[SCORE_COLUMNS]


@dataclass(frozen=True)
class CategoryMatrix:
    """Records, engagement counters and long-form category scores.

    Both frames are treated as read-only; accessors hand out copies.
    """

    records: pd.DataFrame
    scores: pd.DataFrame
    schema: MatrixSchema

    @classmethod
    def from_frames(
        cls,
        records: pd.DataFrame,
        families: Mapping[str, pd.DataFrame],
        schema: Optional[MatrixSchema] = None,
    ) -> "CategoryMatrix":
        """
        Build a matrix from a record table and one score table per family.

        Args:
            records: identifier, date, source label and raw counter columns
            families: family name -> table of identifier + category columns
            schema: expected layout (defaults to emotions/themes)

        Returns:
            CategoryMatrix with family scores left-joined onto the records
        """
        schema = schema or MatrixSchema()
        missing_families = [name for name in schema.families if name not in families]
        if missing_families:
            raise DataError(f"No score table supplied for families: {missing_families}")

        table = _prepare_record_table(records, schema)
        pieces = [
            _prepare_family_scores(name, families[name], table.index, schema)
            for name in schema.families
        ]
        scores = pd.concat(pieces, ignore_index=True)
        logger.info(
            "Built category matrix: %d records, %d families, %d score cells",
            len(table),
            len(schema.families),
            len(scores),
        )
        return cls(records=table, scores=scores, schema=schema)

    @classmethod
    def from_wide(
        cls, frame: pd.DataFrame, schema: Optional[MatrixSchema] = None
    ) -> "CategoryMatrix":
        """Build from one wide table whose category columns are ``<family>_<category>``."""
        schema = schema or MatrixSchema()
        families: Dict[str, pd.DataFrame] = {}
        for family in schema.families:
            mapping = schema.family_columns(family)
            _require_columns(frame, [ID_COLUMN, *mapping], "wide table")
            families[family] = frame[[ID_COLUMN, *mapping]].rename(columns=mapping)
        return cls.from_frames(frame, families, schema)

    def extend(self, other: "CategoryMatrix") -> "CategoryMatrix":
        """Return a new matrix holding the records of both matrices."""
        if other.schema != self.schema:
            raise DataError("Cannot extend a category matrix with a different schema")
        overlap = self.records.index.intersection(other.records.index)
        if len(overlap):
            raise DataError(
                f"{len(overlap)} identifiers appear in both matrices, e.g. {sorted(overlap)[:5]}"
            )
        return CategoryMatrix(
            records=pd.concat([self.records, other.records]),
            scores=pd.concat([self.scores, other.scores], ignore_index=True),
            schema=self.schema,
        )

    def __len__(self) -> int:
        return len(self.records)

    @property
    def record_ids(self) -> pd.Index:
        return self.records.index.copy()

    @property
    def metrics(self) -> List[str]:
        return list(self.schema.metrics)

    @property
    def families(self) -> List[str]:
        return list(self.schema.families)

    def categories(self, family: str) -> List[str]:
        return list(self.schema.categories(family))

    def metric_table(self) -> pd.DataFrame:
        return self.records[self.metrics].copy()

    def source_type(self) -> pd.Series:
        return self.records[SOURCE_TYPE_COLUMN].copy()

    def wide(self, family: str) -> pd.DataFrame:
        """Pivot one family to a record × category frame in schema order."""
        categories = self.categories(family)
        subset = self.scores[self.scores["family"] == family]
        wide = subset.pivot(index=ID_COLUMN, columns="category", values="score")
        wide = wide.reindex(index=self.records.index, columns=categories)
        wide.columns.name = None
        return wide.astype(float)

    def day_index(self) -> pd.Series:
        """Days since the earliest record date, starting at 1."""
        dates = self.records[DATE_COLUMN]
        days = (dates - dates.min()).dt.days + 1
        return days.rename("day")


__all__ = ["CategoryMatrix", "SCORE_COLUMNS"]
