"""
Category co-occurrence summaries.

A record is *tagged* with a category when its score is at or above the
presence threshold. The same rule drives all three outputs: the mean-score
matrix, the void list and the top-tier pair frequencies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
import pandas as pd

from ..preprocess.engagement import quantile_threshold

logger = logging.getLogger(__name__)

VOID_COLUMNS = ["category_a", "category_b", "mean_score", "n_tagged"]
FREQUENCY_COLUMNS = ["category_a", "category_b", "count"]


@dataclass(frozen=True)
class CooccurrenceResult:
    matrix: pd.DataFrame
    voids: pd.DataFrame
    frequencies: pd.DataFrame
    tagged_counts: pd.Series
    n_top_tier: int

    def summary(self) -> Dict[str, object]:
        return {
            "categories_a": int(self.matrix.shape[0]),
            "categories_b": int(self.matrix.shape[1]),
            "voids": int(len(self.voids)),
            "top_tier_records": self.n_top_tier,
        }


def tagged(scores: pd.DataFrame, presence_threshold: float) -> pd.DataFrame:
    """Boolean presence mask; missing scores are never tagged."""
    return scores.ge(presence_threshold) & scores.notna()


def cooccurrence_matrix(
    family_a: pd.DataFrame, family_b: pd.DataFrame, presence_threshold: float = 0.3
) -> pd.DataFrame:
    """Mean B-score over records tagged with A; 0 where no record is tagged with A."""
    presence = tagged(family_a, presence_threshold)
    b_scores = family_b.reindex(family_a.index)
    matrix = pd.DataFrame(0.0, index=family_a.columns, columns=family_b.columns)
    for category in family_a.columns:
        mask = presence[category]
        if mask.any():
            matrix.loc[category] = b_scores.loc[mask].mean(axis=0, skipna=True)
    matrix.index.name = "category_a"
    matrix.columns.name = "category_b"
    return matrix


def find_voids(
    matrix: pd.DataFrame,
    tagged_counts: pd.Series,
    void_threshold: float = 0.05,
    same_family: bool = False,
) -> pd.DataFrame:
    """Pairs whose mean co-occurrence is below ``void_threshold``.

    Categories A with no tagged records are skipped: their zero cells mean
    "no data", not "never co-occurs".
    """
    rows = []
    for category_a in matrix.index:
        n_tagged = int(tagged_counts.get(category_a, 0))
        if n_tagged == 0:
            continue
        for category_b in matrix.columns:
            if same_family and category_a == category_b:
                continue
            value = matrix.at[category_a, category_b]
            if pd.notna(value) and value < void_threshold:
                rows.append(
                    {
                        "category_a": category_a,
                        "category_b": category_b,
                        "mean_score": float(value),
                        "n_tagged": n_tagged,
                    }
                )
    voids = pd.DataFrame(rows, columns=VOID_COLUMNS)
    return voids.sort_values("mean_score", kind="mergesort").reset_index(drop=True)


def pair_frequencies(
    family_a: pd.DataFrame,
    family_b: pd.DataFrame,
    presence_threshold: float = 0.3,
    same_family: bool = False,
) -> pd.DataFrame:
    """Count records tagged with A that also have a nonzero B score."""
    presence = tagged(family_a, presence_threshold).astype(int)
    nonzero = (family_b.reindex(family_a.index).fillna(0.0) > 0).astype(int)
    counts = presence.T.dot(nonzero)
    rows = [
        {"category_a": category_a, "category_b": category_b, "count": int(counts.at[category_a, category_b])}
        for category_a in counts.index
        for category_b in counts.columns
        if not (same_family and category_a == category_b) and counts.at[category_a, category_b] > 0
    ]
    table = pd.DataFrame(rows, columns=FREQUENCY_COLUMNS)
    return table.sort_values("count", ascending=False, kind="mergesort").reset_index(drop=True)


def top_tier_ids(composite: pd.Series, top_fraction: float) -> pd.Index:
    """Records whose composite score is at or above the ``1 - top_fraction`` quantile."""
    if top_fraction >= 1:
        return composite.dropna().index
    threshold = quantile_threshold(composite, 1.0 - top_fraction)
    if np.isnan(threshold):
        return pd.Index([])
    return composite.index[composite.ge(threshold).to_numpy()]


def analyze_cooccurrence(
    family_a: pd.DataFrame,
    family_b: Optional[pd.DataFrame] = None,
    composite: Optional[pd.Series] = None,
    presence_threshold: float = 0.3,
    void_threshold: float = 0.05,
    top_fraction: float = 0.01,
    tier_filter: bool = False,
) -> CooccurrenceResult:
    """
    Build the co-occurrence matrix, the voids and the top-tier pair frequencies.

    Args:
        family_a: record × category scores (rows define "tagged with A")
        family_b: second family; ``None`` compares family A against itself
        composite: composite engagement score used for the top tier
        tier_filter: also restrict the matrix and voids to the top tier

    Returns:
        CooccurrenceResult
    """
    same_family = family_b is None
    family_b = family_a if family_b is None else family_b

    top_ids = pd.Index([])
    if composite is not None:
        top_ids = top_tier_ids(composite.reindex(family_a.index), top_fraction)

    base_a = family_a.loc[family_a.index.isin(top_ids)] if tier_filter else family_a
    matrix = cooccurrence_matrix(base_a, family_b, presence_threshold)
    tagged_counts = tagged(base_a, presence_threshold).sum(axis=0)
    voids = find_voids(matrix, tagged_counts, void_threshold, same_family)

    top_a = family_a.loc[family_a.index.isin(top_ids)]
    frequencies = pair_frequencies(top_a, family_b, presence_threshold, same_family)
    logger.info(
        "Co-occurrence: %d x %d matrix, %d voids, %d top-tier records",
        matrix.shape[0],
        matrix.shape[1],
        len(voids),
        len(top_a),
    )
    return CooccurrenceResult(
        matrix=matrix,
        voids=voids,
        frequencies=frequencies,
        tagged_counts=tagged_counts,
        n_top_tier=int(len(top_a)),
    )


__all__ = [
    "CooccurrenceResult",
    "analyze_cooccurrence",
    "cooccurrence_matrix",
    "find_voids",
    "pair_frequencies",
    "tagged",
    "top_tier_ids",
]
