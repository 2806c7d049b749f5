"""Pairwise Spearman rank correlation between category scores and engagement metrics."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import multipletests

logger = logging.getLogger(__name__)

MIN_PAIRED_OBSERVATIONS = 3

CORRELATION_COLUMNS = ["category", "metric", "rho", "p_value", "q_value", "n"]


@dataclass(frozen=True)
class CorrelationResult:
    coefficient: float
    p_value: float
    n: int

    @property
    def defined(self) -> bool:
        return bool(np.isfinite(self.coefficient))


def spearman(x: Sequence[float], y: Sequence[float]) -> CorrelationResult:
    """
    Spearman correlation over pairwise-complete observations.

    Ties get average ranks. Fewer than three complete pairs, or a constant
    ranked vector, yield an undefined (NaN) coefficient and p-value.
    """
    xa = np.asarray(x, dtype=float)
    ya = np.asarray(y, dtype=float)
    if xa.shape != ya.shape:
        raise ValueError("spearman inputs must have the same length")
    complete = np.isfinite(xa) & np.isfinite(ya)
    n = int(complete.sum())
    if n < MIN_PAIRED_OBSERVATIONS:
        return CorrelationResult(float("nan"), float("nan"), n)

    x_ranks = stats.rankdata(xa[complete], method="average")
    y_ranks = stats.rankdata(ya[complete], method="average")
    if np.ptp(x_ranks) == 0 or np.ptp(y_ranks) == 0:
        return CorrelationResult(float("nan"), float("nan"), n)

    rho, p_value = stats.spearmanr(x_ranks, y_ranks)
    return CorrelationResult(float(rho), float(p_value), n)


def _pair_task(args: Tuple[str, str, np.ndarray, np.ndarray]) -> Tuple[str, str, CorrelationResult]:
    category, metric, x, y = args
    return category, metric, spearman(x, y)


def correlate_all(
    frame: pd.DataFrame,
    categories: Sequence[str],
    metrics: Sequence[str],
    n_jobs: int = 1,
) -> pd.DataFrame:
    """
    Correlate every category with every metric.

    Args:
        frame: table holding both the category and the metric columns
        categories: category columns, in the order used to break ties
        metrics: metric columns, in the order used to break ties
        n_jobs: worker threads for the independent pair computations

    Returns:
        DataFrame sorted by descending absolute ``rho``; undefined pairs last
    """
    missing = [col for col in [*categories, *metrics] if col not in frame.columns]
    if missing:
        raise KeyError(f"Columns not found for correlation: {missing}")

    tasks = [
        (category, metric, frame[category].to_numpy(dtype=float), frame[metric].to_numpy(dtype=float))
        for category in categories
        for metric in metrics
    ]
    if n_jobs > 1:
        with ThreadPoolExecutor(max_workers=n_jobs) as pool:
            results = list(pool.map(_pair_task, tasks))
    else:
        results = [_pair_task(task) for task in tasks]

    rows: List[dict] = [
        {
            "category": category,
            "metric": metric,
            "rho": result.coefficient,
            "p_value": result.p_value,
            "n": result.n,
        }
        for category, metric, result in results
    ]
    table = pd.DataFrame(rows, columns=["category", "metric", "rho", "p_value", "n"])
    table["q_value"] = np.nan
    defined = table["p_value"].notna()
    if defined.any():
        _, qvals, _, _ = multipletests(table.loc[defined, "p_value"].to_numpy(), method="fdr_bh")
        table.loc[defined, "q_value"] = qvals
    undefined = int((~defined).sum())
    if undefined:
        logger.info("%d of %d correlation pairs are undefined", undefined, len(table))

    # Stable sort keeps first-seen category/metric order among ties.
    table = table.sort_values(
        "rho", key=lambda col: col.abs(), ascending=False, kind="mergesort", na_position="last"
    )
    return table[CORRELATION_COLUMNS].reset_index(drop=True)


__all__ = ["CORRELATION_COLUMNS", "CorrelationResult", "correlate_all", "spearman"]
