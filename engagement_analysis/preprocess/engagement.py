"""
Engagement scoring: standardized counters, composite score and high/low labels.

Every function here is pure. Labels are computed in two phases: the
dataset-wide quantile is taken over all non-missing values first, then each
record is compared against it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

import numpy as np
import pandas as pd

from ..errors import ConfigError
from .category_matrix import CategoryMatrix

logger = logging.getLogger(__name__)

COMPOSITE_COLUMN = "composite"
HIGH_ENGAGEMENT_COLUMN = "high_engagement"


def standardize(values: pd.Series) -> pd.Series:
    """Rescale to zero mean and unit (sample) variance over non-missing values.

    Returns an all-missing series when fewer than two values are present or
    the variance is zero.
    """
    values = values.astype(float)
    present = values.dropna()
    if len(present) < 2:
        return pd.Series(np.nan, index=values.index, name=values.name)
    mean = float(present.mean())
    std = float(present.std(ddof=1))
    if not np.isfinite(std) or std <= 1e-12 * max(1.0, abs(mean)):
        return pd.Series(np.nan, index=values.index, name=values.name)
    return (values - mean) / std


def compose(standardized: pd.DataFrame) -> pd.Series:
    """Row mean of the available standardized metrics; missing if none are available.

    A metric that could not be standardized counts as unavailable for every record.
    """
    return standardized.mean(axis=1, skipna=True).rename(COMPOSITE_COLUMN)


def quantile_threshold(values: pd.Series, quantile: float) -> float:
    """Linear-interpolated sample quantile of the non-missing values."""
    if not 0 < quantile < 1:
        raise ConfigError(f"quantile must be in (0, 1), got {quantile}")
    present = values.dropna().to_numpy(dtype=float)
    if present.size == 0:
        return float("nan")
    return float(np.quantile(present, quantile))


def label_at_threshold(values: pd.Series, threshold: float) -> pd.Series:
    """``values >= threshold`` as a nullable boolean; missing stays missing.

    Every value tied with the threshold is labeled high.
    """
    labels = (values >= threshold).astype("boolean")
    return labels.mask(values.isna() | np.isnan(threshold))


@dataclass(frozen=True)
class EngagementScores:
    frame: pd.DataFrame
    quantile: float
    thresholds: Dict[str, float] = field(default_factory=dict)
    undefined_metrics: List[str] = field(default_factory=list)
    metrics: List[str] = field(default_factory=list)

    @property
    def composite(self) -> pd.Series:
        return self.frame[COMPOSITE_COLUMN].copy()

    @property
    def label_columns(self) -> List[str]:
        return [HIGH_ENGAGEMENT_COLUMN] + [f"high_{metric}" for metric in self.metrics]

    def summary(self) -> Dict[str, object]:
        composite = self.frame[COMPOSITE_COLUMN]
        return {
            "quantile": self.quantile,
            "records": int(len(self.frame)),
            "composite_present": int(composite.notna().sum()),
            "high_engagement": int(self.frame[HIGH_ENGAGEMENT_COLUMN].sum()),
            "thresholds": {key: float(value) for key, value in self.thresholds.items()},
            "undefined_metrics": list(self.undefined_metrics),
        }


def score_engagement(matrix: CategoryMatrix, quantile: float = 0.90) -> EngagementScores:
    """
    Derive standardized metrics, the composite score and high-engagement labels.

    Args:
        matrix: base category matrix
        quantile: population quantile defining "high" (default 90th percentile)

    Returns:
        EngagementScores indexed by record identifier
    """
    if not 0 < quantile < 1:
        raise ConfigError(f"quantile must be in (0, 1), got {quantile}")

    raw = matrix.metric_table()
    standardized = pd.DataFrame(
        {f"z_{metric}": standardize(raw[metric]) for metric in raw.columns},
        index=raw.index,
    )
    undefined = [
        metric for metric in raw.columns if standardized[f"z_{metric}"].isna().all()
    ]
    for metric in undefined:
        logger.warning("Metric '%s' has fewer than 2 observations or zero variance", metric)

    composite = compose(standardized)

    # Phase one: every threshold from the full population.
    thresholds: Dict[str, float] = {
        HIGH_ENGAGEMENT_COLUMN: quantile_threshold(composite, quantile)
    }
    for metric in raw.columns:
        if metric in undefined:
            thresholds[f"high_{metric}"] = float("nan")
        else:
            thresholds[f"high_{metric}"] = quantile_threshold(raw[metric], quantile)

    # Phase two: per-record labels.
    frame = standardized.copy()
    frame[COMPOSITE_COLUMN] = composite
    frame[HIGH_ENGAGEMENT_COLUMN] = label_at_threshold(
        composite, thresholds[HIGH_ENGAGEMENT_COLUMN]
    )
    for metric in raw.columns:
        frame[f"high_{metric}"] = label_at_threshold(raw[metric], thresholds[f"high_{metric}"])

    logger.info(
        "Scored %d records: %d with composite, %d labeled high (q=%.3f)",
        len(frame),
        int(composite.notna().sum()),
        int(frame[HIGH_ENGAGEMENT_COLUMN].sum()),
        quantile,
    )
    return EngagementScores(
        frame=frame,
        quantile=quantile,
        thresholds=thresholds,
        undefined_metrics=undefined,
        metrics=list(raw.columns),
    )


__all__ = [
    "COMPOSITE_COLUMN",
    "EngagementScores",
    "HIGH_ENGAGEMENT_COLUMN",
    "compose",
    "label_at_threshold",
    "quantile_threshold",
    "score_engagement",
    "standardize",
]
