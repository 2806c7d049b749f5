"""Principal component reduction of one category family."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from .predictors import PredictorSet

logger = logging.getLogger(__name__)

MIN_COMPLETE_ROWS = 2


@dataclass(frozen=True)
class PCAResult:
    family: str
    variance: pd.DataFrame
    loadings: pd.DataFrame
    scores: pd.DataFrame
    n_input: int
    dropped_ids: List[str] = field(default_factory=list)

    @property
    def n_dropped(self) -> int:
        return len(self.dropped_ids)

    @property
    def defined(self) -> bool:
        return not self.loadings.empty

    def top(self, n_components: int) -> pd.DataFrame:
        """Scores of the first ``n_components`` components."""
        return self.scores.iloc[:, :n_components].copy()

    def predictors(self, n_components: int) -> Tuple[PredictorSet, pd.DataFrame]:
        """Predictor set + score frame for the retained components."""
        retained = self.top(n_components)
        return PredictorSet.from_columns(list(retained.columns), prefix="pc"), retained

    def summary(self) -> Dict[str, object]:
        return {
            "family": self.family,
            "n_input": self.n_input,
            "n_used": self.n_input - self.n_dropped,
            "n_dropped": self.n_dropped,
            "components": int(len(self.variance)),
            "variance_ratio": self.variance["variance_ratio"].round(6).tolist(),
        }


def reduce_family(wide: pd.DataFrame, family: str = "") -> PCAResult:
    """
    Standardize each category and decompose the complete rows.

    Args:
        wide: record × category scores for one family, indexed by record id
        family: family name carried through to the result

    Returns:
        PCAResult with the full ordered decomposition. Rows with any missing
        category are excluded and listed in ``dropped_ids``.
    """
    complete = wide.notna().all(axis=1)
    dropped_ids = [str(idx) for idx in wide.index[~complete]]
    data = wide.loc[complete]
    if dropped_ids:
        logger.info(
            "PCA '%s': %d of %d records dropped for missing category scores",
            family,
            len(dropped_ids),
            len(wide),
        )

    if len(data) < MIN_COMPLETE_ROWS:
        logger.warning("PCA '%s' undefined: %d complete records", family, len(data))
        return PCAResult(
            family=family,
            variance=pd.DataFrame(columns=["component", "eigenvalue", "variance_ratio", "cumulative"]),
            loadings=pd.DataFrame(columns=list(wide.columns)),
            scores=pd.DataFrame(index=data.index),
            n_input=len(wide),
            dropped_ids=dropped_ids,
        )

    scaled = StandardScaler().fit_transform(data.to_numpy(dtype=float))
    n_components = min(scaled.shape)
    pca = PCA(n_components=n_components, svd_solver="full")
    component_scores = pca.fit_transform(scaled)

    names = [f"PC{idx + 1}" for idx in range(n_components)]
    loadings = pd.DataFrame(pca.components_, index=names, columns=list(wide.columns))
    scores = pd.DataFrame(component_scores, index=data.index, columns=names)
    ratio = np.nan_to_num(pca.explained_variance_ratio_)
    variance = pd.DataFrame(
        {
            "component": names,
            "eigenvalue": pca.explained_variance_,
            "variance_ratio": ratio,
            "cumulative": np.cumsum(ratio),
        }
    )
    logger.info(
        "PCA '%s': %d components, first explains %.1f%% of variance",
        family,
        n_components,
        100.0 * ratio[0],
    )
    return PCAResult(
        family=family,
        variance=variance,
        loadings=loadings,
        scores=scores,
        n_input=len(wide),
        dropped_ids=dropped_ids,
    )


__all__ = ["PCAResult", "reduce_family"]
