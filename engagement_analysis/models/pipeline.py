"""
End-to-end analysis run over one category matrix.

Each stage consumes named inputs and produces its own immutable output; no
stage rebinds or mutates another stage's table. The only shared input after
scoring is ``analysis_frame``, which every downstream stage reads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import pandas as pd

from ..config import AnalysisConfig
from ..errors import ConfigError
from ..preprocess.category_matrix import CategoryMatrix
from ..preprocess.engagement import COMPOSITE_COLUMN, EngagementScores, score_engagement
from ..preprocess.schema import SOURCE_TYPE_COLUMN
from .cooccurrence import CooccurrenceResult, analyze_cooccurrence
from .correlation import correlate_all
from .logistic import fit_outcomes
from .pca import PCAResult, reduce_family
from .predictors import PredictorSet
from .smoothing import SmoothFitResult, fit_smooth_model

logger = logging.getLogger(__name__)


def category_column(family: str, category: str) -> str:
    return f"{family}__{category}"


@dataclass(frozen=True)
class AnalysisResults:
    config: AnalysisConfig
    engagement: EngagementScores
    analysis_frame: pd.DataFrame
    correlations: pd.DataFrame
    logistic: pd.DataFrame
    pca: Dict[str, PCAResult]
    logistic_pca: pd.DataFrame
    smooth: Optional[SmoothFitResult]
    cooccurrence: CooccurrenceResult

    def tables(self) -> Dict[str, pd.DataFrame]:
        """Every output table keyed by a stable file-friendly name."""
        tables: Dict[str, pd.DataFrame] = {
            "engagement_scores": self.engagement.frame.reset_index(),
            "correlations": self.correlations,
            "logistic_categories": self.logistic,
            "logistic_pca": self.logistic_pca,
            "cooccurrence_matrix": self.cooccurrence.matrix.reset_index(),
            "cooccurrence_voids": self.cooccurrence.voids,
            "cooccurrence_frequencies": self.cooccurrence.frequencies,
        }
        for family, result in self.pca.items():
            tables[f"pca_{family}_variance"] = result.variance
            tables[f"pca_{family}_loadings"] = result.loadings.rename_axis("component").reset_index()
            tables[f"pca_{family}_scores"] = result.scores.reset_index()
        if self.smooth is not None:
            tables["smooth_terms"] = self.smooth.terms
            tables["smooth_parametric"] = self.smooth.parametric
            tables["smooth_baseline"] = self.smooth.baseline
        return tables

    def summary(self) -> Dict[str, object]:
        logistic_methods = {
            str(method): int(count) for method, count in self.logistic["method"].value_counts().items()
        }
        return {
            "records": int(len(self.analysis_frame)),
            "config": self.config.to_dict(),
            "engagement": self.engagement.summary(),
            "correlations": {
                "pairs": int(len(self.correlations)),
                "defined": int(self.correlations["rho"].notna().sum()),
            },
            "logistic": {"rows": int(len(self.logistic)), "methods": logistic_methods},
            "pca": {family: result.summary() for family, result in self.pca.items()},
            "smooth": None if self.smooth is None else self.smooth.summary(),
            "cooccurrence": self.cooccurrence.summary(),
        }


def build_analysis_frame(matrix: CategoryMatrix, scores: EngagementScores) -> pd.DataFrame:
    """Records + engagement scores + day index + every family's category columns."""
    pieces = [
        matrix.records[[SOURCE_TYPE_COLUMN, *matrix.metrics]],
        scores.frame,
        matrix.day_index().to_frame(),
    ]
    for family in matrix.families:
        wide = matrix.wide(family)
        wide.columns = [category_column(family, name) for name in wide.columns]
        pieces.append(wide)
    return pd.concat(pieces, axis=1)


def _category_pairs(matrix: CategoryMatrix, families: Optional[List[str]] = None) -> List[Tuple[str, str]]:
    families = matrix.families if families is None else families
    return [
        (category_column(family, name), name)
        for family in families
        for name in matrix.categories(family)
    ]


def _resolve_categories(matrix: CategoryMatrix, names: List[str]) -> List[Tuple[str, str]]:
    pairs = []
    for name in names:
        owners = [family for family in matrix.families if name in matrix.categories(family)]
        if not owners:
            raise ConfigError(f"Unknown category '{name}'")
        if len(owners) > 1:
            raise ConfigError(f"Category '{name}' is ambiguous across families {owners}")
        pairs.append((category_column(owners[0], name), name))
    return pairs


def run_correlations(
    matrix: CategoryMatrix, frame: pd.DataFrame, config: AnalysisConfig
) -> pd.DataFrame:
    pairs = _category_pairs(matrix)
    table = correlate_all(
        frame,
        [column for column, _ in pairs],
        [*matrix.metrics, COMPOSITE_COLUMN],
        n_jobs=config.n_jobs,
    )
    family_of = {category_column(f, c): f for f in matrix.families for c in matrix.categories(f)}
    display = dict(pairs)
    table.insert(0, "family", table["category"].map(family_of))
    table["category"] = table["category"].map(display)
    return table


def run_smooth_model(
    matrix: CategoryMatrix, frame: pd.DataFrame, config: AnalysisConfig
) -> Optional[SmoothFitResult]:
    if not config.smooth_categories:
        logger.info("No smooth-interacting categories configured; smooth model skipped")
        return None
    smooth_pairs = _resolve_categories(matrix, list(config.smooth_categories))
    if config.linear_categories is None:
        families = sorted({column.split("__", 1)[0] for column, _ in smooth_pairs})
        smooth_columns = {column for column, _ in smooth_pairs}
        linear_pairs = [
            pair for pair in _category_pairs(matrix, families) if pair[0] not in smooth_columns
        ]
    else:
        linear_pairs = _resolve_categories(matrix, list(config.linear_categories))
    return fit_smooth_model(
        frame,
        smooth=PredictorSet.from_pairs(smooth_pairs, prefix="s"),
        linear=PredictorSet.from_pairs(linear_pairs, prefix="l"),
        response=COMPOSITE_COLUMN,
        day="day",
        config=config.smoothing,
    )


def run_analysis(matrix: CategoryMatrix, config: Optional[AnalysisConfig] = None) -> AnalysisResults:
    """
    Run every analysis stage.

    Args:
        matrix: immutable base category matrix
        config: analysis configuration (validated here)

    Returns:
        AnalysisResults holding one immutable output per stage
    """
    cfg = (config or AnalysisConfig()).validate()
    pca_family = cfg.pca_family or matrix.families[0]
    if pca_family not in matrix.families:
        raise ConfigError(f"Unknown PCA family '{pca_family}'")
    _resolve_categories(matrix, [*cfg.smooth_categories, *(cfg.linear_categories or ())])

    engagement = score_engagement(matrix, cfg.quantile)
    analysis_frame = build_analysis_frame(matrix, engagement)

    correlations = run_correlations(matrix, analysis_frame, cfg)

    category_predictors = PredictorSet.from_pairs(_category_pairs(matrix), prefix="c")
    logistic = fit_outcomes(
        analysis_frame,
        engagement.label_columns,
        category_predictors,
        control=SOURCE_TYPE_COLUMN,
        config=cfg.logistic,
        per_predictor=True,
        n_jobs=cfg.n_jobs,
    )

    pca = {family: reduce_family(matrix.wide(family), family) for family in matrix.families}
    reduced = pca[pca_family]
    if reduced.defined:
        n_components = min(cfg.pca_components, reduced.scores.shape[1])
        pc_predictors, pc_scores = reduced.predictors(n_components)
        pca_frame = analysis_frame.join(pc_scores, how="left")
        logistic_pca = fit_outcomes(
            pca_frame,
            engagement.label_columns,
            pc_predictors,
            control=SOURCE_TYPE_COLUMN,
            config=cfg.logistic,
            n_jobs=cfg.n_jobs,
        )
    else:
        logger.warning("PCA for '%s' is undefined; component models skipped", pca_family)
        logistic_pca = pd.DataFrame(columns=logistic.columns)

    smooth = run_smooth_model(matrix, analysis_frame, cfg)

    families = matrix.families
    cooccurrence = analyze_cooccurrence(
        matrix.wide(families[0]),
        matrix.wide(families[1]) if len(families) > 1 else None,
        composite=engagement.composite,
        presence_threshold=cfg.presence_threshold,
        void_threshold=cfg.void_threshold,
        top_fraction=cfg.top_engagement_fraction,
        tier_filter=cfg.cooccurrence_tier_filter,
    )

    return AnalysisResults(
        config=cfg,
        engagement=engagement,
        analysis_frame=analysis_frame,
        correlations=correlations,
        logistic=logistic,
        pca=pca,
        logistic_pca=logistic_pca,
        smooth=smooth,
        cooccurrence=cooccurrence,
    )


__all__ = [
    "AnalysisResults",
    "build_analysis_frame",
    "category_column",
    "run_analysis",
    "run_correlations",
    "run_smooth_model",
]
