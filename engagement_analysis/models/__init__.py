"""
Statistical models: correlations, logistic fits, smooth regressions, PCA and
co-occurrence summaries.
"""

from .cooccurrence import CooccurrenceResult, analyze_cooccurrence
from .correlation import CorrelationResult, correlate_all, spearman
from .logistic import fit_each_predictor, fit_logistic, fit_outcomes
from .pca import PCAResult, reduce_family
from .pipeline import AnalysisResults, run_analysis
from .predictors import Predictor, PredictorSet
from .smoothing import SmoothFitResult, fit_smooth_model

__all__ = [
    "AnalysisResults",
    "CooccurrenceResult",
    "CorrelationResult",
    "PCAResult",
    "Predictor",
    "PredictorSet",
    "SmoothFitResult",
    "analyze_cooccurrence",
    "correlate_all",
    "fit_each_predictor",
    "fit_logistic",
    "fit_outcomes",
    "fit_smooth_model",
    "reduce_family",
    "run_analysis",
    "spearman",
]
