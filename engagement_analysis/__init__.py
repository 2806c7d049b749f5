"""
Engagement Analysis Package

Statistical association between emotion/theme category scores of short text
records and audience engagement, across time and publication channel.
"""

__version__ = "0.1.0"

from . import ingest, models, preprocess
from .config import AnalysisConfig, LogisticConfig, SmoothingConfig
from .errors import ConfigError, DataError, EngagementAnalysisError, FitFailure

__all__ = [
    "AnalysisConfig",
    "ConfigError",
    "DataError",
    "EngagementAnalysisError",
    "FitFailure",
    "LogisticConfig",
    "SmoothingConfig",
    "ingest",
    "models",
    "preprocess",
]
