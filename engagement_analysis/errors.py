"""Error taxonomy for the engagement analysis pipeline.

``DataError`` and ``ConfigError`` abort a run. ``FitFailure`` is raised inside
a single model fit and is always caught by the fitter that owns the unit of
work, which reports the affected rows as undefined instead.
"""


class EngagementAnalysisError(Exception):
    """Base class for pipeline errors."""


class DataError(EngagementAnalysisError, ValueError):
    """Input table violates the record schema (duplicate ids, missing columns)."""


class ConfigError(EngagementAnalysisError, ValueError):
    """Invalid analysis configuration."""


class FitFailure(EngagementAnalysisError, RuntimeError):
    """A model estimator failed to produce finite, converged estimates."""


__all__ = ["EngagementAnalysisError", "DataError", "ConfigError", "FitFailure"]
