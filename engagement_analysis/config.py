"""Configuration dataclasses for an analysis run."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, Optional, Sequence, Tuple

from .errors import ConfigError


@dataclass
class LogisticConfig:
    max_iter: int = 200
    coef_bound: float = 10.0
    firth_max_iter: int = 100
    firth_tol: float = 1e-8
    firth_max_step: float = 5.0
    ci_level: float = 0.95
    check_separation: bool = True


@dataclass
class SmoothingConfig:
    basis_size: int = 10
    degree: int = 3
    min_unique_days: int = 4
    min_variance: float = 1e-10
    log_lambda_bounds: Tuple[float, float] = (-12.0, 18.0)
    max_iter: int = 200


@dataclass
class AnalysisConfig:
    quantile: float = 0.90
    presence_threshold: float = 0.3
    void_threshold: float = 0.05
    top_engagement_fraction: float = 0.01
    cooccurrence_tier_filter: bool = False
    pca_components: int = 3
    pca_family: Optional[str] = None
    smooth_categories: Sequence[str] = ()
    linear_categories: Optional[Sequence[str]] = None
    n_jobs: int = 1
    logistic: LogisticConfig = field(default_factory=LogisticConfig)
    smoothing: SmoothingConfig = field(default_factory=SmoothingConfig)

    def validate(self) -> "AnalysisConfig":
        if not 0 < self.quantile < 1:
            raise ConfigError(f"quantile must be in (0, 1), got {self.quantile}")
        if not 0 < self.presence_threshold <= 1:
            raise ConfigError(
                f"presence_threshold must be in (0, 1], got {self.presence_threshold}"
            )
        if self.void_threshold < 0:
            raise ConfigError(f"void_threshold must be non-negative, got {self.void_threshold}")
        if self.void_threshold >= self.presence_threshold:
            raise ConfigError(
                "void_threshold ({void}) must be below presence_threshold ({presence})".format(
                    void=self.void_threshold, presence=self.presence_threshold
                )
            )
        if not 0 < self.top_engagement_fraction <= 1:
            raise ConfigError(
                f"top_engagement_fraction must be in (0, 1], got {self.top_engagement_fraction}"
            )
        if self.pca_components < 1:
            raise ConfigError(f"pca_components must be positive, got {self.pca_components}")
        if self.n_jobs < 1:
            raise ConfigError(f"n_jobs must be positive, got {self.n_jobs}")
        if not 0 < self.logistic.ci_level < 1:
            raise ConfigError(f"ci_level must be in (0, 1), got {self.logistic.ci_level}")
        if self.smoothing.basis_size < self.smoothing.degree + 2:
            raise ConfigError("smoothing.basis_size must be at least degree + 2")
        if self.smoothing.min_unique_days < 2:
            raise ConfigError(
                f"smoothing.min_unique_days must be at least 2, got {self.smoothing.min_unique_days}"
            )
        return self

    def to_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["smooth_categories"] = list(self.smooth_categories)
        if self.linear_categories is not None:
            payload["linear_categories"] = list(self.linear_categories)
        return payload


__all__ = ["AnalysisConfig", "LogisticConfig", "SmoothingConfig"]
