"""Tests for analysis configuration validation."""

import json

import pytest

from engagement_analysis.config import AnalysisConfig, SmoothingConfig
from engagement_analysis.errors import ConfigError


class TestAnalysisConfig:
    def test_defaults_are_valid(self):
        config = AnalysisConfig()
        assert config.validate() is config

    @pytest.mark.parametrize(
        "overrides",
        [
            {"quantile": 0.0},
            {"quantile": 1.0},
            {"presence_threshold": 0.0},
            {"void_threshold": -0.1},
            {"void_threshold": 0.3, "presence_threshold": 0.3},
            {"void_threshold": 0.5, "presence_threshold": 0.3},
            {"top_engagement_fraction": 0.0},
            {"pca_components": 0},
            {"n_jobs": 0},
            {"smoothing": SmoothingConfig(min_unique_days=1)},
            {"smoothing": SmoothingConfig(basis_size=4, degree=3)},
        ],
    )
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ConfigError):
            AnalysisConfig(**overrides).validate()

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            AnalysisConfig(quantile=2.0).validate()

    def test_to_dict_is_json_ready(self):
        payload = AnalysisConfig(smooth_categories=("joy",)).to_dict()
        assert payload["smooth_categories"] == ["joy"]
        assert payload["logistic"]["coef_bound"] == 10.0
        json.dumps(payload)
