"""End-to-end tests for the analysis pipeline."""

import json

import numpy as np
import pandas as pd
import pytest

from engagement_analysis.config import AnalysisConfig
from engagement_analysis.errors import ConfigError
from engagement_analysis.models.pipeline import run_analysis
from engagement_analysis.preprocess.category_matrix import CategoryMatrix
from tests.factories import synthetic_wide_frame


@pytest.fixture(scope="module")
def matrix() -> CategoryMatrix:
    return CategoryMatrix.from_wide(synthetic_wide_frame())


@pytest.fixture(scope="module")
def results(matrix):
    config = AnalysisConfig(smooth_categories=("joy",), n_jobs=2)
    return run_analysis(matrix, config)


class TestRunAnalysis:
    def test_correlations_cover_every_pair(self, results):
        # 24 categories x (4 metrics + composite)
        assert len(results.correlations) == 120
        assert set(results.correlations["family"]) == {"emotion", "theme"}
        assert "human interest" in set(results.correlations["category"])

    def test_joy_is_top_correlate_of_composite(self, results):
        composite = results.correlations[results.correlations["metric"] == "composite"]
        assert composite.iloc[0]["category"] == "joy"
        assert composite.iloc[0]["rho"] > 0

    def test_per_category_logistic_models(self, results):
        logistic = results.logistic
        # 24 single-category models x 5 outcomes, each with a source contrast row
        assert len(logistic) == 240
        assert set(logistic["outcome"]) == set(results.engagement.label_columns)
        joy = logistic[(logistic["term"] == "joy") & (logistic["outcome"] == "high_engagement")].iloc[0]
        assert joy["odds_ratio"] > 1
        assert joy["method"] in {"mle", "firth"}

    def test_pca_component_models(self, results):
        assert set(results.pca) == {"emotion", "theme"}
        terms = set(results.logistic_pca["term"])
        assert {"PC1", "PC2", "PC3"} <= terms
        assert (results.logistic_pca["model"] == "joint").all()

    def test_smooth_model_uses_remaining_family_as_controls(self, results):
        smooth = results.smooth
        assert smooth is not None
        assert smooth.terms["term"].tolist() == ["s(day)", "s(day):joy"]
        linear_terms = set(smooth.parametric["term"]) - {"(Intercept)", "source_type[channel_b]"}
        assert len(linear_terms) == 11
        assert "joy" not in linear_terms

    def test_cooccurrence_between_families(self, results):
        assert results.cooccurrence.matrix.shape == (12, 12)
        assert results.cooccurrence.n_top_tier >= 4

    def test_tables_and_summary(self, results):
        tables = results.tables()
        for name in ("correlations", "logistic_categories", "smooth_terms", "pca_emotion_loadings"):
            assert name in tables
            assert isinstance(tables[name], pd.DataFrame)
        summary = results.summary()
        assert summary["records"] == 400
        json.dumps(summary, default=lambda value: value.item() if isinstance(value, np.generic) else str(value))

    def test_matrix_is_not_mutated(self, matrix):
        records = matrix.records.copy()
        scores = matrix.scores.copy()
        run_analysis(matrix, AnalysisConfig())
        pd.testing.assert_frame_equal(matrix.records, records)
        pd.testing.assert_frame_equal(matrix.scores, scores)

    def test_smooth_model_skipped_without_categories(self, matrix):
        assert run_analysis(matrix, AnalysisConfig()).smooth is None
        assert "smooth_terms" not in run_analysis(matrix, AnalysisConfig()).tables()


class TestPipelineConfigErrors:
    def test_unknown_smooth_category(self, matrix):
        with pytest.raises(ConfigError, match="Unknown category"):
            run_analysis(matrix, AnalysisConfig(smooth_categories=("boredom",)))

    def test_unknown_pca_family(self, matrix):
        with pytest.raises(ConfigError, match="PCA family"):
            run_analysis(matrix, AnalysisConfig(pca_family="mood"))

    def test_void_threshold_above_presence(self, matrix):
        with pytest.raises(ConfigError):
            run_analysis(matrix, AnalysisConfig(void_threshold=0.4, presence_threshold=0.3))
