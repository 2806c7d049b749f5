"""Shared test fixtures for engagement_analysis tests."""

import numpy as np
import pandas as pd
import pytest

from engagement_analysis.preprocess.category_matrix import CategoryMatrix
from tests.factories import SMALL_SCHEMA, build_matrix, synthetic_wide_frame


@pytest.fixture
def small_schema():
    return SMALL_SCHEMA


@pytest.fixture
def small_matrix() -> CategoryMatrix:
    """Twenty records over ten days with random counters and scores."""
    return build_matrix(n=20)


@pytest.fixture
def views_scenario_matrix() -> CategoryMatrix:
    """Five records; views = [10, 20, 30, NA, 50], other counters complete."""
    return build_matrix(
        n=5,
        metrics={
            "views": [10, 20, 30, np.nan, 50],
            "likes": [1, 5, 3, 8, 2],
            "comments": [0, 2, 1, 4, 3],
            "shares": [7, 1, 2, 6, 9],
        },
    )


@pytest.fixture
def wide_frame() -> pd.DataFrame:
    return synthetic_wide_frame()


@pytest.fixture
def logistic_frame() -> pd.DataFrame:
    """2000 rows with a known log odds ratio of 0.8 for ``x``."""
    rng = np.random.default_rng(42)
    n = 2000
    x = rng.normal(0, 1, n)
    source = rng.choice(["channel_a", "channel_b"], n)
    eta = -0.5 + 0.8 * x + 0.3 * (source == "channel_b")
    y = rng.uniform(0, 1, n) < 1 / (1 + np.exp(-eta))
    return pd.DataFrame(
        {
            "x": x,
            "noise": rng.normal(0, 1, n),
            "source_type": source,
            "label": pd.array(y, dtype="boolean"),
        },
        index=pd.Index([f"r{idx}" for idx in range(n)], name="record_id"),
    )
