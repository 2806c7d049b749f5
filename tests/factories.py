"""Shared test factories for engagement_analysis tests."""

from typing import Dict, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from engagement_analysis.preprocess.category_matrix import CategoryMatrix
from engagement_analysis.preprocess.schema import MatrixSchema

SMALL_SCHEMA = MatrixSchema(
    metrics=("views", "likes", "comments", "shares"),
    families={"emotion": ("joy", "anger"), "theme": ("politics", "human interest")},
)

SOURCE_LABELS = ["News Daily", "news-wire", "Blog Post", "forum"]


def record_table(
    n: int,
    metrics: Optional[Mapping[str, Sequence[float]]] = None,
    schema: MatrixSchema = SMALL_SCHEMA,
    seed: int = 0,
    n_days: int = 10,
) -> pd.DataFrame:
    """Record table with ids ``r000..``, dates spread over ``n_days`` and random counters."""
    rng = np.random.default_rng(seed)
    metrics = dict(metrics or {})
    frame = pd.DataFrame(
        {
            "record_id": [f"r{idx:03d}" for idx in range(n)],
            "date": pd.Timestamp("2024-03-01") + pd.to_timedelta(np.arange(n) % n_days, unit="D"),
            "source_label": [SOURCE_LABELS[idx % len(SOURCE_LABELS)] for idx in range(n)],
        }
    )
    for metric in schema.metrics:
        if metric in metrics:
            frame[metric] = np.asarray(metrics[metric], dtype=float)
        else:
            frame[metric] = rng.integers(0, 1000, n).astype(float)
    return frame


def family_tables(
    record_ids: Sequence[str],
    schema: MatrixSchema = SMALL_SCHEMA,
    seed: int = 0,
    overrides: Optional[Mapping[str, Mapping[str, Sequence[float]]]] = None,
) -> Dict[str, pd.DataFrame]:
    """One uniform-score table per family; ``overrides[family][category]`` replaces a column."""
    rng = np.random.default_rng(seed + 1)
    overrides = overrides or {}
    tables = {}
    for family in schema.families:
        table = pd.DataFrame({"record_id": list(record_ids)})
        for category in schema.categories(family):
            values = overrides.get(family, {}).get(category)
            table[category] = (
                np.asarray(values, dtype=float) if values is not None else rng.uniform(0, 1, len(record_ids))
            )
        tables[family] = table
    return tables


def build_matrix(
    n: int = 20,
    metrics: Optional[Mapping[str, Sequence[float]]] = None,
    schema: MatrixSchema = SMALL_SCHEMA,
    seed: int = 0,
    n_days: int = 10,
) -> CategoryMatrix:
    records = record_table(n, metrics, schema, seed, n_days)
    return CategoryMatrix.from_frames(records, family_tables(records["record_id"], schema, seed), schema)


def synthetic_wide_frame(
    n: int = 400, n_days: int = 30, seed: int = 7, schema: Optional[MatrixSchema] = None
) -> pd.DataFrame:
    """Wide table in the default layout where joy and trend drive engagement."""
    schema = schema or MatrixSchema()
    rng = np.random.default_rng(seed)
    day = rng.integers(0, n_days, n)
    frame = pd.DataFrame(
        {
            "record_id": [f"rec-{idx:05d}" for idx in range(n)],
            "date": pd.Timestamp("2024-01-01") + pd.to_timedelta(day, unit="D"),
            "source_label": rng.choice(SOURCE_LABELS, n),
        }
    )
    for family in schema.families:
        for column in schema.family_columns(family):
            frame[column] = rng.uniform(0, 1, n)

    joy = frame["emotion_joy"].to_numpy() if "emotion_joy" in frame else np.zeros(n)
    signal = 1.5 * joy + np.sin(day / max(n_days, 1) * np.pi)
    for offset, metric in enumerate(schema.metrics):
        scale = 10.0 ** (3 - offset)
        frame[metric] = np.round(np.exp(rng.normal(signal, 0.6)) * scale)
    return frame


class FakeClassifier:
    """Deterministic classifier returning fixed scores keyed by text length.

    Records every text it was asked to score.
    """

    def __init__(self, categories: Sequence[str], missing: Sequence[str] = ()) -> None:
        self.categories = list(categories)
        self.missing = set(missing)
        self.calls = []

    def classify(self, text: str) -> Dict[str, float]:
        self.calls.append(text)
        base = (len(text) % 10) / 10.0
        return {
            name: round((base + idx * 0.05) % 1.0, 4)
            for idx, name in enumerate(self.categories)
            if name not in self.missing
        }
