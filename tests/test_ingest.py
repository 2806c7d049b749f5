"""Tests for table loading and the classifier boundary."""

import numpy as np
import pandas as pd
import pytest

from engagement_analysis.errors import DataError
from engagement_analysis.ingest.classifier import classify_records
from engagement_analysis.ingest.loader import load_table
from engagement_analysis.preprocess.category_matrix import CategoryMatrix
from tests.factories import SMALL_SCHEMA, FakeClassifier, build_matrix, record_table


class TestLoadTable:
    def test_reads_csv(self, tmp_path, wide_frame):
        path = tmp_path / "records.csv"
        wide_frame.to_csv(path, index=False)
        loaded = load_table(path)
        assert len(loaded) == len(wide_frame)
        assert "theme_human interest" in loaded.columns

    def test_reads_parquet(self, tmp_path, wide_frame):
        path = tmp_path / "records.parquet"
        wide_frame.to_parquet(path, index=False)
        loaded = load_table(path)
        assert list(loaded.columns) == list(wide_frame.columns)
        np.testing.assert_allclose(loaded["views"].to_numpy(), wide_frame["views"].to_numpy())

    def test_missing_file(self, tmp_path):
        with pytest.raises(DataError, match="does not exist"):
            load_table(tmp_path / "absent.csv")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "records.xlsx"
        path.write_bytes(b"")
        with pytest.raises(DataError, match="Unsupported"):
            load_table(path)


@pytest.fixture
def text_frame():
    records = record_table(6)
    records["record_id"] = [f"t{idx}" for idx in range(6)]
    records["text"] = ["short", "a longer headline", None, "mid length", "x", "another one here"]
    return records


@pytest.fixture
def classifiers():
    return {
        "emotion": FakeClassifier(SMALL_SCHEMA.categories("emotion")),
        "theme": FakeClassifier(SMALL_SCHEMA.categories("theme"), missing=["politics"]),
    }


class TestClassifyRecords:
    def test_one_table_per_family(self, text_frame, classifiers):
        tables = classify_records(text_frame, classifiers, schema=SMALL_SCHEMA)
        assert set(tables) == {"emotion", "theme"}
        emotion = tables["emotion"]
        assert list(emotion.columns) == ["record_id", "joy", "anger"]
        assert emotion["record_id"].tolist() == text_frame["record_id"].tolist()
        assert emotion.loc[0, "joy"] == pytest.approx(0.5)

    def test_missing_text_and_categories_stay_missing(self, text_frame, classifiers):
        tables = classify_records(text_frame, classifiers, schema=SMALL_SCHEMA)
        assert tables["emotion"].iloc[2, 1:].isna().all()
        assert tables["theme"]["politics"].isna().all()
        # None text never reaches the classifier
        assert len(classifiers["emotion"].calls) == 5

    def test_threaded_matches_serial(self, text_frame):
        serial = classify_records(
            text_frame,
            {family: FakeClassifier(SMALL_SCHEMA.categories(family)) for family in SMALL_SCHEMA.families},
            schema=SMALL_SCHEMA,
        )
        threaded = classify_records(
            text_frame,
            {family: FakeClassifier(SMALL_SCHEMA.categories(family)) for family in SMALL_SCHEMA.families},
            schema=SMALL_SCHEMA,
            n_jobs=3,
        )
        for family in serial:
            pd.testing.assert_frame_equal(serial[family], threaded[family])

    def test_new_period_extends_matrix(self, text_frame):
        classifiers = {family: FakeClassifier(SMALL_SCHEMA.categories(family)) for family in SMALL_SCHEMA.families}
        tables = classify_records(text_frame, classifiers, schema=SMALL_SCHEMA)
        period = CategoryMatrix.from_frames(text_frame, tables, SMALL_SCHEMA)
        combined = build_matrix(n=10).extend(period)
        assert len(combined) == 16
        assert np.isnan(combined.wide("emotion").loc["t2", "joy"])

    def test_missing_classifier_rejected(self, text_frame):
        with pytest.raises(DataError, match="theme"):
            classify_records(text_frame, {"emotion": FakeClassifier(["joy"])}, schema=SMALL_SCHEMA)

    def test_missing_text_column_rejected(self, text_frame, classifiers):
        with pytest.raises(DataError, match="body"):
            classify_records(text_frame, classifiers, text_column="body", schema=SMALL_SCHEMA)
