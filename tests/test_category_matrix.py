"""Tests for category matrix construction and the input boundary rules."""

import numpy as np
import pandas as pd
import pytest

from engagement_analysis.errors import DataError
from engagement_analysis.preprocess.category_matrix import CategoryMatrix
from engagement_analysis.preprocess.schema import MatrixSchema
from tests.factories import SMALL_SCHEMA, build_matrix, family_tables, record_table


class TestFromFrames:
    def test_builds_records_and_long_scores(self, small_matrix):
        assert len(small_matrix) == 20
        assert small_matrix.families == ["emotion", "theme"]
        # 20 records x 4 categories
        assert len(small_matrix.scores) == 80
        assert list(small_matrix.scores.columns) == ["record_id", "family", "category", "score"]

    def test_wide_is_in_schema_order(self, small_matrix):
        wide = small_matrix.wide("theme")
        assert list(wide.columns) == ["politics", "human interest"]
        assert list(wide.index) == list(small_matrix.record_ids)

    def test_duplicate_record_ids_rejected(self):
        records = record_table(4)
        records.loc[3, "record_id"] = records.loc[0, "record_id"]
        with pytest.raises(DataError, match="duplicate"):
            CategoryMatrix.from_frames(records, family_tables(records["record_id"]), SMALL_SCHEMA)

    def test_duplicate_ids_in_family_table_rejected(self):
        records = record_table(4)
        families = family_tables(records["record_id"])
        families["emotion"] = pd.concat([families["emotion"], families["emotion"].iloc[[0]]])
        with pytest.raises(DataError, match="duplicate"):
            CategoryMatrix.from_frames(records, families, SMALL_SCHEMA)

    def test_missing_metric_column_rejected(self):
        records = record_table(4).drop(columns=["likes"])
        with pytest.raises(DataError, match="likes"):
            CategoryMatrix.from_frames(records, family_tables(record_table(4)["record_id"]), SMALL_SCHEMA)

    def test_missing_category_column_rejected(self):
        records = record_table(4)
        families = family_tables(records["record_id"])
        families["theme"] = families["theme"].drop(columns=["human interest"])
        with pytest.raises(DataError, match="human interest"):
            CategoryMatrix.from_frames(records, families, SMALL_SCHEMA)

    def test_all_missing_category_column_rejected(self):
        records = record_table(4)
        families = family_tables(
            records["record_id"], overrides={"emotion": {"anger": [np.nan] * 4}}
        )
        with pytest.raises(DataError, match="all-missing"):
            CategoryMatrix.from_frames(records, families, SMALL_SCHEMA)

    def test_out_of_range_scores_become_missing(self):
        records = record_table(4)
        families = family_tables(
            records["record_id"], overrides={"emotion": {"joy": [0.2, 1.5, -0.1, 0.9]}}
        )
        matrix = CategoryMatrix.from_frames(records, families, SMALL_SCHEMA)
        joy = matrix.wide("emotion")["joy"]
        assert joy.tolist()[0] == pytest.approx(0.2)
        assert joy.isna().tolist() == [False, True, True, False]

    def test_column_entirely_out_of_range_rejected(self):
        records = record_table(4)
        families = family_tables(
            records["record_id"], overrides={"theme": {"politics": [1.2, -0.5, 3.0, 7.0]}}
        )
        with pytest.raises(DataError, match="all-missing"):
            CategoryMatrix.from_frames(records, families, SMALL_SCHEMA)

    def test_record_absent_from_family_keeps_row(self):
        records = record_table(5)
        families = family_tables(records["record_id"])
        families["theme"] = families["theme"].iloc[:3]
        matrix = CategoryMatrix.from_frames(records, families, SMALL_SCHEMA)
        theme = matrix.wide("theme")
        assert len(theme) == 5
        assert theme.iloc[3:].isna().all().all()
        assert matrix.wide("emotion").notna().all().all()

    def test_negative_counters_become_missing(self):
        matrix = build_matrix(n=4, metrics={"views": [5, -1, 3, 2]})
        assert matrix.metric_table()["views"].isna().tolist() == [False, True, False, False]

    def test_source_type_prefix_rule(self, small_matrix):
        source = small_matrix.source_type()
        # labels cycle News Daily, news-wire, Blog Post, forum
        assert source.iloc[:4].tolist() == ["channel_a", "channel_a", "channel_b", "channel_b"]

    def test_day_index_starts_at_one(self, small_matrix):
        day = small_matrix.day_index()
        assert day.min() == 1
        assert day.max() == 10
        assert day.name == "day"


class TestFromWide:
    def test_category_names_with_whitespace(self):
        records = record_table(6)
        families = family_tables(records["record_id"])
        wide = records.copy()
        for family, table in families.items():
            for category in SMALL_SCHEMA.categories(family):
                wide[f"{family}_{category}"] = table[category].to_numpy()
        matrix = CategoryMatrix.from_wide(wide, SMALL_SCHEMA)
        np.testing.assert_allclose(
            matrix.wide("theme")["human interest"].to_numpy(),
            families["theme"]["human interest"].to_numpy(),
        )

    def test_missing_wide_column_rejected(self):
        with pytest.raises(DataError):
            CategoryMatrix.from_wide(record_table(3), SMALL_SCHEMA)


class TestExtend:
    def test_extend_appends_records(self):
        first = build_matrix(n=6)
        records = record_table(4, seed=3)
        records["record_id"] = [f"new{idx}" for idx in range(4)]
        second = CategoryMatrix.from_frames(records, family_tables(records["record_id"], seed=3), SMALL_SCHEMA)
        combined = first.extend(second)
        assert len(combined) == 10
        assert len(first) == 6
        assert combined.wide("emotion").shape == (10, 2)

    def test_overlapping_ids_rejected(self):
        first = build_matrix(n=6)
        with pytest.raises(DataError, match="both matrices"):
            first.extend(build_matrix(n=3))

    def test_schema_mismatch_rejected(self):
        other_schema = MatrixSchema(families={"emotion": ("joy",), "theme": ("politics",)})
        records = record_table(3, schema=other_schema)
        records["record_id"] = ["x1", "x2", "x3"]
        other = CategoryMatrix.from_frames(records, family_tables(records["record_id"], other_schema), other_schema)
        with pytest.raises(DataError, match="schema"):
            build_matrix(n=3).extend(other)
