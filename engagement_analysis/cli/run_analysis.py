#!/usr/bin/env python3
"""Engagement analysis CLI tool.

Usage:
    python -m engagement_analysis.cli.run_analysis --input data/records.parquet --output-dir outputs/
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
import numpy as np

from engagement_analysis.config import AnalysisConfig
from engagement_analysis.errors import ConfigError, DataError
from engagement_analysis.ingest.loader import load_table
from engagement_analysis.models.pipeline import AnalysisResults, run_analysis
from engagement_analysis.preprocess.category_matrix import CategoryMatrix

logger = logging.getLogger(__name__)


def _json_default(value):
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (tuple, set)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _write_tables(results: AnalysisResults, output_dir: Path) -> None:
    output_dir.mkdir(parents=True, exist_ok=True)
    for name, table in results.tables().items():
        table.to_csv(output_dir / f"{name}.csv", index=False)
    summary_path = output_dir / "summary.json"
    summary_path.write_text(json.dumps(results.summary(), indent=2, default=_json_default))
    logger.info("Wrote %d tables and %s", len(results.tables()), summary_path)


@click.command()
@click.option(
    "--input",
    "-i",
    "input_paths",
    multiple=True,
    required=True,
    type=click.Path(),
    help="Wide record table(s), parquet or CSV; later tables extend earlier ones",
)
@click.option(
    "--output-dir",
    "-o",
    default="./outputs/engagement",
    type=click.Path(),
    help="Directory for CSV tables and summary.json",
)
@click.option("--quantile", default=0.90, type=float, help="High-engagement quantile")
@click.option("--presence-threshold", default=0.3, type=float, help="Score at which a record is tagged with a category")
@click.option("--void-threshold", default=0.05, type=float, help="Mean co-occurrence below which a pair is a void")
@click.option("--top-fraction", default=0.01, type=float, help="Fraction of records in the top engagement tier")
@click.option("--tier-filter", is_flag=True, help="Restrict the co-occurrence matrix and voids to the top tier")
@click.option("--pca-components", default=3, type=int, help="Components retained as logistic predictors")
@click.option("--pca-family", default=None, help="Family reduced for the component models (default: first family)")
@click.option(
    "--smooth-category",
    "smooth_categories",
    multiple=True,
    help="Category with a time-varying smooth effect (repeatable)",
)
@click.option(
    "--linear-category",
    "linear_categories",
    multiple=True,
    help="Linear control category for the smooth model (repeatable)",
)
@click.option("--n-jobs", default=1, type=int, help="Worker threads for independent fits")
def main(
    input_paths,
    output_dir,
    quantile,
    presence_threshold,
    void_threshold,
    top_fraction,
    tier_filter,
    pca_components,
    pca_family,
    smooth_categories,
    linear_categories,
    n_jobs,
):
    """Run the engagement analysis over one or more record tables."""

    logging.basicConfig(level=logging.INFO)

    config = AnalysisConfig(
        quantile=quantile,
        presence_threshold=presence_threshold,
        void_threshold=void_threshold,
        top_engagement_fraction=top_fraction,
        cooccurrence_tier_filter=tier_filter,
        pca_components=pca_components,
        pca_family=pca_family,
        smooth_categories=tuple(smooth_categories),
        linear_categories=tuple(linear_categories) if linear_categories else None,
        n_jobs=n_jobs,
    )

    try:
        config.validate()
        matrix = None
        for path in input_paths:
            period = CategoryMatrix.from_wide(load_table(path))
            matrix = period if matrix is None else matrix.extend(period)
        results = run_analysis(matrix, config)
    except (DataError, ConfigError) as exc:
        logger.error("%s", exc)
        sys.exit(1)

    _write_tables(results, Path(output_dir))

    summary = results.summary()
    print("\nEngagement Analysis Summary:")
    print(f"Total records: {summary['records']}")
    print(f"High-engagement records: {summary['engagement']['high_engagement']}")
    print(f"Correlation pairs: {summary['correlations']['pairs']}")
    print(f"Logistic rows by method: {summary['logistic']['methods']}")
    print(f"Output directory: {output_dir}")


if __name__ == "__main__":
    main()
