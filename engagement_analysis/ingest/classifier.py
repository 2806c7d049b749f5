"""
Boundary to the upstream text classifier.

The classifier itself lives outside this package. Anything that maps a text
to ``{category: score}`` can be plugged in; this module only turns its
answers into per-family score tables that ``CategoryMatrix.from_frames``
accepts.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Mapping, Optional, Protocol

import numpy as np
import pandas as pd

from ..errors import DataError
from ..preprocess.schema import ID_COLUMN, MatrixSchema

logger = logging.getLogger(__name__)


class TextClassifier(Protocol):
    def classify(self, text: str) -> Mapping[str, float]:
        ...


def _score_row(classifier: TextClassifier, text: object, categories: List[str]) -> List[float]:
    if text is None or (isinstance(text, float) and np.isnan(text)):
        return [np.nan] * len(categories)
    result = classifier.classify(str(text))
    return [float(result[name]) if name in result else np.nan for name in categories]


def classify_records(
    frame: pd.DataFrame,
    classifiers: Mapping[str, TextClassifier],
    text_column: str = "text",
    schema: Optional[MatrixSchema] = None,
    n_jobs: int = 1,
) -> Dict[str, pd.DataFrame]:
    """
    Score every record's text for each category family.

    Args:
        frame: table with the identifier and text columns
        classifiers: family name -> classifier for that family
        text_column: column holding the text to classify
        schema: category layout (defaults to emotions/themes)
        n_jobs: worker threads per family

    Returns:
        family name -> table of identifier + one column per category.
        Categories the classifier does not return are left missing.
    """
    schema = schema or MatrixSchema()
    for column in (ID_COLUMN, text_column):
        if column not in frame.columns:
            raise DataError(f"Classifier input is missing column '{column}'")
    missing = [family for family in schema.families if family not in classifiers]
    if missing:
        raise DataError(f"No classifier supplied for families: {missing}")

    texts = frame[text_column].tolist()
    tables: Dict[str, pd.DataFrame] = {}
    for family in schema.families:
        categories = list(schema.categories(family))
        classifier = classifiers[family]
        if n_jobs > 1:
            with ThreadPoolExecutor(max_workers=n_jobs) as pool:
                rows = list(pool.map(lambda text: _score_row(classifier, text, categories), texts))
        else:
            rows = [_score_row(classifier, text, categories) for text in texts]

        table = pd.DataFrame(rows, columns=categories, dtype=float)
        table.insert(0, ID_COLUMN, frame[ID_COLUMN].to_numpy())
        unscored = int(table[categories].isna().all(axis=1).sum())
        if unscored:
            logger.warning("Family '%s': %d records received no scores", family, unscored)
        logger.info("Classified %d records for family '%s'", len(table), family)
        tables[family] = table
    return tables


__all__ = ["TextClassifier", "classify_records"]
