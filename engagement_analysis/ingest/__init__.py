"""
Data ingestion: table loading and the text classifier boundary.
"""

from .classifier import TextClassifier, classify_records
from .loader import load_table

__all__ = ["TextClassifier", "classify_records", "load_table"]
