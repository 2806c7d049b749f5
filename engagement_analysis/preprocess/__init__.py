"""
Preprocessing module: category matrix construction and engagement scoring.
"""

from .category_matrix import CategoryMatrix
from .engagement import EngagementScores, score_engagement
from .schema import MatrixSchema

__all__ = ["CategoryMatrix", "EngagementScores", "MatrixSchema", "score_engagement"]
