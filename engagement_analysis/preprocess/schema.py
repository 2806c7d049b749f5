"""Default record schema: engagement counters and category families."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

ENGAGEMENT_METRICS = [
    "views",
    "likes",
    "comments",
    "shares",
]

EMOTION_CATEGORIES = [
    "anger",
    "anticipation",
    "disgust",
    "fear",
    "joy",
    "love",
    "optimism",
    "pessimism",
    "sadness",
    "surprise",
    "trust",
    "neutral",
]

THEME_CATEGORIES = [
    "politics",
    "economy",
    "health",
    "science",
    "technology",
    "environment",
    "crime",
    "sports",
    "entertainment",
    "education",
    "conflict",
    "human interest",
]

EMOTION_FAMILY = "emotion"
THEME_FAMILY = "theme"

ID_COLUMN = "record_id"
DATE_COLUMN = "date"
SOURCE_LABEL_COLUMN = "source_label"
SOURCE_TYPE_COLUMN = "source_type"


def _default_families() -> Dict[str, Tuple[str, ...]]:
    return {
        EMOTION_FAMILY: tuple(EMOTION_CATEGORIES),
        THEME_FAMILY: tuple(THEME_CATEGORIES),
    }


@dataclass(frozen=True)
class MatrixSchema:
    """Column layout expected at the input boundary.

    ``channel_a_prefix`` decides the source type: labels starting with it
    (case-insensitive) are ``channel_a_label``, everything else is
    ``channel_b_label``.
    """

    metrics: Tuple[str, ...] = tuple(ENGAGEMENT_METRICS)
    families: Dict[str, Tuple[str, ...]] = field(default_factory=_default_families)
    channel_a_prefix: str = "news"
    channel_a_label: str = "channel_a"
    channel_b_label: str = "channel_b"

    def categories(self, family: str) -> Tuple[str, ...]:
        try:
            return self.families[family]
        except KeyError:
            raise KeyError(f"Unknown category family '{family}'") from None

    def family_columns(self, family: str) -> Dict[str, str]:
        """Map wide-table column names to category names for ``family``.

        Wide tables prefix category columns with the family name so that the
        two families may share category names.
        """
        return {f"{family}_{name}": name for name in self.categories(family)}

    def source_type(self, labels: Sequence[object]) -> List[str]:
        prefix = self.channel_a_prefix.lower()
        out = []
        for label in labels:
            text = "" if label is None else str(label).strip().lower()
            out.append(self.channel_a_label if text.startswith(prefix) else self.channel_b_label)
        return out


__all__ = [
    "DATE_COLUMN",
    "EMOTION_CATEGORIES",
    "EMOTION_FAMILY",
    "ENGAGEMENT_METRICS",
    "ID_COLUMN",
    "MatrixSchema",
    "SOURCE_LABEL_COLUMN",
    "SOURCE_TYPE_COLUMN",
    "THEME_CATEGORIES",
    "THEME_FAMILY",
]
