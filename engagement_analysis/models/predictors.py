"""Static predictor sets: internal identifiers paired with cosmetic display names.

Design matrices are built from the internal ids only, so category names with
spaces or punctuation never reach a formula parser and can never collide.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Sequence, Tuple

import pandas as pd


@dataclass(frozen=True)
class Predictor:
    internal_id: str
    display_name: str
    column: str


@dataclass(frozen=True)
class PredictorSet:
    predictors: Tuple[Predictor, ...]

    @classmethod
    def from_columns(cls, columns: Sequence[str], prefix: str = "x") -> "PredictorSet":
        """Assign ids ``<prefix>0, <prefix>1, ...`` to the given source columns."""
        if len(set(columns)) != len(columns):
            raise ValueError("Predictor columns must be unique")
        return cls(
            tuple(
                Predictor(internal_id=f"{prefix}{idx}", display_name=str(col), column=col)
                for idx, col in enumerate(columns)
            )
        )

    @classmethod
    def from_pairs(cls, pairs: Sequence[Tuple[str, str]], prefix: str = "x") -> "PredictorSet":
        """Build from ``(column, display_name)`` pairs."""
        columns = [column for column, _ in pairs]
        if len(set(columns)) != len(columns):
            raise ValueError("Predictor columns must be unique")
        return cls(
            tuple(
                Predictor(internal_id=f"{prefix}{idx}", display_name=display, column=column)
                for idx, (column, display) in enumerate(pairs)
            )
        )

    def __iter__(self) -> Iterator[Predictor]:
        return iter(self.predictors)

    def __len__(self) -> int:
        return len(self.predictors)

    @property
    def internal_ids(self) -> List[str]:
        return [p.internal_id for p in self.predictors]

    @property
    def display_names(self) -> List[str]:
        return [p.display_name for p in self.predictors]

    def subset(self, internal_ids: Sequence[str]) -> "PredictorSet":
        wanted = set(internal_ids)
        return PredictorSet(tuple(p for p in self.predictors if p.internal_id in wanted))

    def design(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Numeric design columns named by internal id, same index as ``frame``."""
        return pd.DataFrame(
            {p.internal_id: pd.to_numeric(frame[p.column], errors="coerce") for p in self.predictors},
            index=frame.index,
        ).astype(float)


__all__ = ["Predictor", "PredictorSet"]
