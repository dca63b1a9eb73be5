"""
Exclusion manifest: an audit trail of every feature removed by the pipeline.
"""

from dataclasses import dataclass, asdict
from typing import Iterable, Iterator, List, Optional

import pandas as pd


@dataclass(frozen=True)
class ExclusionRecord:
    """
    One excluded feature.

    Attributes
    ----------
    feature_id : object
        Excluded feature.
    stage : str
        Pipeline stage that excluded it.
    reason : str
        Human-readable reason.
    batch : str, optional
        Batch in which the feature failed, when the decision is per batch.
    """

    feature_id: object
    stage: str
    reason: str
    batch: Optional[str] = None


class ExclusionManifest:
    """Ordered collection of :class:`ExclusionRecord` across stages."""

    COLUMNS = ["feature_id", "stage", "reason", "batch"]

    def __init__(self, records: Optional[Iterable[ExclusionRecord]] = None):
        self._records: List[ExclusionRecord] = list(records or [])

    def add(self, feature_id, stage: str, reason: str, batch: Optional[str] = None) -> None:
        self._records.append(ExclusionRecord(feature_id, stage, reason, batch))

    def extend(self, records: Iterable[ExclusionRecord]) -> None:
        self._records.extend(records)

    def for_stage(self, stage: str) -> List[ExclusionRecord]:
        return [r for r in self._records if r.stage == stage]

    def excluded_features(self, stage: Optional[str] = None) -> List:
        """Distinct excluded feature ids, in order of first exclusion."""
        seen = set()
        ordered = []
        for r in self._records:
            if (stage is None or r.stage == stage) and r.feature_id not in seen:
                seen.add(r.feature_id)
                ordered.append(r.feature_id)
        return ordered

    def to_frame(self) -> pd.DataFrame:
        if not self._records:
            return pd.DataFrame(columns=self.COLUMNS)
        return pd.DataFrame([asdict(r) for r in self._records], columns=self.COLUMNS)

    def __iter__(self) -> Iterator[ExclusionRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        counts = pd.Series([r.stage for r in self._records], dtype=object).value_counts().to_dict()
        return f"ExclusionManifest(records={len(self._records)}, by_stage={counts})"
