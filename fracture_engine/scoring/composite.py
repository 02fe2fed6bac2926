# composite.py

import logging
from collections import deque
from typing import Deque, Dict, List, Mapping, Optional, Sequence

from fracture_engine.scoring.normalization import ComponentNormalizer, clamp01
from fracture_engine.shared.errors import ConfigurationError
from fracture_engine.shared.types import FeatureSet, ScoreRecord, Trend

logger = logging.getLogger(__name__)

TREND_WINDOW = 3
TREND_DELTA = 0.1


class CompositeScorer:
    """
    Combines feature sets into a bounded instability index.

    Responsibilities:
    - Normalize features into [0, 1] components (shared normalization step)
    - Weighted combination with explicit, domain-supplied weights
    - Trend over the three most recent records
    - Confidence from the data quality of every feature set
    - Bounded score history
    """

    def __init__(self, normalizer: ComponentNormalizer = None, history_size: int = 100):
        self.normalizer = normalizer or ComponentNormalizer()
        self.history: Deque[ScoreRecord] = deque(maxlen=history_size)

    @staticmethod
    def combine(components: Mapping[str, float], weights: Mapping[str, float]) -> float:
        """
        Weighted mean of component scores over the configured weights.

        Components without a weight are ignored; weighted components that are
        absent count as 0. Non-decreasing in every component.
        """
        total_weight = 0.0
        weighted_sum = 0.0
        for name, weight in weights.items():
            if weight < 0:
                raise ConfigurationError(f"Negative weight for component '{name}'")
            total_weight += weight
            weighted_sum += weight * clamp01(components.get(name, 0.0))

        if total_weight <= 0:
            return 0.0
        return clamp01(weighted_sum / total_weight)

    @staticmethod
    def confidence(feature_sets: Sequence[FeatureSet]) -> float:
        if not feature_sets:
            return 0.0
        return clamp01(sum(fs.quality_score for fs in feature_sets) / len(feature_sets))

    def trend(self, index: Optional[float] = None) -> Trend:
        """Trend over the last three indices, optionally including a pending one"""
        values: List[float] = [r.index for r in self.history]
        if index is not None:
            values.append(index)
        recent = values[-TREND_WINDOW:]
        if len(recent) < TREND_WINDOW:
            return Trend.STABLE

        delta = recent[-1] - recent[0]
        if delta > TREND_DELTA:
            return Trend.INCREASING
        if delta < -TREND_DELTA:
            return Trend.DECREASING
        return Trend.STABLE

    def score(self, feature_sets: Sequence[FeatureSet], weights: Mapping[str, float],
              timestamp: float) -> ScoreRecord:
        """Produce and store the score record for one tick"""
        feature_sets = list(feature_sets)
        components = self.normalizer.combine_sources(feature_sets)

        if not components:
            components = {name: 0.0 for name in weights}
            index = 0.0
        else:
            for name in weights:
                components.setdefault(name, 0.0)
            index = self.combine(components, weights)

        record = ScoreRecord(
            index=index,
            timestamp=timestamp,
            components=components,
            trend=self.trend(index),
            confidence=self.confidence(feature_sets),
        )
        self.history.append(record)

        logger.debug(f"Composite index {index:.3f} (confidence {record.confidence:.2f}, "
                     f"trend {record.trend.value})")
        return record

    def replace_last(self, record: ScoreRecord):
        """Swap the newest history entry (used to attach the classified level)"""
        if self.history:
            self.history[-1] = record

    @property
    def last(self) -> Optional[ScoreRecord]:
        return self.history[-1] if self.history else None

    def recent(self, limit: int = 10) -> List[ScoreRecord]:
        return list(self.history)[-limit:]

    def reset(self):
        self.history.clear()
        self.normalizer.reset()

    def resize_history(self, size: int):
        self.history = deque(self.history, maxlen=size)
