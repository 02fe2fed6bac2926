# normalization.py

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List

from fracture_engine.shared.types import FeatureSet

logger = logging.getLogger(__name__)

SPECTRAL_SLOPE = 'spectral_slope'
AUTOCORRELATION = 'autocorrelation'
VOLATILITY = 'volatility'
CORE_COMPONENTS = (SPECTRAL_SLOPE, AUTOCORRELATION, VOLATILITY)


def clamp01(value: float) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    return min(1.0, max(0.0, float(value)))


@dataclass(frozen=True)
class NormalizationSettings:
    slope_sensitivity: float = 1.5
    slope_baseline_decay: float = 0.9
    autocorrelation_floor: float = 0.2
    autocorrelation_span: float = 0.3
    volatility_gain: float = 3.0


class ComponentNormalizer:
    """
    Maps raw features onto [0, 1] component scores.

    The spectral slope score measures departure from a per-source baseline
    slope (exponential moving average seeded by the first non-zero slope), so
    the normalizer is stateful per subject. Everything else is a fixed map.
    """

    def __init__(self, settings: NormalizationSettings = None):
        self.settings = settings or NormalizationSettings()
        self.slope_baselines: Dict[str, float] = {}

    def slope_score(self, source_id: str, slope: float) -> float:
        if not math.isfinite(slope) or slope == 0.0:
            return 0.0

        baseline = self.slope_baselines.get(source_id)
        if baseline is None:
            self.slope_baselines[source_id] = slope
            return 0.0

        decay = self.settings.slope_baseline_decay
        self.slope_baselines[source_id] = baseline * decay + slope * (1.0 - decay)
        change = abs(slope - baseline) / abs(baseline)
        return clamp01(change * self.settings.slope_sensitivity)

    def autocorrelation_score(self, ac1: float) -> float:
        s = self.settings
        return clamp01((ac1 - s.autocorrelation_floor) / s.autocorrelation_span)

    def volatility_score(self, vol: float) -> float:
        return clamp01(vol * self.settings.volatility_gain)

    def normalize(self, feature_set: FeatureSet) -> Dict[str, float]:
        """Component scores for one sufficient feature set"""
        components: Dict[str, float] = {}
        if feature_set.core_features:
            components[SPECTRAL_SLOPE] = self.slope_score(feature_set.source_id, feature_set.spectral_slope)
            components[AUTOCORRELATION] = self.autocorrelation_score(feature_set.autocorrelation)
            components[VOLATILITY] = self.volatility_score(feature_set.volatility)
        for name, value in feature_set.domain_fields.items():
            components[name] = clamp01(value)
        return components

    def combine_sources(self, feature_sets: Iterable[FeatureSet]) -> Dict[str, float]:
        """Average each component over the sufficient feature sets that provide it"""
        collected: Dict[str, List[float]] = {}
        for feature_set in feature_sets:
            if not feature_set.sufficient:
                continue
            for name, value in self.normalize(feature_set).items():
                collected.setdefault(name, []).append(value)
        return {name: sum(values) / len(values) for name, values in collected.items()}

    def reset(self):
        self.slope_baselines.clear()
