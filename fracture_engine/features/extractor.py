# extractor.py

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Tuple, Union

from fracture_engine.features import processors
from fracture_engine.shared.types import FeatureSet
from fracture_engine.signals.buffer import SignalWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractorSettings:
    """Window and spectral parameters shared by all extractors"""
    window_size: int = 50
    min_samples: int = 10
    sample_rate: float = 1.0
    spectral_band: Tuple[float, float] = (0.01, 0.25)
    normalize_volatility: bool = True
    core_features: bool = True

    def __post_init__(self):
        if self.min_samples < 2:
            raise ValueError("min_samples must be >= 2")
        if self.window_size < self.min_samples:
            raise ValueError("window_size must be >= min_samples")
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        low, high = self.spectral_band
        if not 0 <= low < high:
            raise ValueError(f"Invalid spectral band {self.spectral_band}")


class FeatureExtractor(ABC):
    """
    Pluggable feature extraction for one signal source.

    Subclasses add domain sub-scores by overriding `domain_fields`; every
    sub-score must already be mapped into [0, 1]. Extraction must be
    deterministic: simulated noise belongs in the data generator, not here.
    """

    def __init__(self, settings: ExtractorSettings = None):
        self.settings = settings or ExtractorSettings()

    @property
    def window_size(self) -> int:
        return self.settings.window_size

    def extract(self, window: SignalWindow) -> FeatureSet:
        """Compute the feature set for a window; short windows yield an insufficient set"""
        if len(window) < self.settings.min_samples:
            return FeatureSet.insufficient(window.source_id, len(window))

        values = window.values
        feature_set = FeatureSet(
            source_id=window.source_id,
            spectral_slope=processors.spectral_slope(
                values, self.settings.sample_rate, self.settings.spectral_band
            ),
            autocorrelation=processors.lag1_autocorrelation(values),
            volatility=processors.volatility(values, self.settings.normalize_volatility),
            quality_score=processors.assess_quality(values, window.rejected),
            sufficient=True,
            sample_count=len(window),
            core_features=self.settings.core_features,
        )
        feature_set.domain_fields = {
            name: min(1.0, max(0.0, float(score)))
            for name, score in self.domain_fields(window).items()
        }
        return feature_set

    @abstractmethod
    def domain_fields(self, window: SignalWindow) -> Dict[str, float]:
        """Domain-specific sub-scores in [0, 1]"""


class GenericFeatureExtractor(FeatureExtractor):
    """Spectral slope, autocorrelation, volatility and quality only"""

    def domain_fields(self, window: SignalWindow) -> Dict[str, float]:
        return {}


class CallableExtractor(FeatureExtractor):
    """Wraps a plain `(window) -> FeatureSet` function supplied by a domain collaborator"""

    def __init__(self, func: Callable[[SignalWindow], FeatureSet], settings: ExtractorSettings = None):
        super().__init__(settings)
        self.func = func

    def extract(self, window: SignalWindow) -> FeatureSet:
        result = self.func(window)
        if not isinstance(result, FeatureSet):
            raise TypeError(f"Extractor for '{window.source_id}' returned {type(result).__name__}, "
                            f"expected FeatureSet")
        return result

    def domain_fields(self, window: SignalWindow) -> Dict[str, float]:
        return {}


ExtractorLike = Union[FeatureExtractor, Callable[[SignalWindow], FeatureSet]]


def as_extractor(extractor: ExtractorLike, settings: ExtractorSettings = None) -> FeatureExtractor:
    if isinstance(extractor, FeatureExtractor):
        return extractor
    if callable(extractor):
        return CallableExtractor(extractor, settings)
    raise TypeError(f"Cannot use {type(extractor).__name__} as a feature extractor")
