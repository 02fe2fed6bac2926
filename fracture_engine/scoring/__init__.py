from .normalization import ComponentNormalizer, NormalizationSettings, CORE_COMPONENTS
from .composite import CompositeScorer
from .classifier import ThresholdClassifier, CrisisDetector, CrisisTransition

__all__ = ['ComponentNormalizer', 'NormalizationSettings', 'CORE_COMPONENTS',
           'CompositeScorer', 'ThresholdClassifier', 'CrisisDetector', 'CrisisTransition']
