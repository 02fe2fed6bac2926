from .extractor import (
    ExtractorSettings, FeatureExtractor, GenericFeatureExtractor, CallableExtractor, as_extractor,
)

__all__ = ['ExtractorSettings', 'FeatureExtractor', 'GenericFeatureExtractor',
           'CallableExtractor', 'as_extractor']
