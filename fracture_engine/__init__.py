"""
Fracture Engine - streaming instability monitoring with tiered interventions

Public Interface:
- create_engine(): engine with configuration from defaults, an optional JSON file and FRACTURE_* variables
- FractureEngine: subjects, ingest, tick, configure, outcomes, adjustments, monitoring, exports
- EventType / Event / Subscription: typed engine events
- ManualClock / ThreadingClock: injected time sources
- get_domain(): market, learning and physiological plug-ins
- FeatureExtractor / GenericFeatureExtractor: custom feature extraction
"""

from typing import Optional

from .shared import (
    Level, Trend, InterventionStatus, CrisisPhase, FeatureSet, ScoreRecord, ActionSpec,
    InterventionRecord, CrisisRecord, LevelKey, ThresholdAdjustment,
    FractureEngineError, InvalidSampleError, ConfigurationError,
)
from .core import (
    EngineConfig, Thresholds, load_config, EventBus, EventType, Event, Subscription,
    EngineClock, ManualClock, ThreadingClock,
)
from .core.engine import FractureEngine
from .domains import DomainProfile, get_domain, register_domain, available_domains
from .features import ExtractorSettings, FeatureExtractor, GenericFeatureExtractor
from .intervention import ActionBundle, ActionBundleTable
from .signals import SignalWindow

__version__ = "1.0.0"


def create_engine(config_file: Optional[str] = None, clock: Optional[EngineClock] = None,
                  **kwargs) -> FractureEngine:
    """Engine whose default configuration is loaded through load_config()"""
    return FractureEngine(config=load_config(config_file), clock=clock, **kwargs)


__all__ = [
    'create_engine', 'FractureEngine',
    'Level', 'Trend', 'InterventionStatus', 'CrisisPhase', 'FeatureSet', 'ScoreRecord', 'ActionSpec',
    'InterventionRecord', 'CrisisRecord', 'LevelKey', 'ThresholdAdjustment',
    'FractureEngineError', 'InvalidSampleError', 'ConfigurationError',
    'EngineConfig', 'Thresholds', 'load_config', 'EventBus', 'EventType', 'Event', 'Subscription',
    'EngineClock', 'ManualClock', 'ThreadingClock',
    'DomainProfile', 'get_domain', 'register_domain', 'available_domains',
    'ExtractorSettings', 'FeatureExtractor', 'GenericFeatureExtractor',
    'ActionBundle', 'ActionBundleTable', 'SignalWindow',
]
