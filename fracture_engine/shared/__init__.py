from .types import (
    Level, Trend, InterventionStatus, CrisisPhase, INTERVENTION_LEVELS,
    SignalSample, FeatureSet, ScoreRecord, ActionSpec, InterventionRecord,
    PendingCrisis, CrisisState, CrisisRecord, LevelKey, EffectivenessEntry,
    ThresholdAdjustment,
)
from .errors import FractureEngineError, InvalidSampleError, ConfigurationError

__all__ = [
    'Level', 'Trend', 'InterventionStatus', 'CrisisPhase', 'INTERVENTION_LEVELS',
    'SignalSample', 'FeatureSet', 'ScoreRecord', 'ActionSpec', 'InterventionRecord',
    'PendingCrisis', 'CrisisState', 'CrisisRecord', 'LevelKey', 'EffectivenessEntry',
    'ThresholdAdjustment',
    'FractureEngineError', 'InvalidSampleError', 'ConfigurationError',
]
