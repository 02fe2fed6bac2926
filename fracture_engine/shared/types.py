# types.py

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple


class Level(Enum):
    """Intervention tiers, ordered by severity"""
    NORMAL = "normal"
    GENTLE = "gentle"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    def at_least(self, other: 'Level') -> bool:
        return self.rank >= other.rank


_LEVEL_ORDER = [Level.NORMAL, Level.GENTLE, Level.MODERATE, Level.AGGRESSIVE]

INTERVENTION_LEVELS: Tuple[Level, ...] = (Level.GENTLE, Level.MODERATE, Level.AGGRESSIVE)


class Trend(Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class InterventionStatus(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    SUPERSEDED = "superseded"


class CrisisPhase(Enum):
    IDLE = "idle"
    PENDING = "pending"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class SignalSample:
    value: float
    timestamp: float


@dataclass
class FeatureSet:
    """Features extracted from one source window for one tick"""
    source_id: str
    spectral_slope: float = 0.0
    autocorrelation: float = 0.0
    volatility: float = 0.0
    quality_score: float = 0.0
    domain_fields: Dict[str, float] = field(default_factory=dict)
    sufficient: bool = False
    sample_count: int = 0
    # False for auxiliary sources that only supply domain_fields
    core_features: bool = True

    @classmethod
    def insufficient(cls, source_id: str, sample_count: int = 0) -> 'FeatureSet':
        return cls(source_id=source_id, sample_count=sample_count)


@dataclass(frozen=True)
class ScoreRecord:
    index: float
    timestamp: float
    components: Dict[str, float]
    trend: Trend
    confidence: float
    level: Level = Level.NORMAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'timestamp': self.timestamp,
            'components': dict(self.components),
            'trend': self.trend.value,
            'confidence': self.confidence,
            'level': self.level.value,
        }


@dataclass(frozen=True)
class ActionSpec:
    """One domain-defined corrective action; the engine never interprets the payload"""
    action_type: str
    target: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InterventionRecord:
    id: str
    level: Level
    trigger_index: float
    timestamp: float
    actions: List[ActionSpec]
    intervention_type: str
    duration_s: float
    subject_id: str = ""
    status: InterventionStatus = InterventionStatus.ACTIVE
    completed_at: Optional[float] = None
    emergency: bool = False
    action_errors: int = 0

    @property
    def due_at(self) -> float:
        return self.timestamp + self.duration_s

    @property
    def is_active(self) -> bool:
        return self.status == InterventionStatus.ACTIVE


@dataclass
class PendingCrisis:
    start_time: float
    initial_index: float
    confirmations: int
    escalating: bool
    last_reading: float


@dataclass
class CrisisState:
    pending: Optional[PendingCrisis] = None

    @property
    def phase(self) -> CrisisPhase:
        return CrisisPhase.PENDING if self.pending else CrisisPhase.IDLE


@dataclass(frozen=True)
class CrisisRecord:
    id: str
    subject_id: str
    timestamp: float
    duration: float
    initial_index: float
    final_index: float
    escalating: bool
    components: Dict[str, float]


@dataclass(frozen=True)
class LevelKey:
    """Identifies one (domain, level, intervention type) learning bucket"""
    domain: str
    level: Level
    intervention_type: str

    def __str__(self) -> str:
        return f"{self.domain}:{self.level.value}:{self.intervention_type}"


@dataclass
class EffectivenessEntry:
    level_key: LevelKey
    success_count: int = 0
    total_count: int = 0
    avg_effectiveness: float = 0.0
    recent_contexts: Deque[Dict[str, Any]] = field(default_factory=lambda: deque(maxlen=20))

    @property
    def success_rate(self) -> float:
        return self.success_count / self.total_count if self.total_count else 0.0


@dataclass(frozen=True)
class ThresholdAdjustment:
    """Advisory change proposed by the effectiveness learner"""
    level_key: LevelKey
    boundary: str
    current: float
    proposed: float
    avg_effectiveness: float
    sample_size: int
    current_cooldown_s: Optional[float] = None
    proposed_cooldown_s: Optional[float] = None
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'level_key': str(self.level_key),
            'boundary': self.boundary,
            'current': self.current,
            'proposed': self.proposed,
            'avg_effectiveness': self.avg_effectiveness,
            'sample_size': self.sample_size,
            'current_cooldown_s': self.current_cooldown_s,
            'proposed_cooldown_s': self.proposed_cooldown_s,
            'reason': self.reason,
        }
