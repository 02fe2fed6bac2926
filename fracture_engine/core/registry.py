# registry.py

import logging
import threading
import time
from collections import deque
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from fracture_engine.core.config import EngineConfig
from fracture_engine.core.event_bus import EventBus
from fracture_engine.domains.base import DomainProfile
from fracture_engine.features.extractor import FeatureExtractor
from fracture_engine.intervention.dispatcher import ActionExecutor, InterventionDispatcher
from fracture_engine.learning.effectiveness import EffectivenessLearner
from fracture_engine.scoring.classifier import CrisisDetector, ThresholdClassifier
from fracture_engine.scoring.composite import CompositeScorer
from fracture_engine.shared.types import ThresholdAdjustment
from fracture_engine.signals.buffer import BufferSet

logger = logging.getLogger(__name__)


@dataclass
class SubjectMetrics:
    """Counters for one monitored subject"""
    total_readings: int = 0
    rejected_samples: int = 0
    ignored_samples: int = 0
    total_ticks: int = 0
    interventions_triggered: int = 0
    emergency_interventions: int = 0
    crises_detected: int = 0
    adjustments_applied: int = 0
    last_tick_time: Optional[float] = None
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class AppliedAdjustment:
    """Audit entry for a configuration change made from a learner proposal"""
    adjustment: ThresholdAdjustment
    previous: EngineConfig
    applied: EngineConfig
    applied_at: float
    automatic: bool = False


class SubjectState:
    """
    Per-subject pipeline state.

    Responsibilities:
    - Own the buffers, extractors and every pipeline component of one subject
    - Hold the live configuration that components read through `config_provider`
    - Serialize ticks with a per-subject lock
    - Keep metrics and the adjustment audit log
    """

    def __init__(self, subject_id: str, domain: DomainProfile, config: EngineConfig,
                 event_bus: EventBus, action_executor: Optional[ActionExecutor] = None,
                 executor: Optional[Executor] = None):
        self.subject_id = subject_id
        self.domain = domain
        self.config = config

        self.buffers = BufferSet(capacity=config.buffer_capacity)
        self.extractors: Dict[str, FeatureExtractor] = {}
        for source_id in domain.sources:
            self.add_source(source_id)

        self.scorer = CompositeScorer(history_size=config.score_history_size)
        self.classifier = ThresholdClassifier(self.config_provider)
        self.crisis = CrisisDetector(subject_id, self.config_provider, config.crisis_history_size)
        self.dispatcher = InterventionDispatcher(
            subject_id, domain.bundles, self.config_provider, event_bus,
            action_executor=action_executor, executor=executor,
            history_size=config.intervention_history_size,
        )
        self.learner = EffectivenessLearner(self.config_provider)

        self.tick_lock = threading.Lock()
        self.metrics = SubjectMetrics()
        self.adjustments: Deque[AppliedAdjustment] = deque(maxlen=100)
        self.monitoring = False

    def config_provider(self) -> EngineConfig:
        return self.config

    def install_config(self, config: EngineConfig):
        """Swap in a new live config and resize the bounded stores it sizes"""
        previous, self.config = self.config, config
        if config.buffer_capacity != previous.buffer_capacity:
            self.buffers.resize(config.buffer_capacity)
        if config.score_history_size != previous.score_history_size:
            self.scorer.resize_history(config.score_history_size)
        if config.crisis_history_size != previous.crisis_history_size:
            self.crisis.resize_history(config.crisis_history_size)
        if config.intervention_history_size != previous.intervention_history_size:
            self.dispatcher.resize_history(config.intervention_history_size)
        return previous

    def add_source(self, source_id: str, extractor: Optional[FeatureExtractor] = None):
        self.buffers.add_source(source_id)
        self.extractors[source_id] = extractor or self.domain.extractor_for(source_id)

    def sources(self) -> List[str]:
        return self.buffers.sources()

    def get_summary(self) -> Dict[str, Any]:
        last = self.scorer.last
        return {
            'subject_id': self.subject_id,
            'domain': self.domain.name,
            'monitoring': self.monitoring,
            'config_version': self.config.version,
            'sources': self.sources(),
            'last_index': last.index if last else None,
            'last_level': last.level.value if last else None,
            'crisis_phase': self.crisis.phase.value,
            'active_interventions': len(self.dispatcher.active()),
            'metrics': dict(vars(self.metrics)),
        }


class SubjectRegistry:
    """Thread-safe map of subject id to SubjectState"""

    def __init__(self):
        self._subjects: Dict[str, SubjectState] = {}
        self._lock = threading.RLock()

    def add(self, state: SubjectState) -> SubjectState:
        with self._lock:
            if state.subject_id in self._subjects:
                raise ValueError(f"Subject '{state.subject_id}' is already registered")
            self._subjects[state.subject_id] = state
        logger.info(f"Registered subject '{state.subject_id}' (domain {state.domain.name})")
        return state

    def remove(self, subject_id: str) -> Optional[SubjectState]:
        with self._lock:
            return self._subjects.pop(subject_id, None)

    def get(self, subject_id: str) -> Optional[SubjectState]:
        with self._lock:
            return self._subjects.get(subject_id)

    def require(self, subject_id: str) -> SubjectState:
        state = self.get(subject_id)
        if state is None:
            raise KeyError(f"Unknown subject '{subject_id}'")
        return state

    def __contains__(self, subject_id: str) -> bool:
        return self.get(subject_id) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._subjects)

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._subjects.keys())

    def states(self) -> List[SubjectState]:
        with self._lock:
            return list(self._subjects.values())
