# classifier.py

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional

from fracture_engine.core.config import EngineConfig
from fracture_engine.shared.types import (
    CrisisPhase, CrisisRecord, CrisisState, Level, PendingCrisis, ScoreRecord, Trend,
)

logger = logging.getLogger(__name__)

ConfigProvider = Callable[[], EngineConfig]


class ThresholdClassifier:
    """
    Maps an index onto a discrete level.

    Boundaries are read from the config provider on every call, so adjustments
    applied between ticks take effect on the next classification.
    """

    def __init__(self, config_provider: ConfigProvider):
        self._config_provider = config_provider

    def classify(self, index: float) -> Level:
        t = self._config_provider().thresholds
        if index >= t.aggressive:
            return Level.AGGRESSIVE
        if index >= t.moderate:
            return Level.MODERATE
        if index >= t.gentle:
            return Level.GENTLE
        return Level.NORMAL


@dataclass(frozen=True)
class CrisisTransition:
    """Outcome of one crisis-detector update that changed or confirmed state"""
    phase: CrisisPhase
    event: str  # 'suspected', 'confirmed', 'cleared'
    data: Dict = field(default_factory=dict)
    record: Optional[CrisisRecord] = None


class CrisisDetector:
    """
    Crisis confirmation state machine (idle -> pending -> confirmed).

    The first reading at or above the crisis threshold opens a pending episode
    with one confirmation. Each further consecutive reading adds one; reaching
    the window confirms the crisis, records it and returns to idle. A reading
    below the threshold while pending clears the episode. A pending episode
    whose previous reading is older than the timeout is cleared as expired
    before the new reading is evaluated.
    """

    def __init__(self, subject_id: str, config_provider: ConfigProvider, history_size: int = 50):
        self.subject_id = subject_id
        self._config_provider = config_provider
        self.state = CrisisState()
        self.history: Deque[CrisisRecord] = deque(maxlen=history_size)
        self._sequence = 0

    @property
    def phase(self) -> CrisisPhase:
        return self.state.phase

    def update(self, record: ScoreRecord, now: float) -> List[CrisisTransition]:
        """Feed one score record; returns the transitions it caused, in order"""
        config = self._config_provider()
        transitions: List[CrisisTransition] = []
        pending = self.state.pending

        if pending is not None and now - pending.last_reading > config.crisis_timeout_s:
            transitions.append(self._clear(now, reason='expired'))
            pending = None

        if record.index >= config.crisis_threshold:
            if pending is None:
                pending = PendingCrisis(
                    start_time=now,
                    initial_index=record.index,
                    confirmations=1,
                    escalating=record.trend == Trend.INCREASING,
                    last_reading=now,
                )
                self.state.pending = pending
                transitions.append(CrisisTransition(
                    phase=CrisisPhase.PENDING, event='suspected',
                    data={'index': record.index, 'confirmations': 1,
                          'window': config.crisis_window},
                ))
                logger.info(f"Crisis suspected for '{self.subject_id}' at index {record.index:.3f}")
            else:
                pending.confirmations += 1
                pending.last_reading = now
                if record.trend == Trend.INCREASING:
                    pending.escalating = True

            if pending.confirmations >= config.crisis_window:
                transitions.append(self._confirm(record, now))

        elif pending is not None:
            transitions.append(self._clear(now, reason='below_threshold', index=record.index))

        return transitions

    def _confirm(self, record: ScoreRecord, now: float) -> CrisisTransition:
        pending = self.state.pending
        self._sequence += 1
        crisis = CrisisRecord(
            id=f"crisis_{self.subject_id}_{self._sequence}",
            subject_id=self.subject_id,
            timestamp=now,
            duration=now - pending.start_time,
            initial_index=pending.initial_index,
            final_index=record.index,
            escalating=pending.escalating,
            components=dict(record.components),
        )
        self.history.append(crisis)
        self.state.pending = None

        logger.warning(f"Crisis confirmed for '{self.subject_id}': index {record.index:.3f} "
                       f"after {pending.confirmations} readings")
        return CrisisTransition(
            phase=CrisisPhase.CONFIRMED, event='confirmed',
            data={'crisis_id': crisis.id, 'index': record.index,
                  'confirmations': pending.confirmations, 'duration': crisis.duration,
                  'escalating': crisis.escalating},
            record=crisis,
        )

    def _clear(self, now: float, reason: str, index: Optional[float] = None) -> CrisisTransition:
        pending = self.state.pending
        self.state.pending = None
        logger.info(f"Crisis cleared for '{self.subject_id}' ({reason}) after "
                    f"{pending.confirmations} confirmation(s)")
        data = {'reason': reason, 'confirmations': pending.confirmations,
                'duration': now - pending.start_time}
        if index is not None:
            data['index'] = index
        return CrisisTransition(phase=CrisisPhase.IDLE, event='cleared', data=data)

    def reset(self):
        """Drop any pending episode; confirmed history is kept"""
        self.state.pending = None

    def resize_history(self, size: int):
        self.history = deque(self.history, maxlen=size)
