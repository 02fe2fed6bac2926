# effectiveness.py

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional

from fracture_engine.core.config import EngineConfig, Thresholds
from fracture_engine.shared.types import EffectivenessEntry, LevelKey, Level, ThresholdAdjustment

logger = logging.getLogger(__name__)


@dataclass
class OutcomeEvent:
    timestamp: float
    level_key: LevelKey
    effectiveness: float
    success: bool
    context: Dict


class EffectivenessLearner:
    """
    Learns how well each kind of intervention works and proposes threshold changes

    Outcomes are aggregated per level key. Every `adaptation_frequency`
    outcomes for a key, the key is reviewed; a poor average effectiveness
    produces an advisory ThresholdAdjustment. The learner never writes the
    configuration itself.
    """

    def __init__(self, config_provider: Callable[[], EngineConfig], history_size: int = 1000):
        self._config_provider = config_provider
        self.entries: Dict[LevelKey, EffectivenessEntry] = {}
        self.outcome_events: Deque[OutcomeEvent] = deque(maxlen=history_size)
        self.proposals: Deque[ThresholdAdjustment] = deque(maxlen=100)

        # Boundaries the cumulative shift is measured from
        self.initial_thresholds: Thresholds = config_provider().thresholds
        self._lock = threading.Lock()

    def rebase(self, thresholds: Optional[Thresholds] = None):
        """Measure future shifts from new operator-set boundaries"""
        self.initial_thresholds = thresholds or self._config_provider().thresholds

    def record_outcome(self, level_key: LevelKey, effectiveness: float,
                       context: Optional[Dict[str, Any]] = None) -> Optional[ThresholdAdjustment]:
        """Record an intervention outcome; returns a proposal when a review produces one"""
        if isinstance(effectiveness, bool) or not isinstance(effectiveness, (int, float)):
            raise ValueError(f"Effectiveness must be a number, got {effectiveness!r}")
        if not math.isfinite(effectiveness) or not 0.0 <= effectiveness <= 1.0:
            raise ValueError(f"Effectiveness must be within [0, 1], got {effectiveness}")

        config = self._config_provider()
        success = effectiveness >= config.success_threshold

        with self._lock:
            entry = self.entries.get(level_key)
            if entry is None:
                entry = EffectivenessEntry(level_key=level_key)
                self.entries[level_key] = entry

            entry.total_count += 1
            if success:
                entry.success_count += 1
            entry.avg_effectiveness += (effectiveness - entry.avg_effectiveness) / entry.total_count
            entry.recent_contexts.append({
                'effectiveness': effectiveness,
                'success': success,
                'context': dict(context or {}),
            })
            self.outcome_events.append(OutcomeEvent(
                timestamp=time.time(),
                level_key=level_key,
                effectiveness=effectiveness,
                success=success,
                context=dict(context or {}),
            ))
            review_due = entry.total_count % config.adaptation_frequency == 0

        logger.debug(f"Outcome for {level_key}: {effectiveness:.2f} "
                     f"(avg {entry.avg_effectiveness:.2f} over {entry.total_count})")

        if review_due:
            return self.propose_adjustment(level_key)
        return None

    def propose_adjustment(self, level_key: LevelKey) -> Optional[ThresholdAdjustment]:
        """Review one key; lower its boundary and shorten cooldown if it underperforms"""
        entry = self.entries.get(level_key)
        if entry is None or entry.total_count == 0 or level_key.level == Level.NORMAL:
            return None

        config = self._config_provider()
        if entry.avg_effectiveness >= config.effectiveness_floor:
            return None

        thresholds = config.thresholds
        boundary = level_key.level.value
        current = thresholds.boundary(boundary)

        floor = max(self.initial_thresholds.boundary(boundary) - config.max_total_shift,
                    thresholds.lower_neighbour(boundary) + config.min_threshold_gap)
        proposed = round(max(current - config.threshold_step, floor), 6)
        if proposed > current:
            proposed = current

        proposed_cooldown = round(max(config.min_cooldown_s,
                                      config.cooldown_seconds * (1.0 - config.cooldown_step)), 6)
        if proposed_cooldown > config.cooldown_seconds:
            proposed_cooldown = config.cooldown_seconds

        if proposed == current and proposed_cooldown == config.cooldown_seconds:
            logger.info(f"{level_key} underperforms (avg {entry.avg_effectiveness:.2f}) "
                        f"but boundary and cooldown are at their limits")
            return None

        adjustment = ThresholdAdjustment(
            level_key=level_key,
            boundary=boundary,
            current=current,
            proposed=proposed,
            avg_effectiveness=entry.avg_effectiveness,
            sample_size=entry.total_count,
            current_cooldown_s=config.cooldown_seconds,
            proposed_cooldown_s=proposed_cooldown,
            reason=(f"average effectiveness {entry.avg_effectiveness:.2f} below "
                    f"{config.effectiveness_floor:.2f} over {entry.total_count} outcomes"),
        )
        self.proposals.append(adjustment)

        logger.info(f"Proposed adjustment for {level_key}: {boundary} {current:.3f} -> {proposed:.3f}, "
                    f"cooldown {config.cooldown_seconds:.1f}s -> {proposed_cooldown:.1f}s")
        return adjustment

    def entry(self, level_key: LevelKey) -> Optional[EffectivenessEntry]:
        return self.entries.get(level_key)

    def get_learning_summary(self) -> Dict:
        """Get effectiveness learning summary"""
        with self._lock:
            entries = list(self.entries.values())
        return {
            'total_outcomes': sum(e.total_count for e in entries),
            'level_keys': {
                str(e.level_key): {
                    'total': e.total_count,
                    'success_rate': e.success_rate,
                    'avg_effectiveness': e.avg_effectiveness,
                }
                for e in entries
            },
            'proposals': [p.to_dict() for p in self.proposals],
            'initial_thresholds': self.initial_thresholds.as_dict(),
        }

    def recent_outcomes(self, limit: int = 20) -> List[OutcomeEvent]:
        return list(self.outcome_events)[-limit:]
