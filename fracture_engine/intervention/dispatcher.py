# dispatcher.py

import logging
import threading
from collections import OrderedDict, deque
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

from fracture_engine.core.config import EngineConfig
from fracture_engine.core.event_bus import EventBus, EventType
from fracture_engine.shared.types import (
    ActionSpec, CrisisRecord, InterventionRecord, InterventionStatus, Level, ScoreRecord,
)

logger = logging.getLogger(__name__)

ActionExecutor = Callable[[InterventionRecord, ActionSpec], Any]


@dataclass(frozen=True)
class ActionBundle:
    """Fixed set of actions dispatched for one level"""
    intervention_type: str
    actions: Tuple[ActionSpec, ...]
    duration_s: float

    def __post_init__(self):
        if self.duration_s < 0:
            raise ValueError(f"Bundle '{self.intervention_type}' has negative duration")


@dataclass
class ActionBundleTable:
    """Domain-supplied action bundles per level plus the crisis emergency bundle"""
    bundles: Dict[Level, ActionBundle] = field(default_factory=dict)
    emergency: Optional[ActionBundle] = None

    def for_level(self, level: Level) -> Optional[ActionBundle]:
        return self.bundles.get(level)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Mapping[str, Any]]) -> 'ActionBundleTable':
        """
        Build from plain data:
        {'gentle': {'type': ..., 'duration_s': ..., 'actions': [{'action_type', 'target', 'payload'}]}, ...,
         'emergency': {...}}
        """
        table = cls()
        for name, spec in mapping.items():
            bundle = ActionBundle(
                intervention_type=spec.get('type', name),
                actions=tuple(ActionSpec(a['action_type'], a.get('target', ''), dict(a.get('payload', {})))
                              for a in spec.get('actions', [])),
                duration_s=float(spec.get('duration_s', 60.0)),
            )
            if name == 'emergency':
                table.emergency = bundle
            else:
                table.bundles[Level(name)] = bundle
        return table


def default_bundles() -> ActionBundleTable:
    """Domain-neutral notification bundles"""
    return ActionBundleTable.from_mapping({
        'gentle': {
            'type': 'notify', 'duration_s': 60.0,
            'actions': [{'action_type': 'notification', 'target': 'operator',
                         'payload': {'priority': 'low'}}],
        },
        'moderate': {
            'type': 'alert', 'duration_s': 120.0,
            'actions': [{'action_type': 'alert', 'target': 'operator', 'payload': {'priority': 'medium'}},
                        {'action_type': 'increase_sampling', 'target': 'monitoring'}],
        },
        'aggressive': {
            'type': 'escalate', 'duration_s': 60.0,
            'actions': [{'action_type': 'emergency_alert', 'target': 'operator',
                         'payload': {'priority': 'high'}},
                        {'action_type': 'maximum_resolution', 'target': 'monitoring'}],
        },
        'emergency': {
            'type': 'crisis_response', 'duration_s': 0.0,
            'actions': [{'action_type': 'emergency_alert', 'target': 'response_team',
                         'payload': {'priority': 'critical'}}],
        },
    })


class InterventionDispatcher:
    """
    Turns classified levels into tiered interventions for one subject.

    Responsibilities:
    - Admission control: non-normal level and cooldown elapsed
    - Keep at most `max_concurrency` tiered interventions active; a new
      trigger supersedes the oldest ones (emergency records are not counted)
    - Select the level's action bundle and hand actions to the executor
    - Track active interventions and complete them when their duration elapses
    - Keep a bounded history of completed interventions for outcome learning
    """

    def __init__(self, subject_id: str, bundles: ActionBundleTable,
                 config_provider: Callable[[], EngineConfig], event_bus: EventBus,
                 action_executor: Optional[ActionExecutor] = None,
                 executor: Optional[Executor] = None, history_size: int = 200):
        self.subject_id = subject_id
        self.bundles = bundles
        self._config_provider = config_provider
        self.event_bus = event_bus
        self.action_executor = action_executor
        self.executor = executor

        self.active_interventions: "OrderedDict[str, InterventionRecord]" = OrderedDict()
        self.completed: Deque[InterventionRecord] = deque(maxlen=history_size)
        self.last_trigger_time: Optional[float] = None
        self.triggered_count = 0
        self.error_count = 0
        self._sequence = 0
        self._lock = threading.RLock()

    def cooldown_remaining(self, now: float) -> float:
        if self.last_trigger_time is None:
            return 0.0
        return max(0.0, self._config_provider().cooldown_seconds - (now - self.last_trigger_time))

    def can_trigger(self, now: float) -> bool:
        """Cooldown is the only admission gate"""
        with self._lock:
            return self.cooldown_remaining(now) <= 0

    def _tiered_active(self) -> List[InterventionRecord]:
        return [i for i in self.active_interventions.values() if not i.emergency]

    def _supersede_for(self, now: float) -> List[InterventionRecord]:
        """Retire the oldest tiered interventions so the incoming one fits under max_concurrency"""
        limit = self._config_provider().max_concurrency
        tiered = self._tiered_active()
        retired = tiered[:max(0, len(tiered) - limit + 1)]
        for intervention in retired:
            del self.active_interventions[intervention.id]
            intervention.status = InterventionStatus.SUPERSEDED
            intervention.completed_at = now
            self.completed.append(intervention)
        return retired

    def maybe_trigger(self, record: ScoreRecord, level: Level, now: float) -> Optional[InterventionRecord]:
        """Start an intervention for the level if admission control allows it"""
        if level == Level.NORMAL:
            return None

        bundle = self.bundles.for_level(level)
        if bundle is None:
            logger.debug(f"No action bundle for level {level.value}; nothing dispatched")
            return None

        with self._lock:
            if not self.can_trigger(now):
                logger.debug(f"Intervention for '{self.subject_id}' suppressed "
                             f"(cooldown {self.cooldown_remaining(now):.1f}s)")
                return None

            intervention = self._create(level, bundle, record.index, now)
            superseded = self._supersede_for(now)
            self.active_interventions[intervention.id] = intervention
            self.last_trigger_time = now
            self.triggered_count += 1

        for previous in superseded:
            logger.info(f"Intervention {previous.id} superseded by {intervention.id}")
            self.event_bus.emit(EventType.INTERVENTION_COMPLETED, self.subject_id, {
                'intervention': previous,
                'intervention_id': previous.id,
                'level': previous.level.value,
                'action_errors': previous.action_errors,
                'superseded_by': intervention.id,
            }, timestamp=now)

        logger.info(f"Intervention {intervention.id} triggered: level={level.value} "
                    f"index={record.index:.3f} type={bundle.intervention_type}")
        self.event_bus.emit(EventType.INTERVENTION_TRIGGERED, self.subject_id, {
            'intervention': intervention,
            'intervention_id': intervention.id,
            'level': level.value,
            'index': record.index,
            'intervention_type': intervention.intervention_type,
        }, timestamp=now)

        self._execute_actions(intervention, now)
        return intervention

    def dispatch_emergency(self, crisis: CrisisRecord, now: float) -> Optional[InterventionRecord]:
        """
        Run the emergency bundle for a confirmed crisis.

        Bypasses the cooldown and does not count toward or get superseded
        under max_concurrency. It is not reported as
        INTERVENTION_TRIGGERED, so the cooldown spacing of tiered
        interventions is unaffected; the crisis event carries its id.
        """
        bundle = self.bundles.emergency
        if bundle is None:
            return None

        with self._lock:
            intervention = self._create(Level.AGGRESSIVE, bundle, crisis.final_index, now)
            intervention.emergency = True
            if bundle.duration_s > 0:
                self.active_interventions[intervention.id] = intervention
            else:
                intervention.status = InterventionStatus.COMPLETED
                intervention.completed_at = now
                self.completed.append(intervention)

        logger.warning(f"Emergency intervention {intervention.id} for crisis {crisis.id}")
        self._execute_actions(intervention, now)
        return intervention

    def _create(self, level: Level, bundle: ActionBundle, index: float, now: float) -> InterventionRecord:
        self._sequence += 1
        return InterventionRecord(
            id=f"intervention_{self.subject_id}_{self._sequence}",
            level=level,
            trigger_index=index,
            timestamp=now,
            actions=list(bundle.actions),
            intervention_type=bundle.intervention_type,
            duration_s=bundle.duration_s,
            subject_id=self.subject_id,
        )

    def _execute_actions(self, intervention: InterventionRecord, now: float):
        if self.action_executor is None:
            return
        for action in intervention.actions:
            if self.executor is not None:
                self.executor.submit(self._run_action, intervention, action, now)
            else:
                self._run_action(intervention, action, now)

    def _run_action(self, intervention: InterventionRecord, action: ActionSpec, now: float):
        try:
            self.action_executor(intervention, action)
        except Exception as e:
            with self._lock:
                intervention.action_errors += 1
                self.error_count += 1
            logger.error(f"Action {action.action_type} of {intervention.id} failed: {e}")
            self.event_bus.emit(EventType.INTERVENTION_ERROR, self.subject_id, {
                'intervention_id': intervention.id,
                'action': action,
                'error': e,
            }, timestamp=now)

    def sweep(self, now: float) -> List[InterventionRecord]:
        """Complete every active intervention whose duration has elapsed"""
        with self._lock:
            due = [i.id for i in self.active_interventions.values() if now >= i.due_at]
        return [c for c in (self.complete(i, now) for i in due) if c is not None]

    def complete(self, intervention_id: str, now: float) -> Optional[InterventionRecord]:
        with self._lock:
            intervention = self.active_interventions.pop(intervention_id, None)
            if intervention is None:
                return None
            intervention.status = InterventionStatus.COMPLETED
            intervention.completed_at = now
            self.completed.append(intervention)

        logger.info(f"Intervention {intervention.id} completed after {now - intervention.timestamp:.1f}s")
        self.event_bus.emit(EventType.INTERVENTION_COMPLETED, self.subject_id, {
            'intervention': intervention,
            'intervention_id': intervention.id,
            'level': intervention.level.value,
            'action_errors': intervention.action_errors,
        }, timestamp=now)
        return intervention

    def find(self, intervention_id: str) -> Optional[InterventionRecord]:
        with self._lock:
            if intervention_id in self.active_interventions:
                return self.active_interventions[intervention_id]
            for intervention in reversed(self.completed):
                if intervention.id == intervention_id:
                    return intervention
        return None

    def active(self) -> List[InterventionRecord]:
        with self._lock:
            return list(self.active_interventions.values())

    def history(self, limit: Optional[int] = None) -> List[InterventionRecord]:
        """Completed interventions, oldest first"""
        with self._lock:
            records = list(self.completed)
        return records[-limit:] if limit else records

    def resize_history(self, size: int):
        with self._lock:
            self.completed = deque(self.completed, maxlen=size)

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'active': len(self.active_interventions),
                'completed': len(self.completed),
                'triggered': self.triggered_count,
                'action_errors': self.error_count,
                'last_trigger_time': self.last_trigger_time,
            }
