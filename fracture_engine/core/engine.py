"""
Fracture Engine - real-time instability monitoring facade

Wires the per-subject pipeline together:
    ingest -> buffers -> extractors -> composite scorer -> classifier
           -> intervention dispatcher / crisis detector -> events
and closes the loop through outcome learning and audited threshold
adjustments.
"""

import dataclasses
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

import pandas as pd

from fracture_engine.core.clock import EngineClock, ThreadingClock
from fracture_engine.core.config import EngineConfig
from fracture_engine.core.event_bus import Event, EventBus, EventType, Subscription
from fracture_engine.core.registry import AppliedAdjustment, SubjectRegistry, SubjectState
from fracture_engine.domains.base import DomainProfile, get_domain
from fracture_engine.features import processors
from fracture_engine.features.extractor import ExtractorLike, as_extractor
from fracture_engine.intervention.dispatcher import ActionExecutor
from fracture_engine.scoring.classifier import CrisisTransition
from fracture_engine.shared.errors import ConfigurationError, InvalidSampleError
from fracture_engine.shared.types import (
    CrisisRecord, FeatureSet, LevelKey, ScoreRecord, SignalSample, ThresholdAdjustment,
)

logger = logging.getLogger(__name__)

# Float tolerance when checking adjustment bounds
ADJUSTMENT_TOLERANCE = 1e-9


class FractureEngine:
    """
    Instability monitoring engine for any number of subjects.

    Responsibilities:
    - Subject lifecycle and per-subject configuration
    - Sample ingestion with validation
    - Tick pipeline: features, composite index, level, interventions, crisis
    - Outcome learning and the validated adjustment workflow
    - Monitoring schedules on the injected clock
    - Status, data quality and tabular history exports
    """

    def __init__(self, config: Optional[EngineConfig] = None, clock: Optional[EngineClock] = None,
                 event_bus: Optional[EventBus] = None,
                 action_executor: Optional[ActionExecutor] = None, action_workers: int = 0):
        self.default_config = config or EngineConfig()
        self.clock = clock or ThreadingClock()
        self.event_bus = event_bus or EventBus()
        self.action_executor = action_executor
        self.registry = SubjectRegistry()

        self._executor = None
        if action_workers > 0:
            self._executor = ThreadPoolExecutor(max_workers=action_workers,
                                                thread_name_prefix="fracture-action")

        # Extractors registered for all subjects, applied to subjects added later too
        self._extractor_overrides: Dict[str, ExtractorLike] = {}

        logger.info(f"Fracture engine initialized ({type(self.clock).__name__}, "
                    f"action workers: {action_workers})")

    # ------------------------------------------------------------------
    # Subjects
    # ------------------------------------------------------------------

    def add_subject(self, subject_id: str, domain: Union[str, DomainProfile, None] = None,
                    config: Union[EngineConfig, Mapping[str, Any], None] = None,
                    sources: Optional[Iterable[str]] = None) -> SubjectState:
        """
        Register a monitored subject

        Args:
            subject_id: Unique subject identifier
            domain: Domain name or profile (defaults to 'generic')
            config: Full configuration, or overrides applied to the domain preset
            sources: Extra signal sources beyond the domain defaults
        """
        profile = domain if isinstance(domain, DomainProfile) else get_domain(domain)

        if isinstance(config, EngineConfig):
            subject_config = config
        else:
            base = self.default_config if profile.name == 'generic' else profile.preset
            subject_config = base.replace(**dict(config)) if config else base

        state = SubjectState(subject_id, profile, subject_config, self.event_bus,
                             action_executor=self.action_executor, executor=self._executor)
        for source_id in sources or ():
            state.add_source(source_id)
        for source_id, extractor in self._extractor_overrides.items():
            state.add_source(source_id, as_extractor(extractor, profile.settings))

        return self.registry.add(state)

    def remove_subject(self, subject_id: str) -> bool:
        if subject_id not in self.registry:
            return False
        self.stop_monitoring(subject_id)
        self.registry.remove(subject_id)
        logger.info(f"Removed subject '{subject_id}'")
        return True

    def register_extractor(self, source_id: str, extractor: ExtractorLike,
                           subject_id: Optional[str] = None):
        """
        Install the extractor for a source, creating the source if needed.

        Without a subject the extractor applies to every current subject and
        to subjects added later.
        """
        if subject_id is None:
            self._extractor_overrides[source_id] = extractor
            targets = self.registry.states()
        else:
            targets = [self.registry.require(subject_id)]

        for state in targets:
            state.add_source(source_id, as_extractor(extractor, state.domain.settings))
        logger.info(f"Extractor for source '{source_id}' registered "
                    f"({'all subjects' if subject_id is None else subject_id})")

    # ------------------------------------------------------------------
    # Ingestion and ticks
    # ------------------------------------------------------------------

    def ingest(self, subject_id: str, source_id: str, value: float,
               timestamp: Optional[float] = None) -> Optional[SignalSample]:
        """
        Append one sample. Unknown subjects or sources are ignored with a warning;
        non-finite values and out-of-order timestamps raise InvalidSampleError.
        """
        state = self.registry.get(subject_id)
        if state is None:
            logger.warning(f"Ignoring sample for unknown subject '{subject_id}'")
            return None
        if not state.buffers.has_source(source_id):
            state.metrics.ignored_samples += 1
            logger.warning(f"Ignoring sample for unknown source '{source_id}' of subject '{subject_id}'")
            return None

        try:
            sample = state.buffers.push(source_id, value, self.clock.now() if timestamp is None else timestamp)
        except InvalidSampleError as e:
            state.metrics.rejected_samples += 1
            logger.warning(f"Rejected sample for '{subject_id}/{source_id}': {e}")
            raise

        state.metrics.total_readings += 1
        return sample

    def tick(self, subject_id: str) -> Optional[ScoreRecord]:
        """Run one scoring pass; returns None for unknown subjects or an overlapping tick"""
        state = self.registry.get(subject_id)
        if state is None:
            logger.warning(f"Tick requested for unknown subject '{subject_id}'")
            return None

        if not state.tick_lock.acquire(blocking=False):
            logger.debug(f"Tick for '{subject_id}' skipped, previous tick still running")
            return None
        try:
            return self._run_tick(state)
        finally:
            state.tick_lock.release()

    def _run_tick(self, state: SubjectState) -> ScoreRecord:
        now = self.clock.now()
        config = state.config

        state.dispatcher.sweep(now)

        feature_sets = self._extract_features(state)
        record = state.scorer.score(feature_sets, config.weights, now)
        record = dataclasses.replace(record, level=state.classifier.classify(record.index))
        state.scorer.replace_last(record)

        state.metrics.total_ticks += 1
        state.metrics.last_tick_time = now

        self.event_bus.emit(EventType.SCORE_UPDATED, state.subject_id, {
            'record': record,
            'index': record.index,
            'level': record.level.value,
            'components': dict(record.components),
            'trend': record.trend.value,
            'confidence': record.confidence,
        }, timestamp=now)

        if state.dispatcher.maybe_trigger(record, record.level, now) is not None:
            state.metrics.interventions_triggered += 1

        for transition in state.crisis.update(record, now):
            self._handle_crisis_transition(state, transition, now)

        return record

    def _extract_features(self, state: SubjectState) -> List[FeatureSet]:
        feature_sets = []
        for source_id in state.sources():
            extractor = state.extractors[source_id]
            window = state.buffers.window(source_id, extractor.window_size, consume_rejections=True)
            try:
                feature_sets.append(extractor.extract(window))
            except Exception as e:
                logger.error(f"Feature extraction failed for '{state.subject_id}/{source_id}': {e}")
                feature_sets.append(FeatureSet.insufficient(source_id, len(window)))
        return feature_sets

    def _handle_crisis_transition(self, state: SubjectState, transition: CrisisTransition, now: float):
        data = dict(transition.data)

        if transition.event == 'suspected':
            self.event_bus.emit(EventType.CRISIS_SUSPECTED, state.subject_id, data, timestamp=now)
        elif transition.event == 'confirmed':
            state.metrics.crises_detected += 1
            emergency = state.dispatcher.dispatch_emergency(transition.record, now)
            if emergency is not None:
                state.metrics.emergency_interventions += 1
                data['emergency_intervention_id'] = emergency.id
            data['crisis'] = transition.record
            self.event_bus.emit(EventType.CRISIS_CONFIRMED, state.subject_id, data, timestamp=now)
        elif transition.event == 'cleared':
            self.event_bus.emit(EventType.CRISIS_CLEARED, state.subject_id, data, timestamp=now)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(self, weights: Optional[Mapping[str, float]] = None,
                  thresholds: Optional[Mapping[str, float]] = None,
                  cooldown_seconds: Optional[float] = None, crisis_window: Optional[int] = None,
                  subject_id: Optional[str] = None, **extra) -> EngineConfig:
        """
        Change configuration for one subject, or for the engine default and every
        subject when no subject is given. All candidates are validated before any
        is installed; a ConfigurationError leaves every configuration unchanged.
        """
        changes = dict(extra)
        changes.update(weights=weights, thresholds=thresholds,
                       cooldown_seconds=cooldown_seconds, crisis_window=crisis_window)

        targets = [self.registry.require(subject_id)] if subject_id else self.registry.states()
        candidates = [(state, state.config.replace(**changes)) for state in targets]
        new_default = self.default_config.replace(**changes) if subject_id is None else None

        for state, config in candidates:
            previous = state.install_config(config)
            if state.monitoring and config.tick_interval_s != previous.tick_interval_s:
                self._reschedule(state)
            if thresholds is not None:
                state.learner.rebase(config.thresholds)
            logger.info(f"Configuration for '{state.subject_id}' updated to version {config.version}")

        if new_default is not None:
            self.default_config = new_default
            logger.info(f"Default configuration updated: {new_default.summary()}")
            return new_default
        return candidates[0][1]

    def get_config(self, subject_id: Optional[str] = None) -> EngineConfig:
        if subject_id is None:
            return self.default_config
        return self.registry.require(subject_id).config

    # ------------------------------------------------------------------
    # Outcome learning and adjustments
    # ------------------------------------------------------------------

    def record_outcome(self, subject_id: str, intervention: Union[str, LevelKey], effectiveness: float,
                       context: Optional[Dict[str, Any]] = None) -> Optional[ThresholdAdjustment]:
        """
        Feed an intervention outcome to the subject's learner.

        `intervention` is an intervention id or a LevelKey. Returns the
        adjustment proposal produced by this outcome, if any.
        """
        state = self.registry.require(subject_id)

        if isinstance(intervention, LevelKey):
            level_key = intervention
        else:
            record = state.dispatcher.find(intervention)
            if record is None:
                raise KeyError(f"Unknown intervention '{intervention}' for subject '{subject_id}'")
            level_key = LevelKey(state.domain.name, record.level, record.intervention_type)

        proposal = state.learner.record_outcome(level_key, effectiveness, context)
        if proposal is None:
            return None

        self.event_bus.emit(EventType.THRESHOLD_ADJUSTMENT_PROPOSED, subject_id, {
            'adjustment': proposal,
            **proposal.to_dict(),
        }, timestamp=self.clock.now())

        if state.config.auto_apply_adjustments:
            try:
                self.apply_adjustment(subject_id, proposal, automatic=True)
            except ConfigurationError as e:
                logger.warning(f"Automatic adjustment for '{subject_id}' rejected: {e}")
        return proposal

    def apply_adjustment(self, subject_id: str, adjustment: ThresholdAdjustment,
                         automatic: bool = False) -> EngineConfig:
        """Validate and install a learner proposal; raises ConfigurationError if it is out of bounds"""
        state = self.registry.require(subject_id)
        config = state.config
        boundary = adjustment.boundary

        try:
            current = config.thresholds.boundary(boundary)
        except KeyError as e:
            raise ConfigurationError(f"Adjustment names unknown boundary '{boundary}'") from e

        if not math.isfinite(adjustment.proposed):
            raise ConfigurationError(f"Proposed {boundary} boundary is not finite")
        if abs(current - adjustment.current) > ADJUSTMENT_TOLERANCE:
            raise ConfigurationError(f"Stale adjustment: {boundary} is {current}, "
                                     f"proposal was made against {adjustment.current}")

        initial = state.learner.initial_thresholds.boundary(boundary)
        if abs(adjustment.proposed - initial) > config.max_total_shift + ADJUSTMENT_TOLERANCE:
            raise ConfigurationError(f"Adjustment moves {boundary} more than {config.max_total_shift} "
                                     f"from its initial value {initial}")
        lower = config.thresholds.lower_neighbour(boundary) + config.min_threshold_gap
        upper = config.thresholds.upper_neighbour(boundary) - config.min_threshold_gap
        if boundary != 'aggressive' and adjustment.proposed > upper + ADJUSTMENT_TOLERANCE:
            raise ConfigurationError(f"Adjustment leaves less than {config.min_threshold_gap} "
                                     f"above {boundary}")
        if adjustment.proposed < lower - ADJUSTMENT_TOLERANCE:
            raise ConfigurationError(f"Adjustment leaves less than {config.min_threshold_gap} "
                                     f"below {boundary}")

        new_config = config.replace(
            thresholds={boundary: adjustment.proposed},
            cooldown_seconds=adjustment.proposed_cooldown_s,
        )
        state.install_config(new_config)
        state.adjustments.append(AppliedAdjustment(
            adjustment=adjustment,
            previous=config,
            applied=new_config,
            applied_at=self.clock.now(),
            automatic=automatic,
        ))
        state.metrics.adjustments_applied += 1

        logger.info(f"Applied adjustment for '{subject_id}': {boundary} {current:.3f} -> "
                    f"{adjustment.proposed:.3f} (config version {new_config.version})")
        self.event_bus.emit(EventType.THRESHOLD_ADJUSTMENT_APPLIED, subject_id, {
            'adjustment': adjustment,
            'automatic': automatic,
            'reverted': False,
            'version': new_config.version,
        }, timestamp=self.clock.now())
        return new_config

    def revert_last_adjustment(self, subject_id: str) -> Optional[EngineConfig]:
        """Restore the boundary and cooldown changed by the most recent adjustment"""
        state = self.registry.require(subject_id)
        if not state.adjustments:
            return None

        entry = state.adjustments.pop()
        adjustment = entry.adjustment
        new_config = state.config.replace(
            thresholds={adjustment.boundary: adjustment.current},
            cooldown_seconds=entry.previous.cooldown_seconds,
        )
        state.install_config(new_config)

        logger.info(f"Reverted adjustment of {adjustment.boundary} for '{subject_id}' "
                    f"(config version {new_config.version})")
        self.event_bus.emit(EventType.THRESHOLD_ADJUSTMENT_APPLIED, subject_id, {
            'adjustment': adjustment,
            'automatic': False,
            'reverted': True,
            'version': new_config.version,
        }, timestamp=self.clock.now())
        return new_config

    def adjustment_log(self, subject_id: str) -> List[AppliedAdjustment]:
        return list(self.registry.require(subject_id).adjustments)

    # ------------------------------------------------------------------
    # Monitoring lifecycle
    # ------------------------------------------------------------------

    def start_monitoring(self, subject_id: str, interval_s: Optional[float] = None):
        state = self.registry.require(subject_id)
        interval = interval_s or state.config.tick_interval_s
        self.clock.schedule(subject_id, interval, lambda: self.tick(subject_id))
        state.monitoring = True

        logger.info(f"Monitoring started for '{subject_id}' every {interval}s")
        self.event_bus.emit(EventType.MONITORING_STARTED, subject_id,
                            {'interval_s': interval}, timestamp=self.clock.now())

    def _reschedule(self, state: SubjectState):
        subject_id = state.subject_id
        interval = state.config.tick_interval_s
        self.clock.schedule(subject_id, interval, lambda: self.tick(subject_id))
        logger.info(f"Monitoring interval for '{subject_id}' changed to {interval}s")

    def stop_monitoring(self, subject_id: str) -> bool:
        """Cancel the tick schedule and drop pending crisis state; histories are kept"""
        state = self.registry.get(subject_id)
        if state is None:
            return False

        handle = self.clock.handle_for(subject_id)
        if handle is not None:
            self.clock.cancel(handle)
        state.crisis.reset()
        was_monitoring = state.monitoring
        state.monitoring = False

        if was_monitoring:
            logger.info(f"Monitoring stopped for '{subject_id}'")
            self.event_bus.emit(EventType.MONITORING_STOPPED, subject_id, {}, timestamp=self.clock.now())
        return was_monitoring

    def shutdown(self, wait: bool = True):
        for subject_id in self.registry.ids():
            self.stop_monitoring(subject_id)
        self.clock.cancel_all()
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
        logger.info("Fracture engine shut down")

    def subscribe(self, handler: Callable[[Event], Any],
                  event_types: Union[EventType, Iterable[EventType], None] = None,
                  filter_func: Optional[Callable[[Event], bool]] = None,
                  priority: int = 0) -> Subscription:
        return self.event_bus.subscribe(handler, event_types, priority=priority, filter_func=filter_func)

    # ------------------------------------------------------------------
    # Status and exports
    # ------------------------------------------------------------------

    def get_status(self, subject_id: Optional[str] = None) -> Dict[str, Any]:
        if subject_id is not None:
            state = self.registry.require(subject_id)
            status = state.get_summary()
            status['interventions'] = state.dispatcher.get_summary()
            status['config'] = state.config.to_dict()
            return status

        states = self.registry.states()
        return {
            'subjects': {s.subject_id: s.get_summary() for s in states},
            'total_subjects': len(states),
            'monitoring': [s.subject_id for s in states if s.monitoring],
            'total_readings': sum(s.metrics.total_readings for s in states),
            'interventions_triggered': sum(s.metrics.interventions_triggered for s in states),
            'crises_detected': sum(s.metrics.crises_detected for s in states),
            'rejected_samples': sum(s.metrics.rejected_samples for s in states),
            'events': self.event_bus.get_event_statistics(),
        }

    def data_quality_summary(self, subject_id: str) -> Dict[str, Dict[str, Any]]:
        """Per-source buffer fill, rejection counts and current window quality"""
        state = self.registry.require(subject_id)
        summary = {}
        for source_id in state.sources():
            buffer = state.buffers.buffers[source_id]
            extractor = state.extractors[source_id]
            window = buffer.window(extractor.window_size)
            summary[source_id] = {
                'samples': len(buffer),
                'capacity': buffer.capacity,
                'total_pushed': buffer.total_pushed,
                'total_rejected': buffer.total_rejected,
                'last_timestamp': buffer.last_timestamp,
                'window_quality': processors.assess_quality(window.values, window.rejected),
                'sufficient': len(window) >= extractor.settings.min_samples,
            }
        return summary

    def get_score_history(self, subject_id: str, limit: Optional[int] = None) -> List[ScoreRecord]:
        history = list(self.registry.require(subject_id).scorer.history)
        return history[-limit:] if limit else history

    def get_crisis_history(self, subject_id: str) -> List[CrisisRecord]:
        return list(self.registry.require(subject_id).crisis.history)

    def get_learning_summary(self, subject_id: str) -> Dict[str, Any]:
        return self.registry.require(subject_id).learner.get_learning_summary()

    def history_frame(self, subject_id: str) -> pd.DataFrame:
        """Score history as a DataFrame, one column per component"""
        rows = []
        for record in self.registry.require(subject_id).scorer.history:
            row = {
                'timestamp': record.timestamp,
                'index': record.index,
                'level': record.level.value,
                'trend': record.trend.value,
                'confidence': record.confidence,
            }
            row.update({f"component_{name}": value for name, value in record.components.items()})
            rows.append(row)
        if not rows:
            return pd.DataFrame(columns=['timestamp', 'index', 'level', 'trend', 'confidence'])
        return pd.DataFrame(rows)

    def intervention_frame(self, subject_id: str) -> pd.DataFrame:
        """Completed and active interventions as a DataFrame"""
        dispatcher = self.registry.require(subject_id).dispatcher
        columns = ['id', 'level', 'intervention_type', 'trigger_index', 'timestamp',
                   'completed_at', 'status', 'emergency', 'action_errors', 'actions']
        rows = [{
            'id': i.id,
            'level': i.level.value,
            'intervention_type': i.intervention_type,
            'trigger_index': i.trigger_index,
            'timestamp': i.timestamp,
            'completed_at': i.completed_at,
            'status': i.status.value,
            'emergency': i.emergency,
            'action_errors': i.action_errors,
            'actions': len(i.actions),
        } for i in dispatcher.history() + dispatcher.active()]
        return pd.DataFrame(rows, columns=columns)
