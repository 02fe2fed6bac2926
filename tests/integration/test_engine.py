"""
Integration Tests - Full engine pipeline on a manual clock
"""

import math
import os
import unittest
import logging
from unittest.mock import Mock, patch

import numpy as np

# Disable logging during tests
logging.disable(logging.CRITICAL)

from fracture_engine import create_engine
from fracture_engine.core.clock import ManualClock
from fracture_engine.core.engine import FractureEngine
from fracture_engine.core.event_bus import EventType
from fracture_engine.shared.errors import ConfigurationError, InvalidSampleError
from fracture_engine.shared.types import (
    CrisisPhase, InterventionStatus, Level, LevelKey, ThresholdAdjustment,
)
from fracture_engine.simulation import SignalSimulator, feed

from tests.helpers import EventRecorder, drive, pressure_engine, pressure_extractor


class TestScoringPipeline(unittest.TestCase):
    """Generic subject fed through the default extractor"""

    def setUp(self):
        self.clock = ManualClock()
        self.engine = FractureEngine(clock=self.clock)
        self.engine.add_subject('s', sources=['signal'])
        self.events = EventRecorder(self.engine)

    def tearDown(self):
        self.engine.shutdown()

    def test_constant_signal_is_normal(self):
        feed(self.engine, 's', 'signal', [5.0] * 50)
        record = self.engine.tick('s')

        self.assertEqual(record.level, Level.NORMAL)
        self.assertAlmostEqual(record.components['autocorrelation'], 1.0)
        self.assertAlmostEqual(record.components['volatility'], 0.0)
        self.assertAlmostEqual(record.index, 0.25)
        self.assertEqual(self.events.count(EventType.INTERVENTION_TRIGGERED), 0)

    def test_spike_triggers_intervention(self):
        feed(self.engine, 's', 'signal', [1.0] * 40 + [10.0] * 10)
        record = self.engine.tick('s')

        self.assertEqual(record.level, Level.MODERATE)
        self.assertAlmostEqual(record.index, 0.70)
        triggered = self.events.of_type(EventType.INTERVENTION_TRIGGERED)
        self.assertEqual(len(triggered), 1)
        self.assertEqual(triggered[0].data['level'], 'moderate')
        self.assertEqual(self.engine.get_status('s')['metrics']['interventions_triggered'], 1)

    def test_too_few_samples_scores_zero(self):
        feed(self.engine, 's', 'signal', [1.0, 2.0, 3.0])
        record = self.engine.tick('s')

        self.assertEqual(record.index, 0.0)
        self.assertEqual(record.level, Level.NORMAL)
        self.assertEqual(record.confidence, 0.0)

    def test_score_event_published_every_tick(self):
        feed(self.engine, 's', 'signal', [1.0] * 20)
        for _ in range(3):
            self.engine.tick('s')

        scores = self.events.of_type(EventType.SCORE_UPDATED)
        self.assertEqual(len(scores), 3)
        self.assertIn('components', scores[0].data)

    def test_unknown_subject_or_source_is_ignored(self):
        self.assertIsNone(self.engine.ingest('nobody', 'signal', 1.0, 0.0))
        self.assertIsNone(self.engine.ingest('s', 'unknown', 1.0, 0.0))
        self.assertIsNone(self.engine.tick('nobody'))
        self.assertEqual(self.engine.get_status('s')['metrics']['ignored_samples'], 1)

    def test_invalid_sample_lowers_next_confidence(self):
        feed(self.engine, 's', 'signal', [2.0] * 30)
        self.assertEqual(self.engine.tick('s').confidence, 1.0)

        with self.assertRaises(InvalidSampleError):
            self.engine.ingest('s', 'signal', math.nan, 31.0)
        self.assertLess(self.engine.tick('s').confidence, 1.0)

        # The rejection is reported once
        self.assertEqual(self.engine.tick('s').confidence, 1.0)
        self.assertEqual(self.engine.get_status('s')['metrics']['rejected_samples'], 1)

    def test_out_of_order_timestamp_rejected(self):
        self.engine.ingest('s', 'signal', 1.0, 10.0)
        with self.assertRaises(InvalidSampleError):
            self.engine.ingest('s', 'signal', 1.0, 5.0)

    def test_failing_extractor_does_not_stop_tick(self):
        self.engine.register_extractor('broken', Mock(side_effect=RuntimeError("bad source")), subject_id='s')
        feed(self.engine, 's', 'signal', [5.0] * 50)

        record = self.engine.tick('s')
        self.assertAlmostEqual(record.index, 0.25)
        self.assertLess(record.confidence, 1.0)

    def test_data_quality_summary(self):
        feed(self.engine, 's', 'signal', [3.0] * 30)
        summary = self.engine.data_quality_summary('s')['signal']

        self.assertEqual(summary['samples'], 30)
        self.assertTrue(summary['sufficient'])
        self.assertEqual(summary['window_quality'], 1.0)
        self.assertEqual(summary['last_timestamp'], 29.0)


class TestCrisisConfirmation(unittest.TestCase):

    def setUp(self):
        self.engine, self.clock = pressure_engine()
        self.events = EventRecorder(self.engine)

    def tearDown(self):
        self.engine.shutdown()

    def test_sustained_readings_confirm_crisis(self):
        drive(self.engine, self.clock, 'subject', [0.9, 0.9, 0.9])

        self.assertEqual(self.events.count(EventType.CRISIS_SUSPECTED), 1)
        confirmed = self.events.of_type(EventType.CRISIS_CONFIRMED)
        self.assertEqual(len(confirmed), 1)

        emergency_id = confirmed[0].data['emergency_intervention_id']
        state = self.engine.registry.get('subject')
        self.assertTrue(state.dispatcher.find(emergency_id).emergency)

        status = self.engine.get_status('subject')
        self.assertEqual(status['metrics']['crises_detected'], 1)
        self.assertEqual(status['metrics']['emergency_interventions'], 1)
        # The emergency bundle is not a tiered trigger
        self.assertEqual(self.events.count(EventType.INTERVENTION_TRIGGERED), 1)
        self.assertEqual(len(self.engine.get_crisis_history('subject')), 1)

    def test_dip_below_threshold_clears(self):
        drive(self.engine, self.clock, 'subject', [0.9, 0.9, 0.5])

        self.assertEqual(self.events.count(EventType.CRISIS_CONFIRMED), 0)
        cleared = self.events.of_type(EventType.CRISIS_CLEARED)
        self.assertEqual(len(cleared), 1)
        self.assertEqual(cleared[0].data['reason'], 'below_threshold')

    def test_stale_pending_crisis_expires(self):
        drive(self.engine, self.clock, 'subject', [0.9, 0.9], interval=40.0)

        cleared = self.events.of_type(EventType.CRISIS_CLEARED)
        self.assertEqual([e.data['reason'] for e in cleared], ['expired'])
        self.assertEqual(self.events.count(EventType.CRISIS_SUSPECTED), 2)
        self.assertEqual(self.events.count(EventType.CRISIS_CONFIRMED), 0)


class TestInterventionAdmission(unittest.TestCase):

    def test_cooldown_spaces_triggers(self):
        engine, clock = pressure_engine(cooldown_seconds=20.0, max_concurrency=5)
        events = EventRecorder(engine)

        drive(engine, clock, 'subject', [0.5] * 4, interval=5.0)
        self.assertEqual(events.count(EventType.INTERVENTION_TRIGGERED), 1)

        drive(engine, clock, 'subject', [0.5], start=20.0)
        self.assertEqual(events.count(EventType.INTERVENTION_TRIGGERED), 2)

    def test_interventions_complete_after_duration(self):
        engine, clock = pressure_engine(cooldown_seconds=0.0)
        events = EventRecorder(engine)

        drive(engine, clock, 'subject', [0.5])
        drive(engine, clock, 'subject', [0.1], start=100.0)

        self.assertEqual(events.count(EventType.INTERVENTION_COMPLETED), 1)
        frame = engine.intervention_frame('subject')
        self.assertEqual(list(frame['status']), ['completed'])
        self.assertEqual(frame['intervention_type'].iloc[0], 'notify')

    def test_actions_run_on_worker_pool(self):
        executor = Mock()
        engine = FractureEngine(clock=ManualClock(), action_executor=executor, action_workers=2)
        engine.add_subject('subject', config={'weights': {'pressure': 1.0}})
        engine.register_extractor('pressure', pressure_extractor)

        engine.ingest('subject', 'pressure', 0.7, 0.0)
        engine.tick('subject')
        engine.shutdown(wait=True)

        # Default moderate bundle carries two actions
        self.assertEqual(executor.call_count, 2)


class TestConfiguration(unittest.TestCase):

    def setUp(self):
        self.engine, self.clock = pressure_engine()

    def test_invalid_configuration_changes_nothing(self):
        before = self.engine.get_config('subject')
        default_before = self.engine.get_config()

        with self.assertRaises(ConfigurationError):
            self.engine.configure(thresholds={'gentle': 0.9})

        self.assertIs(self.engine.get_config('subject'), before)
        self.assertIs(self.engine.get_config(), default_before)

    def test_configure_subject(self):
        before = self.engine.get_config('subject')
        updated = self.engine.configure(thresholds={'gentle': 0.2}, cooldown_seconds=10.0,
                                        subject_id='subject')

        self.assertEqual(updated.version, before.version + 1)
        self.assertEqual(updated.thresholds.gentle, 0.2)
        self.assertEqual(self.engine.registry.get('subject').learner.initial_thresholds.gentle, 0.2)

        # New boundaries apply on the next tick
        record = drive(self.engine, self.clock, 'subject', [0.25])[0]
        self.assertEqual(record.level, Level.GENTLE)

    def test_sizing_changes_apply_to_live_subject(self):
        drive(self.engine, self.clock, 'subject', [0.1] * 20)
        self.engine.configure(buffer_capacity=10, score_history_size=5, intervention_history_size=3,
                              crisis_history_size=2, subject_id='subject')

        state = self.engine.registry.get('subject')
        buffer = state.buffers.buffers['pressure']
        self.assertEqual(buffer.capacity, 10)
        self.assertEqual(len(buffer), 10)
        self.assertEqual(len(self.engine.get_score_history('subject')), 5)
        self.assertEqual(state.dispatcher.completed.maxlen, 3)
        self.assertEqual(state.crisis.history.maxlen, 2)

        # Newest samples are kept and the buffer stays bounded
        drive(self.engine, self.clock, 'subject', [0.2] * 15, start=20.0)
        self.assertEqual(len(buffer), 10)
        self.assertEqual(buffer.window().values[-1], 0.2)
        self.assertEqual(len(self.engine.get_score_history('subject')), 5)

    def test_configure_all_subjects_updates_default(self):
        self.engine.add_subject('other')
        self.engine.configure(crisis_window=5)

        self.assertEqual(self.engine.get_config().crisis_window, 5)
        self.assertEqual(self.engine.get_config('subject').crisis_window, 5)
        self.assertEqual(self.engine.get_config('other').crisis_window, 5)

    def test_duplicate_subject_rejected(self):
        with self.assertRaises(ValueError):
            self.engine.add_subject('subject')

    def test_create_engine_reads_environment(self):
        with patch.dict(os.environ, {'FRACTURE_COOLDOWN_SECONDS': '12'}):
            engine = create_engine(clock=ManualClock())
        self.assertEqual(engine.get_config().cooldown_seconds, 12.0)


class TestOutcomeLearning(unittest.TestCase):

    def setUp(self):
        self.engine, self.clock = pressure_engine()
        self.events = EventRecorder(self.engine)
        drive(self.engine, self.clock, 'subject', [0.5])
        self.intervention_id = self.events.of_type(EventType.INTERVENTION_TRIGGERED)[0].data['intervention_id']

    def record_poor_outcomes(self, count=10):
        proposals = [self.engine.record_outcome('subject', self.intervention_id, 0.2) for _ in range(count)]
        return [p for p in proposals if p is not None]

    def test_outcomes_by_id_produce_proposal(self):
        proposals = self.record_poor_outcomes()

        self.assertEqual(len(proposals), 1)
        self.assertEqual(proposals[0].level_key, LevelKey('generic', Level.GENTLE, 'notify'))
        self.assertAlmostEqual(proposals[0].proposed, 0.25)
        self.assertEqual(self.events.count(EventType.THRESHOLD_ADJUSTMENT_PROPOSED), 1)
        # Proposals are advisory
        self.assertEqual(self.engine.get_config('subject').thresholds.gentle, 0.3)

    def test_outcomes_by_level_key(self):
        key = LevelKey('generic', Level.MODERATE, 'alert')
        for _ in range(3):
            self.engine.record_outcome('subject', key, 0.9)
        summary = self.engine.get_learning_summary('subject')
        self.assertEqual(summary['level_keys'][str(key)]['total'], 3)

    def test_unknown_intervention(self):
        with self.assertRaises(KeyError):
            self.engine.record_outcome('subject', 'missing', 0.5)

    def test_apply_and_revert(self):
        proposal = self.record_poor_outcomes()[0]
        version = self.engine.get_config('subject').version

        applied = self.engine.apply_adjustment('subject', proposal)
        self.assertEqual(applied.thresholds.gentle, 0.25)
        self.assertAlmostEqual(applied.cooldown_seconds, 27.0)
        self.assertEqual(applied.version, version + 1)
        self.assertEqual(len(self.engine.adjustment_log('subject')), 1)

        # Same proposal again is stale
        with self.assertRaises(ConfigurationError):
            self.engine.apply_adjustment('subject', proposal)

        reverted = self.engine.revert_last_adjustment('subject')
        self.assertEqual(reverted.thresholds.gentle, 0.3)
        self.assertEqual(reverted.cooldown_seconds, 30.0)
        self.assertEqual(reverted.version, version + 2)
        self.assertIsNone(self.engine.revert_last_adjustment('subject'))

        applied_events = self.events.of_type(EventType.THRESHOLD_ADJUSTMENT_APPLIED)
        self.assertEqual([e.data['reverted'] for e in applied_events], [False, True])

    def test_out_of_bounds_adjustments_rejected(self):
        key = LevelKey('generic', Level.GENTLE, 'notify')
        too_far = ThresholdAdjustment(key, 'gentle', current=0.3, proposed=0.1,
                                      avg_effectiveness=0.1, sample_size=10, proposed_cooldown_s=27.0)
        with self.assertRaises(ConfigurationError):
            self.engine.apply_adjustment('subject', too_far)

        self.engine.configure(thresholds={'gentle': 0.5, 'moderate': 0.6}, subject_id='subject')
        crowding = ThresholdAdjustment(LevelKey('generic', Level.MODERATE, 'alert'), 'moderate',
                                       current=0.6, proposed=0.52, avg_effectiveness=0.1,
                                       sample_size=10, proposed_cooldown_s=27.0)
        with self.assertRaises(ConfigurationError):
            self.engine.apply_adjustment('subject', crowding)
        self.assertEqual(self.engine.adjustment_log('subject'), [])

    def test_auto_apply(self):
        self.engine.configure(auto_apply_adjustments=True, subject_id='subject')
        self.record_poor_outcomes()

        config = self.engine.get_config('subject')
        self.assertEqual(config.thresholds.gentle, 0.25)
        log = self.engine.adjustment_log('subject')
        self.assertEqual(len(log), 1)
        self.assertTrue(log[0].automatic)


class TestMonitoringLifecycle(unittest.TestCase):

    def setUp(self):
        self.engine, self.clock = pressure_engine()
        self.events = EventRecorder(self.engine)

    def test_clock_drives_ticks(self):
        self.engine.ingest('subject', 'pressure', 0.1, 0.0)
        self.engine.start_monitoring('subject', interval_s=1.0)
        self.clock.advance(3.0)

        self.assertEqual(self.engine.get_status('subject')['metrics']['total_ticks'], 3)
        self.assertEqual(self.events.count(EventType.MONITORING_STARTED), 1)
        self.assertEqual(self.engine.get_status()['monitoring'], ['subject'])

    def test_interval_change_reschedules_running_monitor(self):
        self.engine.ingest('subject', 'pressure', 0.1, 0.0)
        self.engine.start_monitoring('subject', interval_s=1.0)
        self.engine.configure(tick_interval_s=5.0, subject_id='subject')
        self.clock.advance(10.0)

        self.assertEqual(self.engine.get_status('subject')['metrics']['total_ticks'], 2)

    def test_stop_resets_pending_crisis_and_keeps_history(self):
        self.engine.ingest('subject', 'pressure', 0.9, 0.0)
        self.engine.start_monitoring('subject', interval_s=1.0)
        self.clock.advance(1.0)
        state = self.engine.registry.get('subject')
        self.assertEqual(state.crisis.phase, CrisisPhase.PENDING)

        self.assertTrue(self.engine.stop_monitoring('subject'))
        self.assertEqual(state.crisis.phase, CrisisPhase.IDLE)
        self.assertFalse(self.engine.stop_monitoring('subject'))

        self.clock.advance(5.0)
        self.assertEqual(len(self.engine.get_score_history('subject')), 1)
        self.assertEqual(self.events.count(EventType.MONITORING_STOPPED), 1)

    def test_remove_subject(self):
        self.engine.start_monitoring('subject')
        self.assertTrue(self.engine.remove_subject('subject'))
        self.assertFalse(self.engine.remove_subject('subject'))
        self.assertEqual(self.clock.advance(3.0), 0)


class TestExports(unittest.TestCase):

    def test_history_frame(self):
        engine, clock = pressure_engine()
        self.assertEqual(list(engine.history_frame('subject').columns),
                         ['timestamp', 'index', 'level', 'trend', 'confidence'])

        drive(engine, clock, 'subject', [0.1, 0.4, 0.7])
        frame = engine.history_frame('subject')

        self.assertEqual(len(frame), 3)
        self.assertEqual(list(frame['level']), ['normal', 'gentle', 'moderate'])
        np.testing.assert_allclose(frame['component_pressure'], [0.1, 0.4, 0.7])

    def test_engine_status(self):
        engine, clock = pressure_engine()
        engine.add_subject('other')
        drive(engine, clock, 'subject', [0.5])

        status = engine.get_status()
        self.assertEqual(status['total_subjects'], 2)
        self.assertEqual(status['total_readings'], 1)
        self.assertEqual(status['interventions_triggered'], 1)


class TestMarketDomain(unittest.TestCase):

    def test_market_subject_end_to_end(self):
        clock = ManualClock()
        engine = FractureEngine(clock=clock)
        engine.add_subject('desk', domain='market')
        simulator = SignalSimulator(seed=11)

        feed(engine, 'desk', 'price', simulator.stable(64, level=100.0, noise=0.1))
        feed(engine, 'desk', 'volume', simulator.stable(64, level=1000.0, noise=5.0))
        feed(engine, 'desk', 'order_flow', simulator.order_flow(64, buy_bias=1.0))
        clock.set(63.0)
        record = engine.tick('desk')

        self.assertEqual(record.components['order_imbalance'], 1.0)
        self.assertIn('volume_velocity', record.components)
        self.assertTrue(0.0 <= record.index <= 1.0)
        self.assertEqual(engine.get_config('desk').cooldown_seconds, 30.0)
        self.assertEqual(engine.get_status('desk')['domain'], 'market')

    def test_escalation_after_cooldown_supersedes_lower_tier(self):
        clock = ManualClock()
        engine = FractureEngine(clock=clock)
        engine.add_subject('desk', domain='market', config={'weights': {'pressure': 1.0}})
        engine.register_extractor('pressure', pressure_extractor, subject_id='desk')
        events = EventRecorder(engine)

        # Second reading lands after the 30s cooldown but inside the 300s hedge duration
        drive(engine, clock, 'desk', [0.4, 0.95], interval=60.0)

        triggered = events.of_type(EventType.INTERVENTION_TRIGGERED)
        self.assertEqual([e.data['level'] for e in triggered], ['gentle', 'aggressive'])
        self.assertEqual([e.data['intervention_type'] for e in triggered],
                         ['defensive_hedge', 'position_reduction'])

        state = engine.registry.get('desk')
        hedge = state.dispatcher.find(triggered[0].data['intervention_id'])
        self.assertEqual(hedge.status, InterventionStatus.SUPERSEDED)
        self.assertEqual([i.id for i in state.dispatcher.active()], [triggered[1].data['intervention_id']])


if __name__ == '__main__':
    unittest.main()
