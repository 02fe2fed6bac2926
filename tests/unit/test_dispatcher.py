"""
Unit Tests - Intervention dispatch, cooldown and action execution
"""

import unittest
import logging
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

# Disable logging during tests
logging.disable(logging.CRITICAL)

from fracture_engine.core.config import EngineConfig
from fracture_engine.core.event_bus import EventBus, EventType
from fracture_engine.intervention.dispatcher import (
    ActionBundle, ActionBundleTable, InterventionDispatcher, default_bundles,
)
from fracture_engine.shared.types import (
    ActionSpec, CrisisRecord, InterventionStatus, Level,
)

from tests.helpers import EventRecorder, make_record


class TestInterventionDispatcher(unittest.TestCase):

    def setUp(self):
        self.config = EngineConfig(cooldown_seconds=20.0, max_concurrency=1)
        self.bus = EventBus()
        self.recorder = EventRecorder(self.bus)
        self.executor_mock = Mock()
        self.dispatcher = InterventionDispatcher(
            'subject', default_bundles(), lambda: self.config, self.bus,
            action_executor=self.executor_mock,
        )

    def test_normal_level_never_triggers(self):
        self.assertIsNone(self.dispatcher.maybe_trigger(make_record(0.1), Level.NORMAL, 0.0))
        self.assertEqual(self.recorder.count(EventType.INTERVENTION_TRIGGERED), 0)

    def test_trigger_creates_active_intervention(self):
        intervention = self.dispatcher.maybe_trigger(make_record(0.7), Level.MODERATE, 0.0)

        self.assertIsNotNone(intervention)
        self.assertEqual(intervention.level, Level.MODERATE)
        self.assertEqual(intervention.intervention_type, 'alert')
        self.assertEqual(intervention.status, InterventionStatus.ACTIVE)
        self.assertEqual(self.dispatcher.active(), [intervention])
        self.assertEqual(self.executor_mock.call_count, len(intervention.actions))

        event = self.recorder.of_type(EventType.INTERVENTION_TRIGGERED)[0]
        self.assertEqual(event.data['intervention_id'], intervention.id)
        self.assertEqual(event.timestamp, 0.0)

    def test_cooldown_blocks_second_trigger(self):
        self.config = EngineConfig(cooldown_seconds=20.0, max_concurrency=5)

        self.assertIsNotNone(self.dispatcher.maybe_trigger(make_record(0.4), Level.GENTLE, 0.0))
        self.assertIsNone(self.dispatcher.maybe_trigger(make_record(0.4), Level.GENTLE, 5.0))
        self.assertAlmostEqual(self.dispatcher.cooldown_remaining(5.0), 15.0)
        self.assertIsNotNone(self.dispatcher.maybe_trigger(make_record(0.4), Level.GENTLE, 20.0))
        self.assertEqual(self.recorder.count(EventType.INTERVENTION_TRIGGERED), 2)

    def test_new_trigger_supersedes_active_intervention(self):
        self.config = EngineConfig(cooldown_seconds=0.0, max_concurrency=1)

        first = self.dispatcher.maybe_trigger(make_record(0.4), Level.GENTLE, 0.0)
        second = self.dispatcher.maybe_trigger(make_record(0.9), Level.AGGRESSIVE, 1.0)

        self.assertIsNotNone(second)
        self.assertEqual(first.status, InterventionStatus.SUPERSEDED)
        self.assertEqual(first.completed_at, 1.0)
        self.assertEqual(self.dispatcher.active(), [second])
        self.assertEqual(self.dispatcher.history(), [first])

        completed = self.recorder.of_type(EventType.INTERVENTION_COMPLETED)
        self.assertEqual(len(completed), 1)
        self.assertEqual(completed[0].data['superseded_by'], second.id)
        self.assertEqual(completed[0].timestamp, 1.0)

    def test_relaxed_concurrency_keeps_newest_interventions(self):
        self.config = EngineConfig(cooldown_seconds=0.0, max_concurrency=2)

        first = self.dispatcher.maybe_trigger(make_record(0.4), Level.GENTLE, 0.0)
        second = self.dispatcher.maybe_trigger(make_record(0.7), Level.MODERATE, 1.0)
        third = self.dispatcher.maybe_trigger(make_record(0.9), Level.AGGRESSIVE, 2.0)

        self.assertEqual(self.dispatcher.active(), [second, third])
        self.assertEqual(first.status, InterventionStatus.SUPERSEDED)

    def test_sweep_completes_due_interventions(self):
        intervention = self.dispatcher.maybe_trigger(make_record(0.4), Level.GENTLE, 0.0)

        self.assertEqual(self.dispatcher.sweep(59.0), [])
        completed = self.dispatcher.sweep(60.0)

        self.assertEqual(completed, [intervention])
        self.assertEqual(intervention.status, InterventionStatus.COMPLETED)
        self.assertEqual(intervention.completed_at, 60.0)
        self.assertEqual(self.dispatcher.active(), [])
        self.assertEqual(self.dispatcher.history(), [intervention])
        self.assertEqual(self.recorder.count(EventType.INTERVENTION_COMPLETED), 1)

    def test_complete_unknown_is_noop(self):
        self.assertIsNone(self.dispatcher.complete('missing', 1.0))

    def test_action_failure_reported_and_bookkeeping_unaffected(self):
        self.executor_mock.side_effect = RuntimeError("downstream unavailable")

        intervention = self.dispatcher.maybe_trigger(make_record(0.7), Level.MODERATE, 0.0)

        errors = self.recorder.of_type(EventType.INTERVENTION_ERROR)
        self.assertEqual(len(errors), len(intervention.actions))
        self.assertEqual(intervention.action_errors, len(intervention.actions))
        self.assertEqual(self.dispatcher.sweep(intervention.due_at)[0].id, intervention.id)

    def test_action_error_carries_dispatch_time(self):
        self.executor_mock.side_effect = RuntimeError("downstream unavailable")

        self.dispatcher.maybe_trigger(make_record(0.4), Level.GENTLE, 5.0)

        errors = self.recorder.of_type(EventType.INTERVENTION_ERROR)
        self.assertEqual([e.timestamp for e in errors], [5.0])

    def test_lasting_emergency_does_not_block_tiered_triggers(self):
        table = default_bundles()
        table.emergency = ActionBundle('crisis_response', (), 300.0)
        self.config = EngineConfig(cooldown_seconds=0.0, max_concurrency=1)
        dispatcher = InterventionDispatcher('subject', table, lambda: self.config, self.bus)
        crisis = CrisisRecord('crisis_1', 'subject', 0.0, 0.0, 0.9, 0.95, False, {})

        emergency = dispatcher.dispatch_emergency(crisis, 0.0)
        tiered = dispatcher.maybe_trigger(make_record(0.9), Level.AGGRESSIVE, 1.0)

        self.assertIsNotNone(tiered)
        self.assertEqual(emergency.status, InterventionStatus.ACTIVE)
        self.assertEqual(dispatcher.active(), [emergency, tiered])

    def test_actions_run_on_executor(self):
        calls = []
        pool = ThreadPoolExecutor(max_workers=2)
        dispatcher = InterventionDispatcher(
            'subject', default_bundles(), lambda: self.config, self.bus,
            action_executor=lambda intervention, action: calls.append(action.action_type),
            executor=pool,
        )

        intervention = dispatcher.maybe_trigger(make_record(0.9), Level.AGGRESSIVE, 0.0)
        pool.shutdown(wait=True)

        self.assertEqual(sorted(calls), sorted(a.action_type for a in intervention.actions))

    def test_missing_bundle_dispatches_nothing(self):
        dispatcher = InterventionDispatcher('subject', ActionBundleTable(), lambda: self.config, self.bus)
        self.assertIsNone(dispatcher.maybe_trigger(make_record(0.9), Level.AGGRESSIVE, 0.0))

    def test_emergency_bypasses_cooldown(self):
        self.dispatcher.maybe_trigger(make_record(0.9), Level.AGGRESSIVE, 0.0)
        crisis = CrisisRecord('crisis_1', 'subject', 2.0, 2.0, 0.9, 0.95, False, {})

        emergency = self.dispatcher.dispatch_emergency(crisis, 2.0)

        self.assertTrue(emergency.emergency)
        self.assertEqual(emergency.intervention_type, 'crisis_response')
        self.assertEqual(emergency.status, InterventionStatus.COMPLETED)
        # Emergency dispatch is not a tiered trigger
        self.assertEqual(self.recorder.count(EventType.INTERVENTION_TRIGGERED), 1)
        self.assertEqual(self.dispatcher.find(emergency.id), emergency)

    def test_bundles_from_mapping(self):
        table = ActionBundleTable.from_mapping({
            'gentle': {'type': 'nudge', 'duration_s': 5,
                       'actions': [{'action_type': 'ping', 'target': 'ops', 'payload': {'n': 1}}]},
        })
        bundle = table.for_level(Level.GENTLE)

        self.assertEqual(bundle, ActionBundle('nudge', (ActionSpec('ping', 'ops', {'n': 1}),), 5.0))
        self.assertIsNone(table.for_level(Level.MODERATE))
        self.assertIsNone(table.emergency)

    def test_negative_duration_rejected(self):
        with self.assertRaises(ValueError):
            ActionBundle('broken', (), -1.0)


if __name__ == '__main__':
    unittest.main()
