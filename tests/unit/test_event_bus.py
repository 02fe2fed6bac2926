"""
Unit Tests - Typed event channel
"""

import unittest
import logging
from unittest.mock import Mock

# Disable logging during tests
logging.disable(logging.CRITICAL)

from fracture_engine.core.event_bus import EventBus, EventType


class TestEventBus(unittest.TestCase):

    def setUp(self):
        self.bus = EventBus(history_size=10)

    def test_handlers_receive_matching_types(self):
        scores = Mock()
        everything = Mock()
        self.bus.subscribe(scores, EventType.SCORE_UPDATED)
        self.bus.subscribe(everything)

        self.bus.emit(EventType.SCORE_UPDATED, 'a', {'index': 0.4}, timestamp=1.0)
        self.bus.emit(EventType.CRISIS_SUSPECTED, 'a', timestamp=2.0)

        self.assertEqual(scores.call_count, 1)
        self.assertEqual(scores.call_args[0][0].data['index'], 0.4)
        self.assertEqual(everything.call_count, 2)

    def test_filter_function(self):
        handler = Mock()
        self.bus.subscribe(handler, filter_func=lambda e: e.subject_id == 'b')

        self.bus.emit(EventType.SCORE_UPDATED, 'a')
        self.bus.emit(EventType.SCORE_UPDATED, 'b')

        self.assertEqual(handler.call_count, 1)

    def test_priority_order(self):
        calls = []
        self.bus.subscribe(lambda e: calls.append('low'), priority=0)
        self.bus.subscribe(lambda e: calls.append('high'), priority=10)

        self.bus.emit(EventType.SCORE_UPDATED, 'a')
        self.assertEqual(calls, ['high', 'low'])

    def test_handler_errors_are_isolated(self):
        after = Mock()
        self.bus.subscribe(Mock(side_effect=RuntimeError("boom")), priority=5)
        self.bus.subscribe(after)

        self.bus.emit(EventType.SCORE_UPDATED, 'a')

        after.assert_called_once()
        self.assertEqual(self.bus.get_event_statistics()['handler_errors'], 1)

    def test_unsubscribe(self):
        handler = Mock()
        subscription = self.bus.subscribe(handler)
        subscription.unsubscribe()

        self.bus.emit(EventType.SCORE_UPDATED, 'a')
        handler.assert_not_called()
        self.assertEqual(self.bus.handler_count, 0)

    def test_subscription_as_context_manager(self):
        handler = Mock()
        with self.bus.subscribe(handler):
            self.bus.emit(EventType.SCORE_UPDATED, 'a')
        self.bus.emit(EventType.SCORE_UPDATED, 'a')
        self.assertEqual(handler.call_count, 1)

    def test_duplicate_handler_id(self):
        self.bus.subscribe(Mock(), handler_id='dashboard')
        with self.assertRaises(ValueError):
            self.bus.subscribe(Mock(), handler_id='dashboard')

    def test_history_and_statistics(self):
        for i in range(15):
            self.bus.emit(EventType.SCORE_UPDATED, 'a' if i % 2 else 'b', timestamp=float(i))
        self.bus.emit(EventType.CRISIS_CONFIRMED, 'a', timestamp=15.0)

        stats = self.bus.get_event_statistics()
        self.assertEqual(stats['total_events'], 16)
        self.assertEqual(stats['events_by_type']['score_updated'], 15)

        self.assertEqual(len(self.bus.get_recent_events(limit=100)), 10)
        crises = self.bus.get_recent_events(event_type=EventType.CRISIS_CONFIRMED)
        self.assertEqual([e.timestamp for e in crises], [15.0])
        self.assertTrue(all(e.subject_id == 'b' for e in self.bus.get_recent_events(subject_id='b')))


if __name__ == '__main__':
    unittest.main()
