"""
Unit Tests - Engine clocks and tick scheduling
"""

import threading
import time
import unittest
import logging
from unittest.mock import Mock

# Disable logging during tests
logging.disable(logging.CRITICAL)

from fracture_engine.core.clock import ManualClock, ThreadingClock


class TestManualClock(unittest.TestCase):

    def setUp(self):
        self.clock = ManualClock(start=100.0)

    def test_advance_fires_due_ticks(self):
        seen = []
        self.clock.schedule('a', 1.0, lambda: seen.append(self.clock.now()))

        fired = self.clock.advance(3.5)

        self.assertEqual(fired, 3)
        self.assertEqual(seen, [101.0, 102.0, 103.0])
        self.assertEqual(self.clock.now(), 103.5)

    def test_ticks_of_several_subjects_fire_in_time_order(self):
        order = []
        self.clock.schedule('fast', 1.0, lambda: order.append(('fast', self.clock.now())))
        self.clock.schedule('slow', 1.5, lambda: order.append(('slow', self.clock.now())))

        self.clock.advance(3.0)

        self.assertEqual([t for _, t in order], sorted(t for _, t in order))
        self.assertEqual(sum(1 for name, _ in order if name == 'slow'), 2)

    def test_cancel_stops_ticks(self):
        callback = Mock()
        handle = self.clock.schedule('a', 1.0, callback)
        self.clock.advance(1.0)
        self.clock.cancel(handle)
        self.clock.advance(5.0)

        self.assertEqual(callback.call_count, 1)
        self.assertIsNone(self.clock.handle_for('a'))

    def test_rescheduling_replaces_existing_schedule(self):
        first, second = Mock(), Mock()
        self.clock.schedule('a', 1.0, first)
        self.clock.schedule('a', 1.0, second)
        self.clock.advance(2.0)

        first.assert_not_called()
        self.assertEqual(second.call_count, 2)

    def test_callback_errors_do_not_stop_schedule(self):
        callback = Mock(side_effect=RuntimeError("tick failed"))
        self.clock.schedule('a', 1.0, callback)
        self.assertEqual(self.clock.advance(3.0), 3)

    def test_cannot_move_backwards(self):
        with self.assertRaises(ValueError):
            self.clock.advance(-1.0)
        with self.assertRaises(ValueError):
            self.clock.set(50.0)

    def test_invalid_interval(self):
        with self.assertRaises(ValueError):
            self.clock.schedule('a', 0.0, Mock())


class TestThreadingClock(unittest.TestCase):

    def test_ticks_until_cancelled(self):
        clock = ThreadingClock()
        ticked = threading.Event()
        callback = Mock(side_effect=lambda: ticked.set())

        handle = clock.schedule('a', 0.01, callback)
        self.assertTrue(ticked.wait(2.0))
        clock.cancel(handle)

        count = callback.call_count
        time.sleep(0.05)
        self.assertEqual(callback.call_count, count)
        self.assertGreaterEqual(count, 1)

    def test_now_is_wall_clock(self):
        self.assertAlmostEqual(ThreadingClock().now(), time.time(), delta=1.0)


if __name__ == '__main__':
    unittest.main()
