"""Unit tests for event channels and the fixed-rate scheduler."""

import threading
import time
import unittest

import pytest

from indoornav.fusion.events import Channel
from indoornav.fusion.scheduler import FixedRateScheduler


class TestChannel(unittest.TestCase):
    """Test publish/subscribe semantics."""

    def test_delivery_in_registration_order(self):
        channel = Channel("test")
        calls = []
        channel.subscribe(lambda e: calls.append(("first", e)))
        channel.subscribe(lambda e: calls.append(("second", e)))
        channel.publish(1)
        self.assertEqual(calls, [("first", 1), ("second", 1)])

    def test_unsubscribe(self):
        channel = Channel()
        received = []
        handler = channel.subscribe(received.append)
        self.assertTrue(channel.unsubscribe(handler))
        self.assertFalse(channel.unsubscribe(handler))
        channel.publish("x")
        self.assertEqual(received, [])
        self.assertEqual(channel.subscriber_count, 0)

    def test_handler_may_unsubscribe_during_publish(self):
        channel = Channel()
        received = []

        def once(event):
            received.append(event)
            channel.unsubscribe(once)

        channel.subscribe(once)
        channel.subscribe(received.append)
        channel.publish(1)
        channel.publish(2)
        self.assertEqual(received, [1, 1, 2])

    def test_synchronous_delivery(self):
        channel = Channel()
        threads = []
        channel.subscribe(lambda _: threads.append(threading.current_thread()))
        channel.publish(None)
        self.assertEqual(threads, [threading.current_thread()])

    def test_repr(self):
        channel = Channel("compass.headings")
        channel.subscribe(print)
        self.assertEqual(repr(channel), "Channel('compass.headings', subscribers=1)")


class TestFixedRateScheduler(unittest.TestCase):
    """Test the periodic worker thread."""

    def test_runs_repeatedly_until_cancelled(self):
        ticks = []
        done = threading.Event()

        def task():
            ticks.append(time.monotonic())
            if len(ticks) >= 3:
                done.set()

        scheduler = FixedRateScheduler(0.005, task)
        scheduler.start()
        self.assertTrue(done.wait(timeout=2.0))
        scheduler.cancel()
        self.assertFalse(scheduler.running)

        count = len(ticks)
        time.sleep(0.03)
        self.assertEqual(len(ticks), count)

    def test_cancel_is_idempotent(self):
        scheduler = FixedRateScheduler(0.01, lambda: None)
        scheduler.cancel()
        scheduler.start()
        scheduler.cancel()
        scheduler.cancel()
        self.assertFalse(scheduler.running)

    def test_ticks_never_overlap(self):
        active = []
        overlaps = []
        lock = threading.Lock()
        done = threading.Event()
        count = [0]

        def slow_task():
            with lock:
                if active:
                    overlaps.append(True)
                active.append(1)
            time.sleep(0.01)
            with lock:
                active.pop()
                count[0] += 1
                if count[0] >= 3:
                    done.set()

        # Period shorter than the task: slots are skipped, not stacked
        scheduler = FixedRateScheduler(0.002, slow_task)
        scheduler.start()
        self.assertTrue(done.wait(timeout=2.0))
        scheduler.cancel()
        self.assertEqual(overlaps, [])
        self.assertGreater(scheduler.skipped_ticks, 0)

    def test_task_exception_does_not_stop_ticking(self):
        calls = []
        done = threading.Event()

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            done.set()

        scheduler = FixedRateScheduler(0.005, flaky)
        scheduler.start()
        self.assertTrue(done.wait(timeout=2.0))
        scheduler.cancel()

    def test_cancel_from_inside_task(self):
        calls = []
        scheduler = None

        def task():
            calls.append(1)
            scheduler.cancel()

        scheduler = FixedRateScheduler(0.005, task)
        scheduler.start()
        time.sleep(0.05)
        self.assertEqual(len(calls), 1)

    def test_delayed_first_tick(self):
        ticks = []
        scheduler = FixedRateScheduler(10.0, lambda: ticks.append(1), run_immediately=False)
        scheduler.start()
        time.sleep(0.02)
        scheduler.cancel()
        self.assertEqual(ticks, [])


def test_rejects_non_positive_period():
    with pytest.raises(ValueError):
        FixedRateScheduler(0.0, lambda: None)
