"""Unit tests for the PDR + fingerprint fusion strategy."""

import threading
import unittest

import numpy as np
from numpy.testing import assert_allclose

from indoornav.config import StrategyConfig
from indoornav.fusion.events import Channel
from indoornav.fusion.strategy import FusionStrategy
from indoornav.sensors.types import PositionEstimate, StepEvent

START = PositionEstimate(x=1.0, y=2.0, floor=3, timestamp=0, source="start")


def step(timestamp, heading=0.0):
    return StepEvent(heading=heading, length=0.5, timestamp=timestamp)


def fix(x, y, source, timestamp=0, floor=3):
    return PositionEstimate(x=x, y=y, floor=floor, timestamp=timestamp, source=source)


class TestFusionStrategyModel(unittest.TestCase):
    """Test the filter built from the configuration."""

    def test_initial_state_and_covariance(self):
        strategy = FusionStrategy(START, Channel("steps"))
        state, covariance = strategy.get_state()
        assert_allclose(state, [1.0, 2.0, 0.0, 0.5])
        assert_allclose(
            np.diag(covariance), [25.0, 25.0, np.deg2rad(10.0) ** 2, 0.25]
        )
        assert_allclose(strategy.kf.A, np.eye(4))
        assert_allclose(strategy.kf.B, np.eye(4))
        assert_allclose(
            np.diag(strategy.kf.Q), [1.0, 1.0, np.deg2rad(3.0) ** 2, 0.25]
        )
        self.assertEqual(strategy.floor, 3)

    def test_custom_configuration(self):
        config = StrategyConfig(step_length=0.7, init_position_std=2.0)
        strategy = FusionStrategy(START, Channel("steps"), config=config)
        state, covariance = strategy.get_state()
        self.assertEqual(state[3], 0.7)
        self.assertEqual(covariance[0, 0], 4.0)
        self.assertEqual(strategy.predictor.step_length, 0.7)


class TestFusionStrategyEvents(unittest.TestCase):
    """Test the event flow through a started strategy."""

    def setUp(self):
        self.steps = Channel("steps")
        self.magnetic = Channel("magnetic.positions")
        self.wifi = Channel("wifi.positions")
        self.strategy = FusionStrategy(
            START,
            self.steps,
            sources=[("magnetic", self.magnetic, 2.0)],
        )
        self.strategy.add_source("wifi", self.wifi, 4.0)
        self.published = []
        self.strategy.positions.subscribe(self.published.append)
        self.strategy.start()

    def tearDown(self):
        self.strategy.stop()

    def test_step_publishes_predicted_position(self):
        self.steps.publish(step(100, heading=np.pi / 2))
        self.assertEqual(len(self.published), 1)
        position = self.published[0]
        self.assertAlmostEqual(position.x, 1.0, places=12)
        self.assertAlmostEqual(position.y, 2.5, places=12)
        self.assertEqual(position.timestamp, 100)
        self.assertEqual(position.floor, 3)
        self.assertEqual(position.source, "kalman")
        self.assertEqual(self.strategy.step_count, 1)

    def test_fix_publishes_corrected_position(self):
        self.steps.publish(step(100))
        self.magnetic.publish(fix(5.0, 2.0, "magnetic", timestamp=150))

        self.assertEqual(len(self.published), 2)
        corrected = self.published[1]
        self.assertEqual(corrected.timestamp, 150)
        self.assertGreater(corrected.x, self.published[0].x)
        self.assertLess(corrected.x, 5.0)
        self.assertEqual(self.strategy.step_count, 0)

    def test_corrected_position_excludes_later_step(self):
        # A step handled between the filter update and the strategy's
        # correction handler must not leak into the corrected position
        corrections = []
        updater = self.strategy.updater
        updater.corrections.unsubscribe(self.strategy._on_correction)
        updater.corrections.subscribe(corrections.append)
        updater.corrections.subscribe(lambda _: self.strategy.on_step(step(200)))
        updater.corrections.subscribe(self.strategy._on_correction)

        self.magnetic.publish(fix(5.0, 2.0, "magnetic", timestamp=150))

        corrected = [p for p in self.published if p.timestamp == 150]
        self.assertEqual(len(corrected), 1)
        self.assertEqual((corrected[0].x, corrected[0].y), corrections[0].position)
        self.assertAlmostEqual(self.strategy.get_state()[0][0], corrected[0].x + 0.5, places=12)

    def test_fix_from_other_floor_ignored(self):
        self.magnetic.publish(fix(5.0, 2.0, "magnetic", floor=1))
        self.assertEqual(self.published, [])

    def test_stale_fixes_dropped_after_step_limit(self):
        config = StrategyConfig(min_sources=2)
        steps = Channel("steps")
        strategy = FusionStrategy(START, steps, config=config)
        strategy.add_source("magnetic", self.magnetic, 2.0)
        strategy.add_source("wifi", self.wifi, 4.0)
        strategy.start()
        try:
            self.magnetic.publish(fix(50.0, 50.0, "magnetic"))
            for t in range(3):
                steps.publish(step(t))
            # Within the step limit the fix is still pending
            self.assertIn("magnetic", strategy.updater.pending)

            steps.publish(step(3))
            self.assertEqual(strategy.step_count, 4)
            self.assertEqual(strategy.updater.pending, {})

            # The stale fix never reaches the filter
            self.assertFalse(strategy.publish())
        finally:
            strategy.stop()

    def test_correction_resets_step_count(self):
        for t in range(5):
            self.steps.publish(step(t))
        self.assertEqual(self.strategy.step_count, 5)
        self.wifi.publish(fix(3.0, 2.0, "wifi", timestamp=6))
        self.assertEqual(self.strategy.step_count, 0)

    def test_stop_detaches_inputs(self):
        self.strategy.stop()
        self.strategy.stop()
        self.assertFalse(self.strategy.running)
        self.assertEqual(self.steps.subscriber_count, 0)
        self.assertEqual(self.magnetic.subscriber_count, 0)
        self.assertEqual(self.wifi.subscriber_count, 0)
        self.steps.publish(step(1))
        self.assertEqual(self.published, [])

    def test_start_is_idempotent(self):
        self.strategy.start()
        self.assertEqual(self.steps.subscriber_count, 1)
        self.assertEqual(self.magnetic.subscriber_count, 1)

    def test_source_added_while_running(self):
        ble = Channel("ble.positions")
        self.strategy.add_source("ble", ble, 3.0)
        self.assertEqual(ble.subscriber_count, 1)
        ble.publish(fix(1.0, 2.0, "ble", timestamp=9))
        self.assertEqual(self.published[-1].timestamp, 9)

    def test_duplicate_source_rejected(self):
        with self.assertRaises(ValueError):
            self.strategy.add_source("wifi", Channel(), 1.0)


class TestFusionAccuracy(unittest.TestCase):
    """Fixes keep a biased dead-reckoning track close to the truth."""

    def test_fixes_bound_heading_bias_drift(self):
        steps = Channel("steps")
        fixes = Channel("fixes")
        start = PositionEstimate(x=0.0, y=0.0, floor=0, timestamp=0)
        fused = FusionStrategy(start, steps, sources=[("magnetic", fixes, 1.0)])
        dead_reckoning = FusionStrategy(start, Channel("steps-only"))
        fused.start()

        bias = np.deg2rad(10.0)
        truth = np.zeros(2)
        for k in range(1, 61):
            event = step(k, heading=bias)
            truth = truth + [0.5, 0.0]
            fused.on_step(event)
            dead_reckoning.on_step(event)
            if k % 5 == 0:
                fixes.publish(PositionEstimate(x=truth[0], y=truth[1], floor=0, timestamp=k))
        fused.stop()

        fused_error = np.linalg.norm(fused.get_state()[0][:2] - truth)
        dr_error = np.linalg.norm(dead_reckoning.get_state()[0][:2] - truth)
        self.assertGreater(dr_error, 4.0)
        self.assertLess(fused_error, 1.0)


class TestFusionStrategyConcurrency(unittest.TestCase):
    """Steps and fixes arriving on different threads are serialized."""

    def test_concurrent_steps_and_fixes(self):
        steps = Channel("steps")
        magnetic = Channel("magnetic.positions")
        wifi = Channel("wifi.positions")
        strategy = FusionStrategy(
            START, steps, sources=[("magnetic", magnetic, 2.0), ("wifi", wifi, 4.0)]
        )
        published = []
        strategy.positions.subscribe(published.append)
        strategy.start()

        n_events = 200
        errors = []
        start = threading.Barrier(4)

        def walk(heading):
            try:
                start.wait()
                for t in range(n_events):
                    steps.publish(step(t, heading=heading))
            except Exception as e:  # surfaced by the assertion below
                errors.append(e)

        def report(channel, source, x):
            try:
                start.wait()
                for t in range(n_events):
                    channel.publish(fix(x, 2.0, source, timestamp=10_000 + t))
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=walk, args=(0.0,)),
            threading.Thread(target=walk, args=(np.pi / 2,)),
            threading.Thread(target=report, args=(magnetic, "magnetic", 3.0)),
            threading.Thread(target=report, args=(wifi, "wifi", 1.0)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10.0)
            self.assertFalse(t.is_alive(), "handler thread deadlocked")
        strategy.stop()

        self.assertEqual(errors, [])
        # One publish per step and one per applied fix
        self.assertEqual(len(published), 4 * n_events)
        self.assertEqual(strategy.updater.rejected_fixes, 0)

        state, covariance = strategy.get_state()
        self.assertTrue(np.all(np.isfinite(state)))
        self.assertTrue(np.all(np.isfinite(covariance)))
        assert_allclose(covariance, covariance.T, atol=1e-10)
        self.assertTrue(np.all(np.linalg.eigvalsh(covariance) > 0))
