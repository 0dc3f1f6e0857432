"""
Unit tests for step detection and StepEvent emission.
"""

import numpy as np
import pytest

from indoornav.fusion.events import Channel
from indoornav.sensors.pdr import (
    PedestrianDeadReckoning,
    StepDetector,
    detect_steps_peak_detector,
    dynamic_accel_magnitude,
)
from indoornav.sensors.types import Acceleration, Heading, StepEvent

DT = 0.01
DT_NS = 10_000_000


def walking_signal(duration_s: float = 10.0, step_hz: float = 2.5) -> np.ndarray:
    """Vertical acceleration of a phone held flat while walking."""
    t = np.arange(0.0, duration_s, DT)
    accel_z = 9.80665 + 2.0 * np.sin(2 * np.pi * step_hz * t)
    return np.column_stack([np.zeros_like(t), np.zeros_like(t), accel_z])


def test_dynamic_magnitude_removes_gravity():
    assert dynamic_accel_magnitude(np.array([0.0, 0.0, 9.80665])) == pytest.approx(0.0)
    assert dynamic_accel_magnitude(np.array([3.0, 4.0, 0.0]), g=5.0) == pytest.approx(0.0)
    with pytest.raises(ValueError):
        dynamic_accel_magnitude(np.zeros(2))


class TestBatchDetector:
    """Test the recorded-series detector."""

    def test_counts_steps(self):
        idx, dynamic = detect_steps_peak_detector(walking_signal(10.0, 2.5), dt=DT)
        assert len(idx) == 25
        assert dynamic.shape == (1000,)

    def test_still_device_has_no_steps(self):
        still = np.tile([0.0, 0.0, 9.80665], (500, 1))
        idx, _ = detect_steps_peak_detector(still, dt=DT)
        assert len(idx) == 0

    def test_bad_input(self):
        with pytest.raises(ValueError):
            detect_steps_peak_detector(np.zeros((10, 2)), dt=DT)
        with pytest.raises(ValueError):
            detect_steps_peak_detector(np.zeros((10, 3)), dt=0.0)


class TestStepDetector:
    """Test the streaming detector on the same signals."""

    def _run(self, accel: np.ndarray, **kwargs):
        channel = Channel("acc")
        detector = StepDetector(channel, **kwargs)
        steps = []
        detector.steps.subscribe(steps.append)
        detector.start()
        for i, (x, y, z) in enumerate(accel):
            channel.publish(Acceleration(x, y, z, timestamp=i * DT_NS))
        detector.stop()
        return detector, steps

    def test_agrees_with_batch_detector(self):
        accel = walking_signal(10.0, 2.5)
        detector, steps = self._run(accel)
        idx, _ = detect_steps_peak_detector(accel, dt=DT)
        assert detector.step_count == len(steps) == 25
        assert steps == [int(i) * DT_NS for i in idx]

    def test_refractory_interval(self):
        # 4 Hz "steps" with a 0.3 s refractory interval: every other peak
        _, steps = self._run(walking_signal(5.0, 4.0), min_step_interval=0.3)
        intervals = np.diff(steps) * 1e-9
        assert len(steps) == 10
        assert np.all(intervals >= 0.3)

    def test_small_peaks_ignored(self):
        _, steps = self._run(walking_signal(5.0, 2.5), min_peak_height=2.5)
        assert steps == []

    def test_stop_detaches(self):
        channel = Channel("acc")
        detector = StepDetector(channel)
        detector.start()
        detector.start()
        assert channel.subscriber_count == 1
        detector.stop()
        detector.stop()
        assert channel.subscriber_count == 0

    def test_bad_parameters(self):
        with pytest.raises(ValueError):
            StepDetector(Channel(), min_peak_height=0.0)
        with pytest.raises(ValueError):
            StepDetector(Channel(), min_step_interval=-1.0)


class TestPedestrianDeadReckoning:
    """Test StepEvent emission."""

    def setup_method(self):
        self.steps = Channel("steps")
        self.headings = Channel("headings")
        self.pdr = PedestrianDeadReckoning(self.steps, self.headings, step_length=0.7)
        self.events = []
        self.pdr.events.subscribe(self.events.append)
        self.pdr.start()

    def teardown_method(self):
        self.pdr.stop()

    def test_steps_before_heading_dropped(self):
        self.steps.publish(100)
        assert self.events == []
        assert self.pdr.dropped_steps == 1

    def test_step_uses_latest_heading(self):
        self.headings.publish(Heading(azimuth=0.1, timestamp=1))
        self.headings.publish(Heading(azimuth=0.4, timestamp=2))
        self.steps.publish(500)
        assert self.events == [StepEvent(heading=0.4, length=0.7, timestamp=500)]

    def test_stop_detaches(self):
        self.pdr.stop()
        assert self.steps.subscriber_count == 0
        assert self.headings.subscriber_count == 0
        self.headings.publish(Heading(azimuth=0.1, timestamp=1))
        self.steps.publish(500)
        assert self.events == []

    def test_bad_step_length(self):
        with pytest.raises(ValueError):
            PedestrianDeadReckoning(Channel(), Channel(), step_length=0.0)
