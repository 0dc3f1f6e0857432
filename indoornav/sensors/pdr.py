"""
Pedestrian Dead Reckoning (PDR) step emission.

This module turns raw accelerometer samples and compass headings into the
StepEvent stream consumed by the Kalman predictor:
    - Acceleration magnitude with gravity removed
    - Streaming peak detection with a refractory interval (one step per peak)
    - Pairing each detected step with the latest heading and the fixed
      calibration step length

The per-step position update itself is applied by the Kalman filter
(see indoornav.fusion.adapters.StepPredictor):
    p_k = p_{k-1} + L * [cos(ψ), sin(ψ)]^T

A batch detector over a recorded series (scipy.signal.find_peaks) is kept
for offline analysis and for checking the streaming detector.
"""

import logging
import threading
from typing import List, Optional, Tuple

import numpy as np
from scipy import signal

from indoornav.fusion.events import Channel
from indoornav.sensors.environment import STANDARD_GRAVITY
from indoornav.sensors.types import NS2S, Acceleration, Heading, StepEvent

logger = logging.getLogger(__name__)


DEFAULT_STEP_LENGTH = 0.5
DEFAULT_MIN_PEAK_HEIGHT = 1.0
DEFAULT_MIN_STEP_INTERVAL = 0.3


def dynamic_accel_magnitude(accel_b: np.ndarray, g: float = STANDARD_GRAVITY) -> float:
    """
    Gravity-removed acceleration magnitude.

        a_dyn = ||a|| - g

    Args:
        accel_b: Specific force in body frame, shape (3,). Units: m/s².
        g: Gravity magnitude. Units: m/s².

    Returns:
        Dynamic magnitude in m/s². About 0 when standing still, oscillating
        around 0 while walking (peaks at heel strike).

    Example:
        >>> dynamic_accel_magnitude(np.array([0.0, 0.0, 9.80665]))
        0.0
    """
    accel_b = np.asarray(accel_b, dtype=float)
    if accel_b.shape != (3,):
        raise ValueError(f"accel_b must have shape (3,), got {accel_b.shape}")
    return float(np.linalg.norm(accel_b) - g)


def detect_steps_peak_detector(
    accel_series: np.ndarray,
    dt: float,
    g: float = STANDARD_GRAVITY,
    min_peak_height: float = DEFAULT_MIN_PEAK_HEIGHT,
    min_step_interval: float = DEFAULT_MIN_STEP_INTERVAL,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Detect steps in a recorded accelerometer series.

    Args:
        accel_series: Specific force samples, shape (N, 3). Units: m/s².
        dt: Sampling period in seconds.
        g: Gravity magnitude. Units: m/s².
        min_peak_height: Minimum dynamic magnitude of a step peak (m/s²).
        min_step_interval: Minimum time between two steps (s).

    Returns:
        Tuple (step_indices, accel_dynamic):
            step_indices: Sample indices of detected steps, shape (K,).
            accel_dynamic: Gravity-removed magnitude, shape (N,).

    Example:
        >>> t = np.arange(0, 10, 0.01)
        >>> accel_z = 9.81 + 2.0 * np.sin(2 * np.pi * 2.0 * t)  # 2 Hz steps
        >>> accel = np.column_stack([np.zeros_like(t), np.zeros_like(t), accel_z])
        >>> idx, _ = detect_steps_peak_detector(accel, dt=0.01)
        >>> len(idx)  # ~20 steps in 10 s
    """
    accel_series = np.asarray(accel_series, dtype=float)
    if accel_series.ndim != 2 or accel_series.shape[1] != 3:
        raise ValueError(
            f"accel_series must have shape (N, 3), got {accel_series.shape}"
        )
    if dt <= 0:
        raise ValueError(f"dt must be positive, got {dt}")
    if min_step_interval <= 0:
        raise ValueError(f"min_step_interval must be positive, got {min_step_interval}")

    accel_dynamic = np.linalg.norm(accel_series, axis=1) - g

    distance = max(1, int(round(min_step_interval / dt)))
    step_indices, _ = signal.find_peaks(
        accel_dynamic, height=min_peak_height, distance=distance
    )
    return step_indices, accel_dynamic


class StepDetector:
    """
    Streaming step detector on accelerometer samples.

    A step is a local maximum of the gravity-removed magnitude that reaches
    ``min_peak_height`` and comes at least ``min_step_interval`` after the
    previous step. The step is reported with the timestamp of the peak
    sample, one sample late (a peak is only known once the signal falls).

    Attributes:
        steps: Channel of step timestamps (ns).
        step_count: Number of steps detected since start.
    """

    def __init__(
        self,
        accelerometer: Channel,
        min_peak_height: float = DEFAULT_MIN_PEAK_HEIGHT,
        min_step_interval: float = DEFAULT_MIN_STEP_INTERVAL,
        g: float = STANDARD_GRAVITY,
    ):
        if min_peak_height <= 0:
            raise ValueError(f"min_peak_height must be positive, got {min_peak_height}")
        if min_step_interval <= 0:
            raise ValueError(
                f"min_step_interval must be positive, got {min_step_interval}"
            )

        self.accelerometer = accelerometer
        self.min_peak_height = min_peak_height
        self.min_step_interval = min_step_interval
        self.g = g

        self.steps: Channel[int] = Channel("pdr.steps")

        self._lock = threading.Lock()
        self._handler = None
        self._reset()

    def _reset(self) -> None:
        self.step_count = 0
        # (value, timestamp) of the two previous samples
        self._prev: Optional[Tuple[float, int]] = None
        self._prev2: Optional[Tuple[float, int]] = None
        self._last_step_timestamp: Optional[int] = None

    @property
    def running(self) -> bool:
        return self._handler is not None

    def start(self) -> None:
        with self._lock:
            if self._handler is not None:
                return
            self._reset()
            self._handler = self.accelerometer.subscribe(self.on_accelerometer)

    def stop(self) -> None:
        with self._lock:
            handler, self._handler = self._handler, None
        if handler is not None:
            self.accelerometer.unsubscribe(handler)

    def on_accelerometer(self, sample: Acceleration) -> None:
        """Feed one accelerometer sample; publishes a step timestamp on a peak."""
        value = dynamic_accel_magnitude(sample.vector, self.g)
        with self._lock:
            step_timestamp = self._detect(value, sample.timestamp)
        if step_timestamp is not None:
            self.steps.publish(step_timestamp)

    def _detect(self, value: float, timestamp: int) -> Optional[int]:
        prev, prev2 = self._prev, self._prev2
        self._prev2, self._prev = prev, (value, timestamp)
        if prev is None or prev2 is None:
            return None

        peak_value, peak_timestamp = prev
        # Rising edge strictly, falling edge inclusively: plateaus count once
        if not (peak_value > prev2[0] and peak_value >= value):
            return None
        if peak_value < self.min_peak_height:
            return None
        if self._last_step_timestamp is not None:
            interval = (peak_timestamp - self._last_step_timestamp) * NS2S
            if interval < self.min_step_interval:
                logger.debug("Peak %.2f m/s² inside refractory interval", peak_value)
                return None

        self._last_step_timestamp = peak_timestamp
        self.step_count += 1
        return peak_timestamp


class PedestrianDeadReckoning:
    """
    StepEvent emitter pairing detected steps with the compass heading.

    Each step timestamp from ``steps`` is turned into
    StepEvent(latest heading, step_length, timestamp) on ``events``. Steps
    detected before the first heading are dropped.

    Example:
        >>> pdr = PedestrianDeadReckoning(detector.steps, compass.headings)
        >>> _ = pdr.events.subscribe(strategy.on_step)
        >>> pdr.start()
    """

    def __init__(
        self,
        steps: Channel,
        headings: Channel,
        step_length: float = DEFAULT_STEP_LENGTH,
    ):
        if step_length <= 0:
            raise ValueError(f"step_length must be positive, got {step_length}")
        self.steps_channel = steps
        self.headings_channel = headings
        self.step_length = step_length

        self.events: Channel[StepEvent] = Channel("pdr.events")

        self._lock = threading.Lock()
        self._heading: Optional[Heading] = None
        self._subscriptions: List[Tuple[Channel, object]] = []
        self.dropped_steps = 0

    @property
    def running(self) -> bool:
        return bool(self._subscriptions)

    def start(self) -> None:
        with self._lock:
            if self._subscriptions:
                return
            self._subscriptions = [
                (self.headings_channel, self.headings_channel.subscribe(self.on_heading)),
                (self.steps_channel, self.steps_channel.subscribe(self.on_step)),
            ]

    def stop(self) -> None:
        with self._lock:
            subscriptions, self._subscriptions = self._subscriptions, []
        for channel, handler in subscriptions:
            channel.unsubscribe(handler)

    def on_heading(self, heading: Heading) -> None:
        with self._lock:
            self._heading = heading

    def on_step(self, timestamp: int) -> Optional[StepEvent]:
        """Emit the StepEvent for a step detected at ``timestamp``."""
        with self._lock:
            heading = self._heading
            if heading is None:
                self.dropped_steps += 1
                logger.debug("Step at %d dropped: no heading yet", timestamp)
                return None
        event = StepEvent(heading=heading.azimuth, length=self.step_length, timestamp=timestamp)
        self.events.publish(event)
        return event
