"""
Complementary-filter compass (gyroscope + accelerometer/magnetometer).

The compass fuses two orientation estimates with complementary error
characteristics:
    - accelerometer + magnetometer: absolute and bias-free, but noisy
      (low-pass side of the filter)
    - gyroscope integration: smooth and high-rate, but drifting
      (high-pass side of the filter)

On a fixed-rate tick each orientation axis is blended as
    fused = c · gyro + (1 - c) · acc_mag,   c = 0.98 by default
and the gyro integrator is re-anchored to the fused orientation, which is
what bounds the gyro drift. The fused azimuth is published as the heading.

Threading:
    Sensor callbacks and the tick may run on different threads; every
    access to the filter matrices happens under one per-compass lock. The
    tick runs on a dedicated FixedRateScheduler thread, so two ticks never
    overlap.
"""

import logging
import threading
from typing import List, Optional, Tuple

import numpy as np

from indoornav.coords.rotations import (
    gyro_delta_quat,
    orientation_to_rotation_matrix,
    quat_to_rotation_matrix,
    rotation_matrix_to_orientation,
)
from indoornav.fusion.events import Channel
from indoornav.fusion.scheduler import FixedRateScheduler
from indoornav.sensors.environment import accel_mag_orientation
from indoornav.sensors.types import (
    NS2S,
    Acceleration,
    AngularSpeed,
    Heading,
    MagneticField,
)
from indoornav.utils.angles import blend_angles

logger = logging.getLogger(__name__)


FILTER_COEFFICIENT = 0.98
DEFAULT_RATE_MS = 30
GYRO_EPSILON = 1e-9


class ComplementaryCompass:
    """
    Heading source fusing gyroscope, accelerometer and magnetometer.

    Attributes:
        headings: Channel of published Heading events.
        rate_ms: Fusion tick period in milliseconds.
        filter_coefficient: Gyro weight c in [0, 1].
        gyro_matrix: Running gyro-integrated rotation matrix (3×3).
        gyro_orientation: [azimuth, pitch, roll] derived from gyro_matrix.
        accmag_orientation: Latest accelerometer/magnetometer orientation,
                            None until the first valid pair.

    Example:
        >>> accel, gyro, mag = Channel("acc"), Channel("gyro"), Channel("mag")
        >>> compass = ComplementaryCompass(accel, gyro, mag, rate_ms=30)
        >>> _ = compass.headings.subscribe(print)
        >>> compass.start()
        >>> # ... sensor sources publish samples ...
        >>> compass.stop()
    """

    def __init__(
        self,
        accelerometer: Channel,
        gyroscope: Channel,
        magnetometer: Channel,
        rate_ms: int = DEFAULT_RATE_MS,
        filter_coefficient: float = FILTER_COEFFICIENT,
    ):
        if rate_ms <= 0:
            raise ValueError(f"rate_ms must be positive, got {rate_ms}")
        if not 0.0 <= filter_coefficient <= 1.0:
            raise ValueError(
                f"filter_coefficient must be in [0, 1], got {filter_coefficient}"
            )

        self.accelerometer = accelerometer
        self.gyroscope = gyroscope
        self.magnetometer = magnetometer
        self.rate_ms = rate_ms
        self.filter_coefficient = float(filter_coefficient)

        self.headings: Channel[Heading] = Channel("compass.headings")

        self._lock = threading.RLock()
        self._scheduler: Optional[FixedRateScheduler] = None
        self._subscriptions: List[Tuple[Channel, object]] = []
        self._reset()

    def _reset(self) -> None:
        # Identity until seeded from the first accelerometer/magnetometer fix
        self.gyro_matrix = np.eye(3)
        self.gyro_orientation = np.zeros(3)
        self.accmag_orientation: Optional[np.ndarray] = None
        self._accel: Optional[Acceleration] = None
        self._magnet: Optional[MagneticField] = None
        self._gyro_timestamp: Optional[int] = None
        self._gyro_seeded = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._subscriptions)

    def start(self) -> None:
        """Attach to the sensor channels and start the fusion tick."""
        with self._lock:
            if self.running:
                return
            self._reset()
            self._subscriptions = [
                (self.accelerometer, self.accelerometer.subscribe(self.on_accelerometer)),
                (self.magnetometer, self.magnetometer.subscribe(self.on_magnetometer)),
                (self.gyroscope, self.gyroscope.subscribe(self.on_gyroscope)),
            ]
            self._schedule()

    def stop(self) -> None:
        """Cancel the fusion tick and detach from the sensors. Idempotent."""
        with self._lock:
            scheduler, self._scheduler = self._scheduler, None
            subscriptions, self._subscriptions = self._subscriptions, []
        # Joined outside the lock: an in-flight tick may be waiting for it
        if scheduler is not None:
            scheduler.cancel()
        for channel, handler in subscriptions:
            channel.unsubscribe(handler)

    def set_rate(self, rate_ms: int) -> None:
        """
        Change the tick period, keeping the filter state.

        Args:
            rate_ms: New tick period in milliseconds.
        """
        if rate_ms <= 0:
            raise ValueError(f"rate_ms must be positive, got {rate_ms}")
        with self._lock:
            self.rate_ms = rate_ms
            scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            scheduler.cancel()
        with self._lock:
            if self.running and self._scheduler is None:
                self._schedule()

    def _schedule(self) -> None:
        self._scheduler = FixedRateScheduler(
            self.rate_ms / 1000.0, self.tick, name="compass-fusion"
        )
        self._scheduler.start()

    # ------------------------------------------------------------------
    # Accelerometer / magnetometer (absolute reference)
    # ------------------------------------------------------------------

    def on_accelerometer(self, sample: Acceleration) -> None:
        """Store the latest acceleration and refresh the absolute orientation."""
        with self._lock:
            self._accel = sample
            self._update_accmag_orientation()

    def on_magnetometer(self, sample: MagneticField) -> None:
        """Store the latest magnetic field and refresh the absolute orientation."""
        with self._lock:
            self._magnet = sample
            self._update_accmag_orientation()

    def _update_accmag_orientation(self) -> None:
        if self._accel is None or self._magnet is None:
            return
        orientation = accel_mag_orientation(self._accel.vector, self._magnet.vector)
        if orientation is None:
            logger.debug("Degenerate accelerometer/magnetometer pair ignored")
            return
        self.accmag_orientation = orientation

    # ------------------------------------------------------------------
    # Gyroscope (high-rate integration)
    # ------------------------------------------------------------------

    def on_gyroscope(self, sample: AngularSpeed) -> None:
        """
        Integrate one gyroscope sample into the gyro rotation matrix.

        Samples arriving before the first accelerometer/magnetometer
        orientation are ignored. The first accepted sample seeds the matrix
        from that orientation; later samples rotate it by ω·Δt.
        """
        with self._lock:
            if self.accmag_orientation is None:
                return

            if not self._gyro_seeded:
                self.gyro_matrix = orientation_to_rotation_matrix(self.accmag_orientation)
                self.gyro_orientation = rotation_matrix_to_orientation(self.gyro_matrix)
                self._gyro_timestamp = sample.timestamp
                self._gyro_seeded = True
                return

            if sample.timestamp < self._gyro_timestamp:
                logger.warning(
                    "Out-of-order gyroscope sample dropped (%d < %d)",
                    sample.timestamp,
                    self._gyro_timestamp,
                )
                return

            dt = (sample.timestamp - self._gyro_timestamp) * NS2S
            self._gyro_timestamp = sample.timestamp

            # Half-angle rotation for the interval, as a matrix
            delta_q = gyro_delta_quat(sample.vector, dt / 2.0, eps=GYRO_EPSILON)
            delta_matrix = quat_to_rotation_matrix(delta_q)

            self.gyro_matrix = self.gyro_matrix @ delta_matrix
            self.gyro_orientation = rotation_matrix_to_orientation(self.gyro_matrix)

    # ------------------------------------------------------------------
    # Fusion
    # ------------------------------------------------------------------

    def tick(self) -> Optional[Heading]:
        """
        Run one fusion step and publish the fused heading.

        Returns:
            The published Heading, or None when no gyro-integrated and
            accelerometer/magnetometer orientation are available yet.
        """
        with self._lock:
            if self.accmag_orientation is None or not self._gyro_seeded:
                return None

            c = self.filter_coefficient
            fused = np.array(
                [
                    blend_angles(float(g), float(a), c)
                    for g, a in zip(self.gyro_orientation, self.accmag_orientation)
                ]
            )

            # Re-anchor the gyro integrator on the fused orientation. An
            # unchanged orientation keeps the integrated matrix as is.
            if not np.array_equal(fused, self.gyro_orientation):
                self.gyro_matrix = orientation_to_rotation_matrix(fused)
                self.gyro_orientation = fused

            heading = Heading(azimuth=float(fused[0]), timestamp=self._gyro_timestamp)

        self.headings.publish(heading)
        return heading
