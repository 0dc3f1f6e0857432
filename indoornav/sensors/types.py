"""
Data structures for live sensor samples and navigation events.

This module defines the event types pushed between the compass, the PDR
step emitter, the fingerprint matchers and the fusion strategy:
    - 3-axis sensor samples (acceleration, angular speed, magnetic field)
    - Radio scans (RSSI per access point) for radio-map matching
    - Heading and step events
    - Position estimates (matcher output and fused filter output)

Time Base Convention:
    All timestamps are integer nanoseconds, monotonically non-decreasing
    within one sensor stream. No ordering is assumed across streams.

Frame Conventions:
    - Samples are expressed in the device (body) frame.
    - Headings are azimuths in radians, 0 = magnetic north, in (-π, π].
"""

from dataclasses import dataclass
from typing import Mapping, Sequence, Tuple

import numpy as np


NS2S = 1.0e-9


@dataclass(frozen=True)
class SensorSample:
    """
    Timestamped 3-axis sensor reading.

    Attributes:
        x: First axis value.
        y: Second axis value.
        z: Third axis value.
        timestamp: Acquisition time in nanoseconds.

    Notes:
        - Instances are immutable once produced.
        - Concrete sensor kinds subclass this type so that handlers can be
          typed by the sample they accept.
    """

    x: float
    y: float
    z: float
    timestamp: int = 0

    @property
    def vector(self) -> np.ndarray:
        """The reading as a float array of shape (3,)."""
        return np.array([self.x, self.y, self.z], dtype=float)


@dataclass(frozen=True)
class Acceleration(SensorSample):
    """Accelerometer sample. Units: m/s² (gravity included)."""


@dataclass(frozen=True)
class AngularSpeed(SensorSample):
    """Gyroscope sample. Units: rad/s."""


@dataclass(frozen=True)
class MagneticField(SensorSample):
    """Magnetometer sample. Units: μT."""


@dataclass(frozen=True)
class RadioScan:
    """
    One radio scan: received signal strength per access point.

    The RSSI values follow the access-point order of the radio map the scan
    is matched against.

    Attributes:
        rssi: RSSI values in dBm, one per access point.
        timestamp: Scan completion time in nanoseconds.

    Example:
        >>> scan = RadioScan.from_readings(
        ...     {'ap-2': -61.0}, ap_ids=['ap-1', 'ap-2'], timestamp=5
        ... )
        >>> scan.rssi
        (-100.0, -61.0)
    """

    rssi: Tuple[float, ...]
    timestamp: int = 0

    def __post_init__(self) -> None:
        """Validate and freeze the RSSI vector."""
        values = tuple(float(v) for v in self.rssi)
        if not values:
            raise ValueError("RadioScan.rssi must contain at least one value")
        object.__setattr__(self, "rssi", values)

    @property
    def vector(self) -> np.ndarray:
        """RSSI values as a float array of shape (N,)."""
        return np.array(self.rssi, dtype=float)

    @classmethod
    def from_readings(
        cls,
        readings: Mapping[str, float],
        ap_ids: Sequence[str],
        timestamp: int = 0,
        missing_rssi: float = -100.0,
    ) -> "RadioScan":
        """
        Build a dense scan from sparse per-AP readings.

        Access points absent from ``readings`` are filled with
        ``missing_rssi``, the usual "not heard" floor of radio maps.

        Args:
            readings: Mapping from AP identifier to RSSI (dBm).
            ap_ids: Access-point order of the radio map.
            timestamp: Scan time in nanoseconds.
            missing_rssi: Value used for unheard access points (dBm).

        Returns:
            RadioScan with one value per entry of ``ap_ids``.
        """
        return cls(
            rssi=tuple(float(readings.get(ap, missing_rssi)) for ap in ap_ids),
            timestamp=timestamp,
        )


@dataclass(frozen=True)
class Heading:
    """
    Heading published by a compass.

    Attributes:
        azimuth: Heading in radians, in (-π, π].
        timestamp: Timestamp (ns) of the last gyroscope sample integrated.
    """

    azimuth: float
    timestamp: int


@dataclass(frozen=True)
class StepEvent:
    """
    A detected step, consumed once by the PDR predictor.

    Attributes:
        heading: Walking direction in radians.
        length: Step length in meters (calibration constant).
        timestamp: Step time in nanoseconds.
    """

    heading: float
    length: float
    timestamp: int

    def __post_init__(self) -> None:
        """Validate step length."""
        if self.length < 0:
            raise ValueError(f"Step length must be non-negative, got {self.length}")


@dataclass(frozen=True)
class PositionEstimate:
    """
    2-D position on a floor, output of matchers and of the fused filter.

    Attributes:
        x: East/local x coordinate in meters.
        y: North/local y coordinate in meters.
        floor: Integer floor label.
        timestamp: Time of the triggering sample or event (ns).
        source: Producer label (e.g. 'magnetic', 'wifi', 'kalman').
    """

    x: float
    y: float
    floor: int
    timestamp: int
    source: str = ""

    @property
    def xy(self) -> np.ndarray:
        """Position as a float array of shape (2,)."""
        return np.array([self.x, self.y], dtype=float)

    def __str__(self) -> str:
        label = f"{self.source.upper()} " if self.source else ""
        return f"{label}({self.x:.2f}, {self.y:.2f}) floor {self.floor} @ {self.timestamp}"
