"""
Sensor events and heading/step sources.

Modules:
    types: Immutable sensor samples and navigation events
    environment: Tilt-compensated accelerometer + magnetometer orientation
    compass: Complementary-filter compass publishing Heading events
    pdr: Streaming step detector and StepEvent emitter

Only the leaf modules (types, environment) are re-exported here. The
compass and the PDR components publish on fusion Channels, and the fusion
package itself consumes sensor types, so they are imported from their
modules:

    >>> from indoornav.sensors.compass import ComplementaryCompass
    >>> from indoornav.sensors.pdr import PedestrianDeadReckoning, StepDetector

Design principles:
    - Dataclasses are frozen (immutable) for sensor packets
    - Timestamps are integer nanoseconds
    - Sources publish on Channels and expose start()/stop()
"""

from indoornav.sensors.types import (
    NS2S,
    Acceleration,
    AngularSpeed,
    Heading,
    MagneticField,
    PositionEstimate,
    RadioScan,
    SensorSample,
    StepEvent,
)
from indoornav.sensors.environment import (
    STANDARD_GRAVITY,
    accel_mag_orientation,
    accel_mag_rotation_matrix,
)

__all__ = [
    # Types
    "NS2S",
    "SensorSample",
    "Acceleration",
    "AngularSpeed",
    "MagneticField",
    "RadioScan",
    "Heading",
    "StepEvent",
    "PositionEstimate",
    # Environment
    "STANDARD_GRAVITY",
    "accel_mag_rotation_matrix",
    "accel_mag_orientation",
]
