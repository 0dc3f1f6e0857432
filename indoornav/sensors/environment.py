"""
Absolute orientation from accelerometer and magnetometer.

This module implements the tilt-compensated compass used as the low-drift
reference of the complementary filter:
    - Rotation matrix from gravity and geomagnetic vectors
    - Orientation [azimuth, pitch, roll] from that matrix

The accelerometer gives the "down" direction, the magnetometer the
"north-ish" direction; their cross products build an orthonormal
East/North/Up basis expressed in the device frame. The result is noisy
(accelerometer motion, indoor magnetic disturbances) but does not drift.

Frame Conventions:
    - Inputs are in the device (body) frame.
    - Output rows are the world East, North and Up axes in device coordinates.
"""

from typing import Optional

import numpy as np

from indoornav.coords.rotations import rotation_matrix_to_orientation


STANDARD_GRAVITY = 9.80665


def accel_mag_rotation_matrix(
    accel_b: np.ndarray,
    mag_b: np.ndarray,
    min_field_norm: float = 0.1,
) -> Optional[np.ndarray]:
    """
    Compute the device rotation matrix from gravity and magnetic field.

    With A the accelerometer vector and E the magnetic field:
        H = E × A,  normalized          (world East in device frame)
        A = A / |A|                     (world Up)
        M = A × H                       (world North)
        R = [H; M; A]

    Tilt compensation is implicit: H is orthogonal to gravity, so the
    vertical component of the magnetic field never reaches the azimuth.

    Args:
        accel_b: Accelerometer measurement in body frame.
                 Shape: (3,). Units: m/s². Raw (includes gravity).
        mag_b: Magnetic field in body frame.
               Shape: (3,). Units: μT.
        min_field_norm: Minimum |E × A| accepted. Below it the device is
                        close to magnetic north/south pole alignment with
                        gravity (or the field is missing) and no azimuth
                        can be derived.

    Returns:
        3x3 rotation matrix, or None when the pair is degenerate
        (free fall, or magnetic field parallel to gravity).

    Example:
        >>> # Device lying flat, top pointing north
        >>> accel = np.array([0.0, 0.0, 9.81])
        >>> mag = np.array([0.0, 22.0, -40.0])
        >>> R = accel_mag_rotation_matrix(accel, mag)
        >>> print(np.round(R, 3))  # identity
    """
    accel_b = np.asarray(accel_b, dtype=float)
    mag_b = np.asarray(mag_b, dtype=float)
    if accel_b.shape != (3,):
        raise ValueError(f"accel_b must have shape (3,), got {accel_b.shape}")
    if mag_b.shape != (3,):
        raise ValueError(f"mag_b must have shape (3,), got {mag_b.shape}")

    # Free fall: gravity direction unknown
    g_min = STANDARD_GRAVITY / 10.0
    if float(accel_b @ accel_b) < g_min * g_min:
        return None

    east = np.cross(mag_b, accel_b)
    norm_east = np.linalg.norm(east)
    if norm_east < min_field_norm:
        return None

    east = east / norm_east
    up = accel_b / np.linalg.norm(accel_b)
    north = np.cross(up, east)

    return np.vstack([east, north, up])


def accel_mag_orientation(
    accel_b: np.ndarray,
    mag_b: np.ndarray,
) -> Optional[np.ndarray]:
    """
    Tilt-compensated orientation from one accelerometer/magnetometer pair.

    Args:
        accel_b: Accelerometer measurement, shape (3,), m/s².
        mag_b: Magnetic field, shape (3,), μT.

    Returns:
        Orientation [azimuth, pitch, roll] in radians, or None when the
        pair is degenerate (see accel_mag_rotation_matrix).

    Example:
        >>> accel = np.array([0.0, 0.0, 9.81])
        >>> mag = np.array([22.0, 0.0, -40.0])  # top pointing west
        >>> np.rad2deg(accel_mag_orientation(accel, mag)[0])  # ~-90°
    """
    R = accel_mag_rotation_matrix(accel_b, mag_b)
    if R is None:
        return None
    return rotation_matrix_to_orientation(R)
