"""
Angle wrapping and blending utilities.

Provides functions for keeping angular quantities in the canonical
(-π, π] range and for mixing two angle estimates on the shortest arc.

Critical for:
- Heading outputs of the complementary compass
- The heading component of the PDR Kalman state
- Angular innovations in Kalman filters
"""

import numpy as np
from typing import Union


def wrap_angle(angle: float) -> float:
    """
    Wrap angle to the (-π, π] range.

    Without wrapping, headings near ±180° compare and fuse wrongly
    (e.g., -179° vs +179° = 358° apart instead of 2°).

    Args:
        angle: Angle in radians (can be any value)

    Returns:
        Wrapped angle in range (-π, π]

    Example:
        >>> wrap_angle(3.5 * np.pi)  # 630° -> -90°
        -1.5707963267948966
        >>> wrap_angle(-np.pi)
        3.141592653589793
    """
    # Use atan2 trick for robust wrapping
    wrapped = float(np.arctan2(np.sin(angle), np.cos(angle)))
    if wrapped <= -np.pi:
        wrapped = float(np.pi)
    return wrapped


def wrap_angle_array(angles: np.ndarray) -> np.ndarray:
    """
    Wrap array of angles to the (-π, π] range.

    Vectorized version of wrap_angle().

    Args:
        angles: Array of angles in radians

    Returns:
        Array of wrapped angles in range (-π, π]
    """
    wrapped = np.arctan2(np.sin(angles), np.cos(angles))
    return np.where(wrapped <= -np.pi, np.pi, wrapped)


def angle_diff(angle1: Union[float, np.ndarray],
               angle2: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """
    Compute the shortest angular difference between two angles.

    Returns angle1 - angle2, wrapped to (-π, π]. This is the innovation
    for heading measurements.

    Args:
        angle1: First angle in radians (measured)
        angle2: Second angle in radians (predicted)

    Returns:
        Shortest signed difference angle1 - angle2 in (-π, π]

    Example:
        >>> angle_diff(0.1, -0.1)
        0.2
    """
    if isinstance(angle1, np.ndarray) or isinstance(angle2, np.ndarray):
        return wrap_angle_array(np.asarray(angle1) - np.asarray(angle2))
    else:
        return wrap_angle(angle1 - angle2)


def blend_angles(primary: float, secondary: float, weight: float) -> float:
    """
    Weighted mix of two angles on the shortest arc.

    Computes weight * primary + (1 - weight) * secondary after shifting the
    lower-weighted angle by 2π whenever the two are more than π apart, so
    that e.g. 179° and -179° blend to ±180° rather than 0°. The dominant
    angle is never shifted, hence weight = 1.0 returns ``primary`` exactly
    and weight = 0.0 returns ``secondary`` exactly (no round-off).

    Args:
        primary: Angle in radians, in (-π, π].
        secondary: Angle in radians, in (-π, π].
        weight: Weight of ``primary`` in [0, 1].

    Returns:
        Blended angle in (-π, π].

    Example:
        >>> blend_angles(0.2, 0.0, 0.5)
        0.1
    """
    if not 0.0 <= weight <= 1.0:
        raise ValueError(f"weight must be in [0, 1], got {weight}")

    delta = primary - secondary
    if abs(delta) > np.pi:
        shift = 2.0 * np.pi if delta > 0 else -2.0 * np.pi
        if weight >= 0.5:
            secondary = secondary + shift
        else:
            primary = primary - shift

    blended = weight * primary + (1.0 - weight) * secondary

    # Only touch values that left the canonical range
    if blended > np.pi or blended <= -np.pi:
        blended = wrap_angle(blended)
    return blended
