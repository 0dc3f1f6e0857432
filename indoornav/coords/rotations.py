"""Rotation representations used by the complementary compass.

This module converts between the representations the compass keeps in
step with each other:
- Orientation vectors [azimuth, pitch, roll] in radians
- Rotation matrices (3x3 orthogonal matrices, SO(3))
- Unit quaternions q = [qw, qx, qy, qz] for incremental gyro rotations

Conventions:
- Orientation order is [azimuth, pitch, roll], each in (-π, π]
  - Azimuth: rotation about z-axis, 0 = magnetic north
  - Pitch: rotation about x-axis
  - Roll: rotation about y-axis
- Matrices are composed as Z·(X·Y): roll first, then pitch, then azimuth
- Matrix element layout follows the device (phone) sensor convention, so
  that rotation_matrix_to_orientation inverts orientation_to_rotation_matrix.
"""

import numpy as np
from numpy.typing import NDArray


def orientation_to_rotation_matrix(
    orientation: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Build a rotation matrix from [azimuth, pitch, roll].

    The matrix is the composition R = Z(azimuth) @ (X(pitch) @ Y(roll)).

    Args:
        orientation: Array [azimuth, pitch, roll] in radians.

    Returns:
        3x3 rotation matrix (orthonormal, det = 1).

    Raises:
        ValueError: If orientation is not a 3-element array.

    Example:
        >>> R = orientation_to_rotation_matrix(np.array([0.3, 0.1, -0.2]))
        >>> print(f"Determinant (should be 1.0): {np.linalg.det(R):.6f}")
    """
    orientation = np.asarray(orientation, dtype=np.float64)
    if orientation.shape != (3,):
        raise ValueError(f"Expected 3-element orientation, got shape {orientation.shape}")

    azimuth, pitch, roll = orientation

    sin_x = np.sin(pitch)
    cos_x = np.cos(pitch)
    sin_y = np.sin(roll)
    cos_y = np.cos(roll)
    sin_z = np.sin(azimuth)
    cos_z = np.cos(azimuth)

    # Rotation about x-axis (pitch)
    x_m = np.array(
        [[1.0, 0.0, 0.0], [0.0, cos_x, sin_x], [0.0, -sin_x, cos_x]],
        dtype=np.float64,
    )
    # Rotation about y-axis (roll)
    y_m = np.array(
        [[cos_y, 0.0, sin_y], [0.0, 1.0, 0.0], [-sin_y, 0.0, cos_y]],
        dtype=np.float64,
    )
    # Rotation about z-axis (azimuth)
    z_m = np.array(
        [[cos_z, sin_z, 0.0], [-sin_z, cos_z, 0.0], [0.0, 0.0, 1.0]],
        dtype=np.float64,
    )

    return z_m @ (x_m @ y_m)


def rotation_matrix_to_orientation(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Extract [azimuth, pitch, roll] from a rotation matrix.

    Inverse of orientation_to_rotation_matrix for |pitch| < π/2:
        azimuth = atan2(R[0,1], R[1,1])
        pitch   = asin(-R[2,1])
        roll    = atan2(-R[2,0], R[2,2])

    Args:
        R: 3x3 rotation matrix.

    Returns:
        Orientation as numpy array [azimuth, pitch, roll] in radians.

    Raises:
        ValueError: If R is not a 3x3 matrix.

    Example:
        >>> orientation = rotation_matrix_to_orientation(np.eye(3))
        >>> print(orientation)  # [0, 0, 0]
    """
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")

    azimuth = np.arctan2(R[0, 1], R[1, 1])
    # Clamp to avoid numerical issues with arcsin
    pitch = np.arcsin(np.clip(-R[2, 1], -1.0, 1.0))
    roll = np.arctan2(-R[2, 0], R[2, 2])

    return np.array([azimuth, pitch, roll], dtype=np.float64)


def gyro_delta_quat(
    omega: NDArray[np.float64],
    half_dt: float,
    eps: float = 1e-9,
) -> NDArray[np.float64]:
    """Half-angle quaternion of the rotation a gyro sample integrates to.

    The angular rate vector is split into a unit axis and a magnitude;
    the rotation angle over the interval is |ω|·dt, and the quaternion
    uses half of it:
        q = [cos(|ω|·half_dt), sin(|ω|·half_dt) · ω/|ω|]

    Rates with |ω| <= eps have no usable axis, so the axis is taken as zero
    and the result is the identity rotation.

    Args:
        omega: Angular rate [ωx, ωy, ωz] in rad/s.
        half_dt: Half of the integration interval in seconds.
        eps: Magnitude below which the rate is treated as zero.

    Returns:
        Unit quaternion [qw, qx, qy, qz].
    """
    omega = np.asarray(omega, dtype=np.float64)
    if omega.shape != (3,):
        raise ValueError(f"Expected 3-element angular rate, got shape {omega.shape}")

    magnitude = float(np.linalg.norm(omega))
    if magnitude > eps:
        axis = omega / magnitude
    else:
        axis = np.zeros(3)

    theta_over_two = magnitude * half_dt
    sin_half = np.sin(theta_over_two)
    cos_half = np.cos(theta_over_two)

    return np.array(
        [cos_half, sin_half * axis[0], sin_half * axis[1], sin_half * axis[2]],
        dtype=np.float64,
    )


def quat_to_rotation_matrix(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert quaternion to rotation matrix.

    Args:
        q: Unit quaternion as numpy array [qw, qx, qy, qz].

    Returns:
        3x3 rotation matrix.

    Raises:
        ValueError: If q is not a 4-element array.

    Example:
        >>> q = np.array([1.0, 0.0, 0.0, 0.0])  # Identity rotation
        >>> R = quat_to_rotation_matrix(q)
        >>> print(f"Rotation matrix:\\n{R}")  # Should be identity
    """
    q = np.asarray(q, dtype=np.float64)
    if q.shape != (4,):
        raise ValueError(f"Expected 4-element quaternion, got shape {q.shape}")

    qw, qx, qy, qz = q

    R = np.array(
        [
            [
                1.0 - 2.0 * (qy * qy + qz * qz),
                2.0 * (qx * qy - qw * qz),
                2.0 * (qx * qz + qw * qy),
            ],
            [
                2.0 * (qx * qy + qw * qz),
                1.0 - 2.0 * (qx * qx + qz * qz),
                2.0 * (qy * qz - qw * qx),
            ],
            [
                2.0 * (qx * qz - qw * qy),
                2.0 * (qy * qz + qw * qx),
                1.0 - 2.0 * (qx * qx + qy * qy),
            ],
        ],
        dtype=np.float64,
    )

    return R
