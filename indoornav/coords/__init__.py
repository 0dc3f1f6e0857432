"""Rotation representations for the complementary compass.

- Orientation vectors [azimuth, pitch, roll]
- Rotation matrices (SO(3))
- Quaternions for incremental gyroscope rotations
"""

from indoornav.coords.rotations import (
    gyro_delta_quat,
    orientation_to_rotation_matrix,
    quat_to_rotation_matrix,
    rotation_matrix_to_orientation,
)

__all__ = [
    "orientation_to_rotation_matrix",
    "rotation_matrix_to_orientation",
    "gyro_delta_quat",
    "quat_to_rotation_matrix",
]
