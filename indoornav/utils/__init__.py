"""
Utility functions for the indoor navigation filters.

This module provides angle helpers shared by the compass, the PDR
predictor and the Kalman filter.
"""

from .angles import wrap_angle, wrap_angle_array, angle_diff, blend_angles

__all__ = [
    'wrap_angle',
    'wrap_angle_array',
    'angle_diff',
    'blend_angles',
]
