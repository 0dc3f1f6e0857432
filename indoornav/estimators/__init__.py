"""
State estimation for the indoor navigation filter.

Available estimators:
    - Kalman Filter (KF) with control input and per-update measurement model
"""

from indoornav.estimators.base import StateEstimator
from indoornav.estimators.kalman_filter import KalmanFilter

__all__ = [
    "StateEstimator",
    "KalmanFilter",
]
