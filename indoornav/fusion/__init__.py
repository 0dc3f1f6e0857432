"""Event plumbing and Kalman fusion of PDR steps with fingerprint fixes.

This package provides:
- Publish/subscribe channels and the start/stop emitter protocol
- A fixed-rate, non-reentrant scheduler for periodic fusion ticks
- Chi-square gating for outlier rejection
- Step predictor and measurement updater adapters for the Kalman filter
- The fusion strategy that orchestrates them
"""

from indoornav.fusion.events import Channel, Emitter
from indoornav.fusion.scheduler import FixedRateScheduler
from indoornav.fusion.gating import (
    chi_square_gate,
    chi_square_threshold,
    mahalanobis_distance_squared,
)
from indoornav.fusion.adapters import Correction, MeasurementUpdater, StepPredictor
from indoornav.fusion.strategy import FusionStrategy

__all__ = [
    # Events
    "Channel",
    "Emitter",
    "FixedRateScheduler",
    # Gating
    "mahalanobis_distance_squared",
    "chi_square_threshold",
    "chi_square_gate",
    # Adapters
    "StepPredictor",
    "MeasurementUpdater",
    "Correction",
    # Strategy
    "FusionStrategy",
]
