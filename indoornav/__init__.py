"""Indoor positioning by PDR and fingerprint Kalman fusion.

This package contains the components of the positioning pipeline:
- sensors: Sensor events, complementary compass, step detection
- fingerprinting: Survey maps and threshold / k-NN matchers
- estimators: Linear Kalman filter
- fusion: Event channels, scheduler and the fusion strategy
- coords, utils: Rotation and angle helpers
"""

__version__ = "0.1.0"
