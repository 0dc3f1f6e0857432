"""
Base class for the recursive estimators driven by navigation events.

Predictions and corrections reach an estimator from different sensor
callbacks, possibly on different threads. The base class owns the
per-instance re-entrant lock that serializes them; subclasses take
``self._lock`` around every read-modify-write of ``state`` and
``covariance``.
"""

import threading
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import numpy as np


class StateEstimator(ABC):
    """Recursive estimator with a lock-protected (state, covariance) pair."""

    def __init__(self, state_dim: int):
        if state_dim < 1:
            raise ValueError(f"state_dim must be >= 1, got {state_dim}")
        self.state_dim = state_dim
        self.state: Optional[np.ndarray] = None
        self.covariance: Optional[np.ndarray] = None
        self._lock = threading.RLock()

    @property
    def lock(self):
        """The re-entrant lock serializing predict/update; hold it to chain calls atomically."""
        return self._lock

    @abstractmethod
    def predict(self, u: Optional[np.ndarray] = None) -> None:
        """Propagate the estimate by one event (optional control input)."""

    @abstractmethod
    def update(self, z: np.ndarray, *args, **kwargs) -> bool:
        """
        Correct the estimate with measurement ``z``.

        Returns:
            True if the measurement was applied, False if it was rejected
            and the estimate left untouched.
        """

    def get_state(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Consistent snapshot of the estimate.

        Returns:
            Tuple of (state_vector, covariance_matrix), both copies taken
            under the estimator lock.
        """
        with self._lock:
            if self.state is None or self.covariance is None:
                raise RuntimeError("Estimator has no state yet: provide x0 and P0")
            return self.state.copy(), self.covariance.copy()
