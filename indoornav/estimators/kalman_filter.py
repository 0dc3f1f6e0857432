"""
Kalman Filter implementation for linear Gaussian systems.

This module implements the discrete linear Kalman filter that carries the
fused pedestrian state. It is generic over the state size; the PDR
strategy uses n = 4 (x, y, heading, step length).

Implements:
    - State propagation   x_{k|k-1} = A x_{k-1} + B u_k
    - Covariance propagation   P_{k|k-1} = A P_{k-1} A^T + Q
    - Innovation   y_k = z_k - H_k x_{k|k-1}
    - Innovation covariance   S_k = H_k P_{k|k-1} H_k^T + R_k
    - Kalman gain   K_k = P_{k|k-1} H_k^T S_k^{-1}
    - State update   x_k = x_{k|k-1} + K_k y_k
    - Covariance update   P_k = (I - K_k H_k) P_{k|k-1}, evaluated in Joseph form

The measurement model (H, R) is passed per update, since each correction
source observes a different subset of the state with its own accuracy.
An update whose innovation covariance is singular or ill-conditioned is
rejected and leaves the state untouched.
"""

import logging
import warnings
from typing import Optional, Sequence, Tuple

import numpy as np

from indoornav.estimators.base import StateEstimator
from indoornav.sensors.types import PositionEstimate
from indoornav.utils.angles import wrap_angle_array

logger = logging.getLogger(__name__)


class KalmanFilter(StateEstimator):
    """
    Linear Kalman Filter with control input and per-update measurement model.

    It operates in two steps:
    1. Prediction: Propagate state and covariance with the control input
    2. Update: Correct prediction using a measurement (z, H, R)

    All mutation is serialized by a per-instance re-entrant lock, so
    predict/update calls arriving from different sensor callbacks never
    interleave.

    Attributes:
        A: State transition matrix (n×n)
        B: Control matrix (n×n)
        Q: Process noise covariance (n×n)
        state: Current state estimate x̂_k (n,)
        covariance: Current state covariance P_k (n×n)
        angular_states: Indices of state components that are angles; they
                        are kept in (-π, π] and their innovations wrapped.
        det_epsilon: |det S| below which an update is rejected.
        rejected_updates: Number of updates rejected as numerically unsafe.
    """

    def __init__(
        self,
        A: np.ndarray,
        B: np.ndarray,
        Q: np.ndarray,
        x0: np.ndarray,
        P0: np.ndarray,
        angular_states: Sequence[int] = (),
        det_epsilon: float = 1e-12,
    ):
        """
        Initialize Kalman Filter.

        Args:
            A: State transition matrix (n×n).
            B: Control matrix (n×n); controls have the state dimension.
            Q: Process noise covariance (n×n).
            x0: Initial state estimate (n,).
            P0: Initial state covariance (n×n).
            angular_states: Indices of angular state components.
            det_epsilon: Smallest accepted |det S|. The bound is absolute:
                         det S scales with the m-th power of the innovation
                         variances, so a filter whose S entries fall below
                         about 1e-6 (e.g. sub-millimetre sigmas on a
                         converged 2-D position) needs a smaller value.

        Raises:
            ValueError: If matrix dimensions are inconsistent.
        """
        x0 = np.asarray(x0, dtype=float)
        if x0.ndim != 1:
            raise ValueError(f"x0 must be 1D, got shape {x0.shape}")
        state_dim = x0.shape[0]

        super().__init__(state_dim)

        self.A = self._check_square("A", A, state_dim)
        self.B = self._check_square("B", B, state_dim)
        self.Q = self._check_square("Q", Q, state_dim)

        self.state = x0.copy()
        self.covariance = self._check_square("P0", P0, state_dim).copy()

        for idx in angular_states:
            if not 0 <= idx < state_dim:
                raise ValueError(
                    f"angular state index {idx} outside state of size {state_dim}"
                )
        self.angular_states = tuple(angular_states)
        self.det_epsilon = det_epsilon
        self.rejected_updates = 0

    @staticmethod
    def _check_square(name: str, mat: np.ndarray, n: int) -> np.ndarray:
        mat = np.asarray(mat, dtype=float)
        if mat.shape != (n, n):
            raise ValueError(f"{name} must have shape ({n}, {n}), got {mat.shape}")
        return mat

    def _wrap_angular_states(self) -> None:
        if self.angular_states:
            idx = list(self.angular_states)
            angles = self.state[idx]
            # Only values outside (-π, π] are touched
            outside = (angles > np.pi) | (angles <= -np.pi)
            if np.any(outside):
                self.state[idx] = np.where(outside, wrap_angle_array(angles), angles)

    def predict(self, u: Optional[np.ndarray] = None) -> None:
        """
        Perform prediction step (time update).

        - x̂_{k|k-1} = A x̂_{k-1} + B u_k
        - P_{k|k-1} = A P_{k-1} A^T + Q

        Args:
            u: Optional control input vector (n,). If None, assumes zero control.
        """
        with self._lock:
            # State propagation
            state = self.A @ self.state
            if u is not None:
                u = np.asarray(u, dtype=float)
                if u.shape != (self.state_dim,):
                    raise ValueError(
                        f"Control u must have shape ({self.state_dim},), got {u.shape}"
                    )
                state = state + self.B @ u
            self.state = state
            self._wrap_angular_states()

            # Covariance propagation
            self.covariance = self.A @ self.covariance @ self.A.T + self.Q

    def _innovation(self, z: np.ndarray, H: np.ndarray) -> np.ndarray:
        innovation = z - H @ self.state
        if self.angular_states:
            # Rows of H that read exactly one angular state carry angles
            for row in range(H.shape[0]):
                nonzero = np.flatnonzero(H[row])
                if len(nonzero) == 1 and nonzero[0] in self.angular_states:
                    innovation[row] = wrap_angle_array(innovation[row])
        return innovation

    def _check_measurement(
        self, z: np.ndarray, H: np.ndarray, R: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        z = np.atleast_1d(np.asarray(z, dtype=float))
        H = np.atleast_2d(np.asarray(H, dtype=float))
        R = np.atleast_2d(np.asarray(R, dtype=float))
        m = z.shape[0]
        if z.ndim != 1:
            raise ValueError(f"Measurement z must be 1D, got shape {z.shape}")
        if H.shape != (m, self.state_dim):
            raise ValueError(
                f"H must have shape ({m}, {self.state_dim}), got {H.shape}"
            )
        if R.shape != (m, m):
            raise ValueError(f"R must have shape ({m}, {m}), got {R.shape}")
        return z, H, R

    def update(self, z: np.ndarray, H: np.ndarray, R: np.ndarray) -> bool:
        """
        Perform measurement update (correction step).

        - K_k = P_{k|k-1} H^T (H P_{k|k-1} H^T + R)^{-1}
        - x̂_k = x̂_{k|k-1} + K_k (z_k - H x̂_{k|k-1})
        - P_k = (I - K H) P (I - K H)^T + K R K^T  (Joseph form of (I - K H) P)

        Args:
            z: Measurement vector (m,).
            H: Measurement matrix (m×n). Unobserved state components have
               zero columns.
            R: Measurement noise covariance (m×m).

        Returns:
            True if the measurement was applied, False if it was rejected
            because the innovation covariance is singular (|det S| below
            det_epsilon, non-finite, or not invertible); state and
            covariance are then left unchanged.

        Raises:
            ValueError: If z, H and R have inconsistent shapes.
        """
        z, H, R = self._check_measurement(z, H, R)

        with self._lock:
            # Innovation covariance: S = H P H^T + R
            S = H @ self.covariance @ H.T + R

            S_inv = self._safe_inverse(S)
            if S_inv is None:
                return False

            # Kalman gain K = P H^T S^{-1}
            K = self.covariance @ H.T @ S_inv

            # State update x̂_k = x̂_{k|k-1} + K y
            state = self.state + K @ self._innovation(z, H)

            # Covariance update in Joseph form
            I_KH = np.eye(self.state_dim) - K @ H
            covariance = I_KH @ self.covariance @ I_KH.T + K @ R @ K.T

            if not (np.all(np.isfinite(state)) and np.all(np.isfinite(covariance))):
                self._reject("update produced non-finite state")
                return False

            self.state = state
            self.covariance = covariance
            self._wrap_angular_states()
            return True

    def _safe_inverse(self, S: np.ndarray) -> Optional[np.ndarray]:
        if not np.all(np.isfinite(S)):
            self._reject("innovation covariance has non-finite entries")
            return None

        det = np.linalg.det(S)
        if not np.isfinite(det) or abs(det) < self.det_epsilon:
            self._reject(f"innovation covariance is singular (det={det:.3e})")
            return None

        try:
            S_inv = np.linalg.inv(S)
        except np.linalg.LinAlgError as e:
            self._reject(f"innovation covariance inversion failed: {e}")
            return None

        if not np.all(np.isfinite(S_inv)):
            self._reject("innovation covariance inverse has non-finite entries")
            return None
        return S_inv

    def _reject(self, reason: str) -> None:
        self.rejected_updates += 1
        logger.warning("Kalman update skipped: %s", reason)
        warnings.warn(f"Kalman update skipped: {reason}", RuntimeWarning, stacklevel=3)

    def get_innovation(
        self, z: np.ndarray, H: np.ndarray, R: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Compute innovation (measurement residual) and its covariance.

        Useful for consistency checking and outlier gating.

        Args:
            z: Measurement vector (m,).
            H: Measurement matrix (m×n).
            R: Measurement noise covariance (m×m).

        Returns:
            Tuple of (innovation, innovation_covariance).
                - innovation: y = z - H x̂_{k|k-1} (m,)
                - innovation_covariance: S = H P_{k|k-1} H^T + R (m×m)
        """
        z, H, R = self._check_measurement(z, H, R)
        with self._lock:
            innovation = self._innovation(z, H)
            innovation_cov = H @ self.covariance @ H.T + R
        return innovation, innovation_cov

    def position_at(
        self, floor: int, timestamp: int, source: str = "kalman"
    ) -> PositionEstimate:
        """
        Read the position components of the state as a PositionEstimate.

        Args:
            floor: Floor label to attach.
            timestamp: Timestamp to attach (ns).
            source: Producer label.

        Returns:
            PositionEstimate built from state components 0 and 1.
        """
        with self._lock:
            x, y = float(self.state[0]), float(self.state[1])
        return PositionEstimate(x=x, y=y, floor=floor, timestamp=timestamp, source=source)
