"""Adapters between navigation events and the Kalman filter.

Two adapters drive the 4-state PDR filter x = [x, y, ψ, L]:

    StepPredictor       StepEvent         → predict(u),
                        u = [L cos ψ, L sin ψ, ψ, L]
    MeasurementUpdater  PositionEstimate  → update(z, H, R),
                        z = [x, y] per source, H selects the position,
                        R = diag(σ², σ²) per source

Heading and step length are not observed by the fingerprint sources: their
columns of H are zero, so a correction only moves them through the
cross-covariance accumulated by the predictions.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from indoornav.estimators.kalman_filter import KalmanFilter
from indoornav.fusion.events import Channel
from indoornav.fusion.gating import chi_square_gate
from indoornav.sensors.types import PositionEstimate, StepEvent

logger = logging.getLogger(__name__)


class StepPredictor:
    """
    Turns each StepEvent into one Kalman prediction.

    The step length used is the predictor's calibration constant, not the
    length carried by the event.

    Example:
        >>> predictor = StepPredictor(kf, step_length=0.5)
        >>> predictor.predict(StepEvent(heading=0.0, length=0.5, timestamp=1))
    """

    def __init__(self, kf: KalmanFilter, step_length: float):
        if kf.state_dim != 4:
            raise ValueError(
                f"StepPredictor drives a 4-state filter, got state_dim={kf.state_dim}"
            )
        if step_length <= 0:
            raise ValueError(f"step_length must be positive, got {step_length}")
        self.kf = kf
        self.step_length = float(step_length)

    def control(self, heading: float) -> np.ndarray:
        """Control vector u = [L cos ψ, L sin ψ, ψ, L] for one step."""
        L = self.step_length
        return np.array([L * np.cos(heading), L * np.sin(heading), heading, L])

    def predict(self, event: StepEvent) -> np.ndarray:
        """Apply one step to the filter. Returns the control vector used."""
        u = self.control(event.heading)
        self.kf.predict(u)
        return u


@dataclass(frozen=True)
class Correction:
    """
    Fingerprint fixes applied together in one Kalman update.

    Attributes:
        estimates: The applied estimates, one per source.
        timestamp: Newest timestamp among them (ns).
        position: Filter (x, y) right after the update, read under the
                  filter lock so no later prediction leaks into it.
    """

    estimates: Tuple[PositionEstimate, ...]
    timestamp: int
    position: Tuple[float, float]

    @property
    def sources(self) -> Tuple[str, ...]:
        return tuple(e.source for e in self.estimates)


class MeasurementUpdater:
    """
    Buffers fingerprint position fixes and applies them as Kalman updates.

    Each registered source keeps at most one pending fix (the latest). When
    at least ``min_sources`` sources have a pending fix, all pending fixes
    are stacked into a single update and leave the buffer. ``publish``
    applies whatever is pending regardless of ``min_sources``;
    ``clear_positions`` drops it.

    Attributes:
        corrections: Channel of applied Correction events.
        rejected_fixes: Fixes dropped by the gate or by a rejected update.
    """

    def __init__(
        self,
        kf: KalmanFilter,
        min_sources: int = 1,
        gate_confidence: Optional[float] = None,
    ):
        if min_sources < 1:
            raise ValueError(f"min_sources must be >= 1, got {min_sources}")
        if gate_confidence is not None and not 0.0 < gate_confidence < 1.0:
            raise ValueError(f"gate_confidence must be in (0, 1), got {gate_confidence}")

        self.kf = kf
        self.min_sources = min_sources
        self.gate_confidence = gate_confidence
        self.corrections: Channel[Correction] = Channel("updater.corrections")
        self.rejected_fixes = 0

        self._noise: Dict[str, np.ndarray] = {}
        self._pending: Dict[str, PositionEstimate] = {}
        self._lock = threading.RLock()

    @property
    def sources(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._noise)

    @property
    def pending(self) -> Dict[str, PositionEstimate]:
        """Copy of the pending fixes by source."""
        with self._lock:
            return dict(self._pending)

    def add_source(self, name: str, sigma: float) -> None:
        """
        Register a position source.

        Args:
            name: Source label.
            sigma: Position std of the source's fixes (m).
        """
        if not sigma > 0:
            raise ValueError(f"sigma must be positive, got {sigma}")
        with self._lock:
            self._noise[name] = np.diag([sigma ** 2, sigma ** 2])

    def measurement_model(self, sources: List[str]) -> Tuple[np.ndarray, np.ndarray]:
        """
        Stacked (H, R) for position fixes from ``sources``, in that order.

        Returns:
            H of shape (2s, n) selecting (x, y) once per source, and
            block-diagonal R of shape (2s, 2s).
        """
        n = self.kf.state_dim
        selector = np.zeros((2, n))
        selector[0, 0] = 1.0
        selector[1, 1] = 1.0

        H = np.vstack([selector] * len(sources))
        R = np.zeros((2 * len(sources), 2 * len(sources)))
        for i, source in enumerate(sources):
            R[2 * i:2 * i + 2, 2 * i:2 * i + 2] = self._noise[source]
        return H, R

    def on_position(self, source: str, estimate: PositionEstimate) -> bool:
        """
        Buffer a fix from ``source`` and update once enough sources report.

        Returns:
            True if a Kalman update was applied.
        """
        with self._lock:
            if source not in self._noise:
                raise ValueError(f"Unknown position source {source!r}")
            self._pending[source] = estimate
            if len(self._pending) < self.min_sources:
                return False
            correction = self._apply_pending()

        if correction is None:
            return False
        self.corrections.publish(correction)
        return True

    def publish(self) -> bool:
        """Apply every pending fix now. Returns True if an update was applied."""
        with self._lock:
            if not self._pending:
                return False
            correction = self._apply_pending()

        if correction is None:
            return False
        self.corrections.publish(correction)
        return True

    def clear_positions(self) -> None:
        """Drop all pending fixes."""
        with self._lock:
            if self._pending:
                logger.debug("Dropping stale fixes from %s", sorted(self._pending))
            self._pending.clear()

    def _apply_pending(self) -> Optional[Correction]:
        sources = list(self._pending)
        estimates = tuple(self._pending[s] for s in sources)
        self._pending.clear()

        z = np.concatenate([e.xy for e in estimates])
        H, R = self.measurement_model(sources)

        # Gate, update and read-back form one step of the filter
        with self.kf.lock:
            if self.gate_confidence is not None and not self._gate(z, H, R, sources):
                self.rejected_fixes += len(estimates)
                logger.info("Fixes from %s rejected by chi-square gate", sources)
                return None

            if not self.kf.update(z, H, R):
                self.rejected_fixes += len(estimates)
                return None

            position = (float(self.kf.state[0]), float(self.kf.state[1]))

        return Correction(
            estimates=estimates,
            timestamp=max(e.timestamp for e in estimates),
            position=position,
        )

    def _gate(self, z: np.ndarray, H: np.ndarray, R: np.ndarray, sources: List[str]) -> bool:
        innovation, S = self.kf.get_innovation(z, H, R)
        try:
            return chi_square_gate(innovation, S, self.gate_confidence)
        except ValueError as e:
            logger.warning("Innovation gate failed for %s: %s", sources, e)
            return False
