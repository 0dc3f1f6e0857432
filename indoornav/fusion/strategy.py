"""
PDR + fingerprint Kalman fusion strategy.

The strategy owns a 4-state linear Kalman filter x = [x, y, ψ, L] and wires
it to the event streams:

    step events  ──► StepPredictor.predict ──► publish position (pre-correction)
    fixes        ──► MeasurementUpdater ──► update ──► publish corrected position

Model (identity dynamics, the step displacement enters through u):
    A = B = I₄
    Q = diag(qp², qp², qψ², L²)
    P₀ = diag(σp², σp², σψ², L²)
    x₀ = [x_start, y_start, 0, L]

Staleness: after more than ``step_limit`` steps without a correction the
updater's pending fixes are dropped, so a fix measured before the walker
moved on is never applied to the dead-reckoned state. The policy counts
steps; it is not time based.
"""

import logging
import threading
from functools import partial
from typing import Iterable, List, Optional, Tuple

import numpy as np

from indoornav.config import StrategyConfig
from indoornav.estimators.kalman_filter import KalmanFilter
from indoornav.fusion.adapters import Correction, MeasurementUpdater, StepPredictor
from indoornav.fusion.events import Channel
from indoornav.sensors.types import PositionEstimate, StepEvent

logger = logging.getLogger(__name__)


HEADING_STATE = 2


class FusionStrategy:
    """
    Kalman fusion of PDR steps with fingerprint position fixes.

    Attributes:
        floor: Floor label of every published position (fixed at start).
        kf: The underlying KalmanFilter.
        predictor: StepPredictor applying step events.
        updater: MeasurementUpdater applying fingerprint fixes.
        positions: Channel of published PositionEstimate (source 'kalman').

    Example:
        >>> strategy = FusionStrategy(start, pdr.events)
        >>> strategy.add_source("magnetic", magnetic.positions, sigma=2.0)
        >>> _ = strategy.positions.subscribe(print)
        >>> strategy.start()
    """

    def __init__(
        self,
        start_position: PositionEstimate,
        steps: Channel,
        config: Optional[StrategyConfig] = None,
        sources: Iterable[Tuple[str, Channel, float]] = (),
    ):
        self.config = config or StrategyConfig()
        self.floor = start_position.floor
        self.steps = steps

        self.kf = self._init_kf(start_position, self.config)
        self.predictor = StepPredictor(self.kf, self.config.step_length)
        self.updater = MeasurementUpdater(
            self.kf,
            min_sources=self.config.min_sources,
            gate_confidence=self.config.gate_confidence,
        )
        self.updater.corrections.subscribe(self._on_correction)

        self.positions: Channel[PositionEstimate] = Channel("strategy.positions")

        self._lock = threading.RLock()
        self._step_count = 0
        self._sources: List[Tuple[str, Channel]] = []
        self._subscriptions: List[Tuple[Channel, object]] = []

        for name, channel, sigma in sources:
            self.add_source(name, channel, sigma)

    @staticmethod
    def _init_kf(start: PositionEstimate, config: StrategyConfig) -> KalmanFilter:
        x0 = np.array([start.x, start.y, 0.0, config.step_length])
        identity = np.eye(4)
        return KalmanFilter(
            A=identity,
            B=identity,
            Q=config.process_noise(),
            x0=x0,
            P0=config.initial_covariance(),
            angular_states=(HEADING_STATE,),
        )

    @property
    def step_count(self) -> int:
        """Steps since the last applied correction."""
        with self._lock:
            return self._step_count

    @property
    def running(self) -> bool:
        return bool(self._subscriptions)

    def add_source(self, name: str, positions: Channel, sigma: float) -> None:
        """
        Register a fingerprint position source.

        Args:
            name: Source label.
            positions: Channel publishing the source's PositionEstimate.
            sigma: Position std of the source's fixes (m).
        """
        with self._lock:
            if any(existing == name for existing, _ in self._sources):
                raise ValueError(f"Position source {name!r} already registered")
            self.updater.add_source(name, sigma)
            self._sources.append((name, positions))
            if self.running:
                handler = positions.subscribe(partial(self.on_position, name))
                self._subscriptions.append((positions, handler))

    def add_matcher(self, matcher, sigma: float) -> None:
        """Register a fingerprint matcher by its ``source`` and ``positions``."""
        self.add_source(matcher.source, matcher.positions, sigma)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Subscribe to the step and fix channels. Idempotent."""
        with self._lock:
            if self.running:
                return
            subscriptions = [(self.steps, self.steps.subscribe(self.on_step))]
            for name, channel in self._sources:
                subscriptions.append(
                    (channel, channel.subscribe(partial(self.on_position, name)))
                )
            self._subscriptions = subscriptions

    def stop(self) -> None:
        """Unsubscribe from every input. Idempotent."""
        with self._lock:
            subscriptions, self._subscriptions = self._subscriptions, []
        for channel, handler in subscriptions:
            channel.unsubscribe(handler)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def on_step(self, event: StepEvent) -> PositionEstimate:
        """Predict one step and publish the dead-reckoned position."""
        with self._lock:
            self.predictor.predict(event)
            estimate = self.kf.position_at(self.floor, event.timestamp)
            self._step_count += 1
            if self._step_count > self.config.step_limit:
                self.updater.clear_positions()

        self.positions.publish(estimate)
        return estimate

    def on_position(self, source: str, estimate: PositionEstimate) -> bool:
        """
        Forward a fingerprint fix to the updater.

        Returns:
            True if the fix triggered an applied correction.
        """
        if estimate.floor != self.floor:
            logger.debug(
                "Fix from %s on floor %d ignored (strategy floor %d)",
                source,
                estimate.floor,
                self.floor,
            )
            return False
        return self.updater.on_position(source, estimate)

    def publish(self) -> bool:
        """Apply the pending fixes now (see MeasurementUpdater.publish)."""
        return self.updater.publish()

    def _on_correction(self, correction: Correction) -> None:
        x, y = correction.position
        estimate = PositionEstimate(
            x=x, y=y, floor=self.floor, timestamp=correction.timestamp, source="kalman"
        )
        with self._lock:
            self._step_count = 0
        logger.debug("Correction from %s applied", ", ".join(correction.sources))
        self.positions.publish(estimate)

    def get_state(self) -> Tuple[np.ndarray, np.ndarray]:
        """Current (state, covariance) copies of the filter."""
        return self.kf.get_state()
