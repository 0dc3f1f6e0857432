"""Configuration for the compass, the matchers and the fusion strategy.

Every tunable lives in a frozen dataclass validated at construction, so a
bad value fails when the configuration is built rather than deep inside a
filter callback. A complete configuration can be read from YAML:

    compass:
      rate_ms: 30
      filter_coefficient: 0.98
    strategy:
      step_length: 0.5
      step_limit: 3
    matchers:
      - source: magnetic
        path: maps/floor0_magnetic.tsv
        n_features: 3
        threshold: 25.0
        k: 4
        sigma: 2.0

Missing sections and keys keep their defaults.
"""

import math
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple, Union

import numpy as np
import yaml


@dataclass(frozen=True)
class CompassConfig:
    """Complementary compass settings.

    Attributes:
        rate_ms: Fusion tick period in milliseconds.
        filter_coefficient: Gyro weight c of the complementary blend.
    """

    rate_ms: int = 30
    filter_coefficient: float = 0.98

    def __post_init__(self) -> None:
        if self.rate_ms <= 0:
            raise ValueError(f"rate_ms must be positive, got {self.rate_ms}")
        if not 0.0 <= self.filter_coefficient <= 1.0:
            raise ValueError(
                f"filter_coefficient must be in [0, 1], got {self.filter_coefficient}"
            )


@dataclass(frozen=True)
class PdrConfig:
    """Step detection settings (m/s² and seconds)."""

    min_peak_height: float = 1.0
    min_step_interval: float = 0.3

    def __post_init__(self) -> None:
        if self.min_peak_height <= 0:
            raise ValueError(f"min_peak_height must be positive, got {self.min_peak_height}")
        if self.min_step_interval <= 0:
            raise ValueError(
                f"min_step_interval must be positive, got {self.min_step_interval}"
            )


@dataclass(frozen=True)
class StrategyConfig:
    """Kalman fusion strategy settings.

    Standard deviations are given in meters and degrees; the derived
    matrices are in meters and radians.

    Attributes:
        step_length: Fixed step length L (m).
        init_position_std: Initial position std (m).
        init_heading_std_deg: Initial heading std (deg).
        position_process_std: Position process noise per step (m).
        heading_process_std_deg: Heading process noise per step (deg).
        step_limit: Uncorrected steps after which buffered fixes are dropped.
        min_sources: Sources with pending fixes needed to apply an update.
        gate_confidence: Chi-square gate confidence, None disables gating.
    """

    step_length: float = 0.5
    init_position_std: float = 5.0
    init_heading_std_deg: float = 10.0
    position_process_std: float = 1.0
    heading_process_std_deg: float = 3.0
    step_limit: int = 3
    min_sources: int = 1
    gate_confidence: Optional[float] = None

    def __post_init__(self) -> None:
        if self.step_length <= 0:
            raise ValueError(f"step_length must be positive, got {self.step_length}")
        for name in (
            "init_position_std",
            "init_heading_std_deg",
            "position_process_std",
            "heading_process_std_deg",
        ):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{name} must be finite and >= 0, got {value}")
        if self.step_limit < 0:
            raise ValueError(f"step_limit must be >= 0, got {self.step_limit}")
        if self.min_sources < 1:
            raise ValueError(f"min_sources must be >= 1, got {self.min_sources}")
        if self.gate_confidence is not None and not 0.0 < self.gate_confidence < 1.0:
            raise ValueError(
                f"gate_confidence must be in (0, 1), got {self.gate_confidence}"
            )

    def initial_covariance(self) -> np.ndarray:
        """P0 = diag(σp², σp², σψ², L²) over (x, y, heading, step length)."""
        pos = self.init_position_std ** 2
        head = math.radians(self.init_heading_std_deg) ** 2
        return np.diag([pos, pos, head, self.step_length ** 2])

    def process_noise(self) -> np.ndarray:
        """Q = diag(qp², qp², qψ², L²) over (x, y, heading, step length)."""
        pos = self.position_process_std ** 2
        head = math.radians(self.heading_process_std_deg) ** 2
        return np.diag([pos, pos, head, self.step_length ** 2])


@dataclass(frozen=True)
class MatcherConfig:
    """One fingerprint matcher and its measurement accuracy.

    Attributes:
        source: Matcher label (e.g. 'magnetic', 'wifi').
        path: TSV survey map.
        floor: Floor label of the map.
        n_features: Expected feature columns, None to infer from the file.
        k: Optional k-NN limit.
        threshold: Optional squared-distance threshold.
        sigma: Position std of this source's fixes (m), R = diag(σ², σ²).
    """

    source: str
    path: str
    floor: int = 0
    n_features: Optional[int] = None
    k: Optional[int] = None
    threshold: Optional[float] = None
    sigma: float = 2.0

    def __post_init__(self) -> None:
        if not self.source:
            raise ValueError("source must be a non-empty string")
        if self.k is not None and self.k < 1:
            raise ValueError(f"k must be >= 1, got {self.k}")
        if self.threshold is not None and self.threshold < 0:
            raise ValueError(f"threshold must be >= 0, got {self.threshold}")
        if not self.sigma > 0:
            raise ValueError(f"sigma must be positive, got {self.sigma}")


@dataclass(frozen=True)
class IndoorNavConfig:
    """Complete configuration of a positioning pipeline."""

    compass: CompassConfig = field(default_factory=CompassConfig)
    pdr: PdrConfig = field(default_factory=PdrConfig)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    matchers: Tuple[MatcherConfig, ...] = ()


def _build(cls, values: Optional[Mapping[str, Any]], section: str):
    if values is None:
        values = {}
    if not isinstance(values, Mapping):
        raise ValueError(f"Section '{section}' must be a mapping, got {type(values).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown keys in section '{section}': {sorted(unknown)}")
    try:
        return cls(**values)
    except TypeError as e:
        # Missing required keys
        raise ValueError(f"Section '{section}': {e}") from e


def config_from_dict(data: Optional[Mapping[str, Any]]) -> IndoorNavConfig:
    """
    Build an IndoorNavConfig from plain data (e.g. parsed YAML).

    Args:
        data: Mapping with optional 'compass', 'pdr', 'strategy' and
              'matchers' entries. None gives the default configuration.

    Returns:
        Validated IndoorNavConfig.

    Raises:
        ValueError: On unknown sections/keys or invalid values.
    """
    data = data or {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Configuration must be a mapping, got {type(data).__name__}")

    unknown = set(data) - {"compass", "pdr", "strategy", "matchers"}
    if unknown:
        raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")

    matchers = tuple(
        _build(MatcherConfig, entry, f"matchers[{i}]")
        for i, entry in enumerate(data.get("matchers") or [])
    )
    sources = [m.source for m in matchers]
    if len(set(sources)) != len(sources):
        raise ValueError(f"Duplicate matcher sources: {sources}")

    return IndoorNavConfig(
        compass=_build(CompassConfig, data.get("compass"), "compass"),
        pdr=_build(PdrConfig, data.get("pdr"), "pdr"),
        strategy=_build(StrategyConfig, data.get("strategy"), "strategy"),
        matchers=matchers,
    )


def load_config(path: Union[str, Path]) -> IndoorNavConfig:
    """
    Load a pipeline configuration from a YAML file.

    Relative matcher map paths are resolved against the file's directory.

    Args:
        path: YAML configuration file.

    Returns:
        Validated IndoorNavConfig.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the content is not a valid configuration.
    """
    path = Path(path)
    content = path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"{path}: invalid YAML ({e})") from e

    config = config_from_dict(data)

    resolved = []
    for matcher in config.matchers:
        map_path = Path(matcher.path)
        if not map_path.is_absolute():
            map_path = path.parent / map_path
        resolved.append(replace(matcher, path=str(map_path)))
    return replace(config, matchers=tuple(resolved))
