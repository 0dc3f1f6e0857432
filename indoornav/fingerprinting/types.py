"""Type definitions and data structures for fingerprint-based localization.

This module defines the static survey database used by the fingerprint
matchers: one database per floor and per signal kind (magnetic field,
radio RSSI).

Author: Navigation Engineer
Date: 2024
"""

from dataclasses import dataclass, field

import numpy as np


# Type aliases for clarity and documentation
Location = np.ndarray  # Shape (2,), (x, y)
Fingerprint = np.ndarray  # Shape (N,), feature vector (e.g., [Mx, My, Mz])


@dataclass(frozen=True, eq=False)
class FingerprintDatabase:
    """
    Single-floor fingerprint database (survey map).

    Stores reference point (RP) locations and their fingerprint feature
    vectors as parallel arrays. The database is built once at load time and
    is read-only afterwards: the arrays are copied and flagged non-writeable.

    Attributes:
        locations: Reference point coordinates, shape (M, 2).
        features: Fingerprint feature vectors, shape (M, N).
                  For magnetic maps N = 3 (Mx, My, Mz in μT); for radio maps
                  N = number of access points (RSSI in dBm).
        floor: Floor label shared by every row.
        meta: Metadata dictionary (e.g. 'source_file', 'ap_ids', 'unit').

    Examples:
        >>> db = FingerprintDatabase(
        ...     locations=np.array([[0.0, 0.0], [10.0, 0.0]]),
        ...     features=np.array([[10.0, 20.0, 30.0], [12.0, 18.0, 33.0]]),
        ...     floor=0,
        ... )
        >>> print(db)
        FingerprintDatabase(n_rps=2, n_features=3, floor=0)
    """

    locations: np.ndarray
    features: np.ndarray
    floor: int
    meta: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate data structure consistency and freeze the arrays."""
        locations = np.array(self.locations, dtype=float)
        features = np.array(self.features, dtype=float)

        # Check dimensions
        if locations.ndim != 2 or locations.shape[1] != 2:
            raise ValueError(
                f"locations must be 2D array (M, 2), got shape {locations.shape}"
            )
        if features.ndim != 2:
            raise ValueError(
                f"features must be 2D array (M, N), got shape {features.shape}"
            )

        # Check consistency: same number of reference points M
        if locations.shape[0] != features.shape[0]:
            raise ValueError(
                f"Inconsistent number of reference points: "
                f"locations={locations.shape[0]}, features={features.shape[0]}"
            )
        if features.shape[1] < 1:
            raise ValueError("features must have at least one column")

        if not isinstance(self.floor, (int, np.integer)) or isinstance(self.floor, bool):
            raise TypeError(f"floor must be an integer, got {type(self.floor)}")

        # Non-finite values are not allowed anywhere in the map
        if not np.all(np.isfinite(locations)):
            raise ValueError("locations contain non-finite values (not allowed)")
        if not np.all(np.isfinite(features)):
            raise ValueError("features contain non-finite values (not allowed)")

        locations.setflags(write=False)
        features.setflags(write=False)
        object.__setattr__(self, "locations", locations)
        object.__setattr__(self, "features", features)
        object.__setattr__(self, "floor", int(self.floor))

    @property
    def n_reference_points(self) -> int:
        """Number of reference points (M) in the database."""
        return self.locations.shape[0]

    @property
    def n_features(self) -> int:
        """Number of features (N) per fingerprint."""
        return self.features.shape[1]

    def __len__(self) -> int:
        return self.n_reference_points

    def __repr__(self) -> str:
        """Readable string representation."""
        return (
            f"FingerprintDatabase("
            f"n_rps={self.n_reference_points}, "
            f"n_features={self.n_features}, "
            f"floor={self.floor})"
        )
