"""Nearest-neighbour / threshold fingerprint matcher.

This module turns one live feature sample (a magnetic field reading or a
radio scan) into a position estimate by comparing it to a single-floor
survey database.

Matching policy (the two options are independent, giving four modes):
    - threshold τ: keep rows whose squared feature distance d² <= τ
    - k:           keep the k rows with the smallest d² among the survivors
The estimate is the unweighted mean of the surviving rows' locations;
no survivor means no match (None), which is a normal outcome.

    d²(z, f_i) = Σ_j (z_j - f_ij)²
    x̂ = (1/|S|) Σ_{i ∈ S} x_i

Author: Navigation Engineer
Date: 2024
"""

import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np

from indoornav.fusion.events import Channel
from indoornav.sensors.types import PositionEstimate

from .dataset import FingerprintFormatError, load_fingerprint_tsv
from .types import FingerprintDatabase

logger = logging.getLogger(__name__)


def squared_distances(z: np.ndarray, F: np.ndarray) -> np.ndarray:
    """
    Squared Euclidean distances d²(z, f_i) for all fingerprints f_i in F.

    Args:
        z: Query fingerprint vector, shape (N,).
        F: Reference fingerprints matrix, shape (M, N).

    Returns:
        Array of squared distances, shape (M,).

    Raises:
        ValueError: If z and F have incompatible dimensions.

    Examples:
        >>> z = np.array([10.0, 20.0, 31.2])
        >>> F = np.array([[10.0, 20.0, 30.0]])
        >>> squared_distances(z, F)  # [1.44]
    """
    if z.ndim != 1:
        raise ValueError(f"Query z must be 1D array, got shape {z.shape}")
    if F.ndim != 2:
        raise ValueError(f"Reference F must be 2D array (M, N), got shape {F.shape}")
    if z.shape[0] != F.shape[1]:
        raise ValueError(
            f"Incompatible dimensions: z has {z.shape[0]} features, "
            f"F has {F.shape[1]} features per row"
        )

    diff = F - z
    return np.einsum("ij,ij->i", diff, diff)


class FingerprintMatcher:
    """
    Position estimator over a static (location, fingerprint) database.

    The matcher holds no mutable matching state: ``localize`` is a pure
    function of (database, sample, k, threshold) and may be called
    concurrently. It also acts as an event stage: ``on_sample`` localizes
    and publishes non-empty results on ``positions``.

    Attributes:
        db: Read-only survey database (fixes the floor).
        k: Optional k-NN limit.
        threshold: Optional squared-distance threshold (inclusive).
        source: Label attached to produced estimates.
        positions: Channel of PositionEstimate results.

    Examples:
        >>> db = FingerprintDatabase(
        ...     locations=np.array([[0.0, 0.0]]),
        ...     features=np.array([[10.0, 20.0, 30.0]]),
        ...     floor=0,
        ... )
        >>> matcher = FingerprintMatcher(db, threshold=1.0)
        >>> matcher.localize(MagneticField(10, 20, 30))     # (0, 0)
        >>> matcher.localize(MagneticField(10, 20, 31.2))   # None
    """

    def __init__(
        self,
        db: FingerprintDatabase,
        k: Optional[int] = None,
        threshold: Optional[float] = None,
        source: str = "fingerprint",
    ):
        if k is not None and k < 1:
            raise ValueError(f"k must be >= 1, got k={k}")
        if threshold is not None and (not np.isfinite(threshold) or threshold < 0):
            raise ValueError(f"threshold must be finite and >= 0, got {threshold}")

        self.db = db
        self.k = k
        self.threshold = threshold
        self.source = source
        self.positions: Channel[PositionEstimate] = Channel(f"{source}.positions")

    @property
    def floor(self) -> int:
        return self.db.floor

    @property
    def mode(self) -> str:
        """One of 'none', 'threshold', 'knn', 'threshold+knn'."""
        if self.threshold is not None and self.k is not None:
            return "threshold+knn"
        if self.threshold is not None:
            return "threshold"
        if self.k is not None:
            return "knn"
        return "none"

    def select(self, z: np.ndarray) -> np.ndarray:
        """
        Indices of the rows surviving the matching policy.

        Args:
            z: Query feature vector, shape (N,).

        Returns:
            Row indices in increasing distance order when k is set, in
            database order otherwise.
        """
        z = np.asarray(z, dtype=float)
        if z.shape != (self.db.n_features,):
            raise ValueError(
                f"Query fingerprint has shape {z.shape}, "
                f"but database expects ({self.db.n_features},)"
            )

        d2 = squared_distances(z, self.db.features)
        indices = np.arange(len(d2))

        if self.threshold is not None:
            indices = indices[d2 <= self.threshold]

        if self.k is not None and len(indices) > 0:
            # Stable sort keeps database order between equal distances
            order = np.argsort(d2[indices], kind="stable")
            indices = indices[order[: self.k]]

        return indices

    def localize(self, sample) -> Optional[PositionEstimate]:
        """
        Estimate the position matching one live sample.

        Args:
            sample: Object with ``vector`` (np.ndarray (N,)) and
                    ``timestamp`` attributes, e.g. MagneticField or RadioScan.

        Returns:
            PositionEstimate at the mean of the surviving rows' locations,
            with the sample timestamp and the database floor; None if no
            row survives.
        """
        indices = self.select(sample.vector)
        if len(indices) == 0:
            return None

        x, y = self.db.locations[indices].mean(axis=0)
        return PositionEstimate(
            x=float(x),
            y=float(y),
            floor=self.floor,
            timestamp=sample.timestamp,
            source=self.source,
        )

    def on_sample(self, sample) -> None:
        """Localize ``sample`` and publish the estimate if there is a match."""
        estimate = self.localize(sample)
        if estimate is not None:
            self.positions.publish(estimate)

    def __repr__(self) -> str:
        return (
            f"FingerprintMatcher(source={self.source!r}, mode={self.mode!r}, "
            f"k={self.k}, threshold={self.threshold}, db={self.db!r})"
        )


def make_matcher(
    path: Union[str, Path],
    floor: int,
    k: Optional[int] = None,
    threshold: Optional[float] = None,
    n_features: Optional[int] = None,
    source: str = "fingerprint",
) -> Optional[FingerprintMatcher]:
    """
    Load a TSV survey map and build a ready-to-use matcher.

    Load failures are reported, not raised: the error is logged with its
    kind (unreadable file vs malformed content) and None is returned, so a
    missing map never interrupts the caller and never yields a partially
    built database.

    Args:
        path: TSV fingerprint file.
        floor: Floor label of the map.
        k: Optional k-NN limit.
        threshold: Optional squared-distance threshold.
        n_features: Expected feature columns (3 for magnetic maps).
        source: Label attached to produced estimates.

    Returns:
        FingerprintMatcher, or None if the map could not be loaded.
    """
    try:
        db = load_fingerprint_tsv(path, floor=floor, n_features=n_features)
    except FingerprintFormatError as e:
        logger.error("Malformed fingerprint map for %s: %s", source, e)
        return None
    except OSError as e:
        logger.error("Cannot read fingerprint map %s for %s: %s", path, source, e)
        return None

    return FingerprintMatcher(db, k=k, threshold=threshold, source=source)
