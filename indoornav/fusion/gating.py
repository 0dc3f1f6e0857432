"""Innovation gating for fingerprint position corrections.

Fingerprint matchers occasionally return a position far from the truth
(a magnetic signature repeated elsewhere in the building, a radio scan
dominated by one reflected access point). A chi-square test on the Kalman
innovation rejects such fixes before they reach the filter:

    d² = yᵀ S⁻¹ y
    accept  iff  d² < χ²(m, confidence)

with y the innovation, S its covariance and m the measurement dimension.
"""

import numpy as np
from scipy import stats


def mahalanobis_distance_squared(y: np.ndarray, S: np.ndarray) -> float:
    """Compute squared Mahalanobis distance of an innovation.

    Args:
        y: Innovation vector (m,).
        S: Innovation covariance matrix (m × m), must be positive definite.

    Returns:
        Squared Mahalanobis distance d² (scalar).

    Raises:
        ValueError: If dimensions are incompatible or S is singular.

    Example:
        >>> y = np.array([3.0, 4.0])
        >>> S = np.diag([1.0, 1.0])
        >>> mahalanobis_distance_squared(y, S)
        25.0
    """
    y = np.asarray(y, dtype=float)
    S = np.asarray(S, dtype=float)

    if y.ndim != 1:
        raise ValueError(f"Innovation y must be 1D, got shape {y.shape}")
    m = len(y)
    if S.shape != (m, m):
        raise ValueError(
            f"Innovation dimension {m} incompatible with S shape {S.shape}"
        )

    try:
        S_inv = np.linalg.inv(S)
    except np.linalg.LinAlgError as e:
        raise ValueError(f"Innovation covariance S is singular: {e}") from e

    return float(y @ S_inv @ y)


def chi_square_threshold(dof: int, confidence: float = 0.95) -> float:
    """Chi-square critical value χ²(dof, confidence).

    Args:
        dof: Degrees of freedom (measurement dimension), >= 1.
        confidence: Confidence level in (0, 1).

    Returns:
        Upper quantile of the chi-square distribution.

    Notes:
        Common values at 95% confidence: dof=2 → 5.991, dof=4 → 9.488.
    """
    if dof < 1:
        raise ValueError(f"Degrees of freedom must be >= 1, got {dof}")
    if not 0.0 < confidence < 1.0:
        raise ValueError(f"Confidence level must be in (0, 1), got {confidence}")
    return float(stats.chi2.ppf(confidence, df=dof))


def chi_square_gate(y: np.ndarray, S: np.ndarray, confidence: float = 0.95) -> bool:
    """Chi-square gating decision for one innovation.

    Args:
        y: Innovation vector (m,).
        S: Innovation covariance matrix (m × m).
        confidence: Confidence level in (0, 1). Higher values accept larger
                    innovations.

    Returns:
        True if the measurement is consistent with the prediction, False if
        it should be rejected as an outlier.

    Example:
        >>> chi_square_gate(np.array([0.1, 0.2]), np.eye(2))
        True
        >>> chi_square_gate(np.array([5.0, 5.0]), np.eye(2))
        False
    """
    d_squared = mahalanobis_distance_squared(y, S)
    return bool(d_squared < chi_square_threshold(len(y), confidence))
