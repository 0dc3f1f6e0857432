"""Fingerprint-based localization against static survey maps.

Two matcher instances usually run side by side, sharing one algorithm:
a magnetic-field matcher (features Mx, My, Mz) and a radio matcher
(features = RSSI per access point).

Main components:
    - FingerprintDatabase: single-floor survey map
    - load_fingerprint_tsv / save_fingerprint_tsv: TSV map I/O
    - FingerprintMatcher: threshold / k-NN matching with mean position
    - make_matcher: load a map and build a matcher, None on failure

Example usage:
    >>> from indoornav.fingerprinting import make_matcher
    >>> from indoornav.sensors.types import MagneticField
    >>> matcher = make_matcher('maps/floor0_magnetic.tsv', floor=0,
    ...                        k=4, threshold=25.0, n_features=3,
    ...                        source='magnetic')
    >>> estimate = matcher.localize(MagneticField(12.0, -3.5, -40.1, timestamp=0))

Author: Navigation Engineer
Date: 2024
"""

from .dataset import (
    FingerprintFormatError,
    load_fingerprint_tsv,
    parse_fingerprint_lines,
    save_fingerprint_tsv,
)
from .matcher import FingerprintMatcher, make_matcher, squared_distances
from .types import Fingerprint, FingerprintDatabase, Location

__all__ = [
    # Core types
    "FingerprintDatabase",
    "Location",
    "Fingerprint",
    # Dataset I/O
    "FingerprintFormatError",
    "load_fingerprint_tsv",
    "parse_fingerprint_lines",
    "save_fingerprint_tsv",
    # Matching
    "squared_distances",
    "FingerprintMatcher",
    "make_matcher",
]
