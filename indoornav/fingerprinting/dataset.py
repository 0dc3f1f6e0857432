"""Dataset utilities for loading and saving fingerprint databases.

Survey maps are stored as tab-separated text, one reference point per line:

    X1\\tY1\\tF11\\tF12\\t...\\tF1k
    X2\\tY2\\tF21\\tF22\\t...\\tF2k
    ...
    XM\\tYM\\tFM1\\tFM2\\t...\\tFMk

with no trailing newline after the final record. Magnetic maps have k = 3
(Mx, My, Mz); radio maps have one RSSI column per access point.

Two failure kinds are kept apart: a file that cannot be read raises
OSError (as raised by the file system), a file whose content does not
follow the format raises FingerprintFormatError.

Author: Navigation Engineer
Date: 2024
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from .types import FingerprintDatabase

logger = logging.getLogger(__name__)


class FingerprintFormatError(ValueError):
    """A fingerprint file is readable but not well formatted."""

    def __init__(self, message: str, path: Optional[Path] = None, line: Optional[int] = None):
        self.path = path
        self.line = line
        location = ""
        if path is not None:
            location = f"{path}"
            if line is not None:
                location += f":{line}"
            location += ": "
        super().__init__(f"{location}{message}")


def parse_fingerprint_lines(
    lines: List[str],
    floor: int,
    n_features: Optional[int] = None,
    path: Optional[Path] = None,
) -> FingerprintDatabase:
    """
    Build a FingerprintDatabase from the text records of a survey map.

    Args:
        lines: One record per element, without line terminators.
        floor: Floor label for every row.
        n_features: Expected number of feature columns. If None, it is taken
                    from the first record (which must have at least one).
        path: Source file, only used in error messages.

    Returns:
        FingerprintDatabase with M = len(lines) reference points.

    Raises:
        FingerprintFormatError: On an empty map, a record with the wrong
            number of columns, or a non-numeric field.
    """
    if not lines:
        raise FingerprintFormatError("fingerprint map has no records", path)

    expected_columns = None if n_features is None else 2 + n_features
    rows = []
    for line_no, line in enumerate(lines, start=1):
        fields = line.split("\t")
        if expected_columns is None:
            if len(fields) < 3:
                raise FingerprintFormatError(
                    f"expected at least 3 columns, got {len(fields)}", path, line_no
                )
            expected_columns = len(fields)
        if len(fields) != expected_columns:
            raise FingerprintFormatError(
                f"expected {expected_columns} columns, got {len(fields)}", path, line_no
            )
        try:
            rows.append([float(value) for value in fields])
        except ValueError as e:
            raise FingerprintFormatError(f"non-numeric field ({e})", path, line_no) from e

    table = np.array(rows, dtype=float)
    meta = {"source_file": str(path)} if path is not None else {}
    try:
        return FingerprintDatabase(
            locations=table[:, :2], features=table[:, 2:], floor=floor, meta=meta
        )
    except ValueError as e:
        raise FingerprintFormatError(str(e), path) from e


def load_fingerprint_tsv(
    path: Union[str, Path],
    floor: int,
    n_features: Optional[int] = None,
) -> FingerprintDatabase:
    """
    Load a fingerprint database from a TSV survey map.

    A single trailing newline after the last record is tolerated; any other
    empty line is a malformed record.

    Args:
        path: TSV file.
        floor: Floor label of the map.
        n_features: Expected feature columns (3 for magnetic maps). If None,
                    inferred from the first record.

    Returns:
        FingerprintDatabase loaded from disk.

    Raises:
        OSError: If the file is missing or unreadable.
        FingerprintFormatError: If the content is malformed or not UTF-8.

    Examples:
        >>> db = load_fingerprint_tsv('maps/floor0_magnetic.tsv', floor=0, n_features=3)
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        try:
            text = f.read()
        except UnicodeDecodeError as e:
            raise FingerprintFormatError(f"not valid UTF-8 text ({e.reason})", path) from e

    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    lines = [line.rstrip("\r") for line in lines]

    db = parse_fingerprint_lines(lines, floor=floor, n_features=n_features, path=path)
    logger.debug("Loaded %r from %s", db, path)
    return db


def save_fingerprint_tsv(db: FingerprintDatabase, path: Union[str, Path]) -> None:
    """
    Save a fingerprint database as a TSV survey map.

    Values are written with repr() precision so that a save/load cycle is
    exact. No newline follows the final record.

    Args:
        db: FingerprintDatabase to save.
        path: Destination file (parent directories are created).

    Examples:
        >>> save_fingerprint_tsv(db, 'maps/floor0_magnetic.tsv')
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    records = []
    for location, feature in zip(db.locations, db.features):
        values = list(location) + list(feature)
        records.append("\t".join(repr(float(v)) for v in values))

    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(records))
