"""LookupTable: Generalized Hough reverse-lookup table.

Maps each orientation code of a template to the offsets pointing from every
template pixel of that code to the template's reference center.  A scene
pixel of the same code then votes for ``pixel + offset`` as a candidate
center (see :mod:`cghmatch.voting`).

The table is stored as one flat offset buffer plus a per-code start index
(CSR layout), so a lookup is two array reads and a slice.  Tables are
immutable: re-templating builds a new table and replaces the old one
wholesale.

Usage::

    table = build_lookup_table(encoded_template)
    offsets, weights = table.entry(5)     # (n, 2) [dx, dy] rows, (n,) weights
"""

import sys
import warnings
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from ._constants import MASKED_CODE

__all__ = ["LookupTable", "LookupTableBuilder", "build_lookup_table", "STRATEGIES"]

# "weighted": offsets deduplicated per code, weight = multiplicity.
# "list": one entry per template pixel, implicit weight 1.
STRATEGIES = ("weighted", "list")

_EMPTY_OFFSETS = np.zeros((0, 2), dtype=np.int32)
_EMPTY_OFFSETS.setflags(write=False)
_EMPTY_WEIGHTS = np.zeros(0, dtype=np.int32)
_EMPTY_WEIGHTS.setflags(write=False)


def _check_encoded(encoded, name: str = "encoded image") -> np.ndarray:
    """Validate a 2-D grid of non-negative integer codes and return it as an array."""
    encoded = np.asarray(encoded)
    if encoded.ndim != 2:
        raise ValueError(f"Expected 2D {name}, got shape {encoded.shape}")
    if encoded.shape[0] == 0 or encoded.shape[1] == 0:
        raise ValueError(f"{name.capitalize()} is empty: shape {encoded.shape}")
    if not np.issubdtype(encoded.dtype, np.integer):
        raise ValueError(
            f"{name.capitalize()} must hold integer codes, got dtype {encoded.dtype}"
        )
    if np.issubdtype(encoded.dtype, np.signedinteger) and encoded.min() < 0:
        raise ValueError(
            f"{name.capitalize()} contains negative codes (min={encoded.min()})"
        )
    return encoded


@dataclass(frozen=True, eq=False)
class LookupTable:
    """Immutable code -> offset-set table built from one template.

    Attributes:
        offsets: ``(N, 2)`` int32 array of ``[dx, dy]`` rows, grouped by code.
        weights: ``(N,)`` int32 vote weight per offset row.
        index: ``(max_code + 2,)`` int64 start positions; code ``c`` owns rows
            ``index[c]:index[c + 1]``.
        footprint_size: Template ``(rows, cols)``.
        ideal_vote_total: Score of a perfect match; the non-zero template
            pixel count unless replaced by a self-match peak.
        strategy: ``"weighted"`` or ``"list"``.
    """
    offsets: np.ndarray
    weights: np.ndarray
    index: np.ndarray
    footprint_size: Tuple[int, int]
    ideal_vote_total: int
    strategy: str = "weighted"

    def __post_init__(self):
        # Writeable inputs are copied so the caller's buffers stay untouched.
        for name in ("offsets", "weights", "index"):
            arr = getattr(self, name)
            if arr.flags.writeable:
                arr = arr.copy()
                arr.setflags(write=False)
                object.__setattr__(self, name, arr)

    @property
    def max_code(self) -> int:
        """Highest code with an entry (possibly empty)."""
        return len(self.index) - 2

    @property
    def num_offsets(self) -> int:
        """Number of stored offset rows across all codes."""
        return len(self.offsets)

    @property
    def center(self) -> Tuple[int, int]:
        """Reference center ``(x, y)`` of the template."""
        rows, cols = self.footprint_size
        return cols // 2, rows // 2

    @property
    def is_vacuous(self) -> bool:
        """True when the template carried no matchable pixels."""
        return self.num_offsets == 0

    def entry(self, code: int) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(offsets, weights)`` for a code.

        Codes outside ``0..max_code`` resolve to empty arrays.
        """
        code = int(code)
        if code < 0 or code > self.max_code:
            return _EMPTY_OFFSETS, _EMPTY_WEIGHTS
        lo, hi = self.index[code], self.index[code + 1]
        return self.offsets[lo:hi], self.weights[lo:hi]

    def entry_size(self, code: int) -> int:
        """Number of offset rows stored for a code."""
        return len(self.entry(code)[0])

    def codes(self) -> np.ndarray:
        """Codes that have at least one offset, ascending."""
        return np.flatnonzero(np.diff(self.index))

    def offset_counts(self, code: int) -> Dict[Tuple[int, int], int]:
        """Total vote weight per distinct offset of a code.

        Representation-independent: a weighted table and a list table built
        from the same template give equal dicts.
        """
        counts: Dict[Tuple[int, int], int] = {}
        offsets, weights = self.entry(code)
        for (dx, dy), w in zip(offsets.tolist(), weights.tolist()):
            counts[(dx, dy)] = counts.get((dx, dy), 0) + w
        return counts

    def total_weight(self) -> int:
        """Sum of all offset weights."""
        return int(self.weights.sum())


def build_lookup_table(encoded, strategy: str = "weighted",
                       max_code: Optional[int] = None,
                       verbose: bool = False) -> LookupTable:
    """Build a Generalized Hough lookup table from an encoded template.

    Args:
        encoded: 2-D grid of orientation codes; 0 marks masked pixels.
        strategy: ``"weighted"`` (deduplicate offsets per code, weight by
            multiplicity) or ``"list"`` (one row per pixel, weight 1).
        max_code: Guarantee entries for codes up to this value even when the
            template does not use them.
        verbose: Print a one-line summary to stderr.

    Returns:
        LookupTable with ``ideal_vote_total`` equal to the number of
        non-zero template pixels.

    Raises:
        ValueError: On an unknown strategy, a negative max_code, or an
            encoded image that is not a non-empty 2-D grid of codes.
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown table strategy {strategy!r}; expected one of {STRATEGIES}")
    if max_code is not None and max_code < 0:
        raise ValueError(f"max_code must be >= 0, got {max_code}")

    encoded = _check_encoded(encoded, "template")
    rows, cols = encoded.shape
    cx, cy = cols // 2, rows // 2

    ys, xs = np.nonzero(encoded != MASKED_CODE)
    codes = encoded[ys, xs].astype(np.int64)
    n_pixels = len(codes)

    top = int(codes.max()) if n_pixels else 0
    if max_code is not None:
        top = max(top, int(max_code))

    if n_pixels == 0:
        warnings.warn(
            "Template has no pixels with a valid gradient code; "
            "the lookup table is empty and every match will score 0.",
            UserWarning,
            stacklevel=2,
        )
        return LookupTable(
            offsets=_EMPTY_OFFSETS.copy(),
            weights=_EMPTY_WEIGHTS.copy(),
            index=np.zeros(top + 2, dtype=np.int64),
            footprint_size=(rows, cols),
            ideal_vote_total=0,
            strategy=strategy,
        )

    # Offsets point from the pixel toward the center.
    dx = cx - xs.astype(np.int64)
    dy = cy - ys.astype(np.int64)

    if strategy == "weighted":
        # Rows sort lexicographically, so unique keys come out grouped by code.
        keys = np.stack([codes, dx, dy], axis=1)
        uniq, counts = np.unique(keys, axis=0, return_counts=True)
        entry_codes = uniq[:, 0]
        offsets = uniq[:, 1:]
        weights = counts
    else:
        order = np.argsort(codes, kind="stable")
        entry_codes = codes[order]
        offsets = np.stack([dx, dy], axis=1)[order]
        weights = np.ones(n_pixels, dtype=np.int64)

    per_code = np.bincount(entry_codes, minlength=top + 1)
    index = np.zeros(top + 2, dtype=np.int64)
    np.cumsum(per_code, out=index[1:])

    table = LookupTable(
        offsets=np.ascontiguousarray(offsets, dtype=np.int32),
        weights=np.ascontiguousarray(weights, dtype=np.int32),
        index=index,
        footprint_size=(rows, cols),
        ideal_vote_total=n_pixels,
        strategy=strategy,
    )

    if verbose:
        print(f"[table] {rows}x{cols} template: {n_pixels} pixels -> "
              f"{table.num_offsets} offsets over {len(table.codes())} codes "
              f"({strategy})", file=sys.stderr)

    return table


class LookupTableBuilder:
    """Configured builder producing a fresh :class:`LookupTable` per call."""

    def __init__(self, strategy: str = "weighted", max_code: Optional[int] = None,
                 verbose: bool = False):
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown table strategy {strategy!r}; expected one of {STRATEGIES}")
        self._strategy = strategy
        self._max_code = max_code
        self._verbose = verbose

    def build(self, encoded) -> LookupTable:
        """Build a table from one encoded template image."""
        return build_lookup_table(encoded, strategy=self._strategy,
                                  max_code=self._max_code, verbose=self._verbose)

    @property
    def strategy(self) -> str:
        return self._strategy

    @property
    def max_code(self) -> Optional[int]:
        return self._max_code
