"""Voting transform: applies a LookupTable to an encoded scene image.

Every visited scene pixel with code ``c`` adds the weight of each offset
stored for ``c`` to the accumulator cell ``pixel + offset``.  Maxima of the
accumulator are candidate centers of the template shape.

Two visiting variants:

* **all-pixel** (default): every pixel except the outermost 1-pixel border
  is visited.  Each vote target is range-checked and out-of-frame votes are
  dropped, so matches centered near the frame edge are still found.
* **bounded**: only pixels at least half the template footprint away from
  every border are visited.  All vote targets then land inside the
  accumulator by construction, but matches whose center lies within that
  margin cannot be found.

``loop_step`` sub-samples both rows and columns.  Raw vote counts shrink by
roughly ``loop_step**2``; :func:`cghmatch.locator.locate` compensates.

Usage::

    acc = vote(encoded_scene, table)                       # all-pixel, step 1
    acc = vote(encoded_scene, table, loop_step=2, bounded=True)
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from ._constants import MASKED_CODE, VOTE_BLOCK_ELEMS
from .lookup_table import LookupTable, _check_encoded

__all__ = ["VoteParams", "VotingTransform", "vote", "visit_window"]


@dataclass(frozen=True)
class VoteParams:
    """Sampling settings for the voting transform."""
    loop_step: int = 1
    bounded: bool = False

    def __post_init__(self):
        if int(self.loop_step) != self.loop_step or self.loop_step < 1:
            raise ValueError(f"loop_step must be an integer >= 1, got {self.loop_step}")

    @property
    def score_scale(self) -> int:
        """Factor restoring step-reduced vote counts to full-resolution scale."""
        return int(self.loop_step) ** 2


def visit_window(shape: Tuple[int, int], table: LookupTable,
                 loop_step: int = 1, bounded: bool = False) -> Tuple[slice, slice]:
    """Row and column slices of the scene pixels that cast votes.

    Args:
        shape: Scene ``(rows, cols)``.
        table: Table whose footprint bounds the window in bounded mode.
        loop_step: Sampling stride for rows and columns.
        bounded: Use the footprint margin instead of the 1-pixel border.

    Returns:
        ``(row_slice, col_slice)``; either may be empty for small scenes.
    """
    rows, cols = shape
    if bounded:
        fh, fw = table.footprint_size
        r0, r1 = fh // 2, rows - fh // 2
        c0, c1 = fw // 2, cols - fw // 2
    else:
        r0, r1 = 1, rows - 1
        c0, c1 = 1, cols - 1
    return slice(r0, max(r0, r1), loop_step), slice(c0, max(c0, c1), loop_step)


def vote(encoded, table: LookupTable, loop_step: int = 1,
         bounded: bool = False) -> np.ndarray:
    """Run the Generalized Hough voting transform.

    Args:
        encoded: 2-D grid of orientation codes for the scene.  Read-only.
        table: Lookup table built from the template.  Read-only.
        loop_step: Visit every ``loop_step``-th row and column (>= 1).
        bounded: Restrict visiting to the footprint-safe interior.

    Returns:
        Fresh int32 accumulator with the scene's shape.

    Raises:
        ValueError: If ``loop_step < 1`` or the scene is not a non-empty
            2-D grid of non-negative integer codes.
    """
    params = VoteParams(loop_step=loop_step, bounded=bounded)
    encoded = _check_encoded(encoded, "scene")
    rows, cols = encoded.shape
    totals = np.zeros(rows * cols, dtype=np.int64)

    if table.is_vacuous:
        return totals.reshape(rows, cols).astype(np.int32)

    row_sel, col_sel = visit_window((rows, cols), table, int(params.loop_step), bounded)
    window = encoded[row_sel, col_sel]
    if window.size == 0:
        return totals.reshape(rows, cols).astype(np.int32)

    ys = np.arange(rows)[row_sel]
    xs = np.arange(cols)[col_sel]

    # Codes the table never saw have no offsets and are dropped here.
    flat_codes = window.ravel().astype(np.int64)
    pix = np.flatnonzero((flat_codes != MASKED_CODE) & (flat_codes <= table.max_code))
    if pix.size == 0:
        return totals.reshape(rows, cols).astype(np.int32)

    # Group the voting pixels by code so each code is one contiguous run.
    pix_codes = flat_codes[pix]
    order = np.argsort(pix_codes, kind="stable")
    pix = pix[order]
    pix_codes = pix_codes[order]
    per_code = np.bincount(pix_codes, minlength=table.max_code + 1)
    starts = np.zeros(len(per_code) + 1, dtype=np.int64)
    np.cumsum(per_code, out=starts[1:])

    win_cols = window.shape[1]
    px = xs[pix % win_cols]
    py = ys[pix // win_cols]

    for code in np.flatnonzero(per_code):
        offsets, weights = table.entry(code)
        if len(offsets) == 0:
            continue
        lo, hi = starts[code], starts[code + 1]
        block = max(1, VOTE_BLOCK_ELEMS // len(offsets))
        for b in range(lo, hi, block):
            e = min(b + block, hi)
            totals += _cast_votes(px[b:e], py[b:e], offsets, weights,
                                  rows, cols, check_bounds=not bounded)

    return totals.reshape(rows, cols).astype(np.int32)


def _cast_votes(px: np.ndarray, py: np.ndarray, offsets: np.ndarray,
                weights: np.ndarray, rows: int, cols: int,
                check_bounds: bool) -> np.ndarray:
    """Flat vote counts from a block of same-code pixels.

    Args:
        px, py: Pixel coordinates, shape (n,).
        offsets: ``(m, 2)`` [dx, dy] rows for the pixels' code.
        weights: ``(m,)`` vote weights.
        rows, cols: Accumulator shape.
        check_bounds: Drop targets outside the accumulator.

    Returns:
        int64 array of length ``rows * cols``.
    """
    mx = px[:, np.newaxis] + offsets[np.newaxis, :, 0]
    my = py[:, np.newaxis] + offsets[np.newaxis, :, 1]
    w = np.broadcast_to(weights, mx.shape)

    if check_bounds:
        inside = (mx >= 0) & (mx < cols) & (my >= 0) & (my < rows)
        mx, my, w = mx[inside], my[inside], w[inside]

    target = (my * cols + mx).ravel()
    counts = np.bincount(target, weights=w.ravel(), minlength=rows * cols)
    return counts.astype(np.int64)


class VotingTransform:
    """Voting transform bound to fixed :class:`VoteParams`.

    Usage::

        transform = VotingTransform(loop_step=2)
        acc = transform(encoded_scene, table)
    """

    def __init__(self, loop_step: int = 1, bounded: bool = False):
        self._params = VoteParams(loop_step=loop_step, bounded=bounded)

    def __call__(self, encoded, table: LookupTable) -> np.ndarray:
        return vote(encoded, table, loop_step=self._params.loop_step,
                    bounded=self._params.bounded)

    @property
    def params(self) -> VoteParams:
        return self._params
