"""Match location and confidence scoring on a vote accumulator."""

from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from .lookup_table import LookupTable

__all__ = ["MatchResult", "locate", "normalize_votes"]


@dataclass(frozen=True)
class MatchResult:
    """Best match found in one accumulator.

    Attributes:
        point: ``(x, y)`` accumulator cell with the most votes.
        votes: Raw vote count at ``point``.
        confidence: ``votes / ideal * loop_step**2``; 0.0 for a vacuous template.
    """
    point: Tuple[int, int]
    votes: int
    confidence: float


def locate(accumulator: np.ndarray, table: LookupTable, loop_step: int = 1,
           ideal_vote_total: Optional[float] = None) -> MatchResult:
    """Find the accumulator maximum and score it against the ideal vote total.

    Ties are broken row-major: the first maximal cell scanning rows top to
    bottom, each row left to right, is reported.

    Args:
        accumulator: 2-D vote counts from :func:`cghmatch.voting.vote`.
        table: Table the accumulator was produced with.
        loop_step: Step used by that transform; the confidence is scaled by
            ``loop_step**2`` to stay comparable across step settings.
        ideal_vote_total: Override for ``table.ideal_vote_total``.

    Returns:
        MatchResult.  With an ideal of 0 the confidence is 0.0.

    Raises:
        ValueError: If the accumulator is not a non-empty 2-D array or
            ``loop_step < 1``.
    """
    accumulator = np.asarray(accumulator)
    if accumulator.ndim != 2 or accumulator.size == 0:
        raise ValueError(f"Expected non-empty 2D accumulator, got shape {accumulator.shape}")
    if loop_step < 1:
        raise ValueError(f"loop_step must be >= 1, got {loop_step}")

    flat_idx = int(np.argmax(accumulator))
    y, x = divmod(flat_idx, accumulator.shape[1])
    votes = accumulator[y, x].item()

    ideal = table.ideal_vote_total if ideal_vote_total is None else ideal_vote_total
    if ideal <= 0:
        confidence = 0.0
    else:
        confidence = float(votes) / float(ideal) * (loop_step ** 2)

    return MatchResult(point=(x, y), votes=votes, confidence=confidence)


def normalize_votes(accumulator: np.ndarray) -> np.ndarray:
    """Min-max scale an accumulator to a uint8 image for viewing or saving."""
    accumulator = np.asarray(accumulator, dtype=np.float32)
    scaled = cv2.normalize(accumulator, None, 0, 255, cv2.NORM_MINMAX)
    return scaled.astype(np.uint8)
