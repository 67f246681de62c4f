"""GradientMatcher: encoder settings plus a hot-swappable lookup table.

Ties the orientation encoder, the lookup table builder, the voting transform
and the match locator into one object that a capture loop can drive frame by
frame, with runtime re-templating between (or during) frames.

Usage::

    matcher = GradientMatcher()
    matcher.load_template("circle_b_on_w.png", prescale=1.5)
    result = matcher.match(gray_frame)          # MatchResult
    matcher.set_template(new_patch)             # swap template

Table replacement: a new table is built completely, scored, and only then
published with a single reference assignment.  The encoder settings and the
table are published together as one immutable binding, so every transform
call encodes and votes with a matching pair and never sees a partially
built or mixed table.
"""

import sys
import threading
from dataclasses import dataclass, replace
from typing import Optional, Tuple

import cv2
import numpy as np

from ._constants import DEFAULT_ANGSTEP, DEFAULT_KBLUR, DEFAULT_KSOBEL, DEFAULT_MAGTHR
from .encoder import EncoderParams, encode_image
from .locator import MatchResult, locate
from .lookup_table import STRATEGIES, LookupTable, build_lookup_table
from .voting import VoteParams, vote

__all__ = ["GradientMatcher", "IDEAL_MODES"]

# "self_match": peak of the template voted against its own table.
# "count": number of non-zero template pixels.
IDEAL_MODES = ("self_match", "count")


@dataclass(frozen=True)
class _Binding:
    """Encoder settings and the table built with them (None before a template)."""
    encoder: EncoderParams
    table: Optional[LookupTable] = None


class GradientMatcher:
    """Generalized Hough matcher on encoded gradient orientations."""

    def __init__(self, encoder: Optional[EncoderParams] = None,
                 vote_params: Optional[VoteParams] = None,
                 ideal: str = "self_match", strategy: str = "weighted",
                 verbose: bool = False):
        """Initialize the matcher without a template.

        Args:
            encoder: Preprocessing and encoding settings. Defaults if None.
            vote_params: Step and bounded settings. Defaults if None.
            ideal: Normalization denominator, ``"self_match"`` or ``"count"``.
            strategy: Table strategy, ``"weighted"`` or ``"list"``.
            verbose: Print template rebuild summaries to stderr.
        """
        if ideal not in IDEAL_MODES:
            raise ValueError(f"Unknown ideal mode {ideal!r}; expected one of {IDEAL_MODES}")
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown table strategy {strategy!r}; expected one of {STRATEGIES}")
        self._vote = vote_params if vote_params is not None else VoteParams()
        self._ideal = ideal
        self._strategy = strategy
        self._verbose = verbose

        self._lock = threading.Lock()
        self._binding = _Binding(encoder if encoder is not None else EncoderParams())

    def init(self, kblur: int = DEFAULT_KBLUR, ksobel: int = DEFAULT_KSOBEL,
             magthr: float = DEFAULT_MAGTHR, angstep: float = DEFAULT_ANGSTEP,
             clahe_clip: Optional[float] = None) -> None:
        """Replace the encoder settings and drop the current template.

        A table built with other encoder settings would not match frames
        encoded with the new ones, so a new template must be set afterwards.
        Builds still running with the old settings will not be published.
        """
        with self._lock:
            params = EncoderParams(kblur=kblur, ksobel=ksobel, magthr=magthr,
                                   angstep=angstep, clahe_clip=clahe_clip,
                                   channel=self._binding.encoder.channel)
            self._binding = _Binding(params)

    def set_vote_params(self, loop_step: Optional[int] = None,
                        bounded: Optional[bool] = None) -> None:
        """Change step and/or bounded mode for subsequent transforms."""
        current = self._vote
        self._vote = VoteParams(
            loop_step=current.loop_step if loop_step is None else loop_step,
            bounded=current.bounded if bounded is None else bounded,
        )

    # ── Templates ─────────────────────────────────────────────────────

    def encode(self, image: np.ndarray) -> np.ndarray:
        """Preprocess and encode an image with the current encoder settings."""
        return encode_image(image, self._binding.encoder)

    def rebuild(self, encoded: np.ndarray) -> LookupTable:
        """Build a table from an encoded template and publish it.

        Args:
            encoded: 2-D grid of orientation codes for the template,
                produced with the current encoder settings.

        Returns:
            The published table, with ``ideal_vote_total`` set per the
            matcher's ideal mode.

        Raises:
            RuntimeError: If :meth:`init` changed the encoder settings while
                the table was being built; nothing is published then.
        """
        return self._build_and_publish(encoded, self._binding.encoder)

    def set_template(self, image: np.ndarray) -> LookupTable:
        """Encode an image and make it the current template."""
        encoder = self._binding.encoder
        return self._build_and_publish(encode_image(image, encoder), encoder)

    def _build_and_publish(self, encoded: np.ndarray,
                           encoder: EncoderParams) -> LookupTable:
        table = build_lookup_table(encoded, strategy=self._strategy,
                                   max_code=encoder.max_code)

        if self._ideal == "self_match" and not table.is_vacuous:
            # All-pixel, step 1: the score a perfect in-frame match can reach.
            self_votes = vote(encoded, table, loop_step=1, bounded=False)
            table = replace(table, ideal_vote_total=int(self_votes.max()))

        with self._lock:
            if self._binding.encoder is not encoder:
                raise RuntimeError(
                    "Encoder settings changed while the template was being built; "
                    "set the template again"
                )
            self._binding = _Binding(encoder, table)

        if self._verbose:
            rows, cols = table.footprint_size
            print(f"[matcher] template {rows}x{cols} (blur,sobel)=({encoder.kblur},"
                  f"{encoder.ksobel}): {table.num_offsets} offsets, "
                  f"ideal={table.ideal_vote_total} ({self._ideal})", file=sys.stderr)
        return table

    def load_template(self, path: str, prescale: float = 1.0) -> np.ndarray:
        """Load a template image file, scale it, and make it the current template.

        Args:
            path: Image file; read as grayscale.
            prescale: Resize factor applied before encoding (cubic when
                enlarging, area when shrinking).

        Returns:
            The scaled grayscale template image.

        Raises:
            FileNotFoundError: If the file cannot be read as an image.
            ValueError: If prescale is not positive or shrinks the image
                to nothing.
        """
        if prescale <= 0:
            raise ValueError(f"prescale must be positive, got {prescale}")
        image = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
        if image is None:
            raise FileNotFoundError(f"Cannot read template image: {path}")
        if prescale != 1.0:
            rows = int(round(image.shape[0] * prescale))
            cols = int(round(image.shape[1] * prescale))
            if rows < 1 or cols < 1:
                raise ValueError(
                    f"prescale {prescale} gives an empty template "
                    f"({image.shape[1]}x{image.shape[0]} -> {cols}x{rows})"
                )
            interp = cv2.INTER_CUBIC if prescale > 1.0 else cv2.INTER_AREA
            image = cv2.resize(image, (cols, rows), interpolation=interp)
        self.set_template(image)
        return image

    # ── Matching ──────────────────────────────────────────────────────

    def _snapshot(self) -> Tuple[EncoderParams, LookupTable]:
        binding = self._binding
        if binding.table is None:
            raise RuntimeError("No template set; call set_template() or load_template() first")
        return binding.encoder, binding.table

    def vote_encoded(self, encoded: np.ndarray) -> np.ndarray:
        """Vote a pre-encoded scene against the current table."""
        _, table = self._snapshot()
        params = self._vote
        return vote(encoded, table, loop_step=params.loop_step, bounded=params.bounded)

    def process(self, image: np.ndarray) -> Tuple[np.ndarray, np.ndarray, MatchResult]:
        """Encode, vote and locate one frame against a single binding snapshot.

        Returns:
            ``(encoded, accumulator, result)``.
        """
        encoder, table = self._snapshot()
        params = self._vote
        encoded = encode_image(image, encoder)
        acc = vote(encoded, table, loop_step=params.loop_step, bounded=params.bounded)
        return encoded, acc, locate(acc, table, loop_step=params.loop_step)

    def apply(self, image: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Encode a frame and vote it; returns ``(encoded, accumulator)``."""
        encoded, acc, _ = self.process(image)
        return encoded, acc

    def match(self, image: np.ndarray) -> MatchResult:
        """Best match location and confidence for one frame."""
        return self.process(image)[2]

    # ── Properties ────────────────────────────────────────────────────

    @property
    def table(self) -> Optional[LookupTable]:
        """Current table, or None before a template is set."""
        return self._binding.table

    @property
    def has_template(self) -> bool:
        return self._binding.table is not None

    @property
    def max_votes(self) -> int:
        """Ideal vote total of the current template (0 without one)."""
        table = self._binding.table
        return table.ideal_vote_total if table is not None else 0

    @property
    def footprint_size(self) -> Optional[Tuple[int, int]]:
        """Current template ``(rows, cols)``."""
        table = self._binding.table
        return table.footprint_size if table is not None else None

    @property
    def encoder_params(self) -> EncoderParams:
        return self._binding.encoder

    @property
    def vote_params(self) -> VoteParams:
        return self._vote

    @property
    def ideal_mode(self) -> str:
        return self._ideal
