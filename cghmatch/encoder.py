"""Orientation encoder: turns grayscale pixels into gradient orientation codes.

Pipeline (OpenCV, float32):

1. Sobel X and Y derivatives with aperture ``ksobel``.
2. ``cartToPolar`` to magnitude and angle (radians, 0..2*pi).
3. Mask pixels whose magnitude does not exceed ``magthr`` times the image
   maximum.
4. Quantize the angle to integer codes ``1..angstep + 1``.  Both 0 and 2*pi
   can come out of the polar conversion, hence the extra code.
5. Masked pixels get code 0.

Optional preprocessing (applied by :func:`encode_image` before encoding):
CLAHE contrast equalization, then a Gaussian pre-blur.
"""

from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from ._constants import (
    ANG_STEP_MAX, ANG_STEP_MIN, DEFAULT_ANGSTEP, DEFAULT_KBLUR,
    DEFAULT_KSOBEL, DEFAULT_MAGTHR, MASKED_CODE, VALID_KSOBEL,
)

__all__ = [
    "EncoderParams", "clamp_angstep", "max_code_for", "to_gray",
    "preprocess", "encode_orientation", "encode_image",
]


@dataclass(frozen=True)
class EncoderParams:
    """Settings for preprocessing and orientation encoding.

    ``kblur`` of 0 or 1 disables the pre-blur.  ``clahe_clip`` of None
    disables equalization.  ``channel`` selects one BGR channel instead of
    the grayscale conversion.
    """
    kblur: int = DEFAULT_KBLUR
    ksobel: int = DEFAULT_KSOBEL
    magthr: float = DEFAULT_MAGTHR
    angstep: float = DEFAULT_ANGSTEP
    clahe_clip: Optional[float] = None
    channel: Optional[int] = None

    def __post_init__(self):
        if self.kblur < 0 or (self.kblur > 1 and self.kblur % 2 == 0):
            raise ValueError(f"kblur must be 0, 1 or an odd size, got {self.kblur}")
        if self.ksobel not in VALID_KSOBEL:
            raise ValueError(f"ksobel must be one of {VALID_KSOBEL}, got {self.ksobel}")
        if not 0.0 <= self.magthr < 1.0:
            raise ValueError(f"magthr must be in [0, 1), got {self.magthr}")
        if self.angstep <= 0:
            raise ValueError(f"angstep must be positive, got {self.angstep}")
        if self.clahe_clip is not None and self.clahe_clip <= 0:
            raise ValueError(f"clahe_clip must be positive, got {self.clahe_clip}")
        if self.channel is not None and self.channel not in (0, 1, 2):
            raise ValueError(f"channel must be 0, 1, 2 or None, got {self.channel}")

    @property
    def max_code(self) -> int:
        return max_code_for(self.angstep)


def clamp_angstep(angstep: float) -> float:
    """Clamp the orientation step count into [ANG_STEP_MIN, ANG_STEP_MAX]."""
    return min(max(float(angstep), ANG_STEP_MIN), ANG_STEP_MAX)


def max_code_for(angstep: float) -> int:
    """Largest code the encoder can emit for ``angstep``."""
    return int(np.rint(clamp_angstep(angstep) + 1.0))


def to_gray(frame: np.ndarray, channel: Optional[int] = None) -> np.ndarray:
    """Reduce a frame to one channel.

    Args:
        frame: (H, W) grayscale or (H, W, 3) BGR image.
        channel: BGR channel index to keep, or None for a grayscale conversion.

    Returns:
        (H, W) array.
    """
    frame = np.asarray(frame)
    if frame.ndim == 2:
        return frame
    if frame.ndim != 3 or frame.shape[2] != 3:
        raise ValueError(f"Expected (H, W) or (H, W, 3) image, got shape {frame.shape}")
    if channel is None:
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    return np.ascontiguousarray(frame[:, :, channel])


def preprocess(gray: np.ndarray, kblur: int = DEFAULT_KBLUR,
               clahe_clip: Optional[float] = None) -> np.ndarray:
    """Optional CLAHE equalization followed by an optional Gaussian blur."""
    if clahe_clip is not None:
        if gray.dtype not in (np.uint8, np.uint16):
            raise ValueError(f"CLAHE needs a uint8 or uint16 image, got dtype {gray.dtype}")
        gray = cv2.createCLAHE(clipLimit=float(clahe_clip)).apply(gray)
    if kblur > 1:
        gray = cv2.GaussianBlur(gray, (kblur, kblur), 0)
    return gray


def encode_orientation(gray: np.ndarray, ksobel: int = DEFAULT_KSOBEL,
                       magthr: float = DEFAULT_MAGTHR,
                       angstep: float = DEFAULT_ANGSTEP) -> np.ndarray:
    """Encode masked gradient orientations of a grayscale image.

    Args:
        gray: (H, W) image, uint8 or float.
        ksobel: Sobel aperture size.
        magthr: Fraction of the maximum gradient magnitude a pixel must
            exceed to receive a code.
        angstep: Number of orientation steps over a full turn, clamped to
            [4, 254].

    Returns:
        (H, W) uint8 codes; 0 where the gradient is too weak.
    """
    gray = np.asarray(gray)
    if gray.ndim != 2:
        raise ValueError(f"Expected 2D grayscale image, got shape {gray.shape}")
    if gray.dtype != np.uint8:
        gray = gray.astype(np.float32)

    dx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=ksobel)
    dy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=ksobel)
    mag, ang = cv2.cartToPolar(dx, dy)

    mask = mag > float(mag.max()) * magthr

    scale = clamp_angstep(angstep) / (2.0 * np.pi)
    codes = np.clip(np.rint(ang * scale + 1.0), 0, 255).astype(np.uint8)
    codes[~mask] = MASKED_CODE
    return codes


def encode_image(image: np.ndarray, params: Optional[EncoderParams] = None) -> np.ndarray:
    """Gray conversion, preprocessing and orientation encoding in one call."""
    if params is None:
        params = EncoderParams()
    gray = to_gray(image, params.channel)
    gray = preprocess(gray, params.kblur, params.clahe_clip)
    return encode_orientation(gray, params.ksobel, params.magthr, params.angstep)
