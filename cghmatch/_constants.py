"""Shared constants for the cghmatch package.

Defaults match the settings the live matcher was tuned with.
"""

# Orientation quantization limits.  Codes run from 1 to angstep + 1 because
# the polar conversion can return both 0 and 2*pi for the same direction.
ANG_STEP_MIN = 4.0
ANG_STEP_MAX = 254.0

# Encoder defaults.
DEFAULT_KBLUR = 7
DEFAULT_KSOBEL = 7
DEFAULT_MAGTHR = 0.2
DEFAULT_ANGSTEP = 8.0

# Sobel aperture sizes accepted by cv2.Sobel (-1 selects the 3x3 Scharr kernel).
VALID_KSOBEL = (-1, 1, 3, 5, 7)

# Code reserved for pixels without a usable gradient.
MASKED_CODE = 0

# Upper bound on (pixels x offsets) elements materialized per voting block.
VOTE_BLOCK_ELEMS = 1 << 20
