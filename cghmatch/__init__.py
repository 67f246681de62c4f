"""cghmatch: Generalized Hough shape matching on encoded gradient orientations."""

from .lookup_table import LookupTable, LookupTableBuilder, build_lookup_table
from .voting import VoteParams, VotingTransform, vote
from .locator import MatchResult, locate, normalize_votes
from .encoder import EncoderParams, encode_image, encode_orientation
from .matcher import GradientMatcher

__all__ = ["LookupTable", "LookupTableBuilder", "build_lookup_table",
           "VoteParams", "VotingTransform", "vote",
           "MatchResult", "locate", "normalize_votes",
           "EncoderParams", "encode_image", "encode_orientation",
           "GradientMatcher"]
