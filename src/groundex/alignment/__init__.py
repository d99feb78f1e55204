"""Text alignment: ground extracted strings in their source document."""

from .aligner import TextAligner
from .matchers import ApproximateMatcher, ExactMatcher, Matcher, NormalizedMatcher
from .normalize import NormalizedText, normalize
from .options import AlignmentCandidate, AlignmentOptions, AlignmentResult

__all__ = [
    "AlignmentCandidate",
    "AlignmentOptions",
    "AlignmentResult",
    "ApproximateMatcher",
    "ExactMatcher",
    "Matcher",
    "NormalizedMatcher",
    "NormalizedText",
    "TextAligner",
    "normalize",
]
