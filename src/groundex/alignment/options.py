"""Alignment options and results."""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from ..errors import AlignmentError
from ..types import AlignmentStatus, CharInterval


@dataclass(frozen=True)
class AlignmentOptions:
    """Knobs for locating extracted text in a source document.

    Attributes:
        case_sensitive: Skip the case-folding normalisation level.
        ignore_whitespace: Collapse whitespace runs and trim during normalisation.
        ignore_punctuation: Strip punctuation during normalisation.
        max_distance: Largest edit distance accepted by approximate matching.
        min_confidence: Lowest approximate-match confidence (quality / 100) accepted.
        max_candidates: Alternates kept from approximate matching.
        window_size: Characters searched on each side of ``position_hint``.
        timeout_ms: Wall-clock bound for one alignment attempt.
        position_hint: Offset near which matches are preferred.
    """

    case_sensitive: bool = False
    ignore_whitespace: bool = True
    ignore_punctuation: bool = False
    max_distance: int = 5
    min_confidence: float = 0.7
    max_candidates: int = 10
    window_size: int = 100
    timeout_ms: int = 5000
    position_hint: int | None = None

    def validate(self) -> None:
        if self.max_distance < 0:
            raise AlignmentError(f"max_distance must be >= 0, got {self.max_distance}")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise AlignmentError(f"min_confidence must be in [0, 1], got {self.min_confidence}")
        if self.max_candidates <= 0:
            raise AlignmentError(f"max_candidates must be > 0, got {self.max_candidates}")
        if self.window_size < 0:
            raise AlignmentError(f"window_size must be >= 0, got {self.window_size}")
        if self.timeout_ms <= 0:
            raise AlignmentError(f"timeout_ms must be > 0, got {self.timeout_ms}")
        if self.position_hint is not None and self.position_hint < 0:
            raise AlignmentError(f"position_hint must be >= 0, got {self.position_hint}")

    def with_hint(self, position_hint: int | None) -> AlignmentOptions:
        return replace(self, position_hint=position_hint)


@dataclass
class AlignmentCandidate:
    interval: CharInterval
    quality: float
    edit_distance: int


@dataclass
class AlignmentResult:
    """Outcome of aligning one extracted string.

    ``interval`` is always set; an unaligned result carries ``[0, 0)`` with
    status NONE. ``interrupted`` is "timeout" or "cancelled" when the attempt
    was cut short and the best result found so far was returned.
    """

    interval: CharInterval
    status: AlignmentStatus
    quality: float
    method: str
    extracted_text: str
    aligned_text: str = ""
    edit_distance: int | None = None
    processing_ms: float = 0.0
    attempted_methods: list[str] = field(default_factory=list)
    alternatives: list[AlignmentCandidate] = field(default_factory=list)
    interrupted: str | None = None

    @property
    def confidence(self) -> float:
        return self.quality / 100.0

    def is_aligned(self) -> bool:
        return self.status is not AlignmentStatus.NONE

    @classmethod
    def unaligned(cls, extracted_text: str, **kwargs) -> AlignmentResult:
        return cls(
            interval=CharInterval(0, 0),
            status=AlignmentStatus.NONE,
            quality=0.0,
            method="none",
            extracted_text=extracted_text,
            **kwargs,
        )
