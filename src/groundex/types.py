"""Core value types: intervals, alignment status, extractions."""

from __future__ import annotations

import copy as _copy
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class CharInterval:
    """Half-open character span ``[start, end)`` into a document's text."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError(f"interval start must be >= 0, got {self.start}")
        if self.end < self.start:
            raise ValueError(f"interval end ({self.end}) precedes start ({self.start})")

    @property
    def length(self) -> int:
        return self.end - self.start

    def is_empty(self) -> bool:
        return self.end == self.start

    def contains(self, position: int) -> bool:
        return self.start <= position < self.end

    def overlaps(self, other: CharInterval) -> bool:
        return max(self.start, other.start) < min(self.end, other.end)

    def union(self, other: CharInterval) -> CharInterval:
        return type(self)(min(self.start, other.start), max(self.end, other.end))

    def intersection(self, other: CharInterval) -> CharInterval | None:
        if not self.overlaps(other):
            return None
        return type(self)(max(self.start, other.start), min(self.end, other.end))

    def __str__(self) -> str:
        return f"[{self.start}:{self.end})"


@dataclass(frozen=True)
class TokenInterval(CharInterval):
    """Half-open span over token indices."""


class AlignmentStatus(Enum):
    """How an extraction was located in the source, with its nominal quality."""

    EXACT = "exact"
    FUZZY_CASE = "fuzzy_case"
    FUZZY_WHITESPACE = "fuzzy_whitespace"
    FUZZY_APPROXIMATE = "fuzzy_approximate"
    NONE = "none"

    @property
    def quality(self) -> int:
        return _STATUS_QUALITY[self]

    def is_well_grounded(self) -> bool:
        return self.quality >= WELL_GROUNDED_QUALITY


_STATUS_QUALITY = {
    AlignmentStatus.EXACT: 100,
    AlignmentStatus.FUZZY_CASE: 85,
    AlignmentStatus.FUZZY_WHITESPACE: 70,
    AlignmentStatus.FUZZY_APPROXIMATE: 60,
    AlignmentStatus.NONE: 0,
}

WELL_GROUNDED_QUALITY = 60


@dataclass
class Extraction:
    """A single typed fragment pulled out of a document.

    Attributes:
        extraction_class: Entity type, e.g. "person".
        extraction_text: Text as produced by the model.
        char_interval: Location in the source text, None when unanchored.
        token_interval: Token span matching ``char_interval``.
        alignment_status: How the text was located.
        alignment_quality: Actual alignment score 0-100 for this match.
        confidence: Model confidence in ``[0, 1]``, if reported.
        extraction_index: Order in which the model produced it.
        group_index: Optional grouping of related extractions.
        description: Optional free-text note from the model.
        attributes: Arbitrary key/value attributes.
    """

    extraction_class: str
    extraction_text: str
    char_interval: CharInterval | None = None
    token_interval: TokenInterval | None = None
    alignment_status: AlignmentStatus | None = None
    alignment_quality: float | None = None
    confidence: float | None = None
    extraction_index: int | None = None
    group_index: int | None = None
    description: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        """Duplicate identity: ``(class, text)``."""
        return (self.extraction_class, self.extraction_text)

    def is_grounded(self) -> bool:
        return self.char_interval is not None and self.alignment_status not in (None, AlignmentStatus.NONE)

    def is_well_grounded(self) -> bool:
        if not self.is_grounded():
            return False
        if self.alignment_quality is not None:
            return self.alignment_quality >= WELL_GROUNDED_QUALITY
        return self.alignment_status.is_well_grounded()

    def copy(self) -> Extraction:
        return _copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "extraction_class": self.extraction_class,
            "extraction_text": self.extraction_text,
            "attributes": dict(self.attributes),
        }
        if self.char_interval is not None:
            data["char_interval"] = {"start_pos": self.char_interval.start, "end_pos": self.char_interval.end}
        if self.token_interval is not None:
            data["token_interval"] = {"start_pos": self.token_interval.start, "end_pos": self.token_interval.end}
        if self.alignment_status is not None:
            data["alignment_status"] = self.alignment_status.value
        for name in ("alignment_quality", "confidence", "extraction_index", "group_index", "description"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Extraction:
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        ci = kwargs.pop("char_interval", None)
        ti = kwargs.pop("token_interval", None)
        status = kwargs.pop("alignment_status", None)
        if ci is not None:
            kwargs["char_interval"] = CharInterval(ci["start_pos"], ci["end_pos"])
        if ti is not None:
            kwargs["token_interval"] = TokenInterval(ti["start_pos"], ti["end_pos"])
        if status is not None:
            kwargs["alignment_status"] = AlignmentStatus(status)
        kwargs["attributes"] = dict(kwargs.get("attributes") or {})
        return cls(**kwargs)


@dataclass
class ExampleData:
    """A few-shot example: source text plus the extractions expected from it."""

    text: str
    extractions: list[Extraction] = field(default_factory=list)
