"""Text normalisation that remembers where every character came from."""

from __future__ import annotations

import unicodedata
from bisect import bisect_left
from dataclasses import dataclass

from ..types import CharInterval

LEVEL_CASE = "case"
LEVEL_WHITESPACE = "whitespace"
LEVEL_PUNCTUATION = "punctuation"


def is_punctuation(ch: str) -> bool:
    return unicodedata.category(ch).startswith("P")


@dataclass(frozen=True)
class NormalizedText:
    """Normalised text plus ``offsets[i]`` = source index of character ``i``."""

    text: str
    offsets: tuple[int, ...]

    def __len__(self) -> int:
        return len(self.text)

    def to_source(self, start: int, end: int) -> CharInterval:
        """Map a normalised span ``[start, end)`` back to a source span."""
        if end <= start:
            pos = self.offsets[start] if start < len(self.offsets) else (self.offsets[-1] + 1 if self.offsets else 0)
            return CharInterval(pos, pos)
        return CharInterval(self.offsets[start], self.offsets[end - 1] + 1)

    def from_source(self, position: int) -> int:
        """First normalised index whose source offset is at or after ``position``."""
        return bisect_left(self.offsets, position)


def normalize(text: str, levels: tuple[str, ...] | list[str]) -> NormalizedText:
    """Apply normalisation levels in a fixed order: case, punctuation, whitespace.

    Whitespace collapsing runs last so gaps left by stripped punctuation are
    collapsed too.
    """
    pairs: list[tuple[str, int]] = []
    casefold = LEVEL_CASE in levels
    for i, ch in enumerate(text):
        if casefold:
            for c in ch.lower():
                pairs.append((c, i))
        else:
            pairs.append((ch, i))

    if LEVEL_PUNCTUATION in levels:
        pairs = [(c, i) for c, i in pairs if not is_punctuation(c)]

    if LEVEL_WHITESPACE in levels:
        collapsed: list[tuple[str, int]] = []
        pending: int | None = None
        for c, i in pairs:
            if c.isspace():
                if pending is None:
                    pending = i
                continue
            if pending is not None and collapsed:
                collapsed.append((" ", pending))
            pending = None
            collapsed.append((c, i))
        pairs = collapsed

    return NormalizedText("".join(c for c, _ in pairs), tuple(i for _, i in pairs))


def enabled_levels(case_sensitive: bool, ignore_whitespace: bool, ignore_punctuation: bool) -> list[str]:
    levels = []
    if not case_sensitive:
        levels.append(LEVEL_CASE)
    if ignore_whitespace:
        levels.append(LEVEL_WHITESPACE)
    if ignore_punctuation:
        levels.append(LEVEL_PUNCTUATION)
    return levels
