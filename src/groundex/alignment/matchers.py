"""Exact, normalised and approximate matching strategies."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from functools import lru_cache

from rapidfuzz.distance import Levenshtein

from ..shared.context import ExecutionContext
from ..types import AlignmentStatus, CharInterval
from .normalize import LEVEL_CASE, NormalizedText, enabled_levels, normalize
from .options import AlignmentCandidate, AlignmentOptions, AlignmentResult

QUALITY_STEP = 15
_CHECK_EVERY = 256


class Budget:
    """Wall-clock bound for one alignment attempt, also watching a context."""

    def __init__(self, timeout_ms: int, ctx: ExecutionContext | None = None):
        self.deadline = time.monotonic() + timeout_ms / 1000.0
        self.ctx = ctx
        self.interrupted: str | None = None

    def exhausted(self) -> bool:
        if self.interrupted:
            return True
        if self.ctx is not None and self.ctx.done():
            self.interrupted = "cancelled" if self.ctx.cancelled() else "timeout"
        elif time.monotonic() >= self.deadline:
            self.interrupted = "timeout"
        return self.interrupted is not None


@lru_cache(maxsize=64)
def _normalized(text: str, levels: tuple[str, ...]) -> NormalizedText:
    return normalize(text, levels)


def find_all(haystack: str, needle: str) -> list[int]:
    positions = []
    start = haystack.find(needle)
    while start != -1:
        positions.append(start)
        start = haystack.find(needle, start + 1)
    return positions


def hint_rank(position: int, hint: int | None) -> int:
    """Distance from the hint; ties are broken by position by the caller."""
    if hint is None:
        return 0
    return abs(position - hint)


def choose_position(positions: list[int], hint: int | None) -> int | None:
    if not positions:
        return None
    return min(positions, key=lambda p: (hint_rank(p, hint), p))


class Matcher(ABC):
    """One alignment strategy. Returns None when it finds nothing acceptable."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def match(self, extracted: str, source: str, options: AlignmentOptions, budget: Budget) -> AlignmentResult | None:
        pass


class ExactMatcher(Matcher):
    name = "exact"

    def match(self, extracted, source, options, budget):
        for needle in dict.fromkeys((extracted, extracted.strip())):
            if not needle:
                continue
            pos = choose_position(find_all(source, needle), options.position_hint)
            if pos is not None:
                return AlignmentResult(
                    interval=CharInterval(pos, pos + len(needle)),
                    status=AlignmentStatus.EXACT,
                    quality=100.0,
                    method=self.name,
                    extracted_text=extracted,
                    aligned_text=needle,
                    edit_distance=0,
                )
        return None


class NormalizedMatcher(Matcher):
    """Literal search after cumulative normalisation levels.

    Each level applied costs ``QUALITY_STEP`` quality points.
    """

    name = "normalized"

    def match(self, extracted, source, options, budget):
        levels = enabled_levels(options.case_sensitive, options.ignore_whitespace, options.ignore_punctuation)
        for n in range(1, len(levels) + 1):
            if budget.exhausted():
                return None
            applied = tuple(levels[:n])
            needle = _normalized(extracted, applied)
            if not needle.text:
                continue
            hay = _normalized(source, applied)
            hint = hay.from_source(options.position_hint) if options.position_hint is not None else None
            pos = choose_position(find_all(hay.text, needle.text), hint)
            if pos is None:
                continue
            interval = hay.to_source(pos, pos + len(needle))
            status = AlignmentStatus.FUZZY_CASE if applied == (LEVEL_CASE,) else AlignmentStatus.FUZZY_WHITESPACE
            return AlignmentResult(
                interval=interval,
                status=status,
                quality=float(100 - QUALITY_STEP * n),
                method=f"{self.name}:{'+'.join(applied)}",
                extracted_text=extracted,
                aligned_text=source[interval.start:interval.end],
                edit_distance=0,
            )
        return None


class ApproximateMatcher(Matcher):
    """Windowed Levenshtein search over the fully normalised source.

    Windows of length ``L - max_distance`` to ``L + max_distance`` are scored.
    With a position hint only the region within ``window_size`` of it is
    scanned; the rest of the document is searched only when that region
    yields no candidate at all.
    Candidates rank by (distance, closeness to the hint, position).
    """

    name = "approximate"

    def match(self, extracted, source, options, budget):
        levels = tuple(enabled_levels(options.case_sensitive, options.ignore_whitespace, options.ignore_punctuation))
        needle = _normalized(extracted, levels).text
        hay = _normalized(source, levels)
        n, length = len(hay.text), len(needle)
        if not length or not n:
            return None

        max_d = options.max_distance
        hint = hay.from_source(options.position_hint) if options.position_hint is not None else None
        widths = range(max(1, length - max_d), length + max_d + 1)

        if hint is not None:
            lo = max(0, hint - options.window_size)
            hi = min(n, hint + options.window_size + 1)
            regions = [range(lo, hi), [p for p in range(n) if p < lo or p >= hi]]
        else:
            regions = [range(n)]

        found: list[tuple[int, int, int, int]] = []
        scanned = 0
        for region in regions:
            for p in region:
                scanned += 1
                if scanned % _CHECK_EVERY == 0 and budget.exhausted():
                    break
                for w in widths:
                    if p + w > n:
                        break
                    d = Levenshtein.distance(needle, hay.text[p:p + w], score_cutoff=max_d)
                    if d <= max_d:
                        found.append((d, hint_rank(p, hint), p, w))
            if budget.interrupted or found:
                break

        if not found:
            return None

        found.sort(key=lambda c: (c[0], c[1], c[2], abs(c[3] - length)))
        candidates: list[AlignmentCandidate] = []
        for d, _, p, w in found:
            interval = hay.to_source(p, p + w)
            if any(interval.overlaps(c.interval) for c in candidates):
                continue
            quality = max(0.0, 100.0 * (1 - d / max(length, 1)))
            candidates.append(AlignmentCandidate(interval=interval, quality=quality, edit_distance=d))
            if len(candidates) >= options.max_candidates:
                break

        best = candidates[0]
        if best.quality / 100.0 < options.min_confidence:
            return None
        return AlignmentResult(
            interval=best.interval,
            status=AlignmentStatus.FUZZY_APPROXIMATE,
            quality=best.quality,
            method=self.name,
            extracted_text=extracted,
            aligned_text=source[best.interval.start:best.interval.end],
            edit_distance=best.edit_distance,
            alternatives=candidates[1:],
        )
