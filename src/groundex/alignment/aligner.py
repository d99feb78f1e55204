"""Locate model-produced text in the source document."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable

from rapidfuzz.distance import Levenshtein

from ..errors import AlignmentError
from ..shared.context import ExecutionContext
from ..types import CharInterval
from .matchers import ApproximateMatcher, Budget, ExactMatcher, Matcher, NormalizedMatcher
from .options import AlignmentOptions, AlignmentResult

logger = logging.getLogger(__name__)


class TextAligner:
    """Runs matchers in order (exact, normalised, approximate) and returns
    the first acceptable match.

    Alignment is total: a text that cannot be located yields a NONE result
    with interval ``[0, 0)``. Only invalid options raise.
    """

    def __init__(self, options: AlignmentOptions | None = None, matchers: list[Matcher] | None = None):
        self.options = options or AlignmentOptions()
        self.options.validate()
        self.matchers = matchers or [ExactMatcher(), NormalizedMatcher(), ApproximateMatcher()]

    def align_extraction(
        self,
        extracted: str,
        source: str,
        options: AlignmentOptions | None = None,
        ctx: ExecutionContext | None = None,
    ) -> AlignmentResult:
        opts = options or self.options
        opts.validate()
        start = time.perf_counter()
        budget = Budget(opts.timeout_ms, ctx)
        attempted: list[str] = []
        result: AlignmentResult | None = None

        if extracted.strip() and source:
            for matcher in self.matchers:
                if budget.exhausted():
                    break
                attempted.append(matcher.name)
                result = matcher.match(extracted, source, opts, budget)
                if result is not None:
                    break

        if result is None:
            result = AlignmentResult.unaligned(extracted)
        result.attempted_methods = attempted
        result.interrupted = budget.interrupted
        result.processing_ms = (time.perf_counter() - start) * 1000.0

        logger.debug(
            "[align] %s | %r -> %s %s q=%.1f%s",
            result.method,
            extracted[:60],
            result.status.value,
            result.interval,
            result.quality,
            f" interrupted={result.interrupted}" if result.interrupted else "",
        )
        return result

    def align_extractions(
        self,
        texts: Iterable[str],
        source: str,
        options: AlignmentOptions | None = None,
        ctx: ExecutionContext | None = None,
    ) -> list[AlignmentResult]:
        """Align texts in order; each accepted match's end hints the next lookup."""
        opts = options or self.options
        opts.validate()
        hint = opts.position_hint
        results = []
        for text in texts:
            result = self.align_extraction(text, source, opts.with_hint(hint), ctx)
            if result.is_aligned():
                hint = result.interval.end
            results.append(result)
        return results

    def find_best_alignment(
        self,
        extracted: str,
        source: str,
        options: AlignmentOptions | None = None,
        ctx: ExecutionContext | None = None,
    ) -> AlignmentResult:
        """Run every matcher and keep the highest-quality result."""
        opts = options or self.options
        opts.validate()
        start = time.perf_counter()
        budget = Budget(opts.timeout_ms, ctx)
        best: AlignmentResult | None = None
        attempted = []
        if extracted.strip() and source:
            for matcher in self.matchers:
                if budget.exhausted():
                    break
                attempted.append(matcher.name)
                result = matcher.match(extracted, source, opts, budget)
                if result is not None and (best is None or result.quality > best.quality):
                    best = result
        if best is None:
            best = AlignmentResult.unaligned(extracted)
        best.attempted_methods = attempted
        best.interrupted = budget.interrupted
        best.processing_ms = (time.perf_counter() - start) * 1000.0
        return best

    def validate_alignment(self, extracted: str, source: str, interval: CharInterval) -> float:
        """Confidence in ``[0, 1]`` that ``interval`` of ``source`` holds ``extracted``."""
        if interval.end > len(source):
            raise AlignmentError(
                f"interval {interval} out of bounds for source of length {len(source)}",
                error_type="validation",
                method="validate",
                details={"start": interval.start, "end": interval.end, "source_length": len(source)},
            )
        aligned = source[interval.start:interval.end]
        if aligned == extracted:
            return 1.0
        if aligned.strip().lower() == extracted.strip().lower():
            return 0.95
        return Levenshtein.normalized_similarity(extracted.lower(), aligned.lower())
