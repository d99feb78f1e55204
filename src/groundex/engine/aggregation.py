"""Post-extraction aggregation: deduplication, overlap resolution, confidence filter.

None of these raise; they return new lists and never mutate their input.
"""

from __future__ import annotations

from ..types import AlignmentStatus, CharInterval, Extraction
from .config import OverlapStrategy


def _conf(e: Extraction) -> float:
    return e.confidence if e.confidence is not None else 0.0


def deduplicate(extractions: list[Extraction]) -> list[Extraction]:
    """Collapse equal ``(class, text)`` keys to the highest-confidence one.

    The survivor takes the position of the first occurrence; on a
    confidence tie the first occurrence wins.
    """
    best: dict[tuple[str, str], Extraction] = {}
    for e in extractions:
        current = best.get(e.key)
        if current is None or _conf(e) > _conf(current):
            best[e.key] = e
    return list(best.values())


def filter_by_confidence(extractions: list[Extraction], threshold: float) -> list[Extraction]:
    """Drop extractions whose confidence is present and below ``threshold``."""
    return [e for e in extractions if e.confidence is None or e.confidence >= threshold]


def resolve_overlaps(
    extractions: list[Extraction],
    strategy: OverlapStrategy = OverlapStrategy.KEEP_HIGHEST_CONFIDENCE,
    source_text: str | None = None,
) -> list[Extraction]:
    """Make grounded extractions non-overlapping.

    Ungrounded extractions pass through untouched. Kept extractions stay in
    input order; merged ones take the position of their first member.
    """
    strategy = OverlapStrategy(strategy)
    grounded = [(i, e) for i, e in enumerate(extractions) if e.is_grounded()]

    if strategy is OverlapStrategy.MERGE_OVERLAPPING:
        replacements = _merge_components(grounded, source_text)
        out = []
        for i, e in enumerate(extractions):
            if not e.is_grounded():
                out.append(e)
            elif i in replacements:
                out.append(replacements[i])
        return out

    if strategy is OverlapStrategy.KEEP_LONGEST:
        order = sorted(grounded, key=lambda p: (-p[1].char_interval.length, p[1].char_interval.start, p[0]))
    elif strategy is OverlapStrategy.KEEP_FIRST:
        order = sorted(grounded, key=lambda p: (p[1].char_interval.start, p[0]))
    else:
        order = sorted(grounded, key=lambda p: (-_conf(p[1]), p[1].char_interval.start, p[0]))

    kept: set[int] = set()
    accepted: list[CharInterval] = []
    for i, e in order:
        if any(e.char_interval.overlaps(iv) for iv in accepted):
            continue
        kept.add(i)
        accepted.append(e.char_interval)

    return [e for i, e in enumerate(extractions) if not e.is_grounded() or i in kept]


def _merge_components(
    grounded: list[tuple[int, Extraction]], source_text: str | None
) -> dict[int, Extraction]:
    """Index of each component's first member -> merged extraction."""
    by_start = sorted(grounded, key=lambda p: (p[1].char_interval.start, p[0]))
    components: list[list[tuple[int, Extraction]]] = []
    end = -1
    for pair in by_start:
        iv = pair[1].char_interval
        if components and iv.start < end:
            components[-1].append(pair)
            end = max(end, iv.end)
        else:
            components.append([pair])
            end = iv.end

    merged: dict[int, Extraction] = {}
    for comp in components:
        first_idx = min(i for i, _ in comp)
        if len(comp) == 1:
            merged[first_idx] = comp[0][1]
            continue
        merged[first_idx] = _merge(comp, source_text)
    return merged


def _merge(comp: list[tuple[int, Extraction]], source_text: str | None) -> Extraction:
    members = [e for _, e in sorted(comp, key=lambda p: p[0])]
    lead = max(members, key=_conf)
    interval = members[0].char_interval
    for e in members[1:]:
        interval = interval.union(e.char_interval)

    if source_text is not None and interval.end <= len(source_text):
        text = source_text[interval.start:interval.end]
    else:
        text = " ".join(e.extraction_text for e in sorted(members, key=lambda e: e.char_interval.start))

    attributes: dict = {}
    for e in members:
        for k, v in e.attributes.items():
            if k not in attributes:
                attributes[k] = v
            elif attributes[k] != v:
                existing = attributes[k] if isinstance(attributes[k], list) else [attributes[k]]
                if v not in existing:
                    existing = [*existing, v]
                attributes[k] = existing

    confidences = [e.confidence for e in members if e.confidence is not None]
    statuses = [e.alignment_status for e in members if e.alignment_status is not None]
    qualities = [e.alignment_quality for e in members if e.alignment_quality is not None]
    indices = [e.extraction_index for e in members if e.extraction_index is not None]

    return Extraction(
        extraction_class=lead.extraction_class,
        extraction_text=text,
        char_interval=interval,
        alignment_status=min(statuses, key=lambda s: s.quality) if statuses else AlignmentStatus.NONE,
        alignment_quality=min(qualities) if qualities else None,
        confidence=max(confidences) if confidences else None,
        extraction_index=min(indices) if indices else None,
        group_index=lead.group_index,
        description=lead.description,
        attributes=attributes,
    )
