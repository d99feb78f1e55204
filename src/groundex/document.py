"""Source documents and documents annotated with extractions."""

from __future__ import annotations

import hashlib
import re
from collections import defaultdict
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from .types import CharInterval, Extraction, TokenInterval

_TOKEN_RE = re.compile(r"\S+")


@dataclass(frozen=True)
class Document:
    """Immutable source text plus optional context given to the model.

    ``document_id`` and the token split are derived lazily and cached.
    """

    text: str
    additional_context: str | None = None
    _cache: dict = field(default_factory=dict, init=False, repr=False, compare=False)

    @property
    def document_id(self) -> str:
        if "id" not in self._cache:
            payload = self.text + (self.additional_context or "")
            digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
            self._cache["id"] = "doc_" + digest[:16]
        return self._cache["id"]

    @property
    def token_spans(self) -> tuple[CharInterval, ...]:
        if "spans" not in self._cache:
            self._cache["spans"] = tuple(
                CharInterval(m.start(), m.end()) for m in _TOKEN_RE.finditer(self.text)
            )
        return self._cache["spans"]

    @property
    def tokens(self) -> tuple[str, ...]:
        return tuple(self.text[s.start:s.end] for s in self.token_spans)

    @property
    def token_count(self) -> int:
        return len(self.token_spans)

    def __len__(self) -> int:
        return len(self.text)

    def is_empty(self) -> bool:
        return not self.text.strip()

    def token_interval(self, interval: CharInterval) -> TokenInterval | None:
        """Tokens touched by a character span, or None if it touches none."""
        first = last = None
        for i, span in enumerate(self.token_spans):
            if span.end <= interval.start:
                continue
            if span.start >= interval.end:
                break
            if first is None:
                first = i
            last = i
        if first is None:
            return None
        return TokenInterval(first, last + 1)


@dataclass(frozen=True)
class AnnotatedDocument:
    """A document together with the extractions grounded in it."""

    document: Document
    extractions: tuple[Extraction, ...] = ()

    @property
    def text(self) -> str:
        return self.document.text

    @property
    def document_id(self) -> str:
        return self.document.document_id

    def by_class(self) -> dict[str, list[Extraction]]:
        groups: dict[str, list[Extraction]] = defaultdict(list)
        for ext in self.extractions:
            groups[ext.extraction_class].append(ext)
        return dict(groups)

    def by_group(self) -> dict[int | None, list[Extraction]]:
        groups: dict[int | None, list[Extraction]] = defaultdict(list)
        for ext in self.extractions:
            groups[ext.group_index].append(ext)
        return dict(groups)

    def unique_classes(self) -> list[str]:
        return list(dict.fromkeys(e.extraction_class for e in self.extractions))

    def sorted_by_position(self) -> list[Extraction]:
        """Grounded extractions by start offset, unanchored ones last."""
        return sorted(
            self.extractions,
            key=lambda e: (e.char_interval is None, e.char_interval.start if e.char_interval else 0),
        )

    def sorted_by_index(self) -> list[Extraction]:
        return sorted(
            self.extractions,
            key=lambda e: (e.extraction_index is None, e.extraction_index or 0),
        )

    def coverage(self) -> float:
        """Fraction of document characters covered by grounded extractions."""
        return text_coverage(self.extractions, len(self.document.text))

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "text": self.document.text,
            "additional_context": self.document.additional_context,
            "extractions": [e.to_dict() for e in self.extractions],
        }


def text_coverage(extractions, text_length: int) -> float:
    if text_length <= 0:
        return 0.0
    spans = sorted(
        (e.char_interval.start, e.char_interval.end)
        for e in extractions
        if e.is_grounded() and not e.char_interval.is_empty()
    )
    covered = 0
    cur_start = cur_end = None
    for start, end in spans:
        if cur_end is None or start > cur_end:
            if cur_end is not None:
                covered += cur_end - cur_start
            cur_start, cur_end = start, end
        else:
            cur_end = max(cur_end, end)
    if cur_end is not None:
        covered += cur_end - cur_start
    return min(1.0, covered / text_length)
