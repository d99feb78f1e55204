"""Split long documents into prompt-sized chunks that keep their source offsets."""

from __future__ import annotations

import warnings
from collections.abc import Iterator
from dataclasses import dataclass

from pysbd import Segmenter

from .types import CharInterval

# pysbd emits SyntaxWarnings on Python 3.12+ from its own regex literals.
with warnings.catch_warnings():
    warnings.filterwarnings("ignore", category=SyntaxWarning)
    _SEGMENTER = Segmenter(language="en", clean=False)


@dataclass(frozen=True)
class TextChunk:
    """A slice of the source document.

    Attributes:
        text: ``source[start_char:end_char]``, never re-joined or rewritten.
        index: Position in the chunk sequence.
        start_char: Start offset in the source document.
        end_char: End offset in the source document.
    """

    text: str
    index: int
    start_char: int
    end_char: int

    def to_source(self, interval: CharInterval) -> CharInterval:
        return CharInterval(interval.start + self.start_char, interval.end + self.start_char)


def _split_sentences(text: str) -> list[str]:
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=SyntaxWarning)
        return list(_SEGMENTER.segment(text))


def sentence_spans(text: str) -> list[tuple[int, int]]:
    """Contiguous spans covering ``text``, one per sentence.

    Each span runs from the start of its sentence to the start of the next,
    so whitespace between sentences stays with the earlier one.
    """
    starts: list[int] = []
    cursor = 0
    for sentence in _split_sentences(text):
        body = sentence.strip()
        pos = text.find(body, cursor) if body else -1
        if pos == -1:
            continue
        starts.append(pos)
        cursor = pos + len(body)
    if not starts:
        return [(0, len(text))] if text else []
    starts[0] = 0
    return list(zip(starts, starts[1:] + [len(text)]))


def _split_long(text: str, start: int, end: int, max_chars: int) -> Iterator[tuple[int, int]]:
    # Cut at the last space inside the limit, or hard at the limit.
    while end - start > max_chars:
        cut = text.rfind(" ", start + 1, start + max_chars + 1)
        if cut <= start:
            cut = start + max_chars
        yield start, cut
        start = cut
    yield start, end


def _content_end(text: str, start: int, end: int) -> int:
    return start + len(text[start:end].rstrip())


def chunk_text(text: str, max_chars: int | None) -> list[TextChunk]:
    """Pack whole sentences into chunks of at most ``max_chars`` characters.

    ``max_chars`` of None (or a text that already fits) gives one chunk
    spanning the whole text. A sentence longer than the limit is split at
    word boundaries. Chunk edges are trimmed of whitespace; offsets always
    point back into ``text``.
    """
    if not text:
        return []
    if max_chars is not None and max_chars < 1:
        raise ValueError(f"max_chars must be >= 1, got {max_chars}")
    if max_chars is None or len(text) <= max_chars:
        return [TextChunk(text, 0, 0, len(text))]

    pieces: list[tuple[int, int]] = []
    for s, e in sentence_spans(text):
        pieces.extend(_split_long(text, s, e, max_chars))

    bounds: list[tuple[int, int]] = []
    cur_start: int | None = None
    cur_end = 0
    for s, e in pieces:
        if cur_start is not None and _content_end(text, s, e) - cur_start > max_chars:
            bounds.append((cur_start, cur_end))
            cur_start = None
        if cur_start is None:
            cur_start = s
        cur_end = e
    if cur_start is not None:
        bounds.append((cur_start, cur_end))

    chunks: list[TextChunk] = []
    for start, end in bounds:
        segment = text[start:end]
        lead = len(segment) - len(segment.lstrip())
        trail = len(segment) - len(segment.rstrip())
        if lead == len(segment):
            continue
        start, end = start + lead, end - trail
        chunks.append(TextChunk(text[start:end], len(chunks), start, end))
    return chunks
