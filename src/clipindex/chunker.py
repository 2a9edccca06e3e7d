# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Text -> overlapping chunks, preferring natural boundaries.

Boundary priority: blank-line runs (3+, then 2), single newline, sentence
end (Latin . ! ? and CJK 。！？), then word units (jieba for CJK runs).
A unit with no boundary at all is sliced at fixed size with stride
chunk_size - chunk_overlap.

Every chunk is an exact slice of the normalized text: chunk.text ==
text[chunk.start:chunk.end]. Consecutive chunks either touch or overlap
by at most chunk_overlap characters of whole units.
"""
import re
import uuid

from loguru import logger

from .models import Chunk
from .tokenizer import word_spans

_BOUNDARIES = [
    re.compile(r"\n{3,}"),
    re.compile(r"\n{2}"),
    re.compile(r"\n"),
    re.compile(r"[.!?]+[\"')\]]*\s+|[。！？]+[」』）]*\s*"),
]

Span = tuple[int, int]


def normalize_text(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n").strip()


def _split_at(text: str, start: int, end: int, pattern: re.Pattern) -> list[Span]:
    spans: list[Span] = []
    prev = start
    for m in pattern.finditer(text, start, end):
        if prev < m.end() < end:
            spans.append((prev, m.end()))
            prev = m.end()
    spans.append((prev, end))
    return spans


def _units(text: str, start: int, end: int, chunk_size: int, level: int = 0) -> list[Span]:
    """Recursively split [start, end) until every unit fits or no boundary is left."""
    if end - start <= chunk_size:
        return [(start, end)]
    if level >= len(_BOUNDARIES):
        return word_spans(text[start:end], offset=start) or [(start, end)]
    pieces = _split_at(text, start, end, _BOUNDARIES[level])
    out: list[Span] = []
    for s, e in pieces:
        out.extend(_units(text, s, e, chunk_size, level + 1))
    return out


def _slice(start: int, end: int, chunk_size: int, stride: int) -> list[Span]:
    spans: list[Span] = []
    pos = start
    while True:
        stop = min(pos + chunk_size, end)
        spans.append((pos, stop))
        if stop >= end:
            return spans
        pos += stride


def _merge(units: list[Span], chunk_size: int, chunk_overlap: int) -> list[Span]:
    spans: list[Span] = []
    current: list[Span] = []
    for unit in units:
        if unit[1] - unit[0] > chunk_size:
            if current:
                spans.append((current[0][0], current[-1][1]))
                current = []
            spans.extend(_slice(unit[0], unit[1], chunk_size, chunk_size - chunk_overlap))
            continue

        if current and unit[1] - current[0][0] > chunk_size:
            spans.append((current[0][0], current[-1][1]))
            carried: list[Span] = []
            total = 0
            for u in reversed(current):
                total += u[1] - u[0]
                if total > chunk_overlap:
                    break
                carried.insert(0, u)
            if len(carried) == len(current):
                carried = carried[1:]
            while carried and unit[1] - carried[0][0] > chunk_size:
                carried.pop(0)
            current = carried
        current.append(unit)

    if current:
        spans.append((current[0][0], current[-1][1]))
    return spans


def _trim(text: str, start: int, end: int) -> Span:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def split_into_chunks(text: str, chunk_size: int, chunk_overlap: int) -> list[Chunk]:
    """Split text into overlapping chunks of at most chunk_size characters."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if not 0 <= chunk_overlap < chunk_size:
        raise ValueError(
            f"chunk_overlap must be in [0, chunk_size), got {chunk_overlap} for size {chunk_size}"
        )
    if not text:
        return []

    clean = normalize_text(text)
    if not clean:
        return []
    if len(clean) <= chunk_size:
        return [Chunk(id=uuid.uuid4().hex, index=0, text=clean, start=0, end=len(clean))]

    units = _units(clean, 0, len(clean), chunk_size)
    chunks: list[Chunk] = []
    for start, end in _merge(units, chunk_size, chunk_overlap):
        start, end = _trim(clean, start, end)
        if start == end:
            continue
        chunks.append(Chunk(
            id=uuid.uuid4().hex,
            index=len(chunks),
            text=clean[start:end],
            start=start,
            end=end,
        ))

    logger.debug(f"[Chunker] Split {len(clean)} chars into {len(chunks)} chunks")
    return chunks
