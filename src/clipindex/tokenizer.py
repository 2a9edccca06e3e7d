# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Script-aware segmentation for mixed Latin/CJK text.

BM25 counts whitespace-delimited terms. Chinese and Japanese have no spaces
between words, so a CJK run is segmented with jieba before it reaches the
lexical index; otherwise a whole sentence would be one term (or, split per
character, the term statistics would be meaningless).

Segmentation is dictionary-only (HMM off): a word jieba picks in context is
also its best split when cut alone, so tokenize() is idempotent.
"""
import logging
import re

import jieba

jieba.setLogLevel(logging.WARNING)

# kana, CJK ext. A, unified ideographs, compatibility ideographs (hangul is space-delimited)
_CJK_RE = re.compile(
    "[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]"
)
_WORD_RE = re.compile(r"\S+\s*")

CHARS_PER_TOKEN = 4


def contains_cjk(text: str) -> bool:
    return bool(_CJK_RE.search(text))


def _segment_run(run: str) -> list[str]:
    """Split one whitespace-free run into words (identity for non-CJK)."""
    if not contains_cjk(run):
        return [run]
    return [w for w in (w.strip() for w in jieba.cut(run, HMM=False)) if w]


def tokenize(text: str) -> str:
    """Return text with logical words separated by single spaces.

    Idempotent: feeding the output back in yields the same string.
    """
    if not text:
        return ""
    tokens: list[str] = []
    for run in text.split():
        tokens.extend(_segment_run(run))
    return " ".join(tokens)


def word_spans(text: str, offset: int = 0) -> list[tuple[int, int]]:
    """Contiguous (start, end) spans of word units, trailing whitespace included.

    The spans tile the input: joining text[s:e] over them reproduces it.
    """
    spans: list[tuple[int, int]] = []
    for m in _WORD_RE.finditer(text):
        start = m.start()
        word = m.group().rstrip()
        if contains_cjk(word):
            for _, seg_start, seg_end in jieba.tokenize(word, HMM=False):
                spans.append((start + seg_start, start + seg_end))
            spans[-1] = (spans[-1][0], m.end())
        else:
            spans.append((start, m.end()))
    if spans and spans[0][0] > 0:
        spans[0] = (0, spans[0][1])
    return [(s + offset, e + offset) for s, e in spans]


def estimate_tokens(text: str) -> int:
    """Rough model-token estimate (≈4 characters per token)."""
    return -(-len(text) // CHARS_PER_TOKEN)


def truncate_by_tokens(text: str, max_tokens: int) -> str:
    max_chars = max_tokens * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text
    return text[:max_chars].strip()
