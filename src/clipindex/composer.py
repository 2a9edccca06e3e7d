# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Weighted lexical surface for a document.

BM25 has no per-field boost, so user-curated metadata is repeated ahead of
the body: a term's frequency (and thus its score contribution) grows with
the repetition count. Only the lexical index uses this; embeddings are
computed from the raw body.
"""
import re

from .models import DocumentMetadata
from .tokenizer import tokenize

FIELD_WEIGHTS = {
    "folder_name": 10,
    "category": 8,
    "tag": 5,
    "title": 3,
    "h1": 3,
    "h2": 2,
    "h3": 1,
}

_HEADING_RE = re.compile(r"^(#{1,3})\s+(.+?)\s*#*\s*$", re.MULTILINE)


def extract_headings(text: str) -> dict[int, list[str]]:
    """Markdown headings by level: {1: [...], 2: [...], 3: [...]}."""
    headings: dict[int, list[str]] = {1: [], 2: [], 3: []}
    for match in _HEADING_RE.finditer(text or ""):
        title = match.group(2).strip()
        if title:
            headings[len(match.group(1))].append(title)
    return headings


def _repeat(value: str | None, times: int) -> str:
    value = (value or "").strip()
    if not value:
        return ""
    return " ".join([value] * times)


def compose(text: str, metadata: DocumentMetadata) -> str:
    """Folder, category, tags, title and headings repeated by weight, then the body."""
    headings = extract_headings(text)
    groups = [
        _repeat(metadata.folder_name, FIELD_WEIGHTS["folder_name"]),
        _repeat(metadata.category, FIELD_WEIGHTS["category"]),
        *(_repeat(tag, FIELD_WEIGHTS["tag"]) for tag in metadata.tags),
        _repeat(metadata.title, FIELD_WEIGHTS["title"]),
        *(_repeat(h, FIELD_WEIGHTS["h1"]) for h in headings[1]),
        *(_repeat(h, FIELD_WEIGHTS["h2"]) for h in headings[2]),
        *(_repeat(h, FIELD_WEIGHTS["h3"]) for h in headings[3]),
        text or "",
    ]
    return tokenize(" ".join(g for g in groups if g))
