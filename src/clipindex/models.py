# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Plain data carried between the indexes, the ranker and callers.

Documents belong to the item store and are only read here. Chunks are
derived state owned by the indexes. Hits and SearchResults live for one
query; their metadata is a copy, never a live reference.
"""
import json
from dataclasses import dataclass, field
from typing import Optional, Protocol


@dataclass
class DocumentMetadata:
    title: str = ""
    type: str = "document"
    tags: list[str] = field(default_factory=list)
    folder_name: Optional[str] = None
    category: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "DocumentMetadata":
        """Accepts the item store's camelCase keys as well as snake_case."""
        if not data:
            return cls()
        tags = data.get("tags") or []
        if isinstance(tags, str):
            tags = [t.strip() for t in tags.split(",") if t.strip()]
        return cls(
            title=data.get("title") or "",
            type=data.get("type") or "document",
            tags=[str(t) for t in tags],
            folder_name=data.get("folderName", data.get("folder_name")),
            category=data.get("category"),
            created_at=data.get("createdAt", data.get("created_at")),
        )

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "type": self.type,
            "tags": list(self.tags),
            "folderName": self.folder_name,
            "category": self.category,
            "createdAt": self.created_at,
        }


@dataclass
class Document:
    doc_id: str
    text: str
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)


@dataclass
class Chunk:
    id: str
    index: int
    text: str
    start: int = 0
    end: int = 0


def display_metadata(title: str, doc_type: str, tags, created_at: str = "") -> dict:
    """Denormalized metadata attached to hits (tags may arrive JSON-encoded)."""
    if isinstance(tags, str):
        try:
            tags = json.loads(tags) if tags else []
        except ValueError:
            tags = []
    return {
        "title": title or "Untitled",
        "type": doc_type or "document",
        "tags": list(tags or []),
        "createdAt": created_at or "",
    }


@dataclass
class LexicalHit:
    """One BM25 match. score is a cost: lower is better."""
    chunk_id: str
    doc_id: str
    chunk_index: int
    text: str
    score: float
    metadata: dict = field(default_factory=dict)


@dataclass
class VectorHit:
    """One nearest-neighbour match. score is cosine distance: lower is better."""
    chunk_id: str
    doc_id: str
    chunk_index: int
    text: str
    score: float
    metadata: dict = field(default_factory=dict)


@dataclass
class SearchResult:
    id: str
    chunk_id: str
    text: str
    score: float
    vector_rank: Optional[int] = None
    bm25_rank: Optional[int] = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "chunk_id": self.chunk_id,
            "text": self.text,
            "score": self.score,
            "vectorRank": self.vector_rank,
            "bm25Rank": self.bm25_rank,
            "metadata": dict(self.metadata),
        }


class ItemStore(Protocol):
    """Read-only view of the external item store."""

    def list_ids(self) -> list[str]: ...

    def get_document(self, doc_id: str) -> Optional[Document]: ...
