# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Hybrid search: BM25 + vector hits merged with weighted Reciprocal Rank Fusion.

Both searches run concurrently, so latency is bounded by the slower one.
Fusion is keyed by doc_id: with group_by_doc=False several chunks of one
document each contribute, which favours documents matching in many places.
A failing or empty side simply contributes nothing.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Union

from loguru import logger

from .config import Config
from .lexical import LexicalIndex
from .models import LexicalHit, SearchResult, VectorHit
from .vectors import VectorIndex

Hit = Union[LexicalHit, VectorHit]


@dataclass
class _Fused:
    score: float = 0.0
    vector_rank: Optional[int] = None
    bm25_rank: Optional[int] = None
    best: Optional[Hit] = None


def rrf_fuse(
    vector_hits: list[VectorHit], bm25_hits: list[LexicalHit], limit: int,
    k: int = 60, vector_weight: float = 0.6, bm25_weight: float = 0.4,
) -> list[SearchResult]:
    """Reciprocal Rank Fusion: each list adds w / (k + i + 1) for a hit at 0-based rank i."""
    fused: dict[str, _Fused] = {}

    for name, hits, weight in (
        ("vector", vector_hits, vector_weight),
        ("bm25", bm25_hits, bm25_weight),
    ):
        for i, hit in enumerate(hits):
            entry = fused.setdefault(hit.doc_id, _Fused())
            entry.score += weight * (1.0 / (k + i + 1))
            rank = i + 1
            if name == "vector" and entry.vector_rank is None:
                entry.vector_rank = rank
            elif name == "bm25" and entry.bm25_rank is None:
                entry.bm25_rank = rank
            # vector hits go first, so displayed text is the raw chunk when there is one
            if entry.best is None:
                entry.best = hit

    def _sort_key(item: tuple[str, _Fused]):
        doc_id, e = item
        ranks = [r for r in (e.vector_rank, e.bm25_rank) if r is not None]
        return (-e.score, min(ranks), doc_id)

    ranked = sorted(fused.items(), key=_sort_key)[:limit]
    return [
        SearchResult(
            id=doc_id,
            chunk_id=e.best.chunk_id,
            text=e.best.text,
            score=e.score,
            vector_rank=e.vector_rank,
            bm25_rank=e.bm25_rank,
            metadata=dict(e.best.metadata),
        )
        for doc_id, e in ranked
    ]


class HybridSearcher:
    def __init__(self, lexical: LexicalIndex, vectors: VectorIndex, config: Config):
        self.lexical = lexical
        self.vectors = vectors
        self.config = config
        self._pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="hybrid-search")

    def search(
        self, query: str, limit: int = 10,
        vector_weight: float | None = None, bm25_weight: float | None = None,
        group_by_doc: bool = True, distance_threshold: float | None = None,
    ) -> list[SearchResult]:
        """Fused ranking of both indexes. Never raises; total failure yields []."""
        vw = self.config.vector_weight if vector_weight is None else vector_weight
        bw = self.config.bm25_weight if bm25_weight is None else bm25_weight
        if not query or not query.strip() or limit <= 0:
            return []

        fetch_k = limit * 2
        vector_future = self._pool.submit(
            self.vectors.search, query, fetch_k, distance_threshold, group_by_doc,
        )
        bm25_future = self._pool.submit(self.lexical.search, query, fetch_k, group_by_doc)
        vector_hits = self._result(vector_future, "vector")
        bm25_hits = self._result(bm25_future, "bm25")
        logger.debug(
            f"[Hybrid] {query!r}: vector={len(vector_hits)} bm25={len(bm25_hits)}"
        )

        try:
            results = rrf_fuse(
                vector_hits, bm25_hits, limit,
                k=self.config.rrf_k, vector_weight=vw, bm25_weight=bw,
            )
        except Exception as e:
            logger.error(f"[Hybrid] Fusion error: {e}")
            return []

        if self.config.min_score > 0:
            results = [r for r in results if r.score >= self.config.min_score]
        logger.info(f"[Hybrid] Query {query!r} - {len(results)} results")
        return results

    @staticmethod
    def _result(future, name: str) -> list:
        try:
            return future.result() or []
        except Exception as e:
            logger.error(f"[Hybrid] {name} search failed: {e}")
            return []

    def close(self):
        self._pool.shutdown(wait=False)
