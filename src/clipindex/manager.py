# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Index lifecycle facade – keeps the lexical and semantic indexes in step
with the external item store.

Item created/updated -> index(), item deleted -> delete(). Neither ever
raises: a failure in one index is reported as a warning and search recall
degrades for that item until the next index() call. Writes to the same
doc_id are serialized; writes to different documents and searches run
concurrently.

Backfill (after a model switch or a bulk import) runs in a background
thread and is started by the caller, never implicitly.
"""
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from loguru import logger

from .config import Config
from .embeddings import EmbedderFactory
from .errors import ClipIndexError, ContentTooShort, ModelLoadFailed
from .fusion import HybridSearcher
from .health import HealthTracker
from .lexical import LexicalIndex, normalize_bm25_cost
from .models import Document, DocumentMetadata, ItemStore, SearchResult
from .vectors import VectorIndex

DOC_LOCK_STRIPES = 64


@dataclass
class IndexReport:
    doc_id: str
    lexical_chunks: int = 0
    vector_chunks: int = 0
    skipped: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.warnings

    def to_dict(self) -> dict:
        return {
            "doc_id": self.doc_id,
            "success": self.success,
            "skipped": self.skipped,
            "lexical_chunks": self.lexical_chunks,
            "vector_chunks": self.vector_chunks,
            "warnings": list(self.warnings),
        }


@dataclass
class BackfillJob:
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: str = "running"
    model: str = ""
    total: int = 0
    done: int = 0
    indexed: int = 0
    failed: int = 0
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    finished_at: Optional[str] = None
    error: Optional[str] = None
    thread: Optional[threading.Thread] = field(default=None, repr=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "model": self.model,
            "total": self.total,
            "done": self.done,
            "indexed": self.indexed,
            "failed": self.failed,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error": self.error,
            "percent": round(self.done / self.total * 100) if self.total > 0 else 0,
        }


def _as_metadata(metadata) -> DocumentMetadata:
    if isinstance(metadata, DocumentMetadata):
        return metadata
    return DocumentMetadata.from_dict(metadata)


class IndexManager:
    def __init__(
        self,
        config: Config,
        lexical: LexicalIndex | None = None,
        vectors: VectorIndex | None = None,
        item_store: ItemStore | None = None,
        health: HealthTracker | None = None,
        embedder_factory: EmbedderFactory | None = None,
    ):
        self.config = config
        self.lexical = lexical or LexicalIndex(config)
        self.vectors = vectors or VectorIndex(config, embedder_factory)
        self.searcher = HybridSearcher(self.lexical, self.vectors, config)
        self.item_store = item_store
        self.health = health or HealthTracker()
        self._doc_locks = [threading.Lock() for _ in range(DOC_LOCK_STRIPES)]
        self._backfill: Optional[BackfillJob] = None
        self._backfill_lock = threading.Lock()

    # ── Setup ────────────────────────────────────────

    def initialize(self) -> dict:
        """Open both indexes. A model load failure leaves keyword search working."""
        result = {"lexical": False, "semantic": False, "error": None}
        try:
            self.lexical.initialize()
            result["lexical"] = True
        except Exception as e:
            logger.error(f"[Manager] Lexical index initialization failed: {e}")
            result["error"] = str(e)
        self.health.record_ready(lexical=result["lexical"])

        model_id = self.config.embedding_model
        try:
            self.vectors.initialize(model_id=model_id)
            result["semantic"] = True
            self.health.record_model_load(self.vectors.spec.id, ok=True)
        except ModelLoadFailed as e:
            logger.error(f"[Manager] {e} – semantic search disabled")
            result["error"] = str(e)
            self.health.record_model_load(model_id, ok=False, error=str(e))
        except Exception as e:
            logger.error(f"[Manager] Vector index initialization failed: {e}")
            result["error"] = str(e)
            self.health.record_model_load(model_id, ok=False, error=str(e))
        return result

    def close(self):
        self.cancel_backfill()
        self.searcher.close()
        self.lexical.close()

    @contextmanager
    def _doc_lock(self, doc_id: str):
        lock = self._doc_locks[hash(doc_id) % DOC_LOCK_STRIPES]
        with lock:
            yield

    # ── Index / delete ───────────────────────────────

    def _run_index(self, name: str, index, doc_id: str, text: str,
                   metadata: DocumentMetadata, report: IndexReport) -> int:
        try:
            return index.index(doc_id, text, metadata)
        except ContentTooShort as e:
            report.skipped = True
            logger.info(f"[Manager] Skipping {name} index for {doc_id}: {e}")
            self._run_delete(name, index, doc_id, report)
        except ClipIndexError as e:
            report.warnings.append(f"{name}: {e}")
            logger.warning(f"[Manager] {name} index failed for {doc_id}: {e}")
        except Exception as e:
            report.warnings.append(f"{name}: {e}")
            logger.exception(f"[Manager] Unexpected {name} index error for {doc_id}")
        return 0

    def _run_delete(self, name: str, index, doc_id: str, report: IndexReport):
        try:
            index.delete(doc_id)
        except Exception as e:
            report.warnings.append(f"{name}: {e}")
            logger.warning(f"[Manager] {name} delete failed for {doc_id}: {e}")

    def index(self, doc_id: str, text: str, metadata=None) -> IndexReport:
        """(Re-)index one item in both indexes. Idempotent, never raises."""
        meta = _as_metadata(metadata)
        report = IndexReport(doc_id=doc_id)
        with self._doc_lock(doc_id):
            report.lexical_chunks = self._run_index("lexical", self.lexical, doc_id, text, meta, report)
            report.vector_chunks = self._run_index("vector", self.vectors, doc_id, text, meta, report)

        self.health.record_index(
            doc_id,
            ok=report.success,
            chunks=report.lexical_chunks + report.vector_chunks,
            skipped=report.skipped,
            error="; ".join(report.warnings) or None,
        )
        if report.success and not report.skipped:
            logger.info(
                f"[Manager] Indexed {doc_id}: {report.lexical_chunks} lexical / "
                f"{report.vector_chunks} vector chunks"
            )
        return report

    def index_document(self, document: Document) -> IndexReport:
        return self.index(document.doc_id, document.text, document.metadata)

    def index_batch(self, documents: Iterable[Document]) -> dict:
        indexed = 0
        skipped = 0
        errors: list[str] = []
        for doc in documents:
            report = self.index_document(doc)
            if report.skipped and report.success:
                skipped += 1
            elif report.success:
                indexed += 1
            else:
                errors.append(f"{doc.doc_id}: {'; '.join(report.warnings)}")
        return {"success": not errors, "indexed": indexed, "skipped": skipped, "errors": errors}

    def delete(self, doc_id: str) -> IndexReport:
        """Remove an item from both indexes. Never raises."""
        report = IndexReport(doc_id=doc_id)
        with self._doc_lock(doc_id):
            self._run_delete("lexical", self.lexical, doc_id, report)
            self._run_delete("vector", self.vectors, doc_id, report)
        self.health.record_delete()
        return report

    def reindex_all(self, on_progress: Callable[[int, int], None] | None = None) -> dict:
        """Re-index every item of the item store, reporting (current, total)."""
        if self.item_store is None:
            return {"status": "error", "message": "No item store configured"}

        ids = list(self.item_store.list_ids())
        total = len(ids)
        logger.info(f"[Manager] Starting reindex for {total} items...")
        indexed = 0
        skipped = 0
        errors: list[str] = []
        for current, doc_id in enumerate(ids, start=1):
            try:
                doc = self.item_store.get_document(doc_id)
            except Exception as e:
                doc = None
                errors.append(f"{doc_id}: {e}")
                logger.error(f"[Manager] Could not read item {doc_id}: {e}")
            if doc is not None:
                report = self.index_document(doc)
                if not report.success:
                    errors.append(f"{doc_id}: {'; '.join(report.warnings)}")
                elif report.skipped:
                    skipped += 1
                else:
                    indexed += 1
            if on_progress:
                try:
                    on_progress(current, total)
                except Exception as e:
                    logger.warning(f"[Manager] Progress callback failed: {e}")

        logger.info(f"[Manager] Reindex completed: {indexed}/{total} indexed, {skipped} skipped")
        return {
            "status": "success" if not errors else "partial",
            "total": total,
            "indexed": indexed,
            "skipped": skipped,
            "errors": errors,
        }

    # ── Missing embeddings / backfill ────────────────

    def check_missing(self, ids: Iterable[str]) -> list[str]:
        return self.vectors.check_missing(ids)

    def switch_model(self, model_id: str) -> list[str]:
        """Activate another embedding model; returns item ids needing embedding.

        Raises ModelLoadFailed if the new model cannot be loaded; the previous
        model stays active in that case.
        """
        self.cancel_backfill(wait=True)
        try:
            spec = self.vectors.switch_model(model_id)
        except ModelLoadFailed as e:
            self.health.record_model_load(model_id, ok=False, error=str(e))
            self.health.record_ready(semantic=self.vectors.is_initialized)
            raise
        self.config.embedding_model = spec.id
        self.health.record_model_load(spec.id, ok=True)
        if self.item_store is None:
            return []
        return self.check_missing(self.item_store.list_ids())

    def start_backfill(self, ids: Iterable[str] | None = None) -> dict:
        """Embed items missing from the active vector table in the background."""
        if self.item_store is None:
            return {"status": "error", "message": "No item store configured"}
        if not self.vectors.is_initialized:
            return {"status": "error", "message": "Semantic index not available"}

        with self._backfill_lock:
            if self._backfill and self._backfill.status == "running":
                return {"status": "error", "message": "Backfill already in progress",
                        "backfill": self._backfill.to_dict()}
            wanted = list(ids) if ids is not None else self.item_store.list_ids()
            missing = self.check_missing(wanted)
            if not missing:
                return {"status": "skipped", "message": "All items are indexed"}
            job = BackfillJob(model=self.vectors.spec.id, total=len(missing))
            self._backfill = job

        def _worker():
            try:
                for doc_id in missing:
                    if job.status == "cancelled":
                        break
                    if self._backfill_one(doc_id):
                        job.indexed += 1
                    else:
                        job.failed += 1
                    job.done += 1
                if job.status != "cancelled":
                    job.status = "complete"
            except Exception as e:
                job.status = "failed"
                job.error = str(e)
                logger.error(f"[Manager] Backfill failed: {e}")
            job.finished_at = datetime.now(timezone.utc).isoformat()
            self.health.record_backfill(job.to_dict())
            logger.info(f"[Manager] Backfill {job.status}: {job.indexed}/{job.total} embedded")

        t = threading.Thread(target=_worker, daemon=True, name=f"backfill-{job.id}")
        job.thread = t
        t.start()
        self.health.record_backfill(job.to_dict())
        return {"status": "started", "backfill": job.to_dict()}

    def _backfill_one(self, doc_id: str) -> bool:
        try:
            doc = self.item_store.get_document(doc_id)
        except Exception as e:
            logger.error(f"[Manager] Could not read item {doc_id}: {e}")
            return False
        if doc is None:
            return False
        report = IndexReport(doc_id=doc_id)
        with self._doc_lock(doc_id):
            n = self._run_index("vector", self.vectors, doc_id, doc.text,
                                _as_metadata(doc.metadata), report)
        return n > 0 and report.success

    def cancel_backfill(self, wait: bool = False) -> dict:
        with self._backfill_lock:
            job = self._backfill
            if not job or job.status != "running":
                return {"status": "error", "message": "No active backfill to cancel"}
            job.status = "cancelled"
        if wait and job.thread is not None:
            job.thread.join()
        return {"status": "cancelled", "backfill": job.to_dict()}

    @property
    def backfill_status(self) -> Optional[dict]:
        if self._backfill is None:
            return None
        return self._backfill.to_dict()

    # ── Search ───────────────────────────────────────

    def search_lexical(self, query: str, limit: int = 10, group_by_doc: bool = True) -> list[SearchResult]:
        hits = self.lexical.search(query, limit, group_by_doc)
        self.health.record_search("lexical", bool(hits))
        return [
            SearchResult(
                id=h.doc_id, chunk_id=h.chunk_id, text=h.text,
                score=normalize_bm25_cost(h.score), bm25_rank=i + 1,
                metadata=dict(h.metadata),
            )
            for i, h in enumerate(hits)
        ]

    def search_vectors(
        self, query: str, limit: int = 10,
        distance_threshold: float | None = None, group_by_doc: bool = True,
    ) -> list[SearchResult]:
        hits = self.vectors.search(query, limit, distance_threshold, group_by_doc)
        self.health.record_search("vector", bool(hits))
        return [
            SearchResult(
                id=h.doc_id, chunk_id=h.chunk_id, text=h.text,
                score=max(0.0, 1.0 - h.score), vector_rank=i + 1,
                metadata=dict(h.metadata),
            )
            for i, h in enumerate(hits)
        ]

    def hybrid_search(
        self, query: str, limit: int = 10,
        vector_weight: float | None = None, bm25_weight: float | None = None,
        group_by_doc: bool = True, distance_threshold: float | None = None,
    ) -> list[SearchResult]:
        results = self.searcher.search(
            query, limit, vector_weight=vector_weight,
            bm25_weight=bm25_weight, group_by_doc=group_by_doc,
            distance_threshold=distance_threshold,
        )
        self.health.record_search("hybrid", bool(results))
        return results

    # ── Stats ────────────────────────────────────────

    def get_stats(self) -> dict:
        return {
            "lexical": self.lexical.get_stats(),
            "vector": self.vectors.get_stats(),
            "backfill": self.backfill_status,
            "health": self.health.status,
        }
