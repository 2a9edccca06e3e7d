# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Semantic index: raw text -> chunks -> embeddings -> ChromaDB

One collection per embedding model (the model's table_name), so vectors of
different dimensionality never share a table. Switching models opens a
different collection; the old one is left as it was and check_missing()
tells the caller which documents still need embedding under the new one.

Model loading is retried with a fixed delay. Concurrent initialize() calls
coalesce: the first caller loads, the others wait for its outcome.
"""
import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

import chromadb
from loguru import logger

from .chunker import split_into_chunks
from .config import Config
from .embeddings import (
    Embedder,
    EmbedderFactory,
    EmbeddingModel,
    ModelSpec,
    resolve_model,
    retry_call,
    sentence_transformer_factory,
)
from .errors import (
    ContentTooShort,
    DimensionMismatch,
    IndexWriteFailed,
    ModelLoadFailed,
    NotInitialized,
)
from .models import DocumentMetadata, VectorHit, display_metadata

OVERFETCH = 3
PAGE_SIZE = 5000


class VectorIndex:
    def __init__(self, config: Config, embedder_factory: EmbedderFactory | None = None):
        self.config = config
        self._factory = embedder_factory or sentence_transformer_factory(config.embedding_device)
        self._init_lock = threading.Lock()
        self._init_done = threading.Event()
        self._initializing = False
        self._init_error: Optional[Exception] = None
        self._write_lock = threading.Lock()
        self._switch_lock = threading.Lock()

        self.model: Optional[EmbeddingModel] = None
        self.ef: Optional[Embedder] = None
        self.chroma = None
        self.collection = None
        self._db_path: Optional[Path] = None

    # ── Setup ────────────────────────────────────────

    @property
    def is_initialized(self) -> bool:
        return self.collection is not None and self.ef is not None

    @property
    def spec(self) -> Optional[ModelSpec]:
        return self.model.spec if self.model else None

    def initialize(self, storage_path: str | Path | None = None, model_id: str | None = None) -> None:
        """Load the embedding model and open its collection.

        Raises ModelLoadFailed once all load attempts are exhausted. A call
        made while another thread is initializing waits for that result.
        """
        with self._init_lock:
            if self.is_initialized and (model_id is None or resolve_model(model_id) == self.model):
                return
            if self._initializing:
                waiter = True
            else:
                waiter = False
                self._initializing = True
                self._init_error = None
                self._init_done.clear()

        if waiter:
            self._init_done.wait()
            if self._init_error is not None:
                raise self._init_error
            return

        try:
            self._do_initialize(storage_path, model_id)
        except Exception as e:
            self._init_error = e
            raise
        finally:
            with self._init_lock:
                self._initializing = False
            self._init_done.set()

    def _do_initialize(self, storage_path, model_id):
        model = resolve_model(model_id or self.config.embedding_model)
        ef, collection = self._open(model, storage_path)
        with self._write_lock:
            self.model = model
            self.ef = ef
            self.collection = collection

    def _open(self, model: EmbeddingModel, storage_path) -> tuple[Embedder, object]:
        """Load the model and open its collection without touching the active ones."""
        spec = model.spec
        logger.info(f"[Vectors] Initializing with model '{spec.id}' ({spec.dim}d)")

        ef = self._load_embedder(spec)

        db_path = Path(storage_path) if storage_path else self.config.vectorstore_path
        db_path.mkdir(parents=True, exist_ok=True)
        if self.chroma is None or db_path != self._db_path:
            logger.info(f"[Vectors] Connecting to ChromaDB: {db_path}")
            self.chroma = chromadb.PersistentClient(path=str(db_path))
            self._db_path = db_path

        collection = self.chroma.get_or_create_collection(
            spec.table_name,
            embedding_function=None,
            metadata={"hnsw:space": "cosine", "model": spec.id, "dimension": spec.dim},
        )
        stored_dim = (collection.metadata or {}).get("dimension")
        if stored_dim is not None and int(stored_dim) != spec.dim:
            raise ModelLoadFailed(
                spec.id, 1,
                ValueError(f"table '{spec.table_name}' holds {stored_dim}d vectors"),
            )

        logger.info(
            f"[Vectors] Opened table '{spec.table_name}' with {collection.count()} chunks"
        )
        return ef, collection

    def _load_embedder(self, spec: ModelSpec) -> Embedder:
        attempts = self.config.model_load_attempts

        def _load():
            ef = self._factory(spec)
            sample = ef(["dimension check"])[0]
            if len(sample) != spec.dim:
                raise ValueError(f"model produced {len(sample)}d vectors, expected {spec.dim}d")
            return ef

        try:
            ef = retry_call(
                _load, attempts=attempts, delay=self.config.model_load_retry_delay,
                label=f"[Vectors] Model load '{spec.id}'",
            )
        except Exception as e:
            logger.error(f"[Vectors] All {attempts} model load attempts failed")
            raise ModelLoadFailed(spec.id, attempts, e) from e
        logger.info(f"[Vectors] Model '{spec.id}' loaded")
        return ef

    def switch_model(self, model_id: str) -> ModelSpec:
        """Activate another model's table. Existing vectors are not migrated.

        The active model keeps serving until the new one is loaded; if loading
        fails (ModelLoadFailed) nothing changes.
        """
        new_model = resolve_model(model_id)
        if not self.is_initialized:
            self.initialize(self._db_path, new_model.spec.id)
            return new_model.spec
        with self._switch_lock:
            if new_model == self.model:
                return new_model.spec
            ef, collection = self._open(new_model, self._db_path)
            with self._write_lock:
                self.model = new_model
                self.ef = ef
                self.collection = collection
        logger.info(f"[Vectors] Switched to model '{new_model.spec.id}'")
        return new_model.spec

    def _require(self):
        if not self.is_initialized:
            raise NotInitialized("VectorIndex")
        return self.collection

    def _active(self) -> tuple[ModelSpec, Embedder, object]:
        """Model, embedder and collection taken together, consistent across a switch."""
        with self._write_lock:
            if self.model is None or self.ef is None or self.collection is None:
                raise NotInitialized("VectorIndex")
            return self.model.spec, self.ef, self.collection

    # ── Embedding ────────────────────────────────────

    def embed(self, texts: list[str], ef: Embedder | None = None) -> list[list[float]]:
        if ef is None:
            ef = self.ef
        if ef is None:
            raise NotInitialized("VectorIndex")
        limit = self.config.embed_max_chars
        vectors = ef([t[:limit] for t in texts])
        return [[float(x) for x in v] for v in vectors]

    # ── Writes ───────────────────────────────────────

    def index(self, doc_id: str, text: str, metadata: DocumentMetadata) -> int:
        """Replace all vectors of doc_id. Returns the number of chunks written."""
        spec, ef, collection = self._active()
        minimum = self.config.min_content_length
        body = (text or "").strip()
        if len(body) < minimum:
            raise ContentTooShort(doc_id, len(body), minimum)

        chunks = split_into_chunks(body, self.config.chunk_size, self.config.chunk_overlap)
        try:
            vectors = self.embed([c.text for c in chunks], ef)
        except Exception as e:
            raise IndexWriteFailed(doc_id, f"embedding failed: {e}") from e
        for vec in vectors:
            if len(vec) != spec.dim:
                raise DimensionMismatch(doc_id, spec.dim, len(vec), spec.table_name)

        created_at = metadata.created_at or datetime.now(timezone.utc).isoformat()
        tags = json.dumps(metadata.tags, ensure_ascii=False)
        metadatas = [
            {
                "doc_id": doc_id,
                "chunk_index": c.index,
                "title": metadata.title or "",
                "type": metadata.type or "document",
                "tags": tags,
                "createdAt": created_at,
            }
            for c in chunks
        ]

        with self._write_lock:
            try:
                collection.delete(where={"doc_id": doc_id})
                collection.add(
                    ids=[c.id for c in chunks],
                    embeddings=vectors,
                    documents=[c.text for c in chunks],
                    metadatas=metadatas,
                )
            except Exception as e:
                raise IndexWriteFailed(doc_id, str(e)) from e

        logger.info(f"[Vectors] Indexed document: {doc_id} - chunks: {len(chunks)}")
        return len(chunks)

    def delete(self, doc_id: str) -> None:
        collection = self._require()
        with self._write_lock:
            try:
                collection.delete(where={"doc_id": doc_id})
            except Exception as e:
                raise IndexWriteFailed(doc_id, str(e)) from e
        logger.info(f"[Vectors] Deleted document: {doc_id}")

    # ── Search ───────────────────────────────────────

    def search(
        self, query: str, limit: int = 10,
        distance_threshold: float | None = None, group_by_doc: bool = True,
    ) -> list[VectorHit]:
        """Nearest-neighbour search. Never raises: failures are logged and yield []."""
        if not self.is_initialized:
            logger.debug("[Vectors] Search skipped: not initialized")
            return []
        threshold = self.config.distance_threshold if distance_threshold is None else distance_threshold
        try:
            hits = self._search(query, limit, threshold, group_by_doc)
        except Exception as e:
            logger.error(f"[Vectors] Search error: {e}")
            return []
        logger.debug(f"[Vectors] Search query: {query!r} - found {len(hits)}")
        return hits

    def _search(self, query: str, limit: int, threshold: float, group_by_doc: bool) -> list[VectorHit]:
        _, ef, collection = self._active()
        total = collection.count()
        if not query.strip() or limit <= 0 or total == 0:
            return []
        query_vec = self.embed([query], ef)[0]
        results = collection.query(
            query_embeddings=[query_vec],
            n_results=min(limit * OVERFETCH, total),
            include=["documents", "metadatas", "distances"],
        )
        if not results["ids"] or not results["ids"][0]:
            return []

        hits: list[VectorHit] = []
        seen_docs: set[str] = set()
        for cid, doc, meta, dist in zip(
            results["ids"][0],
            results["documents"][0],
            results["metadatas"][0],
            results["distances"][0],
        ):
            if dist > threshold:
                continue
            meta = meta or {}
            doc_id = meta.get("doc_id", "")
            if group_by_doc:
                if doc_id in seen_docs:
                    continue
                seen_docs.add(doc_id)
            hits.append(VectorHit(
                chunk_id=cid,
                doc_id=doc_id,
                chunk_index=int(meta.get("chunk_index", 0)),
                text=doc or "",
                score=float(dist),
                metadata=display_metadata(
                    meta.get("title", ""), meta.get("type", ""),
                    meta.get("tags", "[]"), meta.get("createdAt", ""),
                ),
            ))
            if len(hits) >= limit:
                break
        return hits

    # ── Consistency ──────────────────────────────────

    def all_doc_ids(self) -> set[str]:
        """Every doc_id with at least one vector in the active table."""
        collection = self._require()
        doc_ids: set[str] = set()
        offset = 0
        while True:
            page = collection.get(include=["metadatas"], limit=PAGE_SIZE, offset=offset)
            metas = page.get("metadatas") or []
            for meta in metas:
                if meta and meta.get("doc_id"):
                    doc_ids.add(meta["doc_id"])
            if len(page["ids"]) < PAGE_SIZE:
                return doc_ids
            offset += PAGE_SIZE

    def check_missing(self, ids: Iterable[str]) -> list[str]:
        """Ids (in input order) that have no vectors under the active model."""
        ids = list(ids)
        if not self.is_initialized:
            logger.warning("[Vectors] checkMissing before initialize: reporting all ids missing")
            return ids
        indexed = self.all_doc_ids()
        missing = [i for i in ids if i not in indexed]
        logger.info(f"[Vectors] checkMissing: {len(missing)}/{len(ids)} missing")
        return missing

    # ── Stats ────────────────────────────────────────

    def get_stats(self) -> dict:
        stats = {
            "totalDocs": 0,
            "totalChunks": 0,
            "dbPath": str(self._db_path or ""),
            "modelLoaded": self.ef is not None,
            "model": self.spec.id if self.spec else None,
            "dimension": self.spec.dim if self.spec else None,
            "table": self.spec.table_name if self.spec else None,
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
        }
        if self.collection is not None:
            try:
                stats["totalChunks"] = self.collection.count()
                stats["totalDocs"] = len(self.all_doc_ids())
            except Exception as e:
                logger.warning(f"[Vectors] GetStats error: {e}")
        return stats
