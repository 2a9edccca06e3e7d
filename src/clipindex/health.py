# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Centralized health/status tracker – shared by the manager and the web API.
Thread-safe, no external dependencies.
"""
import threading
from datetime import datetime, timezone


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class HealthTracker:
    def __init__(self):
        self._lock = threading.Lock()
        self._data = {
            "last_index_at": None,
            "last_index_ok": False,
            "last_index_doc": None,
            "last_index_chunks": 0,
            "last_index_error": None,
            "documents_indexed": 0,
            "documents_skipped": 0,
            "index_warnings": 0,
            "documents_deleted": 0,

            "lexical_ready": False,
            "semantic_ready": False,
            "embedding_model": None,
            "model_load_error": None,
            "model_loaded_at": None,

            "searches_total": 0,
            "searches_hits": 0,
            "searches_misses": 0,
            "searches_by_kind": {
                "hybrid": 0,
                "lexical": 0,
                "vector": 0,
            },
            "last_search_at": None,

            "last_backfill": None,
            "started_at": _now(),
        }

    def record_index(
        self, doc_id: str, ok: bool, chunks: int = 0,
        skipped: bool = False, error: str | None = None,
    ):
        with self._lock:
            self._data["last_index_at"] = _now()
            self._data["last_index_ok"] = ok
            self._data["last_index_doc"] = doc_id
            self._data["last_index_chunks"] = chunks
            self._data["last_index_error"] = error
            if skipped:
                self._data["documents_skipped"] += 1
            elif ok:
                self._data["documents_indexed"] += 1
            if error:
                self._data["index_warnings"] += 1

    def record_delete(self):
        with self._lock:
            self._data["documents_deleted"] += 1

    def record_ready(self, lexical: bool | None = None, semantic: bool | None = None):
        with self._lock:
            if lexical is not None:
                self._data["lexical_ready"] = lexical
            if semantic is not None:
                self._data["semantic_ready"] = semantic

    def record_model_load(self, model_id: str, ok: bool, error: str | None = None):
        with self._lock:
            self._data["semantic_ready"] = ok
            self._data["model_load_error"] = error
            if ok:
                self._data["embedding_model"] = model_id
                self._data["model_loaded_at"] = _now()

    def record_search(self, kind: str, hit: bool):
        with self._lock:
            self._data["searches_total"] += 1
            if hit:
                self._data["searches_hits"] += 1
            else:
                self._data["searches_misses"] += 1
            by_kind = self._data["searches_by_kind"]
            if kind in by_kind:
                by_kind[kind] += 1
            self._data["last_search_at"] = _now()

    def record_backfill(self, job: dict):
        with self._lock:
            self._data["last_backfill"] = job

    @property
    def status(self) -> dict:
        with self._lock:
            data = dict(self._data)
            data["searches_by_kind"] = dict(self._data["searches_by_kind"])
            return data

    @property
    def is_healthy(self) -> bool:
        """Lexical search is the floor: semantic search may be down."""
        with self._lock:
            return self._data["lexical_ready"]
