# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
HTTP API (FastAPI) – indexing hooks, search, stats, backfill control.

The desktop shell calls POST/DELETE /api/documents from its item-store
hooks and the search endpoints from the chat view. All state is injected
via create_web_app(). Blocking endpoints are plain functions so FastAPI
runs them in its threadpool.
"""
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .config import Config
from .embeddings import available_models
from .errors import ModelLoadFailed
from .manager import IndexManager


class DocumentRequest(BaseModel):
    doc_id: str
    text: str
    metadata: dict = Field(default_factory=dict)


class SearchRequest(BaseModel):
    query: str
    limit: int = 10
    vector_weight: Optional[float] = None
    bm25_weight: Optional[float] = None
    distance_threshold: Optional[float] = None
    group_by_doc: bool = True


class CheckMissingRequest(BaseModel):
    ids: list[str]


class ModelSwitchRequest(BaseModel):
    model: str


class BackfillRequest(BaseModel):
    ids: Optional[list[str]] = None


def _results(query: str, results) -> dict:
    return {
        "query": query,
        "count": len(results),
        "results": [r.to_dict() for r in results],
    }


def create_web_app(manager: IndexManager, config: Config) -> FastAPI:
    """Factory: returns a FastAPI app bound to one IndexManager."""

    app = FastAPI(
        title="clipindex",
        description="Local hybrid retrieval for saved items",
    )

    # ── Health ───────────────────────────────────────

    @app.get("/health")
    async def health_check():
        from . import __version__
        status = manager.health.status
        lexical = manager.lexical.get_stats()
        return {
            "status": "ok" if manager.health.is_healthy else "degraded",
            "version": __version__,
            "lexical_chunks": lexical.get("totalChunks", 0),
            "semantic_ready": status.get("semantic_ready"),
            "embedding_model": status.get("embedding_model"),
            "model_load_error": status.get("model_load_error"),
            "last_index_at": status.get("last_index_at"),
            "last_index_ok": status.get("last_index_ok"),
        }

    # ── Stats / config ───────────────────────────────

    @app.get("/api/stats")
    def get_stats():
        return manager.get_stats()

    @app.get("/api/config")
    async def get_config():
        return {"config": config.to_safe_dict(), "available_models": available_models()}

    # ── Documents ────────────────────────────────────

    @app.post("/api/documents")
    def index_document(req: DocumentRequest):
        return manager.index(req.doc_id, req.text, req.metadata).to_dict()

    @app.delete("/api/documents/{doc_id}")
    def delete_document(doc_id: str):
        return manager.delete(doc_id).to_dict()

    @app.post("/api/check-missing")
    def check_missing(req: CheckMissingRequest):
        missing = manager.check_missing(req.ids)
        return {"total": len(req.ids), "count": len(missing), "missing": missing}

    @app.post("/api/reindex")
    def trigger_reindex():
        if manager.item_store is None:
            raise HTTPException(status_code=409, detail="No item store configured")
        return manager.reindex_all()

    # ── Search ───────────────────────────────────────

    @app.post("/api/search")
    def hybrid_search(req: SearchRequest):
        results = manager.hybrid_search(
            req.query, req.limit,
            vector_weight=req.vector_weight, bm25_weight=req.bm25_weight,
            group_by_doc=req.group_by_doc, distance_threshold=req.distance_threshold,
        )
        return _results(req.query, results)

    @app.post("/api/search/lexical")
    def lexical_search(req: SearchRequest):
        return _results(req.query, manager.search_lexical(req.query, req.limit, req.group_by_doc))

    @app.post("/api/search/vector")
    def vector_search(req: SearchRequest):
        results = manager.search_vectors(
            req.query, req.limit,
            distance_threshold=req.distance_threshold, group_by_doc=req.group_by_doc,
        )
        return _results(req.query, results)

    # ── Models / backfill ────────────────────────────

    @app.post("/api/models/switch")
    def switch_model(req: ModelSwitchRequest):
        try:
            missing = manager.switch_model(req.model)
        except ModelLoadFailed as e:
            raise HTTPException(status_code=503, detail=str(e))
        config.save()
        return {"model": config.embedding_model, "count": len(missing), "missing": missing}

    @app.post("/api/backfill")
    def start_backfill(req: BackfillRequest):
        result = manager.start_backfill(req.ids)
        if result.get("status") == "error" and manager.item_store is None:
            raise HTTPException(status_code=409, detail=result["message"])
        return result

    @app.get("/api/backfill")
    async def backfill_status():
        return {"backfill": manager.backfill_status}

    @app.delete("/api/backfill")
    async def cancel_backfill():
        return manager.cancel_backfill()

    return app
