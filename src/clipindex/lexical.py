# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Lexical (BM25) index: weighted surface text -> chunks -> SQLite rows -> bm25s

Rows are the source of truth and are replaced per document inside one
transaction. The bm25s retriever is derived from them: any write marks it
dirty and the next search rebuilds and persists it (with corpus_ids.json
next to it, so a stale persisted index is detected on startup). Rebuilds
run outside the write lock.

Scores follow the SQLite FTS5 cost convention: lower is better.
"""
import json
import shutil
import sqlite3
import threading
from pathlib import Path
from typing import Optional

import bm25s
from loguru import logger

from .chunker import split_into_chunks
from .composer import compose
from .config import Config
from .errors import ContentTooShort, IndexWriteFailed, NotInitialized
from .models import DocumentMetadata, LexicalHit, display_metadata
from .tokenizer import tokenize

TABLE_NAME = "chunks"
# keep one-character terms: a single ideograph is often a whole word
TOKEN_PATTERN = r"(?u)\b\w+\b"
STOPWORDS = "en"
OVERFETCH = 3


def normalize_bm25_cost(cost: float) -> float:
    """Map a raw BM25 cost onto a display score (approximate, BM25 is unbounded)."""
    return max(0.0, 1.0 - cost / 100.0)


def _build_retriever(texts: list[str]) -> bm25s.BM25:
    corpus_tokens = bm25s.tokenize(
        texts, token_pattern=TOKEN_PATTERN, stopwords=STOPWORDS, show_progress=False,
    )
    retriever = bm25s.BM25()
    retriever.index(corpus_tokens, show_progress=False)
    return retriever


class LexicalIndex:
    def __init__(self, config: Config):
        self.config = config
        self._conn: Optional[sqlite3.Connection] = None
        self._db_path: Optional[Path] = None
        self._lock = threading.RLock()
        self._rebuild_lock = threading.Lock()
        self._bm25_index = None
        self._bm25_corpus_ids: list[str] = []
        self._dirty = True
        self._generation = 0

    # ── Setup ────────────────────────────────────────

    def initialize(self, storage_path: str | Path | None = None) -> None:
        db_path = Path(storage_path) if storage_path else self.config.lexical_db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"[Lexical] Connecting to database: {db_path}")

        conn = sqlite3.connect(str(db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                id TEXT PRIMARY KEY,
                doc_id TEXT NOT NULL,
                title TEXT NOT NULL DEFAULT '',
                type TEXT NOT NULL DEFAULT 'document',
                tags TEXT NOT NULL DEFAULT '[]',
                chunk_index INTEGER NOT NULL,
                text TEXT NOT NULL
            )
            """
        )
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_doc ON {TABLE_NAME}(doc_id)")
        conn.commit()

        with self._lock:
            self._conn = conn
            self._db_path = db_path
            self._load_bm25_index()
        logger.info("[Lexical] Initialized")

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("[Lexical] Database closed")

    def _require(self) -> sqlite3.Connection:
        if self._conn is None:
            raise NotInitialized("LexicalIndex")
        return self._conn

    # ── Writes ───────────────────────────────────────

    def index(self, doc_id: str, text: str, metadata: DocumentMetadata) -> int:
        """Replace all chunks of doc_id. Returns the number of chunks written."""
        conn = self._require()
        minimum = self.config.min_content_length
        if not (text or "").strip():
            raise ContentTooShort(doc_id, 0, minimum)
        composed = compose(text, metadata)
        if len(composed) < minimum:
            raise ContentTooShort(doc_id, len(composed), minimum)

        chunks = split_into_chunks(
            composed, self.config.chunk_size, self.config.chunk_overlap,
        )
        tags = json.dumps(metadata.tags, ensure_ascii=False)
        rows = [
            (c.id, doc_id, metadata.title, metadata.type, tags, c.index, c.text)
            for c in chunks
        ]

        with self._lock:
            try:
                with conn:
                    conn.execute(f"DELETE FROM {TABLE_NAME} WHERE doc_id = ?", (doc_id,))
                    conn.executemany(
                        f"INSERT INTO {TABLE_NAME} "
                        "(id, doc_id, title, type, tags, chunk_index, text) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        rows,
                    )
            except sqlite3.Error as e:
                raise IndexWriteFailed(doc_id, str(e)) from e
            self._dirty = True
            self._generation += 1

        logger.info(f"[Lexical] Indexed document: {doc_id} - chunks: {len(rows)}")
        return len(rows)

    def delete(self, doc_id: str) -> int:
        """Remove every chunk of doc_id. Returns the number of rows removed."""
        conn = self._require()
        with self._lock:
            try:
                with conn:
                    cur = conn.execute(f"DELETE FROM {TABLE_NAME} WHERE doc_id = ?", (doc_id,))
            except sqlite3.Error as e:
                raise IndexWriteFailed(doc_id, str(e)) from e
            if cur.rowcount:
                self._dirty = True
                self._generation += 1
        logger.info(f"[Lexical] Deleted document: {doc_id} ({cur.rowcount} chunks)")
        return cur.rowcount

    def chunks_for(self, doc_id: str) -> list[dict]:
        """Stored chunks of one document, in chunk order."""
        conn = self._require()
        with self._lock:
            rows = conn.execute(
                f"SELECT id, chunk_index, text FROM {TABLE_NAME} "
                "WHERE doc_id = ? ORDER BY chunk_index",
                (doc_id,),
            ).fetchall()
        return [{"id": r[0], "index": r[1], "text": r[2]} for r in rows]

    # ── BM25 ─────────────────────────────────────────

    def _bm25_index_path(self) -> Path:
        return self._db_path.with_name(f"{self._db_path.stem}_bm25")

    def _row_ids(self) -> list[str]:
        return [r[0] for r in self._conn.execute(f"SELECT id FROM {TABLE_NAME} ORDER BY rowid")]

    def _load_bm25_index(self):
        """Load persisted BM25 index if it matches the row store."""
        idx_dir = self._bm25_index_path()
        ids_path = idx_dir / "corpus_ids.json"
        self._bm25_index = None
        self._bm25_corpus_ids = []
        self._dirty = True
        if not (idx_dir.exists() and ids_path.exists()):
            return
        try:
            with open(ids_path) as f:
                ids = json.load(f)
            if ids != self._row_ids():
                logger.info("[Lexical] Persisted BM25 index is stale, will rebuild")
                return
            self._bm25_index = bm25s.BM25.load(idx_dir, load_corpus=False)
            self._bm25_corpus_ids = ids
            self._dirty = False
        except Exception as e:
            logger.warning(f"[Lexical] Could not load BM25 index: {e}")

    def _build_bm25_index(self):
        """Rebuild the BM25 index from a snapshot of the rows and persist it.

        Tokenizing and indexing run outside self._lock, so writes proceed
        during a rebuild. A write that lands meanwhile bumps the generation
        and the index stays dirty for the next search.
        """
        with self._lock:
            rows = self._conn.execute(
                f"SELECT id, text FROM {TABLE_NAME} ORDER BY rowid"
            ).fetchall()
            generation = self._generation

        ids = [r[0] for r in rows]
        retriever = _build_retriever([r[1] for r in rows]) if rows else None

        with self._lock:
            self._bm25_index = retriever
            self._bm25_corpus_ids = ids
            if self._generation == generation:
                self._dirty = False

        idx_dir = self._bm25_index_path()
        if retriever is None:
            if idx_dir.exists():
                shutil.rmtree(idx_dir)
            return
        try:
            idx_dir.mkdir(parents=True, exist_ok=True)
            retriever.save(idx_dir)
            with open(idx_dir / "corpus_ids.json", "w") as f:
                json.dump(ids, f)
        except OSError as e:
            logger.warning(f"[Lexical] Could not persist BM25 index: {e}")
        logger.debug(f"[Lexical] Rebuilt BM25 index over {len(ids)} chunks")

    def _ensure_bm25(self):
        with self._rebuild_lock:
            with self._lock:
                if not self._dirty and self._bm25_index is not None:
                    return self._bm25_index, self._bm25_corpus_ids
            self._build_bm25_index()
            with self._lock:
                return self._bm25_index, self._bm25_corpus_ids

    # ── Search ───────────────────────────────────────

    def search(self, query: str, limit: int = 10, group_by_doc: bool = True) -> list[LexicalHit]:
        """Ranked keyword search. Never raises: failures are logged and yield []."""
        if self._conn is None:
            logger.debug("[Lexical] Search skipped: not initialized")
            return []
        try:
            hits = self._search(query, limit, group_by_doc)
        except Exception as e:
            logger.error(f"[Lexical] Search error: {e}")
            return []
        logger.debug(f"[Lexical] Search query: {query!r} - found {len(hits)}")
        return hits

    def _search(self, query: str, limit: int, group_by_doc: bool) -> list[LexicalHit]:
        query_text = tokenize(query)
        if not query_text or limit <= 0:
            return []
        retriever, corpus_ids = self._ensure_bm25()
        if retriever is None or not corpus_ids:
            return []

        query_tokens = bm25s.tokenize(
            [query_text], token_pattern=TOKEN_PATTERN, stopwords=STOPWORDS,
            return_ids=False, show_progress=False,
        )
        terms = [t for t in query_tokens[0] if t] if query_tokens else []
        if not terms:
            return []
        query_tokens = [terms]
        fetch_k = min(limit * OVERFETCH, len(corpus_ids))
        results, scores = retriever.retrieve(query_tokens, k=fetch_k, show_progress=False)

        ranked: list[tuple[str, float]] = []
        for i in range(results.shape[1]):
            idx = int(results[0, i])
            score = float(scores[0, i])
            if idx < 0 or idx >= len(corpus_ids) or score <= 0:
                continue
            ranked.append((corpus_ids[idx], score))
        if not ranked:
            return []

        rows = self._fetch_rows([cid for cid, _ in ranked])
        hits: list[LexicalHit] = []
        seen_docs: set[str] = set()
        for chunk_id, score in ranked:
            row = rows.get(chunk_id)
            if row is None:
                continue
            doc_id, title, doc_type, tags, chunk_index, text = row
            if group_by_doc:
                if doc_id in seen_docs:
                    continue
                seen_docs.add(doc_id)
            hits.append(LexicalHit(
                chunk_id=chunk_id,
                doc_id=doc_id,
                chunk_index=chunk_index,
                text=text,
                score=-score,
                metadata=display_metadata(title, doc_type, tags),
            ))
            if len(hits) >= limit:
                break
        return hits

    def _fetch_rows(self, chunk_ids: list[str]) -> dict[str, tuple]:
        placeholders = ",".join("?" for _ in chunk_ids)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT id, doc_id, title, type, tags, chunk_index, text "
                f"FROM {TABLE_NAME} WHERE id IN ({placeholders})",
                chunk_ids,
            ).fetchall()
        return {r[0]: r[1:] for r in rows}

    # ── Stats ────────────────────────────────────────

    def get_stats(self) -> dict:
        if self._conn is None:
            return {"totalDocs": 0, "totalChunks": 0, "dbPath": ""}
        try:
            with self._lock:
                chunks, docs = self._conn.execute(
                    f"SELECT count(*), count(DISTINCT doc_id) FROM {TABLE_NAME}"
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"[Lexical] GetStats error: {e}")
            return {"totalDocs": 0, "totalChunks": 0, "dbPath": str(self._db_path or "")}
        return {"totalDocs": docs, "totalChunks": chunks, "dbPath": str(self._db_path)}
