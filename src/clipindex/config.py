# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Central configuration – configurable via:
1. Environment variables (CLIPINDEX_ prefix)
2. .env file
3. Settings view (writes to <data_path>/config.json)

One canonical value per tuning knob: both indexes chunk with
chunk_size/chunk_overlap and every hybrid search defaults to
vector_weight/bm25_weight unless the caller passes its own.
"""
import json
from pathlib import Path

from loguru import logger
from pydantic_settings import BaseSettings

DEFAULT_DATA_PATH = str(Path.home() / ".clipindex")
CONFIG_FILENAME = "config.json"


class Config(BaseSettings):
    # ── Storage ──────────────────────────────────
    data_path: str = DEFAULT_DATA_PATH

    # ── Embeddings ───────────────────────────────
    embedding_model: str = "bge-m3"
    embedding_device: str = ""
    embed_max_chars: int = 2000
    model_load_attempts: int = 3
    model_load_retry_delay: float = 2.0

    # ── Chunking ─────────────────────────────────
    chunk_size: int = 500
    chunk_overlap: int = 50
    min_content_length: int = 10

    # ── Ranking ──────────────────────────────────
    rrf_k: int = 60
    vector_weight: float = 0.6
    bm25_weight: float = 0.4
    distance_threshold: float = 0.75
    min_score: float = 0.0

    # ── Server ───────────────────────────────────
    web_host: str = "127.0.0.1"
    web_port: int = 3457

    # ── Logging ──────────────────────────────────
    log_level: str = "INFO"
    log_file: str = ""

    class Config:
        env_prefix = "CLIPINDEX_"
        env_file = ".env"

    @property
    def config_file(self) -> Path:
        return Path(self.data_path) / CONFIG_FILENAME

    @property
    def lexical_db_path(self) -> Path:
        return Path(self.data_path) / "lexical.db"

    @property
    def vectorstore_path(self) -> Path:
        return Path(self.data_path) / "vectors"

    @classmethod
    def load(cls, **overrides) -> "Config":
        """Load config: ENV -> .env -> config.json (settings view overrides)."""
        config = cls(**overrides)

        if config.config_file.exists():
            try:
                saved = json.loads(config.config_file.read_text())
                for key, value in saved.items():
                    if key in overrides:
                        continue
                    if hasattr(config, key) and value != "":
                        setattr(config, key, value)
            except Exception as e:
                logger.warning(f"Config file error: {e}")

        return config

    def save(self):
        """Persist current config for the settings view."""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text(
            json.dumps(self.model_dump(), indent=2, default=str)
        )

    def to_safe_dict(self) -> dict:
        """Config for display (paths shortened to the data dir)."""
        d = self.model_dump()
        d["lexical_db_path"] = str(self.lexical_db_path)
        d["vectorstore_path"] = str(self.vectorstore_path)
        return d
