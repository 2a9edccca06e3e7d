# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Embedding model registry and loading.

Each known model maps to a static record (dimension + physical table) so a
vector table is never shared by models of different dimensionality. The
embedder itself is an injected capability: anything with chromadb's
EmbeddingFunction call shape, ef(list[str]) -> list[vector].
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol, Sequence, TypeVar

from loguru import logger
from tenacity import RetryCallState, Retrying, stop_after_attempt, wait_fixed

T = TypeVar("T")


@dataclass(frozen=True)
class ModelSpec:
    id: str
    name: str
    dim: int
    table_name: str
    description: str = ""


class EmbeddingModel(Enum):
    MINILM_L6 = ModelSpec(
        id="all-MiniLM-L6-v2",
        name="sentence-transformers/all-MiniLM-L6-v2",
        dim=384,
        table_name="documents",
        description="Lightweight (80MB), fast, 384d. Best for English.",
    )
    BGE_M3 = ModelSpec(
        id="bge-m3",
        name="BAAI/bge-m3",
        dim=1024,
        table_name="documents_bge_m3",
        description="High precision (2GB), multilingual, 1024d. Slower but better quality.",
    )
    E5_BASE = ModelSpec(
        id="multilingual-e5-base",
        name="intfloat/multilingual-e5-base",
        dim=768,
        table_name="documents_e5_base",
        description="Balanced multilingual model, 768d.",
    )

    @property
    def spec(self) -> ModelSpec:
        return self.value


DEFAULT_MODEL = EmbeddingModel.BGE_M3


def resolve_model(model_id: str | None) -> EmbeddingModel:
    """Look up a model by id; unknown ids fall back to the default model."""
    if model_id:
        for model in EmbeddingModel:
            if model.spec.id == model_id or model.spec.name == model_id:
                return model
        logger.warning(
            f"[Embeddings] Unknown model '{model_id}', using '{DEFAULT_MODEL.spec.id}'"
        )
    return DEFAULT_MODEL


def available_models() -> list[dict]:
    return [
        {
            "id": m.spec.id,
            "name": m.spec.name,
            "dim": m.spec.dim,
            "table": m.spec.table_name,
            "desc": m.spec.description,
        }
        for m in EmbeddingModel
    ]


class Embedder(Protocol):
    def __call__(self, input: list[str]) -> Sequence[Sequence[float]]: ...


EmbedderFactory = Callable[[ModelSpec], Embedder]


def sentence_transformer_factory(device: str = "") -> EmbedderFactory:
    """Default factory: a local sentence-transformers model via chromadb."""

    def _load(spec: ModelSpec) -> Embedder:
        from chromadb.utils import embedding_functions

        kwargs = {"model_name": spec.name, "normalize_embeddings": True}
        if device:
            kwargs["device"] = device
        return embedding_functions.SentenceTransformerEmbeddingFunction(**kwargs)

    return _load


def retry_call(
    fn: Callable[[], T], *, attempts: int, delay: float, label: str = "operation",
) -> T:
    """Run fn with a bounded number of attempts and a fixed delay between them.

    The last exception is re-raised once attempts are exhausted.
    """

    def _before_sleep(state: RetryCallState):
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            f"{label} attempt {state.attempt_number}/{attempts} failed: {exc}; "
            f"retrying in {delay}s"
        )

    retrying = Retrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_fixed(delay),
        before_sleep=_before_sleep,
        reraise=True,
    )
    return retrying(fn)
