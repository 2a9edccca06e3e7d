import hashlib
import math
import re

import pytest

from clipindex.config import Config
from clipindex.health import HealthTracker
from clipindex.lexical import LexicalIndex
from clipindex.manager import IndexManager
from clipindex.models import Document, DocumentMetadata
from clipindex.vectors import VectorIndex

_TERM_RE = re.compile(r"\w+")


class HashingEmbedder:
    """Deterministic bag-of-words embedder: shared words -> small cosine distance."""

    def __init__(self, dim: int):
        self.dim = dim
        self.calls = 0

    def _vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dim
        for term in _TERM_RE.findall(text.lower()):
            h = int(hashlib.md5(term.encode("utf-8")).hexdigest(), 16)
            vec[h % self.dim] += 1.0
        norm = math.sqrt(sum(x * x for x in vec))
        if norm == 0:
            vec[0] = 1.0
            return vec
        return [x / norm for x in vec]

    def __call__(self, input):
        self.calls += 1
        return [self._vector(t) for t in input]


class FakeItemStore:
    def __init__(self, documents=None):
        self.documents = {d.doc_id: d for d in (documents or [])}

    def add(self, doc_id, text, **metadata):
        self.documents[doc_id] = Document(doc_id, text, DocumentMetadata(**metadata))

    def list_ids(self):
        return list(self.documents)

    def get_document(self, doc_id):
        return self.documents.get(doc_id)


@pytest.fixture
def config(tmp_path):
    """A Config pointing at a tmp data dir, small model, no retry delay."""
    return Config(
        data_path=str(tmp_path / "data"),
        embedding_model="all-MiniLM-L6-v2",
        model_load_retry_delay=0.0,
    )


@pytest.fixture
def embedder_factory():
    created = []

    def _factory(spec):
        ef = HashingEmbedder(spec.dim)
        created.append(ef)
        return ef

    _factory.created = created
    return _factory


@pytest.fixture
def health():
    return HealthTracker()


@pytest.fixture
def lexical(config):
    index = LexicalIndex(config)
    index.initialize()
    yield index
    index.close()


@pytest.fixture
def vectors(config, embedder_factory):
    index = VectorIndex(config, embedder_factory)
    index.initialize()
    return index


@pytest.fixture
def item_store():
    return FakeItemStore()


@pytest.fixture
def manager(config, embedder_factory, item_store, health):
    mgr = IndexManager(
        config, item_store=item_store, health=health, embedder_factory=embedder_factory,
    )
    mgr.initialize()
    yield mgr
    mgr.close()
