"""Tests for the ChromaDB-backed embedding index."""
import threading
import time
from unittest.mock import MagicMock

import pytest

from clipindex.errors import ContentTooShort, DimensionMismatch, ModelLoadFailed, NotInitialized
from clipindex.models import DocumentMetadata
from clipindex.vectors import VectorIndex
from conftest import HashingEmbedder


def _meta(**kw):
    return DocumentMetadata(**kw)


class TestInitialize:
    def test_opens_model_table(self, vectors):
        stats = vectors.get_stats()
        assert stats["modelLoaded"] is True
        assert stats["model"] == "all-MiniLM-L6-v2"
        assert stats["dimension"] == 384
        assert stats["table"] == "documents"

    def test_retries_then_succeeds(self, config):
        factory = MagicMock(side_effect=[RuntimeError("boom"), RuntimeError("boom"), HashingEmbedder(384)])
        index = VectorIndex(config, factory)
        index.initialize()
        assert factory.call_count == 3
        assert index.is_initialized

    def test_gives_up_after_attempts(self, config):
        factory = MagicMock(side_effect=RuntimeError("no network"))
        index = VectorIndex(config, factory)
        with pytest.raises(ModelLoadFailed) as exc:
            index.initialize()
        assert factory.call_count == config.model_load_attempts
        assert exc.value.attempts == config.model_load_attempts
        assert not index.is_initialized

    def test_wrong_dimension_model_rejected(self, config):
        index = VectorIndex(config, lambda spec: HashingEmbedder(spec.dim + 1))
        with pytest.raises(ModelLoadFailed):
            index.initialize()

    def test_concurrent_initialize_loads_once(self, config):
        calls = []

        def slow_factory(spec):
            calls.append(spec.id)
            time.sleep(0.2)
            return HashingEmbedder(spec.dim)

        index = VectorIndex(config, slow_factory)
        errors = []

        def run():
            try:
                index.initialize()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=run) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []
        assert calls == ["all-MiniLM-L6-v2"]
        assert index.is_initialized

    def test_concurrent_waiters_see_failure(self, config):
        def failing_factory(spec):
            time.sleep(0.1)
            raise RuntimeError("broken model")

        config.model_load_attempts = 1
        index = VectorIndex(config, failing_factory)
        errors = []

        def run():
            try:
                index.initialize()
            except ModelLoadFailed as e:
                errors.append(e)

        threads = [threading.Thread(target=run) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(errors) == 3


class TestIndexAndSearch:
    def test_search_finds_related(self, vectors):
        vectors.index("ice", "Glaciers are melting quickly in the Alps.", _meta(title="Ice"))
        vectors.index("food", "Fresh pasta with tomato sauce and basil.", _meta(title="Food"))
        hits = vectors.search("glaciers melting")
        assert hits[0].doc_id == "ice"
        assert hits[0].score < 0.75
        assert hits[0].metadata["title"] == "Ice"

    def test_threshold_filters_unrelated(self, vectors):
        vectors.index("ice", "Glaciers are melting quickly in the Alps.", _meta())
        assert vectors.search("quantum chromodynamics lattice") == []

    def test_threshold_override(self, vectors):
        vectors.index("ice", "Glaciers are melting quickly in the Alps.", _meta())
        assert vectors.search("quantum chromodynamics lattice", distance_threshold=2.0)

    def test_reindex_replaces(self, vectors):
        vectors.index("doc", "Original words about lighthouses.", _meta())
        vectors.index("doc", "Different words about submarines.", _meta())
        assert vectors.get_stats()["totalChunks"] == 1
        hits = vectors.search("submarines")
        assert hits[0].text == "Different words about submarines."

    def test_group_by_doc(self, config, embedder_factory):
        config.chunk_size = 80
        config.chunk_overlap = 0
        index = VectorIndex(config, embedder_factory)
        index.initialize()
        text = "\n\n".join(f"Part {i}: the orchard apples ripen in autumn." for i in range(5))
        index.index("long", text, _meta())
        assert len(index.search("orchard apples autumn", limit=10)) == 1
        assert len(index.search("orchard apples autumn", limit=10, group_by_doc=False)) > 1

    def test_delete(self, vectors):
        vectors.index("doc", "Words about volcanoes erupting.", _meta())
        vectors.delete("doc")
        assert vectors.search("volcanoes erupting") == []
        assert vectors.get_stats()["totalChunks"] == 0

    def test_too_short(self, vectors):
        with pytest.raises(ContentTooShort):
            vectors.index("doc", "  tiny  ", _meta())

    def test_dimension_mismatch_writes_nothing(self, config):
        class Drifting(HashingEmbedder):
            def __call__(self, input):
                self.calls += 1
                if self.calls > 1:
                    return [[0.1] * (self.dim - 1) for _ in input]
                return super().__call__(input)

        index = VectorIndex(config, lambda spec: Drifting(spec.dim))
        index.initialize()
        with pytest.raises(DimensionMismatch):
            index.index("doc", "Enough content to produce a vector.", _meta())
        assert index.get_stats()["totalChunks"] == 0

    def test_not_initialized(self, config, embedder_factory):
        index = VectorIndex(config, embedder_factory)
        with pytest.raises(NotInitialized):
            index.index("doc", "Enough content to produce a vector.", _meta())
        assert index.search("content") == []

    def test_embed_truncates_input(self, config):
        seen = []

        class Recording(HashingEmbedder):
            def __call__(self, input):
                seen.extend(input)
                return super().__call__(input)

        config.embed_max_chars = 20
        index = VectorIndex(config, lambda spec: Recording(spec.dim))
        index.initialize()
        index.embed(["x" * 100])
        assert len(seen[-1]) == 20


class TestConsistency:
    def test_check_missing(self, vectors):
        vectors.index("a", "Document a has some content.", _meta())
        vectors.index("b", "Document b has some content.", _meta())
        assert vectors.check_missing(["a", "c", "b", "d"]) == ["c", "d"]
        assert vectors.all_doc_ids() == {"a", "b"}

    def test_check_missing_before_initialize(self, config, embedder_factory):
        index = VectorIndex(config, embedder_factory)
        assert index.check_missing(["a", "b"]) == ["a", "b"]

    def test_switch_model_uses_separate_table(self, vectors):
        vectors.index("a", "Document a has some content.", _meta())
        spec = vectors.switch_model("multilingual-e5-base")
        assert spec.table_name == "documents_e5_base"
        assert vectors.get_stats()["dimension"] == 768
        assert vectors.check_missing(["a"]) == ["a"]

        vectors.switch_model("all-MiniLM-L6-v2")
        assert vectors.check_missing(["a"]) == []

    def test_failed_switch_keeps_active_model(self, config):
        def factory(spec):
            if spec.id == "multilingual-e5-base":
                raise RuntimeError("download failed")
            return HashingEmbedder(spec.dim)

        index = VectorIndex(config, factory)
        index.initialize()
        index.index("a", "Glaciers are melting quickly in the Alps.", _meta())
        with pytest.raises(ModelLoadFailed):
            index.switch_model("multilingual-e5-base")
        assert index.is_initialized
        assert index.get_stats()["table"] == "documents"
        assert [h.doc_id for h in index.search("glaciers melting")] == ["a"]
        index.index("b", "Another document written after the failed switch.", _meta())
        assert index.check_missing(["a", "b"]) == []
