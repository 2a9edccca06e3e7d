"""Tests for Reciprocal Rank Fusion and the hybrid searcher."""
from unittest.mock import MagicMock

import pytest

from clipindex.fusion import HybridSearcher, rrf_fuse
from clipindex.models import LexicalHit, VectorHit


def _v(doc_id, i=0):
    return VectorHit(f"v-{doc_id}-{i}", doc_id, i, f"vector text {doc_id}", 0.2, {"title": doc_id})


def _b(doc_id, i=0):
    return LexicalHit(f"b-{doc_id}-{i}", doc_id, i, f"bm25 text {doc_id}", -5.0, {"title": doc_id})


class TestRrfFuse:
    def test_both_lists_beat_single_list(self):
        results = rrf_fuse([_v("x"), _v("both")], [_b("both"), _b("y")], limit=10)
        assert results[0].id == "both"
        assert results[0].vector_rank == 2
        assert results[0].bm25_rank == 1

    @pytest.mark.parametrize("vector_weight,bm25_weight", [
        (0.6, 0.4), (0.5, 0.5), (0.9, 0.1), (0.1, 0.9), (1.0, 0.0), (0.0, 1.0),
    ])
    def test_top_of_both_lists_stays_top(self, vector_weight, bm25_weight):
        vector_hits = [_v("A"), _v("B"), _v("C"), _v("D")]
        bm25_hits = [_b("A"), _b("C"), _b("B"), _b("E")]
        results = rrf_fuse(
            vector_hits, bm25_hits, limit=10,
            vector_weight=vector_weight, bm25_weight=bm25_weight,
        )
        assert results[0].id == "A"
        assert results[0].vector_rank == results[0].bm25_rank == 1
        assert all(results[0].score >= r.score for r in results[1:])

    def test_scores_follow_formula(self):
        results = rrf_fuse([_v("a")], [_b("a")], limit=10, k=60, vector_weight=0.6, bm25_weight=0.4)
        assert results[0].score == pytest.approx(0.6 / 61 + 0.4 / 61)

    def test_weights_decide_single_list_hits(self):
        results = rrf_fuse([_v("vec")], [_b("lex")], limit=10, vector_weight=0.6, bm25_weight=0.4)
        assert [r.id for r in results] == ["vec", "lex"]
        results = rrf_fuse([_v("vec")], [_b("lex")], limit=10, vector_weight=0.2, bm25_weight=0.8)
        assert [r.id for r in results] == ["lex", "vec"]

    def test_sorted_and_truncated(self):
        vec = [_v(f"d{i}") for i in range(10)]
        results = rrf_fuse(vec, [], limit=4)
        assert [r.id for r in results] == ["d0", "d1", "d2", "d3"]
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)

    def test_one_side_empty(self):
        results = rrf_fuse([], [_b("a"), _b("b")], limit=10)
        assert [r.id for r in results] == ["a", "b"]
        assert all(r.vector_rank is None for r in results)
        assert [r.bm25_rank for r in results] == [1, 2]

    def test_both_empty(self):
        assert rrf_fuse([], [], limit=10) == []

    def test_text_prefers_vector_chunk(self):
        results = rrf_fuse([_v("a")], [_b("a")], limit=10)
        assert results[0].text == "vector text a"

    def test_multiple_chunks_of_one_doc_accumulate(self):
        results = rrf_fuse([_v("a", 0), _v("b", 0), _v("a", 1)], [], limit=10)
        assert results[0].id == "a"
        assert results[0].vector_rank == 1
        assert results[0].score == pytest.approx(0.6 / 61 + 0.6 / 63)

    def test_metadata_is_a_copy(self):
        hit = _v("a")
        results = rrf_fuse([hit], [], limit=10)
        results[0].metadata["title"] = "changed"
        assert hit.metadata["title"] == "a"


class TestHybridSearcher:
    @pytest.fixture
    def searcher(self, config):
        lexical = MagicMock()
        vectors = MagicMock()
        s = HybridSearcher(lexical, vectors, config)
        yield s
        s.close()

    def test_fetches_twice_the_limit(self, searcher):
        searcher.lexical.search.return_value = []
        searcher.vectors.search.return_value = []
        searcher.search("query", limit=5)
        assert searcher.lexical.search.call_args[0][1] == 10
        assert searcher.vectors.search.call_args[0][1] == 10

    def test_vector_failure_degrades_to_lexical(self, searcher):
        searcher.vectors.search.side_effect = RuntimeError("model gone")
        searcher.lexical.search.return_value = [_b("a"), _b("b")]
        results = searcher.search("query", limit=5)
        assert [r.id for r in results] == ["a", "b"]

    def test_total_failure_is_empty(self, searcher):
        searcher.vectors.search.side_effect = RuntimeError("model gone")
        searcher.lexical.search.side_effect = RuntimeError("db gone")
        assert searcher.search("query") == []

    def test_blank_query(self, searcher):
        assert searcher.search("   ") == []
        searcher.lexical.search.assert_not_called()

    def test_min_score_floor(self, searcher, config):
        config.min_score = 0.01
        searcher.vectors.search.return_value = [_v("a"), _v("b")]
        searcher.lexical.search.return_value = [_b("a")]
        results = searcher.search("query")
        assert [r.id for r in results] == ["a"]

    def test_caller_weights_override_config(self, searcher):
        searcher.vectors.search.return_value = [_v("vec")]
        searcher.lexical.search.return_value = [_b("lex")]
        results = searcher.search("query", vector_weight=0.0, bm25_weight=1.0)
        assert results[0].id == "lex"
