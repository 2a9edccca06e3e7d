"""Tests for the HealthTracker."""
import threading


class TestRecordSearch:
    def test_hit_increments(self, health):
        health.record_search("hybrid", True)
        s = health.status
        assert s["searches_total"] == 1
        assert s["searches_hits"] == 1
        assert s["searches_misses"] == 0
        assert s["searches_by_kind"]["hybrid"] == 1

    def test_miss_increments(self, health):
        health.record_search("lexical", False)
        s = health.status
        assert s["searches_total"] == 1
        assert s["searches_hits"] == 0
        assert s["searches_misses"] == 1

    def test_multiple_kinds(self, health):
        health.record_search("hybrid", True)
        health.record_search("lexical", False)
        health.record_search("vector", True)
        s = health.status
        assert s["searches_total"] == 3
        assert s["searches_hits"] == 2
        assert s["searches_by_kind"] == {"hybrid": 1, "lexical": 1, "vector": 1}

    def test_unknown_kind_not_tracked_per_kind(self, health):
        health.record_search("fuzzy", True)
        s = health.status
        assert s["searches_total"] == 1
        assert "fuzzy" not in s["searches_by_kind"]

    def test_last_search_at_set(self, health):
        assert health.status["last_search_at"] is None
        health.record_search("hybrid", True)
        assert health.status["last_search_at"] is not None


class TestRecordIndex:
    def test_success(self, health):
        health.record_index("doc-1", ok=True, chunks=4)
        s = health.status
        assert s["last_index_ok"] is True
        assert s["last_index_doc"] == "doc-1"
        assert s["last_index_chunks"] == 4
        assert s["documents_indexed"] == 1
        assert s["last_index_at"] is not None

    def test_failure(self, health):
        health.record_index("doc-1", ok=False, error="disk full")
        s = health.status
        assert s["last_index_ok"] is False
        assert s["last_index_error"] == "disk full"
        assert s["index_warnings"] == 1
        assert s["documents_indexed"] == 0

    def test_skipped(self, health):
        health.record_index("doc-1", ok=True, skipped=True)
        s = health.status
        assert s["documents_skipped"] == 1
        assert s["documents_indexed"] == 0

    def test_delete(self, health):
        health.record_delete()
        health.record_delete()
        assert health.status["documents_deleted"] == 2


class TestModelLoad:
    def test_success(self, health):
        health.record_model_load("bge-m3", ok=True)
        s = health.status
        assert s["semantic_ready"] is True
        assert s["embedding_model"] == "bge-m3"
        assert s["model_loaded_at"] is not None

    def test_failure(self, health):
        health.record_model_load("bge-m3", ok=False, error="no weights")
        s = health.status
        assert s["semantic_ready"] is False
        assert s["model_load_error"] == "no weights"


class TestIsHealthy:
    def test_initially_unhealthy(self, health):
        assert health.is_healthy is False

    def test_lexical_ready_is_enough(self, health):
        health.record_ready(lexical=True)
        health.record_model_load("bge-m3", ok=False, error="fail")
        assert health.is_healthy is True

    def test_status_is_a_copy(self, health):
        health.status["searches_by_kind"]["hybrid"] = 99
        assert health.status["searches_by_kind"]["hybrid"] == 0


class TestThreadSafety:
    def test_concurrent_search_recording(self, health):
        """Verify no data corruption under concurrent writes."""
        def record_many():
            for _ in range(100):
                health.record_search("hybrid", True)

        threads = [threading.Thread(target=record_many) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert health.status["searches_total"] == 1000
        assert health.status["searches_by_kind"]["hybrid"] == 1000
