"""
Tests for cosine similarity and the search engine.
"""

import numpy as np
import pytest

from knowledge_cache.core.config import CacheConfig
from knowledge_cache.core.errors import DimensionMismatch, VectorSearchError
from knowledge_cache.vector.similarity import SimilaritySearchEngine, cosine_similarity


@pytest.fixture
def engine(config, clock):
    return SimilaritySearchEngine(config, clock=clock)


class TestCosineSimilarity:

    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_zero_magnitude_gives_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_result_is_clipped(self):
        v = np.array([1e-3, 1e-3, 1e-3], dtype=np.float32)
        assert -1.0 <= cosine_similarity(v, v) <= 1.0

    def test_length_mismatch_raises(self):
        with pytest.raises(DimensionMismatch):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


class TestSearch:

    def test_three_dimensional_scenario(self, engine, store, make_entry):
        """Query [1,0,0] at threshold 0.5 returns only the exact match."""
        store.insert(make_entry("a", [1, 0, 0]))
        store.insert(make_entry("b", [0, 1, 0]))

        results = engine.search(store, [1, 0, 0], {"threshold": 0.5, "limit": 5})

        assert [r.id for r in results] == ["a"]
        assert results[0].score == pytest.approx(1.0)

    def test_ranking_and_threshold(self, engine, store, make_entry):
        """cos(q,a) > cos(q,b) > threshold > cos(q,c) gives [a, b]."""
        store.insert(make_entry("c", [0.0, 1.0]))
        store.insert(make_entry("b", [0.6, 0.8]))
        store.insert(make_entry("a", [0.95, 0.31]))

        results = engine.search(store, [1.0, 0.0], {"threshold": 0.5})

        assert [r.id for r in results] == ["a", "b"]
        assert results[0].score > results[1].score

    def test_limit_zero_returns_empty_without_scanning(self, engine, store, make_entry):
        store.insert(make_entry("a", [1.0, 0.0]))

        assert engine.search(store, [1.0, 0.0], {"limit": 0}) == []
        assert store.get("a").access_count == 0

    def test_threshold_one_returns_exact_matches_only(self, engine, store, make_entry):
        store.insert(make_entry("exact", [0.3, 0.4, 0.5]))
        store.insert(make_entry("scaled", [0.6, 0.8, 1.0]))
        store.insert(make_entry("near", [0.3, 0.4, 0.51]))

        results = engine.search(store, [0.3, 0.4, 0.5], {"threshold": 1.0})

        assert sorted(r.id for r in results) == ["exact", "scaled"]

    def test_limit_truncates(self, engine, store, make_entry):
        for i in range(6):
            store.insert(make_entry(f"e{i}", [1.0, 0.1 * i]))

        results = engine.search(store, [1.0, 0.0], {"threshold": 0.0, "limit": 3})

        assert [r.id for r in results] == ["e0", "e1", "e2"]

    def test_default_options_come_from_config(self, clock, store, make_entry):
        engine = SimilaritySearchEngine(CacheConfig(default_threshold=0.9, default_limit=1), clock=clock)
        store.insert(make_entry("a", [1.0, 0.0]))
        store.insert(make_entry("b", [1.0, 0.05]))
        store.insert(make_entry("c", [0.5, 0.5]))

        results = engine.search(store, [1.0, 0.0])

        assert [r.id for r in results] == ["a"]

    def test_identical_searches_are_deterministic(self, engine, store, make_entry):
        for i in range(5):
            store.insert(make_entry(f"e{i}", [1.0, 0.2 * i, 0.1]))

        first = [(r.id, r.score) for r in engine.search(store, [1.0, 0.3, 0.1], {"threshold": 0.1})]
        second = [(r.id, r.score) for r in engine.search(store, [1.0, 0.3, 0.1], {"threshold": 0.1})]

        assert first == second

    def test_ties_prefer_recent_access_then_id(self, engine, store, make_entry):
        store.insert(make_entry("b", [1.0, 0.0], created_at=10.0))
        store.insert(make_entry("a", [1.0, 0.0], created_at=10.0))
        store.insert(make_entry("c", [2.0, 0.0], created_at=20.0))

        results = engine.search(store, [1.0, 0.0], {"threshold": 0.5})

        assert [r.id for r in results] == ["c", "a", "b"]

    def test_returned_entries_are_touched(self, engine, store, make_entry, clock):
        store.insert(make_entry("hit", [1.0, 0.0]))
        store.insert(make_entry("miss", [0.0, 1.0]))
        clock.advance(50)

        engine.search(store, [1.0, 0.0], {"threshold": 0.5})

        assert store.get("hit").access_count == 1
        assert store.get("hit").last_accessed_at == clock.now
        assert store.get("miss").access_count == 0

    def test_filters_applied_before_scoring(self, engine, store, make_entry):
        store.insert(make_entry("faq", [1.0, 0.0], category="faq", source_type="manual"))
        store.insert(make_entry("pricing", [1.0, 0.0], category="pricing", source_type="website"))

        by_category = engine.search(store, [1.0, 0.0], {"category_filter": "pricing"})
        by_source = engine.search(store, [1.0, 0.0], {"source_type_filter": "manual"})

        assert [r.id for r in by_category] == ["pricing"]
        assert [r.id for r in by_source] == ["faq"]

    def test_zero_magnitude_entries_excluded(self, engine, store, make_entry):
        store.insert(make_entry("zero", [0.0, 0.0]))
        store.insert(make_entry("a", [1.0, 0.0]))

        results = engine.search(store, [1.0, 0.0], {"threshold": -1.0})

        assert [r.id for r in results] == ["a"]

    def test_empty_store_returns_empty(self, engine, store):
        assert engine.search(store, [1.0, 0.0]) == []

    def test_query_dimension_mismatch(self, engine, store, make_entry):
        store.insert(make_entry("a", [1.0, 0.0, 0.0]))

        with pytest.raises(DimensionMismatch) as exc_info:
            engine.search(store, [1.0, 0.0])
        assert exc_info.value.vector_source == "query"

    @pytest.mark.parametrize("query", [[np.nan, 1.0], [np.inf, 0.0], []])
    def test_invalid_query_raises(self, engine, store, make_entry, query):
        store.insert(make_entry("a", [1.0, 0.0]))

        with pytest.raises(VectorSearchError):
            engine.search(store, query)

    def test_zero_magnitude_query_returns_empty(self, engine, store, make_entry):
        store.insert(make_entry("a", [1.0, 0.0]))

        assert engine.search(store, [0.0, 0.0], {"threshold": -1.0}) == []
        assert store.get("a").access_count == 0

    def test_zero_magnitude_query_still_checks_dimension(self, engine, store, make_entry):
        store.insert(make_entry("a", [1.0, 0.0]))

        with pytest.raises(DimensionMismatch):
            engine.search(store, [0.0, 0.0, 0.0])

    def test_malformed_options_raise(self, engine, store, make_entry):
        store.insert(make_entry("a", [1.0, 0.0]))

        with pytest.raises(VectorSearchError):
            engine.search(store, [1.0, 0.0], {"limit": -2})
