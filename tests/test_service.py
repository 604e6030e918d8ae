"""
Tests for the KnowledgeCacheService surface.
"""

from unittest.mock import MagicMock

import pytest

from knowledge_cache.core.config import CacheConfig
from knowledge_cache.core.errors import (
    CacheInitializationError,
    DimensionMismatch,
    EmbeddingGenerationError,
    VectorSearchError,
)
from knowledge_cache.core.heartbeat import Heartbeat
from knowledge_cache.core.lifecycle import CacheState
from knowledge_cache.core.repository import IVectorRepository
from knowledge_cache.core.service import KnowledgeCacheService
from knowledge_cache.vector.embeddings import DeterministicHashEmbedding, IEmbeddingProvider
from knowledge_cache.vector.types import ScopeKey, SearchOutcome


@pytest.fixture
def provider():
    return DeterministicHashEmbedding(dimension=8)


@pytest.fixture
def service(repository, provider, config, clock):
    return KnowledgeCacheService(repository, embedding_provider=provider, config=config, clock=clock)


@pytest.fixture
def seeded(repository, provider, scope):
    """Repository content embedded with the test provider."""
    texts = {
        "hours": "Our opening hours are 9 to 5",
        "pricing": "The premium plan costs 20 dollars",
        "refunds": "Refunds are processed within 14 days",
    }
    repository.put_many(scope, [
        {"id": key, "embedding": provider.embed_text(text), "content": text, "category": "faq"}
        for key, text in texts.items()
    ])
    return texts


class TestSearch:

    def test_search_by_embedding(self, service, seeded, provider, scope):
        outcome = service.search(scope, query_embedding=provider.embed_text(seeded["pricing"]))

        assert isinstance(outcome, SearchOutcome)
        assert outcome.ok
        assert outcome.results[0].id == "pricing"
        assert outcome.results[0].score == pytest.approx(1.0)

    def test_search_by_text(self, service, seeded, scope):
        outcome = service.search(scope, query_text=seeded["refunds"], options={"threshold": 0.99})

        assert [r.id for r in outcome.unwrap()] == ["refunds"]

    def test_first_search_is_miss_then_hits(self, service, seeded, provider, scope):
        query = provider.embed_text("anything")
        for _ in range(3):
            service.search(scope, query_embedding=query)

        stats = service.get_stats(scope)
        assert stats.misses == 1
        assert stats.hits == 2
        assert stats.state == "ready"

    def test_empty_result_is_ok(self, service, seeded, provider, scope):
        outcome = service.search(scope, query_embedding=provider.embed_text("x"), options={"threshold": 1.0})

        assert outcome.ok
        assert outcome.results == []

    def test_exactly_one_query_form_required(self, service, scope):
        neither = service.search(scope)
        both = service.search(scope, query_embedding=[1.0], query_text="hi")

        assert isinstance(neither.error, VectorSearchError)
        assert isinstance(both.error, VectorSearchError)

    def test_dimension_mismatch_returned_as_error(self, service, seeded, scope):
        outcome = service.search(scope, query_embedding=[1.0, 0.0])

        assert not outcome.ok
        assert isinstance(outcome.error, DimensionMismatch)

    def test_provider_failure_is_wrapped(self, repository, config, scope):
        failing = MagicMock(spec=IEmbeddingProvider)
        failing.embed_text.side_effect = ConnectionError("provider down")
        service = KnowledgeCacheService(repository, embedding_provider=failing, config=config)

        outcome = service.search(scope, query_text="hello")

        assert isinstance(outcome.error, EmbeddingGenerationError)
        assert isinstance(outcome.error.__cause__, ConnectionError)
        # Not retried
        assert failing.embed_text.call_count == 1

    def test_text_query_without_provider(self, repository, config, scope):
        service = KnowledgeCacheService(repository, config=config)

        outcome = service.search(scope, query_text="hello")

        assert isinstance(outcome.error, EmbeddingGenerationError)

    def test_failed_warm_returned_as_error(self, config, scope):
        repository = MagicMock(spec=IVectorRepository)
        repository.load_all.side_effect = RuntimeError("db down")
        service = KnowledgeCacheService(repository, config=config)

        outcome = service.search(scope, query_embedding=[1.0, 0.0])

        assert isinstance(outcome.error, CacheInitializationError)
        with pytest.raises(CacheInitializationError):
            outcome.unwrap()

    def test_unexpected_exception_wrapped(self, service, scope):
        service.registry.get = MagicMock(side_effect=KeyError("bug"))

        outcome = service.search(scope, query_embedding=[1.0, 0.0])

        assert isinstance(outcome.error, VectorSearchError)
        assert isinstance(outcome.error.__cause__, KeyError)

    def test_scopes_are_isolated(self, service, repository, provider, scope):
        other = ScopeKey("org-2", "bot-1", "v1")
        repository.put(scope, {"id": "mine", "embedding": provider.embed_text("shared text")})
        repository.put(other, {"id": "theirs", "embedding": provider.embed_text("shared text")})

        outcome = service.search(scope, query_text="shared text")

        assert [r.id for r in outcome.results] == ["mine"]


class TestAdministration:

    def test_invalidate_and_warm(self, service, repository, provider, seeded, scope):
        service.warm(scope)
        repository.replace(scope, [
            {"id": f"n{i}", "embedding": provider.embed_text(f"new {i}")} for i in range(5)
        ])

        service.invalidate(scope)
        service.warm(scope)

        assert service.get_stats(scope).entry_count == 5

    def test_invalidate_unknown_scope_is_noop(self, service, scope):
        assert service.invalidate(scope) == 0
        assert scope not in service.registry

    def test_warm_retries_failed_scope(self, service, repository, provider, scope):
        repository.put(scope, {"id": "bad", "embedding": [1.0], "content_hash": "0" * 64})
        with pytest.raises(CacheInitializationError):
            service.warm(scope)

        repository.replace(scope, [{"id": "good", "embedding": provider.embed_text("ok")}])

        assert service.warm(scope) == 1
        assert service.registry.peek(scope).state is CacheState.READY

    def test_warm_scopes_reports_per_scope(self, service, repository, provider, scope):
        broken = ScopeKey("org-1", "bot-2")
        repository.put(scope, {"id": "a", "embedding": provider.embed_text("a")})
        repository.put(broken, {"id": "b", "embedding": []})

        outcome = service.warm_scopes([scope, broken])

        assert outcome == {scope: True, broken: False}

    def test_health_check(self, service, repository, provider, seeded, scope):
        broken = ScopeKey("org-1", "bot-2")
        repository.put(broken, {"id": "b", "embedding": []})
        service.warm_scopes([scope, broken])

        health = service.health_check()

        assert health["ready"] is False
        assert health["scopes"] == 2
        assert health["entry_count"] == 3
        assert health["memory_kb"] > 0
        assert health["failed_scopes"] == [str(broken)]

    def test_get_stats_for_unknown_scope(self, service, scope):
        stats = service.get_stats(scope)

        assert stats.state == "uninitialized"
        assert stats.entry_count == 0
        assert scope not in service.registry

    def test_health_report(self, service, seeded, scope):
        service.warm(scope)

        report = service.health_report(scope).to_dict()

        assert report["stats"]["entry_count"] == 3
        assert report["overall_health"] in ("excellent", "good", "warning", "critical")

    def test_run_integrity_check(self, service, seeded, scope):
        service.warm(scope)
        service.registry.peek(scope).store.get("hours").content = "tampered"

        report = service.run_integrity_check(scope)

        assert report.affected_ids == ["hours"]
        assert service.run_integrity_check(scope).is_clean

    def test_run_integrity_check_requires_loaded_scope(self, service, scope):
        with pytest.raises(CacheInitializationError):
            service.run_integrity_check(scope)

    def test_integrity_sweep(self, service, seeded, scope):
        service.warm(scope)

        assert service.run_integrity_sweep() == {str(scope): "clean"}

    def test_evict_scope(self, service, seeded, scope):
        service.warm(scope)

        assert service.evict_scope(scope) is True
        assert service.get_stats(scope).entry_count == 0

    def test_schedule_maintenance(self, service, seeded, scope):
        heartbeat = Heartbeat()
        service.warm(scope)

        service.schedule_maintenance(heartbeat, interval_sec=60)
        outcomes = heartbeat.run_pending()

        assert set(heartbeat.list_tasks()) == {"knowledge_cache_integrity", "knowledge_cache_scope_expiry"}
        assert outcomes == {"knowledge_cache_integrity": "success", "knowledge_cache_scope_expiry": "success"}

    def test_invalid_config_rejected(self, repository):
        with pytest.raises(ValueError):
            KnowledgeCacheService(repository, config=CacheConfig(eviction_strategy="fifo"))

    def test_close_clears_registry(self, service, seeded, scope):
        service.warm(scope)

        service.close()

        assert len(service.registry) == 0
