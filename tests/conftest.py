"""
Shared fixtures for knowledge cache tests.
"""

import numpy as np
import pytest

from knowledge_cache.core.config import CacheConfig
from knowledge_cache.core.repository import InMemoryVectorRepository
from knowledge_cache.vector.index import VectorCacheStore
from knowledge_cache.vector.types import ScopeKey, VectorEntry


class FakeClock:
    """Manually advanced clock for deterministic timestamps."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    """Generous limits; individual tests shrink them as needed."""
    return CacheConfig(
        max_memory_kb=1024,
        max_entries=1000,
        eviction_strategy="lru",
        eviction_batch_size=100,
        headroom_factor=0.9,
        warm_batch_size=2,
        warm_timeout_sec=5,
    )


@pytest.fixture
def scope():
    return ScopeKey("org-1", "bot-1", "v1")


@pytest.fixture
def repository():
    return InMemoryVectorRepository()


@pytest.fixture
def make_entry():
    """Factory for entries with fixed timestamps."""
    def _make(entry_id, vector, created_at=100.0, **kwargs):
        return VectorEntry(
            id=entry_id,
            embedding=np.array(vector, dtype=np.float32),
            created_at=created_at,
            **kwargs,
        )
    return _make


@pytest.fixture
def store(config, clock):
    return VectorCacheStore(config=config, scope="org-1/bot-1@v1", clock=clock)
