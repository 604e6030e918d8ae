"""
In-memory, per-scope vector knowledge cache with cosine-similarity search.
"""

# vector first: core.integrity and core.lifecycle import from it
from .vector import (
    DeterministicHashEmbedding,
    IEmbeddingProvider,
    ScopeKey,
    SearchOptions,
    SearchOutcome,
    SearchResult,
    VectorCacheStore,
    VectorEntry,
)
from .core.config import CacheConfig
from .core.errors import (
    CacheError,
    CacheInitializationError,
    CacheIntegrityError,
    DimensionMismatch,
    EmbeddingGenerationError,
    InvalidVectorError,
    MemoryManagementError,
    VectorSearchError,
)
from .core.heartbeat import Heartbeat
from .core.lifecycle import CacheLifecycleController, CacheState
from .core.registry import ScopeRegistry
from .core.repository import InMemoryVectorRepository, IVectorRepository
from .core.service import KnowledgeCacheService

__version__ = "0.1.0"

__all__ = [
    'CacheConfig',
    'CacheError',
    'CacheInitializationError',
    'CacheIntegrityError',
    'DimensionMismatch',
    'EmbeddingGenerationError',
    'InvalidVectorError',
    'MemoryManagementError',
    'VectorSearchError',
    'Heartbeat',
    'CacheLifecycleController',
    'CacheState',
    'ScopeRegistry',
    'InMemoryVectorRepository',
    'IVectorRepository',
    'KnowledgeCacheService',
    'DeterministicHashEmbedding',
    'IEmbeddingProvider',
    'ScopeKey',
    'SearchOptions',
    'SearchOutcome',
    'SearchResult',
    'VectorCacheStore',
    'VectorEntry',
]
