"""
Vector layer - entries, the per-scope store, similarity search and embedding providers.
"""

# Package initialization for vector module
from .types import (
    CacheStats,
    ScopeKey,
    SearchOptions,
    SearchOutcome,
    SearchResult,
    VectorEntry,
    VectorEntryPayload,
    coerce_entry,
)
from .index import IVectorStore, VectorCacheStore
from .similarity import SimilaritySearchEngine, cosine_similarity
from .embeddings import IEmbeddingProvider, DeterministicHashEmbedding

__all__ = [
    'CacheStats',
    'ScopeKey',
    'SearchOptions',
    'SearchOutcome',
    'SearchResult',
    'VectorEntry',
    'VectorEntryPayload',
    'coerce_entry',
    'IVectorStore',
    'VectorCacheStore',
    'SimilaritySearchEngine',
    'cosine_similarity',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
]
