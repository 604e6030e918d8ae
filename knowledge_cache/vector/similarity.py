"""
Cosine similarity search over a scope store.
Exhaustive scan; filters are applied before scoring.
"""

import time
from typing import Callable, List, Optional

import numpy as np

from .types import SearchResult, VectorEntry, coerce_search_options
from ..core.config import CacheConfig
from ..core.errors import DimensionMismatch, VectorSearchError
from ..util.logging import logger

# Tolerance so threshold=1.0 still matches identical vectors
SIMILARITY_EPSILON = 1e-6


def cosine_similarity(a, b) -> float:
    """Cosine similarity clipped to [-1, 1]; 0.0 when either vector has zero magnitude."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise DimensionMismatch(a.shape[0] if a.ndim else 0, b.shape[0] if b.ndim else 0, "cosine_similarity")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / (norm_a * norm_b), -1.0, 1.0))


def _ranking_key(pair):
    entry, score = pair
    return (-score, -entry.last_accessed_at, entry.id)


class SimilaritySearchEngine:
    """Ranks the entries of a store against a query embedding."""

    def __init__(self, config: Optional[CacheConfig] = None, clock: Callable[[], float] = time.time):
        self.config = config or CacheConfig()
        self._clock = clock

    def _prepare_query(self, query_embedding) -> np.ndarray:
        try:
            query = np.asarray(query_embedding, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise VectorSearchError("Query embedding is not numeric") from e

        if query.ndim != 1 or query.shape[0] == 0:
            raise VectorSearchError(
                "Query embedding must be a non-empty one-dimensional vector",
                {"shape": list(query.shape)},
            )
        if not np.all(np.isfinite(query)):
            raise VectorSearchError("Query embedding contains non-finite values")
        return query

    @staticmethod
    def _passes_filters(entry: VectorEntry, options) -> bool:
        if options.category_filter is not None and entry.category != options.category_filter:
            return False
        if options.source_type_filter is not None and entry.source_type != options.source_type_filter:
            return False
        return True

    def search(self, store, query_embedding, options=None) -> List[SearchResult]:
        """
        Return entries whose cosine similarity to the query is >= threshold.

        Results are ordered by score descending, then most recently accessed,
        then id, and truncated to the limit. Returned entries are touched.
        A zero-magnitude query returns no results.

        Raises:
            VectorSearchError: malformed options, empty or non-finite query
            DimensionMismatch: query length differs from the store dimensionality
        """
        options = coerce_search_options(options)
        threshold = options.threshold if options.threshold is not None else self.config.default_threshold
        limit = options.limit if options.limit is not None else self.config.default_limit

        if limit == 0:
            return []

        query = self._prepare_query(query_embedding)
        query_norm = np.linalg.norm(query)
        started = time.perf_counter()

        with store.read_locked():
            dimension = store.dimension
            if dimension is None:
                return []
            if query.shape[0] != dimension:
                raise DimensionMismatch(dimension, int(query.shape[0]), "query")
            if query_norm == 0:
                # A zero vector cannot be normalized, so it matches nothing
                return []

            # Entries of the wrong length are left for the integrity scan
            candidates = [
                e for e in store.all_entries()
                if e.dimension == dimension and self._passes_filters(e, options)
            ]

            ranked = []
            if candidates:
                matrix = np.vstack([e.embedding for e in candidates]).astype(np.float64)
                norms = np.linalg.norm(matrix, axis=1)
                nonzero = norms > 0
                scores = np.zeros(len(candidates))
                scores[nonzero] = (matrix[nonzero] @ query) / (norms[nonzero] * query_norm)
                scores = np.clip(scores, -1.0, 1.0)

                cutoff = threshold - SIMILARITY_EPSILON
                ranked = [
                    (entry, float(score))
                    for entry, score, ok in zip(candidates, scores, nonzero)
                    if ok and score >= cutoff
                ]
                ranked.sort(key=_ranking_key)
                ranked = ranked[:limit]

            store.record_access([entry for entry, _ in ranked], self._clock())

        logger.log_search(
            scope=store.scope,
            scanned=len(candidates),
            returned=len(ranked),
            threshold=threshold,
            limit=limit,
            duration_ms=(time.perf_counter() - started) * 1000,
            top_score=ranked[0][1] if ranked else None,
        )
        return [SearchResult(entry=entry, score=score) for entry, score in ranked]
