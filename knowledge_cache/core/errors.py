"""
Error taxonomy for the knowledge cache.

Every failure surfaced to callers derives from ``CacheError`` and carries a
stable ``code`` plus a ``context`` dict for logging and diagnostics.
"""

from typing import Any, Dict, Optional


class CacheError(Exception):
    """Base class for all cache failures."""
    code = "CACHE_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


class DimensionMismatch(CacheError):
    """A query or inserted vector disagrees with the scope dimensionality."""
    code = "DIMENSION_MISMATCH"

    def __init__(self, expected: int, actual: int, vector_source: str, context: Optional[Dict[str, Any]] = None):
        self.expected = expected
        self.actual = actual
        self.vector_source = vector_source
        ctx = {"expected": expected, "actual": actual, "vector_source": vector_source}
        if context:
            ctx.update(context)
        super().__init__(
            f"Vector dimension {actual} does not match expected dimension {expected} ({vector_source})",
            ctx,
        )


class InvalidVectorError(CacheError):
    """An entry or payload failed boundary validation (empty, non-finite, malformed)."""
    code = "INVALID_VECTOR"


class EmbeddingGenerationError(CacheError):
    """The external embedding provider failed."""
    code = "EMBEDDING_GENERATION_FAILED"


class CacheInitializationError(CacheError):
    """Warm-up failed; the scope is unusable until an explicit retry."""
    code = "CACHE_INITIALIZATION_FAILED"


class MemoryManagementError(CacheError):
    """Eviction could not bring usage under the memory budget."""
    code = "MEMORY_MANAGEMENT_FAILED"


class CacheIntegrityError(CacheError):
    """Corruption was detected and could not be repaired."""
    code = "CACHE_INTEGRITY_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None, report: Any = None):
        super().__init__(message, context)
        self.report = report


class VectorSearchError(CacheError):
    """Search-time failure not otherwise classified."""
    code = "VECTOR_SEARCH_FAILED"
