"""
Embedding providers. Real models live outside this package; the cache only
needs text -> vector through IEmbeddingProvider.
"""

from abc import ABC, abstractmethod
import hashlib
import struct


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider for testing purposes.

    Produces reproducible vectors from text without a model: SHA-256 blocks
    are chained (each block hashes the previous digest) until enough 32-bit
    words exist, and every word is mapped into [-1, 1].
    """

    def __init__(self, dimension: int = 384):
        if dimension < 1:
            raise ValueError(f"Embedding dimension must be >= 1: {dimension}")
        self.dimension = dimension

    def embed_text(self, text: str) -> list[float]:
        """Generate deterministic embedding vector using chained hashes."""
        vector = []
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        while len(vector) < self.dimension:
            for (word,) in struct.iter_unpack(">I", digest):
                vector.append((word / 2**32) * 2 - 1)
            digest = hashlib.sha256(digest).digest()
        return vector[:self.dimension]

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension
