"""
Tests for the deterministic embedding provider used by text queries in tests.
"""

import pytest

from knowledge_cache.vector.embeddings import DeterministicHashEmbedding, IEmbeddingProvider


def test_embedding_interface():
    """Test that the embedding provider implements the interface correctly."""
    embedder = DeterministicHashEmbedding(dimension=384)

    assert isinstance(embedder, IEmbeddingProvider)
    assert embedder.get_dimension() == 384


def test_deterministic_embedding():
    """Test that the same input always produces the same output."""
    embedder = DeterministicHashEmbedding(dimension=384)

    vector1 = embedder.embed_text("Hello, world!")
    vector2 = embedder.embed_text("Hello, world!")

    assert vector1 == vector2
    assert len(vector1) == 384


def test_consistent_output_across_instances():
    text = "This is a test string"

    assert DeterministicHashEmbedding(16).embed_text(text) == DeterministicHashEmbedding(16).embed_text(text)


def test_different_inputs_produce_different_vectors():
    embedder = DeterministicHashEmbedding(dimension=32)

    assert embedder.embed_text("Hello, world!") != embedder.embed_text("Goodbye, world!")


@pytest.mark.parametrize("dimension", [1, 7, 8, 9, 384])
def test_dimensions_not_multiple_of_digest(dimension):
    """A SHA-256 digest yields 8 words; other sizes are truncated or chained."""
    vector = DeterministicHashEmbedding(dimension=dimension).embed_text("chained")

    assert len(vector) == dimension
    assert all(-1.0 <= value <= 1.0 for value in vector)


def test_prefix_is_stable_across_dimensions():
    short = DeterministicHashEmbedding(8).embed_text("prefix")
    long = DeterministicHashEmbedding(20).embed_text("prefix")

    assert long[:8] == short


def test_empty_text():
    vector = DeterministicHashEmbedding(dimension=10).embed_text("")

    assert len(vector) == 10


def test_invalid_dimension():
    with pytest.raises(ValueError):
        DeterministicHashEmbedding(dimension=0)
