"""
Pytest configuration and shared fixtures.
"""

import re
import pytest
from unittest.mock import MagicMock

from zeo_memory.cache import InMemoryCache, KeyValueCache, ReadThroughCache
from zeo_memory.embeddings import DEFAULT_DIMENSION, EmbeddingProvider, ResilientEmbedding
from zeo_memory.engine import MemoryEngine
from zeo_memory.errors import TransientDependencyError
from zeo_memory.storage import SQLiteRecordStore
from zeo_memory.types import MemoryRecord


class KeywordEmbedding(EmbeddingProvider):
    """
    Bag-of-words embedding over a growing vocabulary.
    
    Gives tests a model whose similarities follow word overlap, with a
    crude plural strip so "mammal" and "mammals" share a component.
    """
    
    def __init__(self, dimension: int = DEFAULT_DIMENSION):
        self._dimension = dimension
        self.vocabulary = {}
    
    @property
    def dimension(self) -> int:
        return self._dimension
    
    def embed(self, text):
        vector = [0.0] * self._dimension
        for word in re.findall(r"[a-z]+", text.lower()):
            if len(word) > 3 and word.endswith("s"):
                word = word[:-1]
            if word not in self.vocabulary:
                self.vocabulary[word] = len(self.vocabulary) % self._dimension
            vector[self.vocabulary[word]] += 1.0
        return vector


def _build_record(
    memory_id,
    content,
    timestamp="2024-01-01T00:00:00.000000Z",
    session_id="default",
    tags=None,
    embedding=None,
    content_hash="",
):
    """Build a MemoryRecord with test defaults."""
    return MemoryRecord(
        id=memory_id,
        content=content,
        timestamp=timestamp,
        session_id=session_id,
        tags=tags or [],
        context={},
        embedding=embedding,
        content_hash=content_hash,
    )


@pytest.fixture
def make_record():
    """Factory for MemoryRecord objects."""
    return _build_record


@pytest.fixture
def db_path(tmp_path):
    """Path to a fresh SQLite database file."""
    return str(tmp_path / "memory.db")


@pytest.fixture
def record_store(db_path):
    """SQLite record store in a temporary directory."""
    store = SQLiteRecordStore(db_path=db_path)
    yield store
    store.close()


@pytest.fixture
def keyword_embedder():
    """Resilient embedder whose primary model is the keyword embedding."""
    return ResilientEmbedding(primary=KeywordEmbedding())


@pytest.fixture
def fallback_embedder():
    """Resilient embedder with no model, so every vector is the fallback."""
    return ResilientEmbedding()


@pytest.fixture
def cache():
    """Read-through cache over an in-process backend."""
    return ReadThroughCache(InMemoryCache())


@pytest.fixture
def failing_cache_backend():
    """Cache backend whose every call fails like an unreachable server."""
    backend = MagicMock(spec=KeyValueCache)
    error = TransientDependencyError("cache unavailable")
    backend.get.side_effect = error
    backend.put.side_effect = error
    backend.delete.side_effect = error
    backend.list_by_prefix.side_effect = error
    return backend


@pytest.fixture
def engine(record_store, keyword_embedder, cache):
    """Memory engine over temporary storage and the keyword embedder."""
    return MemoryEngine(store=record_store, embedder=keyword_embedder, cache=cache)


@pytest.fixture
def fallback_engine(record_store, fallback_embedder, cache):
    """Memory engine with no embedding model available."""
    return MemoryEngine(store=record_store, embedder=fallback_embedder, cache=cache)
