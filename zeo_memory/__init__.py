"""
Zeo Memory - Persistent memory with keyword and semantic retrieval.

Stores text memories with tags, context and an embedding vector, and
retrieves them by id, substring or cosine similarity.

Key features:
- SQLite-based persistent storage with content-hash deduplication
- OpenAI embeddings with a deterministic offline fallback
- Read-through caching (in-process or Redis)
- Session listing, export and usage analytics
- Structured logging and operation metrics
"""

from .config import (
    CacheConfig,
    EmbeddingConfig,
    MemoryEngineConfig,
    StorageConfig,
    load_config,
)

from .errors import (
    InvalidArgumentError,
    MemoryEngineError,
    NotFoundError,
    StorageError,
    TransientDependencyError,
)

from .types import (
    MemoryRecord,
    MemoryStats,
    SessionSummary,
)

from .storage import (
    RecordStore,
    SQLiteRecordStore,
)

from .embeddings import (
    EmbeddingProvider,
    FallbackEmbedding,
    OpenAIEmbedding,
    ResilientEmbedding,
    create_embedding_provider,
)

from .cache import (
    InMemoryCache,
    KeyValueCache,
    ReadThroughCache,
    RedisCache,
)

from .engine import (
    MemoryEngine,
)


__version__ = "0.1.0"

__all__ = [
    # Engine
    "MemoryEngine",
    # Config
    "MemoryEngineConfig",
    "StorageConfig",
    "EmbeddingConfig",
    "CacheConfig",
    "load_config",
    # Errors
    "MemoryEngineError",
    "InvalidArgumentError",
    "NotFoundError",
    "StorageError",
    "TransientDependencyError",
    # Types
    "MemoryRecord",
    "MemoryStats",
    "SessionSummary",
    # Storage
    "RecordStore",
    "SQLiteRecordStore",
    # Embeddings
    "EmbeddingProvider",
    "FallbackEmbedding",
    "OpenAIEmbedding",
    "ResilientEmbedding",
    "create_embedding_provider",
    # Cache
    "KeyValueCache",
    "InMemoryCache",
    "RedisCache",
    "ReadThroughCache",
]
