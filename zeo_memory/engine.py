"""
Memory Engine - Public API of the memory system.

Stores text with embeddings and retrieves it by id, substring or
semantic similarity, on top of three injected collaborators: a durable
record store, an embedding provider and a read-through cache.
"""

import inspect
import json
import math
import time
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from . import formatters
from .analytics import (
    activity_window_start,
    generate_insights,
    tag_frequencies,
    top_tags,
)
from .cache import (
    MEMORY_PREFIX,
    InMemoryCache,
    KeyValueCache,
    ReadThroughCache,
    RedisCache,
    memory_key,
)
from .config import MemoryEngineConfig, load_config
from .embeddings import EmbeddingProvider, ResilientEmbedding, create_embedding_provider
from .errors import InvalidArgumentError, MemoryEngineError, NotFoundError
from .hashing import content_hash
from .observability import (
    ContextScope,
    MetricsCollector,
    RequestContext,
    StructuredLogger,
    Timer,
)
from .similarity import rank
from .storage import RecordStore, SQLiteRecordStore
from .types import (
    DEFAULT_SESSION_ID,
    MemoryRecord,
    content_preview,
    generate_memory_id,
    merge_tags,
    now_timestamp,
)


logger = StructuredLogger(__name__)


def _round_score(value: float) -> float:
    """Round half up to two decimals."""
    return math.floor(value * 100 + 0.5) / 100


class MemoryEngine:
    """
    Persistent memory with keyword and semantic retrieval.
    
    Every public method is one independent request. Argument errors are
    raised before any I/O, missing targets raise NotFoundError, and only
    failures of the durable store surface as StorageError. Embedding and
    cache outages are logged and absorbed.
    
    Example usage:
        engine = MemoryEngine.from_config()
        
        stored = engine.store("Cats are mammals", tags=["bio"])
        engine.semantic_search("mammal animals", threshold=0.0)
        engine.get_related(stored["memory_id"], limit=3)
    """
    
    DEFAULT_LIMIT = 10
    MAX_LIMIT = 100
    DEFAULT_SIMILARITY_THRESHOLD = 0.7
    RELATED_SIMILARITY_THRESHOLD = 0.3
    DEFAULT_RELATED_LIMIT = 5
    BULK_PREVIEW_LENGTH = 50
    
    ACTIONS = (
        "store",
        "retrieve",
        "search",
        "delete",
        "list_sessions",
        "semantic_search",
        "bulk_import",
        "export_session",
        "analyze_memory",
        "tag_memories",
        "get_related",
    )
    
    # Argument names used by tool callers, mapped to method parameters
    ARGUMENT_ALIASES = {
        "similarity_threshold": "threshold",
        "include_embeddings": "include_details",
    }
    
    def __init__(
        self,
        store: RecordStore,
        embedder: EmbeddingProvider,
        cache: Union[ReadThroughCache, KeyValueCache],
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Initialize the engine.
        
        Args:
            store: Durable record store.
            embedder: Embedding provider. Should not raise; if it does,
                the memory is stored without an embedding.
            cache: Read-through cache, or a bare backend to wrap in one.
            metrics: Metrics collector for ``execute`` timings.
        """
        if not isinstance(cache, ReadThroughCache):
            cache = ReadThroughCache(cache)
        
        self._store = store
        self._embedder = embedder
        self._cache = cache
        self._metrics = metrics or MetricsCollector()
    
    @classmethod
    def from_config(cls, config: Optional[MemoryEngineConfig] = None) -> "MemoryEngine":
        """
        Build an engine with the collaborators described by ``config``.
        
        Args:
            config: Engine configuration. Loaded from file and environment
                when omitted.
        """
        config = config or load_config()
        
        if config.cache.backend == "redis":
            backend: KeyValueCache = RedisCache(
                url=config.cache.redis_url,
                prefix=config.cache.redis_prefix,
            )
        elif config.cache.backend == "memory":
            backend = InMemoryCache(max_size=config.cache.max_size)
        else:
            raise InvalidArgumentError(
                f"Unknown cache backend: {config.cache.backend}",
                argument="cache.backend",
            )
        
        return cls(
            store=SQLiteRecordStore(db_path=config.storage.db_path),
            embedder=create_embedding_provider(config.embedding),
            cache=ReadThroughCache(backend, default_ttl=config.cache.ttl),
        )
    
    @property
    def store_backend(self) -> RecordStore:
        return self._store
    
    @property
    def embedder(self) -> EmbeddingProvider:
        return self._embedder
    
    @property
    def cache(self) -> ReadThroughCache:
        return self._cache
    
    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics
    
    # ========== Dispatch ==========
    
    def execute(self, action: str, **arguments: Any) -> Dict[str, Any]:
        """
        Run an operation by name.
        
        Each call gets its own request context and is timed in the
        metrics collector, successful or not.
        
        Args:
            action: One of ``ACTIONS``
            **arguments: Operation arguments
        
        Raises:
            InvalidArgumentError: Unknown action or argument
        """
        if action not in self.ACTIONS:
            raise InvalidArgumentError(f"Unknown memory action: {action}", argument="action")
        
        handler: Callable[..., Dict[str, Any]] = getattr(self, action)
        accepted = inspect.signature(handler).parameters
        
        kwargs = {}
        for name, value in arguments.items():
            name = self.ARGUMENT_ALIASES.get(name, name)
            if name not in accepted:
                raise InvalidArgumentError(
                    f"Unexpected argument for {action}: {name}",
                    argument=name,
                )
            kwargs[name] = value
        
        with ContextScope(RequestContext(action=action)), Timer(self._metrics, action):
            return handler(**kwargs)
    
    # ========== Core Memory Operations ==========
    
    def store(
        self,
        content: str,
        tags: Optional[Sequence[str]] = None,
        context: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
        memory_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Store a new memory.
        
        Content whose normalized hash matches an existing memory is not
        stored again; the existing id is reported instead. Storing with
        the id of an existing memory overwrites it but keeps its
        creation timestamp.
        
        Args:
            content: The text to remember
            tags: Tags for categorization
            context: Free-form JSON-serializable metadata
            session_id: Session label, "default" when omitted
            memory_id: Explicit id, generated when omitted
        
        Returns:
            ``status`` "stored" with the new id, or "duplicate_detected"
            with ``existing_id``
        """
        self._require_text(content, "content", "store")
        tags = self._validate_tags(tags)
        context = self._validate_context(context)
        session_id = self._optional_text(session_id, "session_id") or DEFAULT_SESSION_ID
        memory_id = self._optional_text(memory_id, "memory_id")
        
        digest = content_hash(content)
        existing_id = self._store.find_by_hash(digest)
        if existing_id is not None:
            logger.info("Duplicate memory content", existing_id=existing_id)
            return {
                "action": "store",
                "status": "duplicate_detected",
                "existing_id": existing_id,
                "message": "Similar content already exists in memory",
            }
        
        embedding = self._embed(content)
        timestamp = now_timestamp()
        created_at = timestamp
        
        if memory_id is not None:
            previous = self._store.get_by_id(memory_id)
            if previous is not None:
                created_at = previous.timestamp
        
        record = MemoryRecord(
            id=memory_id or generate_memory_id(),
            content=content,
            timestamp=created_at,
            session_id=session_id,
            tags=tags,
            context=context,
            embedding=embedding,
            content_hash=digest,
            updated_at=timestamp,
        )
        self._store.insert_or_replace(record)
        
        if memory_id is not None:
            self._cache.evict(memory_key(memory_id))
        self._cache.cache_recent_memory(record)
        
        logger.info("Memory stored", memory_id=record.id, session_id=session_id)
        
        return {
            "action": "store",
            "memory_id": record.id,
            "session_id": session_id,
            "timestamp": record.timestamp,
            "status": "stored",
            "embedding_dimensions": len(embedding) if embedding else 0,
            "content_preview": content_preview(content),
        }
    
    def retrieve(self, memory_id: str) -> Dict[str, Any]:
        """
        Retrieve a memory by id.
        
        Raises:
            NotFoundError: If no memory has this id
        """
        self._require_text(memory_id, "memory_id", "retrieve")
        
        loaded = []
        
        def loader() -> Dict[str, Any]:
            loaded.append(True)
            return self._load_record(memory_id).to_dict()
        
        memory = self._cache.get(memory_key(memory_id), loader)
        self._metrics.increment_counter(
            MetricsCollector.CACHE_MISSES if loaded else MetricsCollector.CACHE_HITS
        )
        
        return {"action": "retrieve", "memory": memory}
    
    def search(
        self,
        query: str,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Find memories whose content contains ``query``.
        
        Matching is a case-sensitive substring test, newest first.
        
        Args:
            query: Text to look for
            session_id: Restrict to one session
            limit: Maximum results (1-100, default 10)
        """
        self._require_text(query, "query", "search")
        session_id = self._optional_text(session_id, "session_id")
        limit = self._validate_limit(limit, self.DEFAULT_LIMIT)
        
        records = self._store.query(session_id=session_id, contains=query, limit=limit)
        
        return {
            "action": "search",
            "query": query,
            "session_id": session_id,
            "total_found": len(records),
            "memories": [record.to_dict() for record in records],
        }
    
    def semantic_search(
        self,
        query: str,
        session_id: Optional[str] = None,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Find memories whose embedding is close to the query's.
        
        Args:
            query: Text to compare against
            session_id: Restrict to one session
            threshold: Minimum cosine similarity (default 0.7)
            limit: Maximum results (1-100, default 10)
        
        Returns:
            Memories with ``similarity_score`` rounded to two decimals,
            best first. An empty list is a normal outcome.
        """
        self._require_text(query, "query", "semantic_search")
        session_id = self._optional_text(session_id, "session_id")
        threshold = self._validate_threshold(threshold)
        limit = self._validate_limit(limit, self.DEFAULT_LIMIT)
        
        return self._semantic_search(query, session_id, threshold, limit)
    
    def _semantic_search(
        self,
        query: str,
        session_id: Optional[str],
        threshold: float,
        limit: int,
    ) -> Dict[str, Any]:
        query_embedding = self._embed(query)
        
        if query_embedding is None:
            ranked = []
        else:
            candidates = self._store.query(session_id=session_id, with_embedding=True)
            ranked = rank(
                query_embedding,
                candidates,
                threshold=threshold,
                limit=limit,
                key=lambda record: record.embedding,
            )
        
        return {
            "action": "semantic_search",
            "query": query,
            "similarity_threshold": threshold,
            "total_found": len(ranked),
            "memories": [
                {
                    **scored.item.to_dict(),
                    "similarity_score": _round_score(scored.similarity),
                }
                for scored in ranked
            ],
        }
    
    def delete(self, memory_id: str) -> Dict[str, Any]:
        """
        Permanently delete a memory and its cached views.
        
        Raises:
            NotFoundError: If nothing was deleted
        """
        self._require_text(memory_id, "memory_id", "delete")
        
        if not self._store.delete_by_id(memory_id):
            raise NotFoundError(f"Memory not found: {memory_id}", target=memory_id)
        
        self._cache.evict_memory(memory_id)
        logger.info("Memory deleted", memory_id=memory_id)
        
        return {
            "action": "delete",
            "memory_id": memory_id,
            "status": "deleted",
        }
    
    # ========== Sessions ==========
    
    def list_sessions(self) -> Dict[str, Any]:
        """One entry per session, most recently active first."""
        sessions = self._store.list_sessions()
        
        return {
            "action": "list_sessions",
            "total_sessions": len(sessions),
            "sessions": [session.to_dict() for session in sessions],
        }
    
    def bulk_import(
        self,
        memories: List[Dict[str, Any]],
        session_id: Optional[str] = None,
        include_details: bool = False,
    ) -> Dict[str, Any]:
        """
        Store many memories into one session.
        
        Entries are stored independently; a failing entry is reported
        in the results and the batch carries on.
        
        Args:
            memories: Entries with ``content`` and optional ``tags`` and
                ``context``
            session_id: Target session; a ``bulk_import_<millis>`` session
                is created when omitted
            include_details: Return the full store result per entry
        """
        if memories is None:
            raise InvalidArgumentError(
                "memories array is required for bulk_import",
                argument="memories",
            )
        if isinstance(memories, (str, bytes, Mapping)) or not isinstance(memories, Sequence):
            raise InvalidArgumentError("memories must be a list", argument="memories")
        
        session_id = (
            self._optional_text(session_id, "session_id")
            or f"bulk_import_{int(time.time() * 1000)}"
        )
        
        results = []
        for entry in memories:
            try:
                if not isinstance(entry, Mapping):
                    raise InvalidArgumentError("memory entry must be an object")
                result = self.store(
                    content=entry.get("content"),
                    tags=entry.get("tags"),
                    context=entry.get("context"),
                    session_id=session_id,
                )
                results.append({"success": True, **result})
            except MemoryEngineError as e:
                content = entry.get("content") if isinstance(entry, Mapping) else None
                results.append({
                    "success": False,
                    "content_preview": content[:self.BULK_PREVIEW_LENGTH]
                    if isinstance(content, str) else "",
                    "error": str(e),
                })
        
        # Stored ids may have replaced records served by read-through lookups
        self._cache.evict_prefix(MEMORY_PREFIX)
        
        successful = sum(1 for result in results if result["success"])
        failed = len(results) - successful
        logger.info(
            "Bulk import finished",
            session_id=session_id,
            successful=successful,
            failed=failed,
        )
        
        if not include_details:
            results = [self._compact_import_result(result) for result in results]
        
        return {
            "action": "bulk_import",
            "session_id": session_id,
            "total_processed": len(results),
            "successful": successful,
            "failed": failed,
            "results": results,
        }
    
    def export_session(
        self,
        session_id: str,
        format: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Export a session's memories, oldest first.
        
        Args:
            session_id: Session to export
            format: "structured" (default), "outline" or "flat"
        
        Raises:
            NotFoundError: If the session has no memories
        """
        self._require_text(session_id, "session_id", "export_session")
        format_name = formatters.resolve_format(format or formatters.DEFAULT_FORMAT)
        
        records = self._store.query(session_id=session_id, ascending=True)
        if not records:
            raise NotFoundError(
                f"No memories found for session: {session_id}",
                target=session_id,
            )
        
        data = formatters.render([record.to_dict() for record in records], format_name)
        
        return {
            "action": "export_session",
            "session_id": session_id,
            "format": format_name,
            "memory_count": len(records),
            "exported_at": now_timestamp(),
            "data": data,
        }
    
    def analyze_memory(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Summarize stored memories.
        
        Reports overview counts, the ten most used tags, per-day
        activity for the last seven days and heuristic insights.
        """
        session_id = self._optional_text(session_id, "session_id")
        
        stats = self._store.get_stats(session_id)
        frequencies = tag_frequencies(self._store.tag_lists(session_id))
        activity = self._store.daily_activity(activity_window_start(), session_id)
        
        return {
            "action": "analyze_memory",
            "session_id": session_id,
            "analysis": {
                "overview": stats.to_dict(),
                "tags": {
                    "total_unique_tags": len(frequencies),
                    "top_tags": top_tags(frequencies),
                },
                "recent_activity": activity,
                "insights": generate_insights(stats, frequencies, activity),
            },
            "generated_at": now_timestamp(),
        }
    
    def tag_memories(self, memory_id: str, tags: Sequence[str]) -> Dict[str, Any]:
        """
        Add tags to a memory.
        
        The result is the union of existing and new tags with existing
        tags first; re-adding a tag is a no-op.
        
        Raises:
            NotFoundError: If no memory has this id
        """
        self._require_text(memory_id, "memory_id", "tag_memories")
        if tags is None:
            raise InvalidArgumentError(
                "memory_id and tags are required for tag_memories",
                argument="tags",
            )
        tags = self._validate_tags(tags)
        
        record = self._load_record(memory_id)
        all_tags = merge_tags(record.tags, tags)
        
        if not self._store.update_tags(memory_id, all_tags, now_timestamp()):
            raise NotFoundError(f"Memory not found: {memory_id}", target=memory_id)
        
        self._cache.evict_memory(memory_id)
        
        return {
            "action": "tag_memories",
            "memory_id": memory_id,
            "tags_added": tags,
            "all_tags": all_tags,
            "status": "updated",
        }
    
    def get_related(
        self,
        memory_id: str,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Find memories semantically related to an existing one.
        
        Uses the memory's own content as the query with a low
        similarity threshold and never returns the memory itself.
        
        Raises:
            NotFoundError: If no memory has this id
            InvalidArgumentError: If the memory has no content
        """
        self._require_text(memory_id, "memory_id", "get_related")
        limit = self._validate_limit(limit, self.DEFAULT_RELATED_LIMIT)
        
        source = self._load_record(memory_id)
        if not source.content:
            raise InvalidArgumentError(
                "Source memory has no content for relation analysis",
                argument="memory_id",
            )
        
        # One extra candidate makes room for the source itself
        related = self._semantic_search(
            source.content,
            session_id=None,
            threshold=self.RELATED_SIMILARITY_THRESHOLD,
            limit=limit + 1,
        )
        related_memories = [
            memory for memory in related["memories"]
            if memory["id"] != memory_id
        ][:limit]
        
        return {
            "action": "get_related",
            "source_memory_id": memory_id,
            "related_memories": related_memories,
            "total_related": len(related_memories),
        }
    
    # ========== Statistics ==========
    
    def get_stats(self) -> Dict[str, Any]:
        """Operation metrics plus cache and embedding counters."""
        summary = self._metrics.get_summary()
        summary["cache_failures"] = self._cache.failures
        return summary
    
    def close(self):
        """Release the store's resources."""
        if hasattr(self._store, 'close'):
            self._store.close()
    
    # ========== Helpers ==========
    
    def _load_record(self, memory_id: str) -> MemoryRecord:
        record = self._store.get_by_id(memory_id)
        if record is None:
            raise NotFoundError(f"Memory not found: {memory_id}", target=memory_id)
        return record
    
    @staticmethod
    def _compact_import_result(result: Dict[str, Any]) -> Dict[str, Any]:
        """Summary row of one bulk entry; failures keep their preview."""
        if not result["success"]:
            return {
                "success": False,
                "content_preview": result["content_preview"],
                "error": result["error"],
            }
        return {
            "success": True,
            "memory_id": result.get("memory_id") or result.get("existing_id"),
            "status": result["status"],
        }
    
    def _embed(self, text: str) -> Optional[List[float]]:
        """Embed text; None only if the provider failed outright."""
        used_fallback = False
        try:
            if isinstance(self._embedder, ResilientEmbedding):
                embedding, used_fallback = self._embedder.embed_tracked(text)
            else:
                embedding = self._embedder.embed(text)
        except Exception as e:
            logger.warning("Embedding generation failed", exception=e)
            return None
        
        if used_fallback:
            self._metrics.increment_counter(MetricsCollector.EMBEDDING_FALLBACKS)
        return embedding or None
    
    @staticmethod
    def _require_text(value: Any, name: str, action: str) -> None:
        if value is None or value == "":
            raise InvalidArgumentError(
                f"{name} is required for {action} action",
                argument=name,
            )
        MemoryEngine._check_text(value, name)
    
    @staticmethod
    def _optional_text(value: Any, name: str) -> Optional[str]:
        if value is None or value == "":
            return None
        MemoryEngine._check_text(value, name)
        return value
    
    @staticmethod
    def _check_text(value: Any, name: str) -> None:
        if not isinstance(value, str):
            raise InvalidArgumentError(f"{name} must be a string", argument=name)
        # Lone surrogates cannot be hashed or bound as SQLite text
        try:
            value.encode("utf-8")
        except UnicodeEncodeError as e:
            raise InvalidArgumentError(
                f"{name} is not valid unicode text",
                argument=name,
            ) from e
    
    @staticmethod
    def _validate_tags(tags: Any) -> List[str]:
        if tags is None:
            return []
        if isinstance(tags, (str, bytes)) or not isinstance(tags, Sequence):
            raise InvalidArgumentError("tags must be a list of strings", argument="tags")
        if not all(isinstance(tag, str) for tag in tags):
            raise InvalidArgumentError("tags must be a list of strings", argument="tags")
        return merge_tags([], list(tags))
    
    @staticmethod
    def _validate_context(context: Any) -> Dict[str, Any]:
        if context is None:
            return {}
        if not isinstance(context, Mapping):
            raise InvalidArgumentError("context must be an object", argument="context")
        if not all(isinstance(key, str) for key in context):
            raise InvalidArgumentError("context keys must be strings", argument="context")
        try:
            json.dumps(context)
        except (TypeError, ValueError) as e:
            raise InvalidArgumentError(
                f"context must be JSON-serializable: {e}",
                argument="context",
            ) from e
        return dict(context)
    
    def _validate_limit(self, limit: Any, default: int) -> int:
        if limit is None:
            return default
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InvalidArgumentError("limit must be an integer", argument="limit")
        if limit < 1 or limit > self.MAX_LIMIT:
            raise InvalidArgumentError(
                f"limit must be between 1 and {self.MAX_LIMIT}",
                argument="limit",
            )
        return limit
    
    def _validate_threshold(self, threshold: Any) -> float:
        if threshold is None:
            return self.DEFAULT_SIMILARITY_THRESHOLD
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise InvalidArgumentError("threshold must be a number", argument="threshold")
        if math.isnan(threshold):
            raise InvalidArgumentError("threshold must be a number", argument="threshold")
        return float(threshold)
