"""
Type definitions for the memory engine.
"""

import json
import math
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


DEFAULT_SESSION_ID = "default"

# Length of the content preview returned by store operations
PREVIEW_LENGTH = 100

_ID_ALPHABET = string.ascii_lowercase + string.digits


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime as an ISO-8601 UTC string with a 'Z' suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="microseconds").replace("+00:00", "Z")


def now_timestamp() -> str:
    """Current time as a stored timestamp string."""
    return format_timestamp(utc_now())


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a datetime from string or return as-is if already datetime.
    
    Handles ISO format strings including 'Z' suffix for UTC. Naive
    values are assumed to be UTC.
    
    Args:
        value: String or datetime to parse
        
    Returns:
        Parsed datetime or None
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        if value.endswith('Z'):
            value = value[:-1] + '+00:00'
        parsed = datetime.fromisoformat(value)
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def span_in_days(first: Any, last: Any) -> int:
    """Whole days between two timestamps, rounded up."""
    start = parse_datetime(first)
    end = parse_datetime(last)
    if start is None or end is None:
        return 0
    seconds = (end - start).total_seconds()
    return math.ceil(seconds / 86400)


def generate_memory_id() -> str:
    """Generate a memory id of the form ``mem_<epoch-millis>_<suffix>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"mem_{int(time.time() * 1000)}_{suffix}"


def content_preview(content: str, length: int = PREVIEW_LENGTH) -> str:
    """First ``length`` characters of content, with an ellipsis if cut."""
    if len(content) > length:
        return content[:length] + "..."
    return content


def merge_tags(existing: List[str], new: List[str]) -> List[str]:
    """Union of two tag lists, keeping first-seen order."""
    merged: List[str] = []
    for tag in list(existing) + list(new):
        if tag not in merged:
            merged.append(tag)
    return merged


@dataclass
class MemoryRecord:
    """
    A single stored memory.
    
    Attributes:
        id: Opaque memory identifier
        content: The stored text
        timestamp: Creation time (never changes after creation)
        session_id: Caller-chosen label grouping memories
        tags: Ordered, deduplicated tags
        context: Free-form JSON-serializable metadata
        embedding: Embedding vector, None only if generation failed
        content_hash: Digest of the normalized content
        updated_at: Last mutation time
    """
    
    id: str
    content: str
    timestamp: str
    session_id: str = DEFAULT_SESSION_ID
    tags: List[str] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)
    embedding: Optional[List[float]] = None
    content_hash: str = ""
    updated_at: Optional[str] = None
    
    def __post_init__(self):
        if self.updated_at is None:
            self.updated_at = self.timestamp
        self.tags = merge_tags([], self.tags or [])
    
    def to_dict(self) -> Dict[str, Any]:
        """Public representation; the embedding is not included."""
        return {
            "id": self.id,
            "content": self.content,
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "tags": list(self.tags),
            "context": dict(self.context),
            "updated_at": self.updated_at,
        }
    
    def to_projection(self) -> Dict[str, Any]:
        """Lightweight projection cached for recently written memories."""
        return {
            "id": self.id,
            "content": self.content,
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "tags": list(self.tags),
        }
    
    @classmethod
    def from_row(cls, row: Any) -> "MemoryRecord":
        """Create from a database row (mapping with JSON-encoded columns)."""
        tags = json.loads(row["tags"]) if row["tags"] else []
        context = json.loads(row["context"]) if row["context"] else {}
        embedding = json.loads(row["embedding"]) if row["embedding"] else None
        
        return cls(
            id=row["id"],
            content=row["content"],
            timestamp=row["timestamp"],
            session_id=row["session_id"] or DEFAULT_SESSION_ID,
            tags=tags,
            context=context,
            embedding=embedding,
            content_hash=row["content_hash"] or "",
            updated_at=row["updated_at"],
        )


@dataclass
class SessionSummary:
    """Per-session aggregate derived from stored memories."""
    
    session_id: str
    memory_count: int
    first_activity: str
    last_activity: str
    
    @property
    def duration_days(self) -> int:
        return span_in_days(self.first_activity, self.last_activity)
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "memory_count": self.memory_count,
            "last_activity": self.last_activity,
            "first_activity": self.first_activity,
            "duration_days": self.duration_days,
        }


@dataclass
class MemoryStats:
    """Overview statistics over a set of memories."""
    
    total_memories: int = 0
    unique_sessions: int = 0
    avg_content_length: float = 0.0
    earliest_memory: Optional[str] = None
    latest_memory: Optional[str] = None
    
    @property
    def memory_span_days(self) -> int:
        if not self.earliest_memory:
            return 0
        return span_in_days(self.earliest_memory, self.latest_memory)
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_memories": self.total_memories,
            "unique_sessions": self.unique_sessions,
            "avg_content_length": int(math.floor((self.avg_content_length or 0) + 0.5)),
            "memory_span_days": self.memory_span_days,
        }
