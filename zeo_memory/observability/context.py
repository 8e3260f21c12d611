"""
Request context propagation.

Each engine operation runs inside a ``RequestContext`` so log lines
emitted anywhere below it carry the same request id.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


_current_context: ContextVar[Optional["RequestContext"]] = ContextVar(
    "current_request_context", default=None
)


@dataclass
class RequestContext:
    """
    Context for one memory operation.
    
    Attributes:
        request_id: Unique identifier for the operation
        action: Operation name (store, semantic_search, ...)
        start_time: When the operation started
        attributes: Additional context attributes
    """
    
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    action: Optional[str] = None
    start_time: datetime = field(default_factory=datetime.now)
    attributes: Dict[str, Any] = field(default_factory=dict)
    
    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "action": self.action,
            "start_time": self.start_time.isoformat(),
            "attributes": self.attributes,
        }


class ContextManager:
    """Access to the request context of the current execution flow."""
    
    @staticmethod
    def get_current() -> Optional[RequestContext]:
        return _current_context.get()
    
    @staticmethod
    def set_current(context: Optional[RequestContext]) -> None:
        _current_context.set(context)


class ContextScope:
    """
    Context manager for scoped request context.
    
    Usage:
        with ContextScope(RequestContext(action="store")):
            # context is active here
            pass
        # previous context is restored
    """
    
    def __init__(self, context: RequestContext):
        self.context = context
        self.previous: Optional[RequestContext] = None
    
    def __enter__(self) -> RequestContext:
        self.previous = ContextManager.get_current()
        ContextManager.set_current(self.context)
        return self.context
    
    def __exit__(self, exc_type, exc_val, exc_tb):
        ContextManager.set_current(self.previous)
        return False
