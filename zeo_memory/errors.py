"""
Error taxonomy for the memory engine.
"""

from typing import Optional


class MemoryEngineError(Exception):
    """Base exception for memory engine errors."""
    pass


class InvalidArgumentError(MemoryEngineError):
    """Raised when a required argument is missing or malformed."""
    
    def __init__(self, message: str, argument: Optional[str] = None):
        super().__init__(message)
        self.argument = argument


class NotFoundError(MemoryEngineError):
    """Raised when a memory or session does not exist."""
    
    def __init__(self, message: str, target: Optional[str] = None):
        super().__init__(message)
        self.target = target


class StorageError(MemoryEngineError):
    """Raised when the durable record store fails."""
    pass


class TransientDependencyError(MemoryEngineError):
    """
    Raised by cache and embedding adapters when the backing service
    is unavailable.
    
    The engine's collaborators absorb this error and degrade instead
    of surfacing it to callers.
    """
    pass
