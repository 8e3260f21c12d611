"""
Content hashing for deduplication.
"""

import hashlib


def normalize_content(content: str) -> str:
    """Lower-case and trim content so trivial formatting differences collapse."""
    return content.lower().strip()


def content_hash(content: str) -> str:
    """
    Compute the deduplication digest of a piece of content.
    
    Args:
        content: The raw memory content
        
    Returns:
        SHA-256 hex digest of the normalized content
    """
    return hashlib.sha256(normalize_content(content).encode("utf-8")).hexdigest()
