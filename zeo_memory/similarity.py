"""
Vector similarity and ranking.
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, List, Optional, Sequence, TypeVar


T = TypeVar("T")


@dataclass
class ScoredCandidate(Generic[T]):
    """A ranked candidate and its similarity to the query."""
    
    item: T
    similarity: float


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two vectors.
    
    Returns a value in [-1, 1]. Vectors of different length, empty
    vectors and zero-magnitude vectors score 0.0.
    """
    if not vec1 or not vec2:
        return 0.0
    
    if len(vec1) != len(vec2):
        return 0.0
    
    dot = sum(a * b for a, b in zip(vec1, vec2))
    mag1 = math.sqrt(sum(a * a for a in vec1))
    mag2 = math.sqrt(sum(b * b for b in vec2))
    
    if mag1 == 0 or mag2 == 0:
        return 0.0
    
    cosine = dot / (mag1 * mag2)
    # Guard against floating point drift just outside the valid range
    return max(-1.0, min(1.0, cosine))


def rank(
    query_vector: Sequence[float],
    candidates: Iterable[T],
    threshold: float,
    limit: Optional[int] = None,
    key: Callable[[T], Optional[Sequence[float]]] = lambda item: item,
) -> List[ScoredCandidate[T]]:
    """
    Rank candidates by similarity to a query vector.
    
    Keeps candidates scoring at least ``threshold``, sorts them by
    descending similarity (stable, so ties keep their input order)
    and truncates to ``limit``.
    
    Args:
        query_vector: Vector to compare against
        candidates: Items to rank
        threshold: Minimum similarity to keep
        limit: Maximum number of results, None for all
        key: Extracts the vector from a candidate; items whose vector
            is None are skipped
            
    Returns:
        Scored candidates, best first
    """
    scored: List[ScoredCandidate[Any]] = []
    for item in candidates:
        vector = key(item)
        if vector is None:
            continue
        similarity = cosine_similarity(query_vector, vector)
        if similarity >= threshold:
            scored.append(ScoredCandidate(item=item, similarity=similarity))
    
    scored.sort(key=lambda candidate: candidate.similarity, reverse=True)
    
    if limit is not None:
        scored = scored[:limit]
    return scored
