"""
Memory analytics helpers.

Tag histograms, activity windows and the heuristic insights reported
by ``MemoryEngine.analyze_memory``.
"""

from collections import Counter
from datetime import timedelta
from typing import Any, Dict, Iterable, List

from .types import MemoryStats, format_timestamp, utc_now


TOP_TAGS_LIMIT = 10
ACTIVITY_WINDOW_DAYS = 7

# Insight thresholds
LARGE_COLLECTION_THRESHOLD = 100
SHORT_CONTENT_THRESHOLD = 50
FEW_TAGS_THRESHOLD = 5
HIGH_ACTIVITY_THRESHOLD = 20
LOW_ACTIVITY_THRESHOLD = 3


def tag_frequencies(tag_lists: Iterable[List[str]]) -> Dict[str, int]:
    """Count tag occurrences across records, in first-seen order."""
    counts: Counter = Counter()
    for tags in tag_lists:
        counts.update(tags)
    return dict(counts)


def top_tags(frequencies: Dict[str, int], limit: int = TOP_TAGS_LIMIT) -> List[Dict[str, Any]]:
    """Most frequent tags; ties keep first-seen order."""
    ranked = sorted(frequencies.items(), key=lambda item: item[1], reverse=True)
    return [{"tag": tag, "count": count} for tag, count in ranked[:limit]]


def activity_window_start(days: int = ACTIVITY_WINDOW_DAYS) -> str:
    """Timestamp ``days`` ago, comparable with stored timestamps."""
    return format_timestamp(utc_now() - timedelta(days=days))


def generate_insights(
    stats: MemoryStats,
    frequencies: Dict[str, int],
    activity: List[Dict[str, Any]],
) -> List[str]:
    """Simple threshold-based observations about a memory collection."""
    insights = []
    
    if stats.total_memories > LARGE_COLLECTION_THRESHOLD:
        insights.append(
            "Large memory collection - consider organizing with more specific tags"
        )
    
    if stats.avg_content_length < SHORT_CONTENT_THRESHOLD:
        insights.append(
            "Short average content length - consider adding more context to memories"
        )
    
    if len(frequencies) < FEW_TAGS_THRESHOLD:
        insights.append(
            "Limited tag usage - consider adding more descriptive tags for better organization"
        )
    
    if activity:
        recent_count = sum(day["count"] for day in activity)
        if recent_count > HIGH_ACTIVITY_THRESHOLD:
            insights.append("High recent activity - memories are being actively used")
        elif recent_count < LOW_ACTIVITY_THRESHOLD:
            insights.append(
                "Low recent activity - consider reviewing and organizing existing memories"
            )
    
    return insights
