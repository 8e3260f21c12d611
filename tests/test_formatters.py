"""
Tests for export formats and analytics helpers.
"""

import json
import pytest

from zeo_memory import analytics
from zeo_memory.errors import InvalidArgumentError
from zeo_memory.formatters import (
    FLAT,
    FLAT_SEPARATOR,
    OUTLINE,
    STRUCTURED,
    format_flat,
    format_outline,
    render,
    resolve_format,
)
from zeo_memory.types import MemoryStats


MEMORIES = [
    {
        "id": "mem_1",
        "content": "First memory",
        "timestamp": "2024-01-01T00:00:00.000000Z",
        "session_id": "s",
        "tags": ["a", "b"],
        "context": {},
        "updated_at": "2024-01-01T00:00:00.000000Z",
    },
    {
        "id": "mem_2",
        "content": "Second memory",
        "timestamp": "2024-01-02T00:00:00.000000Z",
        "session_id": "s",
        "tags": [],
        "context": {"k": "v"},
        "updated_at": "2024-01-02T00:00:00.000000Z",
    },
]


class TestFormats:
    """Test the three export renderings."""
    
    @pytest.mark.parametrize("name,expected", [
        ("structured", STRUCTURED),
        ("json", STRUCTURED),
        ("outline", OUTLINE),
        ("Markdown", OUTLINE),
        ("flat", FLAT),
        ("text", FLAT),
        (None, STRUCTURED),
    ])
    def test_resolve_format(self, name, expected):
        """Canonical names and aliases resolve."""
        assert resolve_format(name) == expected
    
    @pytest.mark.parametrize("name", ["csv", 1, ["json"]])
    def test_unknown_format(self, name):
        """Unknown names and non-string values are rejected."""
        with pytest.raises(InvalidArgumentError) as exc_info:
            resolve_format(name)
        assert exc_info.value.argument == "format"
    
    def test_structured(self):
        """Structured output is the JSON array itself."""
        assert json.loads(render(MEMORIES, "structured")) == MEMORIES
    
    def test_flat(self):
        """Flat blocks are numbered and separated by a rule."""
        output = format_flat(MEMORIES)
        
        assert output == (
            "[1] 2024-01-01T00:00:00.000000Z\nFirst memory\nTags: a, b\n"
            + FLAT_SEPARATOR
            + "[2] 2024-01-02T00:00:00.000000Z\nSecond memory\nTags: \n"
        )
    
    def test_outline(self):
        """Outline output has a header and one section per memory."""
        output = format_outline(MEMORIES)
        
        assert output.startswith("# Memory Export\n\nExported: ")
        assert "Total Memories: 2\n" in output
        assert "## Memory 1\n\n**ID:** mem_1\n" in output
        assert "**Tags:** a, b\n\nFirst memory\n\n---\n\n" in output
        assert "## Memory 2" in output


class TestAnalytics:
    """Test tag histograms and insights."""
    
    def test_tag_frequencies(self):
        """Tags are counted across records."""
        frequencies = analytics.tag_frequencies([["a", "b"], ["b"], []])
        assert frequencies == {"a": 1, "b": 2}
    
    def test_top_tags(self):
        """The most used tags come first, capped at the limit."""
        frequencies = {f"t{i}": i for i in range(15)}
        
        top = analytics.top_tags(frequencies)
        
        assert len(top) == 10
        assert top[0] == {"tag": "t14", "count": 14}
        assert top[-1] == {"tag": "t5", "count": 5}
    
    def test_top_tags_ties_keep_order(self):
        """Equal counts keep first-seen order."""
        top = analytics.top_tags({"x": 1, "y": 1, "z": 2})
        assert [t["tag"] for t in top] == ["z", "x", "y"]
    
    def test_activity_window_start(self):
        """The window start is a comparable timestamp."""
        start = analytics.activity_window_start()
        assert start.endswith("Z")
        assert len(start) == len("2024-01-01T00:00:00.000000Z")
    
    def test_insights_large_active_collection(self):
        """Large, long, well tagged, busy collections."""
        stats = MemoryStats(total_memories=150, avg_content_length=200)
        frequencies = {f"t{i}": 1 for i in range(10)}
        activity = [{"date": "2024-01-02", "count": 15}, {"date": "2024-01-01", "count": 10}]
        
        insights = analytics.generate_insights(stats, frequencies, activity)
        
        assert insights == [
            "Large memory collection - consider organizing with more specific tags",
            "High recent activity - memories are being actively used",
        ]
    
    def test_insights_small_collection(self):
        """Short, sparsely tagged, quiet collections."""
        stats = MemoryStats(total_memories=2, avg_content_length=10)
        activity = [{"date": "2024-01-01", "count": 2}]
        
        insights = analytics.generate_insights(stats, {"a": 2}, activity)
        
        assert len(insights) == 3
        assert insights[0].startswith("Short average content length")
        assert insights[1].startswith("Limited tag usage")
        assert insights[2].startswith("Low recent activity")
    
    def test_no_activity_insight_without_rows(self):
        """Activity insights need at least one active day."""
        stats = MemoryStats(total_memories=0, avg_content_length=100)
        frequencies = {f"t{i}": 1 for i in range(5)}
        
        assert analytics.generate_insights(stats, frequencies, []) == []
