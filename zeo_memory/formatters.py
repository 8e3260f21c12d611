"""
Export formats for memory sessions.

Three renderings of a list of public memory dicts:

- ``structured``: JSON array, for machines
- ``outline``: Markdown document with one section per memory
- ``flat``: numbered plain-text blocks
"""

import json
from typing import Any, Callable, Dict, List

from .errors import InvalidArgumentError
from .types import now_timestamp


STRUCTURED = "structured"
OUTLINE = "outline"
FLAT = "flat"

DEFAULT_FORMAT = STRUCTURED

# Names accepted for each format
FORMAT_ALIASES = {
    STRUCTURED: STRUCTURED,
    "json": STRUCTURED,
    OUTLINE: OUTLINE,
    "markdown": OUTLINE,
    FLAT: FLAT,
    "text": FLAT,
}

FLAT_SEPARATOR = "\n---\n\n"


def format_structured(memories: List[Dict[str, Any]]) -> str:
    return json.dumps(memories, indent=2)


def format_outline(memories: List[Dict[str, Any]]) -> str:
    """Render memories as a titled Markdown document."""
    output = (
        f"# Memory Export\n\n"
        f"Exported: {now_timestamp()}\n"
        f"Total Memories: {len(memories)}\n\n"
    )
    
    for index, memory in enumerate(memories, start=1):
        output += f"## Memory {index}\n\n"
        output += f"**ID:** {memory['id']}\n"
        output += f"**Timestamp:** {memory['timestamp']}\n"
        output += f"**Tags:** {', '.join(memory['tags'])}\n\n"
        output += f"{memory['content']}\n\n---\n\n"
    
    return output


def format_flat(memories: List[Dict[str, Any]]) -> str:
    """Render memories as ``[index] timestamp`` blocks separated by a rule."""
    return FLAT_SEPARATOR.join(
        f"[{index}] {memory['timestamp']}\n"
        f"{memory['content']}\n"
        f"Tags: {', '.join(memory['tags'])}\n"
        for index, memory in enumerate(memories, start=1)
    )


FORMATTERS: Dict[str, Callable[[List[Dict[str, Any]]], str]] = {
    STRUCTURED: format_structured,
    OUTLINE: format_outline,
    FLAT: format_flat,
}


def resolve_format(name: str) -> str:
    """
    Map a format name or alias to its canonical name.
    
    Raises:
        InvalidArgumentError: If the format is unknown
    """
    if name is None or name == "":
        name = DEFAULT_FORMAT
    canonical = FORMAT_ALIASES.get(name.lower()) if isinstance(name, str) else None
    if canonical is None:
        raise InvalidArgumentError(
            f"Unknown export format: {name}. "
            f"Expected one of: {', '.join(sorted(FORMAT_ALIASES))}",
            argument="format",
        )
    return canonical


def render(memories: List[Dict[str, Any]], format_name: str = DEFAULT_FORMAT) -> str:
    return FORMATTERS[resolve_format(format_name)](memories)
