"""Chunk types emitted by an agent session.

Each raw runtime event is transformed into zero or more typed chunks
for consumption by a UI or the CLI. The ``type`` field discriminates.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class StreamChunk:
    """Base chunk emitted by an agent session."""
    type: str = ""


@dataclass
class TextChunk(StreamChunk):
    type: str = "text"
    content: str = ""
    parent_tool_use_id: str | None = None


@dataclass
class ThinkingChunk(StreamChunk):
    type: str = "thinking"
    content: str = ""
    parent_tool_use_id: str | None = None


@dataclass
class ToolUseChunk(StreamChunk):
    type: str = "tool_use"
    id: str = ""
    name: str = ""
    input: dict[str, Any] = field(default_factory=dict)
    parent_tool_use_id: str | None = None


@dataclass
class ToolResultChunk(StreamChunk):
    type: str = "tool_result"
    id: str = ""
    content: str = ""
    is_error: bool = False
    parent_tool_use_id: str | None = None


@dataclass
class BlockedChunk(StreamChunk):
    """A tool call rejected by the blocklist or the path sandbox."""
    type: str = "blocked"
    content: str = ""
    tool_name: str = ""
    parent_tool_use_id: str | None = None


@dataclass
class ErrorChunk(StreamChunk):
    type: str = "error"
    content: str = ""


@dataclass
class DoneChunk(StreamChunk):
    type: str = "done"


# Map of chunk type strings to dataclass constructors
_CHUNK_MAP: dict[str, type[StreamChunk]] = {
    "text": TextChunk,
    "thinking": ThinkingChunk,
    "tool_use": ToolUseChunk,
    "tool_result": ToolResultChunk,
    "blocked": BlockedChunk,
    "error": ErrorChunk,
    "done": DoneChunk,
}


def chunk_to_dict(chunk: StreamChunk) -> dict[str, Any]:
    """Convert a typed chunk to a plain dict for JSON serialization."""
    d: dict[str, Any] = {}
    for f in chunk.__dataclass_fields__:
        val = getattr(chunk, f)
        if val is not None:
            d[f] = val
    return d


def dict_to_chunk(data: dict[str, Any]) -> StreamChunk:
    """Convert a plain dict back to a typed chunk."""
    cls = _CHUNK_MAP.get(data.get("type", ""), StreamChunk)
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return cls(**filtered)
