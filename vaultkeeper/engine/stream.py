"""Raw runtime events to typed stream chunks.

Raw events are dicts tagged by ``type`` (and ``subtype`` for system
events), as emitted by the agent runtime:

    {"type": "system", "subtype": "init", "session_id": "..."}
    {"type": "assistant", "message": {"content": [...]}, "parent_tool_use_id": ...}
    {"type": "user", "message": {"content": [...]}, "tool_use_result": ...}
    {"type": "stream_event", "event": {"type": "content_block_delta", ...}}
    {"type": "result", "subtype": "success", ...}
    {"type": "error", "error": "..."}

``parse_raw_event`` turns each dict into one variant; StreamTransformer
dispatches on the variant and yields chunks in arrival order.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from vaultkeeper.adapters.events import (
    ErrorChunk,
    StreamChunk,
    TextChunk,
    ThinkingChunk,
    ToolResultChunk,
    ToolUseChunk,
)

logger = logging.getLogger(__name__)


# ── Raw event variants ───────────────────────────────────────


@dataclass
class SystemEvent:
    subtype: str = ""
    session_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class AssistantEvent:
    content: list[Any] = field(default_factory=list)
    parent_tool_use_id: str | None = None


@dataclass
class UserEvent:
    content: list[Any] = field(default_factory=list)
    tool_use_result: Any = None
    parent_tool_use_id: str | None = None


@dataclass
class StreamDeltaEvent:
    event: dict[str, Any] = field(default_factory=dict)
    parent_tool_use_id: str | None = None


@dataclass
class ResultEvent:
    subtype: str = ""
    is_error: bool = False
    result: str | None = None
    session_id: str | None = None


@dataclass
class ErrorEvent:
    message: str = ""


@dataclass
class IgnoredEvent:
    """tool_progress, auth_status and unknown event types."""
    type: str = ""


RawEvent = (
    SystemEvent | AssistantEvent | UserEvent | StreamDeltaEvent
    | ResultEvent | ErrorEvent | IgnoredEvent
)


def _message_content(raw: dict[str, Any]) -> list[Any]:
    message = raw.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    return content if isinstance(content, list) else []


def _error_message(raw: dict[str, Any]) -> str:
    error = raw.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or json.dumps(error))
    if error:
        return str(error)
    return str(raw.get("message") or "Unknown error")


def parse_raw_event(raw: dict[str, Any]) -> RawEvent:
    """Tag a raw runtime event dict with its variant."""
    if not isinstance(raw, dict):
        return IgnoredEvent(type=type(raw).__name__)
    event_type = raw.get("type", "")
    parent = raw.get("parent_tool_use_id")
    if event_type == "system":
        return SystemEvent(
            subtype=str(raw.get("subtype", "")),
            session_id=raw.get("session_id"),
            data=raw,
        )
    if event_type == "assistant":
        return AssistantEvent(content=_message_content(raw), parent_tool_use_id=parent)
    if event_type == "user":
        return UserEvent(
            content=_message_content(raw),
            tool_use_result=raw.get("tool_use_result"),
            parent_tool_use_id=parent,
        )
    if event_type == "stream_event":
        event = raw.get("event")
        return StreamDeltaEvent(
            event=event if isinstance(event, dict) else {},
            parent_tool_use_id=parent,
        )
    if event_type == "result":
        return ResultEvent(
            subtype=str(raw.get("subtype", "")),
            is_error=bool(raw.get("is_error", False)),
            result=raw.get("result"),
            session_id=raw.get("session_id"),
        )
    if event_type == "error":
        return ErrorEvent(message=_error_message(raw))
    return IgnoredEvent(type=str(event_type))


# ── Tool result text ─────────────────────────────────────────


def extract_tool_result_text(content: Any) -> str:
    """Flatten tool result payloads into plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
        if parts:
            return "\n".join(parts)
    if isinstance(content, dict):
        for key in ("content", "text", "stdout", "output", "result"):
            value = content.get(key)
            if isinstance(value, str):
                return value
            if isinstance(value, list):
                nested = extract_tool_result_text(value)
                if nested:
                    return nested
    try:
        return json.dumps(content, default=str)
    except (TypeError, ValueError):
        return str(content)


# ── Transformer ──────────────────────────────────────────────


class StreamTransformer:
    """Turns raw events into chunks, one event at a time.

    Open streamed blocks are tracked by index. Each delta yields its own
    chunk; consumers concatenate. When partial messages are streamed, the
    complete assistant message that follows does not repeat streamed
    text, thinking or tool_use blocks. Streamed kinds are tracked per
    ``parent_tool_use_id`` since subagents do not stream partials.
    """

    def __init__(self, on_session_id: Callable[[str], None] | None = None) -> None:
        self._on_session_id = on_session_id
        self._open_blocks: dict[int, str] = {}
        self._last_index: int | None = None
        self._streamed_kinds: set[tuple[str | None, str]] = set()
        self._streamed_tool_ids: set[str] = set()

    def reset(self) -> None:
        self._open_blocks.clear()
        self._last_index = None
        self._streamed_kinds.clear()
        self._streamed_tool_ids.clear()

    def transform(self, raw: dict[str, Any]) -> Iterator[StreamChunk]:
        event = parse_raw_event(raw)
        if isinstance(event, SystemEvent):
            yield from self._on_system(event)
        elif isinstance(event, AssistantEvent):
            yield from self._on_assistant(event)
        elif isinstance(event, UserEvent):
            yield from self._on_user(event)
        elif isinstance(event, StreamDeltaEvent):
            yield from self._on_stream_event(event)
        elif isinstance(event, ResultEvent):
            logger.debug("Result event subtype=%s is_error=%s", event.subtype, event.is_error)
        elif isinstance(event, ErrorEvent):
            yield ErrorChunk(content=event.message)
        elif isinstance(event, IgnoredEvent):
            logger.debug("Ignoring runtime event type=%s", event.type)
        else:
            raise TypeError(f"Unhandled raw event variant: {event!r}")

    def _on_system(self, event: SystemEvent) -> Iterator[StreamChunk]:
        if event.subtype == "init" and event.session_id:
            logger.debug("Captured session id %s", event.session_id)
            if self._on_session_id is not None:
                self._on_session_id(event.session_id)
        return iter(())

    def _on_assistant(self, event: AssistantEvent) -> Iterator[StreamChunk]:
        parent = event.parent_tool_use_id
        for block in event.content:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "text":
                if (parent, "text") in self._streamed_kinds:
                    continue
                text = block.get("text") or ""
                if text:
                    yield TextChunk(content=text, parent_tool_use_id=parent)
            elif block_type == "thinking":
                if (parent, "thinking") in self._streamed_kinds:
                    continue
                thinking = block.get("thinking") or ""
                if thinking:
                    yield ThinkingChunk(content=thinking, parent_tool_use_id=parent)
            elif block_type == "tool_use":
                tool_id = str(block.get("id") or "")
                if tool_id and tool_id in self._streamed_tool_ids:
                    continue
                yield ToolUseChunk(
                    id=tool_id,
                    name=str(block.get("name") or ""),
                    input=block.get("input") if isinstance(block.get("input"), dict) else {},
                    parent_tool_use_id=parent,
                )

    def _on_user(self, event: UserEvent) -> Iterator[StreamChunk]:
        parent = event.parent_tool_use_id
        out_of_band = event.tool_use_result
        inline = [
            block for block in event.content
            if isinstance(block, dict) and block.get("type") == "tool_result"
        ]
        if not inline:
            if out_of_band is not None and parent:
                yield ToolResultChunk(
                    id=parent,
                    content=extract_tool_result_text(out_of_band),
                    parent_tool_use_id=parent,
                )
            return
        for block in inline:
            content = out_of_band if out_of_band is not None else block.get("content")
            yield ToolResultChunk(
                id=str(block.get("tool_use_id") or ""),
                content=extract_tool_result_text(content),
                is_error=bool(block.get("is_error", False)),
                parent_tool_use_id=parent,
            )

    def _on_stream_event(self, event: StreamDeltaEvent) -> Iterator[StreamChunk]:
        inner = event.event
        parent = event.parent_tool_use_id
        inner_type = inner.get("type")

        if inner_type == "message_start":
            self.reset()
            return
        if inner_type == "content_block_start":
            index = inner.get("index")
            block = inner.get("content_block") or {}
            kind = block.get("type", "")
            if isinstance(index, int):
                self._open_blocks[index] = kind
                self._last_index = index
            if kind == "text":
                self._streamed_kinds.add((parent, "text"))
                text = block.get("text") or ""
                if text:
                    yield TextChunk(content=text, parent_tool_use_id=parent)
            elif kind == "thinking":
                self._streamed_kinds.add((parent, "thinking"))
                thinking = block.get("thinking") or ""
                if thinking:
                    yield ThinkingChunk(content=thinking, parent_tool_use_id=parent)
            elif kind == "tool_use":
                tool_id = str(block.get("id") or "")
                if tool_id:
                    self._streamed_tool_ids.add(tool_id)
                yield ToolUseChunk(
                    id=tool_id,
                    name=str(block.get("name") or ""),
                    input=block.get("input") if isinstance(block.get("input"), dict) else {},
                    parent_tool_use_id=parent,
                )
            return
        if inner_type == "content_block_delta":
            delta = inner.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                self._streamed_kinds.add((parent, "text"))
                text = delta.get("text") or ""
                if text:
                    yield TextChunk(content=text, parent_tool_use_id=parent)
            elif delta_type == "thinking_delta":
                self._streamed_kinds.add((parent, "thinking"))
                thinking = delta.get("thinking") or ""
                if thinking:
                    yield ThinkingChunk(content=thinking, parent_tool_use_id=parent)
            return
        if inner_type == "content_block_stop":
            index = inner.get("index")
            if isinstance(index, int):
                self._open_blocks.pop(index, None)
            return
