"""Conversation history built from the chunk stream.

Folds chunks into ChatMessage/ToolCallInfo turns so a later query can
rebuild context when its session cannot be resumed. Conversations can
be saved to and loaded from JSON together with their session id.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from vaultkeeper.adapters.events import (
    BlockedChunk,
    ErrorChunk,
    StreamChunk,
    TextChunk,
    ToolResultChunk,
    ToolUseChunk,
)
from vaultkeeper.shared.formatters.tool_call import is_blocked_tool_result, truncate_result
from vaultkeeper.shared.services.durable_write import atomic_write_json

from .models import ChatMessage, ToolCallInfo, ToolDiffData, _now_ms

logger = logging.getLogger(__name__)


class ConversationRecorder:
    """Ordered user/assistant turns of one conversation.

    Single-event-loop usage only. Subagent activity (chunks with a
    ``parent_tool_use_id``) is not recorded as top-level turns.
    """

    def __init__(
        self,
        messages: list[ChatMessage] | None = None,
        session_id: str | None = None,
    ) -> None:
        self._messages: list[ChatMessage] = list(messages or [])
        self._current: ChatMessage | None = None
        self.session_id = session_id

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def start_turn(self, prompt: str, context_files: list[str] | None = None) -> ChatMessage:
        """Record the user prompt and open an assistant turn."""
        self.finish_turn()
        user = ChatMessage(role="user", content=prompt, context_files=context_files)
        self._messages.append(user)
        self._current = ChatMessage(role="assistant", content="")
        self._messages.append(self._current)
        return user

    def record(self, chunk: StreamChunk) -> None:
        current = self._current
        if current is None:
            return
        if getattr(chunk, "parent_tool_use_id", None):
            return
        if isinstance(chunk, TextChunk):
            current.content += chunk.content
        elif isinstance(chunk, ToolUseChunk):
            current.tool_calls.append(
                ToolCallInfo(id=chunk.id, name=chunk.name, input=dict(chunk.input))
            )
        elif isinstance(chunk, ToolResultChunk):
            tool_call = self._find_tool_call(chunk.id)
            if tool_call is None:
                return
            tool_call.result = truncate_result(chunk.content)
            if is_blocked_tool_result(chunk.content, chunk.is_error):
                tool_call.status = "blocked"
            elif chunk.is_error:
                tool_call.status = "error"
            else:
                tool_call.status = "completed"
        elif isinstance(chunk, BlockedChunk):
            for tool_call in reversed(current.tool_calls):
                if tool_call.name == chunk.tool_name and tool_call.status == "running":
                    tool_call.status = "blocked"
                    tool_call.result = chunk.content
                    break
        elif isinstance(chunk, ErrorChunk):
            logger.debug("Turn ended with error: %s", chunk.content)

    def attach_diff(self, tool_id: str, diff: ToolDiffData | None) -> None:
        tool_call = self._find_tool_call(tool_id)
        if tool_call is not None and diff is not None:
            tool_call.diff_data = diff

    def _find_tool_call(self, tool_id: str) -> ToolCallInfo | None:
        if self._current is None:
            return None
        for tool_call in self._current.tool_calls:
            if tool_call.id == tool_id:
                return tool_call
        return None

    def finish_turn(self) -> None:
        """Close the open assistant turn, dropping it if empty."""
        current = self._current
        self._current = None
        if current is None:
            return
        if not current.content.strip() and not current.tool_calls:
            self._messages.remove(current)

    def clear(self) -> None:
        self._messages.clear()
        self._current = None
        self.session_id = None

    # ── Persistence ──

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "updatedAt": _now_ms(),
            "messages": [_message_to_dict(m) for m in self._messages],
        }

    def save(self, path: Path) -> None:
        try:
            atomic_write_json(path, self.to_dict())
        except OSError:
            logger.warning("Failed to write conversation %s", path)

    @classmethod
    def load(cls, path: Path) -> ConversationRecorder:
        """Load a saved conversation. Missing or corrupt files give an empty one."""
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Failed to load conversation %s", path)
            return cls()
        if not isinstance(data, dict):
            return cls()
        messages = [
            _message_from_dict(m) for m in data.get("messages", [])
            if isinstance(m, dict)
        ]
        return cls(messages=messages, session_id=data.get("sessionId"))


def _message_to_dict(message: ChatMessage) -> dict[str, Any]:
    d: dict[str, Any] = {
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "timestamp": message.timestamp,
    }
    if message.context_files is not None:
        d["contextFiles"] = list(message.context_files)
    if message.tool_calls:
        d["toolCalls"] = [
            {
                "id": tc.id,
                "name": tc.name,
                "input": tc.input,
                "status": tc.status,
                "result": tc.result,
            }
            for tc in message.tool_calls
        ]
    return d


def _message_from_dict(data: dict[str, Any]) -> ChatMessage:
    tool_calls = [
        ToolCallInfo(
            id=str(tc.get("id", "")),
            name=str(tc.get("name", "")),
            input=tc.get("input") if isinstance(tc.get("input"), dict) else {},
            status=str(tc.get("status", "completed")),
            result=tc.get("result"),
        )
        for tc in data.get("toolCalls", [])
        if isinstance(tc, dict)
    ]
    message = ChatMessage(
        role=str(data.get("role", "user")),
        content=str(data.get("content", "")),
        tool_calls=tool_calls,
        context_files=data.get("contextFiles"),
    )
    if data.get("id"):
        message.id = str(data["id"])
    if isinstance(data.get("timestamp"), int):
        message.timestamp = data["timestamp"]
    return message
