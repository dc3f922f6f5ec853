"""Session resume and history-based recovery.

The runtime issues a session id on ``system/init``; later queries pass it
back as a resume token. When the runtime no longer recognizes the id the
session is cleared and the query is retried once with a prompt rebuilt
from the conversation history.
"""
from __future__ import annotations

import logging

from .config import DEFAULT_MAX_TOOL_RESULT_CHARS
from .models import ChatMessage, SessionHandle, ToolCallInfo

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MARKERS: tuple[str, ...] = (
    "session expired",
    "session not found",
    "invalid session",
    "resume failed",
)

HISTORY_PREAMBLE = (
    "The previous session could not be resumed. "
    "Conversation so far:"
)


def is_session_expired_error(error: BaseException | str) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in SESSION_EXPIRED_MARKERS)


class SessionContinuity:
    """Owns the SessionHandle of one conversation."""

    def __init__(self, handle: SessionHandle | None = None) -> None:
        self._handle = handle or SessionHandle()

    @property
    def handle(self) -> SessionHandle:
        return self._handle

    @property
    def session_id(self) -> str | None:
        return self._handle.session_id

    def resume_token(self) -> str | None:
        return self._handle.session_id

    def capture(self, session_id: str) -> None:
        if session_id and session_id != self._handle.session_id:
            logger.debug("Session id captured: %s", session_id)
        self._handle.session_id = session_id or None

    def reset(self) -> None:
        if self._handle.session_id:
            logger.info("Session %s cleared", self._handle.session_id)
        self._handle.session_id = None


# ── History context ──────────────────────────────────────────


def truncate_tool_result_for_context(
    text: str, max_chars: int = DEFAULT_MAX_TOOL_RESULT_CHARS,
) -> str:
    if len(text) <= max_chars:
        return text
    return f"{text[:max_chars]}... (truncated)"


def format_tool_call_for_context(
    tool_call: ToolCallInfo, max_chars: int = DEFAULT_MAX_TOOL_RESULT_CHARS,
) -> str:
    line = f"[Tool {tool_call.name} status={tool_call.status}]"
    result = (tool_call.result or "").strip()
    if not result:
        return line
    excerpt = truncate_tool_result_for_context(" ".join(result.split()), max_chars)
    return f"{line} result: {excerpt}"


def _format_context_files(files: list[str]) -> str:
    return f"Context files: [{', '.join(files)}]"


def build_context_from_history(
    messages: list[ChatMessage],
    max_tool_result_chars: int = DEFAULT_MAX_TOOL_RESULT_CHARS,
) -> str:
    """Newline-joined transcript of prior user/assistant turns.

    Other roles and assistant turns without text or tool calls are skipped.
    """
    lines: list[str] = []
    for message in messages:
        if message.role == "user":
            lines.append(f"User: {message.content}")
            if message.context_files:
                lines.append(_format_context_files(message.context_files))
        elif message.role == "assistant":
            content = (message.content or "").strip()
            if not content and not message.tool_calls:
                continue
            if content:
                lines.append(f"Assistant: {content}")
            for tool_call in message.tool_calls:
                lines.append(format_tool_call_for_context(tool_call, max_tool_result_chars))
    return "\n".join(lines)


def get_last_user_message(messages: list[ChatMessage]) -> ChatMessage | None:
    for message in reversed(messages):
        if message.role == "user":
            return message
    return None


def build_prompt_with_history_context(
    messages: list[ChatMessage],
    prompt: str,
    max_tool_result_chars: int = DEFAULT_MAX_TOOL_RESULT_CHARS,
) -> str:
    """Prompt for a fresh session that carries the prior conversation.

    The new prompt is appended unless it is already the last user turn.
    """
    context = build_context_from_history(messages, max_tool_result_chars)
    if not context:
        return prompt
    parts = [HISTORY_PREAMBLE, "", context]
    last_user = get_last_user_message(messages)
    if last_user is None or last_user.content.strip() != prompt.strip():
        parts.extend(["", f"User: {prompt}"])
    return "\n".join(parts)
