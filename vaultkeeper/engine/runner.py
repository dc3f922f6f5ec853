"""Agent runtime boundary.

AgentSession talks to the runtime through ``QueryRunner``: one call to
``run`` streams raw event dicts for a single prompt, ``interrupt`` stops
the active run. ``ClaudeSdkRunner`` is the claude_agent_sdk-backed
implementation; tests substitute fakes.
"""
from __future__ import annotations

import logging
import os
from dataclasses import asdict, is_dataclass
from typing import Any, AsyncIterator, Protocol

logger = logging.getLogger(__name__)


class QueryRunner(Protocol):
    def run(self, prompt: str, options: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        ...

    async def interrupt(self) -> None:
        ...


# ── SDK message conversion ───────────────────────────────────


def _block_to_dict(block: Any) -> dict[str, Any] | None:
    if isinstance(block, dict):
        return block
    if hasattr(block, "thinking"):
        return {"type": "thinking", "thinking": block.thinking or ""}
    if hasattr(block, "tool_use_id"):
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": getattr(block, "content", None),
            "is_error": bool(getattr(block, "is_error", False)),
        }
    if hasattr(block, "name") and hasattr(block, "input"):
        return {
            "type": "tool_use",
            "id": getattr(block, "id", ""),
            "name": block.name,
            "input": block.input,
        }
    if hasattr(block, "text"):
        return {"type": "text", "text": block.text or ""}
    return None


def _content_to_list(content: Any) -> Any:
    if isinstance(content, str):
        return content
    blocks = []
    for block in content or []:
        converted = _block_to_dict(block)
        if converted is not None:
            blocks.append(converted)
    return blocks


def sdk_message_to_raw(message: Any) -> dict[str, Any]:
    """Convert a claude_agent_sdk message object into a raw event dict.

    Dispatches on the class name so the SDK stays an optional import.
    """
    if isinstance(message, dict):
        return message
    kind = type(message).__name__
    parent = getattr(message, "parent_tool_use_id", None)

    if kind == "SystemMessage":
        data = getattr(message, "data", None) or {}
        raw = dict(data) if isinstance(data, dict) else {}
        raw["type"] = "system"
        raw["subtype"] = getattr(message, "subtype", raw.get("subtype", ""))
        return raw
    if kind == "AssistantMessage":
        return {
            "type": "assistant",
            "message": {"content": _content_to_list(message.content)},
            "parent_tool_use_id": parent,
        }
    if kind == "UserMessage":
        return {
            "type": "user",
            "message": {"content": _content_to_list(message.content)},
            "parent_tool_use_id": parent,
            "tool_use_result": getattr(message, "tool_use_result", None),
        }
    if kind == "StreamEvent":
        return {
            "type": "stream_event",
            "event": getattr(message, "event", None) or {},
            "parent_tool_use_id": parent,
            "session_id": getattr(message, "session_id", None),
        }
    if kind == "ResultMessage":
        return {
            "type": "result",
            "subtype": getattr(message, "subtype", ""),
            "is_error": bool(getattr(message, "is_error", False)),
            "result": getattr(message, "result", None),
            "session_id": getattr(message, "session_id", None),
        }
    if is_dataclass(message) and not isinstance(message, type):
        raw = asdict(message)
        raw.setdefault("type", kind)
        return raw
    return {"type": kind}


# ── SDK runner ───────────────────────────────────────────────


class ClaudeSdkRunner:
    """Runs prompts through ``claude_agent_sdk.ClaudeSDKClient``.

    The client runs in streaming mode so ``can_use_tool`` callbacks and
    hooks can be serviced while the prompt is in flight.
    """

    def __init__(self) -> None:
        self._client: Any = None

    async def run(
        self, prompt: str, options: dict[str, Any],
    ) -> AsyncIterator[dict[str, Any]]:
        # Import SDK lazily so the package imports without it
        from claude_agent_sdk import ClaudeAgentOptions, ClaudeSDKClient

        # The SDK refuses to start nested inside another agent CLI session.
        os.environ.pop("CLAUDECODE", None)

        options_kwargs = {k: v for k, v in options.items() if v is not None}
        logger.info(
            "Starting query model=%s mode=%s resume=%s cwd=%s cli=%s",
            options_kwargs.get("model", "<default>"),
            options_kwargs.get("permission_mode"),
            "yes" if options_kwargs.get("resume") else "no",
            options_kwargs.get("cwd"),
            options_kwargs.get("cli_path", "<sdk-bundled>"),
        )
        sdk_options = ClaudeAgentOptions(**options_kwargs)

        async with ClaudeSDKClient(options=sdk_options) as client:
            self._client = client
            try:
                await client.query(prompt)
                async for message in client.receive_response():
                    yield sdk_message_to_raw(message)
            finally:
                self._client = None

    async def interrupt(self) -> None:
        client = self._client
        if client is None:
            return
        try:
            await client.interrupt()
        except Exception:
            logger.warning("Runtime interrupt failed", exc_info=True)
