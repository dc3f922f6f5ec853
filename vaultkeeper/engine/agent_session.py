"""Per-conversation agent session.

Owns one ToolMediator, one session handle and one StreamTransformer for a
conversation, builds the runtime options and streams chunks for each
query. Only one query runs at a time: starting a new query cancels the
one in flight and waits for it to finish.

Session recovery: when the runtime reports that the resume token is no
longer valid, the session id is cleared and the query is retried once
without it, using a prompt rebuilt from the conversation history.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator

from vaultkeeper.adapters.events import (
    DoneChunk,
    ErrorChunk,
    StreamChunk,
    ToolResultChunk,
)
from vaultkeeper.adapters.file_tracker import FileEditTracker
from vaultkeeper.adapters.permission_store import ApprovalStore

from .config import ApprovalCallback, MediatorConfig, find_claude_cli_path
from .conversation_store import ConversationRecorder
from .mediator import ToolMediator
from .models import ChatMessage, ToolDiffData
from .runner import ClaudeSdkRunner, QueryRunner
from .session_continuity import (
    SessionContinuity,
    build_prompt_with_history_context,
    is_session_expired_error,
)
from .stream import StreamTransformer
from .system_prompt import build_system_prompt

logger = logging.getLogger(__name__)


def merge_hooks(*hook_sets: dict) -> dict:
    """Concatenate hook matcher lists per hook event."""
    merged: dict[str, list] = {}
    for hooks in hook_sets:
        for event, matchers in hooks.items():
            merged.setdefault(event, []).extend(matchers)
    return merged


def format_context_files(context_files: list[str]) -> str:
    return f"Context files: [{', '.join(context_files)}]"


class AgentSession:
    """Runs queries for one conversation against a vault."""

    def __init__(
        self,
        config: MediatorConfig,
        runner: QueryRunner | None = None,
        recorder: ConversationRecorder | None = None,
        approvals: ApprovalStore | None = None,
    ) -> None:
        self._config = config
        self._runner = runner or ClaudeSdkRunner()
        self._file_tracker = FileEditTracker(config.vault_path)
        self._mediator = ToolMediator(
            config, approvals=approvals, file_tracker=self._file_tracker,
        )
        self._recorder = recorder or ConversationRecorder()
        self._continuity = SessionContinuity()
        if self._recorder.session_id:
            self._continuity.capture(self._recorder.session_id)
        self._transformer = StreamTransformer(on_session_id=self._capture_session_id)
        self._lock = asyncio.Lock()
        self._idle = asyncio.Event()
        self._idle.set()
        self._cancelled = False

    @property
    def mediator(self) -> ToolMediator:
        return self._mediator

    @property
    def recorder(self) -> ConversationRecorder:
        return self._recorder

    @property
    def file_tracker(self) -> FileEditTracker:
        return self._file_tracker

    @property
    def is_running(self) -> bool:
        return not self._idle.is_set()

    # ── Session id ──

    def get_session_id(self) -> str | None:
        return self._continuity.session_id

    def set_session_id(self, session_id: str | None) -> None:
        if session_id:
            self._capture_session_id(session_id)
        else:
            self._continuity.reset()
            self._recorder.session_id = None

    def _capture_session_id(self, session_id: str) -> None:
        self._continuity.capture(session_id)
        self._recorder.session_id = session_id

    def set_approval_callback(self, callback: ApprovalCallback | None) -> None:
        self._mediator.channel.set_handler(callback)

    def get_diff_data(self, tool_id: str) -> ToolDiffData | None:
        return self._file_tracker.get_diff_data(tool_id)

    # ── Options ──

    def build_options(self, resume: str | None = None) -> dict[str, Any]:
        """Runtime options for one query. None values are dropped by the runner."""
        config = self._config
        thinking_tokens = config.max_thinking_tokens
        return {
            "cwd": self._mediator.sandbox.vault_path,
            "system_prompt": build_system_prompt(
                config.allowed_export_paths, config.system_prompt,
            ),
            "model": config.resolved_model(),
            "permission_mode": config.permission_mode.sdk_mode,
            "can_use_tool": self._mediator.sdk_can_use_tool,
            "hooks": merge_hooks(
                self._mediator.build_hooks(), self._file_tracker.build_hooks(),
            ),
            "include_partial_messages": True,
            "env": config.parsed_environment(),
            "cli_path": find_claude_cli_path(config.claude_cli_path),
            "resume": resume,
            "max_thinking_tokens": thinking_tokens if thinking_tokens > 0 else None,
        }

    # ── Query ──

    async def query(
        self,
        prompt: str,
        history: list[ChatMessage] | None = None,
        context_files: list[str] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream chunks for one prompt. Always ends with DoneChunk."""
        if self.is_running:
            logger.info("New query while another is in flight; cancelling it")
            await self.cancel()
            await self._idle.wait()
        async with self._lock:
            self._idle.clear()
            self._cancelled = False
            prior = list(history) if history is not None else self._recorder.messages
            self._recorder.start_turn(prompt, context_files)
            try:
                async for chunk in self._run_with_recovery(prompt, prior, context_files):
                    self._recorder.record(chunk)
                    if isinstance(chunk, ToolResultChunk):
                        self._recorder.attach_diff(chunk.id, self.get_diff_data(chunk.id))
                    yield chunk
                yield DoneChunk()
            finally:
                self._recorder.finish_turn()
                self._idle.set()

    async def _run_with_recovery(
        self,
        prompt: str,
        history: list[ChatMessage],
        context_files: list[str] | None,
    ) -> AsyncIterator[StreamChunk]:
        query_prompt = prompt
        if context_files is not None:
            query_prompt = f"{format_context_files(context_files)}\n\n{prompt}"

        try:
            async for chunk in self._run_once(query_prompt, self._continuity.resume_token()):
                yield chunk
            return
        except Exception as exc:
            if self._cancelled:
                logger.info("Query ended after cancel: %s", exc)
                return
            if not is_session_expired_error(exc):
                logger.error("Query failed: %s", exc)
                yield ErrorChunk(content=str(exc))
                return
            logger.warning("Session could not be resumed (%s); retrying with history", exc)

        self._continuity.reset()
        self._recorder.session_id = None
        retry_prompt = build_prompt_with_history_context(
            history, query_prompt, self._config.max_tool_result_chars,
        )
        try:
            async for chunk in self._run_once(retry_prompt, None):
                yield chunk
        except Exception as exc:
            logger.error("Query retry failed: %s", exc)
            yield ErrorChunk(content=str(exc))

    async def _run_once(self, prompt: str, resume: str | None) -> AsyncIterator[StreamChunk]:
        options = self.build_options(resume)
        self._transformer.reset()
        events = self._runner.run(prompt, options)
        try:
            async for raw in events:
                if self._cancelled:
                    logger.debug("Query cancelled; dropping remaining events")
                    break
                for chunk in self._transformer.transform(raw):
                    yield chunk
                for notice in self._mediator.drain_blocked_notices():
                    yield notice
            for notice in self._mediator.drain_blocked_notices():
                yield notice
        finally:
            close = getattr(events, "aclose", None)
            if close is not None:
                await close()

    # ── Lifecycle ──

    async def cancel(self) -> None:
        """Stop the query in flight. Pending approvals resolve as deny."""
        self._cancelled = True
        cancelled = self._mediator.cancel_pending_approvals()
        if cancelled:
            logger.info("Cancelled %d pending approval request(s)", cancelled)
        await self._runner.interrupt()

    def reset_session(self) -> None:
        """Forget the session id and session-scoped approvals."""
        self._continuity.reset()
        self._recorder.session_id = None
        self._mediator.reset_session()
        self._file_tracker.clear()
        self._transformer.reset()

    async def cleanup(self) -> None:
        await self.cancel()
        self.reset_session()
