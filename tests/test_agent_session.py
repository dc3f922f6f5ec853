from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable

import pytest

from vaultkeeper.adapters.events import (
    BlockedChunk,
    DoneChunk,
    ErrorChunk,
    TextChunk,
    ToolResultChunk,
    ToolUseChunk,
)
from vaultkeeper.engine.agent_session import AgentSession, format_context_files, merge_hooks
from vaultkeeper.engine.config import MediatorConfig
from vaultkeeper.engine.models import (
    ApprovalScope,
    ChatMessage,
    PermissionMode,
    ThinkingBudget,
    ToolCallInfo,
)

WAIT_FOR_INTERRUPT = "wait-for-interrupt"


def init(session_id: str) -> dict:
    return {"type": "system", "subtype": "init", "session_id": session_id}


def text(value: str) -> dict:
    return {"type": "assistant", "message": {"content": [{"type": "text", "text": value}]}}


def tool_use(tool_id: str, name: str, tool_input: dict) -> dict:
    return {"type": "assistant", "message": {"content": [
        {"type": "tool_use", "id": tool_id, "name": name, "input": tool_input},
    ]}}


def tool_result(tool_id: str, content: str, is_error: bool = False) -> dict:
    return {"type": "user", "message": {"content": [
        {"type": "tool_result", "tool_use_id": tool_id, "content": content,
         "is_error": is_error},
    ]}}


async def _run_hooks(options: dict, event: str, block: dict) -> str | None:
    """Run matching hooks like the runtime does; return a deny reason if any."""
    for matcher in options["hooks"].get(event, []):
        if matcher.matcher and block["name"] not in matcher.matcher.split("|"):
            continue
        for hook in matcher.hooks:
            result = await hook(
                {"tool_name": block["name"], "tool_input": block["input"]},
                block["id"],
                None,
            )
            output = (result or {}).get("hookSpecificOutput") or {}
            if output.get("permissionDecision") == "deny":
                return output["permissionDecisionReason"]
    return None


class FakeRunner:
    """Scripted runtime: one script per ``run`` call.

    A script is a list of raw events or an exception to raise. Tool uses
    pass through the PreToolUse hooks; allowed ones run their effect (if
    any), then PostToolUse hooks, then report a result.
    """

    def __init__(self, *scripts: Any, effects: dict[str, Callable[[], None]] | None = None):
        self.scripts = list(scripts)
        self.effects = effects or {}
        self.calls: list[tuple[str, dict]] = []
        self.interrupts = 0
        self._interrupted = asyncio.Event()

    async def run(self, prompt: str, options: dict):
        self.calls.append((prompt, options))
        script = self.scripts.pop(0) if self.scripts else []
        if isinstance(script, BaseException):
            raise script
        for event in script:
            if event == WAIT_FOR_INTERRUPT:
                await self._interrupted.wait()
                continue
            if isinstance(event, BaseException):
                raise event
            yield event
            for block in event.get("message", {}).get("content", []):
                if event["type"] != "assistant" or block.get("type") != "tool_use":
                    continue
                reason = await _run_hooks(options, "PreToolUse", block)
                if reason is not None:
                    yield tool_result(block["id"], reason, is_error=True)
                    continue
                effect = self.effects.get(block["id"])
                if effect is not None:
                    effect()
                await _run_hooks(options, "PostToolUse", block)
                yield tool_result(block["id"], "ok")

    async def interrupt(self) -> None:
        self.interrupts += 1
        self._interrupted.set()


def _config(vault: Path, export_dir: Path, **overrides) -> MediatorConfig:
    config = MediatorConfig(
        vault_path=str(vault),
        allowed_export_paths=[str(export_dir)],
        permission_mode=PermissionMode.YOLO,
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


async def _collect(stream) -> list:
    return [chunk async for chunk in stream]


# ── Helpers ──────────────────────────────────────────────────


def test_merge_hooks() -> None:
    merged = merge_hooks({"PreToolUse": ["a"]}, {"PreToolUse": ["b"], "PostToolUse": ["c"]})
    assert merged == {"PreToolUse": ["a", "b"], "PostToolUse": ["c"]}


def test_format_context_files() -> None:
    assert format_context_files(["a.md", "b.md"]) == "Context files: [a.md, b.md]"


# ── Options ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_build_options(vault: Path, export_dir: Path) -> None:
    session = AgentSession(_config(
        vault, export_dir,
        thinking_budget=ThinkingBudget.MEDIUM,
        environment_variables="ANTHROPIC_MODEL=custom/model-x\n# comment",
        system_prompt="Be brief.",
    ), runner=FakeRunner())
    options = session.build_options(resume="sess-9")

    assert options["cwd"] == str(vault)
    assert options["permission_mode"] == "bypassPermissions"
    assert options["model"] == "custom/model-x"
    assert options["env"] == {"ANTHROPIC_MODEL": "custom/model-x"}
    assert options["resume"] == "sess-9"
    assert options["max_thinking_tokens"] == 8000
    assert options["include_partial_messages"] is True
    assert options["can_use_tool"] == session.mediator.sdk_can_use_tool
    assert str(export_dir) in options["system_prompt"]
    assert options["system_prompt"].endswith("Be brief.")
    assert len(options["hooks"]["PreToolUse"]) == 2
    assert len(options["hooks"]["PostToolUse"]) == 1


@pytest.mark.asyncio
async def test_build_options_defaults(vault: Path, export_dir: Path) -> None:
    session = AgentSession(
        _config(vault, export_dir, permission_mode=PermissionMode.NORMAL),
        runner=FakeRunner(),
    )
    options = session.build_options()
    assert options["permission_mode"] == "default"
    assert options["resume"] is None
    assert options["max_thinking_tokens"] is None
    assert options["model"] == "claude-haiku-4-5"


# ── Streaming ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_query_streams_chunks_and_ends_with_done(vault: Path, export_dir: Path) -> None:
    runner = FakeRunner([text("Hello"), {"type": "result", "subtype": "success"}])
    session = AgentSession(_config(vault, export_dir), runner=runner)

    chunks = await _collect(session.query("Hi"))
    assert chunks == [TextChunk(content="Hello"), DoneChunk()]
    assert runner.calls[0][0] == "Hi"
    assert session.is_running is False

    [user, assistant] = session.recorder.messages
    assert (user.role, user.content) == ("user", "Hi")
    assert (assistant.role, assistant.content) == ("assistant", "Hello")


@pytest.mark.asyncio
async def test_context_files_prefix_prompt(vault: Path, export_dir: Path) -> None:
    runner = FakeRunner([text("Done.")])
    session = AgentSession(_config(vault, export_dir), runner=runner)

    await _collect(session.query("Summarize", context_files=["notes/file.md"]))
    assert runner.calls[0][0] == "Context files: [notes/file.md]\n\nSummarize"
    assert session.recorder.messages[0].context_files == ["notes/file.md"]


@pytest.mark.asyncio
async def test_empty_turn_is_not_recorded(vault: Path, export_dir: Path) -> None:
    session = AgentSession(_config(vault, export_dir), runner=FakeRunner([]))
    assert await _collect(session.query("Hi")) == [DoneChunk()]
    assert [m.role for m in session.recorder.messages] == ["user"]


@pytest.mark.asyncio
async def test_blocked_tool_call(vault: Path, export_dir: Path, outside: Path) -> None:
    target = str(outside / "secret.txt")
    runner = FakeRunner([tool_use("t1", "Read", {"file_path": target}), text("Sorry.")])
    session = AgentSession(_config(vault, export_dir), runner=runner)

    chunks = await _collect(session.query("Read my secret"))
    assert isinstance(chunks[0], ToolUseChunk)
    assert isinstance(chunks[1], ToolResultChunk)
    assert chunks[1].is_error is True
    blocked = [c for c in chunks if isinstance(c, BlockedChunk)]
    assert len(blocked) == 1
    assert blocked[0].tool_name == "Read"
    assert blocked[0].content == (
        f"Read blocked. Access denied: {target} is outside the vault."
    )
    assert isinstance(chunks[-1], DoneChunk)

    [tool_call] = session.recorder.messages[-1].tool_calls
    assert tool_call.status == "blocked"


@pytest.mark.asyncio
async def test_blocklisted_command(vault: Path, export_dir: Path) -> None:
    runner = FakeRunner([tool_use("t1", "Bash", {"command": "rm -rf notes"})])
    session = AgentSession(_config(vault, export_dir), runner=runner)

    chunks = await _collect(session.query("Clean up"))
    [blocked] = [c for c in chunks if isinstance(c, BlockedChunk)]
    assert blocked.content == "Command blocked by blocklist: matched pattern 'rm -rf'"


@pytest.mark.asyncio
async def test_edit_diff_attached_to_tool_call(vault: Path, export_dir: Path) -> None:
    note = vault / "notes" / "file.md"
    runner = FakeRunner(
        [tool_use("t1", "Write", {"file_path": "notes/file.md", "content": "# New\n"})],
        effects={"t1": lambda: note.write_text("# New\n", encoding="utf-8")},
    )
    session = AgentSession(_config(vault, export_dir), runner=runner)

    chunks = await _collect(session.query("Rewrite the note"))
    assert ToolResultChunk(id="t1", content="ok") in chunks

    diff = session.get_diff_data("t1")
    assert diff is not None
    assert diff.original_content == "# Note\n"
    assert diff.new_content == "# New\n"
    [tool_call] = session.recorder.messages[-1].tool_calls
    assert tool_call.status == "completed"
    assert tool_call.diff_data is diff


# ── Session continuity ───────────────────────────────────────


@pytest.mark.asyncio
async def test_session_id_captured_and_resumed(vault: Path, export_dir: Path) -> None:
    runner = FakeRunner([init("sess-1"), text("Hi")], [text("Again")])
    session = AgentSession(_config(vault, export_dir), runner=runner)

    await _collect(session.query("First"))
    assert session.get_session_id() == "sess-1"
    assert session.recorder.session_id == "sess-1"

    await _collect(session.query("Second"))
    assert runner.calls[0][1]["resume"] is None
    assert runner.calls[1][1]["resume"] == "sess-1"


@pytest.mark.asyncio
async def test_expired_session_retries_with_history(vault: Path, export_dir: Path) -> None:
    runner = FakeRunner(RuntimeError("Session expired"), [text("Recovered")])
    session = AgentSession(_config(vault, export_dir), runner=runner)
    session.set_session_id("stale")
    history = [
        ChatMessage(role="user", content="First question"),
        ChatMessage(role="assistant", content="Answer", tool_calls=[ToolCallInfo(
            id="tool-1", name="Read", input={"file_path": "notes/file.md"},
            status="completed", result="file content",
        )]),
        ChatMessage(role="user", content="Follow up", context_files=["note.md"]),
    ]

    chunks = await _collect(session.query("Follow up", history=history))

    assert len(runner.calls) == 2
    first_prompt, first_options = runner.calls[0]
    retry_prompt, retry_options = runner.calls[1]
    assert first_prompt == "Follow up"
    assert first_options["resume"] == "stale"
    assert retry_options["resume"] is None
    assert "User: First question" in retry_prompt
    assert "Assistant: Answer" in retry_prompt
    assert "[Tool Read status=completed] result: file content" in retry_prompt
    assert "Context files: [note.md]" in retry_prompt
    assert TextChunk(content="Recovered") in chunks
    assert not any(isinstance(c, ErrorChunk) for c in chunks)
    assert session.get_session_id() is None


@pytest.mark.asyncio
async def test_retry_failure_is_terminal(vault: Path, export_dir: Path) -> None:
    runner = FakeRunner(RuntimeError("Session expired"), RuntimeError("Session expired"))
    session = AgentSession(_config(vault, export_dir), runner=runner)

    chunks = await _collect(session.query(
        "Hi", history=[ChatMessage(role="user", content="Hi")],
    ))
    assert len(runner.calls) == 2
    [error] = [c for c in chunks if isinstance(c, ErrorChunk)]
    assert "Session expired" in error.content
    assert isinstance(chunks[-1], DoneChunk)


@pytest.mark.asyncio
async def test_other_failures_are_not_retried(vault: Path, export_dir: Path) -> None:
    runner = FakeRunner(RuntimeError("Network down"))
    session = AgentSession(_config(vault, export_dir), runner=runner)

    chunks = await _collect(session.query("Hi"))
    assert len(runner.calls) == 1
    assert chunks == [ErrorChunk(content="Network down"), DoneChunk()]


# ── Lifecycle ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cancel_drops_remaining_events(vault: Path, export_dir: Path) -> None:
    runner = FakeRunner([text("one"), text("two"), text("three")])
    session = AgentSession(_config(vault, export_dir), runner=runner)

    chunks = []
    async for chunk in session.query("Count"):
        chunks.append(chunk)
        if chunk == TextChunk(content="one"):
            await session.cancel()

    assert chunks == [TextChunk(content="one"), DoneChunk()]
    assert runner.interrupts == 1
    assert session.is_running is False


@pytest.mark.asyncio
async def test_new_query_cancels_the_one_in_flight(vault: Path, export_dir: Path) -> None:
    runner = FakeRunner(
        [text("one"), WAIT_FOR_INTERRUPT, text("late")],
        [text("second")],
    )
    session = AgentSession(_config(vault, export_dir), runner=runner)

    first = asyncio.create_task(_collect(session.query("First")))
    for _ in range(10):
        await asyncio.sleep(0)
    assert session.is_running is True

    second = await _collect(session.query("Second"))
    assert await first == [TextChunk(content="one"), DoneChunk()]
    assert second == [TextChunk(content="second"), DoneChunk()]
    assert runner.interrupts == 1
    assert [m.content for m in session.recorder.messages] == [
        "First", "one", "Second", "second",
    ]


@pytest.mark.asyncio
async def test_reset_session(vault: Path, export_dir: Path) -> None:
    runner = FakeRunner([init("sess-1"), text("Hi")])
    session = AgentSession(_config(vault, export_dir), runner=runner)
    await _collect(session.query("Hi"))
    session.mediator.approvals.approve("Bash", {"command": "ls"}, ApprovalScope.SESSION)

    session.reset_session()
    assert session.get_session_id() is None
    assert session.recorder.session_id is None
    assert session.mediator.approvals.session_actions == []


@pytest.mark.asyncio
async def test_recorder_session_id_seeds_continuity(vault: Path, export_dir: Path) -> None:
    from vaultkeeper.engine.conversation_store import ConversationRecorder

    runner = FakeRunner([text("Hi")])
    session = AgentSession(
        _config(vault, export_dir),
        runner=runner,
        recorder=ConversationRecorder(session_id="saved"),
    )
    await _collect(session.query("Hi"))
    assert runner.calls[0][1]["resume"] == "saved"
