from __future__ import annotations

import json
from pathlib import Path

from vaultkeeper.adapters.events import (
    BlockedChunk,
    ErrorChunk,
    TextChunk,
    ToolResultChunk,
    ToolUseChunk,
)
from vaultkeeper.engine.conversation_store import ConversationRecorder
from vaultkeeper.engine.models import ToolDiffData


def _turn(recorder: ConversationRecorder, prompt: str, *chunks) -> None:
    recorder.start_turn(prompt)
    for chunk in chunks:
        recorder.record(chunk)
    recorder.finish_turn()


def test_text_and_tool_calls_fold_into_turns() -> None:
    recorder = ConversationRecorder()
    _turn(
        recorder, "Check the note",
        TextChunk(content="Let me "),
        TextChunk(content="look."),
        ToolUseChunk(id="t1", name="Read", input={"file_path": "notes/a.md"}),
        ToolResultChunk(id="t1", content="body"),
        ToolUseChunk(id="t2", name="Bash", input={"command": "false"}),
        ToolResultChunk(id="t2", content="exit 1", is_error=True),
        ErrorChunk(content="ignored"),
    )
    user, assistant = recorder.messages
    assert user.content == "Check the note"
    assert assistant.content == "Let me look."
    assert [(c.name, c.status, c.result) for c in assistant.tool_calls] == [
        ("Read", "completed", "body"),
        ("Bash", "error", "exit 1"),
    ]


def test_blocked_results_and_notices() -> None:
    recorder = ConversationRecorder()
    _turn(
        recorder, "Do things",
        ToolUseChunk(id="t1", name="Read", input={}),
        ToolResultChunk(id="t1", content="Read blocked. Access denied: /x is outside the vault.",
                        is_error=True),
        ToolUseChunk(id="t2", name="Bash", input={}),
        BlockedChunk(content="Command blocked by blocklist: matched pattern 'x'", tool_name="Bash"),
    )
    calls = recorder.messages[1].tool_calls
    assert [c.status for c in calls] == ["blocked", "blocked"]
    assert calls[1].result == "Command blocked by blocklist: matched pattern 'x'"


def test_subagent_chunks_are_not_recorded() -> None:
    recorder = ConversationRecorder()
    _turn(
        recorder, "Delegate",
        TextChunk(content="top"),
        TextChunk(content="nested", parent_tool_use_id="task-1"),
    )
    assert recorder.messages[1].content == "top"


def test_empty_assistant_turn_is_dropped() -> None:
    recorder = ConversationRecorder()
    _turn(recorder, "Hello")
    assert [m.role for m in recorder.messages] == ["user"]


def test_attach_diff() -> None:
    recorder = ConversationRecorder()
    recorder.start_turn("Edit")
    recorder.record(ToolUseChunk(id="t1", name="Write", input={"file_path": "a.md"}))
    diff = ToolDiffData(file_path="a.md", original_content="", new_content="x")
    recorder.attach_diff("t1", diff)
    recorder.attach_diff("missing", diff)
    assert recorder.messages[1].tool_calls[0].diff_data is diff


def test_chunks_outside_a_turn_are_ignored() -> None:
    recorder = ConversationRecorder()
    recorder.record(TextChunk(content="stray"))
    assert recorder.messages == []


def test_save_and_load(tmp_path: Path) -> None:
    recorder = ConversationRecorder(session_id="sess-1")
    recorder.start_turn("Summarize", ["notes/a.md"])
    recorder.record(TextChunk(content="Summary."))
    recorder.record(ToolUseChunk(id="t1", name="Read", input={"file_path": "notes/a.md"}))
    recorder.record(ToolResultChunk(id="t1", content="body"))
    recorder.finish_turn()

    path = tmp_path / "chat.json"
    recorder.save(path)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["sessionId"] == "sess-1"
    assert data["messages"][0]["contextFiles"] == ["notes/a.md"]
    assert data["messages"][1]["toolCalls"][0]["status"] == "completed"

    loaded = ConversationRecorder.load(path)
    assert loaded.session_id == "sess-1"
    assert [m.content for m in loaded.messages] == ["Summarize", "Summary."]
    assert loaded.messages[0].id == recorder.messages[0].id
    assert loaded.messages[1].tool_calls[0].result == "body"


def test_load_missing_or_corrupt(tmp_path: Path) -> None:
    assert ConversationRecorder.load(tmp_path / "none.json").messages == []
    path = tmp_path / "bad.json"
    path.write_text("{", encoding="utf-8")
    assert ConversationRecorder.load(path).messages == []
    path.write_text("[]", encoding="utf-8")
    assert ConversationRecorder.load(path).session_id is None


def test_clear() -> None:
    recorder = ConversationRecorder(session_id="s")
    _turn(recorder, "Hi", TextChunk(content="Hello"))
    recorder.clear()
    assert recorder.messages == []
    assert recorder.session_id is None
