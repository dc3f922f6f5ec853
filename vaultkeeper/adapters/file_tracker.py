"""File edit tracker for Write/Edit/NotebookEdit tool calls.

Captures file content before an edit tool runs and pairs it with the
content after completion, so a UI can render a diff. Files larger than
MAX_DIFF_SIZE are skipped with ``skipped_reason="too_large"``; missing
files and read failures are reported as ``"unavailable"``.

Also the rollback collaborator of the mediator: ``cancel_file_edit`` drops
pending state for an edit the user denied.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from vaultkeeper.engine.models import ToolDiffData

logger = logging.getLogger(__name__)

MAX_DIFF_SIZE = 100 * 1024
EDIT_TOOLS = frozenset({"Write", "Edit", "NotebookEdit"})

_TOOL_NAME_ALIASES: dict[str, str] = {
    "read": "Read",
    "read_file": "Read",
    "write": "Write",
    "write_file": "Write",
    "edit": "Edit",
    "edit_file": "Edit",
    "notebookedit": "NotebookEdit",
    "notebook_edit": "NotebookEdit",
    "bash": "Bash",
    "glob": "Glob",
    "grep": "Grep",
    "ls": "LS",
}


def normalize_tool_name(tool_name: str) -> str:
    """Normalize tool aliases (and ``mcp__server__tool`` names) to canonical names."""
    if not tool_name:
        return ""
    bare_name = tool_name
    if bare_name.startswith("mcp__") and bare_name.count("__") >= 2:
        bare_name = bare_name.split("__", 2)[2]
    return _TOOL_NAME_ALIASES.get(bare_name.lower(), bare_name)


def edit_target_path(tool_name: str, tool_input: dict[str, Any]) -> str:
    """The file an edit tool writes to, or "" for other tools."""
    name = normalize_tool_name(tool_name)
    if name not in EDIT_TOOLS or not isinstance(tool_input, dict):
        return ""
    value = tool_input.get("file_path")
    if name == "NotebookEdit":
        value = tool_input.get("notebook_path") or value
    return value if isinstance(value, str) else ""


@dataclass
class _OriginalContent:
    file_path: str
    content: str | None
    too_large: bool = False


class FileEditTracker:
    """Tracks original content of files touched by edit tools.

    Entries are keyed by tool_use_id. Relative paths resolve against
    ``vault_path``.
    """

    def __init__(self, vault_path: str | Path | None = None) -> None:
        self._vault_path = Path(vault_path) if vault_path else None
        self._originals: dict[str, _OriginalContent] = {}
        self._diffs: dict[str, ToolDiffData] = {}

    def clear(self) -> None:
        self._originals.clear()
        self._diffs.clear()

    def _full_path(self, file_path: str) -> Path:
        path = Path(os.path.expanduser(file_path))
        if path.is_absolute() or self._vault_path is None:
            return path
        return self._vault_path / path

    def capture_pre_tool(
        self,
        tool_id: str,
        tool_name: str,
        tool_input: dict[str, Any],
    ) -> None:
        """Snapshot the target file before an edit tool runs."""
        file_path = edit_target_path(tool_name, tool_input)
        if not file_path or not tool_id:
            return
        full_path = self._full_path(file_path)
        entry = _OriginalContent(file_path=file_path, content="")
        if full_path.exists():
            try:
                if full_path.stat().st_size > MAX_DIFF_SIZE:
                    entry = _OriginalContent(file_path=file_path, content=None, too_large=True)
                else:
                    entry = _OriginalContent(
                        file_path=file_path,
                        content=full_path.read_text(encoding="utf-8"),
                    )
            except (OSError, UnicodeDecodeError) as exc:
                logger.debug("Pre-edit read failed for %s: %s", full_path, exc)
                entry = _OriginalContent(file_path=file_path, content=None)
        self._originals[tool_id] = entry

    def track_change(
        self,
        tool_id: str,
        tool_name: str,
        tool_input: dict[str, Any],
    ) -> ToolDiffData | None:
        """Compute diff data after an edit tool completed."""
        file_path = edit_target_path(tool_name, tool_input)
        if not file_path or not tool_id:
            return None
        original = self._originals.pop(tool_id, None)
        diff = self._compute_diff(file_path, original)
        self._diffs[tool_id] = diff
        return diff

    def _compute_diff(
        self, file_path: str, original: _OriginalContent | None,
    ) -> ToolDiffData:
        if original is None:
            return ToolDiffData(file_path=file_path, skipped_reason="unavailable")
        if original.too_large:
            return ToolDiffData(file_path=file_path, skipped_reason="too_large")
        full_path = self._full_path(file_path)
        if not full_path.exists():
            return ToolDiffData(file_path=file_path, skipped_reason="unavailable")
        try:
            if full_path.stat().st_size > MAX_DIFF_SIZE:
                return ToolDiffData(file_path=file_path, skipped_reason="too_large")
            new_content = full_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("Post-edit read failed for %s: %s", full_path, exc)
            return ToolDiffData(file_path=file_path, skipped_reason="unavailable")
        if original.content is None:
            return ToolDiffData(file_path=file_path, skipped_reason="unavailable")
        return ToolDiffData(
            file_path=file_path,
            original_content=original.content,
            new_content=new_content,
        )

    def get_diff_data(self, tool_id: str) -> ToolDiffData | None:
        return self._diffs.get(tool_id)

    def pending_paths(self) -> list[str]:
        return [entry.file_path for entry in self._originals.values()]

    def cancel_file_edit(self, tool_name: str, tool_input: dict[str, Any]) -> None:
        """Drop pending state for an edit that will not run."""
        file_path = edit_target_path(tool_name, tool_input)
        if not file_path:
            return
        stale = [
            tool_id for tool_id, entry in self._originals.items()
            if entry.file_path == file_path
        ]
        for tool_id in stale:
            del self._originals[tool_id]
        logger.debug(
            "Cancelled file edit tool=%s path=%s dropped=%d",
            tool_name, file_path, len(stale),
        )

    # ── SDK hooks ──

    async def pre_tool_use_hook(
        self, input_data: Any, tool_use_id: str | None, context: Any = None,
    ) -> dict:
        tool_name, tool_input = _hook_tool(input_data)
        self.capture_pre_tool(tool_use_id or "", tool_name, tool_input)
        return {}

    async def post_tool_use_hook(
        self, input_data: Any, tool_use_id: str | None, context: Any = None,
    ) -> dict:
        tool_name, tool_input = _hook_tool(input_data)
        self.track_change(tool_use_id or "", tool_name, tool_input)
        return {}

    def build_hooks(self) -> dict:
        """PreToolUse/PostToolUse hook matchers for edit tools."""
        from claude_agent_sdk import HookMatcher

        matcher = "|".join(sorted(EDIT_TOOLS))
        return {
            "PreToolUse": [HookMatcher(matcher=matcher, hooks=[self.pre_tool_use_hook])],
            "PostToolUse": [HookMatcher(matcher=matcher, hooks=[self.post_tool_use_hook])],
        }


def _hook_tool(input_data: Any) -> tuple[str, dict[str, Any]]:
    if isinstance(input_data, dict):
        tool_name = input_data.get("tool_name", "")
        tool_input = input_data.get("tool_input", {})
    else:
        tool_name = getattr(input_data, "tool_name", "")
        tool_input = getattr(input_data, "tool_input", {})
    if not isinstance(tool_input, dict):
        tool_input = {}
    return str(tool_name or ""), tool_input
