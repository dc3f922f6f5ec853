"""Canonical action patterns for remembered approvals.

Every tool call is reduced to one string pattern that approvals are
stored under and matched against:

    Bash          → the exact command
    Read/Write/Edit → file_path
    NotebookEdit  → notebook_path (or file_path)
    Glob/Grep     → the search pattern
    anything else → JSON of the tool input
"""
from __future__ import annotations

import json
from typing import Any

from .models import ApprovalScope

BASH_TOOLS = frozenset({"Bash"})
FILE_TOOLS = frozenset({"Read", "Write", "Edit", "NotebookEdit"})
SEARCH_TOOLS = frozenset({"Glob", "Grep"})


def _input_json(tool_input: dict[str, Any]) -> str:
    return json.dumps(tool_input, sort_keys=True, default=str)


def get_action_pattern(tool_name: str, tool_input: dict[str, Any]) -> str:
    if tool_name in BASH_TOOLS:
        command = tool_input.get("command")
        return command if isinstance(command, str) else ""
    if tool_name == "NotebookEdit":
        path = tool_input.get("notebook_path") or tool_input.get("file_path")
        return path if isinstance(path, str) else ""
    if tool_name in FILE_TOOLS:
        path = tool_input.get("file_path")
        return path if isinstance(path, str) else ""
    if tool_name in SEARCH_TOOLS:
        pattern = tool_input.get("pattern")
        return pattern if isinstance(pattern, str) else ""
    return _input_json(tool_input)


def get_action_description(tool_name: str, tool_input: dict[str, Any]) -> str:
    """Human-readable summary shown in approval prompts."""
    pattern = get_action_pattern(tool_name, tool_input)
    if tool_name == "Bash":
        return f"Run command: {pattern}"
    if tool_name == "Read":
        return f"Read file: {pattern}"
    if tool_name == "Write":
        return f"Write to file: {pattern}"
    if tool_name == "Edit":
        return f"Edit file: {pattern}"
    if tool_name == "NotebookEdit":
        return f"Edit notebook: {pattern}"
    if tool_name == "Glob":
        return f"Search files matching: {pattern}"
    if tool_name == "Grep":
        return f"Search content matching: {pattern}"
    return f"{tool_name}: {_input_json(tool_input)}"


def matches_rule_pattern(
    tool_name: str,
    action_pattern: str,
    rule_pattern: str,
    scope: ApprovalScope,
) -> bool:
    """Whether a stored approval covers an action.

    Commands and search patterns only match exactly. Permanent file
    approvals are directory-scoped and match by prefix.
    """
    if not action_pattern:
        return False
    if action_pattern == rule_pattern:
        return True
    if tool_name in FILE_TOOLS and scope == ApprovalScope.ALWAYS:
        return bool(rule_pattern) and action_pattern.startswith(rule_pattern)
    return False
