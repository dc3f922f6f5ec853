"""Tool call display helpers.

Short labels, input summaries and result truncation for tool calls, plus
a Rich markup renderer used by the CLI:

    >>> get_tool_label("Bash", {"command": "git status"})
    'Bash: git status'
"""

from __future__ import annotations

import json
from typing import Any

TOOL_ICONS: dict[str, str] = {
    "Read": "📄",
    "Write": "📝",
    "Edit": "✏️",
    "NotebookEdit": "📓",
    "Bash": "💻",
    "Glob": "🗂",
    "Grep": "🔍",
    "LS": "📁",
    "TodoWrite": "☑",
    "WebSearch": "🌐",
    "WebFetch": "⬇",
}

_BLOCKED_MARKERS: tuple[str, ...] = (
    "blocked by blocklist",
    "outside the vault",
    "access denied",
    "user denied",
    "approval",
)


def get_tool_icon(name: str) -> str:
    return TOOL_ICONS.get(name, "🔧")


def _shorten_path(path: Any) -> str:
    """Keep the last two components of long paths."""
    if not isinstance(path, str) or not path:
        return ""
    parts = path.split("/")
    if len(parts) <= 3:
        return path
    return ".../" + "/".join(parts[-2:])


def _trunc(text: str, length: int = 40) -> str:
    if len(text) <= length:
        return text
    return text[:length] + "..."


def get_tool_label(name: str, tool_input: dict[str, Any]) -> str:
    """Human-readable one-line label for a tool call."""
    if name in {"Read", "Write", "Edit"}:
        return f"{name} {_shorten_path(tool_input.get('file_path')) or 'file'}"
    if name == "NotebookEdit":
        return f"Edit notebook {_shorten_path(tool_input.get('notebook_path')) or 'notebook'}"
    if name == "Bash":
        return f"Bash: {_trunc(str(tool_input.get('command') or 'command'))}"
    if name == "Glob":
        return f"Glob: {tool_input.get('pattern') or 'files'}"
    if name == "Grep":
        return f"Grep: {tool_input.get('pattern') or 'pattern'}"
    if name == "WebSearch":
        return f"WebSearch: {_trunc(str(tool_input.get('query') or 'search'))}"
    if name == "WebFetch":
        return f"WebFetch: {_trunc(str(tool_input.get('url') or 'url'))}"
    if name == "LS":
        return f"LS: {_shorten_path(tool_input.get('path')) or '.'}"
    if name == "TodoWrite":
        todos = tool_input.get("todos")
        if isinstance(todos, list):
            completed = sum(
                1 for t in todos if isinstance(t, dict) and t.get("status") == "completed"
            )
            return f"Tasks ({completed}/{len(todos)})"
        return "Tasks"
    return name


def format_tool_input(name: str, tool_input: dict[str, Any]) -> str:
    key = {
        "Read": "file_path",
        "Write": "file_path",
        "Edit": "file_path",
        "Bash": "command",
        "Glob": "pattern",
        "Grep": "pattern",
        "WebSearch": "query",
        "WebFetch": "url",
    }.get(name)
    if key and tool_input.get(key):
        return str(tool_input[key])
    return json.dumps(tool_input, indent=2, default=str)


def truncate_result(result: str, max_lines: int = 20, max_length: int = 2000) -> str:
    """Cap a tool result to ``max_length`` chars, then ``max_lines`` lines."""
    if len(result) > max_length:
        result = result[:max_length]
    lines = result.split("\n")
    if len(lines) > max_lines:
        more = len(lines) - max_lines
        return "\n".join(lines[:max_lines]) + f"\n{more} more lines"
    return result


def is_blocked_tool_result(content: str, is_error: bool = False) -> bool:
    """Whether a tool result reports a blocked or denied action."""
    lower = content.lower()
    if any(marker in lower for marker in _BLOCKED_MARKERS):
        return True
    return is_error and "deny" in lower


# ── Rich rendering ──


def _esc(text: str) -> str:
    """Escape Rich markup characters."""
    return text.replace("[", "\\[")


def render_tool_call_rich(name: str, tool_input: dict[str, Any], status: str) -> str:
    """Collapsed one-line Rich markup for a tool call.

    ``status`` is one of "running", "completed", "error", "blocked".
    """
    status_markup = {
        "running": "[yellow]\\[running][/yellow]",
        "completed": "[green]done[/green]",
        "error": "[red]error[/red]",
        "blocked": "[bold red]blocked[/bold red]",
    }.get(status, f"[dim]{_esc(status)}[/dim]")
    label = _esc(get_tool_label(name, tool_input))
    return f"{get_tool_icon(name)}  [cyan]{label}[/cyan]  {status_markup}"
