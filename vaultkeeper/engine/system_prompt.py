"""System prompt for agents confined to a vault."""
from __future__ import annotations

from datetime import date


def get_today_date(today: date | None = None) -> str:
    """e.g. ``Sunday, October 18, 2026 (2026-10-18)``."""
    today = today or date.today()
    readable = f"{today.strftime('%A, %B')} {today.day}, {today.year}"
    return f"{readable} ({today.isoformat()})"


def _base_prompt(today: date | None) -> str:
    return (
        f"Today is {get_today_date(today)}.\n\n"
        "You are an AI assistant working inside the user's vault. "
        "The current working directory is the vault root.\n\n"
        "# Critical Path Rules\n\n"
        "Vault file paths MUST be RELATIVE paths without a leading slash:\n"
        '- Correct: "notes/my-note.md", "my-note.md", "folder/subfolder/file.md"\n'
        '- WRONG: "/notes/my-note.md", "/my-note.md" '
        "(leading slash = absolute path, will fail)\n\n"
        "Export exception: You may write files outside the vault ONLY to "
        "configured export paths (write-only). Export destinations may use "
        "~ or absolute paths.\n\n"
        "# Context Files\n\n"
        'User messages may include a "Context files:" prefix listing files '
        "the user wants to reference:\n"
        "- Format: `Context files: [path/to/file1.md, path/to/file2.md]`\n"
        "- Read these files to understand what the user is asking about\n"
        "- The prefix only appears when files changed since the last message\n"
        '- "Context files: []" clears any prior file context\n\n'
        "# Tools\n\n"
        "- Bash runs with the vault as working directory; prefer "
        "Read/Write/Edit over shell for file operations\n"
        "- Edit requires an exact `old_string` match including whitespace; "
        "use Read first\n"
        '- LS uses "." for the vault root\n'
        "- Commands and paths outside the vault are blocked"
    )


def _export_instructions(allowed_export_paths: list[str]) -> str:
    unique: list[str] = []
    for path in allowed_export_paths or []:
        path = path.strip()
        if path and path not in unique:
            unique.append(path)
    if not unique:
        return ""
    formatted = "\n".join(f"- {p}" for p in unique)
    return (
        "\n\n# Allowed Export Paths\n\n"
        "You are restricted to the vault by default. You may write exported "
        "files outside the vault ONLY to the following allowed export paths:\n\n"
        f"{formatted}\n\n"
        "Rules:\n"
        "- Treat export paths as write-only (do not read/list files from them)\n"
        "- For vault files, always use relative paths\n"
        "- For export destinations, you may use ~ or absolute paths\n\n"
        "Examples:\n\n"
        "```bash\n"
        "pandoc ./note.md -o ~/Desktop/note.docx\n"
        "cp ./note.md ~/Desktop/note.md\n"
        "cat ./note.md > ~/Desktop/note.md\n"
        "```"
    )


def build_system_prompt(
    allowed_export_paths: list[str] | None = None,
    custom_prompt: str | None = None,
    today: date | None = None,
) -> str:
    """Complete system prompt, optionally followed by custom instructions."""
    prompt = _base_prompt(today)
    prompt += _export_instructions(allowed_export_paths or [])
    if custom_prompt and custom_prompt.strip():
        prompt += "\n\n# Custom Instructions\n\n" + custom_prompt.strip()
    return prompt
