"""CLI entry point: run one prompt against a vault.

Usage:
    vaultkeeper --vault ~/Notes "Summarize notes/today.md"
    vaultkeeper --config vaultkeeper.yaml --mode normal "Export the report to ~/Desktop"
    vaultkeeper --vault ~/Notes --conversation chat.json "And the follow-up?"
    vaultkeeper --vault ~/Notes --block "git push"
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt

from vaultkeeper.adapters.events import (
    BlockedChunk,
    ErrorChunk,
    StreamChunk,
    TextChunk,
    ThinkingChunk,
    ToolResultChunk,
    ToolUseChunk,
    chunk_to_dict,
)
from vaultkeeper.shared.formatters.tool_call import (
    is_blocked_tool_result,
    render_tool_call_rich,
    truncate_result,
)
from vaultkeeper.shared.services.command_policy_store import CommandPolicyStore

from .agent_session import AgentSession
from .approval_rules import get_action_description
from .config import MediatorConfig, parse_log_level
from .conversation_store import ConversationRecorder
from .errors import ConfigurationError
from .models import ApprovalDecision, PermissionMode
from .yaml_config import attach_stores, load_yaml_config

console = Console()

_ANSWERS = {
    "y": ApprovalDecision.ALLOW,
    "a": ApprovalDecision.ALLOW_ALWAYS,
    "n": ApprovalDecision.DENY,
}


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="vaultkeeper",
        description="Run an agent confined to a vault directory",
    )
    parser.add_argument(
        "prompt",
        nargs="?",
        default=None,
        help="The prompt to run (inline string)",
    )
    parser.add_argument(
        "--prompt-file", "-f",
        default=None,
        help="Read the prompt from a file",
    )
    parser.add_argument(
        "--vault",
        default=None,
        help="Vault directory (default: from config, else current dir)",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file (default: VAULTKEEPER_* env vars)",
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in PermissionMode],
        default=None,
        help="Permission mode: yolo allows everything not blocked, normal asks",
    )
    parser.add_argument(
        "--conversation",
        default=None,
        help="JSON file holding the conversation; continued and saved back",
    )
    parser.add_argument(
        "--context",
        action="append",
        default=None,
        metavar="FILE",
        help="Vault file to attach as context (repeatable)",
    )
    parser.add_argument(
        "--block",
        default=None,
        metavar="PATTERN",
        help="Add a pattern to the vault's command blocklist and exit",
    )
    parser.add_argument(
        "--unblock",
        default=None,
        metavar="PATTERN",
        help="Remove a pattern from the vault's command blocklist and exit",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print one JSON object per chunk instead of rendered output",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging and show thinking",
    )

    args = parser.parse_args()

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        config = _build_config(args)
    except (ConfigurationError, OSError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    if not args.verbose:
        logging.getLogger().setLevel(parse_log_level(config.log_level))

    if args.block or args.unblock:
        _edit_blocklist(config, args.block, args.unblock)
        return

    prompt = _resolve_prompt(args.prompt, args.prompt_file)

    conversation_path = Path(args.conversation) if args.conversation else None
    recorder = (
        ConversationRecorder.load(conversation_path)
        if conversation_path else ConversationRecorder()
    )

    try:
        attach_stores(config)
        session = AgentSession(config, recorder=recorder)
    except ConfigurationError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    if config.permission_mode == PermissionMode.NORMAL:
        session.set_approval_callback(_ask_approval)

    try:
        asyncio.run(_run(session, prompt, args.context, args.verbose, args.json))
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        asyncio.run(session.cleanup())
        sys.exit(1)
    finally:
        if conversation_path is not None:
            recorder.save(conversation_path)


def _build_config(args: argparse.Namespace) -> MediatorConfig:
    if args.config:
        config = load_yaml_config(args.config)
    else:
        config = MediatorConfig.from_env()
    if args.vault:
        config.vault_path = str(Path(args.vault).expanduser().resolve())
    if not config.vault_path:
        config.vault_path = str(Path.cwd())
    if args.mode:
        config.permission_mode = PermissionMode(args.mode)
    if not Path(config.vault_path).is_dir():
        raise ConfigurationError(f"vault directory not found: {config.vault_path}")
    return config


def _edit_blocklist(config: MediatorConfig, add: str | None, remove: str | None) -> None:
    store = CommandPolicyStore(config.vault_path)
    if add:
        store.add_blocklist_pattern(add)
        console.print(f"Blocked: [bold]{escape(add)}[/bold]")
    if remove:
        if store.remove_blocklist_pattern(remove):
            console.print(f"Unblocked: [bold]{escape(remove)}[/bold]")
        else:
            console.print(f"Not in blocklist: {escape(remove)}")
    for pattern in store.read_blocklist():
        console.print(f"  {pattern}", markup=False)


def _resolve_prompt(inline: str | None, file_path: str | None) -> str:
    """Get the prompt from the inline arg or a file. Exactly one must be provided."""
    if inline and file_path:
        print("Error: Provide either a prompt or --prompt-file, not both.")
        sys.exit(1)

    if file_path:
        p = Path(file_path)
        if not p.is_file():
            print(f"Error: Prompt file not found: {file_path}")
            sys.exit(1)
        return p.read_text(encoding="utf-8").strip()

    if inline:
        return inline

    print("Error: Provide a prompt or --prompt-file.")
    sys.exit(1)


async def _ask_approval(
    tool_name: str, tool_input: dict[str, Any], context: Any = None,
) -> ApprovalDecision:
    console.print()
    console.print("[bold yellow]Approval needed[/bold yellow] ", end="")
    console.print(get_action_description(tool_name, tool_input), markup=False)
    answer = await asyncio.to_thread(
        Prompt.ask,
        "Allow? ([bold]y[/bold]es / [bold]a[/bold]lways / [bold]n[/bold]o)",
        choices=list(_ANSWERS),
        default="n",
        console=console,
    )
    return _ANSWERS[answer]


async def _run(
    session: AgentSession,
    prompt: str,
    context_files: list[str] | None,
    show_thinking: bool,
    as_json: bool = False,
) -> None:
    tools: dict[str, ToolUseChunk] = {}
    async for chunk in session.query(prompt, context_files=context_files):
        if as_json:
            print(json.dumps(chunk_to_dict(chunk), default=str), flush=True)
        else:
            _render(chunk, tools, show_thinking)
    if not as_json:
        console.print()


def _render(chunk: StreamChunk, tools: dict[str, ToolUseChunk], show_thinking: bool) -> None:
    if isinstance(chunk, TextChunk):
        if not chunk.parent_tool_use_id:
            console.print(chunk.content, end="", markup=False, highlight=False)
    elif isinstance(chunk, ThinkingChunk):
        if show_thinking:
            console.print(chunk.content, end="", style="dim italic", markup=False)
    elif isinstance(chunk, ToolUseChunk):
        tools[chunk.id] = chunk
        console.print()
        console.print(render_tool_call_rich(chunk.name, chunk.input, "running"))
    elif isinstance(chunk, ToolResultChunk):
        tool = tools.get(chunk.id)
        if tool is None:
            return
        if is_blocked_tool_result(chunk.content, chunk.is_error):
            status = "blocked"
        else:
            status = "error" if chunk.is_error else "completed"
        console.print(render_tool_call_rich(tool.name, tool.input, status))
        if status != "completed":
            console.print(truncate_result(chunk.content, max_lines=5), style="dim", markup=False)
    elif isinstance(chunk, BlockedChunk):
        console.print(f"[bold red]Blocked[/bold red] {chunk.tool_name}: ", end="")
        console.print(chunk.content, markup=False)
    elif isinstance(chunk, ErrorChunk):
        console.print()
        console.print(f"Error: {chunk.content}", style="bold red", markup=False)


if __name__ == "__main__":
    main()
