"""Tool-call mediation: blocklist, path sandbox, approvals.

One ToolMediator per conversation. Every proposed tool call is evaluated
in a fixed order:

1. Bash commands matching the blocklist are blocked.
2. Path-bearing tools whose paths leave the vault are blocked
   (export roots are write-only).
3. Actions already approved (session or permanent) are allowed.
4. In yolo mode everything else is allowed.
5. Otherwise the user is asked through the ApprovalChannel.

Steps 1-2 also run as an SDK PreToolUse hook so they apply in every
permission mode, including bypassPermissions where ``can_use_tool`` is
never consulted.
"""
from __future__ import annotations

import logging
from typing import Any

from vaultkeeper.adapters.events import BlockedChunk
from vaultkeeper.adapters.file_tracker import FileEditTracker
from vaultkeeper.adapters.permission_store import ApprovalStore
from vaultkeeper.shared.path_utils import PATH_IN_EXPORT, PATH_IN_VAULT, PathSandbox
from vaultkeeper.shared.services.command_policy_store import find_blocking_pattern

from .approval_channel import ApprovalChannel
from .approval_rules import get_action_description
from .bash_paths import find_bash_command_path_violation
from .config import MediatorConfig
from .errors import (
    ApprovalFlowFailure,
    BlocklistViolation,
    ConfigurationError,
    SandboxViolation,
    UserDenied,
)
from .models import (
    ApprovalDecision,
    ApprovalScope,
    MediationDecision,
    MediationOutcome,
    PermissionMode,
)

logger = logging.getLogger(__name__)

READ_PATH_TOOLS = frozenset({"Read", "LS", "Glob", "Grep"})
WRITE_PATH_TOOLS = frozenset({"Write", "Edit", "NotebookEdit"})
PATH_TOOLS = READ_PATH_TOOLS | WRITE_PATH_TOOLS | {"Bash"}

NO_HANDLER_MESSAGE = "No approval handler available."


def get_paths_from_tool_input(tool_name: str, tool_input: dict[str, Any]) -> list[str]:
    """Paths a non-Bash tool touches, in the order they are checked."""
    paths: list[str] = []

    def add(value: Any) -> None:
        if isinstance(value, str) and value.strip():
            paths.append(value.strip())

    if tool_name in {"Read", "Write", "Edit"}:
        add(tool_input.get("file_path"))
    elif tool_name == "NotebookEdit":
        add(tool_input.get("notebook_path") or tool_input.get("file_path"))
    elif tool_name in {"LS", "Glob", "Grep"}:
        add(tool_input.get("path"))
        if tool_name in {"Glob", "Grep"}:
            pattern = tool_input.get("pattern")
            if isinstance(pattern, str) and _is_path_like_pattern(pattern):
                add(pattern)
    return paths


def _is_path_like_pattern(pattern: str) -> bool:
    stripped = pattern.strip()
    return stripped.startswith(("/", "~")) or ".." in stripped


class ToolMediator:
    """Decides allow/deny for every tool call of one conversation."""

    def __init__(
        self,
        config: MediatorConfig,
        approvals: ApprovalStore | None = None,
        file_tracker: FileEditTracker | None = None,
        channel: ApprovalChannel | None = None,
    ) -> None:
        if not config.vault_path or not config.vault_path.strip():
            raise ConfigurationError("Could not determine vault path.")
        self._config = config
        self._sandbox = PathSandbox.create(config.vault_path, config.allowed_export_paths)
        self._blocklist = config.effective_blocklist()
        self._approvals = approvals or ApprovalStore(
            config.approved_actions, persist=config.save_approvals,
        )
        self._file_tracker = file_tracker
        self._channel = channel or ApprovalChannel(config.approval_callback)
        self._blocked_notices: list[BlockedChunk] = []

    @property
    def sandbox(self) -> PathSandbox:
        return self._sandbox

    @property
    def approvals(self) -> ApprovalStore:
        return self._approvals

    @property
    def channel(self) -> ApprovalChannel:
        return self._channel

    @property
    def permission_mode(self) -> PermissionMode:
        return self._config.permission_mode

    # ── Synchronous checks ──

    def check_blocklist(
        self, tool_name: str, tool_input: dict[str, Any],
    ) -> MediationDecision | None:
        if tool_name != "Bash" or not self._blocklist:
            return None
        command = tool_input.get("command")
        if not isinstance(command, str) or not command.strip():
            return None
        pattern = find_blocking_pattern(command, self._blocklist)
        if pattern is None:
            return None
        violation = BlocklistViolation(command, pattern)
        logger.info(
            "MEDIATE_BLOCK (blocklist) pattern=%s cmd=%s", pattern, command.strip()[:120],
        )
        return MediationDecision.blocked(str(violation), pattern=pattern)

    def check_paths(
        self, tool_name: str, tool_input: dict[str, Any],
    ) -> MediationDecision | None:
        if tool_name not in PATH_TOOLS:
            return None
        if tool_name == "Bash":
            command = tool_input.get("command")
            if not isinstance(command, str) or not command.strip():
                return None
            violation = find_bash_command_path_violation(command, self._sandbox)
            if violation is None:
                return None
            return self._sandbox_block(tool_name, violation.path, violation.kind)

        writing = tool_name in WRITE_PATH_TOOLS
        for path in get_paths_from_tool_input(tool_name, tool_input):
            location = self._sandbox.locate(path)
            if location == PATH_IN_VAULT:
                continue
            if location == PATH_IN_EXPORT:
                if writing:
                    continue
                return self._sandbox_block(tool_name, path, "export_read")
            return self._sandbox_block(tool_name, path, "outside_vault")
        return None

    def _sandbox_block(self, tool_name: str, path: str, kind: str) -> MediationDecision:
        violation = SandboxViolation(tool_name, path, kind)
        logger.info("MEDIATE_BLOCK (%s) tool=%s path=%s", kind, tool_name, path)
        return MediationDecision.blocked(str(violation))

    def evaluate(self, tool_name: str, tool_input: dict[str, Any]) -> MediationDecision:
        """Run every non-interactive step.

        Returns PENDING_INTERACTIVE when the user has to be asked.
        """
        decision = self.check_blocklist(tool_name, tool_input)
        if decision is None:
            decision = self.check_paths(tool_name, tool_input)
        if decision is not None:
            return decision
        if self._approvals.is_approved(tool_name, tool_input):
            logger.debug("MEDIATE_ALLOW (approved) tool=%s", tool_name)
            return MediationDecision.approved()
        if self._config.permission_mode == PermissionMode.YOLO:
            return MediationDecision.approved()
        return MediationDecision(outcome=MediationOutcome.PENDING_INTERACTIVE)

    # ── Interactive flow ──

    async def can_use_tool(
        self, tool_name: str, tool_input: dict[str, Any], context: Any = None,
    ) -> MediationDecision:
        decision = self.evaluate(tool_name, tool_input)
        if decision.outcome == MediationOutcome.BLOCKED:
            self._queue_notice(tool_name, decision.message)
            return decision
        if decision.outcome != MediationOutcome.PENDING_INTERACTIVE:
            return decision

        if not self._channel.has_handler:
            logger.warning("MEDIATE_DENY (no handler) tool=%s", tool_name)
            return MediationDecision.denied(str(ConfigurationError(NO_HANDLER_MESSAGE)))

        logger.info("MEDIATE_PENDING tool=%s", tool_name)
        try:
            answer = await self._channel.request(
                tool_name,
                tool_input,
                context,
                description=get_action_description(tool_name, tool_input),
            )
        except ApprovalFlowFailure as exc:
            self._cancel_file_edit(tool_name, tool_input)
            return MediationDecision.denied(str(exc), interrupt=True)

        if answer == ApprovalDecision.ALLOW:
            self._approvals.approve(tool_name, tool_input, ApprovalScope.SESSION)
            logger.info("MEDIATE_ALLOW (user) tool=%s", tool_name)
            return MediationDecision.approved()
        if answer == ApprovalDecision.ALLOW_ALWAYS:
            self._approvals.approve(tool_name, tool_input, ApprovalScope.ALWAYS)
            logger.info("MEDIATE_ALLOW (always) tool=%s", tool_name)
            return MediationDecision.approved()

        logger.info("MEDIATE_DENY (user) tool=%s", tool_name)
        self._cancel_file_edit(tool_name, tool_input)
        return MediationDecision.denied(str(UserDenied(tool_name)))

    async def sdk_can_use_tool(
        self, tool_name: str, tool_input: dict[str, Any], context: Any = None,
    ) -> Any:
        """``can_use_tool`` callback for claude_agent_sdk."""
        decision = await self.can_use_tool(tool_name, tool_input, context)
        return decision.to_permission_result()

    def _cancel_file_edit(self, tool_name: str, tool_input: dict[str, Any]) -> None:
        if self._file_tracker is not None:
            self._file_tracker.cancel_file_edit(tool_name, tool_input)

    # ── SDK hooks ──

    async def pre_tool_use_hook(
        self, input_data: Any, tool_use_id: str | None, context: Any = None,
    ) -> dict:
        """PreToolUse hook applying the blocklist and the path sandbox."""
        if isinstance(input_data, dict):
            tool_name = input_data.get("tool_name", "")
            tool_input = input_data.get("tool_input", {})
        else:
            tool_name = getattr(input_data, "tool_name", "")
            tool_input = getattr(input_data, "tool_input", {})
        if not isinstance(tool_input, dict):
            tool_input = {}

        decision = self.check_blocklist(tool_name, tool_input)
        if decision is None:
            decision = self.check_paths(tool_name, tool_input)
        if decision is None:
            return {}

        self._queue_notice(tool_name, decision.message)
        return {
            "hookSpecificOutput": {
                "hookEventName": "PreToolUse",
                "permissionDecision": "deny",
                "permissionDecisionReason": decision.message,
            }
        }

    def build_hooks(self) -> dict:
        from claude_agent_sdk import HookMatcher

        return {
            "PreToolUse": [HookMatcher(hooks=[self.pre_tool_use_hook])],
        }

    def _queue_notice(self, tool_name: str, message: str) -> None:
        for notice in self._blocked_notices:
            if notice.tool_name == tool_name and notice.content == message:
                return
        self._blocked_notices.append(BlockedChunk(content=message, tool_name=tool_name))

    def drain_blocked_notices(self) -> list[BlockedChunk]:
        notices = self._blocked_notices
        self._blocked_notices = []
        return notices

    def cancel_pending_approvals(self) -> int:
        return self._channel.cancel_all()

    def reset_session(self) -> None:
        self._approvals.clear_session()
        self._blocked_notices.clear()
