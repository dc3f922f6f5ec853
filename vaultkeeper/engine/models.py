"""Core data models for the mediation engine.

All dataclasses, enums, and type aliases. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class PermissionMode(str, Enum):
    """User-facing permission modes.

    YOLO pre-trusts every tool (the blocklist and path sandbox still
    apply). NORMAL escalates unapproved tool calls to the user.
    """
    YOLO = "yolo"
    NORMAL = "normal"

    @property
    def sdk_mode(self) -> str:
        """Maps to claude_agent_sdk permission modes."""
        if self is PermissionMode.YOLO:
            return "bypassPermissions"
        return "default"


class ApprovalScope(str, Enum):
    """Lifetime of an approval grant."""
    SESSION = "session"
    ALWAYS = "always"


class ApprovalDecision(str, Enum):
    """Answer returned by the interactive approval collaborator."""
    ALLOW = "allow"
    ALLOW_ALWAYS = "allow-always"
    DENY = "deny"


class PathIntent(str, Enum):
    """How a command operand touches the filesystem."""
    READ = "read"
    WRITE = "write"
    AMBIGUOUS = "ambiguous"


class MediationOutcome(str, Enum):
    """Terminal (or parked) states of a proposed tool call."""
    BLOCKED = "blocked"
    DENIED = "denied"
    APPROVED = "approved"
    PENDING_INTERACTIVE = "pending_interactive"


class ThinkingBudget(str, Enum):
    """Extended thinking token budget levels."""
    OFF = "off"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def tokens(self) -> int:
        return THINKING_BUDGET_TOKENS[self]


THINKING_BUDGET_TOKENS: dict[ThinkingBudget, int] = {
    ThinkingBudget.OFF: 0,
    ThinkingBudget.LOW: 4000,
    ThinkingBudget.MEDIUM: 8000,
    ThinkingBudget.HIGH: 16000,
}


def _make_id() -> str:
    return str(uuid.uuid4())


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ApprovedAction:
    """A remembered approval for a tool action pattern.

    Pattern semantics depend on the tool: exact command for Bash, path
    (prefix for permanent grants) for file tools, exact pattern for
    search tools.
    """
    tool_name: str
    pattern: str
    approved_at: int = field(default_factory=_now_ms)
    scope: ApprovalScope = ApprovalScope.SESSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "toolName": self.tool_name,
            "pattern": self.pattern,
            "approvedAt": self.approved_at,
            "scope": self.scope.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApprovedAction:
        """Accepts both camelCase (settings files) and snake_case keys."""
        tool_name = data.get("toolName", data.get("tool_name"))
        pattern = data.get("pattern")
        if not isinstance(tool_name, str) or not isinstance(pattern, str):
            raise ValueError(f"Malformed approved action: {data!r}")
        approved_raw = data.get("approvedAt", data.get("approved_at")) or _now_ms()
        if isinstance(approved_raw, bool):
            raise ValueError(f"Malformed approved action: {data!r}")
        try:
            approved_at = int(approved_raw)
        except (TypeError, ValueError):
            raise ValueError(f"Malformed approved action: {data!r}") from None
        scope_raw = data.get("scope", ApprovalScope.ALWAYS.value)
        try:
            scope = ApprovalScope(scope_raw)
        except ValueError:
            scope = ApprovalScope.ALWAYS
        return cls(
            tool_name=tool_name,
            pattern=pattern,
            approved_at=approved_at,
            scope=scope,
        )


@dataclass(frozen=True)
class PathToken:
    """A path-like operand pulled out of a shell command."""
    raw: str
    path: str
    intent: PathIntent


@dataclass
class BashSegment:
    """One pipeline/list element of a shell command line."""
    command: str
    tokens: list[PathToken] = field(default_factory=list)


@dataclass
class SessionHandle:
    """Resumable conversation handle issued by the agent runtime."""
    session_id: str | None = None


@dataclass
class MediationDecision:
    """Result of mediating one tool call."""
    outcome: MediationOutcome
    message: str = ""
    interrupt: bool = False
    pattern: str | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome == MediationOutcome.APPROVED

    @property
    def behavior(self) -> str:
        return "allow" if self.allowed else "deny"

    @classmethod
    def approved(cls, message: str = "") -> MediationDecision:
        return cls(outcome=MediationOutcome.APPROVED, message=message)

    @classmethod
    def blocked(cls, message: str, pattern: str | None = None) -> MediationDecision:
        return cls(outcome=MediationOutcome.BLOCKED, message=message, pattern=pattern)

    @classmethod
    def denied(cls, message: str, *, interrupt: bool = False) -> MediationDecision:
        return cls(
            outcome=MediationOutcome.DENIED, message=message, interrupt=interrupt,
        )

    def to_permission_result(self) -> Any:
        """Convert to claude_agent_sdk PermissionResultAllow/Deny."""
        from claude_agent_sdk.types import PermissionResultAllow, PermissionResultDeny

        if self.allowed:
            return PermissionResultAllow()
        return PermissionResultDeny(message=self.message, interrupt=self.interrupt)


@dataclass
class ToolDiffData:
    """Before/after content for a Write/Edit tool operation."""
    file_path: str
    original_content: str | None = None
    new_content: str | None = None
    skipped_reason: str | None = None  # "too_large" | "unavailable"


@dataclass
class ToolCallInfo:
    """Tool call tracking with status and result."""
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    status: str = "running"  # running | completed | error | blocked
    result: str | None = None
    diff_data: ToolDiffData | None = None


@dataclass
class ChatMessage:
    """One conversation turn as kept in history."""
    role: str  # "user" | "assistant"
    content: str
    id: str = field(default_factory=_make_id)
    timestamp: int = field(default_factory=_now_ms)
    tool_calls: list[ToolCallInfo] = field(default_factory=list)
    context_files: list[str] | None = None
