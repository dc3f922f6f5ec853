"""Exception hierarchy for the mediation engine.

Specific exceptions for each failure mode. Never bare
`except Exception` without justification.
"""
from __future__ import annotations


class MediationError(Exception):
    """Base exception for all mediation errors."""


class ConfigurationError(MediationError):
    """Engine cannot run with the given configuration.

    Fatal to the current query; never retried.
    """
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class SandboxViolation(MediationError):
    """A tool call touches a path outside the allowed boundaries."""
    def __init__(self, tool_name: str, path: str, kind: str):
        self.tool_name = tool_name
        self.path = path
        self.kind = kind
        if kind == "export_read":
            detail = (
                f"Access denied: {path} is in an allowed export path, "
                f"which is write-only"
            )
        else:
            detail = f"Access denied: {path} is outside the vault"
        super().__init__(f"{tool_name} blocked. {detail}.")


class BlocklistViolation(MediationError):
    """A shell command matched a configured blocklist pattern."""
    def __init__(self, command: str, pattern: str):
        self.command = command
        self.pattern = pattern
        super().__init__(
            f"Command blocked by blocklist: matched pattern '{pattern}'"
        )


class UserDenied(MediationError):
    """The user rejected an interactive approval request."""
    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__("User denied this action.")


class ApprovalFlowFailure(MediationError):
    """The interactive approval collaborator itself failed."""
    def __init__(self, tool_name: str, cause: BaseException | None = None):
        self.tool_name = tool_name
        self.cause = cause
        super().__init__("Approval request failed.")


class SessionExpiredError(MediationError):
    """A resumable session handle is no longer valid on the runtime side."""
    def __init__(self, session_id: str | None, message: str):
        self.session_id = session_id
        super().__init__(message)
