"""vaultkeeper: tool-call mediation and sandboxing for vault-confined agents."""
from .models import (
    ApprovalDecision,
    ApprovalScope,
    ApprovedAction,
    ChatMessage,
    MediationDecision,
    MediationOutcome,
    PathIntent,
    PermissionMode,
    ThinkingBudget,
    ToolCallInfo,
    ToolDiffData,
)
from .config import MediatorConfig
from .errors import (
    ApprovalFlowFailure,
    BlocklistViolation,
    ConfigurationError,
    MediationError,
    SandboxViolation,
    SessionExpiredError,
    UserDenied,
)

__all__ = [
    # Session and mediator (lazy import to avoid circular deps)
    "AgentSession",
    "ToolMediator",
    "StreamTransformer",
    "SessionContinuity",
    "ClaudeSdkRunner",
    # Models
    "ApprovalDecision",
    "ApprovalScope",
    "ApprovedAction",
    "ChatMessage",
    "MediationDecision",
    "MediationOutcome",
    "PathIntent",
    "PermissionMode",
    "ThinkingBudget",
    "ToolCallInfo",
    "ToolDiffData",
    # Config
    "MediatorConfig",
    # YAML config (lazy import)
    "load_yaml_config",
    # Errors
    "ApprovalFlowFailure",
    "BlocklistViolation",
    "ConfigurationError",
    "MediationError",
    "SandboxViolation",
    "SessionExpiredError",
    "UserDenied",
]


def __getattr__(name: str):
    if name == "AgentSession":
        from .agent_session import AgentSession
        return AgentSession
    if name == "ToolMediator":
        from .mediator import ToolMediator
        return ToolMediator
    if name == "StreamTransformer":
        from .stream import StreamTransformer
        return StreamTransformer
    if name == "SessionContinuity":
        from .session_continuity import SessionContinuity
        return SessionContinuity
    if name == "ClaudeSdkRunner":
        from .runner import ClaudeSdkRunner
        return ClaudeSdkRunner
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
