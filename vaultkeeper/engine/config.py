"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via VAULTKEEPER_* env vars,
or load a YAML file with ``yaml_config.load_yaml_config``.
"""
from __future__ import annotations

import logging
import os
import re
import shutil
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from vaultkeeper.shared.services.command_policy_store import (
    DEFAULT_BLOCKED_COMMANDS,
    validate_patterns,
)

from .errors import ConfigurationError
from .models import ApprovalDecision, ApprovedAction, PermissionMode, ThinkingBudget

logger = logging.getLogger(__name__)


# Interactive approval callback.
# Signature: async def callback(tool_name, tool_input, context) -> ApprovalDecision
# May return the decision's string value ("allow", "allow-always", "deny").
ApprovalCallback = Callable[[str, dict, Any], Awaitable["ApprovalDecision | str"]]

# Persistence side effect for permanent approvals.
# Signature: def callback(permanent_actions) -> None
SaveApprovalsCallback = Callable[[list[ApprovedAction]], None]

DEFAULT_EXPORT_PATHS: tuple[str, ...] = ("~/Desktop", "~/Downloads")
DEFAULT_MAX_TOOL_RESULT_CHARS = 800

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _split_list(value: str) -> list[str]:
    """Split an env var list on ``os.pathsep`` or newlines."""
    parts = re.split(r"[\n" + re.escape(os.pathsep) + r"]", value)
    return [part.strip() for part in parts if part.strip()]


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def parse_log_level(value: str | None, default: int = logging.WARNING) -> int:
    """Numeric logging level for a level name like "debug" or "INFO"."""
    level = logging.getLevelName(str(value or "").strip().upper())
    if isinstance(level, int):
        return level
    if value:
        logger.warning("Unknown log level %r, using %s", value, logging.getLevelName(default))
    return default


def _parse_permission_mode(value: str) -> PermissionMode:
    try:
        return PermissionMode(value.strip().lower())
    except ValueError:
        logger.warning("Unknown permission mode %r, using yolo", value)
        return PermissionMode.YOLO


def _parse_thinking_budget(value: str) -> ThinkingBudget:
    try:
        return ThinkingBudget(value.strip().lower())
    except ValueError:
        logger.warning("Unknown thinking budget %r, using off", value)
        return ThinkingBudget.OFF


@dataclass
class MediatorConfig:
    """Settings for one vault conversation."""

    vault_path: str = ""
    # Write-only directories outside the vault.
    allowed_export_paths: list[str] = field(
        default_factory=lambda: list(DEFAULT_EXPORT_PATHS),
    )
    enable_blocklist: bool = True
    blocked_commands: list[str] = field(
        default_factory=lambda: list(DEFAULT_BLOCKED_COMMANDS),
    )
    permission_mode: PermissionMode = PermissionMode.YOLO
    approved_actions: list[ApprovedAction] = field(default_factory=list)
    thinking_budget: ThinkingBudget = ThinkingBudget.OFF
    model: str = "claude-haiku-4-5"
    # Appended to the built-in system prompt.
    system_prompt: str = ""
    # KEY=VALUE lines passed to the agent runtime.
    environment_variables: str = ""
    claude_cli_path: str | None = None
    max_tool_result_chars: int = DEFAULT_MAX_TOOL_RESULT_CHARS
    log_level: str = "WARNING"
    # Permanent approvals JSON; None uses ~/.vaultkeeper/approved_actions.json.
    approvals_file: str | None = None

    approval_callback: ApprovalCallback | None = field(default=None, repr=False)
    save_approvals: SaveApprovalsCallback | None = field(default=None, repr=False)

    @property
    def max_thinking_tokens(self) -> int:
        return self.thinking_budget.tokens

    def effective_blocklist(self) -> list[str]:
        """Blocklist patterns in force, or [] when the blocklist is disabled."""
        if not self.enable_blocklist:
            return []
        return [p for p in self.blocked_commands if p and p.strip()]

    def parsed_environment(self) -> dict[str, str]:
        return parse_environment_variables(self.environment_variables)

    def resolved_model(self) -> str:
        """Model from custom env vars, else the configured one."""
        return get_current_model_from_environment(self.parsed_environment()) or self.model

    def warn_invalid_patterns(self) -> list[str]:
        invalid = validate_patterns(self.blocked_commands)
        for pattern in invalid:
            logger.warning(
                "Blocked command %r is not a valid regex; matching as a substring",
                pattern,
            )
        return invalid

    @classmethod
    def from_env(cls) -> MediatorConfig:
        """Load configuration from VAULTKEEPER_* environment variables."""
        vk_vars = {
            k: v for k, v in os.environ.items() if k.startswith("VAULTKEEPER_")
        }
        if vk_vars:
            logger.info(
                "MediatorConfig.from_env: VAULTKEEPER_* env overrides: %s",
                ", ".join(sorted(vk_vars)),
            )
        else:
            logger.debug("MediatorConfig.from_env: no VAULTKEEPER_* env vars set, using defaults")

        config = cls(
            vault_path=os.getenv("VAULTKEEPER_VAULT_PATH", os.getcwd()),
            enable_blocklist=(
                os.getenv("VAULTKEEPER_ENABLE_BLOCKLIST", "true").lower()
                in _TRUE_VALUES
            ),
            permission_mode=_parse_permission_mode(
                os.getenv("VAULTKEEPER_PERMISSION_MODE", PermissionMode.YOLO.value)
            ),
            thinking_budget=_parse_thinking_budget(
                os.getenv("VAULTKEEPER_THINKING_BUDGET", ThinkingBudget.OFF.value)
            ),
            model=os.getenv("VAULTKEEPER_MODEL", cls.model),
            system_prompt=os.getenv("VAULTKEEPER_SYSTEM_PROMPT", ""),
            environment_variables=os.getenv("VAULTKEEPER_ENV", ""),
            claude_cli_path=os.getenv("VAULTKEEPER_CLAUDE_CLI_PATH") or None,
            max_tool_result_chars=_int_env(
                "VAULTKEEPER_MAX_TOOL_RESULT_CHARS", cls.max_tool_result_chars,
            ),
            log_level=os.getenv("VAULTKEEPER_LOG_LEVEL", cls.log_level),
            approvals_file=os.getenv("VAULTKEEPER_APPROVALS_FILE") or None,
        )
        export_paths = os.getenv("VAULTKEEPER_EXPORT_PATHS")
        if export_paths is not None:
            config.allowed_export_paths = _split_list(export_paths)
        blocked = os.getenv("VAULTKEEPER_BLOCKED_COMMANDS")
        if blocked is not None:
            config.blocked_commands = [
                line.strip() for line in blocked.splitlines() if line.strip()
            ]
        config.warn_invalid_patterns()
        logger.info(
            "MediatorConfig.from_env: vault=%s mode=%s blocklist=%s exports=%s",
            config.vault_path, config.permission_mode.value,
            "on" if config.enable_blocklist else "off",
            config.allowed_export_paths,
        )
        return config


# ── Environment helpers ──────────────────────────────────────


def parse_environment_variables(text: str) -> dict[str, str]:
    """Parse KEY=VALUE lines. Blank lines and ``#`` comments are skipped."""
    result: dict[str, str] = {}
    for line in (text or "").splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        key, sep, value = trimmed.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        result[key] = value.strip()
    return result


_MODEL_ENV_KEYS: tuple[tuple[str, str], ...] = (
    ("model", "ANTHROPIC_MODEL"),
    ("opus", "ANTHROPIC_DEFAULT_OPUS_MODEL"),
    ("sonnet", "ANTHROPIC_DEFAULT_SONNET_MODEL"),
    ("haiku", "ANTHROPIC_DEFAULT_HAIKU_MODEL"),
)
_MODEL_TYPE_PRIORITY = {"model": 4, "opus": 3, "sonnet": 2, "haiku": 1}


def _model_label(value: str) -> str:
    if "/" in value:
        return value.rsplit("/", 1)[1] or value
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), value.replace("-", " "))


def get_models_from_environment(env: dict[str, str]) -> list[dict[str, str]]:
    """Custom model options from ANTHROPIC_* variables, deduplicated by value.

    Each entry is ``{"value", "label", "description"}``; highest-priority
    source first (ANTHROPIC_MODEL, then opus, sonnet, haiku).
    """
    by_value: dict[str, list[str]] = {}
    for model_type, key in _MODEL_ENV_KEYS:
        value = env.get(key)
        if value:
            by_value.setdefault(value, []).append(model_type)

    def priority(types: list[str]) -> int:
        return max(_MODEL_TYPE_PRIORITY.get(t, 0) for t in types)

    models: list[dict[str, str]] = []
    for value, types in sorted(by_value.items(), key=lambda item: -priority(item[1])):
        ordered = sorted(types, key=lambda t: -_MODEL_TYPE_PRIORITY.get(t, 0))
        models.append({
            "value": value,
            "label": _model_label(value),
            "description": f"Custom model ({', '.join(ordered)})",
        })
    return models


def get_current_model_from_environment(env: dict[str, str]) -> str | None:
    for _, key in _MODEL_ENV_KEYS:
        if env.get(key):
            return env[key]
    return None


def find_claude_cli_path(configured: str | None = None) -> str | None:
    """Locate the Claude CLI executable.

    A configured path wins if it resolves. Otherwise PATH and the usual
    install locations are searched. None lets the SDK use its bundled CLI.
    """
    if configured:
        resolved = shutil.which(configured)
        if resolved:
            return resolved
        logger.warning(
            "Configured Claude CLI not found: %s; falling back to discovery",
            configured,
        )
    on_path = shutil.which("claude")
    if on_path:
        return on_path
    home = Path.home()
    for candidate in (
        home / ".claude" / "local" / "claude",
        home / ".local" / "bin" / "claude",
        Path("/usr/local/bin/claude"),
        Path("/opt/homebrew/bin/claude"),
        home / "bin" / "claude",
    ):
        if candidate.exists():
            return str(candidate)
    return None
