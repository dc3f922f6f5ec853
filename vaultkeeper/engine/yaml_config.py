"""YAML configuration loader.

Loads a single YAML file as an alternative to VAULTKEEPER_* env vars.
Every section and key is optional.

Example YAML:
    vault:
      path: ~/Notes
      export_paths: [~/Desktop, ~/Downloads]

    security:
      enable_blocklist: true
      blocked_commands: ["rm -rf", "chmod 777", "curl .* \\| sh"]
      permission_mode: normal       # yolo | normal

    agent:
      model: claude-sonnet-4-5
      thinking_budget: medium       # off | low | medium | high
      claude_cli_path: /usr/local/bin/claude
      max_tool_result_chars: 800
      system_prompt: |
        Answer in British English.
      environment: |
        ANTHROPIC_MODEL=claude-opus-4-1

    approvals:
      file: ~/.vaultkeeper/approved_actions.json

    logging:
      level: INFO
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from vaultkeeper.adapters.permission_store import ApprovedActionsFile
from vaultkeeper.shared.path_utils import expand_home_path
from vaultkeeper.shared.services.command_policy_store import CommandPolicyStore

from .config import (
    MediatorConfig,
    _parse_permission_mode,
    _parse_thinking_budget,
)
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def _section(raw: dict, name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"section '{name}' must be a mapping")
    return value


def _string_list(value: Any, key: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigurationError(f"'{key}' must be a list")
    return [str(item) for item in value if item is not None and str(item).strip()]


def load_yaml_config(path: str | Path) -> MediatorConfig:
    """Load and parse a YAML config file into a MediatorConfig.

    A relative ``vault.path`` is resolved against the config file's
    directory. Stores (vault blocklist file, approvals file) are not
    attached here; see ``attach_stores``.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")

    top_sections = sorted(raw.keys())
    logger.info(
        "Parsed YAML config %s: sections: %s",
        path.name, ", ".join(top_sections) if top_sections else "(empty)",
    )

    vault = _section(raw, "vault")
    security = _section(raw, "security")
    agent = _section(raw, "agent")
    approvals = _section(raw, "approvals")
    logging_cfg = _section(raw, "logging")

    config = MediatorConfig()

    vault_path = vault.get("path")
    if vault_path:
        vault_path = expand_home_path(str(vault_path))
        if not Path(vault_path).is_absolute():
            vault_path = str((path.parent / vault_path).resolve())
        config.vault_path = vault_path
    if "export_paths" in vault:
        config.allowed_export_paths = _string_list(vault["export_paths"], "vault.export_paths")

    if "enable_blocklist" in security:
        config.enable_blocklist = bool(security["enable_blocklist"])
    if "blocked_commands" in security:
        config.blocked_commands = _string_list(
            security["blocked_commands"], "security.blocked_commands",
        )
    if security.get("permission_mode"):
        config.permission_mode = _parse_permission_mode(str(security["permission_mode"]))

    if agent.get("model"):
        config.model = str(agent["model"])
    if agent.get("thinking_budget"):
        config.thinking_budget = _parse_thinking_budget(str(agent["thinking_budget"]))
    if agent.get("claude_cli_path"):
        config.claude_cli_path = str(agent["claude_cli_path"])
    if agent.get("max_tool_result_chars") is not None:
        try:
            config.max_tool_result_chars = int(agent["max_tool_result_chars"])
        except (TypeError, ValueError) as exc:
            raise ConfigurationError("'agent.max_tool_result_chars' must be an integer") from exc
    config.system_prompt = str(agent.get("system_prompt") or "")
    config.environment_variables = str(agent.get("environment") or "")

    if logging_cfg.get("level"):
        config.log_level = str(logging_cfg["level"]).upper()

    approvals_file = approvals.get("file")
    if approvals_file:
        config.approvals_file = expand_home_path(str(approvals_file))

    config.warn_invalid_patterns()
    logger.info(
        "Config loaded from %s: vault=%s mode=%s blocklist=%s exports=%s model=%s",
        path.name,
        config.vault_path or "<unset>",
        config.permission_mode.value,
        "on" if config.enable_blocklist else "off",
        config.allowed_export_paths,
        config.model,
    )
    return config


def attach_stores(
    config: MediatorConfig,
    approvals_file: ApprovedActionsFile | None = None,
) -> MediatorConfig:
    """Merge the vault's blocklist file and load persisted approvals.

    Permanent approvals granted later are written back through
    ``config.save_approvals``.
    """
    if config.vault_path:
        policy = CommandPolicyStore(expand_home_path(config.vault_path))
        config.blocked_commands = policy.load_patterns(config.blocked_commands)

    if approvals_file is None:
        approvals_file = ApprovedActionsFile(
            Path(config.approvals_file) if config.approvals_file else None,
        )
    config.approved_actions = approvals_file.load()
    config.save_approvals = approvals_file.save
    logger.debug(
        "Attached stores: %d blocklist patterns, %d approvals from %s",
        len(config.blocked_commands), len(config.approved_actions), approvals_file.path,
    )
    return config
