from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import pytest
import yaml

from vaultkeeper.adapters.permission_store import ApprovedActionsFile
from vaultkeeper.engine.config import (
    DEFAULT_EXPORT_PATHS,
    MediatorConfig,
    find_claude_cli_path,
    get_current_model_from_environment,
    get_models_from_environment,
    parse_environment_variables,
    parse_log_level,
)
from vaultkeeper.engine.errors import ConfigurationError
from vaultkeeper.engine.models import ApprovedAction, PermissionMode, ThinkingBudget
from vaultkeeper.engine.yaml_config import attach_stores, load_yaml_config
from vaultkeeper.shared.services.command_policy_store import (
    DEFAULT_BLOCKED_COMMANDS,
    CommandPolicyStore,
)


# ── Environment helpers ──────────────────────────────────────


def test_parse_environment_variables() -> None:
    text = "# models\nANTHROPIC_MODEL = opus-x\n\nNO_EQUALS\n=value\nEMPTY=\nA=b=c\n"
    assert parse_environment_variables(text) == {
        "ANTHROPIC_MODEL": "opus-x",
        "EMPTY": "",
        "A": "b=c",
    }
    assert parse_environment_variables("") == {}


def test_models_from_environment() -> None:
    env = {
        "ANTHROPIC_MODEL": "vendor/model-a",
        "ANTHROPIC_DEFAULT_OPUS_MODEL": "vendor/model-a",
        "ANTHROPIC_DEFAULT_HAIKU_MODEL": "fast-small",
    }
    assert get_models_from_environment(env) == [
        {"value": "vendor/model-a", "label": "model-a",
         "description": "Custom model (model, opus)"},
        {"value": "fast-small", "label": "Fast Small",
         "description": "Custom model (haiku)"},
    ]
    assert get_models_from_environment({}) == []


def test_current_model_priority() -> None:
    assert get_current_model_from_environment({
        "ANTHROPIC_DEFAULT_SONNET_MODEL": "s",
        "ANTHROPIC_DEFAULT_HAIKU_MODEL": "h",
    }) == "s"
    assert get_current_model_from_environment({}) is None


def test_find_claude_cli_path_prefers_configured(tmp_path: Path) -> None:
    cli = tmp_path / "claude"
    cli.write_text("#!/bin/sh\n", encoding="utf-8")
    cli.chmod(0o755)
    assert find_claude_cli_path(str(cli)) == str(cli)


# ── MediatorConfig ───────────────────────────────────────────


def test_defaults() -> None:
    config = MediatorConfig()
    assert config.allowed_export_paths == list(DEFAULT_EXPORT_PATHS)
    assert config.blocked_commands == list(DEFAULT_BLOCKED_COMMANDS)
    assert config.permission_mode == PermissionMode.YOLO
    assert config.max_thinking_tokens == 0


def test_effective_blocklist() -> None:
    config = MediatorConfig(blocked_commands=["rm -rf", " ", ""])
    assert config.effective_blocklist() == ["rm -rf"]
    config.enable_blocklist = False
    assert config.effective_blocklist() == []


def test_resolved_model_prefers_environment() -> None:
    config = MediatorConfig(environment_variables="ANTHROPIC_MODEL=custom")
    assert config.resolved_model() == "custom"
    assert MediatorConfig(model="m").resolved_model() == "m"


def test_warn_invalid_patterns(caplog: pytest.LogCaptureFixture) -> None:
    config = MediatorConfig(blocked_commands=["[oops", "ok"])
    with caplog.at_level(logging.WARNING):
        assert config.warn_invalid_patterns() == ["[oops"]
    assert "[oops" in caplog.text


def test_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("VAULTKEEPER_VAULT_PATH", str(tmp_path))
    monkeypatch.setenv("VAULTKEEPER_PERMISSION_MODE", "NORMAL")
    monkeypatch.setenv("VAULTKEEPER_THINKING_BUDGET", "high")
    monkeypatch.setenv("VAULTKEEPER_ENABLE_BLOCKLIST", "off")
    monkeypatch.setenv("VAULTKEEPER_EXPORT_PATHS", f"/tmp/a{os.pathsep}/tmp/b\n/tmp/c")
    monkeypatch.setenv("VAULTKEEPER_BLOCKED_COMMANDS", "git push\n\nnpm publish\n")
    monkeypatch.setenv("VAULTKEEPER_MAX_TOOL_RESULT_CHARS", "120")
    monkeypatch.setenv("VAULTKEEPER_APPROVALS_FILE", str(tmp_path / "approvals.json"))

    config = MediatorConfig.from_env()
    assert config.vault_path == str(tmp_path)
    assert config.permission_mode == PermissionMode.NORMAL
    assert config.thinking_budget == ThinkingBudget.HIGH
    assert config.max_thinking_tokens == 16000
    assert config.enable_blocklist is False
    assert config.allowed_export_paths == ["/tmp/a", "/tmp/b", "/tmp/c"]
    assert config.blocked_commands == ["git push", "npm publish"]
    assert config.max_tool_result_chars == 120
    assert config.approvals_file == str(tmp_path / "approvals.json")


def test_from_env_unknown_values_fall_back(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VAULTKEEPER_PERMISSION_MODE", "paranoid")
    monkeypatch.setenv("VAULTKEEPER_THINKING_BUDGET", "huge")
    config = MediatorConfig.from_env()
    assert config.permission_mode == PermissionMode.YOLO
    assert config.thinking_budget == ThinkingBudget.OFF


def test_from_env_rejects_non_integer_limit(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VAULTKEEPER_MAX_TOOL_RESULT_CHARS", "lots")
    with pytest.raises(ConfigurationError, match="VAULTKEEPER_MAX_TOOL_RESULT_CHARS"):
        MediatorConfig.from_env()


def test_from_env_log_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("VAULTKEEPER_LOG_LEVEL", raising=False)
    assert MediatorConfig.from_env().log_level == "WARNING"
    monkeypatch.setenv("VAULTKEEPER_LOG_LEVEL", "debug")
    assert parse_log_level(MediatorConfig.from_env().log_level) == logging.DEBUG


def test_parse_log_level(caplog: pytest.LogCaptureFixture) -> None:
    assert parse_log_level("info") == logging.INFO
    assert parse_log_level(" Error ") == logging.ERROR
    assert parse_log_level(None) == logging.WARNING
    assert parse_log_level("chatty", default=logging.INFO) == logging.INFO
    assert "Unknown log level 'chatty'" in caplog.text


# ── YAML ─────────────────────────────────────────────────────


def _write_yaml(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_load_yaml_config(tmp_path: Path) -> None:
    (tmp_path / "Notes").mkdir()
    path = _write_yaml(tmp_path / "vaultkeeper.yaml", {
        "vault": {"path": "Notes", "export_paths": ["~/Desktop"]},
        "security": {
            "enable_blocklist": True,
            "blocked_commands": ["git push"],
            "permission_mode": "normal",
        },
        "agent": {
            "model": "claude-sonnet-4-5",
            "thinking_budget": "low",
            "max_tool_result_chars": 300,
            "system_prompt": "Answer in French.",
            "environment": "ANTHROPIC_MODEL=x",
        },
        "approvals": {"file": str(tmp_path / "approved.json")},
        "logging": {"level": "debug"},
    })

    config = load_yaml_config(path)
    assert config.vault_path == str((tmp_path / "Notes").resolve())
    assert config.allowed_export_paths == ["~/Desktop"]
    assert config.blocked_commands == ["git push"]
    assert config.permission_mode == PermissionMode.NORMAL
    assert config.model == "claude-sonnet-4-5"
    assert config.thinking_budget == ThinkingBudget.LOW
    assert config.max_tool_result_chars == 300
    assert config.system_prompt == "Answer in French."
    assert config.parsed_environment() == {"ANTHROPIC_MODEL": "x"}
    assert config.approvals_file == str(tmp_path / "approved.json")
    assert config.log_level == "DEBUG"


def test_load_empty_yaml_uses_defaults(tmp_path: Path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    config = load_yaml_config(path)
    assert config.blocked_commands == list(DEFAULT_BLOCKED_COMMANDS)
    assert config.vault_path == ""


def test_load_yaml_rejects_bad_shapes(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        load_yaml_config(_write_yaml(tmp_path / "a.yaml", {"vault": ["not", "a", "mapping"]}))
    with pytest.raises(ConfigurationError):
        load_yaml_config(_write_yaml(tmp_path / "b.yaml", {"security": {"blocked_commands": 5}}))
    with pytest.raises(ConfigurationError):
        load_yaml_config(_write_yaml(tmp_path / "c.yaml", {"agent": {"max_tool_result_chars": "lots"}}))
    top_level_list = tmp_path / "d.yaml"
    top_level_list.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_yaml_config(top_level_list)


def test_load_yaml_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_yaml_config(tmp_path / "nope.yaml")


def test_load_yaml_parse_error(tmp_path: Path) -> None:
    path = tmp_path / "broken.yaml"
    path.write_text("vault: [unclosed\n", encoding="utf-8")
    with pytest.raises(yaml.YAMLError):
        load_yaml_config(path)


def test_attach_stores(tmp_path: Path) -> None:
    vault = tmp_path / "vault"
    vault.mkdir()
    CommandPolicyStore(vault).add_blocklist_pattern("npm publish")
    approvals_path = tmp_path / "approved.json"
    approvals_path.write_text(json.dumps([
        {"toolName": "Bash", "pattern": "make", "approvedAt": 1, "scope": "always"},
    ]), encoding="utf-8")

    config = MediatorConfig(vault_path=str(vault), blocked_commands=["rm -rf"])
    attach_stores(config, ApprovedActionsFile(approvals_path))

    assert config.blocked_commands == ["rm -rf", "npm publish"]
    assert [a.pattern for a in config.approved_actions] == ["make"]

    config.save_approvals([ApprovedAction("Read", "notes/")])
    saved = json.loads(approvals_path.read_text(encoding="utf-8"))
    assert saved == []


def test_attach_stores_uses_configured_approvals_file(tmp_path: Path) -> None:
    approvals_path = tmp_path / "custom.json"
    config = MediatorConfig(vault_path=str(tmp_path), approvals_file=str(approvals_path))
    attach_stores(config)
    assert config.approved_actions == []

    from vaultkeeper.engine.models import ApprovalScope

    config.save_approvals([ApprovedAction("Bash", "ls", scope=ApprovalScope.ALWAYS)])
    assert json.loads(approvals_path.read_text(encoding="utf-8"))[0]["pattern"] == "ls"
