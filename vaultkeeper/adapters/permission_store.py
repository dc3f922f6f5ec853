"""Remembered tool approvals.

Approvals live at two levels:
- Session: in memory, owned by one conversation, dropped on reset
- Permanent: persisted by the settings owner, by default to
  ~/.vaultkeeper/approved_actions.json
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable

from vaultkeeper.engine.approval_rules import get_action_pattern, matches_rule_pattern
from vaultkeeper.engine.models import ApprovalScope, ApprovedAction
from vaultkeeper.shared.services.durable_write import atomic_write_json

logger = logging.getLogger(__name__)

GLOBAL_DIR = Path.home() / ".vaultkeeper"
FILENAME = "approved_actions.json"

PersistCallback = Callable[[list[ApprovedAction]], None]


class ApprovalStore:
    """Session and permanent approval lists for one conversation.

    The two lists are independent: clearing the session never touches
    permanent entries. ``persist`` is invoked with the full permanent list
    after every permanent approval.
    """

    def __init__(
        self,
        approved_actions: list[ApprovedAction] | None = None,
        persist: PersistCallback | None = None,
    ) -> None:
        self._permanent: list[ApprovedAction] = [
            action for action in (approved_actions or [])
            if action.scope == ApprovalScope.ALWAYS
        ]
        self._session: list[ApprovedAction] = []
        self._persist = persist

    @property
    def session_actions(self) -> list[ApprovedAction]:
        return list(self._session)

    @property
    def permanent_actions(self) -> list[ApprovedAction]:
        return list(self._permanent)

    def is_approved(self, tool_name: str, tool_input: dict[str, Any]) -> bool:
        pattern = get_action_pattern(tool_name, tool_input)
        for action in self._session:
            if action.tool_name == tool_name and matches_rule_pattern(
                tool_name, pattern, action.pattern, ApprovalScope.SESSION,
            ):
                return True
        for action in self._permanent:
            if action.tool_name == tool_name and matches_rule_pattern(
                tool_name, pattern, action.pattern, ApprovalScope.ALWAYS,
            ):
                return True
        return False

    def approve(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        scope: ApprovalScope = ApprovalScope.SESSION,
    ) -> ApprovedAction:
        action = ApprovedAction(
            tool_name=tool_name,
            pattern=get_action_pattern(tool_name, tool_input),
            scope=scope,
        )
        if scope == ApprovalScope.ALWAYS:
            self._permanent.append(action)
            logger.info(
                "APPROVE_ALWAYS tool=%s pattern=%s", tool_name, action.pattern,
            )
            if self._persist is not None:
                self._persist(self.permanent_actions)
        else:
            self._session.append(action)
            logger.debug(
                "APPROVE_SESSION tool=%s pattern=%s", tool_name, action.pattern,
            )
        return action

    def clear_session(self) -> None:
        self._session.clear()


class ApprovedActionsFile:
    """Load and save permanent approvals as a JSON list."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or (GLOBAL_DIR / FILENAME)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[ApprovedAction]:
        """Load permanent approvals. Corrupt entries are skipped."""
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Failed to load %s", self._path)
            return []
        if not isinstance(data, list):
            logger.warning("Ignoring %s: expected a JSON list", self._path)
            return []
        actions: list[ApprovedAction] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            try:
                action = ApprovedAction.from_dict(entry)
            except (TypeError, ValueError):
                logger.warning("Skipping malformed approval in %s", self._path)
                continue
            action.scope = ApprovalScope.ALWAYS
            actions.append(action)
        return actions

    def save(self, actions: list[ApprovedAction]) -> None:
        payload = [
            action.to_dict() for action in actions
            if action.scope == ApprovalScope.ALWAYS
        ]
        try:
            atomic_write_json(self._path, payload)
        except OSError:
            logger.warning("Failed to write %s", self._path)
