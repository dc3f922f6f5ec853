"""Vault command blocklist matching and persistence.

Extra blocklist patterns are stored one per line in:
- <vault>/.vaultkeeper/command_blocklist.txt

Each pattern is tried as a regular expression first. A pattern that does
not compile falls back to case-sensitive substring containment, so a
literal like ``[invalid regex`` still blocks commands that contain it.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path

from vaultkeeper.shared.services.durable_write import atomic_write_text

logger = logging.getLogger(__name__)

VAULTKEEPER_DIRNAME = ".vaultkeeper"
BLOCKLIST_FILENAME = "command_blocklist.txt"
DEFAULT_BLOCKED_COMMANDS: tuple[str, ...] = (
    "rm -rf",
    "chmod 777",
    "chmod -R 777",
)


def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern)
    except re.error:
        return None


def find_blocking_pattern(command: str, patterns: list[str] | tuple[str, ...]) -> str | None:
    """Return the first pattern that matches ``command``, or None."""
    for raw in patterns:
        pattern = (raw or "").strip()
        if not pattern:
            continue
        compiled = _compile(pattern)
        if compiled is not None:
            if compiled.search(command):
                return pattern
        elif pattern in command:
            return pattern
    return None


def is_command_blocked(command: str, patterns: list[str] | tuple[str, ...]) -> bool:
    return find_blocking_pattern(command, patterns) is not None


def validate_patterns(patterns: list[str] | tuple[str, ...]) -> list[str]:
    """Return the entries that are not valid regular expressions.

    Invalid entries still work as substring matches; callers only log them.
    """
    invalid: list[str] = []
    for raw in patterns:
        pattern = (raw or "").strip()
        if pattern and _compile(pattern) is None:
            invalid.append(pattern)
    return invalid


class CommandPolicyStore:
    """Reads and writes the vault's command blocklist file."""

    def __init__(self, workspace_dir: Path | str) -> None:
        self._workspace_dir = Path(workspace_dir)
        self._config_dir = self._workspace_dir / VAULTKEEPER_DIRNAME
        self._blocklist_path = self._config_dir / BLOCKLIST_FILENAME

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    @property
    def blocklist_path(self) -> Path:
        return self._blocklist_path

    def ensure_files(self) -> None:
        """Create the blocklist file if missing."""
        self._config_dir.mkdir(parents=True, exist_ok=True)
        if not self._blocklist_path.exists():
            self._blocklist_path.write_text("", encoding="utf-8")

    def load_patterns(
        self,
        defaults: list[str] | tuple[str, ...] = DEFAULT_BLOCKED_COMMANDS,
    ) -> list[str]:
        """Configured defaults followed by the vault file's entries, deduplicated."""
        patterns: list[str] = []
        for entry in list(defaults) + self.read_blocklist():
            cleaned = entry.strip()
            if cleaned and cleaned not in patterns:
                patterns.append(cleaned)
        invalid = validate_patterns(patterns)
        if invalid:
            logger.warning(
                "Blocklist entries are not valid regex, matching as substrings: %s",
                invalid,
            )
        logger.debug(
            "Command blocklist loaded: %d patterns (%d default + %d custom) from %s",
            len(patterns), len(defaults), len(patterns) - len(defaults),
            self._blocklist_path,
        )
        return patterns

    def read_blocklist(self) -> list[str]:
        """Return raw blocklist patterns from the vault file."""
        return self._read_patterns(self._blocklist_path)

    def add_blocklist_pattern(self, pattern: str) -> None:
        cleaned = pattern.strip()
        if not cleaned:
            return
        self.ensure_files()
        entries = self._read_patterns(self._blocklist_path)
        if cleaned in entries:
            return
        entries.append(cleaned)
        atomic_write_text(self._blocklist_path, "\n".join(entries) + "\n")

    def remove_blocklist_pattern(self, pattern: str) -> bool:
        """Remove a pattern from the blocklist. Returns True if removed."""
        cleaned = pattern.strip()
        if not cleaned:
            return False
        entries = self._read_patterns(self._blocklist_path)
        if cleaned not in entries:
            return False
        entries.remove(cleaned)
        atomic_write_text(
            self._blocklist_path, "\n".join(entries) + "\n" if entries else "",
        )
        return True

    @staticmethod
    def _read_patterns(path: Path) -> list[str]:
        if not path.exists():
            return []
        lines: list[str] = []
        for line in path.read_text(encoding="utf-8").splitlines():
            entry = line.strip()
            if not entry or entry.startswith("#"):
                continue
            lines.append(entry)
        return lines
