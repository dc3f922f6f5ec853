"""Path containment utilities: vault and export-root checks.

Shared by the tool mediator and the bash path extractor. No SDK dependency.

Provides:
- resolve_real_path: symlink-aware canonicalization that tolerates missing leaves
- expand_home_path: leading ``~`` expansion
- is_path_within_vault / is_path_in_export_roots: containment predicates
- PathSandbox: roots resolved once per conversation, checked many times
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


# ── Resolution ───────────────────────────────────────────────


def resolve_real_path(path: str) -> str:
    """Best-effort realpath that stays symlink-aware for missing targets.

    If the full path doesn't exist, the nearest existing ancestor is
    canonicalized and the missing components are re-appended unchanged.
    A file the agent is about to create still resolves to an answer.
    """
    try:
        return os.path.realpath(path, strict=True)
    except OSError:
        pass

    absolute = os.path.abspath(path)
    current = absolute
    suffix: list[str] = []
    while True:
        if os.path.exists(current):
            try:
                resolved = os.path.realpath(current, strict=True)
            except OSError:
                resolved = None
            if resolved is not None:
                if suffix:
                    return os.path.join(resolved, *reversed(suffix))
                return resolved
        parent = os.path.dirname(current)
        if parent == current:
            return absolute
        suffix.append(os.path.basename(current))
        current = parent


def expand_home_path(path: str) -> str:
    """Expand a leading ``~`` or ``~/`` to the user's home directory."""
    if path == "~":
        return os.path.expanduser("~")
    if path.startswith("~/") or path.startswith("~" + os.sep):
        return os.path.join(os.path.expanduser("~"), path[2:])
    return path


def _absolute_candidate(candidate: str, vault_path: str) -> str:
    expanded = expand_home_path(candidate)
    if os.path.isabs(expanded):
        return expanded
    return os.path.join(vault_path, expanded)


def _is_same_or_descendant(candidate_real: str, root_real: str) -> bool:
    if candidate_real == root_real:
        return True
    # The root of the filesystem already ends with a separator.
    prefix = root_real if root_real.endswith(os.sep) else root_real + os.sep
    return candidate_real.startswith(prefix)


# ── Containment ──────────────────────────────────────────────


def is_path_within_vault(candidate: str, vault_path: str) -> bool:
    """Check whether a candidate path is inside the vault.

    Relative candidates are vault-relative. Both sides are canonicalized,
    so ``/vault-evil`` never satisfies containment in ``/vault``.
    """
    vault_real = resolve_real_path(vault_path)
    candidate_real = resolve_real_path(_absolute_candidate(candidate, vault_path))
    return _is_same_or_descendant(candidate_real, vault_real)


def is_path_in_export_roots(
    candidate: str,
    export_roots: list[str] | tuple[str, ...],
    vault_path: str,
) -> bool:
    """Check whether a candidate path is inside any allowed export root."""
    if not export_roots:
        return False
    candidate_real = resolve_real_path(_absolute_candidate(candidate, vault_path))
    for export_root in export_roots:
        if not export_root:
            continue
        export_real = resolve_real_path(expand_home_path(export_root))
        if _is_same_or_descendant(candidate_real, export_real):
            return True
    return False


# ── Sandbox ──────────────────────────────────────────────────


PATH_IN_VAULT = "vault"
PATH_IN_EXPORT = "export"
PATH_OUTSIDE = "outside"


@dataclass(frozen=True)
class PathSandbox:
    """Vault and export roots for one conversation.

    Roots are canonicalized once at construction and reused for every
    later check. Symlink changes during a running session are not
    picked up.
    """

    vault_path: str
    vault_real: str
    export_roots: tuple[str, ...] = ()

    @classmethod
    def create(
        cls,
        vault_path: str,
        export_roots: list[str] | tuple[str, ...] = (),
    ) -> PathSandbox:
        vault_real = resolve_real_path(expand_home_path(vault_path))
        resolved_exports = tuple(
            resolve_real_path(expand_home_path(root))
            for root in export_roots
            if root and root.strip()
        )
        logger.debug(
            "PathSandbox vault=%s exports=%s", vault_real, list(resolved_exports),
        )
        return cls(
            vault_path=vault_path,
            vault_real=vault_real,
            export_roots=resolved_exports,
        )

    def resolve(self, candidate: str) -> str:
        return resolve_real_path(_absolute_candidate(candidate, self.vault_real))

    def locate(self, candidate: str) -> str:
        """Return PATH_IN_VAULT, PATH_IN_EXPORT or PATH_OUTSIDE."""
        resolved = self.resolve(candidate)
        if _is_same_or_descendant(resolved, self.vault_real):
            return PATH_IN_VAULT
        for export_real in self.export_roots:
            if _is_same_or_descendant(resolved, export_real):
                return PATH_IN_EXPORT
        return PATH_OUTSIDE

    def is_within_vault(self, candidate: str) -> bool:
        return self.locate(candidate) == PATH_IN_VAULT

    def is_within_export_roots(self, candidate: str) -> bool:
        if not self.export_roots:
            return False
        resolved = self.resolve(candidate)
        return any(
            _is_same_or_descendant(resolved, export_real)
            for export_real in self.export_roots
        )
