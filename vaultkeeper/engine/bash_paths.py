"""Shell command path extraction with read/write intent.

Best-effort tokenizer for Bash command lines. It never executes or fully
parses the command: quotes, escapes, list/pipeline operators and
redirections are understood, subshells and here-doc bodies are not.

Every path-like operand is returned with an intent tag:

    cat ./notes/a.md > /tmp/out.md     ./notes/a.md → READ, /tmp/out.md → WRITE
    cp /tmp/out.md ./notes/out.md      /tmp/out.md → READ, ./notes/out.md → WRITE
    pandoc a.md -o ~/Desktop/a.docx    a.md → AMBIGUOUS, ~/Desktop/a.docx → WRITE

The mediator applies the containment policy through
``find_bash_command_path_violation``.
"""
from __future__ import annotations

import logging
import os
import re
import shlex
from dataclasses import dataclass

from vaultkeeper.shared.path_utils import (
    PATH_IN_EXPORT,
    PATH_IN_VAULT,
    PathSandbox,
)

from .models import BashSegment, PathIntent, PathToken

logger = logging.getLogger(__name__)

# Longest first so "&&" wins over "&" and ">>" over ">".
_OPERATORS: tuple[str, ...] = (
    "&>>", "<<<",
    "&&", "||", ">>", ">|", ">&", "&>", "<<",
    ";", "|", "&", ">", "<",
)
_SEGMENT_SEPARATORS = frozenset({";", "&&", "||", "|", "&"})
_OUTPUT_REDIRECTS = frozenset({">", ">>", ">|", "&>", "&>>", ">&"})
_INPUT_REDIRECTS = frozenset({"<"})
_HEREDOC_OPERATORS = frozenset({"<<", "<<<"})

_OUTPUT_OPTIONS = frozenset({"-o", "--output", "--out", "--outfile", "--output-file"})
_COMMAND_WRAPPERS = frozenset({"sudo", "env", "command", "nohup", "time", "exec", "nice"})
# Last operand is the destination, the rest are sources.
_COPY_MOVE_COMMANDS = frozenset({"cp", "mv", "rsync", "scp", "install", "ln"})
# Every path-like operand is only read.
_READ_OPERAND_COMMANDS = frozenset({
    "cat", "head", "tail", "less", "more", "wc", "sort", "uniq", "diff",
    "nl", "od", "xxd", "strings", "stat", "file", "md5sum", "sha256sum",
})
# Every operand is created, modified or removed.
_WRITE_OPERAND_COMMANDS = frozenset({
    "tee", "touch", "mkdir", "rm", "rmdir", "truncate", "unlink", "shred",
})
# Device files that are always safe as redirection targets.
_SAFE_DEVICE_PATHS = frozenset({
    "/dev/null", "/dev/stdout", "/dev/stderr", "/dev/stdin", "/dev/tty",
})

_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_FD_PREFIX_RE = re.compile(r"^\d+")
_FILENAME_WITH_EXT_RE = re.compile(r"^[\w][\w.\-]*\.[A-Za-z0-9]{1,10}$")
_HOME_VAR_RE = re.compile(r"^(\$HOME|\$\{HOME\})(?=/|$)")
_PWD_VAR_RE = re.compile(r"^(\$PWD|\$\{PWD\})(?=/|$)")


@dataclass(frozen=True)
class PathViolation:
    """A command operand that failed the containment policy."""
    kind: str  # "outside_vault" | "export_read"
    path: str
    raw: str
    intent: PathIntent


# ── Tokenizing ───────────────────────────────────────────────


def _match_operator(command: str, index: int) -> str:
    for op in _OPERATORS:
        if command.startswith(op, index):
            return op
    return command[index]


def tokenize_bash_command(command: str) -> list[str]:
    """Split a command line into words and operator tokens.

    Words keep their quotes (see ``clean_path_token``). Operators are only
    recognized outside quotes; ``2>``-style fd prefixes stay attached to
    the redirection operator. Unquoted newlines act like ``;``.
    """
    tokens: list[str] = []
    buf: list[str] = []
    in_single = False
    in_double = False
    i = 0
    n = len(command or "")

    def flush() -> None:
        if buf:
            tokens.append("".join(buf))
            buf.clear()

    while i < n:
        ch = command[i]
        if in_single:
            buf.append(ch)
            if ch == "'":
                in_single = False
            i += 1
            continue
        if in_double:
            buf.append(ch)
            if ch == "\\" and i + 1 < n:
                buf.append(command[i + 1])
                i += 2
                continue
            if ch == '"':
                in_double = False
            i += 1
            continue
        if ch == "\\":
            buf.append(ch)
            if i + 1 < n:
                buf.append(command[i + 1])
            i += 2
            continue
        if ch == "'":
            in_single = True
            buf.append(ch)
            i += 1
            continue
        if ch == '"':
            in_double = True
            buf.append(ch)
            i += 1
            continue
        if ch == "\n":
            flush()
            tokens.append(";")
            i += 1
            continue
        if ch.isspace():
            flush()
            i += 1
            continue
        if ch in ";|&<>":
            prefix = ""
            if ch in "<>" and buf and "".join(buf).isdigit():
                prefix = "".join(buf)
                buf.clear()
            else:
                flush()
            op = _match_operator(command, i)
            tokens.append(prefix + op)
            i += len(op)
            continue
        buf.append(ch)
        i += 1
    flush()
    return tokens


def split_bash_tokens_into_segments(tokens: list[str]) -> list[list[str]]:
    """Split a token stream at ``;``, ``&&``, ``||``, ``|`` and ``&``."""
    segments: list[list[str]] = []
    current: list[str] = []
    for token in tokens:
        if token in _SEGMENT_SEPARATORS:
            if current:
                segments.append(current)
            current = []
            continue
        current.append(token)
    if current:
        segments.append(current)
    return segments


def _command_index(segment: list[str]) -> int:
    """Index of the command word, skipping assignments, redirections and wrappers."""
    i = 0
    while i < len(segment):
        token = segment[i]
        if _ASSIGNMENT_RE.match(token):
            i += 1
            continue
        if (
            is_bash_output_redirect_operator(token)
            or is_bash_input_redirect_operator(token)
            or token in _HEREDOC_OPERATORS
        ):
            # Operator plus its target or delimiter.
            i += 2
            continue
        name = os.path.basename(_unquote(token))
        if name in _COMMAND_WRAPPERS:
            i += 1
            while i < len(segment) and segment[i].startswith("-"):
                i += 1
            continue
        return i
    return len(segment)


def get_bash_segment_command_name(segment: list[str]) -> str:
    """Basename of the segment's command word, or "" if there is none."""
    idx = _command_index(segment)
    if idx >= len(segment):
        return ""
    token = segment[idx]
    if _strip_fd(token) in _OUTPUT_REDIRECTS | _INPUT_REDIRECTS:
        return ""
    return os.path.basename(_unquote(token))


# ── Token classification ─────────────────────────────────────


def _strip_fd(token: str) -> str:
    return _FD_PREFIX_RE.sub("", token, count=1) if token[:1].isdigit() else token


def is_bash_output_redirect_operator(token: str) -> bool:
    return _strip_fd(token) in _OUTPUT_REDIRECTS


def is_bash_input_redirect_operator(token: str) -> bool:
    return _strip_fd(token) in _INPUT_REDIRECTS


def is_bash_output_option_expecting_value(token: str) -> bool:
    return token in _OUTPUT_OPTIONS


def _unquote(raw: str) -> str:
    if not raw or not any(q in raw for q in ("'", '"', "\\")):
        return raw
    try:
        parts = shlex.split(raw)
    except ValueError:
        return raw.strip("'\"")
    if len(parts) == 1:
        return parts[0]
    return raw.strip("'\"")


def clean_path_token(raw: str) -> str | None:
    """Strip quotes and normalize home/pwd variables.

    Returns None for empty strings, operators and flags.
    """
    if not raw:
        return None
    if raw in _OPERATORS or _strip_fd(raw) in _OPERATORS:
        return None
    value = _unquote(raw).strip()
    if not value or value.startswith("-"):
        return None
    value = _HOME_VAR_RE.sub("~", value, count=1)
    value = _PWD_VAR_RE.sub(".", value, count=1)
    return value


def is_path_like_token(token: str) -> bool:
    """Heuristic: does a cleaned token look like a filesystem path?"""
    if not token:
        return False
    if token in {".", "..", "~"}:
        return True
    if "/" in token:
        return True
    if token.startswith((".", "~")):
        return True
    return bool(_FILENAME_WITH_EXT_RE.match(token))


def _make_token(raw: str, intent: PathIntent, *, require_path_like: bool) -> PathToken | None:
    cleaned = clean_path_token(raw)
    if cleaned is None:
        return None
    if cleaned in _SAFE_DEVICE_PATHS:
        return None
    if require_path_like and not is_path_like_token(cleaned):
        return None
    return PathToken(raw=raw, path=cleaned, intent=intent)


def _inline_option_value(token: str) -> tuple[str, str] | None:
    """Split ``--flag=value`` into (flag, value)."""
    if not token.startswith("-") or "=" not in token:
        return None
    flag, _, value = token.partition("=")
    return flag, value


def extract_segment_path_tokens(segment: list[str]) -> BashSegment:
    """Classify every path-like operand of one segment."""
    command = get_bash_segment_command_name(segment)
    start = _command_index(segment) + 1
    tokens: list[PathToken] = []
    positionals: list[str] = []
    # Redirections may appear before the command word too (``> out cmd``).
    leading = segment[:start - 1] if start > 0 else []

    def scan(words: list[str], collect_positionals: bool) -> None:
        expect: PathIntent | None = None
        skip_next = False
        for word in words:
            if skip_next:
                skip_next = False
                continue
            if expect is not None:
                token = _make_token(word, expect, require_path_like=False)
                if token is not None:
                    tokens.append(token)
                expect = None
                continue
            if is_bash_output_redirect_operator(word):
                expect = PathIntent.WRITE
                continue
            if is_bash_input_redirect_operator(word):
                expect = PathIntent.READ
                continue
            if word in _HEREDOC_OPERATORS:
                skip_next = True
                continue
            if is_bash_output_option_expecting_value(word):
                expect = PathIntent.WRITE
                continue
            if command == "dd" and word.startswith(("if=", "of=")):
                intent = PathIntent.READ if word.startswith("if=") else PathIntent.WRITE
                token = _make_token(word[3:], intent, require_path_like=False)
                if token is not None:
                    tokens.append(token)
                continue
            inline = _inline_option_value(word)
            if inline is not None:
                flag, value = inline
                if flag in _OUTPUT_OPTIONS:
                    token = _make_token(value, PathIntent.WRITE, require_path_like=False)
                else:
                    token = _make_token(value, PathIntent.AMBIGUOUS, require_path_like=True)
                if token is not None:
                    tokens.append(token)
                continue
            if word.startswith("-"):
                continue
            if collect_positionals:
                positionals.append(word)

    scan(leading, collect_positionals=False)
    scan(segment[start:] if start <= len(segment) else [], collect_positionals=True)

    if command in _COPY_MOVE_COMMANDS and positionals:
        *sources, destination = positionals
        for word in sources:
            token = _make_token(word, PathIntent.READ, require_path_like=False)
            if token is not None:
                tokens.append(token)
        token = _make_token(destination, PathIntent.WRITE, require_path_like=False)
        if token is not None:
            tokens.append(token)
    elif command in _WRITE_OPERAND_COMMANDS:
        for word in positionals:
            token = _make_token(word, PathIntent.WRITE, require_path_like=False)
            if token is not None:
                tokens.append(token)
    else:
        intent = (
            PathIntent.READ if command in _READ_OPERAND_COMMANDS
            else PathIntent.AMBIGUOUS
        )
        for word in positionals:
            token = _make_token(word, intent, require_path_like=True)
            if token is not None:
                tokens.append(token)

    return BashSegment(command=command, tokens=tokens)


def extract_bash_path_tokens(command: str) -> list[BashSegment]:
    """Tokenize a command line and classify operands per segment."""
    segments = split_bash_tokens_into_segments(tokenize_bash_command(command))
    return [extract_segment_path_tokens(segment) for segment in segments]


def extract_path_tokens(command: str) -> list[PathToken]:
    """Flattened, ordered path tokens of a whole command line."""
    return [
        token
        for segment in extract_bash_path_tokens(command)
        for token in segment.tokens
    ]


def extract_path_candidates(command: str) -> list[str]:
    """Cleaned path strings of a command line, in order."""
    return [token.path for token in extract_path_tokens(command)]


# ── Policy ───────────────────────────────────────────────────


def check_bash_path_access(token: PathToken, sandbox: PathSandbox) -> PathViolation | None:
    """Apply the vault/export policy to one operand.

    READ and AMBIGUOUS operands must resolve inside the vault; export roots
    are write-only. WRITE operands may resolve inside the vault or an
    export root.
    """
    location = sandbox.locate(token.path)
    if location == PATH_IN_VAULT:
        return None
    if token.intent == PathIntent.WRITE:
        if location == PATH_IN_EXPORT:
            return None
        return PathViolation("outside_vault", token.path, token.raw, token.intent)
    if location == PATH_IN_EXPORT:
        return PathViolation("export_read", token.path, token.raw, token.intent)
    return PathViolation("outside_vault", token.path, token.raw, token.intent)


def find_bash_path_violation_in_segment(
    segment: BashSegment,
    sandbox: PathSandbox,
) -> PathViolation | None:
    for token in segment.tokens:
        violation = check_bash_path_access(token, sandbox)
        if violation is not None:
            return violation
    return None


def find_bash_command_path_violation(
    command: str,
    sandbox: PathSandbox,
) -> PathViolation | None:
    """First operand of ``command`` that violates the containment policy."""
    for segment in extract_bash_path_tokens(command):
        violation = find_bash_path_violation_in_segment(segment, sandbox)
        if violation is not None:
            logger.debug(
                "Bash path violation kind=%s cmd=%s path=%s intent=%s",
                violation.kind, segment.command, violation.path,
                violation.intent.value,
            )
            return violation
    return None
