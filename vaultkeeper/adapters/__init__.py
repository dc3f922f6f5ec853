"""Adapters package - stores and stream types shared with frontends.

Approval persistence, file-edit tracking and the chunk types the engine
yields to the CLI or any other consumer.
"""
from __future__ import annotations

__all__ = [
    "ApprovalStore",
    "ApprovedActionsFile",
    "FileEditTracker",
    "StreamChunk",
    "TextChunk",
    "ThinkingChunk",
    "ToolUseChunk",
    "ToolResultChunk",
    "BlockedChunk",
    "ErrorChunk",
    "DoneChunk",
]

from vaultkeeper.adapters.events import (
    BlockedChunk,
    DoneChunk,
    ErrorChunk,
    StreamChunk,
    TextChunk,
    ThinkingChunk,
    ToolResultChunk,
    ToolUseChunk,
)
from vaultkeeper.adapters.file_tracker import FileEditTracker
from vaultkeeper.adapters.permission_store import ApprovalStore, ApprovedActionsFile
