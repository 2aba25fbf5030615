"""Data models for version-control metadata."""

from scmbridge.models.config import Settings
from scmbridge.models.records import (
    BlameEntry,
    Commit,
    DiffStats,
    ExecStatus,
    FileChange,
    FileStatus,
    LineStatus,
)

__all__ = [
    "BlameEntry",
    "Commit",
    "DiffStats",
    "ExecStatus",
    "FileChange",
    "FileStatus",
    "LineStatus",
    "Settings",
]
