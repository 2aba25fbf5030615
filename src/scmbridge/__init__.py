"""scmbridge - version-control metadata for editors.

Runs Git and Fossil as subprocesses, normalizes their output and never blocks
the host event loop for long.
"""

from scmbridge.backend import Backend, FossilBackend, GitBackend, ResultCache, ScmContext, detect_backend
from scmbridge.diff import classify_lines
from scmbridge.exceptions import OperationCancelled, ScmError
from scmbridge.models import (
    BlameEntry,
    Commit,
    DiffStats,
    ExecStatus,
    FileChange,
    FileStatus,
    LineStatus,
    Settings,
)
from scmbridge.process import CancelToken
from scmbridge.session import ScmSession
from scmbridge.watch import PathWatcher, WatchdogWatcher

__version__ = "0.1.0"

__all__ = [
    "Backend",
    "BlameEntry",
    "CancelToken",
    "Commit",
    "DiffStats",
    "ExecStatus",
    "FileChange",
    "FileStatus",
    "FossilBackend",
    "GitBackend",
    "LineStatus",
    "OperationCancelled",
    "PathWatcher",
    "ResultCache",
    "ScmContext",
    "ScmError",
    "ScmSession",
    "Settings",
    "WatchdogWatcher",
    "classify_lines",
    "detect_backend",
]
