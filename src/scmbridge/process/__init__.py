"""Process orchestration for version-control executables."""

from scmbridge.process.runner import (
    BufferedHandle,
    CancelToken,
    LineSequence,
    ProcessHandle,
    ProcessRunner,
    SubprocessHandle,
)

__all__ = [
    "BufferedHandle",
    "CancelToken",
    "LineSequence",
    "ProcessHandle",
    "ProcessRunner",
    "SubprocessHandle",
]
