"""Base class for version-control backends."""

import os
import re
import shutil
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple, TypeVar

import structlog

from scmbridge.backend.context import ScmContext
from scmbridge.models import BlameEntry, Commit, DiffStats, ExecStatus, FileChange, FileStatus
from scmbridge.process import BufferedHandle, CancelToken, ProcessHandle

logger = structlog.get_logger(__name__)

T = TypeVar("T")

ResultHandler = Callable[[ProcessHandle], Awaitable[T]]

# "<status> <path>" with an optional " -> <new path>" for renames
_CHANGE_LINE = re.compile(r"^\s*(\S+)\s+(.+?)(?:\s+->\s+(.+))?\s*$")


def _unquote(path: str) -> str:
    if len(path) > 1 and path[0] == path[-1] == '"':
        return path[1:-1]
    return path


class Backend(ABC):
    """Abstract base class for version-control backends.

    A backend translates the canonical operation set into one tool's command
    lines and normalizes that tool's output. One instance serves one detected
    repository root for the lifetime of an editor session.
    """

    # Entry in the repository root identifying a checkout of this tool
    marker: str = ""

    def __init__(self, name: str, command: str, context: ScmContext) -> None:
        """Initialize the backend.

        Args:
            name: Display name, e.g. "Git"
            command: Executable name or path, resolved on PATH
            context: Session context owning the cache, runner and watcher
        """
        self.name = name
        self.context = context
        self.command: Optional[str] = shutil.which(command)
        if self.command is None:
            logger.info("backend_binary_missing", backend=name, command=command)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(command={self.command!r})"

    # ========================================================================
    # Orchestration helpers
    # ========================================================================

    @property
    def cache(self):
        return self.context.cache

    @property
    def settings(self):
        return self.context.settings

    @staticmethod
    def relative_path(directory: str, path: str) -> str:
        # repository roots come back resolved; a file symlink itself stays as is
        parent, name = os.path.split(path)
        return os.path.relpath(
            os.path.join(os.path.realpath(parent), name), os.path.realpath(directory)
        )

    async def execute(
        self,
        handler: ResultHandler,
        directory: str,
        *args: str,
        token: Optional[CancelToken] = None,
    ) -> Any:
        """Run the backend executable and hand the process to ``handler``.

        Args:
            handler: Coroutine function consuming the process handle
            directory: Working directory of the tool
            *args: Command line arguments
            token: Optional cancel token checked at every yield point

        Returns:
            Whatever ``handler`` returns
        """
        if self.command is None:
            proc: ProcessHandle = BufferedHandle(
                args, returncode=127, stderr=f"{self.name} executable not found", token=token
            )
        else:
            proc = await self.context.runner.spawn(self.command, args, directory, token=token)
        try:
            return await handler(proc)
        finally:
            await proc.close()

    async def exec_status(self, proc: ProcessHandle) -> ExecStatus:
        """Build the success/message pair of a mutating command."""
        message = await proc.error_message()
        if await proc.returncode() == 0:
            return ExecStatus(success=True)
        return ExecStatus(success=False, message=message)

    async def _mutate(
        self,
        directory: str,
        affected: List[str],
        *args: str,
        token: Optional[CancelToken] = None,
    ) -> ExecStatus:
        status = await self.execute(self.exec_status, directory, *args, token=token)
        for path in affected:
            self.cache.invalidate_path(path)
        if status.success:
            logger.info("scm_command_succeeded", backend=self.name, args=list(args))
        else:
            logger.warning(
                "scm_command_failed", backend=self.name, args=list(args), message=status.message
            )
        return status

    async def read_stdout(
        self, directory: str, *args: str, token: Optional[CancelToken] = None
    ) -> str:
        """Run a command and return its whole stdout."""

        async def handler(proc: ProcessHandle) -> str:
            return await proc.output("stdout")

        return await self.execute(handler, directory, *args, token=token)

    async def read_report(
        self, directory: str, *args: str, token: Optional[CancelToken] = None
    ) -> str:
        """Run a command and return stderr if it wrote any, else stdout."""

        async def handler(proc: ProcessHandle) -> str:
            stdout = await proc.output("stdout")
            stderr = await proc.output("stderr")
            return stderr if stderr != "" else stdout

        return await self.execute(handler, directory, *args, token=token)

    @staticmethod
    def parse_change(
        line: str, vocabulary: Callable[[str], Optional[FileStatus]]
    ) -> Optional[Tuple[str, FileStatus, Optional[str]]]:
        """Split one ``<token> <path> [-> <new path>]`` status line.

        Returns:
            Tuple of (relative path, status, relative new path), or None when
            the line does not match or ``vocabulary`` has no status for its token
        """
        match = _CHANGE_LINE.match(line)
        if not match:
            return None
        token, path, new_path = match.groups()
        status = vocabulary(token)
        if status is None:
            logger.debug("status_token_skipped", token=token, path=path)
            return None
        if status is FileStatus.RENAMED:
            if not new_path:
                return None
            return _unquote(path), status, _unquote(new_path)
        if new_path:
            # a literal " -> " inside a plain file name
            path = f"{path} -> {new_path}"
        return _unquote(path), status, None

    async def repo_dir(
        self,
        directory: str,
        file: Optional[str] = None,
        token: Optional[CancelToken] = None,
    ) -> str:
        """Resolve the repository root serving ``file`` (or ``directory``).

        Backends without nested repositories use ``directory`` unchanged.
        """
        return directory.rstrip("/\\") or directory

    # ========================================================================
    # Detection and change notifications
    # ========================================================================

    def detect(self, directory: str) -> bool:
        """Check whether ``directory`` is a checkout root handled by this backend."""
        if not self.command:
            return False
        try:
            return self.marker in os.listdir(directory)
        except OSError:
            return False

    def has_staging(self) -> bool:
        """Whether stage_file/unstage_file are supported."""
        return False

    def control_path(self, directory: str) -> str:
        """Path of the repository metadata whose changes invalidate the cache."""
        return os.path.join(directory, self.marker)

    def watch_project(self, directory: str) -> None:
        """Invalidate cached results whenever the repository metadata changes."""
        watcher = self.context.watcher
        if watcher is None:
            return
        root = directory.rstrip("/\\") or directory

        def on_change(_path: str) -> None:
            self.cache.invalidate_path(root)

        watcher.watch(self.control_path(root), on_change)

    def unwatch_project(self, directory: str) -> None:
        watcher = self.context.watcher
        if watcher is not None:
            watcher.unwatch(self.control_path(directory.rstrip("/\\") or directory))

    # ========================================================================
    # Staging (optional capability)
    # ========================================================================

    async def stage_file(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> ExecStatus:
        """Stage ``file`` for the next commit."""
        return ExecStatus(success=False, message=f"{self.name} does not support staging")

    async def unstage_file(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> ExecStatus:
        """Remove ``file`` from the staging area."""
        return ExecStatus(success=False, message=f"{self.name} does not support staging")

    async def get_staged(
        self, directory: str, token: Optional[CancelToken] = None
    ) -> Set[str]:
        """Paths (relative to the repository root) currently staged."""
        return set()

    # ========================================================================
    # Queries
    # ========================================================================

    @abstractmethod
    async def get_branch(
        self, directory: str, token: Optional[CancelToken] = None
    ) -> Optional[str]:
        """Name of the checked out branch, or None if it cannot be determined."""
        pass

    @abstractmethod
    async def get_changes(
        self, directory: str, token: Optional[CancelToken] = None
    ) -> List[FileChange]:
        """Changed, added, removed and untracked paths of the working tree."""
        pass

    @abstractmethod
    async def get_commit_history(
        self,
        path: Optional[str],
        directory: str,
        token: Optional[CancelToken] = None,
    ) -> List[Commit]:
        """Commits touching ``path`` (whole repository if None), newest first."""
        pass

    @abstractmethod
    async def get_commit_info(
        self, id: str, directory: str, token: Optional[CancelToken] = None
    ) -> Optional[Commit]:
        """Details of one commit including the full message."""
        pass

    @abstractmethod
    async def get_commit_diff(
        self, id: str, directory: str, token: Optional[CancelToken] = None
    ) -> str:
        """Unified diff introduced by a commit."""
        pass

    @abstractmethod
    async def get_commit_file(
        self,
        id: Optional[str],
        directory: str,
        file: str,
        token: Optional[CancelToken] = None,
    ) -> str:
        """Contents of ``file`` at revision ``id`` (current revision if None)."""
        pass

    @abstractmethod
    async def get_diff(self, directory: str, token: Optional[CancelToken] = None) -> str:
        """Unified diff of the whole working tree."""
        pass

    @abstractmethod
    async def get_file_diff(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> str:
        """Unified diff of a single file."""
        pass

    @abstractmethod
    async def get_file_status(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> Optional[FileStatus]:
        """Status of a single file; None when unchanged or not recognized."""
        pass

    @abstractmethod
    async def get_file_blame(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> List[BlameEntry]:
        """One blame entry per source line, in file order."""
        pass

    @abstractmethod
    async def get_stats(self, directory: str, token: Optional[CancelToken] = None) -> DiffStats:
        """Inserted and deleted line counts of the working tree."""
        pass

    @abstractmethod
    async def get_status(self, directory: str, token: Optional[CancelToken] = None) -> str:
        """Human-readable status report of the tool."""
        pass

    # ========================================================================
    # Mutations
    # ========================================================================

    @abstractmethod
    async def pull(self, directory: str, token: Optional[CancelToken] = None) -> ExecStatus:
        """Fetch and merge upstream changes."""
        pass

    @abstractmethod
    async def revert_file(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> ExecStatus:
        """Discard working-tree changes of ``file``."""
        pass

    @abstractmethod
    async def add_path(
        self, path: str, directory: str, token: Optional[CancelToken] = None
    ) -> ExecStatus:
        """Start tracking ``path``."""
        pass

    @abstractmethod
    async def remove_path(
        self, path: str, directory: str, token: Optional[CancelToken] = None
    ) -> ExecStatus:
        """Stop tracking ``path`` (the working-tree copy is kept)."""
        pass

    @abstractmethod
    async def move_path(
        self,
        from_path: str,
        to_path: str,
        directory: str,
        token: Optional[CancelToken] = None,
    ) -> ExecStatus:
        """Rename a tracked path."""
        pass
