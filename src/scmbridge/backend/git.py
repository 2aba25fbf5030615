"""Backend implementation for Git.

More details at https://git-scm.com/
"""

import asyncio
import os
import re
from datetime import datetime
from typing import List, Optional, Set

import structlog

from scmbridge.backend.base import Backend
from scmbridge.backend.context import ScmContext
from scmbridge.models import BlameEntry, Commit, DiffStats, ExecStatus, FileChange, FileStatus
from scmbridge.process import CancelToken, ProcessHandle

logger = structlog.get_logger(__name__)

# Read-only invocations must not take the index lock
NO_LOCKS = "--no-optional-locks"

GIT_STATUS = {
    "A": FileStatus.ADDED,
    "D": FileStatus.DELETED,
    "M": FileStatus.EDITED,
    "R": FileStatus.RENAMED,
    "??": FileStatus.UNTRACKED,
}

# "status --short" codes of unmerged paths
UNMERGED = {"DD", "AU", "UD", "UA", "DU", "AA", "UU"}


def git_status(token: str) -> Optional[FileStatus]:
    """Map a ``status --short`` XY code; the index column wins when both are set."""
    status = GIT_STATUS.get(token)
    if status is None and len(token) == 2 and token not in UNMERGED:
        status = GIT_STATUS.get(token[0]) or GIT_STATUS.get(token[1])
    return status


HISTORY_FORMAT = "--pretty=format:'%an' %H %ct %s"
HISTORY_DATE_FORMAT = "%Y-%m-%d %I:%M %p"

_HISTORY_LINE = re.compile(r"^'(.*?)' (\S+) (\S+) (.*)$")
_BRANCH_LINE = re.compile(r"^(\S+)")
_SUBMODULE_LINE = re.compile(r"^\S+\s+(.+)$")
_INFO_HASH = re.compile(r"^commit\s+([a-zA-Z0-9]+)")
_INFO_AUTHOR = re.compile(r"^Author:\s+(.+)$")
_INFO_DATE = re.compile(r"^Date:\s+(.+)$")
_INFO_TEXT = re.compile(r"^    (.+)")
# "^3f2a9c1 (Jane Doe 2024-01-15 ..." optionally with a file name before "("
_BLAME_LINE = re.compile(r"^\^?([A-Fa-f0-9]+) [^(]*\((.*?) (\d{4}-\d{2}-\d{2})")
_NUMSTAT_LINE = re.compile(r"^\s*(\d+)\s+(\d+)")


class GitBackend(Backend):
    """Full-featured backend: staging support and nested repository aggregation."""

    marker = ".git"

    def __init__(self, context: ScmContext) -> None:
        super().__init__("Git", context.settings.git_command, context)

    def has_staging(self) -> bool:
        return True

    # ========================================================================
    # Repository root resolution
    # ========================================================================

    async def toplevel(self, path: str, token: Optional[CancelToken] = None) -> str:
        """Top level of the repository containing ``path``, else ``path`` itself.

        Never cached: submodules make the answer depend on the exact path.
        """

        async def handler(proc: ProcessHandle) -> str:
            output = await proc.output("stdout")
            if await proc.returncode() != 0:
                return ""
            return output.strip()

        top = await self.execute(handler, path, "rev-parse", "--show-toplevel", token=token)
        return os.path.normpath(top) if top else path

    async def repo_dir(
        self,
        directory: str,
        file: Optional[str] = None,
        token: Optional[CancelToken] = None,
    ) -> str:
        directory = directory.rstrip("/\\") or directory
        if file is None:
            return await self.toplevel(directory, token)

        # nearest existing directory holding the file
        path = file
        while not os.path.isdir(path):
            parent = os.path.dirname(path)
            if parent == path:
                break
            path = parent

        # no need to ask git when the file lives directly in the project
        if path == directory:
            return directory
        return await self.toplevel(path, token)

    # ========================================================================
    # Staging
    # ========================================================================

    async def stage_file(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> ExecStatus:
        directory = await self.repo_dir(directory, file, token)
        return await self._mutate(
            directory, [file], "add", self.relative_path(directory, file), token=token
        )

    async def unstage_file(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> ExecStatus:
        directory = await self.repo_dir(directory, file, token)
        return await self._mutate(
            directory,
            [file],
            "restore",
            "--staged",
            self.relative_path(directory, file),
            token=token,
        )

    async def get_staged(
        self, directory: str, token: Optional[CancelToken] = None
    ) -> Set[str]:
        directory = await self.repo_dir(directory, token=token)

        async def handler(proc: ProcessHandle) -> Set[str]:
            staged: Set[str] = set()
            async for idx, line in proc.lines("stdout"):
                if line.strip() != "":
                    staged.add(line.strip())
                if idx % 50 == 0:
                    await proc.checkpoint()
            return staged

        async def fetch() -> Set[str]:
            return await self.execute(
                handler, directory, NO_LOCKS, "diff", "--name-only", "--cached", token=token
            )

        staged, _ = await self.cache.fetch("get_staged", directory, fetch)
        return staged

    # ========================================================================
    # Queries
    # ========================================================================

    async def get_branch(
        self, directory: str, token: Optional[CancelToken] = None
    ) -> Optional[str]:
        directory = await self.repo_dir(directory, token=token)

        async def handler(proc: ProcessHandle) -> Optional[str]:
            async for idx, line in proc.lines("stdout"):
                match = _BRANCH_LINE.match(line)
                if match:
                    return match.group(1)
                if idx % 50 == 0:
                    await proc.checkpoint()
            return None

        return await self.execute(
            handler, directory, NO_LOCKS, "rev-parse", "--abbrev-ref", "HEAD", token=token
        )

    async def _collect_changes(
        self, directory: str, token: Optional[CancelToken] = None
    ) -> List[FileChange]:
        """Changes of one repository, without descending into submodules."""
        staged = await self.get_staged(directory, token)

        async def handler(proc: ProcessHandle) -> List[FileChange]:
            changes: List[FileChange] = []
            seen: Set[str] = set()
            async for idx, line in proc.lines("stdout"):
                parsed = self.parse_change(line, git_status) if line != "" else None
                if parsed and parsed[0] not in seen:
                    path, status, new_path = parsed
                    changes.append(
                        FileChange(
                            status=status,
                            path=os.path.join(directory, path),
                            new_path=os.path.join(directory, new_path) if new_path else None,
                            staged=True if path in staged or new_path in staged else None,
                        )
                    )
                    seen.add(path)
                if idx % 50 == 0:
                    await proc.checkpoint()
            return changes

        return await self.execute(handler, directory, NO_LOCKS, "status", "--short", token=token)

    async def _list_submodules(
        self, directory: str, token: Optional[CancelToken] = None
    ) -> List[str]:
        async def handler(proc: ProcessHandle) -> List[str]:
            submodules: List[str] = []
            async for idx, line in proc.lines("stdout"):
                # Entering 'path/to/module'
                match = _SUBMODULE_LINE.match(line)
                if match:
                    name = match.group(1).strip()
                    if len(name) > 2 and name[0] == name[-1] == "'":
                        name = name[1:-1]
                        if os.path.isdir(os.path.join(directory, name)):
                            submodules.append(name)
                if idx % 50 == 0:
                    await proc.checkpoint()
            return submodules

        return await self.execute(
            handler, directory, "submodule", "foreach", "--recursive", token=token
        )

    async def get_changes(
        self, directory: str, token: Optional[CancelToken] = None
    ) -> List[FileChange]:
        directory = await self.repo_dir(directory, token=token)

        async def fetch() -> List[FileChange]:
            changes = await self._collect_changes(directory, token)
            submodules = await self._list_submodules(directory, token)
            if submodules:
                # fan out every sub-query, then wait for all of them
                results = await asyncio.gather(
                    *(
                        self._collect_changes(os.path.join(directory, name), token)
                        for name in submodules
                    )
                )
                for sub_changes in results:
                    changes.extend(sub_changes)
                logger.debug("submodule_changes_collected", directory=directory, count=len(submodules))
            return changes

        changes, _ = await self.cache.fetch("get_changes", directory, fetch)
        return changes

    async def get_commit_history(
        self,
        path: Optional[str],
        directory: str,
        token: Optional[CancelToken] = None,
    ) -> List[Commit]:
        directory = await self.repo_dir(directory, path, token)
        params = ["log", "--oneline", "--no-decorate", HISTORY_FORMAT]
        if path:
            params += ["--", self.relative_path(directory, path)]

        async def handler(proc: ProcessHandle) -> List[Commit]:
            history: List[Commit] = []
            async for idx, line in proc.lines("stdout"):
                match = _HISTORY_LINE.match(line)
                if match:
                    author, hash_, timestamp, summary = match.groups()
                    try:
                        date = datetime.fromtimestamp(int(timestamp)).strftime(HISTORY_DATE_FORMAT)
                    except (ValueError, OverflowError, OSError):
                        date = timestamp
                    history.append(Commit(hash=hash_, author=author, date=date, summary=summary))
                if idx % 100 == 0:
                    await proc.checkpoint()
            return history

        return await self.execute(handler, directory, *params, token=token)

    async def get_commit_info(
        self, id: str, directory: str, token: Optional[CancelToken] = None
    ) -> Optional[Commit]:
        directory = await self.repo_dir(directory, token=token)

        async def handler(proc: ProcessHandle) -> Optional[Commit]:
            fields = {}
            message: Optional[str] = None
            async for idx, line in proc.lines("stdout"):
                if "hash" not in fields:
                    match = _INFO_HASH.match(line)
                    if match:
                        fields["hash"] = match.group(1)
                elif "author" not in fields:
                    match = _INFO_AUTHOR.match(line)
                    if match:
                        fields["author"] = match.group(1)
                elif "date" not in fields:
                    match = _INFO_DATE.match(line)
                    if match:
                        fields["date"] = match.group(1)
                elif "summary" not in fields:
                    match = _INFO_TEXT.match(line)
                    if match:
                        fields["summary"] = match.group(1)
                else:
                    text = _INFO_TEXT.match(line)
                    if message is not None:
                        message += "\n" + (text.group(1) if text else "")
                    elif text:
                        message = text.group(1)
                    if idx % 10 == 0:
                        await proc.checkpoint()

            if "hash" not in fields:
                return None
            if message is not None:
                message = message.rstrip() or None
            return Commit(message=message, **fields)

        return await self.execute(
            handler, directory, NO_LOCKS, "show", "--no-patch", id, token=token
        )

    async def get_commit_diff(
        self, id: str, directory: str, token: Optional[CancelToken] = None
    ) -> str:
        directory = await self.repo_dir(directory, token=token)
        return await self.read_stdout(directory, NO_LOCKS, "show", "-U", id, token=token)

    async def get_commit_file(
        self,
        id: Optional[str],
        directory: str,
        file: str,
        token: Optional[CancelToken] = None,
    ) -> str:
        directory = await self.repo_dir(directory, file, token)
        relative = self.relative_path(directory, file).replace(os.sep, "/")
        return await self.read_stdout(
            directory, NO_LOCKS, "show", f"{id or 'HEAD'}:{relative}", token=token
        )

    async def get_diff(self, directory: str, token: Optional[CancelToken] = None) -> str:
        directory = await self.repo_dir(directory, token=token)
        return await self.read_stdout(directory, NO_LOCKS, "diff", token=token)

    async def get_file_diff(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> str:
        directory = await self.repo_dir(directory, file, token)

        async def fetch() -> str:
            return await self.read_stdout(
                directory, NO_LOCKS, "diff", self.relative_path(directory, file), token=token
            )

        diff, _ = await self.cache.fetch(
            "get_file_diff", file, fetch, expiry=self.settings.file_diff_cache_hits
        )
        return diff

    async def get_file_status(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> Optional[FileStatus]:
        directory = await self.repo_dir(directory, file, token)

        async def handler(proc: ProcessHandle) -> Optional[FileStatus]:
            async for _, line in proc.lines("stdout"):
                raw = line.split(None, 1)[0] if line.strip() else None
                if raw:
                    return git_status(raw)
                await proc.checkpoint()
            return None

        async def fetch() -> Optional[FileStatus]:
            return await self.execute(
                handler,
                directory,
                NO_LOCKS,
                "status",
                "-s",
                self.relative_path(directory, file),
                token=token,
            )

        status, _ = await self.cache.fetch(
            "get_file_status", file, fetch, expiry=self.settings.file_status_cache_hits
        )
        return status

    async def get_file_blame(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> List[BlameEntry]:
        directory = await self.repo_dir(directory, file, token)

        async def handler(proc: ProcessHandle) -> List[BlameEntry]:
            entries: List[BlameEntry] = []
            async for idx, line in proc.lines("stdout"):
                match = _BLAME_LINE.match(line)
                if match:
                    commit, author, date = match.groups()
                    entries.append(BlameEntry(commit=commit, author=author.strip(), date=date))
                if idx % 100 == 0:
                    await proc.checkpoint()
            return entries

        async def fetch() -> List[BlameEntry]:
            return await self.execute(
                handler,
                directory,
                NO_LOCKS,
                "blame",
                self.relative_path(directory, file),
                token=token,
            )

        entries, _ = await self.cache.fetch(
            "get_file_blame", file, fetch, expiry=self.settings.blame_cache_hits
        )
        return entries

    async def get_stats(self, directory: str, token: Optional[CancelToken] = None) -> DiffStats:
        directory = await self.repo_dir(directory, token=token)

        async def handler(proc: ProcessHandle) -> DiffStats:
            inserts = 0
            deletes = 0
            async for idx, line in proc.lines("stdout"):
                # binary files report "-	-"
                match = _NUMSTAT_LINE.match(line)
                if match:
                    inserts += int(match.group(1))
                    deletes += int(match.group(2))
                if idx % 50 == 0:
                    await proc.checkpoint()
            return DiffStats(inserts=inserts, deletes=deletes)

        return await self.execute(handler, directory, NO_LOCKS, "diff", "--numstat", token=token)

    async def get_status(self, directory: str, token: Optional[CancelToken] = None) -> str:
        directory = await self.repo_dir(directory, token=token)
        return await self.read_report(directory, NO_LOCKS, "status", token=token)

    # ========================================================================
    # Mutations
    # ========================================================================

    async def pull(self, directory: str, token: Optional[CancelToken] = None) -> ExecStatus:
        directory = await self.repo_dir(directory, token=token)
        return await self._mutate(directory, [directory], "pull", token=token)

    async def revert_file(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> ExecStatus:
        directory = await self.repo_dir(directory, file, token)
        return await self._mutate(
            directory, [file], "restore", self.relative_path(directory, file), token=token
        )

    async def add_path(
        self, path: str, directory: str, token: Optional[CancelToken] = None
    ) -> ExecStatus:
        directory = await self.repo_dir(directory, path, token)
        return await self._mutate(
            directory, [path], "add", self.relative_path(directory, path), token=token
        )

    async def remove_path(
        self, path: str, directory: str, token: Optional[CancelToken] = None
    ) -> ExecStatus:
        directory = await self.repo_dir(directory, path, token)
        return await self._mutate(
            directory,
            [path],
            "rm",
            "-r",
            "--cached",
            self.relative_path(directory, path),
            token=token,
        )

    async def move_path(
        self,
        from_path: str,
        to_path: str,
        directory: str,
        token: Optional[CancelToken] = None,
    ) -> ExecStatus:
        directory = await self.repo_dir(directory, from_path, token)
        return await self._mutate(
            directory,
            [from_path, to_path],
            "mv",
            self.relative_path(directory, from_path),
            self.relative_path(directory, to_path),
            token=token,
        )
