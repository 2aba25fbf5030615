"""Backend implementation for Fossil.

More details at https://www.fossil-scm.org/
"""

import os
import re
from typing import List, Optional, Set

from scmbridge.backend.base import Backend
from scmbridge.backend.context import ScmContext
from scmbridge.models import BlameEntry, Commit, DiffStats, ExecStatus, FileChange, FileStatus
from scmbridge.process import CancelToken, ProcessHandle

FOSSIL_STATUS = {
    "ADDED": FileStatus.ADDED,
    "DELETED": FileStatus.DELETED,
    "EDITED": FileStatus.EDITED,
    "RENAMED": FileStatus.RENAMED,
    "EXTRA": FileStatus.UNTRACKED,
}

# "finfo -s" vocabulary; "unchanged" maps to no status
FOSSIL_FILE_STATUS = {
    "new": FileStatus.ADDED,
    "deleted": FileStatus.DELETED,
    "edited": FileStatus.EDITED,
    "renamed": FileStatus.RENAMED,
    "unchanged": None,
    "unknown": FileStatus.UNTRACKED,
}

TIMELINE_FORMAT = "'%a' %H '%d' %c"

_BRANCH_LINE = re.compile(r"^\s*\*\s*(\S+)")
_TIMELINE_LINE = re.compile(r"^'(.*?)' (\S+) '(.*?)' (.*)$")
_INFO_HASH = re.compile(r"hash:\s+([a-zA-Z0-9]+)\s+(.*)$")
_INFO_COMMENT = re.compile(r"comment:\s+(.*?)\s+\(user: (.*?)\)$")
_BLAME_LINE = re.compile(r"^([A-Fa-f0-9]+) (\d{4}-\d{2}-\d{2})\s+(.*?):")
_NUMSTAT_LINE = re.compile(r"^\s*(\d+)\s+(\d+)")


class FossilBackend(Backend):
    """Reduced-capability backend: no staging, no nested repositories."""

    marker = ".fslckout"

    def __init__(self, context: ScmContext) -> None:
        super().__init__("Fossil", context.settings.fossil_command, context)

    async def get_branch(
        self, directory: str, token: Optional[CancelToken] = None
    ) -> Optional[str]:
        async def handler(proc: ProcessHandle) -> Optional[str]:
            async for idx, line in proc.lines("stdout"):
                match = _BRANCH_LINE.match(line)
                if match:
                    return match.group(1)
                if idx % 50 == 0:
                    await proc.checkpoint()
            return None

        return await self.execute(handler, directory, "branch", token=token)

    async def get_changes(
        self, directory: str, token: Optional[CancelToken] = None
    ) -> List[FileChange]:
        directory = await self.repo_dir(directory, token=token)

        async def handler(proc: ProcessHandle) -> List[FileChange]:
            changes: List[FileChange] = []
            seen: Set[str] = set()
            output = await proc.output("stdout")
            for iteration, line in enumerate(output.splitlines(), start=1):
                parsed = self.parse_change(line, FOSSIL_STATUS.get) if line != "" else None
                if parsed and parsed[0] not in seen:
                    path, status, new_path = parsed
                    changes.append(
                        FileChange(
                            status=status,
                            path=os.path.join(directory, path),
                            new_path=os.path.join(directory, new_path) if new_path else None,
                        )
                    )
                    seen.add(path)
                if iteration % 100 == 0:
                    await proc.checkpoint()
            return changes

        async def fetch() -> List[FileChange]:
            return await self.execute(handler, directory, "changes", "--differ", token=token)

        changes, _ = await self.cache.fetch("get_changes", directory, fetch)
        return changes

    async def get_commit_history(
        self,
        path: Optional[str],
        directory: str,
        token: Optional[CancelToken] = None,
    ) -> List[Commit]:
        params = ["timeline", "-n", "0", "-F", TIMELINE_FORMAT]
        if path:
            params += ["-p", self.relative_path(directory, path)]

        async def handler(proc: ProcessHandle) -> List[Commit]:
            history: List[Commit] = []
            async for idx, line in proc.lines("stdout"):
                match = _TIMELINE_LINE.match(line)
                if match:
                    author, hash_, date, summary = match.groups()
                    history.append(Commit(hash=hash_, author=author, date=date, summary=summary))
                if idx % 100 == 0:
                    await proc.checkpoint()
            return history

        return await self.execute(handler, directory, *params, token=token)

    async def get_commit_info(
        self, id: str, directory: str, token: Optional[CancelToken] = None
    ) -> Optional[Commit]:
        async def handler(proc: ProcessHandle) -> Optional[Commit]:
            fields = {}
            message: Optional[str] = None
            async for idx, line in proc.lines("stdout"):
                if "hash" not in fields:
                    match = _INFO_HASH.search(line)
                    if match:
                        fields["hash"], fields["date"] = match.groups()
                elif "summary" not in fields:
                    match = _INFO_COMMENT.search(line)
                    if match:
                        fields["summary"], fields["author"] = match.groups()
                else:
                    if message is not None:
                        message += "\n" + line
                    elif line != "":
                        message = line
                    if idx % 10 == 0:
                        await proc.checkpoint()

            if "hash" not in fields:
                return None
            if message is not None:
                message = message.rstrip() or None
            return Commit(message=message, **fields)

        return await self.execute(handler, directory, "info", id, token=token)

    async def get_commit_diff(
        self, id: str, directory: str, token: Optional[CancelToken] = None
    ) -> str:
        return await self.read_stdout(directory, "diff", "--unified", "-ci", id, token=token)

    async def get_commit_file(
        self,
        id: Optional[str],
        directory: str,
        file: str,
        token: Optional[CancelToken] = None,
    ) -> str:
        args = [self.relative_path(directory, file)]
        if id:
            args += ["-r", id]
        return await self.read_stdout(directory, "cat", *args, token=token)

    async def get_diff(self, directory: str, token: Optional[CancelToken] = None) -> str:
        return await self.read_stdout(directory, "diff", token=token)

    async def get_file_diff(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> str:
        async def fetch() -> str:
            return await self.read_stdout(
                directory, "diff", self.relative_path(directory, file), token=token
            )

        diff, _ = await self.cache.fetch(
            "get_file_diff", file, fetch, expiry=self.settings.file_diff_cache_hits
        )
        return diff

    async def get_file_status(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> Optional[FileStatus]:
        async def handler(proc: ProcessHandle) -> Optional[FileStatus]:
            output = await proc.output("stdout")
            for line in output.splitlines():
                raw = line.split(None, 1)[0] if line.strip() else None
                if raw:
                    return FOSSIL_FILE_STATUS.get(raw)
                await proc.checkpoint()
            return None

        async def fetch() -> Optional[FileStatus]:
            return await self.execute(
                handler, directory, "finfo", "-s", self.relative_path(directory, file), token=token
            )

        status, _ = await self.cache.fetch(
            "get_file_status", file, fetch, expiry=self.settings.file_status_cache_hits
        )
        return status

    async def get_file_blame(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> List[BlameEntry]:
        async def handler(proc: ProcessHandle) -> List[BlameEntry]:
            entries: List[BlameEntry] = []
            async for idx, line in proc.lines("stdout"):
                match = _BLAME_LINE.match(line)
                if match:
                    commit, date, author = match.groups()
                    entries.append(BlameEntry(commit=commit, author=author, date=date))
                if idx % 100 == 0:
                    await proc.checkpoint()
            return entries

        async def fetch() -> List[BlameEntry]:
            return await self.execute(
                handler, directory, "blame", self.relative_path(directory, file), token=token
            )

        entries, _ = await self.cache.fetch(
            "get_file_blame", file, fetch, expiry=self.settings.blame_cache_hits
        )
        return entries

    async def get_stats(self, directory: str, token: Optional[CancelToken] = None) -> DiffStats:
        async def handler(proc: ProcessHandle) -> DiffStats:
            # the last line carries the totals
            last_line = ""
            async for idx, line in proc.lines("stdout"):
                if line != "":
                    last_line = line
                if idx % 50 == 0:
                    await proc.checkpoint()
            match = _NUMSTAT_LINE.match(last_line)
            if not match:
                return DiffStats()
            return DiffStats(inserts=int(match.group(1)), deletes=int(match.group(2)))

        return await self.execute(handler, directory, "diff", "--numstat", token=token)

    async def get_status(self, directory: str, token: Optional[CancelToken] = None) -> str:
        return await self.read_report(directory, "status", token=token)

    async def pull(self, directory: str, token: Optional[CancelToken] = None) -> ExecStatus:
        return await self._mutate(directory, [directory], "pull", token=token)

    async def revert_file(
        self, file: str, directory: str, token: Optional[CancelToken] = None
    ) -> ExecStatus:
        return await self._mutate(
            directory, [file], "revert", self.relative_path(directory, file), token=token
        )

    async def add_path(
        self, path: str, directory: str, token: Optional[CancelToken] = None
    ) -> ExecStatus:
        return await self._mutate(
            directory, [path], "add", self.relative_path(directory, path), token=token
        )

    async def remove_path(
        self, path: str, directory: str, token: Optional[CancelToken] = None
    ) -> ExecStatus:
        return await self._mutate(
            directory, [path], "rm", self.relative_path(directory, path), token=token
        )

    async def move_path(
        self,
        from_path: str,
        to_path: str,
        directory: str,
        token: Optional[CancelToken] = None,
    ) -> ExecStatus:
        return await self._mutate(
            directory,
            [from_path, to_path],
            "mv",
            self.relative_path(directory, from_path),
            self.relative_path(directory, to_path),
            token=token,
        )
