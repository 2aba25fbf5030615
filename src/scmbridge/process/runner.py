"""Subprocess orchestration with cooperative output consumption.

Tool output is consumed either as one buffered string or as a lazy sequence of
lines. Long consumption loops call :meth:`ProcessHandle.checkpoint` at a fixed
cadence so the event loop can run other pending work, and so an abandoned
query notices its cancel token.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from typing import Awaitable, Deque, Dict, Optional, Sequence, Tuple

import structlog

from scmbridge.exceptions import OperationCancelled

logger = structlog.get_logger(__name__)

# Longest single line accepted from a tool
STREAM_LIMIT = 1024 * 1024

STREAMS = ("stdout", "stderr")


def _check_stream(stream: str) -> None:
    if stream not in STREAMS:
        raise ValueError(f"Unknown stream: {stream!r} (expected one of {STREAMS})")


async def _ready(data: bytes) -> bytes:
    return data


class CancelToken:
    """Explicit cancellation signal shared between a caller and its query."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        """Request cancellation; observed at the query's next yield point."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled("query was cancelled")


class _BufferedReader:
    """``readline()`` over bytes that become available once ``source`` resolves."""

    def __init__(self, source: Awaitable[bytes]) -> None:
        self._source = source
        self._lines: Optional[Deque[bytes]] = None

    async def readline(self) -> bytes:
        if self._lines is None:
            data = await self._source
            self._lines = deque(data.splitlines(keepends=True))
        return self._lines.popleft() if self._lines else b""


class LineSequence:
    """Lazy, forward-only sequence of ``(index, line)`` pairs.

    Indexes start at 1 and line terminators are stripped. The sequence cannot
    be restarted: once the stream ends, iterating again yields nothing.
    """

    def __init__(self, reader, encoding: str = "utf-8") -> None:
        self._reader = reader
        self._encoding = encoding
        self._index = 0
        self._exhausted = False

    @property
    def index(self) -> int:
        """Index of the last line produced (0 before the first)."""
        return self._index

    def __aiter__(self) -> "LineSequence":
        return self

    async def __anext__(self) -> Tuple[int, str]:
        if self._exhausted:
            raise StopAsyncIteration
        try:
            raw = await self._reader.readline()
        except ValueError:
            # a line beyond STREAM_LIMIT; what was read so far is kept
            logger.warning("line_too_long", index=self._index + 1, limit=STREAM_LIMIT)
            self._exhausted = True
            raise StopAsyncIteration
        if not raw:
            self._exhausted = True
            raise StopAsyncIteration
        self._index += 1
        return self._index, raw.decode(self._encoding, errors="replace").rstrip("\r\n")


class ProcessHandle(ABC):
    """Exit code and output streams of one tool invocation."""

    def __init__(self, argv: Sequence[str], token: Optional[CancelToken] = None) -> None:
        self.argv = list(argv)
        self.token = token
        self.timed_out = False
        self.timeout: Optional[float] = None
        self._sequences: Dict[str, LineSequence] = {}

    @abstractmethod
    async def returncode(self) -> int:
        """Wait for the process to exit and return its exit code.

        Read the output streams first: an unread pipe can keep the tool alive.
        """

    @abstractmethod
    async def output(self, stream: str = "stdout") -> str:
        """Return the whole stream as one string (cached after the first call)."""

    @abstractmethod
    def _reader(self, stream: str):
        """Return an object with an async ``readline()`` for ``stream``."""

    @abstractmethod
    async def close(self) -> None:
        """Release the process, killing it if it is still running."""

    def lines(self, stream: str = "stdout") -> LineSequence:
        """Return the line sequence of ``stream``.

        Repeated calls return the same forward-only sequence.
        """
        _check_stream(stream)
        if stream not in self._sequences:
            self._sequences[stream] = LineSequence(self._reader(stream))
        return self._sequences[stream]

    async def checkpoint(self) -> None:
        """Cooperative yield point.

        Raises:
            OperationCancelled: If the query's cancel token has fired
        """
        if self.token is not None:
            self.token.raise_if_cancelled()
        await asyncio.sleep(0)
        if self.token is not None:
            self.token.raise_if_cancelled()

    async def error_message(self) -> str:
        """Best-effort failure text: stderr, else stdout, else a timeout notice."""
        stdout = await self.output("stdout")
        stderr = await self.output("stderr")
        if stderr != "":
            return stderr
        if stdout != "":
            return stdout
        if self.timed_out:
            return f"{self.argv[0]} timed out after {self.timeout:g}s"
        return ""


class SubprocessHandle(ProcessHandle):
    """Handle backed by a running :mod:`asyncio` subprocess."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        argv: Sequence[str],
        timeout: Optional[float] = None,
        token: Optional[CancelToken] = None,
    ) -> None:
        super().__init__(argv, token)
        self._process = process
        self._buffers: Dict[str, str] = {}
        # stderr is drained concurrently so a full pipe never blocks the tool
        self._stderr = asyncio.ensure_future(process.stderr.read())
        self._timer: Optional[asyncio.TimerHandle] = None
        if timeout:
            self.timeout = timeout
            self._timer = asyncio.get_running_loop().call_later(timeout, self._expire)

    @property
    def pid(self) -> int:
        return self._process.pid

    def _expire(self) -> None:
        self._timer = None
        if self._process.returncode is None:
            self.timed_out = True
            logger.warning("process_timed_out", argv=self.argv, timeout=self.timeout)
            self._kill()

    def _kill(self) -> None:
        try:
            self._process.kill()
        except ProcessLookupError:
            pass

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _reader(self, stream: str):
        if stream == "stdout":
            return self._process.stdout
        return _BufferedReader(asyncio.shield(self._stderr))

    async def output(self, stream: str = "stdout") -> str:
        _check_stream(stream)
        if stream not in self._buffers:
            if stream == "stdout":
                data = await self._process.stdout.read()
            else:
                data = await asyncio.shield(self._stderr)
            self._buffers[stream] = data.decode("utf-8", errors="replace")
        return self._buffers[stream]

    async def returncode(self) -> int:
        code = await self._process.wait()
        self._cancel_timer()
        return code

    async def close(self) -> None:
        self._cancel_timer()
        if self._process.returncode is None:
            self._kill()
        # pipes must reach EOF before the exit status can be collected
        await self._process.stdout.read()
        await self._stderr
        await self._process.wait()


class BufferedHandle(ProcessHandle):
    """In-memory handle with fixed exit code and output.

    Stands in for a process that could not be spawned, and lets tests script
    tool output without running the tool.
    """

    def __init__(
        self,
        argv: Sequence[str] = (),
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        token: Optional[CancelToken] = None,
    ) -> None:
        super().__init__(argv, token)
        self._code = returncode
        self._data = {"stdout": stdout, "stderr": stderr}

    def _reader(self, stream: str):
        return _BufferedReader(_ready(self._data[stream].encode("utf-8")))

    async def output(self, stream: str = "stdout") -> str:
        _check_stream(stream)
        return self._data[stream]

    async def returncode(self) -> int:
        return self._code

    async def close(self) -> None:
        return None


class ProcessRunner:
    """Spawns version-control executables as subprocesses."""

    def __init__(self, timeout: Optional[float] = None) -> None:
        """Initialize the runner.

        Args:
            timeout: Seconds before a spawned process is killed (None waits forever)
        """
        self.timeout = timeout

    async def spawn(
        self,
        command: str,
        args: Sequence[str],
        cwd: str,
        token: Optional[CancelToken] = None,
    ) -> ProcessHandle:
        """Start ``command`` with ``args`` in ``cwd``.

        Args:
            command: Executable name or path
            args: Command line arguments
            cwd: Working directory
            token: Optional cancel token checked at every yield point

        Returns:
            Handle on the running process. A process that cannot be started
            yields a failed :class:`BufferedHandle` (exit code 127).
        """
        argv = [command, *args]
        if token is not None:
            token.raise_if_cancelled()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            logger.warning("process_spawn_failed", argv=argv, cwd=cwd, error=str(e))
            return BufferedHandle(argv, returncode=127, stderr=str(e), token=token)

        logger.debug("process_spawned", argv=argv, cwd=cwd, pid=process.pid)
        return SubprocessHandle(process, argv, timeout=self.timeout, token=token)
