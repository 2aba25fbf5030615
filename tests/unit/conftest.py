"""Shared fixtures for backend tests."""

import sys
from typing import Dict, List, Optional, Tuple

import pytest

from scmbridge.backend import ResultCache, ScmContext
from scmbridge.models import Settings
from scmbridge.process import BufferedHandle


class ScriptedRunner:
    """Process runner answering from canned tool output instead of spawning."""

    def __init__(self) -> None:
        self.responses: Dict[Tuple[Optional[str], Tuple[str, ...]], Tuple[int, str, str]] = {}
        self.calls: List[Tuple[Tuple[str, ...], str]] = []

    def respond(
        self,
        *args: str,
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
        cwd: Optional[str] = None,
    ) -> None:
        self.responses[(cwd, tuple(args))] = (returncode, stdout, stderr)

    def called(self, *args: str) -> int:
        return sum(1 for call_args, _ in self.calls if call_args == tuple(args))

    async def spawn(self, command, args, cwd, token=None):
        args = tuple(args)
        self.calls.append((args, cwd))
        response = self.responses.get((cwd, args)) or self.responses.get((None, args))
        # unscripted commands fail like an unknown subcommand would
        returncode, stdout, stderr = response or (1, "", "")
        return BufferedHandle([command, *args], returncode, stdout, stderr, token)


class RecordingWatcher:
    """Watcher that remembers subscriptions and fires them on demand."""

    def __init__(self) -> None:
        self.callbacks = {}

    def watch(self, path, callback):
        self.callbacks[path] = callback

    def unwatch(self, path):
        self.callbacks.pop(path, None)

    def fire(self, path):
        self.callbacks[path](path)


@pytest.fixture
def settings():
    """Settings whose executables resolve on any machine running the tests."""
    return Settings(git_command=sys.executable, fossil_command=sys.executable)


@pytest.fixture
def runner():
    """Create a ScriptedRunner."""
    return ScriptedRunner()


@pytest.fixture
def watcher():
    """Create a RecordingWatcher."""
    return RecordingWatcher()


@pytest.fixture
def context(settings, runner, watcher):
    """Create a session context wired to the scripted runner."""
    return ScmContext(settings=settings, cache=ResultCache(), runner=runner, watcher=watcher)
