"""Repository sessions: one detected backend per project root."""

import os
from typing import Optional

import structlog

from scmbridge.backend import Backend, ScmContext, detect_backend
from scmbridge.models import Settings
from scmbridge.watch import PathWatcher

logger = structlog.get_logger(__name__)


class ScmSession:
    """Binds a project directory to its backend and session-scoped state.

    The session owns the change-notification subscription for the project's
    control metadata, so cached results are dropped when the tool (or a user
    in a terminal) changes the repository behind the editor's back.
    """

    def __init__(self, directory: str, backend: Backend) -> None:
        self.directory = directory
        self.backend = backend
        self._watching = False

    @property
    def context(self) -> ScmContext:
        return self.backend.context

    @classmethod
    def open(
        cls,
        directory: str,
        settings: Optional[Settings] = None,
        watcher: Optional[PathWatcher] = None,
        context: Optional[ScmContext] = None,
    ) -> Optional["ScmSession"]:
        """Detect the backend of ``directory`` and start watching it.

        Args:
            directory: Project directory
            settings: Application settings (ignored when ``context`` is given)
            watcher: File-change watcher (ignored when ``context`` is given)
            context: Pre-built session context

        Returns:
            A session, or None when no backend claims the directory
        """
        directory = os.path.abspath(directory)
        context = context or ScmContext(settings=settings, watcher=watcher)
        backend = detect_backend(directory, context)
        if backend is None:
            return None
        session = cls(directory, backend)
        session.watch()
        return session

    def watch(self) -> None:
        if not self._watching:
            self.backend.watch_project(self.directory)
            self._watching = True

    def invalidate(self) -> int:
        """Drop every cached result of this project.

        Returns:
            Number of cache entries removed
        """
        return self.context.cache.invalidate_path(self.directory)

    def close(self) -> None:
        """Stop watching the project and drop its cached results."""
        if self._watching:
            self.backend.unwatch_project(self.directory)
            self._watching = False
        self.invalidate()
        logger.debug("session_closed", directory=self.directory, backend=self.backend.name)

    def __enter__(self) -> "ScmSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
