"""Session-scoped state shared by the backends of one editor session."""

from typing import Optional

from scmbridge.backend.cache import ResultCache
from scmbridge.models import Settings
from scmbridge.process import ProcessRunner
from scmbridge.watch import PathWatcher


class ScmContext:
    """Explicit owner of the cache, process runner and change watcher.

    Backends never create these themselves; everything they mutate lives here.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        cache: Optional[ResultCache] = None,
        runner: Optional[ProcessRunner] = None,
        watcher: Optional[PathWatcher] = None,
    ) -> None:
        """Initialize the context.

        Args:
            settings: Application settings. If None, loads from environment.
            cache: Result cache. If None, creates an empty one.
            runner: Process runner. If None, creates one using the configured timeout.
            watcher: Optional file-change watcher driving cache invalidation
        """
        self.settings = settings or Settings()
        self.cache = cache if cache is not None else ResultCache()
        self.runner = runner or ProcessRunner(timeout=self.settings.process_timeout or None)
        self.watcher = watcher
