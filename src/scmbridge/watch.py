"""File-change notifications used to invalidate cached query results."""

import asyncio
import os
import threading
from typing import Callable, Dict, Optional, Protocol, Tuple, runtime_checkable

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

logger = structlog.get_logger(__name__)

ChangeCallback = Callable[[str], None]


@runtime_checkable
class PathWatcher(Protocol):
    """Protocol for watching a path for external modification."""

    def watch(self, path: str, callback: ChangeCallback) -> None:
        """Call ``callback(path)`` whenever ``path`` (or anything below it) changes."""
        ...

    def unwatch(self, path: str) -> None:
        """Stop watching ``path``."""
        ...


class _PathEventHandler(FileSystemEventHandler):
    """Forwards events under one watched path to a callback."""

    def __init__(
        self,
        path: str,
        callback: ChangeCallback,
        loop: Optional[asyncio.AbstractEventLoop],
    ) -> None:
        super().__init__()
        self.path = path
        self.callback = callback
        self.loop = loop

    def _concerns(self, event_path: str) -> bool:
        event_path = os.fsdecode(event_path)
        return event_path == self.path or event_path.startswith(self.path + os.sep)

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in ("opened", "closed", "closed_no_write"):
            return
        paths = [event.src_path, getattr(event, "dest_path", "") or ""]
        if not any(p and self._concerns(p) for p in paths):
            return
        # callbacks touch session state, which belongs to the event loop thread
        if self.loop is not None and not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self.callback, self.path)
        else:
            self.callback(self.path)


class WatchdogWatcher:
    """:class:`PathWatcher` implementation backed by a watchdog observer.

    Files are watched through their parent directory. Callbacks run on the
    event loop that was running when :meth:`watch` was called, or directly on
    the observer thread when there was none.
    """

    def __init__(self) -> None:
        self._observer = Observer()
        self._observer.daemon = True
        self._watches: Dict[str, Tuple[ObservedWatch, _PathEventHandler]] = {}
        self._lock = threading.Lock()
        self._started = False

    def watch(self, path: str, callback: ChangeCallback) -> None:
        path = os.path.abspath(path)
        try:
            loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        target = path if os.path.isdir(path) else os.path.dirname(path)
        handler = _PathEventHandler(path, callback, loop)
        with self._lock:
            if path in self._watches:
                return
            try:
                observed = self._observer.schedule(handler, target, recursive=os.path.isdir(path))
            except OSError as e:
                logger.warning("watch_failed", path=path, error=str(e))
                return
            self._watches[path] = (observed, handler)
            if not self._started:
                self._observer.start()
                self._started = True
        logger.debug("watch_started", path=path)

    def unwatch(self, path: str) -> None:
        path = os.path.abspath(path)
        with self._lock:
            entry = self._watches.pop(path, None)
            if entry is None:
                return
            observed, handler = entry
            self._observer.remove_handler_for_watch(handler, observed)
        logger.debug("watch_stopped", path=path)

    def stop(self) -> None:
        """Stop the observer thread and forget every watch."""
        with self._lock:
            self._watches.clear()
            if self._started:
                self._observer.stop()
                self._observer.join()
                self._started = False
                self._observer = Observer()
                self._observer.daemon = True
