"""Caching layer for backend query results."""

import asyncio
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

import structlog

from scmbridge.exceptions import OperationCancelled

logger = structlog.get_logger(__name__)

CacheKey = Tuple[str, str]


@dataclass
class CacheEntry:
    """A cached value and the number of reads it has left."""

    value: Any
    operation: str
    key: str
    remaining: Optional[int] = None


def _is_within(path: str, parent: str) -> bool:
    parent = parent.rstrip("/\\")
    return path == parent or path.startswith(parent + os.sep) or path.startswith(parent + "/")


def _path_forms(path: str) -> List[str]:
    """``path`` as given plus its symlink-free form, when that differs."""
    forms = [path]
    real = os.path.realpath(path)
    if real != path.rstrip("/\\"):
        forms.append(real)
    return forms


class ResultCache:
    """In-memory memoization of query results per (operation, key).

    Entries stored with an ``expiry`` evict themselves after being read that
    many times; entries without one live until invalidated.
    """

    def __init__(self) -> None:
        """Initialize an empty cache."""
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._inflight: Dict[CacheKey, "asyncio.Future[Any]"] = {}
        # in-flight keys invalidated before their fetch finished
        self._stale: Set[CacheKey] = set()

        # Stats
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, operation: str, key: str) -> Tuple[Any, bool]:
        """Get a cached value.

        Args:
            operation: Operation name, e.g. ``get_changes``
            key: Scope key, usually a directory or file path

        Returns:
            Tuple of (value, found); value is None when not found
        """
        entry = self._entries.get((operation, key))
        if entry is None:
            self.misses += 1
            return None, False

        if entry.remaining is not None:
            entry.remaining -= 1
            if entry.remaining <= 0:
                del self._entries[(operation, key)]

        self.hits += 1
        return entry.value, True

    def store(
        self, operation: str, value: Any, key: str, expiry: Optional[int] = None
    ) -> None:
        """Cache a value.

        Args:
            operation: Operation name
            value: Value to cache
            key: Scope key
            expiry: Number of reads before the entry evicts itself (None keeps it)
        """
        if expiry is not None and expiry <= 0:
            return
        self._entries[(operation, key)] = CacheEntry(value, operation, key, expiry)

    async def fetch(
        self,
        operation: str,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        expiry: Optional[int] = None,
    ) -> Tuple[Any, bool]:
        """Read-through lookup that runs ``factory`` at most once per key.

        A second caller asking for a key whose fetch is still running waits
        for that fetch instead of starting its own. If the caller running the
        fetch is cancelled, a waiter takes over with its own ``factory``. A
        fetch whose key is invalidated while it runs still answers its
        callers but leaves nothing in the cache.

        Args:
            operation: Operation name
            key: Scope key
            factory: Coroutine function producing the value on a miss
            expiry: Expiry for the stored entry

        Returns:
            Tuple of (value, cached) where cached is False for the caller
            that actually produced the value
        """
        cache_key = (operation, key)
        while True:
            value, found = self.lookup(operation, key)
            if found:
                return value, True

            inflight = self._inflight.get(cache_key)
            if inflight is None:
                break
            try:
                return await asyncio.shield(inflight), True
            except asyncio.CancelledError:
                if not inflight.cancelled():
                    raise
                logger.debug("cache_fetch_taken_over", operation=operation, key=key)

        future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        self._inflight[cache_key] = future
        try:
            value = await factory()
        except (asyncio.CancelledError, OperationCancelled):
            # only this caller gave up; waiters retry on their own
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # retrieved here so an unwatched failure is not reported twice
            future.exception()
            raise
        except BaseException:
            future.cancel()
            raise
        else:
            if cache_key in self._stale:
                logger.debug("cache_store_skipped", operation=operation, key=key)
            else:
                self.store(operation, value, key, expiry)
            future.set_result(value)
            return value, False
        finally:
            del self._inflight[cache_key]
            self._stale.discard(cache_key)

    def _mark_stale(self, keys: Iterable[CacheKey]) -> None:
        for cache_key in keys:
            if cache_key in self._inflight:
                self._stale.add(cache_key)

    def invalidate(self, operation: Optional[str] = None, key: Optional[str] = None) -> int:
        """Drop entries matching ``operation`` and/or ``key``.

        Returns:
            Number of entries removed
        """

        def matches(cache_key: CacheKey) -> bool:
            return (operation is None or cache_key[0] == operation) and (
                key is None or cache_key[1] == key
            )

        self._mark_stale(filter(matches, self._inflight))
        doomed = [cache_key for cache_key in self._entries if matches(cache_key)]
        for cache_key in doomed:
            del self._entries[cache_key]
        return len(doomed)

    def invalidate_path(self, path: str) -> int:
        """Drop entries scoped to ``path``, below it, or to a directory holding it.

        ``path`` is matched both as given and with symlinks resolved, since
        repository roots reported by the tools are resolved paths.

        Returns:
            Number of entries removed
        """
        forms = _path_forms(path)

        def matches(cache_key: CacheKey) -> bool:
            return any(
                _is_within(cache_key[1], form) or _is_within(form, cache_key[1])
                for form in forms
            )

        self._mark_stale(filter(matches, self._inflight))
        doomed = [cache_key for cache_key in self._entries if matches(cache_key)]
        for cache_key in doomed:
            del self._entries[cache_key]
        if doomed:
            logger.debug("cache_invalidated", path=path, entries=len(doomed))
        return len(doomed)

    def clear(self) -> None:
        """Clear all entries."""
        self._mark_stale(self._inflight)
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def get_stats(self) -> dict:
        """Get cache statistics.

        Returns:
            Dictionary with cache stats
        """
        total_requests = self.hits + self.misses
        hit_rate = (self.hits / total_requests * 100) if total_requests > 0 else 0.0

        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": f"{hit_rate:.1f}%",
            "entries": len(self._entries),
            "inflight": len(self._inflight),
        }
