"""Process-local caches for path resolution.

Project roots don't move while a process runs, so resolved path contexts are
cached for the life of the process. Facts derived from git (is this a
worktree, where is the main checkout) can go stale under a long-running
server, so they get a short TTL instead.

Nothing is invalidated automatically. Long-running hosts call
``clear_path_caches()`` (or ``StoreConfig.reload()``) when they detect that
a root has changed.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")

# Seconds a git-derived fact stays valid
WORKTREE_CACHE_TTL = 30.0


@dataclass
class _CacheEntry(Generic[T]):
    value: T
    stored_at: float


class PathCache(Generic[T]):
    """Small in-memory cache with an optional time-to-live.

    Args:
        ttl: Entry lifetime in seconds; ``math.inf`` keeps entries forever
    """

    def __init__(self, ttl: float = math.inf):
        self.ttl = ttl
        self._entries: dict[str, _CacheEntry[T]] = {}

    def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.ttl != math.inf and time.monotonic() - entry.stored_at > self.ttl:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: T) -> None:
        self._entries[key] = _CacheEntry(value=value, stored_at=time.monotonic())

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# Resolved PathContext per project root (life of the process)
path_context_cache: PathCache = PathCache()

# Main-repository root per directory, as reported by git
worktree_cache: PathCache = PathCache(ttl=WORKTREE_CACHE_TTL)


def clear_path_caches() -> None:
    """Drop every cached path fact."""
    path_context_cache.clear()
    worktree_cache.clear()
