"""In-memory TTL cache shared by every indexer component."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    stored_at: float


class TTLCache:
    """Whole-value cache with lazy expiry on read and an explicit sweep.

    Entries are replaced, never mutated. Only touched from one event loop, so
    no locking.
    """

    def __init__(self, ttl_seconds: float, *, now_fn: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._now_fn = now_fn
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at >= self.ttl_seconds

    def get(self, key: str, ttl_seconds: float | None = None) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if ttl_seconds is None:
            ttl_seconds = self.ttl_seconds
        if self._now_fn() - entry.stored_at >= ttl_seconds:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, stored_at=self._now_fn())

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def sweep(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._now_fn()
        expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept expired cache entries", removed=len(expired), remaining=len(self._entries))
        return len(expired)


def cache_key(operation: str, target: str, actor: str | None = None) -> str:
    return f"{operation}:{target}:{actor.lower() if actor else 'anon'}"
