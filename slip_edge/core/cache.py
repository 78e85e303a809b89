"""Injectable time-to-live cache.

The historical prior service caches query results for a fixed lifetime.
Rather than a module-level dict, the cache is an object passed into the
service so tests can substitute a fake clock and never wait on a real TTL.

Staleness up to the TTL is accepted: a hit returns the stored snapshot even
if newer data exists, and concurrent readers during expiry may still see the
old value.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class BaseCache(ABC):
    """Key → (value, expiry) store."""

    @abstractmethod
    def get(self, key: Hashable) -> Tuple[bool, Any]:
        """Return ``(True, value)`` on a live hit, ``(False, None)`` otherwise.

        A tuple is returned instead of the bare value because ``None`` is a
        legitimate cached result ("no prior available").
        """

    @abstractmethod
    def set(self, key: Hashable, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds`` (or the default)."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""

    @abstractmethod
    def __len__(self) -> int: ...


class TTLCache(BaseCache):
    """Thread-safe in-memory TTL cache.

    Args:
        default_ttl_seconds: Lifetime applied when :meth:`set` gets no TTL.
        clock: Zero-argument callable returning monotonic seconds.
            Defaults to :func:`time.monotonic`; tests inject a fake.
    """

    def __init__(
        self,
        default_ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if default_ttl_seconds <= 0:
            raise ValueError(f"default_ttl_seconds must be > 0, got {default_ttl_seconds!r}")
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Tuple[bool, Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None
            value, expires_at = entry
            if now >= expires_at:
                del self._entries[key]
                return False, None
            return True, value

    def set(self, key: Hashable, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Remove expired entries and return how many were dropped."""
        now = self._clock()
        with self._lock:
            stale = [k for k, (_, exp) in self._entries.items() if now >= exp]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
