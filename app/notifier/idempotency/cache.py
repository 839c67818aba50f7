"""Idempotency caches used to suppress repeat deliveries."""

import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple


class IdempotencyCache(ABC):
    """Abstract base class for idempotency cache implementations.

    Remembers keys (with an optional payload) for a bounded period so that
    recently handled work can be recognised and skipped.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Get the cached value for a key.

        Args:
            key: Idempotency key.

        Returns:
            Cached dict or None if not found/expired.
        """
        pass

    @abstractmethod
    def set(self, key: str, response: Dict[str, Any], ttl_seconds: float) -> None:
        """Cache a value for the given key.

        Args:
            key: Idempotency key.
            response: Value to cache.
            ttl_seconds: Time-to-live in seconds.
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key if present."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all cached entries."""
        pass

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dict with cache statistics (implementation-specific).
        """
        pass

    def contains(self, key: str) -> bool:
        return self.get(key) is not None


class InMemoryIdempotencyCache(IdempotencyCache):
    """Thread-safe in-process TTL cache.

    Expired entries are dropped lazily on access and in bulk by ``purge``.

    Args:
        clock: Callable returning the current time in seconds. Defaults to
            ``time.time``; tests inject a scheduler's virtual clock.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            expires_at, response = entry
            if expires_at <= self._clock():
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return response

    def set(self, key: str, response: Dict[str, Any], ttl_seconds: float) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, response)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def purge(self) -> int:
        """Drop expired entries.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, (exp, _) in self._entries.items() if exp <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        self.purge()
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "type": "memory",
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
            }
