"""
cadet_portal/services/cache.py
Process-wide TTL cache in front of read-heavy catalog queries

One TTLCache is built per process (see main.py lifespan) and injected into
the read paths that use it. Expiry is checked lazily on read; there is no
background sweep. Any mutation of a cached collection must call
invalidate() on its key before reporting success.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class CacheKeys:
    """Collection keys shared by readers and the mutations that evict them"""
    CADETS = "cadets"
    NEWS = "news"
    TASKS = "tasks"
    ACHIEVEMENTS = "achievements"
    AUTO_ACHIEVEMENTS = "auto_achievements"
    SCORES = "scores"
    ANALYTICS = "analytics"


class CacheDuration:
    """TTL presets in seconds"""
    SHORT = 5 * 60
    MEDIUM = 15 * 60
    LONG = 60 * 60
    VERY_LONG = 24 * 60 * 60


@dataclass
class CacheEntry:
    """Cached value with its insertion time and TTL (seconds)."""
    value: Any
    inserted_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at > self.ttl


class TTLCache:
    """
    Thread-safe key -> (value, insertion time, ttl) memo store.

    Args:
        clock: monotonic time source in seconds; tests pass a fake clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on miss or expiry (expired entries are evicted)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug(f"cache miss: {key}")
                return None

            if entry.is_expired(self._clock()):
                del self._entries[key]
                logger.debug(f"cache expired: {key}")
                return None

            return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        with self._lock:
            self._entries[key] = CacheEntry(value=value, inserted_at=self._clock(), ttl=ttl)

    def invalidate(self, key: str) -> None:
        """Remove the key unconditionally."""
        with self._lock:
            removed = self._entries.pop(key, None)
        if removed is not None:
            logger.info(f"cache invalidated: {key}")

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
