"""Thread-safe in-memory TTL cache.

Used to remember short-lived facts about a client, such as a provider
credential that was just rejected, without touching the database.

Usage:
    from agency_dashboard.utils.ttl_cache import TTLCache

    revoked = TTLCache(max_entries=500)
    revoked.set("client-1:analytics", True, ttl=600)
    if revoked.get("client-1:analytics"):
        ...
"""
import threading
import time
from typing import Any, Callable


class TTLCache:
    """Thread-safe in-memory cache with TTL expiry and max-entry limit."""

    def __init__(self, max_entries: int = 500, clock: Callable[[], float] = time.monotonic):
        self._store: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._max_entries = max_entries
        self._clock = clock

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() > expires_at:
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: float = 300) -> None:
        with self._lock:
            # Evict expired entries first to stay under limit
            if len(self._store) >= self._max_entries:
                now = self._clock()
                expired = [k for k, (exp, _) in self._store.items() if now > exp]
                for k in expired:
                    del self._store[k]
            # If still at limit, evict oldest entry
            if len(self._store) >= self._max_entries:
                oldest_key = min(self._store, key=lambda k: self._store[k][0])
                del self._store[oldest_key]
            self._store[key] = (self._clock() + ttl, value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)
