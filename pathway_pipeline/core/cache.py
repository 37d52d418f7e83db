"""
pathway_pipeline/core/cache.py

Injected cache interface (get/set with TTL). The pipeline produces the same
results with NullCache; caching only saves collaborator calls.
"""
from __future__ import annotations
import threading
import time
from typing import Any, Dict, Optional, Protocol, Tuple


class Cache(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any, ttl_sec: Optional[float] = None) -> None: ...


class NullCache:
    """Cache that never stores anything."""

    def get(self, key: str) -> Optional[Any]:
        return None

    def set(self, key: str, value: Any, ttl_sec: Optional[float] = None) -> None:
        return None


class InMemoryTTLCache:
    """Process-local cache with per-entry expiry. Safe for concurrent use."""

    def __init__(self, default_ttl_sec: float = 3600.0, max_entries: int = 10000):
        self.default_ttl_sec = default_ttl_sec
        self.max_entries = max_entries
        self._data: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        now = time.monotonic()
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self.misses += 1
                return None
            expires_at, value = entry
            if expires_at <= now:
                del self._data[key]
                self.misses += 1
                return None
            self.hits += 1
            return value

    def set(self, key: str, value: Any, ttl_sec: Optional[float] = None) -> None:
        ttl = self.default_ttl_sec if ttl_sec is None else ttl_sec
        with self._lock:
            if len(self._data) >= self.max_entries and key not in self._data:
                # evict the entry closest to expiry
                oldest = min(self._data.items(), key=lambda kv: kv[1][0])[0]
                del self._data[oldest]
            self._data[key] = (time.monotonic() + ttl, value)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
