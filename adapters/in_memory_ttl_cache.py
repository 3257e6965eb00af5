"""
In-memory TTL response cache.

Implements ResponseCachePort for single-instance deployments. Entries expire
after their TTL; when full, the oldest inserted entry is evicted. Not shared
across processes.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Tuple

from ports.response_cache import ResponseCachePort  # noqa: F401 (runtime_checkable)
from shared_utils.constants import Defaults


class InMemoryTtlCacheAdapter:
    """Thread-safe TTL cache with insertion-order eviction."""

    def __init__(
        self,
        default_ttl_seconds: float = Defaults.CACHE_TTL_SECONDS,
        max_entries: int = Defaults.CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._store: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()
        self._generation = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() > expires_at:
                del self._store[key]
                return None
            return value

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        generation: Optional[int] = None,
    ) -> bool:
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._store.pop(key, None)
            while len(self._store) >= self._max_entries:
                self._store.popitem(last=False)
            self._store[key] = (value, self._clock() + ttl)
        return True

    def generation(self) -> int:
        with self._lock:
            return self._generation

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._generation += 1
            self._store.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            self._generation += 1
            doomed = [k for k in self._store if k.startswith(prefix)]
            for key in doomed:
                del self._store[key]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._store)

