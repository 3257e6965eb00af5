"""Port interface for the response payload cache."""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class ResponseCachePort(Protocol):
    """TTL cache with explicit invalidation."""

    def get(self, key: str) -> Optional[Any]:
        """Return a live entry or None."""
        ...

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """Store *value* for *ttl_seconds* (adapter default when None).

        With *generation*, the write is skipped if any invalidation happened
        since that generation was read, so a value built from reads that
        raced a mutation is never cached.

        Returns:
            True if the value was stored.
        """
        ...

    def generation(self) -> int:
        """Counter bumped by every invalidation."""
        ...

    def invalidate(self, key: str) -> None:
        ...

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with *prefix*; returns the count removed."""
        ...


def session_cache_key(session_id: str) -> str:
    """Key (and invalidation prefix) for responses derived from one session."""
    return f"session:{session_id}"
