"""
In-memory flag store adapter.

Implements FlagStorePort with per-session lists guarded by a single lock.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from domain.models import FlaggedContent, FlagType
from ports.flag_store import FlagStorePort  # noqa: F401 (runtime_checkable)
from shared_utils.constants import LogScope
from shared_utils.logging_utils import ContextualLogger


logger = ContextualLogger(scope=LogScope.ADAPTER)


class InMemoryFlagStoreAdapter:
    """Thread-safe in-memory implementation of FlagStorePort."""

    def __init__(self) -> None:
        self._flags: Dict[str, List[FlaggedContent]] = defaultdict(list)
        self._lock = threading.Lock()

    def add_flags(self, flags: List[FlaggedContent]) -> None:
        if not flags:
            return
        with self._lock:
            for flag in flags:
                self._flags[flag.session_id].append(flag)
        logger.debug("memory_flags_added", count=len(flags))

    def list_flags(
        self, session_id: str, flag_types: Optional[Iterable[FlagType]] = None
    ) -> List[FlaggedContent]:
        wanted = set(flag_types) if flag_types is not None else None
        with self._lock:
            flags = list(self._flags.get(session_id, []))
        if wanted is not None:
            flags = [f for f in flags if f.flag_type in wanted]
        # sort is stable, so equal timestamps keep insertion order
        return sorted(flags, key=lambda f: f.timestamp_ms)

    def list_flags_for_sessions(self, session_ids: Iterable[str]) -> List[FlaggedContent]:
        with self._lock:
            flags = [f for sid in set(session_ids) for f in self._flags.get(sid, [])]
        return sorted(flags, key=lambda f: f.created_at, reverse=True)

    def delete_flags(
        self, session_id: str, flag_types: Optional[Iterable[FlagType]] = None
    ) -> int:
        wanted = set(flag_types) if flag_types is not None else None
        with self._lock:
            existing = self._flags.get(session_id, [])
            if wanted is None:
                kept: List[FlaggedContent] = []
            else:
                kept = [f for f in existing if f.flag_type not in wanted]
            removed = len(existing) - len(kept)
            self._flags[session_id] = kept
        logger.info("memory_flags_deleted", session_id=session_id, removed=removed)
        return removed
