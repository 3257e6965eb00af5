"""Port interface for flagged-content storage."""

from __future__ import annotations

from typing import Iterable, List, Optional, Protocol, runtime_checkable

from domain.models import FlaggedContent, FlagType


@runtime_checkable
class FlagStorePort(Protocol):
    """Append-only flag records keyed by session."""

    def add_flags(self, flags: List[FlaggedContent]) -> None:
        """Persist flag records."""
        ...

    def list_flags(
        self, session_id: str, flag_types: Optional[Iterable[FlagType]] = None
    ) -> List[FlaggedContent]:
        """Return a session's flags ordered by ``timestamp_ms``."""
        ...

    def delete_flags(
        self, session_id: str, flag_types: Optional[Iterable[FlagType]] = None
    ) -> int:
        """Delete a session's flags (all, or only the given types).

        Returns:
            Number of records removed.
        """
        ...

    def list_flags_for_sessions(self, session_ids: Iterable[str]) -> List[FlaggedContent]:
        """Return the flags of every listed session, newest ``created_at`` first."""
        ...
