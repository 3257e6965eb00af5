"""
Port interface for session storage (the Segment Store).

Implementations: InMemorySessionStoreAdapter, DynamoSessionStoreAdapter (adapters/)
"""

from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from domain.models import (
    ParticipationBalance,
    ParticipationConfig,
    Segment,
    Session,
    SessionStatus,
)


@runtime_checkable
class SessionStorePort(Protocol):
    """Durable session rows with an ordered segment list and a monotonic cursor."""

    def create_session(self, session: Session) -> None:
        """Insert a new draft session.

        Raises:
            ExternalServiceError: If the store is unreachable.
        """
        ...

    def get_session(self, session_id: str) -> Optional[Session]:
        """Return the session, or None if it does not exist."""
        ...

    def append_segments(
        self, session_id: str, segments: List[Segment], from_index: int
    ) -> Session:
        """Atomic conditional append.

        Succeeds iff the stored cursor equals *from_index* and the session is a
        draft; the stored sequence becomes ``segments[:from_index] + segments``
        and the cursor ``from_index + len(segments)``.

        Raises:
            CursorConflictError: Stored cursor differs; nothing was written.
            SessionClosedError: Session is not a draft.
            SessionNotFoundError: Unknown session id.
        """
        ...

    def replace_segments(self, session_id: str, segments: List[Segment]) -> Session:
        """Wholesale-replace the segment sequence (finalization only)."""
        ...

    def update_topic_config(
        self,
        session_id: str,
        topic_prompt: Optional[str],
        topic_keywords: Optional[List[str]],
    ) -> Session:
        """Set or clear the topic prompt and keyword list."""
        ...

    def update_participation_config(
        self, session_id: str, config: Optional[ParticipationConfig]
    ) -> Session:
        """Set or clear explicit participation thresholds."""
        ...

    def increment_counters(
        self, session_id: str, profanity: int = 0, language_violations: int = 0
    ) -> None:
        """Add to the running violation counters."""
        ...

    def set_counters(
        self, session_id: str, profanity: int, language_violations: int
    ) -> None:
        """Overwrite the running violation counters."""
        ...

    def save_analysis(
        self,
        session_id: str,
        participation_balance: ParticipationBalance,
        topic_adherence_score: float,
    ) -> None:
        """Persist the participation snapshot and the topic adherence score."""
        ...

    def transition_status(
        self,
        session_id: str,
        expected: SessionStatus,
        new: SessionStatus,
        duration: Optional[float] = None,
    ) -> bool:
        """Compare-and-set the lifecycle status.

        Returns:
            True if the session was in *expected* and is now *new*.
        """
        ...

    def claim_reconciliation(self, session_id: str, lease_seconds: float) -> bool:
        """Conditionally move the session into ``reconciling`` and stamp
        ``reconcile_started_at`` with the current time.

        Succeeds for a draft, or for a reconciling session whose lease is
        missing or at least *lease_seconds* old. At most one caller holds a
        live lease, across every process sharing the store.

        Returns:
            True if the caller now holds the lease.
        """
        ...

    def list_sessions(self, owner_id: str) -> List[Session]:
        """Return the owner's sessions, newest ``created_at`` first."""
        ...
