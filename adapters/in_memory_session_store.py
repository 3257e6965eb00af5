"""
In-memory session store adapter.

Implements SessionStorePort with a dict of sessions and one lock per session.
The lock makes the cursor check-and-append a single atomic step, so two
concurrent appends against the same cursor value cannot both succeed.
Good for local dev and tests; swap to the DynamoDB adapter for durability.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from domain.models import (
    ParticipationBalance,
    ParticipationConfig,
    Segment,
    Session,
    SessionStatus,
    utc_now_iso,
)
from ports.session_store import SessionStorePort  # noqa: F401 (runtime_checkable)
from shared_utils.constants import LogScope
from shared_utils.error_handler import (
    CursorConflictError,
    SessionClosedError,
    SessionNotFoundError,
    ValidationError,
)
from shared_utils.logging_utils import ContextualLogger


logger = ContextualLogger(scope=LogScope.ADAPTER)


class InMemorySessionStoreAdapter:
    """Thread-safe in-memory implementation of SessionStorePort."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # SessionStorePort implementation
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> None:
        with self._registry_lock:
            if session.session_id in self._sessions:
                raise ValidationError(
                    "Session already exists", context={"session_id": session.session_id}
                )
            self._sessions[session.session_id] = session
            self._locks[session.session_id] = threading.Lock()
        logger.info("memory_session_created", session_id=session.session_id)

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def append_segments(
        self, session_id: str, segments: List[Segment], from_index: int
    ) -> Session:
        with self._lock_for(session_id):
            current = self._require(session_id)
            if current.status != SessionStatus.DRAFT:
                raise SessionClosedError(session_id, current.status.value)
            if current.cursor != from_index:
                raise CursorConflictError(
                    expected=from_index, actual=current.cursor, session_id=session_id
                )

            merged = list(current.segments[:from_index]) + list(segments)
            updated = current.model_copy(
                update={
                    "segments": merged,
                    "cursor": from_index + len(segments),
                    "updated_at": utc_now_iso(),
                }
            )
            self._sessions[session_id] = updated
            return updated

    def replace_segments(self, session_id: str, segments: List[Segment]) -> Session:
        with self._lock_for(session_id):
            current = self._require(session_id)
            updated = current.model_copy(
                update={
                    "segments": list(segments),
                    "cursor": len(segments),
                    "updated_at": utc_now_iso(),
                }
            )
            self._sessions[session_id] = updated
        logger.info(
            "memory_segments_replaced", session_id=session_id, segment_count=len(segments)
        )
        return updated

    def update_topic_config(
        self,
        session_id: str,
        topic_prompt: Optional[str],
        topic_keywords: Optional[List[str]],
    ) -> Session:
        return self._update(
            session_id, topic_prompt=topic_prompt, topic_keywords=topic_keywords
        )

    def update_participation_config(
        self, session_id: str, config: Optional[ParticipationConfig]
    ) -> Session:
        return self._update(session_id, participation_config=config)

    def increment_counters(
        self, session_id: str, profanity: int = 0, language_violations: int = 0
    ) -> None:
        with self._lock_for(session_id):
            current = self._require(session_id)
            self._sessions[session_id] = current.model_copy(
                update={
                    "profanity_count": current.profanity_count + profanity,
                    "language_violation_count": current.language_violation_count
                    + language_violations,
                    "updated_at": utc_now_iso(),
                }
            )

    def set_counters(
        self, session_id: str, profanity: int, language_violations: int
    ) -> None:
        self._update(
            session_id,
            profanity_count=profanity,
            language_violation_count=language_violations,
        )

    def save_analysis(
        self,
        session_id: str,
        participation_balance: ParticipationBalance,
        topic_adherence_score: float,
    ) -> None:
        self._update(
            session_id,
            participation_balance=participation_balance,
            topic_adherence_score=topic_adherence_score,
        )

    def transition_status(
        self,
        session_id: str,
        expected: SessionStatus,
        new: SessionStatus,
        duration: Optional[float] = None,
    ) -> bool:
        with self._lock_for(session_id):
            current = self._require(session_id)
            if current.status != expected:
                return False
            changes: dict = {"status": new, "updated_at": utc_now_iso()}
            if duration is not None:
                changes["duration"] = duration
            self._sessions[session_id] = current.model_copy(update=changes)
        logger.info(
            "memory_status_transition",
            session_id=session_id,
            from_status=expected.value,
            to_status=new.value,
        )
        return True

    def claim_reconciliation(self, session_id: str, lease_seconds: float) -> bool:
        with self._lock_for(session_id):
            current = self._require(session_id)
            if not _claimable(current, lease_seconds):
                return False
            now = utc_now_iso()
            self._sessions[session_id] = current.model_copy(
                update={
                    "status": SessionStatus.RECONCILING,
                    "reconcile_started_at": now,
                    "updated_at": now,
                }
            )
        logger.info(
            "memory_reconciliation_claimed",
            session_id=session_id,
            previous_status=current.status.value,
        )
        return True

    def list_sessions(self, owner_id: str) -> List[Session]:
        with self._registry_lock:
            sessions = list(self._sessions.values())
        owned = [s for s in sessions if s.owner_id == owner_id]
        return sorted(owned, key=lambda s: s.created_at, reverse=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(session_id)
        if lock is None:
            raise SessionNotFoundError(session_id)
        return lock

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _update(self, session_id: str, **changes) -> Session:
        with self._lock_for(session_id):
            current = self._require(session_id)
            changes["updated_at"] = utc_now_iso()
            updated = current.model_copy(update=changes)
            self._sessions[session_id] = updated
            return updated


def _claimable(session: Session, lease_seconds: float) -> bool:
    if session.status == SessionStatus.DRAFT:
        return True
    if session.status != SessionStatus.RECONCILING:
        return False
    if not session.reconcile_started_at:
        return True
    started = datetime.fromisoformat(session.reconcile_started_at)
    return datetime.now(timezone.utc) - started >= timedelta(seconds=lease_seconds)
