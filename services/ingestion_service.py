"""
Ingestion service - the cursor-guarded append path.

Flow:  validate → conditional append (cursor CAS) → analyze new segments →
persist flags + counters → invalidate cache → broadcast alerts.

Depends only on ports (protocol interfaces) - never on concrete adapters.
A batch that loses the cursor race raises CursorConflictError before any
analysis runs, so a retried batch can never produce duplicate flags.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from core_analysis.analyzers import flagged_keys
from core_analysis.content_analyzer import BatchAnalysis, analyze_batch
from domain.models import AlertEvent, FlaggedContent, FlagType, Segment, Session
from ports.alert_publisher import AlertPublisherPort
from ports.flag_store import FlagStorePort
from ports.identity import IdentityResolverPort
from ports.response_cache import ResponseCachePort, session_cache_key
from ports.session_store import SessionStorePort
from services.session_service import load_owned_session, owner_display_name
from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import CursorConflictError, ValidationError
from shared_utils.logging_utils import get_scoped_logger, session_context
from shared_utils.validation import InputValidator

logger = get_scoped_logger(LogScope.INGESTION)


class IngestionService:
    """Ingestion coordinator for progressively streamed segments."""

    def __init__(
        self,
        *,
        session_store: SessionStorePort,
        flag_store: FlagStorePort,
        alert_publisher: Optional[AlertPublisherPort] = None,
        identity: Optional[IdentityResolverPort] = None,
        cache: Optional[ResponseCachePort] = None,
        allowed_language: str = Defaults.ALLOWED_LANGUAGE,
        profanity_extra_words: Iterable[str] = (),
    ) -> None:
        self._sessions = session_store
        self._flags = flag_store
        self._publisher = alert_publisher
        self._identity = identity
        self._cache = cache
        self._allowed_language = allowed_language
        self._extra_words = tuple(profanity_extra_words)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def append_segments(
        self,
        session_id: str,
        segments: List[Segment],
        from_index: int,
        requester_id: Optional[str] = None,
    ) -> Session:
        """Append a batch at *from_index* and analyze it.

        Args:
            session_id: Target session.
            segments: Non-empty batch of validated segments.
            from_index: Cursor value the client believes is current.
            requester_id: Caller identity; None skips the ownership check.

        Returns:
            The session after the append, with updated counters.

        Raises:
            ValidationError: Empty batch or negative/non-integer index.
            CursorConflictError: Stored cursor differs from *from_index*.
            SessionClosedError: Session is no longer a draft.
            SessionNotFoundError / AccessDeniedError: Lookup or ownership failure.
        """
        if not segments:
            raise ValidationError("segments must be a non-empty array")
        from_index = InputValidator.validate_non_negative_int(from_index, "fromIndex")
        load_owned_session(self._sessions, session_id, requester_id)

        with session_context(session_id, from_index=from_index):
            return self._append_and_analyze(session_id, segments, from_index)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _append_and_analyze(
        self, session_id: str, segments: List[Segment], from_index: int
    ) -> Session:
        try:
            session = self._sessions.append_segments(session_id, segments, from_index)
        except CursorConflictError as exc:
            logger.info(
                "cursor_conflict",
                session_id=session_id,
                expected=exc.expected,
                actual=exc.actual,
                batch_size=len(segments),
            )
            raise

        logger.info(
            "segments_appended",
            session_id=session_id,
            from_index=from_index,
            cursor=session.cursor,
            batch_size=len(segments),
        )

        existing = self._flags.list_flags(session_id, [FlagType.PARTICIPATION])
        analysis = analyze_batch(
            session,
            list(segments),
            session.language or self._allowed_language,
            self._extra_words,
            already_flagged=flagged_keys(existing),
        )
        new_flags = analysis.all_flags
        if new_flags:
            self._flags.add_flags(new_flags)
        if analysis.profanity or analysis.language_policy:
            self._sessions.increment_counters(
                session_id,
                profanity=len(analysis.profanity),
                language_violations=len(analysis.language_policy),
            )
        self._invalidate(session_id)
        self._log_detections(session_id, analysis)
        self._broadcast(session.owner_id, new_flags)

        return self._sessions.get_session(session_id) or session

    def _invalidate(self, session_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate_prefix(session_cache_key(session_id))

    def _broadcast(self, owner_id: str, flags: List[FlaggedContent]) -> None:
        if self._publisher is None or not flags:
            return
        display_name = owner_display_name(self._identity, owner_id)
        for flag in flags:
            try:
                self._publisher.publish(AlertEvent.from_flag(flag, display_name))
            except Exception as exc:
                # delivery is best-effort; the flag itself is already stored
                logger.error(
                    "alert_publish_failed",
                    session_id=flag.session_id,
                    flag_type=flag.flag_type.value,
                    error=str(exc),
                )

    @staticmethod
    def _log_detections(session_id: str, analysis: BatchAnalysis) -> None:
        if analysis.profanity:
            logger.info(
                "detection_decision",
                session_id=session_id,
                decision="profanity_detected",
                count=len(analysis.profanity),
                words=[f.flagged_word for f in analysis.profanity],
            )
        if analysis.language_policy:
            logger.info(
                "detection_decision",
                session_id=session_id,
                decision="language_policy_violation",
                count=len(analysis.language_policy),
                detected_languages=sorted({f.flagged_word for f in analysis.language_policy}),
            )
        if analysis.participation:
            logger.info(
                "detection_decision",
                session_id=session_id,
                decision="participation_threshold_crossed",
                flags=[(f.speaker, f.flagged_word) for f in analysis.participation],
            )
