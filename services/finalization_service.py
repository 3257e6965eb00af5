"""
FinalizationService - closes a session and recomputes its aggregate signals.

Flow:  draft → reconciling → (optional final-transcript fetch + replace) →
full-session analysis → persist flags and scores → summary alerts → complete.

The provider fetch is bounded by a timeout; on any provider failure the
session is finalized from the segments accumulated during live ingestion.
Enrichment problems are logged and never stop the session from completing.
Finalizing an already-complete session returns it unchanged.

Only the holder of the store-level reconciliation claim fetches, rewrites
flags or publishes summary alerts, so finalizers in different processes
sharing one store never repeat that work. A caller that loses the claim
waits for the holder to complete the session. A claim older than the lease
is treated as abandoned and can be taken over.
"""

from __future__ import annotations

import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Dict, Iterable, List, Optional

from core_analysis.content_analyzer import SessionAnalysis, analyze_session
from core_analysis.parser.token_segmenter import TokenSegmenter
from core_analysis.quality_checks import run_quality_checks
from domain.models import (
    AGGREGATE_FLAG_TYPES,
    AlertEvent,
    AlertType,
    FlagType,
    Segment,
    Session,
    SessionStatus,
)
from ports.alert_publisher import AlertPublisherPort
from ports.flag_store import FlagStorePort
from ports.identity import IdentityResolverPort
from ports.response_cache import ResponseCachePort, session_cache_key
from ports.session_store import SessionStorePort
from ports.transcript_provider import TranscriptProviderPort
from services.session_service import load_owned_session, owner_display_name
from shared_utils.constants import Defaults, FlagWords, LogScope
from shared_utils.error_handler import ExternalProviderUnavailableError
from shared_utils.logging_utils import get_scoped_logger, session_context
from shared_utils.validation import InputValidator

logger = get_scoped_logger(LogScope.FINALIZATION)


class FinalizationService:
    """Session finalizer."""

    def __init__(
        self,
        *,
        session_store: SessionStorePort,
        flag_store: FlagStorePort,
        alert_publisher: Optional[AlertPublisherPort] = None,
        identity: Optional[IdentityResolverPort] = None,
        transcript_provider: Optional[TranscriptProviderPort] = None,
        cache: Optional[ResponseCachePort] = None,
        allowed_language: str = Defaults.ALLOWED_LANGUAGE,
        profanity_extra_words: Iterable[str] = (),
        fetch_timeout_seconds: float = Defaults.TRANSCRIPT_FETCH_TIMEOUT_SECONDS,
        lease_seconds: float = Defaults.FINALIZATION_LEASE_SECONDS,
        completion_wait_seconds: float = Defaults.FINALIZATION_WAIT_SECONDS,
        poll_interval_seconds: float = Defaults.FINALIZATION_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._sessions = session_store
        self._flags = flag_store
        self._publisher = alert_publisher
        self._identity = identity
        self._provider = transcript_provider
        self._cache = cache
        self._allowed_language = allowed_language
        self._extra_words = tuple(profanity_extra_words)
        self._fetch_timeout = fetch_timeout_seconds
        self._lease_seconds = lease_seconds
        self._completion_wait = completion_wait_seconds
        self._poll_interval = poll_interval_seconds
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="transcript-fetch")
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def finalize_session(
        self,
        session_id: str,
        duration: float,
        transcript_ref: Optional[str] = None,
        requester_id: Optional[str] = None,
    ) -> Session:
        """Finalize *session_id*.

        Args:
            session_id: Session to close.
            duration: Recording length in seconds.
            transcript_ref: Provider job id of the authoritative transcript.
            requester_id: Caller identity; None skips the ownership check.

        Returns:
            The completed session. If another finalizer holds the claim and
            does not finish within the wait window, the session as it stands
            (still ``reconciling``).
        """
        duration = InputValidator.validate_duration(duration)
        load_owned_session(self._sessions, session_id, requester_id)

        with self._lock_for(session_id), session_context(session_id, transcript_ref=transcript_ref):
            session = load_owned_session(self._sessions, session_id, None)
            if session.status == SessionStatus.COMPLETE:
                logger.info("finalization_skipped_already_complete", session_id=session_id)
                self._forget_lock(session_id)
                return session

            if not self._sessions.claim_reconciliation(session_id, self._lease_seconds):
                logger.info(
                    "finalization_claimed_elsewhere",
                    session_id=session_id,
                    status=session.status.value,
                )
                return self._await_completion(session_id)

            logger.info(
                "finalization_started",
                session_id=session_id,
                transcript_ref=transcript_ref,
                previous_status=session.status.value,
                segment_count=session.cursor,
            )

            try:
                self._enrich(session_id, duration, transcript_ref)
            except Exception as exc:
                logger.error(
                    "finalization_enrichment_failed",
                    session_id=session_id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )

            self._sessions.transition_status(
                session_id, SessionStatus.RECONCILING, SessionStatus.COMPLETE, duration=duration
            )
            self._invalidate(session_id)
            self._forget_lock(session_id)

        final = load_owned_session(self._sessions, session_id, None)
        logger.info(
            "finalization_completed",
            session_id=session_id,
            status=final.status.value,
            segment_count=final.cursor,
            duration=duration,
        )
        return final

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _await_completion(self, session_id: str) -> Session:
        deadline = time.monotonic() + self._completion_wait
        session = load_owned_session(self._sessions, session_id, None)
        while session.status != SessionStatus.COMPLETE and time.monotonic() < deadline:
            time.sleep(self._poll_interval)
            session = load_owned_session(self._sessions, session_id, None)

        if session.status == SessionStatus.COMPLETE:
            self._forget_lock(session_id)
        else:
            logger.warning(
                "finalization_wait_timed_out",
                session_id=session_id,
                status=session.status.value,
                waited_seconds=self._completion_wait,
            )
        return session

    def _enrich(self, session_id: str, duration: float, transcript_ref: Optional[str]) -> None:
        replacement = self._fetch_final_segments(session_id, transcript_ref)

        if replacement is not None:
            session = self._sessions.replace_segments(session_id, replacement)
            removed = self._flags.delete_flags(session_id)
            analysis = analyze_session(
                session,
                allowed_language=session.language or self._allowed_language,
                extra_profanity=self._extra_words,
                include_live_checks=True,
            )
            self._flags.add_flags(analysis.all_flags)
            self._sessions.set_counters(
                session_id,
                profanity=len(analysis.profanity),
                language_violations=len(analysis.language_policy),
            )
            logger.info(
                "transcript_replaced",
                session_id=session_id,
                segment_count=len(replacement),
                flags_removed=removed,
                flags_created=len(analysis.all_flags),
            )
        else:
            session = load_owned_session(self._sessions, session_id, None)
            removed = self._flags.delete_flags(session_id, AGGREGATE_FLAG_TYPES)
            analysis = analyze_session(
                session,
                allowed_language=session.language or self._allowed_language,
                extra_profanity=self._extra_words,
            )
            self._flags.add_flags(analysis.aggregate_flags)
            logger.info(
                "aggregate_flags_regenerated",
                session_id=session_id,
                flags_removed=removed,
                flags_created=len(analysis.aggregate_flags),
            )

        self._sessions.save_analysis(
            session_id,
            analysis.participation_balance,
            analysis.topic_adherence.score,
        )
        if replacement is not None:
            counts = (len(analysis.profanity), len(analysis.language_policy))
        else:
            counts = (session.profanity_count, session.language_violation_count)
        self._log_quality(session, analysis, *counts)
        self._broadcast_summary(session, analysis, duration)
        self._log_quality_checks(session, analysis, duration)

    def _fetch_final_segments(
        self, session_id: str, transcript_ref: Optional[str]
    ) -> Optional[List[Segment]]:
        """Authoritative segments, or None to keep the accumulated ones."""
        if not transcript_ref:
            return None
        if self._provider is None:
            logger.warning(
                "transcript_provider_not_configured",
                session_id=session_id,
                transcript_ref=transcript_ref,
            )
            return None

        future = self._executor.submit(self._provider.fetch_final_transcript, transcript_ref)
        try:
            tokens = future.result(timeout=self._fetch_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "transcript_fetch_fallback",
                session_id=session_id,
                transcript_ref=transcript_ref,
                reason=f"timed out after {self._fetch_timeout}s",
            )
            return None
        except ExternalProviderUnavailableError as exc:
            logger.warning(
                "transcript_fetch_fallback",
                session_id=session_id,
                transcript_ref=transcript_ref,
                reason=exc.message,
            )
            return None

        segments = TokenSegmenter.build_segments(tokens)
        if not segments:
            logger.warning(
                "transcript_fetch_fallback",
                session_id=session_id,
                transcript_ref=transcript_ref,
                reason="final transcript has no tokens",
            )
            return None
        return segments

    def _broadcast_summary(
        self, session: Session, analysis: SessionAnalysis, duration: float
    ) -> None:
        if self._publisher is None:
            return

        display_name = owner_display_name(self._identity, session.owner_id)
        timestamp_ms = math.floor(duration * 1000)
        balance = analysis.participation_balance
        score = analysis.topic_adherence.score
        events: List[AlertEvent] = []

        if not balance.is_balanced:
            events.append(
                AlertEvent(
                    type=AlertType.PARTICIPATION_ALERT,
                    session_id=session.session_id,
                    owner_display_name=display_name,
                    flagged_word=FlagWords.PARTICIPATION_IMBALANCE,
                    timestamp_ms=timestamp_ms,
                    speaker=balance.dominant_speaker or "Multiple",
                    context=balance.imbalance_reason or "",
                    flag_type=FlagType.PARTICIPATION,
                )
            )
        if score < Defaults.TOPIC_ADHERENCE_QUALITY_BAR:
            events.append(
                AlertEvent(
                    type=AlertType.TOPIC_ADHERENCE_ALERT,
                    session_id=session.session_id,
                    owner_display_name=display_name,
                    flagged_word=FlagWords.LOW_TOPIC_ADHERENCE,
                    timestamp_ms=timestamp_ms,
                    speaker="Group",
                    context=f"Topic adherence score: {score * 100:.0f}%",
                    flag_type=FlagType.OFF_TOPIC,
                )
            )

        for event in events:
            try:
                self._publisher.publish(event)
            except Exception as exc:
                logger.error(
                    "alert_publish_failed",
                    session_id=session.session_id,
                    alert_type=event.type.value,
                    error=str(exc),
                )

    @staticmethod
    def _log_quality(
        session: Session,
        analysis: SessionAnalysis,
        profanity_count: int,
        language_violations: int,
    ) -> None:
        balance = analysis.participation_balance
        if not balance.is_balanced:
            logger.info(
                "detection_decision",
                session_id=session.session_id,
                decision="participation_imbalance",
                dominant_speaker=balance.dominant_speaker,
                silent_speakers=balance.silent_speakers,
                reason=balance.imbalance_reason,
            )
        if analysis.topic_adherence.score < Defaults.TOPIC_ADHERENCE_QUALITY_BAR:
            logger.info(
                "detection_decision",
                session_id=session.session_id,
                decision="low_topic_adherence",
                score=analysis.topic_adherence.score,
                off_topic_count=analysis.topic_adherence.off_topic_count,
            )
        logger.info(
            "quality_metric",
            session_id=session.session_id,
            metric="final_analysis",
            profanity_count=profanity_count,
            language_violations=language_violations,
            participation_balanced=balance.is_balanced,
            topic_adherence_score=analysis.topic_adherence.score,
        )

    def _log_quality_checks(
        self, session: Session, analysis: SessionAnalysis, duration: float
    ) -> None:
        results = run_quality_checks(
            session.segments,
            self._flags.list_flags(session.session_id),
            analysis.participation_balance,
            duration,
        )
        for result in results:
            logger.info(
                "test_result",
                session_id=session.session_id,
                test_name=result.name,
                passed=result.passed,
                **result.details,
            )
        passed = sum(1 for r in results if r.passed)
        logger.info(
            "quality_metric",
            session_id=session.session_id,
            metric="quality_tests_summary",
            passed_count=passed,
            total_tests=len(results),
            all_passed=passed == len(results),
            results={r.name: r.passed for r in results},
        )

    def _invalidate(self, session_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate_prefix(session_cache_key(session_id))

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(session_id, threading.Lock())

    def _forget_lock(self, session_id: str) -> None:
        with self._locks_guard:
            self._locks.pop(session_id, None)
