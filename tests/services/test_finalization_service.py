"""
Unit tests for FinalizationService.

In-memory stores; the transcript provider and alert publisher are mocks.
"""

import threading
import time
from unittest.mock import MagicMock

import pytest
from structlog.testing import capture_logs

from domain.models import (
    AlertType,
    FlaggedContent,
    FlagType,
    Segment,
    SessionStatus,
    TranscriptToken,
)
from services.finalization_service import FinalizationService
from shared_utils.constants import FlagWords
from shared_utils.error_handler import (
    AccessDeniedError,
    ExternalProviderUnavailableError,
    ValidationError,
)


def _tok(text: str, start: int, end: int, speaker: str) -> TranscriptToken:
    return TranscriptToken(text=text, start_ms=start, end_ms=end, speaker=speaker)


@pytest.fixture()
def provider() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def service(session_store, flag_store, cache, identity, mock_publisher, provider):
    svc = FinalizationService(
        session_store=session_store,
        flag_store=flag_store,
        alert_publisher=mock_publisher,
        identity=identity,
        transcript_provider=provider,
        cache=cache,
        fetch_timeout_seconds=0.2,
    )
    yield svc
    svc.shutdown()


@pytest.fixture()
def recorded_session(session_store, draft_session, sample_segments):
    session_store.append_segments(draft_session.session_id, sample_segments, 0)
    return session_store.get_session(draft_session.session_id)


def _alert_types(publisher: MagicMock):
    return [c[0][0].type for c in publisher.publish.call_args_list]


class TestFallbackFinalization:
    def test_completes_with_accumulated_segments(
        self, service, recorded_session, session_store, provider
    ) -> None:
        final = service.finalize_session(recorded_session.session_id, 100.0)

        assert final.status == SessionStatus.COMPLETE
        assert final.duration == 100.0
        assert final.cursor == 3
        assert final.participation_balance.dominant_speaker == "SPEAKER 1"
        assert final.topic_adherence_score == 1.0
        provider.fetch_final_transcript.assert_not_called()

    def test_only_aggregate_flags_regenerated(
        self, service, recorded_session, flag_store
    ) -> None:
        sid = recorded_session.session_id
        flag_store.add_flags([
            FlaggedContent(session_id=sid, flag_type=FlagType.PROFANITY,
                           flagged_word="damn", timestamp_ms=10, speaker="SPEAKER 2"),
            FlaggedContent(session_id=sid, flag_type=FlagType.PARTICIPATION,
                           flagged_word=FlagWords.PARTICIPATION_SILENCE, timestamp_ms=20,
                           speaker="SPEAKER 2"),
        ])

        service.finalize_session(sid, 100.0)

        flags = flag_store.list_flags(sid)
        assert [(f.flag_type, f.flagged_word) for f in flags] == [
            (FlagType.PARTICIPATION, FlagWords.PARTICIPATION_DOMINANCE),
            (FlagType.PROFANITY, "damn"),
        ]

    def test_counters_kept(self, service, recorded_session, session_store) -> None:
        sid = recorded_session.session_id
        session_store.increment_counters(sid, profanity=2, language_violations=1)

        final = service.finalize_session(sid, 100.0)

        assert final.profanity_count == 2
        assert final.language_violation_count == 1

    def test_participation_summary_alert(
        self, service, recorded_session, mock_publisher
    ) -> None:
        service.finalize_session(recorded_session.session_id, 12.3456)

        event = mock_publisher.publish.call_args_list[0][0][0]
        assert event.type == AlertType.PARTICIPATION_ALERT
        assert event.flagged_word == FlagWords.PARTICIPATION_IMBALANCE
        assert event.speaker == "SPEAKER 1"
        assert event.timestamp_ms == 12345
        assert event.owner_display_name == "Group Alpha"

    def test_low_topic_adherence_alert(
        self, service, session_store, draft_session, mock_publisher
    ) -> None:
        segments = [
            Segment(speaker="SPEAKER 1", text="who wants lunch", start_time=0, end_time=5),
            Segment(speaker="SPEAKER 2", text="my phone is dead", start_time=5, end_time=10),
        ]
        session_store.append_segments(draft_session.session_id, segments, 0)

        final = service.finalize_session(draft_session.session_id, 10.0)

        assert final.topic_adherence_score == 0.0
        assert _alert_types(mock_publisher) == [AlertType.TOPIC_ADHERENCE_ALERT]
        event = mock_publisher.publish.call_args[0][0]
        assert event.speaker == "Group"
        assert event.context == "Topic adherence score: 0%"

    def test_empty_session(self, service, draft_session, mock_publisher) -> None:
        final = service.finalize_session(draft_session.session_id, 0)
        assert final.status == SessionStatus.COMPLETE
        assert final.participation_balance.is_balanced is True
        mock_publisher.publish.assert_not_called()


class TestIdempotence:
    def test_second_call_returns_completed_session(
        self, service, recorded_session, flag_store, mock_publisher
    ) -> None:
        sid = recorded_session.session_id
        first = service.finalize_session(sid, 100.0)
        flags_before = flag_store.list_flags(sid)
        published = mock_publisher.publish.call_count

        second = service.finalize_session(sid, 999.0)

        assert second == first
        assert second.duration == 100.0
        assert flag_store.list_flags(sid) == flags_before
        assert mock_publisher.publish.call_count == published

    def test_lock_released_after_completion(self, service, recorded_session) -> None:
        sid = recorded_session.session_id
        service.finalize_session(sid, 100.0)
        assert sid not in service._locks

        service.finalize_session(sid, 100.0)
        assert service._locks == {}

    def test_concurrent_finalize_runs_once(
        self, service, recorded_session, mock_publisher
    ) -> None:
        threads = [
            threading.Thread(
                target=service.finalize_session, args=(recorded_session.session_id, 100.0)
            )
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert _alert_types(mock_publisher) == [AlertType.PARTICIPATION_ALERT]

    def test_resumes_reconciling_session(self, service, recorded_session, session_store) -> None:
        sid = recorded_session.session_id
        session_store.transition_status(sid, SessionStatus.DRAFT, SessionStatus.RECONCILING)

        final = service.finalize_session(sid, 5.0)

        assert final.status == SessionStatus.COMPLETE


class TestFinalTranscript:
    def test_replaces_segments_and_recomputes(
        self, service, recorded_session, flag_store, session_store, provider
    ) -> None:
        sid = recorded_session.session_id
        session_store.increment_counters(sid, profanity=5)
        provider.fetch_final_transcript.return_value = [
            _tok("What", 0, 400, "1"),
            _tok(" is the damn question", 400, 4000, "1"),
            _tok(" good idea", 4000, 6000, "2"),
        ]

        final = service.finalize_session(sid, 6.0, transcript_ref="job-1")

        provider.fetch_final_transcript.assert_called_once_with("job-1")
        assert final.cursor == 2
        assert [s.speaker for s in final.segments] == ["SPEAKER 1", "SPEAKER 2"]
        assert final.profanity_count == 1
        words = [f.flagged_word for f in flag_store.list_flags(sid, [FlagType.PROFANITY])]
        assert words == ["damn"]

    def test_provider_error_falls_back(
        self, service, recorded_session, provider
    ) -> None:
        provider.fetch_final_transcript.side_effect = ExternalProviderUnavailableError("down")

        final = service.finalize_session(recorded_session.session_id, 100.0, transcript_ref="j")

        assert final.status == SessionStatus.COMPLETE
        assert final.segments == recorded_session.segments

    def test_provider_timeout_falls_back(self, service, recorded_session, provider) -> None:
        release = threading.Event()

        def slow(ref):
            release.wait(2.0)
            return [_tok("late", 0, 100, "1")]

        provider.fetch_final_transcript.side_effect = slow
        try:
            final = service.finalize_session(recorded_session.session_id, 100.0, transcript_ref="j")
        finally:
            release.set()

        assert final.status == SessionStatus.COMPLETE
        assert final.cursor == 3

    def test_empty_transcript_falls_back(self, service, recorded_session, provider) -> None:
        provider.fetch_final_transcript.return_value = []
        final = service.finalize_session(recorded_session.session_id, 100.0, transcript_ref="j")
        assert final.cursor == 3

    def test_no_provider_configured(self, session_store, flag_store, recorded_session) -> None:
        svc = FinalizationService(session_store=session_store, flag_store=flag_store)
        try:
            final = svc.finalize_session(recorded_session.session_id, 1.0, transcript_ref="j")
        finally:
            svc.shutdown()
        assert final.status == SessionStatus.COMPLETE


class TestFailureHandling:
    def test_enrichment_failure_still_completes(self, session_store, recorded_session) -> None:
        broken_flags = MagicMock()
        broken_flags.delete_flags.side_effect = RuntimeError("table missing")
        svc = FinalizationService(session_store=session_store, flag_store=broken_flags)
        try:
            final = svc.finalize_session(recorded_session.session_id, 1.0)
        finally:
            svc.shutdown()
        assert final.status == SessionStatus.COMPLETE

    @pytest.mark.parametrize("duration", [-1, float("nan"), "10", None])
    def test_invalid_duration(self, service, recorded_session, duration) -> None:
        with pytest.raises(ValidationError):
            service.finalize_session(recorded_session.session_id, duration)

    def test_other_owner_denied(self, service, recorded_session) -> None:
        with pytest.raises(AccessDeniedError):
            service.finalize_session(recorded_session.session_id, 1.0, requester_id="bob")


class TestSharedStoreClaim:
    """Finalizers in separate processes only share the session store."""

    @pytest.fixture()
    def slow_provider(self) -> MagicMock:
        provider = MagicMock()

        def fetch(ref):
            time.sleep(0.3)
            return []

        provider.fetch_final_transcript.side_effect = fetch
        return provider

    @staticmethod
    def _finalizer(session_store, flag_store, publisher, provider, **kwargs):
        return FinalizationService(
            session_store=session_store,
            flag_store=flag_store,
            alert_publisher=publisher,
            transcript_provider=provider,
            fetch_timeout_seconds=2.0,
            poll_interval_seconds=0.02,
            **kwargs,
        )

    def test_two_finalizers_run_side_effects_once(
        self, session_store, flag_store, recorded_session, mock_publisher, slow_provider
    ) -> None:
        sid = recorded_session.session_id
        finalizers = [
            self._finalizer(session_store, flag_store, mock_publisher, slow_provider,
                            completion_wait_seconds=5.0)
            for _ in range(2)
        ]
        results = {}

        def run(index: int) -> None:
            results[index] = finalizers[index].finalize_session(sid, 10.0, "job")

        threads = [threading.Thread(target=run, args=(i,)) for i in range(2)]
        try:
            for t in threads:
                t.start()
            for t in threads:
                t.join()
        finally:
            for f in finalizers:
                f.shutdown()

        assert slow_provider.fetch_final_transcript.call_count == 1
        assert _alert_types(mock_publisher) == [AlertType.PARTICIPATION_ALERT]
        assert len(flag_store.list_flags(sid, [FlagType.PARTICIPATION])) == 1
        assert results[0].status == SessionStatus.COMPLETE
        assert results[0] == results[1]

    def test_live_claim_elsewhere_skips_side_effects(
        self, session_store, flag_store, recorded_session, mock_publisher, provider
    ) -> None:
        sid = recorded_session.session_id
        assert session_store.claim_reconciliation(sid, 60.0)
        finalizer = self._finalizer(session_store, flag_store, mock_publisher, provider,
                                    completion_wait_seconds=0.05)
        try:
            result = finalizer.finalize_session(sid, 10.0, "job")
        finally:
            finalizer.shutdown()

        assert result.status == SessionStatus.RECONCILING
        provider.fetch_final_transcript.assert_not_called()
        mock_publisher.publish.assert_not_called()
        assert flag_store.list_flags(sid) == []

    def test_expired_claim_is_taken_over(
        self, session_store, flag_store, recorded_session, mock_publisher, provider
    ) -> None:
        sid = recorded_session.session_id
        assert session_store.claim_reconciliation(sid, 60.0)
        finalizer = self._finalizer(session_store, flag_store, mock_publisher, provider,
                                    lease_seconds=0.0)
        try:
            final = finalizer.finalize_session(sid, 10.0)
        finally:
            finalizer.shutdown()

        assert final.status == SessionStatus.COMPLETE
        assert _alert_types(mock_publisher) == [AlertType.PARTICIPATION_ALERT]


class TestQualityChecks:
    def test_results_logged_after_finalization(self, service, recorded_session) -> None:
        with capture_logs() as logs:
            service.finalize_session(recorded_session.session_id, 100.0)

        results = {e["test_name"]: e["passed"] for e in logs if e["event"] == "test_result"}
        assert results == {
            "profanity_detection_accuracy": True,
            "language_policy_detection": True,
            "participation_balance_reasonableness": True,
            "alert_spam_prevention": True,
        }
        summary = next(e for e in logs if e.get("metric") == "quality_tests_summary")
        assert summary["passed_count"] == 4
        assert summary["all_passed"] is True

    def test_failed_check_reported(self, service, draft_session, provider) -> None:
        provider.fetch_final_transcript.return_value = [
            _tok("damn", 0, 1000, "1"),
            _tok(" damn it", 1000, 2000, "1"),
        ]

        with capture_logs() as logs:
            service.finalize_session(draft_session.session_id, 2.0, transcript_ref="job")

        profanity = next(
            e for e in logs
            if e["event"] == "test_result" and e["test_name"] == "profanity_detection_accuracy"
        )
        assert profanity["passed"] is False
        assert profanity["is_spammy"] is True
