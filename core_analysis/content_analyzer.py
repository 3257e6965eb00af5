"""
Content analysis entry points.

Combines the individual analyzers into the two passes the services need:
a per-batch pass over newly committed segments during live ingestion, and a
whole-session pass at finalization.
"""

from dataclasses import dataclass, field
from typing import AbstractSet, Iterable, List, Optional

from domain.models import (
    FlaggedContent,
    ParticipationBalance,
    Segment,
    Session,
    TopicAdherenceResult,
)
from core_analysis.analyzers import (
    analyze_participation,
    analyze_topic_adherence,
    detect_language_violations,
    detect_profanity,
    evaluate_segment_participation,
    session_participation_flags,
)
from core_analysis.analyzers.participation import participation_flag_key
from shared_utils.constants import LogScope
from shared_utils.logging_utils import ContextualLogger


logger = ContextualLogger(scope=LogScope.ANALYZER)


@dataclass
class BatchAnalysis:
    """Flags raised for one appended batch."""
    profanity: List[FlaggedContent] = field(default_factory=list)
    language_policy: List[FlaggedContent] = field(default_factory=list)
    participation: List[FlaggedContent] = field(default_factory=list)

    @property
    def all_flags(self) -> List[FlaggedContent]:
        return [*self.profanity, *self.language_policy, *self.participation]


@dataclass
class SessionAnalysis:
    """Whole-session results computed at finalization."""
    participation_balance: ParticipationBalance
    topic_adherence: TopicAdherenceResult
    participation_flags: List[FlaggedContent] = field(default_factory=list)
    off_topic_flags: List[FlaggedContent] = field(default_factory=list)
    profanity: List[FlaggedContent] = field(default_factory=list)
    language_policy: List[FlaggedContent] = field(default_factory=list)

    @property
    def aggregate_flags(self) -> List[FlaggedContent]:
        return [*self.participation_flags, *self.off_topic_flags]

    @property
    def all_flags(self) -> List[FlaggedContent]:
        return [*self.profanity, *self.language_policy, *self.aggregate_flags]


def analyze_batch(
    session: Session,
    new_segments: List[Segment],
    allowed_language: str,
    extra_profanity: Iterable[str] = (),
    already_flagged: AbstractSet[str] = frozenset(),
) -> BatchAnalysis:
    """Real-time pass over *new_segments*.

    *session* must already contain the batch, so participation sees the full
    cumulative history. Topic adherence is never evaluated here.
    """
    result = BatchAnalysis(
        profanity=detect_profanity(new_segments, session.session_id, extra_profanity),
        language_policy=detect_language_violations(
            new_segments, session.session_id, allowed_language
        ),
    )

    seen = set(already_flagged)
    for segment in new_segments:
        flags = evaluate_segment_participation(
            segment,
            session.segments,
            session.session_id,
            session.participation_config,
            seen,
        )
        for flag in flags:
            seen.add(participation_flag_key(flag.speaker or "", flag.flagged_word))
        result.participation.extend(flags)

    return result


def analyze_session(
    session: Session,
    segments: Optional[List[Segment]] = None,
    allowed_language: str = "en",
    extra_profanity: Iterable[str] = (),
    include_live_checks: bool = False,
) -> SessionAnalysis:
    """Whole-session pass.

    Args:
        session: Session supplying id and per-session configuration.
        segments: Segment list to analyse (defaults to ``session.segments``).
        allowed_language: Language-policy setting.
        extra_profanity: Deployment denylist additions.
        include_live_checks: Also re-run profanity and language policy, used
            when the segment list was replaced by the final transcript.
    """
    segments = list(session.segments if segments is None else segments)

    balance = analyze_participation(segments, session.participation_config)
    topic = analyze_topic_adherence(
        segments,
        session.session_id,
        topic_keywords=session.topic_keywords,
    )
    analysis = SessionAnalysis(
        participation_balance=balance,
        topic_adherence=topic.result,
        participation_flags=session_participation_flags(segments, balance, session.session_id),
        off_topic_flags=topic.flags,
    )
    if include_live_checks:
        analysis.profanity = detect_profanity(segments, session.session_id, extra_profanity)
        analysis.language_policy = detect_language_violations(
            segments, session.session_id, allowed_language
        )

    logger.info(
        "session_analysis_computed",
        session_id=session.session_id,
        segment_count=len(segments),
        is_balanced=balance.is_balanced,
        dominant_speaker=balance.dominant_speaker,
        silent_speakers=balance.silent_speakers,
        topic_adherence_score=topic.result.score,
        off_topic_count=topic.result.off_topic_count,
    )
    return analysis
