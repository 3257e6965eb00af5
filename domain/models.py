"""
Pure domain models for the Discussion Monitor.

These models contain NO storage or transport dependencies. They represent the
core concepts that flow through ports and services. JSON field names on the
wire are camelCase (``startTime``, ``flaggedWord``); Python attributes are
snake_case.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, model_validator
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class WireModel(BaseModel):
    """Base for models serialised to clients with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SessionStatus(str, Enum):
    """Session lifecycle: draft -> reconciling -> complete (terminal)."""

    DRAFT = "draft"
    RECONCILING = "reconciling"
    COMPLETE = "complete"


class FlagType(str, Enum):
    """Kinds of flagged content."""

    PROFANITY = "profanity"
    LANGUAGE_POLICY = "language_policy"
    OFF_TOPIC = "off_topic"
    PARTICIPATION = "participation"


class AlertType(str, Enum):
    """Server -> observer event types."""

    CONNECTED = "CONNECTED"
    PROFANITY_ALERT = "PROFANITY_ALERT"
    LANGUAGE_POLICY_ALERT = "LANGUAGE_POLICY_ALERT"
    PARTICIPATION_ALERT = "PARTICIPATION_ALERT"
    TOPIC_ADHERENCE_ALERT = "TOPIC_ADHERENCE_ALERT"


ALERT_TYPE_BY_FLAG = {
    FlagType.PROFANITY: AlertType.PROFANITY_ALERT,
    FlagType.LANGUAGE_POLICY: AlertType.LANGUAGE_POLICY_ALERT,
    FlagType.PARTICIPATION: AlertType.PARTICIPATION_ALERT,
    FlagType.OFF_TOPIC: AlertType.TOPIC_ADHERENCE_ALERT,
}

# Flags derived from whole-session aggregates; stale whenever the transcript changes.
AGGREGATE_FLAG_TYPES = (FlagType.PARTICIPATION, FlagType.OFF_TOPIC)


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------


class TranscriptToken(BaseModel):
    """One token from the upstream speech-to-text stream.

    Tokens carry their own leading whitespace, so concatenating ``text``
    reproduces the utterance.
    """

    model_config = ConfigDict(extra="ignore")

    text: str = ""
    start_ms: int = 0
    end_ms: int = 0
    speaker: Optional[str] = None
    language: Optional[str] = None


class Segment(WireModel):
    """A contiguous same-speaker span of transcribed speech.

    Immutable once built. Missing ``speaker``/``startTime``/``endTime``, a
    non-numeric time (``"1.5"``) or an inverted time range is rejected rather
    than coerced.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    speaker: str = Field(min_length=1)
    text: str = ""
    start_time: StrictFloat
    end_time: StrictFloat
    language: Optional[str] = None

    @model_validator(mode="after")
    def _check_times(self) -> "Segment":
        if not (math.isfinite(self.start_time) and math.isfinite(self.end_time)):
            raise ValueError("startTime and endTime must be finite numbers")
        if self.start_time < 0:
            raise ValueError("startTime must be >= 0")
        if self.end_time < self.start_time:
            raise ValueError("endTime must be >= startTime")
        return self

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


# ---------------------------------------------------------------------------
# Participation
# ---------------------------------------------------------------------------


class ParticipationConfig(WireModel):
    """Explicit participation thresholds; when set they override the
    fair-share-derived defaults."""

    dominance_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    silence_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class SpeakerParticipation(WireModel):
    speaker_id: str
    talk_time: float
    segment_count: int
    percentage: float


class ParticipationBalance(WireModel):
    """Per-speaker talk-time snapshot with derived balance signals."""

    speakers: List[SpeakerParticipation] = []
    dominant_speaker: Optional[str] = None
    silent_speakers: List[str] = []
    is_balanced: bool = True
    imbalance_reason: Optional[str] = None


class TopicAdherenceResult(WireModel):
    score: float = 1.0
    on_topic_count: int = 0
    off_topic_count: int = 0
    detected_keywords: List[str] = []
    off_topic_indicators: List[str] = []


# ---------------------------------------------------------------------------
# Flags, sessions and alerts
# ---------------------------------------------------------------------------


class FlaggedContent(WireModel):
    """A persisted policy violation detected in a segment."""

    flag_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str
    flag_type: FlagType
    flagged_word: str
    context: str = ""
    timestamp_ms: int
    speaker: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)


class Session(WireModel):
    """A discussion session: ordered segments plus aggregate signals.

    ``cursor`` always equals ``len(segments)``.
    """

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    status: SessionStatus = SessionStatus.DRAFT
    language: str = "en"
    segments: List[Segment] = []
    cursor: int = 0
    profanity_count: int = 0
    language_violation_count: int = 0
    topic_prompt: Optional[str] = None
    topic_keywords: Optional[List[str]] = None
    participation_config: Optional[ParticipationConfig] = None
    participation_balance: Optional[ParticipationBalance] = None
    topic_adherence_score: Optional[float] = None
    duration: Optional[float] = None
    reconcile_started_at: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    @model_validator(mode="after")
    def _check_cursor(self) -> "Session":
        if self.cursor != len(self.segments):
            raise ValueError(
                f"cursor ({self.cursor}) must equal number of segments ({len(self.segments)})"
            )
        return self


class SessionDetail(WireModel):
    """GetSession response: the session plus its flags ordered by timestamp."""

    session: Session
    flagged_content: List[FlaggedContent] = []


class SessionSummary(WireModel):
    """Segment-free view of a session, embedded in owner flag listings."""

    session_id: str
    owner_id: str
    status: SessionStatus
    language: str
    cursor: int
    profanity_count: int
    language_violation_count: int
    topic_adherence_score: Optional[float] = None
    duration: Optional[float] = None
    created_at: str

    @classmethod
    def of(cls, session: Session) -> "SessionSummary":
        return cls.model_validate(session.model_dump(exclude={"segments"}))


class OwnerFlaggedContent(FlaggedContent):
    """A flag together with the session it belongs to."""

    session: SessionSummary


class AlertEvent(WireModel):
    """Transient notification pushed to observers."""

    type: AlertType
    session_id: str
    owner_display_name: str
    flagged_word: str
    timestamp_ms: int
    speaker: str
    context: str = ""
    flag_type: FlagType

    @classmethod
    def from_flag(cls, flag: FlaggedContent, owner_display_name: str) -> "AlertEvent":
        return cls(
            type=ALERT_TYPE_BY_FLAG[flag.flag_type],
            session_id=flag.session_id,
            owner_display_name=owner_display_name,
            flagged_word=flag.flagged_word,
            timestamp_ms=flag.timestamp_ms,
            speaker=flag.speaker or "Unknown",
            context=flag.context,
            flag_type=flag.flag_type,
        )
