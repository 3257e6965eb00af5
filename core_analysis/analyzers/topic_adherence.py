"""
Topic-adherence analyzer.

Keyword heuristic, run only at finalization: a segment is off-topic when it
contains no on-topic keyword and at least one off-topic indicator.
"""

from typing import Iterable, List, NamedTuple, Optional, Set

from domain.models import FlaggedContent, FlagType, Segment, TopicAdherenceResult
from core_analysis.analyzers.text import iter_valid_segments, normalized_tokens, start_ms
from shared_utils.constants import Defaults, FlagWords


DEFAULT_TOPIC_KEYWORDS = (
    "discuss", "discussion", "topic", "question", "answer", "think", "opinion",
    "agree", "disagree", "why", "how", "what", "explain", "understand",
    "learn", "study", "class", "lesson", "subject", "idea", "point",
)

DEFAULT_OFF_TOPIC_INDICATORS = (
    "game", "play", "fun", "bored", "tired", "hungry", "lunch", "break",
    "homework", "test", "exam", "grade", "teacher", "school", "friend",
    "phone", "video", "movie", "music", "song", "dance",
)


class TopicAdherenceOutcome(NamedTuple):
    result: TopicAdherenceResult
    flags: List[FlaggedContent]


def build_topic_keywords(topic_keywords: Optional[Iterable[str]] = None) -> Set[str]:
    """Session keywords, or the default list when the session has none.

    The topic prompt is display text for observers and is not scored.
    """
    keywords = {k.strip().lower() for k in (topic_keywords or ()) if k.strip()}
    return keywords or set(DEFAULT_TOPIC_KEYWORDS)


def analyze_topic_adherence(
    segments: Iterable[Segment],
    session_id: str,
    topic_keywords: Optional[Iterable[str]] = None,
    off_topic_indicators: Optional[Iterable[str]] = None,
) -> TopicAdherenceOutcome:
    """Score how much of the discussion stayed on topic.

    Returns:
        The result (score = on-topic / total, 1.0 for no segments) and one
        ``off_topic`` flag per off-topic segment.
    """
    on_topic_words = build_topic_keywords(topic_keywords)
    indicator_words = {
        w.lower() for w in (off_topic_indicators or DEFAULT_OFF_TOPIC_INDICATORS)
    }

    detected: List[str] = []
    indicators_found: List[str] = []
    flags: List[FlaggedContent] = []
    on_topic = 0
    off_topic = 0

    for segment in iter_valid_segments(segments, "topic_adherence"):
        words = normalized_tokens(segment.text)
        hits = [w for w in words if w in on_topic_words]
        distractions = [w for w in words if w in indicator_words]

        for w in hits:
            if w not in detected:
                detected.append(w)
        for w in distractions:
            if w not in indicators_found:
                indicators_found.append(w)

        if not hits and distractions:
            off_topic += 1
            flags.append(
                FlaggedContent(
                    session_id=session_id,
                    flag_type=FlagType.OFF_TOPIC,
                    flagged_word=FlagWords.OFF_TOPIC,
                    context=segment.text[: Defaults.SEGMENT_CONTEXT_CHARS],
                    timestamp_ms=start_ms(segment),
                    speaker=segment.speaker,
                )
            )
        else:
            on_topic += 1

    total = on_topic + off_topic
    result = TopicAdherenceResult(
        score=on_topic / total if total > 0 else 1.0,
        on_topic_count=on_topic,
        off_topic_count=off_topic,
        detected_keywords=detected,
        off_topic_indicators=indicators_found,
    )
    return TopicAdherenceOutcome(result=result, flags=flags)
