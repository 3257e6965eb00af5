from core_analysis.analyzers.profanity import (
    detect_profanity,
    build_denylist,
    load_wordlist,
    ADDITIONAL_WORDS,
    BASE_DENYLIST,
)
from core_analysis.analyzers.language_policy import detect_language_violations
from core_analysis.analyzers.participation import (
    analyze_participation,
    evaluate_segment_participation,
    flagged_keys,
    resolve_thresholds,
    session_participation_flags,
)
from core_analysis.analyzers.topic_adherence import (
    analyze_topic_adherence,
    TopicAdherenceOutcome,
    DEFAULT_TOPIC_KEYWORDS,
    DEFAULT_OFF_TOPIC_INDICATORS,
)

__all__ = [
    "detect_profanity",
    "build_denylist",
    "BASE_DENYLIST",
    "ADDITIONAL_WORDS",
    "load_wordlist",
    "detect_language_violations",
    "analyze_participation",
    "evaluate_segment_participation",
    "flagged_keys",
    "resolve_thresholds",
    "session_participation_flags",
    "analyze_topic_adherence",
    "TopicAdherenceOutcome",
    "DEFAULT_TOPIC_KEYWORDS",
    "DEFAULT_OFF_TOPIC_INDICATORS",
]
