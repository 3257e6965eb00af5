"""
Post-finalization quality checks.

Sanity checks over a finalized session's detections. A failed check means a
heuristic probably misfired, not that the discussion itself was bad.
The finalizer logs every result as a ``test_result`` event.
"""

from typing import Any, Dict, Iterable, List, NamedTuple, Sequence

from domain.models import FlaggedContent, FlagType, ParticipationBalance, Segment


# Ordinary words a substring matcher would wrongly flag
FALSE_POSITIVE_WORDS = ("class", "pass", "assess", "analysis")

MAX_PROFANITY_FLAGS_PER_SEGMENT = 0.5
MAX_ALERTS_PER_MINUTE = 5.0
MEANINGFUL_SHARE = 0.1
UNREASONABLE_DOMINANCE = 0.7
ALLOWED_LANGUAGE_NAMES = ("english", "en")


class QualityCheckResult(NamedTuple):
    name: str
    passed: bool
    details: Dict[str, Any]


def check_profanity_accuracy(
    segments: Sequence[Segment], profanity_flags: Sequence[FlaggedContent]
) -> QualityCheckResult:
    """No flagged word may contain a known false-positive word, and there
    may be at most one profanity flag per two segments."""
    words = [f.flagged_word for f in profanity_flags]
    has_false_positives = any(
        fp in word.lower() for word in words for fp in FALSE_POSITIVE_WORDS
    )
    flags_per_segment = len(words) / len(segments) if segments else 0.0
    is_spammy = flags_per_segment > MAX_PROFANITY_FLAGS_PER_SEGMENT

    return QualityCheckResult(
        name="profanity_detection_accuracy",
        passed=not has_false_positives and not is_spammy,
        details={
            "total_flags": len(words),
            "flags_per_segment": round(flags_per_segment, 3),
            "has_false_positives": has_false_positives,
            "is_spammy": is_spammy,
            "flagged_words": words,
        },
    )


def check_language_policy(language_flags: Sequence[FlaggedContent]) -> QualityCheckResult:
    """English itself must never be reported as a disallowed language."""
    detected = sorted({f.flagged_word for f in language_flags})
    english_flagged = any(w.lower() in ALLOWED_LANGUAGE_NAMES for w in detected)

    return QualityCheckResult(
        name="language_policy_detection",
        passed=not english_flagged,
        details={
            "total_violations": len(language_flags),
            "detected_languages": detected,
            "has_english_false_positives": english_flagged,
        },
    )


def check_participation_balance(balance: ParticipationBalance) -> QualityCheckResult:
    """At least two speakers above a 10% share and nobody above 70%."""
    speaker_count = len(balance.speakers)
    meaningful = sum(1 for s in balance.speakers if s.percentage > MEANINGFUL_SHARE)
    dominant_share = next(
        (s.percentage for s in balance.speakers if s.speaker_id == balance.dominant_speaker),
        0.0,
    )
    unreasonable = balance.dominant_speaker is not None and dominant_share > UNREASONABLE_DOMINANCE

    return QualityCheckResult(
        name="participation_balance_reasonableness",
        passed=speaker_count >= 2 and meaningful >= 2 and not unreasonable,
        details={
            "speaker_count": speaker_count,
            "meaningful_speakers": meaningful,
            "is_balanced": balance.is_balanced,
            "dominant_speaker": balance.dominant_speaker,
            "silent_speakers": list(balance.silent_speakers),
            "has_unreasonable_dominance": unreasonable,
        },
    )


def check_alert_rate(flags: Sequence[FlaggedContent], duration: float) -> QualityCheckResult:
    """At most five alerts per minute, and not three or more of a single type."""
    alerts_per_minute = len(flags) / duration * 60 if duration > 0 else 0.0
    is_spammy = alerts_per_minute > MAX_ALERTS_PER_MINUTE
    flag_types = sorted({f.flag_type.value for f in flags})
    has_diversity = len(flag_types) > 1 or len(flags) < 3

    return QualityCheckResult(
        name="alert_spam_prevention",
        passed=not is_spammy and has_diversity,
        details={
            "total_alerts": len(flags),
            "alerts_per_minute": round(alerts_per_minute, 2),
            "duration_seconds": duration,
            "is_spammy": is_spammy,
            "alert_types": flag_types,
            "has_diversity": has_diversity,
        },
    )


def run_quality_checks(
    segments: Sequence[Segment],
    flags: Iterable[FlaggedContent],
    balance: ParticipationBalance,
    duration: float,
) -> List[QualityCheckResult]:
    """Run every check over a finalized session's segments and stored flags."""
    flags = list(flags)
    return [
        check_profanity_accuracy(
            segments, [f for f in flags if f.flag_type == FlagType.PROFANITY]
        ),
        check_language_policy([f for f in flags if f.flag_type == FlagType.LANGUAGE_POLICY]),
        check_participation_balance(balance),
        check_alert_rate(flags, duration),
    ]
