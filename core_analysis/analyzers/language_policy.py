"""Language-policy analyzer."""

from typing import Iterable, List

from domain.models import FlaggedContent, FlagType, Segment
from core_analysis.analyzers.text import iter_valid_segments, start_ms
from shared_utils.constants import Defaults


def detect_language_violations(
    segments: Iterable[Segment],
    session_id: str,
    allowed_language: str = Defaults.ALLOWED_LANGUAGE,
) -> List[FlaggedContent]:
    """Flag segments whose detected language differs from *allowed_language*.

    Segments without a language tag are never flagged. The comparison is
    case-insensitive and the detected code is stored as ``flagged_word``.
    """
    allowed = allowed_language.strip().lower()
    flags: List[FlaggedContent] = []

    for segment in iter_valid_segments(segments, "language_policy"):
        if not segment.language or segment.language.strip().lower() == allowed:
            continue
        flags.append(
            FlaggedContent(
                session_id=session_id,
                flag_type=FlagType.LANGUAGE_POLICY,
                flagged_word=segment.language,
                context=segment.text[: Defaults.LANGUAGE_CONTEXT_CHARS],
                timestamp_ms=start_ms(segment),
                speaker=segment.speaker,
            )
        )

    return flags
