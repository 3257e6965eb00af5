"""
Shared tokenization and segment checks for the analyzers.
"""

import math
import re
from typing import Iterable, Iterator, List

from domain.models import Segment
from shared_utils.constants import LogScope
from shared_utils.error_handler import AnalyzerInputInvalidError
from shared_utils.logging_utils import ContextualLogger


logger = ContextualLogger(scope=LogScope.ANALYZER)

_NON_WORD = re.compile(r"[^\w]")


def tokenize(text: str) -> List[str]:
    """Split on runs of whitespace; empty or blank text yields no tokens."""
    return text.split()


def normalize_token(token: str) -> str:
    """Strip non-word characters and lowercase (``"Hell!"`` -> ``"hell"``)."""
    return _NON_WORD.sub("", token).lower()


def normalized_tokens(text: str) -> List[str]:
    return [normalize_token(t) for t in tokenize(text)]


def start_ms(segment: Segment) -> int:
    return math.floor(segment.start_time * 1000)


def validate_segment(segment: Segment) -> None:
    """Raise AnalyzerInputInvalidError for segments that cannot be timed or attributed.

    Segments parsed at the API boundary always pass; this guards objects built
    with ``model_construct`` or deserialised from older rows.
    """
    speaker = getattr(segment, "speaker", None)
    start = getattr(segment, "start_time", None)
    end = getattr(segment, "end_time", None)

    if not isinstance(speaker, str) or not speaker:
        raise AnalyzerInputInvalidError("segment has no speaker")
    if not isinstance(start, (int, float)) or not isinstance(end, (int, float)):
        raise AnalyzerInputInvalidError(
            "segment timing is missing", context={"speaker": speaker}
        )
    if not (math.isfinite(start) and math.isfinite(end)) or start < 0 or end < start:
        raise AnalyzerInputInvalidError(
            "segment timing is inconsistent",
            context={"speaker": speaker, "start_time": start, "end_time": end},
        )
    if not isinstance(getattr(segment, "text", None), str):
        raise AnalyzerInputInvalidError(
            "segment text is not a string", context={"speaker": speaker}
        )


def iter_valid_segments(segments: Iterable[Segment], analyzer: str) -> Iterator[Segment]:
    """Yield analysable segments, logging and skipping the rest."""
    for index, segment in enumerate(segments):
        try:
            validate_segment(segment)
        except AnalyzerInputInvalidError as exc:
            logger.warning(
                "analyzer_segment_skipped",
                analyzer=analyzer,
                index=index,
                reason=exc.message,
                context=exc.context,
            )
            continue
        yield segment
