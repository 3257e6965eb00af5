"""
Token stream to segment builder.

Turns the speech-to-text provider's token stream into speaker segments:
consecutive tokens from the same speaker merge into one segment and a new
segment opens whenever the speaker changes.
"""

from typing import Iterable, List, Optional

from domain.models import Segment, TranscriptToken
from shared_utils.constants import Defaults, LogScope
from shared_utils.logging_utils import ContextualLogger


logger = ContextualLogger(scope=LogScope.PARSER)


class TokenSegmenter:
    """Builds Segments from provider tokens.

    Tokens carry their own leading whitespace, so text is concatenated as-is
    and only the outer whitespace of each finished segment is trimmed.
    Times arrive in milliseconds and leave in seconds.
    """

    @staticmethod
    def normalize_speaker(speaker: Optional[str]) -> str:
        """``None`` -> ``"SPEAKER 1"``; ``"2"`` -> ``"SPEAKER 2"``; ``"SPEAKER 3"`` unchanged."""
        if speaker is None or not str(speaker).strip():
            return Defaults.DEFAULT_SPEAKER
        label = str(speaker).strip()
        return label if label.startswith("SPEAKER") else f"SPEAKER {label}"

    @staticmethod
    def build_segments(tokens: Iterable[TranscriptToken]) -> List[Segment]:
        """Merge a token stream into speaker segments.

        Args:
            tokens: Provider tokens in stream order.

        Returns:
            Segments in stream order. Empty input gives an empty list.
        """
        segments: List[Segment] = []
        speaker: Optional[str] = None
        parts: List[str] = []
        start_ms = 0
        end_ms = 0
        language: Optional[str] = None

        def close() -> None:
            if speaker is None:
                return
            segments.append(
                Segment(
                    speaker=speaker,
                    text="".join(parts).strip(),
                    start_time=start_ms / 1000,
                    end_time=max(end_ms, start_ms) / 1000,
                    language=language,
                )
            )

        for token in tokens:
            label = TokenSegmenter.normalize_speaker(token.speaker)
            if label != speaker:
                close()
                speaker = label
                parts = [token.text]
                start_ms = max(token.start_ms, 0)
                end_ms = token.end_ms
                language = token.language or None
            else:
                parts.append(token.text)
                end_ms = max(end_ms, token.end_ms)
        close()

        logger.info("tokens_segmented", segment_count=len(segments))
        return segments
