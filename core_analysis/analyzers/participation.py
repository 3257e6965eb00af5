"""
Participation analyzer.

Talk-time balance across speakers, computed from the full segment history.

Thresholds default to values derived from the speaker count:

    fair_share = 1 / speaker_count
    dominance  = min(1.5 * fair_share, 0.6)
    silence    = max(0.3 * fair_share, 0.05)

Explicit ``ParticipationConfig`` values replace these defaults verbatim.
Dominance is only evaluated with two or more speakers; silence only with
three or more.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import AbstractSet, Dict, Iterable, List, Optional, Tuple

from domain.models import (
    FlaggedContent,
    FlagType,
    ParticipationBalance,
    ParticipationConfig,
    Segment,
    SpeakerParticipation,
)
from core_analysis.analyzers.text import iter_valid_segments, start_ms
from shared_utils.constants import Defaults, FlagWords


@dataclass
class _SpeakerTally:
    talk_time: float = 0.0
    segment_count: int = 0


def tally_speakers(segments: Iterable[Segment]) -> "OrderedDict[str, _SpeakerTally]":
    """Per-speaker talk time and segment count, in order of first appearance."""
    tallies: "OrderedDict[str, _SpeakerTally]" = OrderedDict()
    for segment in iter_valid_segments(segments, "participation"):
        tally = tallies.setdefault(segment.speaker, _SpeakerTally())
        tally.talk_time += segment.duration
        tally.segment_count += 1
    return tallies


def resolve_thresholds(
    speaker_count: int, config: Optional[ParticipationConfig] = None
) -> Tuple[float, float]:
    """Return ``(dominance_threshold, silence_threshold)`` for *speaker_count* speakers."""
    fair_share = 1.0 / speaker_count if speaker_count > 0 else 1.0
    dominance = min(
        Defaults.DOMINANCE_FAIR_SHARE_MULTIPLIER * fair_share, Defaults.DOMINANCE_CAP
    )
    silence = max(
        Defaults.SILENCE_FAIR_SHARE_MULTIPLIER * fair_share, Defaults.SILENCE_FLOOR
    )
    if config is not None:
        if config.dominance_threshold is not None:
            dominance = config.dominance_threshold
        if config.silence_threshold is not None:
            silence = config.silence_threshold
    return dominance, silence


def analyze_participation(
    segments: Iterable[Segment],
    config: Optional[ParticipationConfig] = None,
) -> ParticipationBalance:
    """Compute the participation balance snapshot for a full segment list.

    When total talk time is zero every percentage is 0 and no speaker is
    marked dominant or silent, since there is nothing to compare.
    """
    tallies = tally_speakers(segments)
    if not tallies:
        return ParticipationBalance()

    total = sum(t.talk_time for t in tallies.values())
    speakers = [
        SpeakerParticipation(
            speaker_id=speaker_id,
            talk_time=tally.talk_time,
            segment_count=tally.segment_count,
            percentage=tally.talk_time / total if total > 0 else 0.0,
        )
        for speaker_id, tally in tallies.items()
    ]
    speakers.sort(key=lambda s: s.percentage, reverse=True)

    dominant_speaker: Optional[str] = None
    silent_speakers: List[str] = []

    if total > 0:
        dominance, silence = resolve_thresholds(len(speakers), config)
        if len(speakers) >= Defaults.MIN_SPEAKERS_FOR_DOMINANCE:
            # sorted descending, so the first over the bar is the largest share
            for s in speakers:
                if s.percentage > dominance:
                    dominant_speaker = s.speaker_id
                    break
        if len(speakers) >= Defaults.MIN_SPEAKERS_FOR_SILENCE:
            silent_speakers = [s.speaker_id for s in speakers if s.percentage < silence]

    imbalance_reason: Optional[str] = None
    if dominant_speaker is not None:
        share = next(s.percentage for s in speakers if s.speaker_id == dominant_speaker)
        imbalance_reason = f"{dominant_speaker} dominates with {share * 100:.0f}% of talk time"
    elif silent_speakers:
        imbalance_reason = (
            f"{len(silent_speakers)} speaker(s) are silent or barely participating"
        )

    return ParticipationBalance(
        speakers=speakers,
        dominant_speaker=dominant_speaker,
        silent_speakers=silent_speakers,
        is_balanced=dominant_speaker is None and not silent_speakers,
        imbalance_reason=imbalance_reason,
    )


# ---------------------------------------------------------------------------
# Flags
# ---------------------------------------------------------------------------


def participation_flag_key(speaker: str, flagged_word: str) -> str:
    """Dedup key for real-time flags, e.g. ``"SPEAKER 1_dominance"``."""
    condition = "dominance" if flagged_word == FlagWords.PARTICIPATION_DOMINANCE else "silence"
    return f"{speaker}_{condition}"


def flagged_keys(flags: Iterable[FlaggedContent]) -> set:
    """Keys of participation conditions already flagged for a session."""
    return {
        participation_flag_key(f.speaker or "", f.flagged_word)
        for f in flags
        if f.flag_type == FlagType.PARTICIPATION
        and f.flagged_word in (FlagWords.PARTICIPATION_DOMINANCE, FlagWords.PARTICIPATION_SILENCE)
    }


def evaluate_segment_participation(
    segment: Segment,
    all_segments: List[Segment],
    session_id: str,
    config: Optional[ParticipationConfig] = None,
    already_flagged: AbstractSet[str] = frozenset(),
) -> List[FlaggedContent]:
    """Real-time check of one incoming segment's speaker against cumulative state.

    Only *segment* is flagged, and at most once per speaker and condition
    across the session (keys in *already_flagged* are skipped).

    Args:
        segment: The newly committed segment.
        all_segments: Full committed history, including *segment*.
        session_id: Owning session.
        config: Optional explicit thresholds.
        already_flagged: Keys from ``participation_flag_key`` already raised.
    """
    tallies = tally_speakers(all_segments)
    total = sum(t.talk_time for t in tallies.values())
    tally = tallies.get(segment.speaker)
    if total <= 0 or tally is None:
        return []

    share = tally.talk_time / total
    dominance, silence = resolve_thresholds(len(tallies), config)
    flags: List[FlaggedContent] = []

    checks = (
        (FlagWords.PARTICIPATION_DOMINANCE, Defaults.MIN_SPEAKERS_FOR_DOMINANCE, share > dominance),
        (FlagWords.PARTICIPATION_SILENCE, Defaults.MIN_SPEAKERS_FOR_SILENCE, share < silence),
    )
    for word, min_speakers, crossed in checks:
        if len(tallies) < min_speakers or not crossed:
            continue
        if participation_flag_key(segment.speaker, word) in already_flagged:
            continue
        flags.append(_segment_flag(segment, session_id, word))

    return flags


def session_participation_flags(
    segments: List[Segment],
    balance: ParticipationBalance,
    session_id: str,
) -> List[FlaggedContent]:
    """Finalization flags: one for the dominant speaker, one per silent speaker.

    Each flag is anchored at that speaker's first segment.
    """
    first_segment: Dict[str, Segment] = {}
    for segment in iter_valid_segments(segments, "participation"):
        first_segment.setdefault(segment.speaker, segment)

    flags: List[FlaggedContent] = []
    if balance.dominant_speaker and balance.dominant_speaker in first_segment:
        flags.append(
            _segment_flag(
                first_segment[balance.dominant_speaker],
                session_id,
                FlagWords.PARTICIPATION_DOMINANCE,
            )
        )
    for speaker in balance.silent_speakers:
        if speaker in first_segment:
            flags.append(
                _segment_flag(first_segment[speaker], session_id, FlagWords.PARTICIPATION_SILENCE)
            )
    return flags


def _segment_flag(segment: Segment, session_id: str, word: str) -> FlaggedContent:
    return FlaggedContent(
        session_id=session_id,
        flag_type=FlagType.PARTICIPATION,
        flagged_word=word,
        context=segment.text[: Defaults.SEGMENT_CONTEXT_CHARS],
        timestamp_ms=start_ms(segment),
        speaker=segment.speaker,
    )
