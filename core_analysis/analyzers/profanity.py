"""
Profanity analyzer.

Whole-token denylist matching: a token is flagged only when its normalized
form equals a denylisted word, so "class" or "assess" never match.

The base denylist is the wordlist shipped with the better-profanity
distribution, plus a handful of milder words it leaves out. Wordlist
entries spelled with symbols ("a$$", "b!tch") are skipped; tokens are
normalized by stripping non-word characters, so such an entry would
collapse onto an ordinary word.
"""

import math
from importlib import resources
from typing import FrozenSet, Iterable, List

from domain.models import FlaggedContent, FlagType, Segment
from core_analysis.analyzers.text import iter_valid_segments, normalize_token, tokenize
from shared_utils.constants import Defaults, LogScope
from shared_utils.logging_utils import ContextualLogger


logger = ContextualLogger(scope=LogScope.ANALYZER)

WORDLIST_PACKAGE = "better_profanity"
WORDLIST_FILE = "profanity_wordlist.txt"

# Always denylisted, whatever the packaged wordlist holds
ADDITIONAL_WORDS: FrozenSet[str] = frozenset({
    "crap", "damn", "hell", "bastard", "bitch", "shit", "fuck",
    "asshole", "dick", "pussy", "cock", "piss", "whore", "slut",
})


def load_wordlist(package: str = WORDLIST_PACKAGE, filename: str = WORDLIST_FILE) -> FrozenSet[str]:
    """Read a newline-separated wordlist shipped inside *package*.

    Blank lines, multi-word phrases and entries that do not survive token
    normalization unchanged are dropped.
    """
    text = resources.files(package).joinpath(filename).read_text(encoding="utf-8")
    words = set()
    skipped = 0
    for line in text.splitlines():
        entry = line.strip().lower()
        if not entry:
            continue
        if normalize_token(entry) != entry:
            skipped += 1
            continue
        words.add(entry)

    logger.debug(
        "profanity_wordlist_loaded",
        package=package,
        word_count=len(words),
        skipped_entries=skipped,
    )
    return frozenset(words)


BASE_DENYLIST: FrozenSet[str] = load_wordlist() | ADDITIONAL_WORDS


def build_denylist(extra_words: Iterable[str] = ()) -> FrozenSet[str]:
    """Base list plus deployment-specific additions (normalized)."""
    extras = {normalize_token(w) for w in extra_words}
    extras.discard("")
    return BASE_DENYLIST | extras


def detect_profanity(
    segments: Iterable[Segment],
    session_id: str,
    extra_words: Iterable[str] = (),
) -> List[FlaggedContent]:
    """Flag every denylisted token in *segments*.

    Args:
        segments: Segments to scan.
        session_id: Owning session, copied onto each flag.
        extra_words: Deployment additions to the base denylist.

    Returns:
        One FlaggedContent per matching token, in segment then token order.
        ``timestamp_ms`` is interpolated linearly across the segment by token
        index; ``context`` is up to three tokens either side.
    """
    denylist = build_denylist(extra_words)
    flags: List[FlaggedContent] = []

    for segment in iter_valid_segments(segments, "profanity"):
        tokens = tokenize(segment.text)
        if not tokens:
            continue

        segment_start_ms = segment.start_time * 1000
        ms_per_token = (segment.duration * 1000) / len(tokens)

        for index, token in enumerate(tokens):
            word = normalize_token(token)
            if word not in denylist:
                continue

            window_start = max(0, index - Defaults.CONTEXT_TOKENS_BEFORE)
            window_end = min(len(tokens), index + Defaults.CONTEXT_TOKENS_AFTER + 1)
            flags.append(
                FlaggedContent(
                    session_id=session_id,
                    flag_type=FlagType.PROFANITY,
                    flagged_word=word,
                    context=" ".join(tokens[window_start:window_end]),
                    timestamp_ms=math.floor(segment_start_ms + index * ms_per_token),
                    speaker=segment.speaker,
                )
            )

    return flags
