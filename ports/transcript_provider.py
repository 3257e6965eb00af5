"""
Port interface for the upstream speech-to-text provider.

Implementations: HttpTranscriptProviderAdapter (adapters/)
"""

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from domain.models import TranscriptToken


@runtime_checkable
class TranscriptProviderPort(Protocol):
    """Source of the authoritative final transcript."""

    def fetch_final_transcript(self, transcript_ref: str) -> List[TranscriptToken]:
        """Fetch the final token stream for a provider job.

        Args:
            transcript_ref: Provider-side transcription identifier.

        Returns:
            Tokens in stream order.

        Raises:
            ExternalProviderUnavailableError: On network failure, timeout,
                non-success status or an unreadable payload.
        """
        ...
