"""
HTTP adapter for the speech-to-text provider's final transcript.

Implements TranscriptProviderPort with httpx. Every failure mode (network,
timeout, non-200, malformed JSON) surfaces as ExternalProviderUnavailableError
so the finalizer can fall back to the accumulated segments.
"""

from __future__ import annotations

from typing import List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from domain.models import TranscriptToken
from ports.transcript_provider import TranscriptProviderPort  # noqa: F401 (runtime_checkable)
from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import ExternalProviderUnavailableError
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.ADAPTER)

_TRANSCRIPT_PATH = "/v1/transcriptions/{ref}/transcript"


class HttpTranscriptProviderAdapter:
    """Fetches ``{"tokens": [...]}`` from ``<base_url>/v1/transcriptions/<ref>/transcript``."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = Defaults.TRANSCRIPT_FETCH_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_seconds
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def fetch_final_transcript(self, transcript_ref: str) -> List[TranscriptToken]:
        if not self._base_url:
            raise ExternalProviderUnavailableError(
                "Transcript provider is not configured", transcript_ref=transcript_ref
            )

        url = f"{self._base_url}{_TRANSCRIPT_PATH.format(ref=transcript_ref)}"
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

        try:
            resp = self._client.get(url, headers=headers, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            logger.warning("transcript_fetch_timeout", transcript_ref=transcript_ref)
            raise ExternalProviderUnavailableError(
                f"Transcript fetch timed out after {self._timeout}s",
                transcript_ref=transcript_ref,
            ) from exc
        except httpx.RequestError as exc:
            logger.warning(
                "transcript_fetch_failed", transcript_ref=transcript_ref, error=str(exc)
            )
            raise ExternalProviderUnavailableError(
                f"Transcript fetch failed: {exc}", transcript_ref=transcript_ref
            ) from exc

        if resp.status_code != 200:
            logger.warning(
                "transcript_fetch_bad_status",
                transcript_ref=transcript_ref,
                status=resp.status_code,
            )
            raise ExternalProviderUnavailableError(
                f"Transcript provider returned {resp.status_code}",
                transcript_ref=transcript_ref,
            )

        try:
            payload = resp.json()
            raw_tokens = payload.get("tokens", []) if isinstance(payload, dict) else None
            if not isinstance(raw_tokens, list):
                raise ValueError("tokens must be a list")
            tokens = [TranscriptToken.model_validate(t) for t in raw_tokens]
        except (ValueError, PydanticValidationError) as exc:
            logger.warning(
                "transcript_payload_invalid", transcript_ref=transcript_ref, error=str(exc)
            )
            raise ExternalProviderUnavailableError(
                f"Transcript payload unreadable: {exc}", transcript_ref=transcript_ref
            ) from exc

        logger.info(
            "transcript_fetched", transcript_ref=transcript_ref, token_count=len(tokens)
        )
        return tokens
