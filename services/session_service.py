"""
SessionService - create, read and configure discussion sessions.

Depends only on ports. Reads go through the injected response cache;
every mutation path (here, in IngestionService and in FinalizationService)
invalidates the session's cache prefix.
"""

from __future__ import annotations

from typing import List, Optional

from domain.models import (
    OwnerFlaggedContent,
    ParticipationConfig,
    Session,
    SessionDetail,
    SessionSummary,
)
from ports.flag_store import FlagStorePort
from ports.identity import IdentityResolverPort
from ports.response_cache import ResponseCachePort, session_cache_key
from ports.session_store import SessionStorePort
from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import AccessDeniedError, SessionNotFoundError
from shared_utils.logging_utils import get_scoped_logger
from shared_utils.validation import InputValidator

logger = get_scoped_logger(LogScope.SESSION)


def load_owned_session(
    store: SessionStorePort, session_id: str, requester_id: Optional[str]
) -> Session:
    """Fetch a session and check ownership.

    A ``requester_id`` of None skips the ownership check (trusted internal
    callers such as the worker).

    Raises:
        SessionNotFoundError: Unknown session.
        AccessDeniedError: Requester does not own the session.
    """
    session = store.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    if requester_id is not None and session.owner_id != requester_id:
        logger.warning(
            "session_access_denied", session_id=session_id, requester_id=requester_id
        )
        raise AccessDeniedError(session_id, requester_id)
    return session


def owner_display_name(identity: Optional[IdentityResolverPort], owner_id: str) -> str:
    if identity is None:
        return Defaults.UNKNOWN_DISPLAY_NAME
    return identity.get_display_name(owner_id) or Defaults.UNKNOWN_DISPLAY_NAME


class SessionService:
    """Session lifecycle entry points other than append and finalize."""

    def __init__(
        self,
        *,
        session_store: SessionStorePort,
        flag_store: FlagStorePort,
        cache: Optional[ResponseCachePort] = None,
        default_language: str = Defaults.ALLOWED_LANGUAGE,
    ) -> None:
        self._sessions = session_store
        self._flags = flag_store
        self._cache = cache
        self._default_language = default_language

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_session(
        self,
        owner_id: str,
        language: Optional[str] = None,
        topic_prompt: Optional[str] = None,
        topic_keywords: Optional[List[str]] = None,
        participation_config: Optional[ParticipationConfig] = None,
    ) -> Session:
        """Create a draft session with cursor 0."""
        owner_id = InputValidator.validate_non_empty_string(owner_id, "ownerId")
        session = Session(
            owner_id=owner_id,
            language=(language or self._default_language).strip() or self._default_language,
            topic_prompt=(topic_prompt or "").strip() or None,
            topic_keywords=InputValidator.validate_keywords(topic_keywords),
            participation_config=participation_config,
        )
        self._sessions.create_session(session)
        logger.info(
            "session_created",
            session_id=session.session_id,
            owner_id=owner_id,
            language=session.language,
        )
        return session

    def get_session(self, session_id: str, requester_id: Optional[str] = None) -> SessionDetail:
        """Return the session and its flags ordered by timestamp."""
        key = session_cache_key(session_id)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                if requester_id is not None and cached.session.owner_id != requester_id:
                    raise AccessDeniedError(session_id, requester_id)
                return cached

        generation = self._cache.generation() if self._cache is not None else None
        session = load_owned_session(self._sessions, session_id, requester_id)
        detail = SessionDetail(
            session=session, flagged_content=self._flags.list_flags(session_id)
        )
        if self._cache is not None and not self._cache.set(key, detail, generation=generation):
            logger.debug("session_cache_fill_skipped", session_id=session_id)
        return detail

    def list_sessions(self, owner_id: str) -> List[Session]:
        """The owner's sessions, newest first."""
        owner_id = InputValidator.validate_non_empty_string(owner_id, "ownerId")
        sessions = self._sessions.list_sessions(owner_id)
        logger.info("sessions_listed", owner_id=owner_id, count=len(sessions))
        return sessions

    def list_flagged_content(self, owner_id: str) -> List[OwnerFlaggedContent]:
        """Every flag across the owner's sessions, newest first, each with a
        summary of its session."""
        owner_id = InputValidator.validate_non_empty_string(owner_id, "ownerId")
        summaries = {
            s.session_id: SessionSummary.of(s) for s in self._sessions.list_sessions(owner_id)
        }
        flags = self._flags.list_flags_for_sessions(list(summaries))
        logger.info("flagged_content_listed", owner_id=owner_id, count=len(flags))
        return [
            OwnerFlaggedContent(**flag.model_dump(), session=summaries[flag.session_id])
            for flag in flags
        ]

    def update_topic_config(
        self,
        session_id: str,
        topic_prompt: Optional[str] = None,
        topic_keywords: Optional[List[str]] = None,
        requester_id: Optional[str] = None,
    ) -> Session:
        """Replace the topic prompt and keywords used at finalization."""
        load_owned_session(self._sessions, session_id, requester_id)
        updated = self._sessions.update_topic_config(
            session_id,
            (topic_prompt or "").strip() or None,
            InputValidator.validate_keywords(topic_keywords),
        )
        self._invalidate(session_id)
        logger.info("topic_config_updated", session_id=session_id)
        return updated

    def update_participation_config(
        self,
        session_id: str,
        config: Optional[ParticipationConfig],
        requester_id: Optional[str] = None,
    ) -> Session:
        """Replace the explicit participation thresholds (None restores the defaults)."""
        load_owned_session(self._sessions, session_id, requester_id)
        updated = self._sessions.update_participation_config(session_id, config)
        self._invalidate(session_id)
        logger.info(
            "participation_config_updated",
            session_id=session_id,
            dominance_threshold=config.dominance_threshold if config else None,
            silence_threshold=config.silence_threshold if config else None,
        )
        return updated

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _invalidate(self, session_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate_prefix(session_cache_key(session_id))
