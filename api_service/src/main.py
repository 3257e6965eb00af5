"""
FastAPI backend for the Discussion Monitor.

Endpoints:
    GET   /health                                          Health check
    POST  /api/v1/sessions                                 Create a draft session
    GET   /api/v1/sessions                                 Caller's sessions, newest first
    GET   /api/v1/flagged-content                          Flags across the caller's sessions
    GET   /api/v1/sessions/{session_id}                    Session + flagged content
    PATCH /api/v1/sessions/{session_id}/segments           Cursor-guarded append
    PATCH /api/v1/sessions/{session_id}/complete           Finalize the session
    POST  /api/v1/sessions/{session_id}/topic-config       Update topic prompt/keywords
    POST  /api/v1/sessions/{session_id}/participation-config Update thresholds
    WS    /ws/monitor                                      Observer alert channel

Every HTTP endpoint resolves the caller through the identity port; a caller
with no identity gets 401.
"""

from fastapi import FastAPI, Request, WebSocket, status
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
import uvicorn

from services.alert_broadcaster import request_metadata
from shared_utils.config_loader import get_settings
from shared_utils.logging_utils import ContextualLogger, configure_logging
from shared_utils.constants import LogScope, APIEndpoints
from shared_utils.error_handler import (
    AppException, AuthenticationError, ValidationError, handle_error
)
from shared_utils.validation import InputValidator
from shared_utils.di_container import get_di_container


# ---------------------------------------------------------------------------
# Application bootstrap
# ---------------------------------------------------------------------------

settings = get_settings()
configure_logging(settings.environment, settings.log_level)
logger = ContextualLogger(scope=LogScope.API)

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=settings.app_description,
)

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

logger.info(
    "api_initialized",
    environment=settings.environment,
    store_backend=settings.store_backend,
)


def _require_identity(request: Request) -> str:
    """Resolve the caller's user id or raise AuthenticationError."""
    user_id = get_di_container().get_identity().resolve_identity(request_metadata(request))
    if not user_id:
        raise AuthenticationError()
    return user_id


def _error_response(e: Exception) -> JSONResponse:
    if isinstance(e, AppException):
        return JSONResponse(status_code=e.http_status, content=e.to_dict())
    error_response = handle_error(e, scope=LogScope.API)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response,
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get(APIEndpoints.HEALTH)
def health_check() -> dict:
    """Health check endpoint."""
    logger.debug("health_check_requested")
    return {
        "status": "healthy",
        "environment": settings.environment,
        "store_backend": settings.store_backend,
        "observers": get_di_container().get_broadcaster().connection_count,
    }


# ======================================================================
# Session endpoints
# ======================================================================

@app.post(APIEndpoints.SESSIONS)
@limiter.limit("60/minute")
def create_session(request: Request, body: dict) -> JSONResponse:
    """Create a draft session owned by the caller.

    Body JSON:
        language (str, optional): Allowed language for this session.
        topicPrompt (str, optional): What the discussion should be about.
        topicKeywords (list[str], optional): On-topic keywords.
        participationConfig (dict, optional): dominanceThreshold / silenceThreshold.
    """
    try:
        user_id = _require_identity(request)
        language = body.get("language")
        if language is not None:
            language = InputValidator.validate_non_empty_string(language, "language")
        topic_prompt = body.get("topicPrompt")
        if topic_prompt is not None and not isinstance(topic_prompt, str):
            raise ValidationError("topicPrompt must be a string")

        session = get_di_container().get_session_service().create_session(
            owner_id=user_id,
            language=language,
            topic_prompt=topic_prompt,
            topic_keywords=InputValidator.validate_keywords(body.get("topicKeywords")),
            participation_config=InputValidator.parse_participation_config(
                body.get("participationConfig")
            ),
        )
        return JSONResponse(status_code=status.HTTP_201_CREATED, content=session.to_wire())

    except AppException as e:
        logger.warning("create_session_error", error_code=e.error_code)
        return _error_response(e)
    except Exception as e:
        return _error_response(e)


@app.get(APIEndpoints.SESSIONS)
def list_sessions(request: Request) -> JSONResponse:
    """List the caller's sessions, newest first."""
    try:
        user_id = _require_identity(request)
        sessions = get_di_container().get_session_service().list_sessions(user_id)
        return JSONResponse(content=[s.to_wire() for s in sessions])

    except AppException as e:
        logger.warning("list_sessions_error", error_code=e.error_code)
        return _error_response(e)
    except Exception as e:
        return _error_response(e)


@app.get(APIEndpoints.FLAGGED_CONTENT)
def list_flagged_content(request: Request) -> JSONResponse:
    """List every flag across the caller's sessions, newest first."""
    try:
        user_id = _require_identity(request)
        flags = get_di_container().get_session_service().list_flagged_content(user_id)
        return JSONResponse(content=[f.to_wire() for f in flags])

    except AppException as e:
        logger.warning("list_flagged_content_error", error_code=e.error_code)
        return _error_response(e)
    except Exception as e:
        return _error_response(e)


@app.get(APIEndpoints.SESSION)
def get_session(session_id: str, request: Request) -> JSONResponse:
    """Return the session with its flagged content ordered by timestamp."""
    try:
        user_id = _require_identity(request)
        detail = get_di_container().get_session_service().get_session(
            session_id, requester_id=user_id
        )
        return JSONResponse(content=detail.to_wire())

    except AppException as e:
        logger.warning("get_session_error", session_id=session_id, error_code=e.error_code)
        return _error_response(e)
    except Exception as e:
        return _error_response(e)


@app.patch(APIEndpoints.SEGMENTS)
def append_segments(session_id: str, request: Request, body: dict) -> JSONResponse:
    """Append a batch of segments at ``fromIndex``.

    Body JSON:
        segments (list[dict]): Non-empty list of {speaker, text, startTime, endTime, language?}.
        fromIndex (int): The cursor value the client believes is current.

    Returns 409 with ``{expected, actual}`` in the error context when the
    stored cursor has moved.
    """
    try:
        user_id = _require_identity(request)
        segments = InputValidator.parse_segments(body.get("segments"))
        if "fromIndex" not in body:
            raise ValidationError("fromIndex is required")
        from_index = InputValidator.validate_non_negative_int(body["fromIndex"], "fromIndex")

        session = get_di_container().get_ingestion_service().append_segments(
            session_id, segments, from_index, requester_id=user_id
        )
        return JSONResponse(content=session.to_wire())

    except AppException as e:
        logger.warning("append_segments_error", session_id=session_id, error_code=e.error_code)
        return _error_response(e)
    except Exception as e:
        return _error_response(e)


@app.patch(APIEndpoints.COMPLETE)
@limiter.limit("30/minute")
def complete_session(session_id: str, request: Request, body: dict) -> JSONResponse:
    """Finalize the session.

    Body JSON:
        duration (float): Recording length in seconds.
        transcriptRef (str, optional): Provider job id of the final transcript.
    """
    try:
        user_id = _require_identity(request)
        if "duration" not in body:
            raise ValidationError("duration is required")
        duration = InputValidator.validate_duration(body["duration"])
        transcript_ref = body.get("transcriptRef")
        if transcript_ref is not None:
            transcript_ref = InputValidator.validate_non_empty_string(
                transcript_ref, "transcriptRef"
            )

        session = get_di_container().get_finalization_service().finalize_session(
            session_id, duration, transcript_ref=transcript_ref, requester_id=user_id
        )
        return JSONResponse(content=session.to_wire())

    except AppException as e:
        logger.warning("complete_session_error", session_id=session_id, error_code=e.error_code)
        return _error_response(e)
    except Exception as e:
        return _error_response(e)


@app.post(APIEndpoints.TOPIC_CONFIG)
def update_topic_config(session_id: str, request: Request, body: dict) -> JSONResponse:
    """Replace the session's topic prompt and keywords."""
    try:
        user_id = _require_identity(request)
        topic_prompt = body.get("topicPrompt")
        if topic_prompt is not None and not isinstance(topic_prompt, str):
            raise ValidationError("topicPrompt must be a string")

        session = get_di_container().get_session_service().update_topic_config(
            session_id,
            topic_prompt=topic_prompt,
            topic_keywords=InputValidator.validate_keywords(body.get("topicKeywords")),
            requester_id=user_id,
        )
        return JSONResponse(content=session.to_wire())

    except AppException as e:
        logger.warning("topic_config_error", session_id=session_id, error_code=e.error_code)
        return _error_response(e)
    except Exception as e:
        return _error_response(e)


@app.post(APIEndpoints.PARTICIPATION_CONFIG)
def update_participation_config(session_id: str, request: Request, body: dict) -> JSONResponse:
    """Replace the explicit participation thresholds.

    Body JSON:
        dominanceThreshold (float, optional): Fraction in [0, 1].
        silenceThreshold (float, optional): Fraction in [0, 1].

    An empty body clears both and restores the fair-share defaults.
    """
    try:
        user_id = _require_identity(request)
        config = InputValidator.parse_participation_config(body) if body else None
        if config is not None and config.dominance_threshold is None and config.silence_threshold is None:
            config = None

        session = get_di_container().get_session_service().update_participation_config(
            session_id, config, requester_id=user_id
        )
        return JSONResponse(content=session.to_wire())

    except AppException as e:
        logger.warning("participation_config_error", session_id=session_id, error_code=e.error_code)
        return _error_response(e)
    except Exception as e:
        return _error_response(e)


# ======================================================================
# Observer channel
# ======================================================================

@app.websocket(APIEndpoints.MONITOR_WS)
async def monitor(websocket: WebSocket) -> None:
    """Push alert events to an authenticated observer until it disconnects."""
    await get_di_container().get_broadcaster().serve(websocket)


if __name__ == "__main__":
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=settings.api_port,
        log_level="info"
    )
