"""
HTTP adapter for AppendTransportPort.

Calls ``PATCH /api/v1/sessions/{id}/segments`` with httpx and maps the
structured error envelope back onto the application exceptions so that
SegmentAppendClient can react to cursor conflicts.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from domain.models import Segment, Session
from ports.append_transport import AppendTransportPort  # noqa: F401 (runtime_checkable)
from shared_utils.constants import APIEndpoints, ErrorCode, LogScope
from shared_utils.error_handler import (
    AppException,
    CursorConflictError,
    ExternalServiceError,
    SessionClosedError,
)
from shared_utils.logging_utils import get_scoped_logger


logger = get_scoped_logger(LogScope.CLIENT)


class HttpAppendTransportAdapter:
    """Posts segment batches to the ingestion API on behalf of a recorder."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def append_segments(
        self, session_id: str, segments: List[Segment], from_index: int
    ) -> Session:
        url = f"{self._base_url}{APIEndpoints.SEGMENTS.replace('{session_id}', session_id)}"
        body = {
            "segments": [s.to_wire() for s in segments],
            "fromIndex": from_index,
        }
        try:
            resp = self._client.patch(url, json=body, headers=self._headers)
        except httpx.RequestError as exc:
            logger.warning("append_request_failed", session_id=session_id, error=str(exc))
            raise ExternalServiceError("Ingestion API", str(exc)) from exc

        if resp.status_code == 200:
            return Session.model_validate(resp.json())

        error = _error_body(resp)
        code = error.get("code")
        context = error.get("context") or {}
        if code == ErrorCode.CURSOR_CONFLICT.value and "actual" in context:
            raise CursorConflictError(
                expected=int(context.get("expected", from_index)),
                actual=int(context["actual"]),
                session_id=session_id,
            )
        if resp.status_code == 409 and code == ErrorCode.SESSION_CLOSED.value:
            raise SessionClosedError(session_id, str(context.get("status", "complete")))

        logger.warning(
            "append_api_error", session_id=session_id, status=resp.status_code, error=error
        )
        raise AppException(
            error_code=code or ErrorCode.EXTERNAL_SERVICE_ERROR.value,
            message=error.get("message", f"Append failed with HTTP {resp.status_code}"),
            context=context,
            http_status=resp.status_code,
        )


def _error_body(resp: httpx.Response) -> Dict[str, Any]:
    try:
        payload = resp.json()
    except ValueError:
        return {}
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return payload["error"]
    return {}
