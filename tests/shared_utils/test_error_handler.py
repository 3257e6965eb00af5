"""
Tests for shared_utils.error_handler.

Covers every exception subclass, to_dict() serialisation, HTTP status codes,
log_exception(), and handle_error().
"""

from unittest.mock import MagicMock

import pytest

from shared_utils.constants import ErrorCode
from shared_utils.error_handler import (
    AccessDeniedError,
    AnalyzerInputInvalidError,
    AppException,
    AuthenticationError,
    ConfigurationError,
    CursorConflictError,
    ExternalProviderUnavailableError,
    ExternalServiceError,
    SessionClosedError,
    SessionNotFoundError,
    ValidationError,
    handle_error,
    log_exception,
)


# ---------------------------------------------------------------------------
# AppException base
# ---------------------------------------------------------------------------


class TestAppException:
    def test_defaults(self) -> None:
        exc = AppException(error_code="TEST", message="boom")
        assert exc.error_code == "TEST"
        assert exc.message == "boom"
        assert exc.http_status == 500
        assert exc.context == {}
        assert str(exc) == "boom"

    def test_to_dict_structure(self) -> None:
        exc = AppException("CODE", "msg", context={"a": 1})
        assert exc.to_dict() == {"error": {"code": "CODE", "message": "msg", "context": {"a": 1}}}


# ---------------------------------------------------------------------------
# Subclasses
# ---------------------------------------------------------------------------


class TestSubclasses:
    @pytest.mark.parametrize(
        "exc, code, status",
        [
            (ValidationError("bad"), ErrorCode.INVALID_INPUT, 400),
            (ConfigurationError("bad"), ErrorCode.INVALID_CONFIG, 500),
            (ExternalServiceError("DynamoDB", "down"), ErrorCode.EXTERNAL_SERVICE_ERROR, 503),
            (CursorConflictError(0, 2), ErrorCode.CURSOR_CONFLICT, 409),
            (SessionClosedError("s", "complete"), ErrorCode.SESSION_CLOSED, 409),
            (SessionNotFoundError("s"), ErrorCode.SESSION_NOT_FOUND, 404),
            (AccessDeniedError("s"), ErrorCode.ACCESS_DENIED, 403),
            (AuthenticationError(), ErrorCode.UNAUTHENTICATED, 401),
            (ExternalProviderUnavailableError("down"), ErrorCode.PROVIDER_UNAVAILABLE, 503),
            (AnalyzerInputInvalidError("bad"), ErrorCode.ANALYZER_INPUT_INVALID, 400),
        ],
    )
    def test_code_and_status(self, exc, code, status) -> None:
        assert isinstance(exc, AppException)
        assert exc.error_code == code.value
        assert exc.http_status == status


class TestCursorConflictError:
    def test_carries_expected_and_actual(self) -> None:
        exc = CursorConflictError(expected=3, actual=5, session_id="s-1")
        assert exc.expected == 3
        assert exc.actual == 5
        assert exc.message == "Index mismatch: expected 3, got 5"
        assert exc.context == {"expected": 3, "actual": 5, "session_id": "s-1"}

    def test_session_id_optional(self) -> None:
        assert "session_id" not in CursorConflictError(0, 1).context


class TestOtherContexts:
    def test_external_service_includes_service(self) -> None:
        exc = ExternalServiceError("DynamoDB", "throttled", context={"table": "t"})
        assert exc.message == "DynamoDB unavailable: throttled"
        assert exc.context == {"table": "t", "service": "DynamoDB"}

    def test_session_closed_reports_status(self) -> None:
        exc = SessionClosedError("s-1", "reconciling")
        assert exc.context == {"session_id": "s-1", "status": "reconciling"}

    def test_access_denied_user_optional(self) -> None:
        assert AccessDeniedError("s-1", "bob").context["user_id"] == "bob"
        assert "user_id" not in AccessDeniedError("s-1").context

    def test_provider_ref_in_context(self) -> None:
        exc = ExternalProviderUnavailableError("down", transcript_ref="job-1")
        assert exc.context == {"transcript_ref": "job-1"}


# ---------------------------------------------------------------------------
# log_exception
# ---------------------------------------------------------------------------


class TestLogException:
    def test_app_exception_uses_error_level(self) -> None:
        mock_logger = MagicMock()
        log_exception(ValidationError("oops"), logger=mock_logger)
        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args[1]["error_code"] == ErrorCode.INVALID_INPUT.value

    def test_generic_exception_uses_error_level(self) -> None:
        mock_logger = MagicMock()
        log_exception(RuntimeError("boom"), logger=mock_logger)
        assert mock_logger.error.call_args[1]["error_type"] == "RuntimeError"

    def test_default_logger_does_not_raise(self) -> None:
        log_exception(ValidationError("x"))
        log_exception(RuntimeError("y"))


# ---------------------------------------------------------------------------
# handle_error
# ---------------------------------------------------------------------------


class TestHandleError:
    def test_app_exception_returns_to_dict(self) -> None:
        result = handle_error(CursorConflictError(1, 4))
        assert result["error"]["code"] == ErrorCode.CURSOR_CONFLICT.value
        assert result["error"]["context"]["actual"] == 4

    def test_generic_exception_returns_structured_dict(self) -> None:
        err = handle_error(RuntimeError("unexpected"))["error"]
        assert err["code"] == ErrorCode.EXTERNAL_SERVICE_ERROR.value
        assert "unexpected" in err["message"]
        assert err["context"]["error_type"] == "RuntimeError"

    def test_custom_default_error_code(self) -> None:
        result = handle_error(ValueError("bad"), default_error_code=ErrorCode.INVALID_INPUT.value)
        assert result["error"]["code"] == ErrorCode.INVALID_INPUT.value
