"""
Tests for shared_utils.logging_utils.

Covers configure_logging(), get_scoped_logger(), session_context(), the
log_execution() decorator and ContextualLogger.
"""

from unittest.mock import MagicMock, patch

import pytest
import structlog

from shared_utils.constants import LogScope
from shared_utils.logging_utils import (
    ContextualLogger,
    configure_logging,
    get_scoped_logger,
    log_execution,
    session_context,
)


class TestGetScopedLogger:
    def test_returns_bound_logger(self) -> None:
        logger = get_scoped_logger(LogScope.INGESTION)
        assert callable(getattr(logger, "info", None))
        assert callable(getattr(logger, "error", None))

    def test_every_scope(self) -> None:
        for scope in (LogScope.API, LogScope.ANALYZER, LogScope.BROADCAST, LogScope.WORKER):
            get_scoped_logger(scope).info("scope_check")


class TestLogExecution:
    def test_passes_through_return_value(self) -> None:
        @log_execution(scope=LogScope.WORKER)
        def add(a: int, b: int) -> int:
            return a + b

        assert add(2, 3) == 5

    def test_propagates_exception(self) -> None:
        @log_execution(scope=LogScope.WORKER)
        def boom() -> None:
            raise ValueError("oops")

        with pytest.raises(ValueError, match="oops"):
            boom()

    def test_preserves_function_name(self) -> None:
        @log_execution(scope=LogScope.WORKER)
        def my_func() -> None:
            pass

        assert my_func.__name__ == "my_func"

    def test_logs_start_and_outcome(self) -> None:
        mock_logger = MagicMock()
        with patch("shared_utils.logging_utils.get_scoped_logger", return_value=mock_logger):
            @log_execution(scope=LogScope.WORKER)
            def main() -> int:
                return 0

            main()

        events = [c[0][0] for c in mock_logger.info.call_args_list]
        assert events == ["main_start", "main_success"]


class TestContextualLogger:
    def test_all_levels_callable(self) -> None:
        cl = ContextualLogger(scope=LogScope.ADAPTER)
        for method_name in ("info", "debug", "warning", "error", "critical"):
            assert callable(getattr(cl, method_name))

    def test_delegates_to_bound_logger(self) -> None:
        cl = ContextualLogger(scope=LogScope.ANALYZER)
        cl.logger = MagicMock()
        cl.warning("segment_skipped", index=2)
        cl.logger.warning.assert_called_once_with("segment_skipped", index=2)

    def test_scope_stored(self) -> None:
        assert ContextualLogger(scope=LogScope.WORKER).scope == LogScope.WORKER


class TestSessionContext:
    def test_binds_and_unbinds(self) -> None:
        with session_context("s-1", from_index=4):
            bound = structlog.contextvars.get_contextvars()
            assert bound["session_id"] == "s-1"
            assert bound["from_index"] == 4
        assert "session_id" not in structlog.contextvars.get_contextvars()

    def test_unbinds_on_error(self) -> None:
        with pytest.raises(RuntimeError):
            with session_context("s-2"):
                raise RuntimeError("boom")
        assert "session_id" not in structlog.contextvars.get_contextvars()


class TestConfigureLogging:
    def test_level_filters_debug(self, capsys) -> None:
        try:
            configure_logging("production", "WARNING")
            logger = get_scoped_logger(LogScope.API)
            logger.info("hidden_event")
            logger.warning("shown_event")
            out = capsys.readouterr().out
        finally:
            configure_logging()
        assert "hidden_event" not in out
        assert '"event": "shown_event"' in out
        assert '"scope": "api"' in out

    def test_session_fields_in_output(self, capsys) -> None:
        try:
            configure_logging("production", "INFO")
            with session_context("s-9"):
                get_scoped_logger(LogScope.ANALYZER).info("analyzer_segment_skipped")
            out = capsys.readouterr().out
        finally:
            configure_logging()
        assert '"session_id": "s-9"' in out
