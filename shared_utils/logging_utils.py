"""
Structured logging for the Discussion Monitor.

structlog is configured per process by configure_logging(): JSON lines in
staging and production, a console renderer in development. Loggers are
bound to a LogScope, and session_context() attaches session-level fields
to every event emitted inside it, whichever module logs the event.
"""

import contextlib
import functools
import logging
import time
from typing import Any, Callable, Iterator

import structlog

from shared_utils.constants import Defaults, LogScope


_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


def configure_logging(environment: str = "production", level: str = Defaults.LOG_LEVEL) -> None:
    """(Re)configure structlog for this process.

    Loggers returned by get_scoped_logger() resolve the configuration on
    every call, so module-level loggers pick up a later reconfiguration.

    Args:
        environment: "development" renders for a terminal; anything else emits JSON.
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    renderer = (
        structlog.dev.ConsoleRenderer()
        if environment == "development"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[*_SHARED_PROCESSORS, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


configure_logging()


def get_scoped_logger(scope: str, **context: Any) -> structlog.BoundLogger:
    """Get a logger bound to *scope* and any extra *context*.

    Args:
        scope: LogScope value (ingestion, finalization, broadcast, analyzer, ...)

    Returns:
        Lazy structured logger; every event carries ``scope``.
    """
    return structlog.get_logger(scope=scope, **context)


@contextlib.contextmanager
def session_context(session_id: str, **fields: Any) -> Iterator[None]:
    """Attach ``session_id`` and *fields* to every event logged in the block.

    Explicit keyword arguments on a log call win over the bound values.
    """
    with structlog.contextvars.bound_contextvars(session_id=session_id, **fields):
        yield


def log_execution(scope: str = LogScope.API):
    """Decorator logging start, outcome and wall time of a job function.

    Example:
        @log_execution(scope=LogScope.WORKER)
        def main() -> int:
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            logger = get_scoped_logger(scope)
            started = time.perf_counter()
            logger.info(f"{func.__name__}_start", func_name=func.__name__)

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{func.__name__}_failed",
                    func_name=func.__name__,
                    elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
                raise

            logger.info(
                f"{func.__name__}_success",
                func_name=func.__name__,
                elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
                result=result if isinstance(result, (int, str, bool)) else type(result).__name__,
            )
            return result

        return wrapper
    return decorator


class ContextualLogger:
    """Scope-bound logger held at module level by analyzers and adapters."""

    def __init__(self, scope: str, **context: Any):
        self.scope = scope
        self.logger = get_scoped_logger(scope, **context)

    def info(self, event_name: str, **kwargs):
        self.logger.info(event_name, **kwargs)

    def debug(self, event_name: str, **kwargs):
        self.logger.debug(event_name, **kwargs)

    def warning(self, event_name: str, **kwargs):
        self.logger.warning(event_name, **kwargs)

    def error(self, event_name: str, **kwargs):
        self.logger.error(event_name, **kwargs)

    def critical(self, event_name: str, **kwargs):
        self.logger.critical(event_name, **kwargs)
