"""
Worker entrypoint for offline session finalization.

Run as a one-shot container task with environment overrides:
    SESSION_ID      the session to finalize
    DURATION        recording length in seconds
    TRANSCRIPT_REF  optional provider job id of the final transcript

The worker:
    1. Builds the FinalizationService from settings.
    2. Finalizes the session (reconciling against the provider when a
       transcript ref is given).
    3. Exits 0 on success, 1 on failure.

All logging is JSON (structlog).
"""

from __future__ import annotations

import os
import sys

from shared_utils.constants import LogScope
from shared_utils.config_loader import get_settings
from shared_utils.logging_utils import configure_logging, get_scoped_logger, log_execution
from shared_utils.di_container import get_di_container

logger = get_scoped_logger(LogScope.WORKER)


@log_execution(scope=LogScope.WORKER)
def main() -> int:
    """Worker main: parse env vars, build deps, run finalization."""
    session_id = os.environ.get("SESSION_ID", "")
    raw_duration = os.environ.get("DURATION", "")
    transcript_ref = os.environ.get("TRANSCRIPT_REF", "") or None

    if not session_id or not raw_duration:
        logger.error(
            "worker_missing_env",
            session_id=session_id,
            duration=raw_duration,
        )
        print("ERROR: SESSION_ID and DURATION env vars are required", file=sys.stderr)
        return 1

    try:
        duration = float(raw_duration)
    except ValueError:
        logger.error("worker_invalid_duration", session_id=session_id, duration=raw_duration)
        print(f"ERROR: DURATION must be a number, got {raw_duration!r}", file=sys.stderr)
        return 1

    logger.info(
        "worker_started",
        session_id=session_id,
        duration=duration,
        transcript_ref=transcript_ref,
    )

    container = get_di_container()
    try:
        finalizer = container.get_finalization_service()
        session = finalizer.finalize_session(
            session_id, duration, transcript_ref=transcript_ref
        )
        logger.info(
            "worker_completed",
            session_id=session_id,
            status=session.status.value,
            segment_count=session.cursor,
            topic_adherence_score=session.topic_adherence_score,
        )
        return 0

    except Exception as exc:
        logger.error(
            "worker_failed",
            session_id=session_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return 1

    finally:
        container.reset()


if __name__ == "__main__":
    settings = get_settings()
    configure_logging(settings.environment, settings.log_level)
    sys.exit(main())
