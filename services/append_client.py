"""
SegmentAppendClient - client side of the cursor protocol.

Segments finalized locally are buffered and submitted as the unsent tail
``buffer[acked:]`` against the last acknowledged index. When the server
answers with a cursor conflict, the client adopts the server's cursor,
re-slices the tail from it and retries with exponential backoff. Because
the tail is always re-derived from the authoritative cursor, a resubmitted
batch never duplicates segments already stored.

    IDLE -> SAVING -> SAVED
                   -> ERROR   (retries exhausted or session closed; terminal)
"""

from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from domain.models import Segment
from ports.append_transport import AppendTransportPort
from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import (
    AppException,
    CursorConflictError,
    SessionClosedError,
)
from shared_utils.logging_utils import get_scoped_logger

logger = get_scoped_logger(LogScope.CLIENT)


class SaveStatus(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``min(base_delay * 2**attempt, max_delay)``.

    ``jitter`` is the fraction of each delay that is randomised (0 disables it).
    """

    max_attempts: int = Defaults.APPEND_MAX_ATTEMPTS
    base_delay: float = Defaults.APPEND_BASE_DELAY_SECONDS
    max_delay: float = Defaults.APPEND_MAX_DELAY_SECONDS
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be in [0, 1]")

    def delay_for(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if self.jitter:
            delay -= delay * self.jitter * rand()
        return delay


class SegmentAppendClient:
    """Buffers segments for one session and flushes the unsent tail."""

    def __init__(
        self,
        transport: AppendTransportPort,
        session_id: str,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._transport = transport
        self._session_id = session_id
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._buffer: List[Segment] = []
        self._acked = 0
        self._status = SaveStatus.IDLE
        self._lock = threading.Lock()

    @property
    def status(self) -> SaveStatus:
        return self._status

    @property
    def acknowledged_index(self) -> int:
        return self._acked

    @property
    def pending(self) -> List[Segment]:
        return self._buffer[self._acked:]

    def add(self, *segments: Segment) -> None:
        """Buffer locally finalized segments; nothing is sent until ``flush``."""
        with self._lock:
            self._buffer.extend(segments)

    def flush(self) -> SaveStatus:
        """Submit the unsent tail, retrying conflicts and transport errors.

        Returns:
            SAVED when the server holds every buffered segment, ERROR when
            the session is closed or retries are exhausted.
        """
        with self._lock:
            if self._status == SaveStatus.ERROR:
                return self._status

            for attempt in range(self._policy.max_attempts):
                from_index = self._acked
                tail = self._buffer[from_index:]
                if not tail:
                    self._status = SaveStatus.SAVED
                    return self._status

                self._status = SaveStatus.SAVING
                try:
                    session = self._transport.append_segments(
                        self._session_id, list(tail), from_index
                    )
                except CursorConflictError as exc:
                    logger.warning(
                        "append_cursor_resync",
                        session_id=self._session_id,
                        attempt=attempt + 1,
                        expected=from_index,
                        actual=exc.actual,
                    )
                    self._acked = max(0, exc.actual)
                except SessionClosedError as exc:
                    logger.error(
                        "append_session_closed",
                        session_id=self._session_id,
                        error=exc.message,
                    )
                    self._status = SaveStatus.ERROR
                    return self._status
                except AppException as exc:
                    logger.warning(
                        "append_attempt_failed",
                        session_id=self._session_id,
                        attempt=attempt + 1,
                        error_code=exc.error_code,
                        error=exc.message,
                    )
                else:
                    self._acked = session.cursor
                    logger.info(
                        "append_acknowledged",
                        session_id=self._session_id,
                        from_index=from_index,
                        cursor=session.cursor,
                    )
                    if self._acked >= len(self._buffer):
                        self._status = SaveStatus.SAVED
                        return self._status
                    continue

                if attempt + 1 < self._policy.max_attempts:
                    self._sleep(self._policy.delay_for(attempt))

            if not self._buffer[self._acked:]:
                self._status = SaveStatus.SAVED
                return self._status

            logger.error(
                "append_retries_exhausted",
                session_id=self._session_id,
                attempts=self._policy.max_attempts,
                acknowledged=self._acked,
                buffered=len(self._buffer),
            )
            self._status = SaveStatus.ERROR
            return self._status
