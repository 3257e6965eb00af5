"""
Port interface for the client-side append call.

Implementations: HttpAppendTransportAdapter (adapters/). Tests and in-process
callers can pass IngestionService directly, which satisfies the same shape.
"""

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from domain.models import Segment, Session


@runtime_checkable
class AppendTransportPort(Protocol):
    """Submits a batch of segments against an expected cursor."""

    def append_segments(
        self, session_id: str, segments: List[Segment], from_index: int
    ) -> Session:
        """Append *segments* at *from_index*.

        Raises:
            CursorConflictError: The server's cursor differs; ``actual`` is
                the authoritative cursor to resync to.
            SessionClosedError: The session no longer accepts segments.
        """
        ...
