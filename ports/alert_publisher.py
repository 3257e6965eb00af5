"""
Port interface for alert fan-out.

Implementations: AlertBroadcaster (services/)
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from domain.models import AlertEvent


@runtime_checkable
class AlertPublisherPort(Protocol):
    """Best-effort notification of observers."""

    def publish(self, event: AlertEvent) -> int:
        """Fan *event* out to connected observers without blocking.

        Never raises for delivery problems.

        Returns:
            Number of observers the event was queued for.
        """
        ...
