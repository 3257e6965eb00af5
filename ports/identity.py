"""
Port interface for caller identity resolution.

Implementations: StaticTokenIdentityAdapter (adapters/)
"""

from __future__ import annotations

from typing import Mapping, Optional, Protocol, runtime_checkable


@runtime_checkable
class IdentityResolverPort(Protocol):
    """Resolves request metadata to a user and looks up display names."""

    def resolve_identity(self, request_metadata: Mapping[str, str]) -> Optional[str]:
        """Return the caller's user id, or None when unauthenticated.

        Args:
            request_metadata: Lower-cased header names plus query parameters.
        """
        ...

    def get_display_name(self, user_id: str) -> Optional[str]:
        """Human-readable name for alerts (e.g. a group or device name)."""
        ...
