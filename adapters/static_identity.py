"""
Static-token identity adapter.

Implements IdentityResolverPort from two configured maps: bearer token ->
user id, and user id -> display name. Tokens are read from the
``authorization`` header (``Bearer <token>``) or a ``token`` query parameter.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional

from ports.identity import IdentityResolverPort  # noqa: F401 (runtime_checkable)


class StaticTokenIdentityAdapter:
    """Resolves identities from fixed token and display-name tables."""

    def __init__(
        self,
        tokens: Optional[Dict[str, str]] = None,
        display_names: Optional[Dict[str, str]] = None,
    ) -> None:
        self._tokens = dict(tokens or {})
        self._display_names = dict(display_names or {})

    def resolve_identity(self, request_metadata: Mapping[str, str]) -> Optional[str]:
        token = extract_token(request_metadata)
        if not token:
            return None
        return self._tokens.get(token)

    def get_display_name(self, user_id: str) -> Optional[str]:
        return self._display_names.get(user_id)


def extract_token(request_metadata: Mapping[str, str]) -> Optional[str]:
    """Pull a bearer token from the authorization header or ``token`` query param."""
    auth = request_metadata.get("authorization", "")
    if auth.lower().startswith("bearer "):
        token = auth[7:].strip()
        if token:
            return token
    token = request_metadata.get("token", "").strip()
    return token or None
