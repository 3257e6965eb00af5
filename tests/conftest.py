"""
Root conftest.py - shared fixtures for the entire test suite.

Guidelines:
    • No __init__.py in test sub-directories (avoids shadowing root packages).
    • pytest.ini_options lives in pyproject.toml with pythonpath=["."].
    • Markers: integration.
"""

from typing import Dict, List
from unittest.mock import MagicMock

import pytest

from adapters.in_memory_flag_store import InMemoryFlagStoreAdapter
from adapters.in_memory_session_store import InMemorySessionStoreAdapter
from adapters.in_memory_ttl_cache import InMemoryTtlCacheAdapter
from adapters.static_identity import StaticTokenIdentityAdapter
from domain.models import Segment, Session


# ---------------------------------------------------------------------------
# Minimal settings kwargs for Settings(**BASE_SETTINGS_KWARGS)
# ---------------------------------------------------------------------------

BASE_SETTINGS_KWARGS: Dict[str, str] = {
    "environment": "development",
    "store_backend": "memory",
    "allowed_language": "en",
}


@pytest.fixture()
def base_settings_kwargs() -> Dict[str, str]:
    """Provide the minimal kwargs needed to instantiate ``Settings``."""
    return {**BASE_SETTINGS_KWARGS}


# ---------------------------------------------------------------------------
# Segment helpers
# ---------------------------------------------------------------------------

def make_segment(
    speaker: str = "SPEAKER 1",
    text: str = "hello there",
    start: float = 0.0,
    end: float = 1.0,
    language: str | None = None,
) -> Segment:
    return Segment(
        speaker=speaker, text=text, start_time=start, end_time=end, language=language
    )


@pytest.fixture()
def sample_segments() -> List[Segment]:
    """Three speakers sharing talk time 60 / 30 / 10."""
    return [
        make_segment("SPEAKER 1", "what do you think about the question", 0.0, 60.0),
        make_segment("SPEAKER 2", "I agree with that idea", 60.0, 90.0),
        make_segment("SPEAKER 3", "good point", 90.0, 100.0),
    ]


# ---------------------------------------------------------------------------
# In-memory adapters
# ---------------------------------------------------------------------------

@pytest.fixture()
def session_store() -> InMemorySessionStoreAdapter:
    return InMemorySessionStoreAdapter()


@pytest.fixture()
def flag_store() -> InMemoryFlagStoreAdapter:
    return InMemoryFlagStoreAdapter()


@pytest.fixture()
def cache() -> InMemoryTtlCacheAdapter:
    return InMemoryTtlCacheAdapter(default_ttl_seconds=60.0, max_entries=100)


@pytest.fixture()
def identity() -> StaticTokenIdentityAdapter:
    return StaticTokenIdentityAdapter(
        tokens={"tok-alice": "alice", "tok-bob": "bob"},
        display_names={"alice": "Group Alpha"},
    )


@pytest.fixture()
def draft_session(session_store: InMemorySessionStoreAdapter) -> Session:
    """A stored draft session owned by ``alice``."""
    session = Session(owner_id="alice")
    session_store.create_session(session)
    return session


@pytest.fixture()
def mock_publisher() -> MagicMock:
    """Alert publisher mock that reports one observer per event."""
    mock = MagicMock()
    mock.publish.return_value = 1
    return mock
