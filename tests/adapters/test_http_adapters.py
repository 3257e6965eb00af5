"""
Unit tests for the httpx-based adapters.

All traffic goes through httpx.MockTransport - no network.
"""

import httpx
import pytest

from adapters.http_append_transport import HttpAppendTransportAdapter
from adapters.http_transcript_provider import HttpTranscriptProviderAdapter
from domain.models import Segment, Session
from ports.append_transport import AppendTransportPort
from ports.transcript_provider import TranscriptProviderPort
from shared_utils.error_handler import (
    AccessDeniedError,
    AppException,
    CursorConflictError,
    ExternalProviderUnavailableError,
    ExternalServiceError,
    SessionClosedError,
)


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


# ======================================================================
# HttpTranscriptProviderAdapter
# ======================================================================

class TestHttpTranscriptProvider:
    def test_implements_port(self) -> None:
        adapter = HttpTranscriptProviderAdapter("http://stt", client=_client(lambda r: None))
        assert isinstance(adapter, TranscriptProviderPort)

    def test_success(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"tokens": [
                {"text": "Hello", "start_ms": 0, "end_ms": 400, "speaker": "1", "language": "en"},
                {"text": " there", "start_ms": 400, "end_ms": 800, "speaker": "1"},
            ]})

        adapter = HttpTranscriptProviderAdapter(
            "http://stt/", api_key="secret", client=_client(handler)
        )
        tokens = adapter.fetch_final_transcript("ref-1")

        assert seen["url"] == "http://stt/v1/transcriptions/ref-1/transcript"
        assert seen["auth"] == "Bearer secret"
        assert [t.text for t in tokens] == ["Hello", " there"]
        assert tokens[0].language == "en"

    def test_non_200(self) -> None:
        adapter = HttpTranscriptProviderAdapter(
            "http://stt", client=_client(lambda r: httpx.Response(502))
        )
        with pytest.raises(ExternalProviderUnavailableError) as exc_info:
            adapter.fetch_final_transcript("ref-1")
        assert exc_info.value.context["transcript_ref"] == "ref-1"

    def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        adapter = HttpTranscriptProviderAdapter("http://stt", client=_client(handler))
        with pytest.raises(ExternalProviderUnavailableError, match="timed out"):
            adapter.fetch_final_transcript("ref-1")

    def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        adapter = HttpTranscriptProviderAdapter("http://stt", client=_client(handler))
        with pytest.raises(ExternalProviderUnavailableError):
            adapter.fetch_final_transcript("ref-1")

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"tokens": "nope"}),
            httpx.Response(200, json=["a", "b"]),
            httpx.Response(200, json={"tokens": [{"start_ms": "soon"}]}),
        ],
    )
    def test_bad_payload(self, response) -> None:
        adapter = HttpTranscriptProviderAdapter("http://stt", client=_client(lambda r: response))
        with pytest.raises(ExternalProviderUnavailableError):
            adapter.fetch_final_transcript("ref-1")

    def test_not_configured(self) -> None:
        adapter = HttpTranscriptProviderAdapter("", client=_client(lambda r: httpx.Response(200)))
        with pytest.raises(ExternalProviderUnavailableError, match="not configured"):
            adapter.fetch_final_transcript("ref-1")


# ======================================================================
# HttpAppendTransportAdapter
# ======================================================================

def _segment(i: int) -> Segment:
    return Segment(speaker="SPEAKER 1", text=f"s{i}", start_time=float(i), end_time=i + 0.5)


class TestHttpAppendTransport:
    def test_implements_port(self) -> None:
        adapter = HttpAppendTransportAdapter("http://api", client=_client(lambda r: None))
        assert isinstance(adapter, AppendTransportPort)

    def test_success_returns_session(self) -> None:
        seen = {}
        stored = Session(owner_id="alice", segments=[_segment(0)], cursor=1)

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = request.content
            return httpx.Response(200, json=stored.to_wire())

        adapter = HttpAppendTransportAdapter("http://api", token="tok", client=_client(handler))
        session = adapter.append_segments(stored.session_id, [_segment(0)], 0)

        assert session.cursor == 1
        assert seen["method"] == "PATCH"
        assert seen["path"] == f"/api/v1/sessions/{stored.session_id}/segments"
        assert seen["auth"] == "Bearer tok"
        assert b'"fromIndex":0' in seen["body"].replace(b" ", b"")
        assert b'"startTime"' in seen["body"]

    def test_cursor_conflict(self) -> None:
        body = CursorConflictError(expected=0, actual=3, session_id="s-1").to_dict()
        adapter = HttpAppendTransportAdapter(
            "http://api", client=_client(lambda r: httpx.Response(409, json=body))
        )
        with pytest.raises(CursorConflictError) as exc_info:
            adapter.append_segments("s-1", [_segment(0)], 0)
        assert exc_info.value.actual == 3

    def test_session_closed(self) -> None:
        body = SessionClosedError("s-1", "complete").to_dict()
        adapter = HttpAppendTransportAdapter(
            "http://api", client=_client(lambda r: httpx.Response(409, json=body))
        )
        with pytest.raises(SessionClosedError):
            adapter.append_segments("s-1", [_segment(0)], 0)

    def test_other_error_keeps_status(self) -> None:
        body = AccessDeniedError("s-1").to_dict()
        adapter = HttpAppendTransportAdapter(
            "http://api", client=_client(lambda r: httpx.Response(403, json=body))
        )
        with pytest.raises(AppException) as exc_info:
            adapter.append_segments("s-1", [_segment(0)], 0)
        assert exc_info.value.http_status == 403
        assert exc_info.value.error_code == "ACCESS_DENIED"

    def test_unreadable_error_body(self) -> None:
        adapter = HttpAppendTransportAdapter(
            "http://api", client=_client(lambda r: httpx.Response(500, text="oops"))
        )
        with pytest.raises(AppException) as exc_info:
            adapter.append_segments("s-1", [_segment(0)], 0)
        assert exc_info.value.http_status == 500

    def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        adapter = HttpAppendTransportAdapter("http://api", client=_client(handler))
        with pytest.raises(ExternalServiceError):
            adapter.append_segments("s-1", [_segment(0)], 0)
