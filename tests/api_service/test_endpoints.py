"""
Endpoint tests for the FastAPI app.

The DI container is reset per test and wired to in-memory adapters with a
static token table, so every request runs through the real services.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from api_service.src import main
from shared_utils.config_loader import Settings
from shared_utils.constants import APIEndpoints, ErrorCode
from shared_utils.di_container import get_di_container

ALICE = {"Authorization": "Bearer tok-alice"}
BOB = {"Authorization": "Bearer tok-bob"}


@pytest.fixture()
def client():
    settings = Settings(
        environment="development",
        store_backend="memory",
        identity_tokens={"tok-alice": "alice", "tok-bob": "bob"},
        display_names={"alice": "Group Alpha"},
    )
    container = get_di_container()
    container.reset()
    main.limiter.enabled = False
    with patch("shared_utils.di_container.get_settings", return_value=settings):
        yield TestClient(main.app)
    main.limiter.enabled = True
    container.reset()


def _path(template: str, session_id: str) -> str:
    return template.format(session_id=session_id)


def _segment(speaker: str, text: str, start: float, end: float, **extra) -> dict:
    return {"speaker": speaker, "text": text, "startTime": start, "endTime": end, **extra}


def _create(client, headers=ALICE, **body) -> dict:
    resp = client.post(APIEndpoints.SESSIONS, json=body, headers=headers)
    assert resp.status_code == 201
    return resp.json()


# ---------------------------------------------------------------------------
# Health + auth
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health(self, client) -> None:
        resp = client.get(APIEndpoints.HEALTH)
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["store_backend"] == "memory"
        assert body["observers"] == 0


class TestAuthentication:
    def test_missing_token(self, client) -> None:
        resp = client.post(APIEndpoints.SESSIONS, json={})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == ErrorCode.UNAUTHENTICATED.value

    def test_unknown_token(self, client) -> None:
        resp = client.get(
            _path(APIEndpoints.SESSION, "x"), headers={"Authorization": "Bearer nope"}
        )
        assert resp.status_code == 401

    def test_other_owner_forbidden(self, client) -> None:
        session = _create(client)
        resp = client.get(_path(APIEndpoints.SESSION, session["sessionId"]), headers=BOB)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == ErrorCode.ACCESS_DENIED.value

    def test_unknown_session(self, client) -> None:
        resp = client.get(_path(APIEndpoints.SESSION, "missing"), headers=ALICE)
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


class TestSessionLifecycle:
    def test_create(self, client) -> None:
        session = _create(
            client,
            topicPrompt="Rivers and lakes",
            topicKeywords=["water"],
            participationConfig={"dominanceThreshold": 0.5},
        )
        assert session["status"] == "draft"
        assert session["cursor"] == 0
        assert session["ownerId"] == "alice"
        assert session["language"] == "en"
        assert session["topicKeywords"] == ["water"]
        assert session["participationConfig"]["dominanceThreshold"] == 0.5

    def test_full_flow(self, client) -> None:
        sid = _create(client)["sessionId"]
        segments_url = _path(APIEndpoints.SEGMENTS, sid)

        resp = client.patch(segments_url, headers=ALICE, json={
            "fromIndex": 0,
            "segments": [
                _segment("SPEAKER 1", "what is the question", 0, 30),
                _segment("SPEAKER 2", "damn good idea", 30, 40),
            ],
        })
        assert resp.status_code == 200
        assert resp.json()["cursor"] == 2
        assert resp.json()["profanityCount"] == 1

        # a replayed batch loses the cursor race
        resp = client.patch(segments_url, headers=ALICE, json={
            "fromIndex": 0,
            "segments": [_segment("SPEAKER 1", "what is the question", 0, 30)],
        })
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == ErrorCode.CURSOR_CONFLICT.value
        assert error["context"]["expected"] == 0
        assert error["context"]["actual"] == 2

        detail = client.get(_path(APIEndpoints.SESSION, sid), headers=ALICE).json()
        assert detail["session"]["cursor"] == 2
        # SPEAKER 1 holds 75% of talk time after the first batch
        assert [f["flaggedWord"] for f in detail["flaggedContent"]] == [
            "participation_dominance",
            "damn",
        ]

        resp = client.patch(_path(APIEndpoints.COMPLETE, sid), headers=ALICE,
                            json={"duration": 40})
        assert resp.status_code == 200
        final = resp.json()
        assert final["status"] == "complete"
        assert final["duration"] == 40.0
        assert final["participationBalance"]["dominantSpeaker"] == "SPEAKER 1"
        assert final["topicAdherenceScore"] == 1.0

        resp = client.patch(segments_url, headers=ALICE, json={
            "fromIndex": 2,
            "segments": [_segment("SPEAKER 1", "late", 40, 41)],
        })
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == ErrorCode.SESSION_CLOSED.value

        flag_store = get_di_container().get_flag_store()
        flags_before = flag_store.list_flags(sid)

        again = client.patch(_path(APIEndpoints.COMPLETE, sid), headers=ALICE,
                             json={"duration": 99})
        assert again.status_code == 200
        assert again.json() == final
        assert flag_store.list_flags(sid) == flags_before


class TestOwnerListings:
    def test_sessions_scoped_to_caller(self, client) -> None:
        mine = _create(client)
        _create(client, headers=BOB)

        resp = client.get(APIEndpoints.SESSIONS, headers=ALICE)

        assert resp.status_code == 200
        assert [s["sessionId"] for s in resp.json()] == [mine["sessionId"]]

    def test_flagged_content_scoped_to_caller(self, client) -> None:
        sid = _create(client)["sessionId"]
        other = _create(client, headers=BOB)["sessionId"]
        for session_id, headers in ((sid, ALICE), (other, BOB)):
            client.patch(_path(APIEndpoints.SEGMENTS, session_id), headers=headers, json={
                "fromIndex": 0, "segments": [_segment("SPEAKER 1", "damn", 0, 1)],
            })

        resp = client.get(APIEndpoints.FLAGGED_CONTENT, headers=ALICE)

        assert resp.status_code == 200
        body = resp.json()
        assert [(f["flaggedWord"], f["sessionId"]) for f in body] == [("damn", sid)]
        assert body[0]["session"]["ownerId"] == "alice"
        assert body[0]["session"]["profanityCount"] == 1

    def test_listings_require_identity(self, client) -> None:
        assert client.get(APIEndpoints.SESSIONS).status_code == 401
        assert client.get(APIEndpoints.FLAGGED_CONTENT).status_code == 401


class TestAppendValidation:
    @pytest.fixture()
    def url(self, client) -> str:
        return _path(APIEndpoints.SEGMENTS, _create(client)["sessionId"])

    @pytest.mark.parametrize(
        "body",
        [
            {"fromIndex": 0},
            {"fromIndex": 0, "segments": []},
            {"segments": [{"speaker": "SPEAKER 1", "startTime": 0, "endTime": 1}]},
            {"fromIndex": -1, "segments": [{"speaker": "SPEAKER 1", "startTime": 0, "endTime": 1}]},
            {"fromIndex": 0, "segments": [{"speaker": "SPEAKER 1", "startTime": 2, "endTime": 1}]},
            {"fromIndex": 0, "segments": [{"text": "no speaker", "startTime": 0, "endTime": 1}]},
            {"fromIndex": 0, "segments": [{"speaker": "SPEAKER 1", "startTime": "1.5", "endTime": 2}]},
        ],
    )
    def test_rejected(self, client, url, body) -> None:
        resp = client.patch(url, headers=ALICE, json=body)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == ErrorCode.INVALID_INPUT.value

    def test_other_owner_cannot_append(self, client, url) -> None:
        resp = client.patch(url, headers=BOB, json={
            "fromIndex": 0, "segments": [_segment("SPEAKER 1", "hi", 0, 1)],
        })
        assert resp.status_code == 403


class TestComplete:
    def test_duration_required(self, client) -> None:
        sid = _create(client)["sessionId"]
        resp = client.patch(_path(APIEndpoints.COMPLETE, sid), headers=ALICE, json={})
        assert resp.status_code == 400

    def test_negative_duration(self, client) -> None:
        sid = _create(client)["sessionId"]
        resp = client.patch(_path(APIEndpoints.COMPLETE, sid), headers=ALICE,
                            json={"duration": -5})
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Configuration endpoints
# ---------------------------------------------------------------------------


class TestConfigEndpoints:
    def test_topic_config(self, client) -> None:
        sid = _create(client)["sessionId"]
        resp = client.post(_path(APIEndpoints.TOPIC_CONFIG, sid), headers=ALICE,
                           json={"topicPrompt": "Volcanoes", "topicKeywords": ["Lava"]})
        assert resp.status_code == 200
        assert resp.json()["topicPrompt"] == "Volcanoes"
        assert resp.json()["topicKeywords"] == ["lava"]

    def test_participation_config_set_and_clear(self, client) -> None:
        sid = _create(client)["sessionId"]
        url = _path(APIEndpoints.PARTICIPATION_CONFIG, sid)

        resp = client.post(url, headers=ALICE, json={"silenceThreshold": 0.2})
        assert resp.json()["participationConfig"]["silenceThreshold"] == 0.2

        resp = client.post(url, headers=ALICE, json={})
        assert resp.status_code == 200
        assert resp.json()["participationConfig"] is None

    def test_participation_config_out_of_range(self, client) -> None:
        sid = _create(client)["sessionId"]
        resp = client.post(_path(APIEndpoints.PARTICIPATION_CONFIG, sid), headers=ALICE,
                           json={"dominanceThreshold": 2})
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Observer channel
# ---------------------------------------------------------------------------


class TestMonitorSocket:
    def test_rejects_without_identity(self, client) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(APIEndpoints.MONITOR_WS) as ws:
                ws.receive_json()
        assert exc_info.value.code == 1008

    def test_receives_alerts_from_ingestion(self, client) -> None:
        sid = _create(client)["sessionId"]

        with client.websocket_connect(f"{APIEndpoints.MONITOR_WS}?token=tok-bob") as ws:
            assert ws.receive_json() == {"type": "CONNECTED", "userId": "bob"}

            resp = client.patch(_path(APIEndpoints.SEGMENTS, sid), headers=ALICE, json={
                "fromIndex": 0,
                "segments": [_segment("SPEAKER 1", "well damn", 1.25, 2, language="fr")],
            })
            assert resp.status_code == 200

            first, second = ws.receive_json(), ws.receive_json()

        assert first["type"] == "PROFANITY_ALERT"
        assert first["sessionId"] == sid
        assert first["ownerDisplayName"] == "Group Alpha"
        assert first["flaggedWord"] == "damn"
        assert first["timestampMs"] == 1250
        assert second["type"] == "LANGUAGE_POLICY_ALERT"
        assert second["flaggedWord"] == "fr"
