"""HTTP and WebSocket surface tests using FastAPI's TestClient."""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from kindred_moments.config import Settings
from kindred_moments.foundation.identifiers import is_valid_anonymous_id
from kindred_moments.main import build_app

LAT, LON = 37.7694, -122.4862
STEP = 0.0001  # ~11 m


@pytest.fixture
def client() -> TestClient:
    app = build_app(Settings(), run_scheduler=False)
    with TestClient(app) as test_client:
        yield test_client


def _as(user_id: str) -> dict[str, str]:
    return {"X-User-ID": user_id}


def _create(client: TestClient, user_id: str, lat: float = LAT, lon: float = LON, **extra):
    return client.post("/api/moments", json={"latitude": lat, "longitude": lon, **extra}, headers=_as(user_id))


class TestIdentity:
    def test_mint_identity_sets_cookie(self, client) -> None:
        resp = client.post("/api/identity")
        assert resp.status_code == 201
        user_id = resp.json()["user_id"]
        assert is_valid_anonymous_id(user_id)
        assert resp.cookies.get("kindred-user-id") == user_id

    def test_cookie_identity_is_accepted(self, client) -> None:
        client.post("/api/identity")
        resp = client.post("/api/moments", json={"latitude": LAT, "longitude": LON})
        assert resp.status_code == 201

    def test_missing_identity(self, client) -> None:
        resp = client.post("/api/moments", json={"latitude": LAT, "longitude": LON})
        assert resp.status_code == 401
        assert resp.json()["kind"] == "unauthenticated"

    def test_malformed_identity(self, client) -> None:
        resp = _create(client, "bob")
        assert resp.status_code == 401


class TestMomentsApi:
    def test_create_then_join_nearby(self, client, clock, alice, bob) -> None:
        first = _create(client, alice, name="Dutch Windmill")
        assert first.status_code == 201
        assert first.json()["created"] is True
        moment = first.json()["moment"]
        assert moment["location"]["name"] == "Dutch Windmill"
        assert moment["state"] == "active"

        second = _create(client, bob, lat=LAT + STEP)
        assert second.status_code == 200
        assert second.json()["created"] is False
        assert second.json()["moment"]["moment_id"] == moment["moment_id"]
        assert second.json()["moment"]["participant_count"] == 2

    def test_validation_errors_are_400(self, client, alice) -> None:
        assert _create(client, alice, lat=95.0).json()["kind"] == "validation_failed"
        resp = client.post("/api/moments", json={"longitude": LON}, headers=_as(alice))
        assert resp.status_code == 400
        assert resp.json()["kind"] == "validation_failed"

    def test_get_and_unknown(self, client, clock, alice) -> None:
        moment_id = _create(client, alice).json()["moment"]["moment_id"]
        assert client.get(f"/api/moments/{moment_id}").json()["moment_id"] == moment_id
        resp = client.get(f"/api/moments/{uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["kind"] == "not_found"

    def test_nearby_lists_with_distance(self, client, clock, alice) -> None:
        _create(client, alice)
        resp = client.get("/api/moments", params={"lat": LAT + 10 * STEP, "lon": LON, "radius_km": 1})
        body = resp.json()
        assert body["count"] == 1
        assert body["moments"][0]["distance_m"] == pytest.approx(111.2, abs=0.5)

    def test_join_leave(self, client, clock, alice, bob) -> None:
        moment_id = _create(client, alice).json()["moment"]["moment_id"]
        assert client.put(f"/api/moments/{moment_id}/join", headers=_as(bob)).json()["participant_count"] == 2
        assert client.put(f"/api/moments/{moment_id}/leave", headers=_as(bob)).json()["participant_count"] == 1

    def test_expired_moment_is_read_only(self, client, clock, alice, bob) -> None:
        moment_id = _create(client, alice).json()["moment"]["moment_id"]
        clock.advance(hours=25)
        assert client.get(f"/api/moments/{moment_id}").json()["state"] == "expired"
        resp = client.put(f"/api/moments/{moment_id}/join", headers=_as(bob))
        assert resp.status_code == 409
        assert resp.json()["kind"] == "inactive"
        resp = client.post("/api/posts", json={"moment_id": moment_id, "text": "late"}, headers=_as(alice))
        assert resp.status_code == 409
        archived = client.get("/api/moments/archived").json()
        assert [m["moment_id"] for m in archived["moments"]] == [moment_id]


class TestPostsApi:
    def test_post_react_delete(self, client, clock, alice, bob, carol) -> None:
        moment_id = _create(client, alice).json()["moment"]["moment_id"]
        client.put(f"/api/moments/{moment_id}/join", headers=_as(bob))

        resp = client.post(
            "/api/posts",
            json={"moment_id": moment_id, "text": "fog rolling in", "media": {"url": "https://img.test/fog.jpg"}},
            headers=_as(alice),
        )
        assert resp.status_code == 201
        post = resp.json()
        assert post["media"]["media_type"] == "photo"

        assert client.post(
            "/api/posts", json={"moment_id": moment_id, "text": "hi"}, headers=_as(carol)
        ).status_code == 403

        reacted = client.put(f"/api/posts/{post['post_id']}/react", json={"reaction": "heart"}, headers=_as(bob))
        assert reacted.json()["reactions"]["heart"] == 1
        removed = client.delete(f"/api/posts/{post['post_id']}/react", headers=_as(bob))
        assert removed.json()["reactions"]["heart"] == 0

        assert client.delete(f"/api/posts/{post['post_id']}", headers=_as(bob)).status_code == 403
        assert client.delete(f"/api/posts/{post['post_id']}", headers=_as(alice)).json()["deleted"] is True
        assert client.get(f"/api/posts/{post['post_id']}").status_code == 404
        assert client.get(f"/api/moments/{moment_id}/posts").json()["count"] == 0

    def test_post_too_long(self, client, clock, alice) -> None:
        moment_id = _create(client, alice).json()["moment"]["moment_id"]
        resp = client.post("/api/posts", json={"moment_id": moment_id, "text": "x" * 301}, headers=_as(alice))
        assert resp.status_code == 400


class TestMoodsApi:
    def test_vote_overwrite_and_read(self, client, clock, alice) -> None:
        moment_id = _create(client, alice).json()["moment"]["moment_id"]
        client.post("/api/moods/vote", json={"moment_id": moment_id, "mood": "calm"}, headers=_as(alice))
        resp = client.post(
            "/api/moods/vote", json={"moment_id": moment_id, "mood": "cozy", "intensity": 4}, headers=_as(alice)
        )
        summary = resp.json()["mood_summary"]
        assert summary["total_votes"] == 1
        assert summary["counts"]["cozy"] == 1
        assert summary["counts"]["calm"] == 0

        mine = client.get(f"/api/moods/user/{moment_id}", headers=_as(alice)).json()
        assert mine["has_voted"] is True
        assert mine["vote"]["mood"] == "cozy"
        assert client.get(f"/api/moments/{moment_id}/mood-summary").json()["dominant"][0]["mood"] == "cozy"
        assert client.get("/api/moods/trending").json()["moods"][0]["mood"] == "cozy"

        assert client.delete(f"/api/moods/vote/{moment_id}", headers=_as(alice)).status_code == 200
        assert client.delete(f"/api/moods/vote/{moment_id}", headers=_as(alice)).status_code == 404
        assert client.get(f"/api/moods/moment/{moment_id}").json()["total_votes"] == 0

    def test_invalid_mood(self, client, clock, alice) -> None:
        moment_id = _create(client, alice).json()["moment"]["moment_id"]
        resp = client.post("/api/moods/vote", json={"moment_id": moment_id, "mood": "grumpy"}, headers=_as(alice))
        assert resp.status_code == 400


class TestMomentSocket:
    def test_join_chat_and_ping(self, client, clock, alice, bob) -> None:
        moment_id = _create(client, alice).json()["moment"]["moment_id"]

        with client.websocket_connect(f"/ws/moments?user_id={alice}") as a:
            a.send_json({"event": "join", "data": {"moment_id": moment_id}})
            assert a.receive_json()["event"] == "joined"
            assert a.receive_json() == {"event": "chatHistory", "data": {"moment_id": moment_id, "messages": []}}

            assert client.put(f"/api/moments/{moment_id}/join", headers=_as(bob)).status_code == 200
            joined = a.receive_json()
            assert joined["event"] == "participantJoined"
            assert joined["data"]["user_id"] == bob

            with client.websocket_connect(f"/ws/moments?user_id={bob}") as b:
                b.send_json({"event": "join", "data": {"moment_id": moment_id}})
                assert b.receive_json()["event"] == "joined"
                assert b.receive_json()["event"] == "chatHistory"

                b.send_json({"event": "sendMessage", "data": {"text": "hey"}})
                assert b.receive_json()["event"] == "newMessage"
                assert b.receive_json()["event"] == "messageSent"
                incoming = a.receive_json()
                assert incoming["event"] == "newMessage"
                assert incoming["data"]["text"] == "hey"
                assert incoming["data"]["user_id"] == bob

                b.send_json({"event": "ping"})
                assert b.receive_json() == {"event": "pong", "data": {}}

            left = a.receive_json()
            assert left["event"] == "participantLeft"
            assert left["data"]["user_id"] == bob

    def test_errors_keep_socket_open(self, client, clock, alice) -> None:
        with client.websocket_connect(f"/ws/moments?user_id={alice}") as ws:
            ws.send_json({"event": "join", "data": {"moment_id": str(uuid4())}})
            assert ws.receive_json()["data"]["kind"] == "not_found"
            ws.send_json({"event": "dance"})
            assert ws.receive_json()["data"]["kind"] == "validation_failed"
            ws.send_text("not json")
            assert ws.receive_json()["event"] == "error"
            ws.send_json({"event": "ping"})
            assert ws.receive_json()["event"] == "pong"

    def test_missing_identity_closes(self, client) -> None:
        with client.websocket_connect("/ws/moments") as ws:
            assert ws.receive_json()["data"]["kind"] == "unauthenticated"
            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()


class TestHealth:
    def test_health_counts(self, client, clock, alice) -> None:
        _create(client, alice)
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["total_moments"] == 1
        assert body["connections"] == 0
        assert body["last_sweep"] is None
