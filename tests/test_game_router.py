"""HTTP and WebSocket tests against the FastAPI app, backed by the in-memory store."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from agents.room_manager import RoomLifecycleManager, get_room_manager
from main import app
from services.memory_store import MemoryStore
from services.notifier import RoomNotifier


def as_user(user_id):
    return {"X-User-Id": user_id}


@pytest.fixture
def client():
    manager = RoomLifecycleManager(MemoryStore(), RoomNotifier(queue_size=8))
    app.dependency_overrides[get_room_manager] = lambda: manager
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def lobby(client):
    """Three seated players; user-0 hosts."""
    created = client.post("/api/rooms", json={"host_name": "Ann"}, headers=as_user("user-0"))
    assert created.status_code == 201
    room = created.json()
    player_ids = {"user-0": room["player_id"]}
    for user_id, name in (("user-1", "Bob"), ("user-2", "Cid")):
        joined = client.post(
            "/api/rooms/join",
            json={"room_code": room["room_code"], "name": name},
            headers=as_user(user_id),
        )
        assert joined.status_code == 200
        player_ids[user_id] = joined.json()["player"]["id"]
    return room["room_id"], room["room_code"], player_ids


def ready_all(client, room_id, player_ids):
    for user_id, player_id in player_ids.items():
        res = client.post(f"/api/rooms/{room_id}/players/{player_id}/ready", headers=as_user(user_id))
        assert res.status_code == 200


class TestRoomsApi:

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"

    def test_identity_is_required(self, client):
        res = client.post("/api/rooms", json={})
        assert res.status_code == 403
        assert res.json() == {"error": {"code": "unauthenticated", "message": "Missing caller identity"}}

    def test_join_returns_session_context(self, client, lobby):
        room_id, room_code, player_ids = lobby
        res = client.post(
            "/api/rooms/join",
            json={"room_code": room_code.lower(), "name": "Dee"},
            headers=as_user("user-3"),
        )
        session = res.json()["session"]
        assert session["user_id"] == "user-3"
        assert session["room_id"] == room_id
        assert session["player_id"] == res.json()["player"]["id"]

    def test_conflicts_map_to_409(self, client, lobby):
        _, room_code, _ = lobby
        res = client.post(
            "/api/rooms/join", json={"room_code": room_code, "name": "Bob"}, headers=as_user("user-9"),
        )
        assert res.status_code == 409
        assert res.json()["error"]["code"] == "duplicate_name"

    def test_unknown_room_is_404(self, client):
        res = client.get("/api/rooms/does-not-exist")
        assert res.status_code == 404
        assert res.json()["error"]["code"] == "room_not_found"

    def test_room_state_by_code(self, client, lobby):
        room_id, room_code, _ = lobby
        state = client.get(f"/api/rooms/by-code/{room_code.lower()}").json()
        assert state["room"]["id"] == room_id
        assert [p["name"] for p in state["players"]] == ["Ann", "Bob", "Cid"]

    def test_settings_use_camel_case_keys(self, client, lobby):
        room_id, _, _ = lobby
        res = client.put(
            f"/api/rooms/{room_id}/settings",
            json={"undercoverCount": 1, "mrWhiteCount": 1},
            headers=as_user("user-0"),
        )
        assert res.json()["settings"] == {"undercoverCount": 1, "mrWhiteCount": 1}

        res = client.put(
            f"/api/rooms/{room_id}/settings", json={"undercoverCount": 2}, headers=as_user("user-1"),
        )
        assert res.status_code == 403
        assert res.json()["error"]["code"] == "not_host"

    def test_start_requires_everyone_ready(self, client, lobby):
        room_id, _, _ = lobby
        res = client.post(f"/api/rooms/{room_id}/start", headers=as_user("user-0"))
        assert res.status_code == 400
        assert res.json()["error"]["code"] == "not_all_ready"

    def test_leave_lobby(self, client, lobby):
        room_id, _, _ = lobby
        res = client.delete(f"/api/rooms/{room_id}/players/me", headers=as_user("user-2"))
        assert res.json()["session"] == {
            "user_id": "user-2", "room_id": None, "room_code": None, "player_id": None,
        }
        assert client.get(f"/api/rooms/{room_id}").json()["player_count"] == 2

    def test_full_game(self, client, lobby):
        room_id, _, player_ids = lobby
        ready_all(client, room_id, player_ids)

        started = client.post(f"/api/rooms/{room_id}/start", headers=as_user("user-0"))
        assert started.json()["room"]["status"] == "playing"

        secrets = {
            user_id: client.get(f"/api/rooms/{room_id}/secret", headers=as_user(user_id)).json()
            for user_id in player_ids
        }
        undercover = next(s["player_id"] for s in secrets.values() if s["role"] == "undercover")

        early = client.get(f"/api/rooms/{room_id}/results", headers=as_user("user-1"))
        assert early.status_code == 400
        assert early.json()["error"]["code"] == "game_not_finished"

        client.post(f"/api/rooms/{room_id}/voting", headers=as_user("user-0"))
        for user_id, player_id in player_ids.items():
            res = client.post(
                f"/api/rooms/{room_id}/votes",
                json={"round": 1, "voter_id": player_id, "target_id": undercover},
                headers=as_user(user_id),
            )
            assert res.status_code == 201

        progress = client.get(f"/api/rooms/{room_id}/votes", headers=as_user("user-1")).json()
        assert progress["vote_count"] == 3

        tally = client.post(f"/api/rooms/{room_id}/tally", headers=as_user("user-0"))
        assert tally.status_code == 200
        body = tally.json()
        assert body["outcome"] == "game_over"
        assert body["winner"] == "civilian"
        assert body["eliminated_id"] == undercover

        results = client.get(f"/api/rooms/{room_id}/results", headers=as_user("user-2")).json()
        assert results["winner"] == "civilian"
        assert {p["role"] for p in results["players"]} == {"civilian", "undercover"}

        history = client.get(f"/api/rooms/{room_id}/history", headers=as_user("user-1")).json()
        assert len(history["rounds"]) == 1

        reset = client.post(f"/api/rooms/{room_id}/reset", headers=as_user("user-1"))
        assert reset.json()["room"]["status"] == "lobby"

    def test_secret_is_members_only(self, client, lobby):
        room_id, _, player_ids = lobby
        ready_all(client, room_id, player_ids)
        client.post(f"/api/rooms/{room_id}/start", headers=as_user("user-0"))
        res = client.get(f"/api/rooms/{room_id}/secret", headers=as_user("stranger"))
        assert res.status_code == 403
        assert res.json()["error"]["code"] == "not_a_member"


class TestRoomSocket:

    def test_connected_then_room_changed(self, client, lobby):
        room_id, room_code, _ = lobby
        with client.websocket_connect(f"/ws/{room_id}?userId=user-0") as ws:
            connected = ws.receive_json()
            assert connected["type"] == "connected"
            assert len(connected["players"]) == 3

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            client.post(
                "/api/rooms/join", json={"room_code": room_code, "name": "Dee"}, headers=as_user("user-3"),
            )
            changed = ws.receive_json()
            assert changed["type"] == "room_changed"
            assert len(changed["players"]) == 4

    def test_unknown_message_type(self, client, lobby):
        room_id, _, _ = lobby
        with client.websocket_connect(f"/ws/{room_id}?userId=user-1") as ws:
            ws.receive_json()
            ws.send_json({"type": "shout"})
            reply = ws.receive_json()
            assert reply["type"] == "error"
            assert reply["code"] == "UNKNOWN_TYPE"

    def test_non_members_are_turned_away(self, client, lobby):
        room_id, _, _ = lobby
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(f"/ws/{room_id}?userId=stranger") as ws:
                ws.receive_json()
        assert exc.value.code == 4403

    def test_closing_the_socket_drops_the_subscription(self, client, lobby):
        room_id, _, _ = lobby
        manager = app.dependency_overrides[get_room_manager]()
        with client.websocket_connect(f"/ws/{room_id}?userId=user-2") as ws:
            ws.receive_json()
            assert manager.notifier.subscriber_count(room_id) == 1
        assert manager.notifier.subscriber_count(room_id) == 0
