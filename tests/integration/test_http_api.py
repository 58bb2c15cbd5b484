"""Integration tests for the HTTP boundary and the /ws relay endpoint."""

import time

import pytest
from fastapi.testclient import TestClient

from server.di_container import cleanup_container, get_container
from server.main import app


@pytest.fixture
def client():
    cleanup_container()
    with TestClient(app) as test_client:
        yield test_client
    cleanup_container()


def create_room(client, mode="monopoly"):
    response = client.post(
        "/api/rooms",
        json={
            "name": "Living Room",
            "audioMode": mode,
            "audioSource": "upload",
            "hostDeviceName": "Host Phone",
            "hostDeviceType": "mobile",
        },
    )
    assert response.status_code == 200
    return response.json()


def join_room(client, otp, name="Guest"):
    return client.post("/api/rooms/join", json={"otp": otp, "deviceName": name, "deviceType": "tablet"})


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestRoomEndpoints:
    """Test room and device records over HTTP."""

    def test_create_room_returns_room_and_host(self, client):
        body = create_room(client)
        room, host = body["room"], body["hostDevice"]

        assert len(room["otp"]) == 6 and room["otp"].isdigit()
        assert room["isActive"] is True
        assert room["hostDeviceId"] == host["id"]
        assert host["isHost"] is True
        assert host["roomId"] == room["id"]

    def test_join_by_otp(self, client):
        room = create_room(client)["room"]

        response = join_room(client, room["otp"])

        assert response.status_code == 200
        device = response.json()["device"]
        assert device["roomId"] == room["id"]
        assert device["isHost"] is False
        assert device["volume"] == 75
        assert device["isMuted"] is False
        assert device["isConnected"] is True

    def test_join_unknown_otp(self, client):
        assert join_room(client, "000000").status_code == 404

    def test_join_invalid_otp_format(self, client):
        assert join_room(client, "12ab").status_code == 422

    def test_stereo_join_assigns_roles(self, client):
        room = create_room(client, mode="stereo")["room"]

        first = join_room(client, room["otp"], "First").json()["device"]
        assert first["audioRole"] == "center"
        assert (first["positionX"], first["positionY"]) == (0.5, 0.5)

        join_room(client, room["otp"], "Second")
        devices = client.get(f"/api/rooms/{room['id']}").json()["devices"]
        participants = [d for d in devices if not d["isHost"]]

        assert len(participants) == 2
        assert all(d["audioRole"] in ("front-right", "rear-right") for d in participants)
        assert [d for d in devices if d["isHost"]][0]["audioRole"] is None

    def test_get_room_lists_devices(self, client):
        room = create_room(client)["room"]
        join_room(client, room["otp"])

        body = client.get(f"/api/rooms/{room['id']}").json()
        assert body["room"]["id"] == room["id"]
        assert len(body["devices"]) == 2
        assert client.get("/api/rooms/missing").status_code == 404

    def test_deactivated_room_cannot_be_joined(self, client):
        room = create_room(client)["room"]

        response = client.put(f"/api/rooms/{room['id']}", json={"isActive": False})
        assert response.status_code == 200
        assert response.json()["isActive"] is False

        assert join_room(client, room["otp"]).status_code == 404

    def test_update_room_mode(self, client):
        room = create_room(client)["room"]
        response = client.put(f"/api/rooms/{room['id']}", json={"audioMode": "stereo"})

        assert response.json()["audioMode"] == "stereo"
        assert client.put("/api/rooms/missing", json={"audioMode": "stereo"}).status_code == 404

    def test_delete_room_removes_devices(self, client):
        body = create_room(client)
        room_id = body["room"]["id"]

        assert client.delete(f"/api/rooms/{room_id}").json() == {"success": True}
        assert client.get(f"/api/rooms/{room_id}").status_code == 404
        assert client.delete(f"/api/rooms/{room_id}").status_code == 404
        assert get_container().get_registry().get_device(body["hostDevice"]["id"]) is None

    def test_update_device(self, client):
        room = create_room(client)["room"]
        device = join_room(client, room["otp"]).json()["device"]

        response = client.put(f"/api/devices/{device['id']}", json={"volume": 30, "isMuted": True})
        assert response.status_code == 200
        assert response.json()["volume"] == 30
        assert response.json()["isMuted"] is True

        assert client.put(f"/api/devices/{device['id']}", json={"volume": 150}).status_code == 422
        assert client.put("/api/devices/missing", json={"volume": 10}).status_code == 404

    def test_remove_device(self, client):
        room = create_room(client)["room"]
        device = join_room(client, room["otp"]).json()["device"]

        assert client.delete(f"/api/devices/{device['id']}").json() == {"success": True}
        assert client.delete(f"/api/devices/{device['id']}").status_code == 404


class TestStatusEndpoints:
    """Test health, status and metrics endpoints."""

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy", "service": "surround-sync"}

    def test_status(self, client):
        create_room(client)
        status = client.get("/api/status").json()

        assert status["active_connections"] == 0
        assert status["registry"]["rooms"] == 1
        assert status["sweeper_running"] is True

    def test_metrics(self, client):
        metrics = client.get("/api/metrics").json()
        assert "messages_relayed" in metrics
        assert "stream_latency_ms" in metrics


class TestWebSocketRelay:
    """Test the realtime relay over a real WebSocket endpoint."""

    def test_join_and_relay_between_devices(self, client):
        body = create_room(client)
        room, host = body["room"], body["hostDevice"]
        guest = join_room(client, room["otp"]).json()["device"]
        relay = get_container().get_relay()

        with client.websocket_connect("/ws") as host_ws:
            host_ws.send_json({"type": "join-room", "roomId": room["id"], "deviceId": host["id"]})
            assert wait_for(lambda: relay.get_room_session_counts().get(room["id"]) == 1)

            with client.websocket_connect("/ws") as guest_ws:
                guest_ws.send_json({"type": "join-room", "roomId": room["id"], "deviceId": guest["id"]})

                assert host_ws.receive_json() == {"type": "device-connected", "deviceId": guest["id"]}

                host_ws.send_json({"type": "volume-change", "volume": 10, "isMuted": False})
                assert guest_ws.receive_json() == {
                    "type": "device-update",
                    "deviceId": host["id"],
                    "volume": 10,
                    "isMuted": False,
                }

                # Malformed input is dropped without closing the connection
                guest_ws.send_text("{not json")
                guest_ws.send_json({"type": "audio-sync", "action": "pause", "timestamp": 1.0})
                assert host_ws.receive_json() == {"type": "audio-sync", "action": "pause", "timestamp": 1.0}

            assert host_ws.receive_json() == {"type": "device-disconnected", "deviceId": guest["id"]}

        registry = get_container().get_registry()
        assert registry.get_device(host["id"]).volume == 10
        assert registry.get_device(guest["id"]).is_connected is False

    def test_device_update_over_http_reaches_the_device(self, client):
        body = create_room(client)
        room, host = body["room"], body["hostDevice"]
        guest = join_room(client, room["otp"]).json()["device"]
        relay = get_container().get_relay()

        with client.websocket_connect("/ws") as host_ws, client.websocket_connect("/ws") as guest_ws:
            host_ws.send_json({"type": "join-room", "roomId": room["id"], "deviceId": host["id"]})
            assert wait_for(lambda: relay.get_room_session_counts().get(room["id"]) == 1)
            guest_ws.send_json({"type": "join-room", "roomId": room["id"], "deviceId": guest["id"]})
            assert host_ws.receive_json()["type"] == "device-connected"

            response = client.put(f"/api/devices/{guest['id']}", json={"volume": 20, "isMuted": True})
            assert response.status_code == 200

            expected = {"type": "device-update", "deviceId": guest["id"], "volume": 20, "isMuted": True}
            assert guest_ws.receive_json() == expected
            assert host_ws.receive_json() == expected

            client.put(f"/api/devices/{guest['id']}", json={"positionX": 0.1, "positionY": 0.9})
            assert guest_ws.receive_json() == {
                "type": "position-update",
                "deviceId": guest["id"],
                "x": 0.1,
                "y": 0.9,
                "audioRole": None,
            }

    def test_deleting_room_unbinds_its_sessions(self, client):
        body = create_room(client)
        room, host = body["room"], body["hostDevice"]
        relay = get_container().get_relay()

        with client.websocket_connect("/ws") as host_ws:
            host_ws.send_json({"type": "join-room", "roomId": room["id"], "deviceId": host["id"]})
            assert wait_for(lambda: relay.get_room_session_counts().get(room["id"]) == 1)

            assert client.delete(f"/api/rooms/{room['id']}").json() == {"success": True}

            assert room["id"] not in relay.get_room_session_counts()
            assert relay.get_active_connections() == 1
