"""Integration tests for realtime relay binding and room fan-out."""

import asyncio
import json

import pytest
import pytest_asyncio

from server.metrics import RelayMetrics
from server.registry import RoomRegistry
from server.relay import RoomRelay


class FakeWebSocket:
    """Connection stand-in collecting sent envelopes."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("socket closed")
        self.sent.append(json.loads(data))

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


def join(room_id, device_id) -> str:
    return json.dumps({"type": "join-room", "roomId": room_id, "deviceId": device_id})


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest.fixture
def metrics():
    return RelayMetrics()


@pytest.fixture
def relay(registry, metrics):
    return RoomRelay(registry, metrics=metrics)


async def bind(relay, room_id, device_id, ws=None):
    ws = ws or FakeWebSocket()
    session = await relay.open_session(ws)
    await relay.handle_raw(session, join(room_id, device_id))
    return session, ws


@pytest_asyncio.fixture
async def two_rooms(registry, relay):
    """Room A with three bound sessions, room B with one."""
    room_a, host_a = registry.open_room({"name": "A"}, "Host A", "mobile")
    guests = [registry.create_device(room_a.id, f"Guest {i}", "tablet") for i in range(2)]
    room_b, host_b = registry.open_room({"name": "B"}, "Host B", "desktop")

    a1 = await bind(relay, room_a.id, host_a.id)
    a2 = await bind(relay, room_a.id, guests[0].id)
    a3 = await bind(relay, room_a.id, guests[1].id)
    b1 = await bind(relay, room_b.id, host_b.id)

    for _, ws in (a1, a2, a3, b1):
        ws.sent.clear()

    return {
        "room_a": room_a,
        "room_b": room_b,
        "devices": [host_a, guests[0], guests[1], host_b],
        "sessions": [a1, a2, a3, b1],
    }


class TestFanOut:
    """Test that relayed messages reach exactly the other sessions in the room."""

    @pytest.mark.asyncio
    async def test_message_reaches_room_peers_only(self, relay, two_rooms):
        (a1, ws1), (_, ws2), (_, ws3), (_, wsb) = two_rooms["sessions"]

        await relay.handle_raw(
            a1, json.dumps({"type": "current-song-update", "title": "Song", "artist": "Band"})
        )

        assert ws1.sent == []
        assert wsb.sent == []
        for ws in (ws2, ws3):
            assert ws.sent == [{"type": "current-song-update", "title": "Song", "artist": "Band"}]

    @pytest.mark.asyncio
    async def test_audio_sync_relayed_verbatim(self, relay, two_rooms):
        (a1, ws1), (_, ws2), _, _ = two_rooms["sessions"]
        message = {"type": "audio-sync", "action": "play", "timestamp": 1700000000100.0, "position": 42.0}

        await relay.handle_raw(a1, json.dumps(message))

        assert ws2.sent == [message]
        assert ws1.sent == []

    @pytest.mark.asyncio
    async def test_per_sender_order_is_preserved(self, relay, two_rooms):
        (a1, _), (_, ws2), _, _ = two_rooms["sessions"]

        for position in range(10):
            await relay.handle_raw(
                a1,
                json.dumps({"type": "audio-sync", "action": "seek", "timestamp": 1.0, "position": position}),
            )

        assert [m["position"] for m in ws2.sent] == list(range(10))

    @pytest.mark.asyncio
    async def test_broken_recipient_does_not_abort_fanout(self, relay, metrics, two_rooms):
        (a1, _), (a2, ws2), (a3, ws3), _ = two_rooms["sessions"]
        ws2.fail = True

        delivered = await relay.broadcast(two_rooms["room_a"].id, {"type": "mode-change", "mode": "monopoly"}, exclude=a1)

        assert delivered == 1
        assert ws3.types() == ["mode-change"]
        assert metrics.send_failures == 1
        assert a2.session_id not in relay.rooms[two_rooms["room_a"].id]

    @pytest.mark.asyncio
    async def test_concurrent_senders_do_not_drop_recipients(self, relay, two_rooms):
        (a1, ws1), (a2, ws2), (a3, ws3), _ = two_rooms["sessions"]

        def song(i):
            return json.dumps({"type": "current-song-update", "title": str(i), "artist": "x"})

        await asyncio.gather(*(relay.handle_raw(s, song(i)) for i, s in enumerate((a1, a2, a3))))

        assert sorted(m["title"] for m in ws1.sent) == ["1", "2"]
        assert sorted(m["title"] for m in ws2.sent) == ["0", "2"]
        assert sorted(m["title"] for m in ws3.sent) == ["0", "1"]


class TestBinding:
    """Test join, disconnect and durable updates."""

    @pytest.mark.asyncio
    async def test_join_announces_to_existing_peers(self, registry, relay):
        room, host = registry.open_room({"name": "A"}, "Host", "mobile")
        guest = registry.create_device(room.id, "Guest", "tablet")

        _, host_ws = await bind(relay, room.id, host.id)
        _, guest_ws = await bind(relay, room.id, guest.id)

        assert host_ws.sent == [{"type": "device-connected", "deviceId": guest.id}]
        assert guest_ws.sent == []
        assert relay.get_room_session_counts() == {room.id: 2}

    @pytest.mark.asyncio
    async def test_join_rejected_for_foreign_device(self, registry, relay):
        room_a, _ = registry.open_room({"name": "A"}, "Host A", "mobile")
        _, host_b = registry.open_room({"name": "B"}, "Host B", "mobile")

        session, _ = await bind(relay, room_a.id, host_b.id)

        assert session.is_bound is False
        assert relay.get_room_session_counts() == {}

    @pytest.mark.asyncio
    async def test_unbound_session_messages_are_ignored(self, registry, relay):
        room, host = registry.open_room({"name": "A"}, "Host", "mobile")
        _, host_ws = await bind(relay, room.id, host.id)

        stranger = await relay.open_session(FakeWebSocket())
        await relay.handle_raw(stranger, json.dumps({"type": "mode-change", "mode": "stereo"}))

        assert host_ws.sent == []
        assert registry.get_room_by_id(room.id).audio_mode == "monopoly"

    @pytest.mark.asyncio
    async def test_malformed_message_is_dropped(self, relay, metrics, two_rooms):
        (a1, _), (_, ws2), _, _ = two_rooms["sessions"]

        await relay.handle_raw(a1, "{broken")
        await relay.handle_raw(a1, json.dumps({"type": "volume-change", "volume": 500, "isMuted": False}))

        assert ws2.sent == []
        assert metrics.malformed_messages == 2
        assert a1.is_bound

    @pytest.mark.asyncio
    async def test_non_finite_timestamp_is_not_relayed(self, relay, metrics, two_rooms):
        (a1, _), (_, ws2), (_, ws3), _ = two_rooms["sessions"]

        await relay.handle_raw(a1, '{"type": "audio-sync", "action": "pause", "timestamp": NaN}')
        await relay.handle_raw(
            a1,
            '{"type": "audio-stream-data", "buffer": "AAAAAA==", "timestamp": Infinity, "quality": "low"}',
        )

        assert ws2.sent == []
        assert ws3.sent == []
        assert metrics.malformed_messages == 2

    @pytest.mark.asyncio
    async def test_disconnect_marks_device_and_notifies_room(self, registry, relay, two_rooms):
        (_, ws1), (a2, _), (_, ws3), (_, wsb) = two_rooms["sessions"]
        guest = two_rooms["devices"][1]

        await relay.close_session(a2)

        notice = {"type": "device-disconnected", "deviceId": guest.id}
        assert ws1.sent == [notice]
        assert ws3.sent == [notice]
        assert wsb.sent == []

        stored = registry.get_device(guest.id)
        assert stored is not None
        assert stored.is_connected is False

    @pytest.mark.asyncio
    async def test_volume_change_is_persisted_and_relayed(self, registry, relay, two_rooms):
        (_, ws1), (a2, ws2), _, _ = two_rooms["sessions"]
        guest = two_rooms["devices"][1]

        await relay.handle_raw(a2, json.dumps({"type": "volume-change", "volume": 20, "isMuted": True}))

        assert registry.get_device(guest.id).volume == 20
        assert registry.get_device(guest.id).is_muted is True
        assert ws1.sent == [{"type": "device-update", "deviceId": guest.id, "volume": 20, "isMuted": True}]
        assert ws2.sent == []

    @pytest.mark.asyncio
    async def test_device_position_is_persisted(self, registry, relay, two_rooms):
        (_, ws1), (a2, _), _, _ = two_rooms["sessions"]
        guest = two_rooms["devices"][1]

        await relay.handle_raw(
            a2, json.dumps({"type": "device-position", "x": 0.1, "y": 0.9, "audioRole": "front-left"})
        )

        stored = registry.get_device(guest.id)
        assert (stored.position_x, stored.position_y, stored.audio_role) == (0.1, 0.9, "front-left")
        assert ws1.sent == [
            {"type": "position-update", "deviceId": guest.id, "x": 0.1, "y": 0.9, "audioRole": "front-left"}
        ]

    @pytest.mark.asyncio
    async def test_mode_change_to_stereo_rebalances(self, registry, relay, two_rooms):
        (a1, ws1), (_, ws2), (_, ws3), _ = two_rooms["sessions"]
        room_id = two_rooms["room_a"].id
        guests = two_rooms["devices"][1:3]

        await relay.handle_raw(a1, json.dumps({"type": "mode-change", "mode": "stereo"}))

        assert registry.get_room_by_id(room_id).audio_mode == "stereo"
        assert ws2.types()[0] == "mode-change"
        assert ws1.types() == ["position-update", "position-update"]

        for guest in guests:
            assert registry.get_device(guest.id).audio_role is not None
        assert registry.get_device(two_rooms["devices"][0].id).audio_role is None

    @pytest.mark.asyncio
    async def test_rejoin_moves_session(self, registry, relay):
        room_a, host_a = registry.open_room({"name": "A"}, "Host A", "mobile")
        guest = registry.create_device(room_a.id, "Guest", "tablet")
        room_b, host_b = registry.open_room({"name": "B"}, "Host B", "mobile")

        _, guest_ws = await bind(relay, room_a.id, guest.id)
        session, _ = await bind(relay, room_a.id, host_a.id)
        guest_ws.sent.clear()

        await relay.handle_raw(session, join(room_b.id, host_b.id))

        assert session.room_id == room_b.id
        assert guest_ws.sent == [{"type": "device-disconnected", "deviceId": host_a.id}]
        assert registry.get_device(host_a.id).is_connected is False
        assert relay.get_room_session_counts() == {room_a.id: 1, room_b.id: 1}


class TestDeletedRooms:
    """Test that sessions of a deleted or expired room stop relaying."""

    @pytest.mark.asyncio
    async def test_message_after_delete_unbinds_room(self, registry, relay, two_rooms):
        (a1, _), (a2, ws2), (a3, ws3), (b1, wsb) = two_rooms["sessions"]
        room_a, room_b = two_rooms["room_a"], two_rooms["room_b"]

        registry.delete_room(room_a.id)
        await relay.handle_raw(
            a1, json.dumps({"type": "audio-sync", "action": "play", "timestamp": 1700000000000.0})
        )

        assert ws2.sent == []
        assert ws3.sent == []
        assert not any(s.is_bound for s in (a1, a2, a3))
        assert relay.get_room_session_counts() == {room_b.id: 1}
        assert b1.is_bound

    @pytest.mark.asyncio
    async def test_drop_room_unbinds_sessions(self, registry, relay, two_rooms):
        (a1, _), (_, ws2), _, (_, wsb) = two_rooms["sessions"]
        room_a = two_rooms["room_a"]

        registry.delete_room(room_a.id)
        assert await relay.drop_room(room_a.id) == 3
        assert room_a.id not in relay.get_room_session_counts()

        await relay.handle_raw(
            a1, json.dumps({"type": "current-song-update", "title": "Song", "artist": "Band"})
        )
        assert ws2.sent == []
        assert wsb.sent == []
        assert relay.get_active_connections() == 4

    @pytest.mark.asyncio
    async def test_inactive_room_keeps_relaying(self, registry, relay, two_rooms):
        (a1, _), (_, ws2), _, _ = two_rooms["sessions"]
        room_a = two_rooms["room_a"]

        registry.update_room(room_a.id, is_active=False)
        await relay.handle_raw(
            a1, json.dumps({"type": "current-song-update", "title": "Song", "artist": "Band"})
        )

        assert ws2.types() == ["current-song-update"]
