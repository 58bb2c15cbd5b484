"""Spatial audio-role assignment for surround (stereo) rooms.

Non-host devices are placed on a circle around the room center and given a
discrete role from the quadrant they land in. The layout is advisory: it is
recomputed for every non-host device whenever the device set changes.
"""

import math
from dataclasses import dataclass
from typing import Sequence

from server.models import AudioRole, Device

CENTER = (0.5, 0.5)
RADIUS = 0.3

# Quadrant bounds on the x axis; between them a device stays "center"
LEFT_BOUND = 0.4
RIGHT_BOUND = 0.6


@dataclass(frozen=True)
class SpatialAssignment:
    """Position and role computed for one device.

    Attributes:
        device_id: Device the assignment applies to
        x: Normalized horizontal position (0-1)
        y: Normalized vertical position (0-1)
        audio_role: Discrete surround role
    """

    device_id: str
    x: float
    y: float
    audio_role: AudioRole


def role_for_position(x: float, y: float) -> AudioRole:
    """Map a normalized position to its surround role."""
    if x < LEFT_BOUND:
        return "rear-left" if y < 0.5 else "front-left"
    if x > RIGHT_BOUND:
        return "rear-right" if y < 0.5 else "front-right"
    return "center"


def assign_positions(devices: Sequence[Device]) -> list[SpatialAssignment]:
    """Compute positions and roles for a room's non-host devices.

    Args:
        devices: Room devices in join order; host devices are skipped

    Returns:
        One assignment per non-host device, in the same order
    """
    participants = [d for d in devices if not d.is_host]
    n = len(participants)
    if n == 0:
        return []

    # A lone participant always plays the center channel
    if n == 1:
        return [SpatialAssignment(participants[0].id, CENTER[0], CENTER[1], "center")]

    step = 2 * math.pi / max(n - 1, 1)
    assignments = []
    for i, device in enumerate(participants):
        angle = i * step
        x = CENTER[0] + RADIUS * math.cos(angle)
        y = CENTER[1] + RADIUS * math.sin(angle)
        assignments.append(SpatialAssignment(device.id, x, y, role_for_position(x, y)))
    return assignments
