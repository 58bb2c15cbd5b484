"""HTTP boundary for room and device records.

Thin request/response wrappers over the registry; absence maps to 404.
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException

from server.di_container import get_container
from server.exceptions import OtpExhaustedError
from server.schemas import (
    CreateRoomRequest,
    JoinRoomRequest,
    UpdateDeviceRequest,
    UpdateRoomRequest,
    device_update,
    position_update,
)

logger = logging.getLogger(__name__)

rooms_router = APIRouter(prefix="/api", tags=["rooms"])


@rooms_router.post("/rooms")
async def create_room(request: CreateRoomRequest) -> dict[str, Any]:
    """Create a room together with its host device."""
    registry = get_container().get_registry()
    try:
        room, host = registry.open_room(
            {
                "name": request.name,
                "audio_mode": request.audio_mode,
                "audio_source": request.audio_source,
            },
            host_name=request.host_device_name,
            host_type=request.host_device_type,
        )
    except OtpExhaustedError as e:
        logger.error(f"Room creation failed: {e}")
        raise HTTPException(status_code=503, detail="No room code available")

    return {"room": room.to_dict(), "hostDevice": host.to_dict()}


@rooms_router.post("/rooms/join")
async def join_room(request: JoinRoomRequest) -> dict[str, Any]:
    """Join the room identified by an OTP as a new participant device."""
    container = get_container()
    registry = container.get_registry()

    room = registry.get_room_by_otp(request.otp)
    if room is None:
        logger.warning(f"Join failed: no active room for otp {request.otp}")
        raise HTTPException(status_code=404, detail="Room not found or expired")

    device = registry.create_device(room.id, request.device_name, request.device_type)
    await container.get_relay().rebalance(room.id)

    # Re-read so a fresh spatial assignment is included
    device = registry.get_device(device.id) or device
    return {"room": room.to_dict(), "device": device.to_dict()}


@rooms_router.get("/rooms/{room_id}")
async def get_room(room_id: str) -> dict[str, Any]:
    """Get a room and its devices."""
    registry = get_container().get_registry()
    room = registry.get_room_by_id(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")

    return {
        "room": room.to_dict(),
        "devices": [d.to_dict() for d in registry.get_devices_by_room(room_id)],
    }


@rooms_router.put("/rooms/{room_id}")
async def update_room(room_id: str, request: UpdateRoomRequest) -> dict[str, Any]:
    """Update a room's audio mode or activity flag."""
    container = get_container()
    updates = request.model_dump(exclude_none=True)
    room = container.get_registry().update_room(room_id, **updates)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")

    if "audio_mode" in updates:
        await container.get_relay().rebalance(room_id)
    return room.to_dict()


@rooms_router.delete("/rooms/{room_id}")
async def delete_room(room_id: str) -> dict[str, bool]:
    """Delete a room and all of its devices."""
    container = get_container()
    if not container.get_registry().delete_room(room_id):
        raise HTTPException(status_code=404, detail="Room not found")

    await container.get_relay().drop_room(room_id)
    return {"success": True}


@rooms_router.put("/devices/{device_id}")
async def update_device(device_id: str, request: UpdateDeviceRequest) -> dict[str, Any]:
    """Update a device's volume, mute flag or position; the room is notified."""
    container = get_container()
    updates = request.model_dump(exclude_none=True)
    device = container.get_registry().update_device(device_id, **updates)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")

    relay = container.get_relay()
    if "volume" in updates or "is_muted" in updates:
        await relay.broadcast(
            device.room_id, device_update(device.id, device.volume, device.is_muted)
        )
    has_position = device.position_x is not None and device.position_y is not None
    if has_position and ("position_x" in updates or "position_y" in updates):
        await relay.broadcast(
            device.room_id,
            position_update(device.id, device.position_x, device.position_y, device.audio_role),
        )
    return device.to_dict()


@rooms_router.delete("/devices/{device_id}")
async def remove_device(device_id: str) -> dict[str, bool]:
    """Remove a device; stereo rooms are rebalanced."""
    container = get_container()
    registry = container.get_registry()

    device = registry.get_device(device_id)
    if device is None or not registry.remove_device(device_id):
        raise HTTPException(status_code=404, detail="Device not found")

    await container.get_relay().rebalance(device.room_id)
    return {"success": True}
