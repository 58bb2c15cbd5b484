"""Thread-safe in-memory registry of rooms and devices.

Rooms live for a fixed TTL and are identified either by id or by a 6-digit
OTP that is unique among active rooms. Deleting a room cascades to its
devices. All mutation paths run under a single registry lock.
"""

import asyncio
import logging
import secrets
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from server.exceptions import HostConflictError, OtpExhaustedError, RoomNotFoundError
from server.interfaces.registry import IRoomRegistry
from server.models import Device, Room

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_otp() -> str:
    """Generate a 6-digit numeric code in [100000, 999999]."""
    return str(100000 + secrets.randbelow(900000))


class RoomRegistry(IRoomRegistry):
    """In-memory room/device store guarded by a reentrant lock."""

    ROOM_SPEC_FIELDS = frozenset({"name", "audio_mode", "audio_source"})
    ROOM_UPDATE_FIELDS = frozenset({"name", "audio_mode", "audio_source", "is_active"})
    DEVICE_CREATE_FIELDS = frozenset(
        {
            "is_host",
            "volume",
            "is_muted",
            "is_connected",
            "position_x",
            "position_y",
            "audio_role",
        }
    )
    DEVICE_UPDATE_FIELDS = frozenset(
        {
            "name",
            "type",
            "volume",
            "is_muted",
            "is_connected",
            "position_x",
            "position_y",
            "audio_role",
        }
    )

    def __init__(
        self,
        room_ttl: timedelta = timedelta(hours=24),
        otp_max_attempts: int = 100,
        default_volume: int = 75,
        clock: Optional[Callable[[], datetime]] = None,
        otp_factory: Optional[Callable[[], str]] = None,
    ):
        """Initialize registry.

        Args:
            room_ttl: Lifetime of a room from creation
            otp_max_attempts: OTP regeneration attempts before giving up
            default_volume: Volume assigned to new devices
            clock: Returns the current UTC time (injectable for tests)
            otp_factory: Returns candidate OTPs (injectable for tests)
        """
        if otp_max_attempts < 1:
            raise ValueError(f"otp_max_attempts must be >= 1, got {otp_max_attempts}")

        self.room_ttl = room_ttl
        self.otp_max_attempts = otp_max_attempts
        self.default_volume = default_volume
        self._clock = clock or _utc_now
        self._otp_factory = otp_factory or generate_otp

        self._rooms: dict[str, Room] = {}
        self._devices: dict[str, Device] = {}
        self.lock = threading.RLock()

        logger.info(f"RoomRegistry initialized (room_ttl={room_ttl})")

    # Room operations

    def create_room(self, spec: dict[str, Any], host_device_id: str) -> Room:
        unknown = set(spec) - self.ROOM_SPEC_FIELDS
        if unknown:
            raise ValueError(f"Unknown room fields: {sorted(unknown)}")
        if not spec.get("name"):
            raise ValueError("Room name is required")

        with self.lock:
            now = self._clock()
            room = Room(
                id=uuid.uuid4().hex,
                otp=self._allocate_otp(now),
                name=spec["name"],
                host_device_id=host_device_id,
                audio_mode=spec.get("audio_mode", "monopoly"),
                audio_source=spec.get("audio_source", "upload"),
                is_active=True,
                created_at=now,
                expires_at=now + self.room_ttl,
            )
            self._rooms[room.id] = room

        logger.info(
            f"Room created: {room.name} (otp={room.otp}, mode={room.audio_mode})",
            extra={"room_id": room.id},
        )
        return room

    def open_room(
        self, spec: dict[str, Any], host_name: str, host_type: str
    ) -> tuple[Room, Device]:
        """Create a room together with its host device.

        Args:
            spec: Room fields: name, audio_mode, audio_source
            host_name: Host device display name
            host_type: Host device type

        Returns:
            Tuple of (room, host device)
        """
        with self.lock:
            room = self.create_room(spec, host_device_id=uuid.uuid4().hex)
            try:
                host = self.create_device(room.id, host_name, host_type, is_host=True)
            except ValueError:
                self._rooms.pop(room.id, None)
                raise
        return room, host

    def get_room_by_otp(self, otp: str) -> Optional[Room]:
        with self.lock:
            now = self._clock()
            for room in self._rooms.values():
                if room.otp == otp and room.is_available(now):
                    return room
        return None

    def get_room_by_id(self, room_id: str) -> Optional[Room]:
        with self.lock:
            room = self._rooms.get(room_id)
            if room is None or not room.is_available(self._clock()):
                return None
            return room

    def has_room(self, room_id: str) -> bool:
        with self.lock:
            room = self._rooms.get(room_id)
            return room is not None and self._clock() < room.expires_at

    def update_room(self, room_id: str, **updates: Any) -> Optional[Room]:
        unknown = set(updates) - self.ROOM_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated on a room: {sorted(unknown)}")

        with self.lock:
            room = self._rooms.get(room_id)
            # Inactive rooms stay updatable so the host can reactivate them
            if room is None or self._clock() >= room.expires_at:
                return None
            updated = replace(room, **updates)
            self._rooms[room_id] = updated

        logger.debug(f"Room updated: {sorted(updates)}", extra={"room_id": room_id})
        return updated

    def delete_room(self, room_id: str) -> bool:
        with self.lock:
            existed = self._rooms.pop(room_id, None) is not None
            orphans = [d.id for d in self._devices.values() if d.room_id == room_id]
            for device_id in orphans:
                del self._devices[device_id]

        if existed:
            logger.info(
                f"Room deleted ({len(orphans)} devices removed)",
                extra={"room_id": room_id},
            )
        return existed

    # Device operations

    def create_device(self, room_id: str, name: str, type: str, **fields: Any) -> Device:
        unknown = set(fields) - self.DEVICE_CREATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown device fields: {sorted(unknown)}")

        with self.lock:
            room = self.get_room_by_id(room_id)
            if room is None:
                raise RoomNotFoundError(f"Room {room_id} not found or expired")

            is_host = bool(fields.pop("is_host", False))
            if is_host:
                if any(d.is_host for d in self._devices.values() if d.room_id == room_id):
                    raise HostConflictError(f"Room {room_id} already has a host device")
                # The host record takes the id the room was created with
                device_id = room.host_device_id
            else:
                device_id = uuid.uuid4().hex

            now = self._clock()
            fields.setdefault("volume", self.default_volume)
            device = Device(
                id=device_id,
                room_id=room_id,
                name=name,
                type=type,
                is_host=is_host,
                connected_at=now,
                last_seen=now,
                **fields,
            )
            self._devices[device.id] = device

        logger.info(
            f"Device created: {name} ({type}, host={is_host})",
            extra={"room_id": room_id, "device_id": device.id},
        )
        return device

    def get_device(self, device_id: str) -> Optional[Device]:
        with self.lock:
            return self._devices.get(device_id)

    def get_devices_by_room(self, room_id: str) -> list[Device]:
        with self.lock:
            return [d for d in self._devices.values() if d.room_id == room_id]

    def update_device(self, device_id: str, **updates: Any) -> Optional[Device]:
        unknown = set(updates) - self.DEVICE_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated on a device: {sorted(unknown)}")

        with self.lock:
            device = self._devices.get(device_id)
            if device is None:
                return None
            updated = replace(device, last_seen=self._clock(), **updates)
            self._devices[device_id] = updated

        logger.debug(
            f"Device updated: {sorted(updates)}",
            extra={"room_id": updated.room_id, "device_id": device_id},
        )
        return updated

    def remove_device(self, device_id: str) -> bool:
        with self.lock:
            device = self._devices.pop(device_id, None)

        if device is not None:
            logger.info(
                "Device removed",
                extra={"room_id": device.room_id, "device_id": device_id},
            )
        return device is not None

    # Maintenance

    def sweep_expired(self) -> int:
        with self.lock:
            now = self._clock()
            expired = [r.id for r in self._rooms.values() if r.expires_at <= now]
            for room_id in expired:
                self.delete_room(room_id)

        if expired:
            logger.info(f"Swept {len(expired)} expired rooms")
        return len(expired)

    def get_stats(self) -> dict[str, int]:
        """Get registry occupancy counts.

        Returns:
            Dictionary with stored rooms, available rooms and devices
        """
        with self.lock:
            now = self._clock()
            return {
                "rooms": len(self._rooms),
                "available_rooms": sum(1 for r in self._rooms.values() if r.is_available(now)),
                "devices": len(self._devices),
                "connected_devices": sum(1 for d in self._devices.values() if d.is_connected),
            }

    def _allocate_otp(self, now: datetime) -> str:
        """Draw OTPs until one is free among active rooms.

        Must be called with the lock held.
        """
        in_use = {r.otp for r in self._rooms.values() if r.is_available(now)}
        for attempt in range(1, self.otp_max_attempts + 1):
            otp = self._otp_factory()
            if otp not in in_use:
                if attempt > 1:
                    logger.debug(f"OTP allocated after {attempt} attempts")
                return otp
        raise OtpExhaustedError(
            f"No free OTP after {self.otp_max_attempts} attempts "
            f"({len(in_use)} active rooms)"
        )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"RoomRegistry(rooms={len(self._rooms)}, devices={len(self._devices)})"


class RegistrySweeper:
    """Runs the registry expiration sweep on a fixed interval."""

    def __init__(self, registry: IRoomRegistry, interval_sec: float = 300.0):
        """Initialize sweeper.

        Args:
            registry: Registry to sweep
            interval_sec: Seconds between sweeps
        """
        self.registry = registry
        self.interval_sec = interval_sec
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the periodic sweep loop."""
        if self._running:
            logger.warning("Registry sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(f"Registry sweeper started (interval={self.interval_sec:.0f}s)")

    async def _sweep_loop(self) -> None:
        """Internal sweep loop."""
        try:
            while self._running:
                await asyncio.sleep(self.interval_sec)
                try:
                    self.registry.sweep_expired()
                except Exception as e:
                    logger.error(f"Registry sweep failed: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.info("Registry sweeper cancelled")

    async def stop(self) -> None:
        """Stop the periodic sweep loop."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Registry sweeper stopped")

    def is_running(self) -> bool:
        """Check if the sweep loop is running."""
        return self._running
