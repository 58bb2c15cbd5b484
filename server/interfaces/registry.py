"""Registry interface definitions for rooms and devices."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from server.models import Device, Room


class IRoomRegistry(ABC):
    """Authoritative in-memory store of rooms and devices.

    Lookups return None for absent or expired records, never a default.
    """

    @abstractmethod
    def create_room(self, spec: dict[str, Any], host_device_id: str) -> "Room":
        """Create a room with a fresh OTP and a TTL-bound expiry.

        Args:
            spec: Room fields: name, audio_mode, audio_source
            host_device_id: Id of the host device

        Returns:
            The stored room

        Raises:
            OtpExhaustedError: If no free OTP could be generated
        """
        pass

    @abstractmethod
    def get_room_by_otp(self, otp: str) -> Optional["Room"]:
        """Return the active, unexpired room with this OTP, or None."""
        pass

    @abstractmethod
    def get_room_by_id(self, room_id: str) -> Optional["Room"]:
        """Return the active, unexpired room with this id, or None."""
        pass

    @abstractmethod
    def has_room(self, room_id: str) -> bool:
        """Check that a room is stored and unexpired, active or not."""
        pass

    @abstractmethod
    def update_room(self, room_id: str, **updates: Any) -> Optional["Room"]:
        """Apply a partial update to a room.

        Returns:
            Updated room, or None if the room is absent or expired
        """
        pass

    @abstractmethod
    def delete_room(self, room_id: str) -> bool:
        """Delete a room and every device whose room_id matches.

        Returns:
            True if the room existed
        """
        pass

    @abstractmethod
    def create_device(self, room_id: str, name: str, type: str, **fields: Any) -> "Device":
        """Create a device in an existing room.

        Raises:
            RoomNotFoundError: If the room is absent or expired
            HostConflictError: If a second host is created for the room
        """
        pass

    @abstractmethod
    def get_device(self, device_id: str) -> Optional["Device"]:
        """Return the device with this id, or None."""
        pass

    @abstractmethod
    def get_devices_by_room(self, room_id: str) -> list["Device"]:
        """Return the room's devices in join order."""
        pass

    @abstractmethod
    def update_device(self, device_id: str, **updates: Any) -> Optional["Device"]:
        """Apply a partial update to a device, refreshing last_seen.

        Returns:
            Updated device, or None if the device is absent
        """
        pass

    @abstractmethod
    def remove_device(self, device_id: str) -> bool:
        """Remove a device.

        Returns:
            True if the device existed
        """
        pass

    @abstractmethod
    def sweep_expired(self) -> int:
        """Delete every room with expires_at <= now, cascading to devices.

        Returns:
            Number of rooms deleted
        """
        pass
