"""Room and device records held by the registry."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Optional

AudioMode = Literal["monopoly", "stereo"]
AudioSource = Literal["upload", "external-catalog"]
DeviceType = Literal["mobile", "tablet", "desktop"]
AudioRole = Literal["center", "front-left", "front-right", "rear-left", "rear-right"]

AUDIO_MODES = ("monopoly", "stereo")
AUDIO_SOURCES = ("upload", "external-catalog")
DEVICE_TYPES = ("mobile", "tablet", "desktop")
AUDIO_ROLES = ("center", "front-left", "front-right", "rear-left", "rear-right")


@dataclass
class Room:
    """A listening room.

    Attributes:
        id: Opaque unique identifier
        otp: 6-digit numeric join code, unique among active rooms
        name: Display name
        host_device_id: Id of the host device (back-reference)
        audio_mode: "monopoly" (identical audio) or "stereo" (spatial roles)
        audio_source: "upload" or "external-catalog"
        is_active: False once the host deactivates the room
        created_at: Creation time (UTC)
        expires_at: created_at + room TTL
    """

    id: str
    otp: str
    name: str
    host_device_id: str
    audio_mode: AudioMode
    audio_source: AudioSource
    is_active: bool
    created_at: datetime
    expires_at: datetime

    def __post_init__(self) -> None:
        """Validate fields after initialization."""
        if len(self.otp) != 6 or not self.otp.isdigit():
            raise ValueError(f"Invalid otp: {self.otp!r} (must be 6 digits)")
        if self.audio_mode not in AUDIO_MODES:
            raise ValueError(
                f"Invalid audio mode: {self.audio_mode} (must be one of {AUDIO_MODES})"
            )
        if self.audio_source not in AUDIO_SOURCES:
            raise ValueError(
                f"Invalid audio source: {self.audio_source} "
                f"(must be one of {AUDIO_SOURCES})"
            )

    def is_available(self, now: datetime) -> bool:
        """Check whether the room is logically present at ``now``."""
        return self.is_active and now < self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary (camelCase keys)."""
        return {
            "id": self.id,
            "otp": self.otp,
            "name": self.name,
            "hostDeviceId": self.host_device_id,
            "audioMode": self.audio_mode,
            "audioSource": self.audio_source,
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
        }


@dataclass
class Device:
    """A device participating in a room.

    Attributes:
        id: Opaque unique identifier
        room_id: Owning room
        name: Display name
        type: "mobile", "tablet" or "desktop"
        is_host: True for the single host device of the room
        position_x: Normalized 0-1 position, None until assigned
        position_y: Normalized 0-1 position, None until assigned
        audio_role: Spatial role, None until assigned
        volume: 0-100
        is_muted: Mute flag
        is_connected: Realtime connection flag
        connected_at: Creation time (UTC)
        last_seen: Time of the last mutation (UTC)
    """

    id: str
    room_id: str
    name: str
    type: DeviceType
    is_host: bool
    connected_at: datetime
    last_seen: datetime
    volume: int = 75
    is_muted: bool = False
    is_connected: bool = True
    position_x: Optional[float] = None
    position_y: Optional[float] = None
    audio_role: Optional[AudioRole] = None

    def __post_init__(self) -> None:
        """Validate fields after initialization."""
        if self.type not in DEVICE_TYPES:
            raise ValueError(
                f"Invalid device type: {self.type} (must be one of {DEVICE_TYPES})"
            )
        if not (0 <= self.volume <= 100):
            raise ValueError(f"Invalid volume: {self.volume} (must be 0-100)")
        for axis, value in (("x", self.position_x), ("y", self.position_y)):
            if value is not None and not (0.0 <= value <= 1.0):
                raise ValueError(f"Invalid position {axis}: {value} (must be 0.0-1.0)")
        if self.audio_role is not None and self.audio_role not in AUDIO_ROLES:
            raise ValueError(
                f"Invalid audio role: {self.audio_role} (must be one of {AUDIO_ROLES})"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary (camelCase keys)."""
        return {
            "id": self.id,
            "roomId": self.room_id,
            "name": self.name,
            "type": self.type,
            "isHost": self.is_host,
            "positionX": self.position_x,
            "positionY": self.position_y,
            "audioRole": self.audio_role,
            "volume": self.volume,
            "isMuted": self.is_muted,
            "isConnected": self.is_connected,
            "connectedAt": self.connected_at.isoformat(),
            "lastSeen": self.last_seen.isoformat(),
        }
