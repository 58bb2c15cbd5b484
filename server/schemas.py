"""Wire schemas for the realtime relay and the HTTP boundary.

Realtime envelopes are JSON objects discriminated on ``type``; field names on
the wire are camelCase.
"""

import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from server.exceptions import MalformedMessageError
from server.models import AudioMode, AudioRole, AudioSource, DeviceType

StreamQualityName = Literal["low", "medium", "high"]
SyncAction = Literal["play", "pause", "seek"]


class WireModel(BaseModel):
    """Base model accepting both camelCase aliases and field names.

    Float fields reject NaN and infinities.
    """

    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


# Client -> relay messages


class JoinRoomMessage(WireModel):
    type: Literal["join-room"] = "join-room"
    room_id: str = Field(alias="roomId", min_length=1)
    device_id: str = Field(alias="deviceId", min_length=1)


class AudioSyncMessage(WireModel):
    """Playback command taking effect at ``timestamp`` (ms since epoch)."""

    type: Literal["audio-sync"] = "audio-sync"
    action: SyncAction
    timestamp: float
    position: Optional[float] = Field(default=None, ge=0.0)


class DevicePositionMessage(WireModel):
    type: Literal["device-position"] = "device-position"
    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)
    audio_role: Optional[AudioRole] = Field(default=None, alias="audioRole")


class VolumeChangeMessage(WireModel):
    type: Literal["volume-change"] = "volume-change"
    volume: int = Field(ge=0, le=100)
    is_muted: bool = Field(alias="isMuted")


class ModeChangeMessage(WireModel):
    type: Literal["mode-change"] = "mode-change"
    mode: AudioMode


class CurrentSongUpdateMessage(WireModel):
    type: Literal["current-song-update"] = "current-song-update"
    title: str
    artist: str
    thumbnail: Optional[str] = None


class AudioStreamDataMessage(WireModel):
    """One captured audio frame.

    ``buffer`` holds float32 little-endian mono PCM, either base64-encoded or
    as a list of byte values.
    """

    type: Literal["audio-stream-data"] = "audio-stream-data"
    buffer: Union[str, list[Annotated[int, Field(ge=0, le=255)]]]
    timestamp: float
    quality: StreamQualityName


class StreamStartedMessage(WireModel):
    type: Literal["stream-started"] = "stream-started"
    quality: Optional[StreamQualityName] = None


class StreamStoppedMessage(WireModel):
    type: Literal["stream-stopped"] = "stream-stopped"
    quality: Optional[StreamQualityName] = None


ClientMessage = Annotated[
    Union[
        JoinRoomMessage,
        AudioSyncMessage,
        DevicePositionMessage,
        VolumeChangeMessage,
        ModeChangeMessage,
        CurrentSongUpdateMessage,
        AudioStreamDataMessage,
        StreamStartedMessage,
        StreamStoppedMessage,
    ],
    Field(discriminator="type"),
]

_client_message_adapter: TypeAdapter = TypeAdapter(ClientMessage)

CLIENT_MESSAGE_TYPES = frozenset(
    {
        "join-room",
        "audio-sync",
        "device-position",
        "volume-change",
        "mode-change",
        "current-song-update",
        "audio-stream-data",
        "stream-started",
        "stream-stopped",
    }
)


def parse_client_message(raw: Union[str, bytes, dict[str, Any]]) -> ClientMessage:
    """Parse and validate a realtime message from a device.

    Args:
        raw: JSON text or an already-decoded envelope

    Returns:
        Typed message model

    Raises:
        MalformedMessageError: Invalid JSON, unknown type or invalid fields
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedMessageError(f"Invalid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise MalformedMessageError(f"Envelope must be an object, got {type(raw).__name__}")

    msg_type = raw.get("type")
    if msg_type not in CLIENT_MESSAGE_TYPES:
        raise MalformedMessageError(f"Unknown message type: {msg_type!r}")

    try:
        return _client_message_adapter.validate_python(raw)
    except ValidationError as e:
        raise MalformedMessageError(
            f"Invalid {msg_type} message: {e.error_count()} field error(s)"
        ) from e


# Relay -> client messages


def device_connected(device_id: str) -> dict[str, Any]:
    return {"type": "device-connected", "deviceId": device_id}


def device_disconnected(device_id: str) -> dict[str, Any]:
    return {"type": "device-disconnected", "deviceId": device_id}


def position_update(
    device_id: str, x: float, y: float, audio_role: Optional[str]
) -> dict[str, Any]:
    return {
        "type": "position-update",
        "deviceId": device_id,
        "x": x,
        "y": y,
        "audioRole": audio_role,
    }


def device_update(device_id: str, volume: int, is_muted: bool) -> dict[str, Any]:
    return {
        "type": "device-update",
        "deviceId": device_id,
        "volume": volume,
        "isMuted": is_muted,
    }


# HTTP boundary bodies


class CreateRoomRequest(WireModel):
    name: str = Field(min_length=1)
    audio_mode: AudioMode = Field(default="monopoly", alias="audioMode")
    audio_source: AudioSource = Field(default="upload", alias="audioSource")
    host_device_name: str = Field(alias="hostDeviceName", min_length=1)
    host_device_type: DeviceType = Field(alias="hostDeviceType")


class JoinRoomRequest(WireModel):
    otp: str = Field(pattern=r"^\d{6}$")
    device_name: str = Field(alias="deviceName", min_length=1)
    device_type: DeviceType = Field(alias="deviceType")


class UpdateRoomRequest(WireModel):
    audio_mode: Optional[AudioMode] = Field(default=None, alias="audioMode")
    is_active: Optional[bool] = Field(default=None, alias="isActive")


class UpdateDeviceRequest(WireModel):
    volume: Optional[int] = Field(default=None, ge=0, le=100)
    is_muted: Optional[bool] = Field(default=None, alias="isMuted")
    position_x: Optional[float] = Field(default=None, ge=0.0, le=1.0, alias="positionX")
    position_y: Optional[float] = Field(default=None, ge=0.0, le=1.0, alias="positionY")
