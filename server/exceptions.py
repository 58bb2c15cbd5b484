"""Custom exceptions for SurroundSync."""


class SurroundSyncError(Exception):
    """Base exception for all SurroundSync errors."""

    pass


class RegistryError(SurroundSyncError):
    """Error in room/device registry operations."""

    pass


class RoomNotFoundError(RegistryError):
    """A write referenced a room that is absent or expired."""

    pass


class HostConflictError(RegistryError):
    """A room already has its host device."""

    pass


class OtpExhaustedError(RegistryError):
    """No free room code could be generated."""

    pass


class MalformedMessageError(SurroundSyncError):
    """Realtime message with unknown type or missing/invalid fields."""

    pass


class PlaybackError(SurroundSyncError):
    """Error in device-side playback."""

    pass


class StreamError(PlaybackError):
    """Error opening or running an audio capture stream."""

    pass


class ConfigurationError(SurroundSyncError):
    """Error in runtime configuration."""

    pass
