"""Play-head model of a loaded track."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from server.interfaces.playback import IPlaybackTarget

logger = logging.getLogger(__name__)


@dataclass
class Track:
    """Metadata of a loaded track.

    Attributes:
        title: Track title
        artist: Track artist
        duration: Length in seconds
        thumbnail: Optional artwork URL
    """

    title: str
    artist: str
    duration: float
    thumbnail: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate fields after initialization."""
        if self.duration <= 0:
            raise ValueError(f"Invalid duration: {self.duration} (must be > 0)")

    def to_song_update(self) -> dict[str, Any]:
        """Convert to a ``current-song-update`` envelope."""
        message: dict[str, Any] = {
            "type": "current-song-update",
            "title": self.title,
            "artist": self.artist,
        }
        if self.thumbnail is not None:
            message["thumbnail"] = self.thumbnail
        return message


class TrackPlayer(IPlaybackTarget):
    """Tracks the play head of one track against a monotonic clock.

    Position is anchored at the last play/seek and advances with the clock
    while playing, stopping at the end of the track.
    """

    def __init__(
        self,
        track: Track,
        volume: int = 75,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize player.

        Args:
            track: Loaded track
            volume: Initial volume (0-100)
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self.track = track
        self._clock = clock or time.monotonic
        self._playing = False
        self._anchor_position = 0.0
        self._anchor_time = self._clock()
        self.volume = 0
        self.is_muted = False
        self.set_volume(volume)

    @property
    def is_playing(self) -> bool:
        """Whether the play head is advancing."""
        if self._playing and self.get_position() >= self.track.duration:
            self._playing = False
            self._anchor_position = self.track.duration
        return self._playing

    @property
    def gain(self) -> float:
        """Output gain (0.0-1.0) after volume and mute."""
        return 0.0 if self.is_muted else self.volume / 100.0

    def play(self) -> None:
        if self._playing:
            return
        self._anchor_time = self._clock()
        self._playing = True
        logger.debug(f"Playing '{self.track.title}' from {self._anchor_position:.2f}s")

    def pause(self) -> None:
        if not self._playing:
            return
        self._anchor_position = self.get_position()
        self._playing = False
        logger.debug(f"Paused '{self.track.title}' at {self._anchor_position:.2f}s")

    def seek(self, position: float) -> None:
        self._anchor_position = min(max(position, 0.0), self.track.duration)
        self._anchor_time = self._clock()
        logger.debug(f"Seeked '{self.track.title}' to {self._anchor_position:.2f}s")

    def get_position(self) -> float:
        if not self._playing:
            return self._anchor_position
        elapsed = self._clock() - self._anchor_time
        return min(self._anchor_position + elapsed, self.track.duration)

    def set_volume(self, volume: int) -> None:
        """Set volume (0-100)."""
        if not (0 <= volume <= 100):
            raise ValueError(f"Invalid volume: {volume} (must be 0-100)")
        self.volume = volume

    def set_muted(self, muted: bool) -> None:
        self.is_muted = muted

    def get_state(self) -> dict[str, Any]:
        """Get a snapshot of the player for display."""
        return {
            "title": self.track.title,
            "artist": self.track.artist,
            "duration": self.track.duration,
            "position": self.get_position(),
            "is_playing": self.is_playing,
            "volume": self.volume,
            "is_muted": self.is_muted,
        }
