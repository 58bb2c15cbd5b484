"""Device-side playback interfaces: playback targets and audio devices."""

from abc import ABC, abstractmethod
from typing import Callable

import numpy as np


class IPlaybackTarget(ABC):
    """A loaded track that synchronized actions are applied to."""

    @abstractmethod
    def play(self) -> None:
        """Start or resume playback from the current position."""
        pass

    @abstractmethod
    def pause(self) -> None:
        """Stop playback, keeping the current position."""
        pass

    @abstractmethod
    def seek(self, position: float) -> None:
        """Move the play head without changing play/pause state.

        Args:
            position: Target position in seconds
        """
        pass

    @abstractmethod
    def get_position(self) -> float:
        """Get the current play head position in seconds."""
        pass


class IAudioOutput(ABC):
    """Audio sink with a monotonic clock for sample-scheduled playback."""

    @property
    @abstractmethod
    def current_time(self) -> float:
        """Current audio clock time in seconds (monotonic)."""
        pass

    @abstractmethod
    def schedule(self, samples: np.ndarray, sample_rate: int, start_time: float) -> None:
        """Schedule mono float32 samples to start at ``start_time``.

        Args:
            samples: Mono PCM, dtype float32, range [-1.0, 1.0]
            sample_rate: Sample rate of ``samples`` in Hz
            start_time: Audio clock time at which playback begins
        """
        pass

    @abstractmethod
    def set_gain(self, gain: float) -> None:
        """Set output gain (0.0-1.0)."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the device."""
        pass


FrameCallback = Callable[[np.ndarray], None]


class IAudioSource(ABC):
    """Audio capture device producing fixed-size mono frames."""

    @abstractmethod
    def start(self, sample_rate: int, frame_size: int, on_frame: FrameCallback) -> None:
        """Start capturing.

        Args:
            sample_rate: Capture rate in Hz
            frame_size: Samples per frame
            on_frame: Called with each mono float32 frame (may run on a
                device thread)

        Raises:
            StreamError: If the device cannot be opened
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop capturing."""
        pass
