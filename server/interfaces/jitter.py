"""Jitter buffer interface for streamed-audio receivers."""

from abc import ABC, abstractmethod
from typing import Any


class IJitterBuffer(ABC):
    """Queues streamed audio segments and schedules gapless playback."""

    @abstractmethod
    def receive_chunk(self, message: dict[str, Any]) -> None:
        """Decode an ``audio-stream-data`` message and enqueue it.

        Args:
            message: Envelope with buffer, timestamp (ms since epoch), quality

        Updates the latency metric and starts draining if idle.
        """
        pass

    @abstractmethod
    def get_buffer_health(self) -> int:
        """Get buffer health.

        Returns:
            min(queue length * 10, 100), in percent
        """
        pass

    @abstractmethod
    def get_connection_quality(self) -> str:
        """Classify the stream by its last measured latency.

        Returns:
            "excellent" (<50ms), "good" (<100ms), "fair" (<200ms), "poor",
            or "disconnected" when no stream is active
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Stop draining and drop queued segments."""
        pass
