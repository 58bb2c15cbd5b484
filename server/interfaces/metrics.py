"""Metrics and monitoring interface definitions."""

from abc import ABC, abstractmethod
from typing import Any


class IMetricsCollector(ABC):
    """Collects and aggregates relay and playback metrics."""

    @abstractmethod
    def record_stream_latency(self, latency_ms: float) -> None:
        """Record the age of a streamed audio chunk on arrival.

        Args:
            latency_ms: now - chunk timestamp, in milliseconds
        """
        pass

    @abstractmethod
    def increment_relayed(self, recipients: int) -> None:
        """Count one fan-out delivered to ``recipients`` sessions."""
        pass

    @abstractmethod
    def increment_malformed_message(self) -> None:
        """Increment malformed message counter."""
        pass

    @abstractmethod
    def increment_send_failure(self) -> None:
        """Increment per-recipient send failure counter."""
        pass

    @abstractmethod
    def increment_buffer_underrun(self) -> None:
        """Increment jitter buffer underrun counter."""
        pass

    @abstractmethod
    def increment_disconnect(self) -> None:
        """Increment session disconnect counter."""
        pass

    @abstractmethod
    def get_snapshot(self) -> dict[str, Any]:
        """Get current metrics snapshot.

        Returns:
            Dictionary with metrics data:
            - stream_latency_ms: {avg, p50, p95, p99, samples}
            - messages_relayed: int
            - deliveries: int
            - malformed_messages: int
            - send_failures: int
            - buffer_underruns: int
            - disconnects: int
            - memory_usage_mb: float
            - uptime_sec: float
            - timestamp: ISO 8601 string
        """
        pass
