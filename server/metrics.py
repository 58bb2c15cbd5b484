"""Relay and playback metrics collection.

Tracks stream latency, fan-out volume, malformed input, send failures and
buffer underruns for the status endpoints and device-side displays.
"""

import logging
import time
from collections import deque
from datetime import datetime
from typing import Any

import numpy as np

from server.interfaces.metrics import IMetricsCollector

logger = logging.getLogger(__name__)


class LatencyHistogram:
    """Bounded window of chunk latencies with percentile summaries.

    Latencies can be negative when sender and receiver clocks disagree; they
    are kept as measured.
    """

    def __init__(self, window: int = 2000):
        if window < 1:
            raise ValueError(f"window must be >= 1, got {window}")
        self.window = window
        self._values: deque[float] = deque(maxlen=window)
        self.total_recorded = 0

    def record(self, latency_ms: float) -> None:
        self._values.append(latency_ms)
        self.total_recorded += 1

    def get_stats(self) -> dict[str, float | int]:
        """Summarize the current window.

        Returns:
            Dictionary with avg, p50, p95, p99, max (ms) and samples in window
        """
        if not self._values:
            return {"avg": 0.0, "p50": 0.0, "p95": 0.0, "p99": 0.0, "max": 0.0, "samples": 0}

        values = np.fromiter(self._values, dtype=np.float64, count=len(self._values))
        p50, p95, p99 = np.percentile(values, [50, 95, 99])
        return {
            "avg": float(values.mean()),
            "p50": float(p50),
            "p95": float(p95),
            "p99": float(p99),
            "max": float(values.max()),
            "samples": len(values),
        }


class RelayMetrics(IMetricsCollector):
    """Collects and aggregates relay metrics."""

    # Chunks older than this on arrival are logged
    STREAM_LATENCY_WARN_MS = 200.0

    def __init__(self) -> None:
        """Initialize metrics collector."""
        self.stream_latency = LatencyHistogram()

        # Event counters
        self.messages_relayed = 0
        self.deliveries = 0
        self.malformed_messages = 0
        self.send_failures = 0
        self.buffer_underruns = 0
        self.disconnects = 0

        self.start_time = time.time()

        logger.info("Metrics collector initialized")

    def record_stream_latency(self, latency_ms: float) -> None:
        self.stream_latency.record(latency_ms)

        if latency_ms > self.STREAM_LATENCY_WARN_MS:
            logger.debug(
                f"Stream latency {latency_ms:.1f}ms exceeds "
                f"{self.STREAM_LATENCY_WARN_MS:.0f}ms",
                extra={"latency_ms": latency_ms},
            )

    def increment_relayed(self, recipients: int) -> None:
        self.messages_relayed += 1
        self.deliveries += recipients

    def increment_malformed_message(self) -> None:
        self.malformed_messages += 1

    def increment_send_failure(self) -> None:
        self.send_failures += 1

    def increment_buffer_underrun(self) -> None:
        self.buffer_underruns += 1
        logger.debug(f"Buffer underrun detected (total: {self.buffer_underruns})")

    def increment_disconnect(self) -> None:
        self.disconnects += 1
        logger.info(f"Session disconnect (total: {self.disconnects})")

    def get_snapshot(self) -> dict[str, Any]:
        import psutil

        process = psutil.Process()
        memory_mb = process.memory_info().rss / (1024 * 1024)

        return {
            "stream_latency_ms": self.stream_latency.get_stats(),
            "messages_relayed": self.messages_relayed,
            "deliveries": self.deliveries,
            "malformed_messages": self.malformed_messages,
            "send_failures": self.send_failures,
            "buffer_underruns": self.buffer_underruns,
            "disconnects": self.disconnects,
            "memory_usage_mb": memory_mb,
            "uptime_sec": time.time() - self.start_time,
            "timestamp": datetime.now().isoformat(),
        }
