"""Receiver-side jitter buffer for streamed audio.

Chunks are decoded into segments and queued as they arrive. A drain step
dequeues one segment at a time and schedules it on the audio output at
``max(output clock, next_play_time)``, so segments play back to back as long
as the queue does not run dry. After each segment the drain re-arms itself to
fire a fixed lookahead before that segment ends. An empty queue at drain time
is an underrun: nothing is scheduled until the next chunk arrives.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import numpy as np
from pydantic import ValidationError

from playback.audio_chunk import StreamChunk
from playback.quality import ConnectionQuality, classify_connection
from playback.scheduler import wall_clock_ms
from server.exceptions import MalformedMessageError
from server.interfaces.jitter import IJitterBuffer
from server.interfaces.metrics import IMetricsCollector
from server.interfaces.playback import IAudioOutput
from server.schemas import AudioStreamDataMessage

logger = logging.getLogger(__name__)

DEFAULT_LOOKAHEAD_MS = 50.0


@dataclass
class AudioSegment:
    """Decoded audio waiting to be scheduled.

    Attributes:
        samples: Mono PCM, dtype float32
        sample_rate: Sample rate in Hz
    """

    samples: np.ndarray
    sample_rate: int

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return len(self.samples) / self.sample_rate


class JitterBuffer(IJitterBuffer):
    """FIFO of decoded segments drained onto an audio output."""

    def __init__(
        self,
        output: IAudioOutput,
        lookahead_ms: float = DEFAULT_LOOKAHEAD_MS,
        metrics: Optional[IMetricsCollector] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        now_ms: Optional[Callable[[], float]] = None,
    ):
        """Initialize jitter buffer.

        Args:
            output: Audio output providing the clock and sample scheduling
            lookahead_ms: How long before a segment ends the next is scheduled
            metrics: Optional metrics collector for underruns and latency
            loop: Event loop for re-arm timers (default: running loop)
            now_ms: Wall clock in ms since epoch (injectable for tests)
        """
        if lookahead_ms < 0:
            raise ValueError(f"lookahead_ms must be >= 0, got {lookahead_ms}")

        self.output = output
        self.lookahead_sec = lookahead_ms / 1000.0
        self.metrics = metrics
        self._loop = loop
        self._now_ms = now_ms or wall_clock_ms

        self.queue: deque[AudioSegment] = deque()
        self.next_play_time = 0.0
        self.latency_ms = 0.0
        self.is_receiving = False
        self.quality: Optional[str] = None
        self._timer: Optional[asyncio.TimerHandle] = None

        self.chunks_received = 0
        self.chunks_rejected = 0
        self.segments_scheduled = 0
        self.underruns = 0

    # Receiving

    def receive_chunk(self, message: Union[dict[str, Any], AudioStreamDataMessage]) -> None:
        try:
            if not isinstance(message, AudioStreamDataMessage):
                message = AudioStreamDataMessage.model_validate(message)
            chunk = StreamChunk.from_message(message)
        except (ValidationError, MalformedMessageError) as e:
            self.chunks_rejected += 1
            logger.warning(
                f"Dropping invalid audio chunk: {e}",
                extra={"message_type": "audio-stream-data"},
            )
            return

        self.latency_ms = self._now_ms() - chunk.timestamp
        if self.metrics:
            self.metrics.record_stream_latency(self.latency_ms)

        self.chunks_received += 1
        self.is_receiving = True
        self.quality = chunk.quality

        if len(chunk.samples) == 0:
            return

        self.queue.append(AudioSegment(chunk.samples, chunk.sample_rate))

        # Idle drain: start right away; otherwise the armed timer picks it up
        if self._timer is None:
            self._drain()

    def on_stream_started(self, message: dict[str, Any]) -> None:
        self.is_receiving = True
        self.quality = message.get("quality") or self.quality
        logger.info(f"Stream started (quality={self.quality})")

    def on_stream_stopped(self, message: dict[str, Any]) -> None:
        self.is_receiving = False
        logger.info(f"Stream stopped ({len(self.queue)} segments left to play)")

    # Draining

    def _drain(self) -> None:
        self._timer = None

        if not self.queue:
            # Running dry after stream-stopped is the normal end of a stream
            if self.is_receiving:
                self.underruns += 1
                if self.metrics:
                    self.metrics.increment_buffer_underrun()
                logger.debug(f"Jitter buffer ran dry (underruns: {self.underruns})")
            return

        segment = self.queue.popleft()
        start_time = max(self.output.current_time, self.next_play_time)
        self.output.schedule(segment.samples, segment.sample_rate, start_time)
        self.next_play_time = start_time + segment.duration
        self.segments_scheduled += 1

        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        delay = max(0.0, (self.next_play_time - self.lookahead_sec) - self.output.current_time)
        self._timer = self._loop.call_later(delay, self._drain)

    # Status

    def get_buffer_health(self) -> int:
        return min(len(self.queue) * 10, 100)

    def get_connection_quality(self) -> ConnectionQuality:
        return classify_connection(self.latency_ms, self.is_receiving)

    def attach(self, client: Any) -> Callable[[], None]:
        """Subscribe to stream messages.

        Args:
            client: Object exposing ``subscribe(type, handler) -> unsubscribe``

        Returns:
            Function removing all three subscriptions
        """
        unsubscribers = [
            client.subscribe("audio-stream-data", self.receive_chunk),
            client.subscribe("stream-started", self.on_stream_started),
            client.subscribe("stream-stopped", self.on_stream_stopped),
        ]

        def unsubscribe() -> None:
            for fn in unsubscribers:
                fn()

        return unsubscribe

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        dropped = len(self.queue)
        self.queue.clear()
        self.is_receiving = False
        self.next_play_time = 0.0
        logger.info(f"Jitter buffer closed ({dropped} segments dropped)")

    def get_stats(self) -> dict[str, Any]:
        """Get jitter buffer statistics."""
        return {
            "buffer_health": self.get_buffer_health(),
            "queued_segments": len(self.queue),
            "latency_ms": self.latency_ms,
            "connection_quality": self.get_connection_quality(),
            "is_receiving": self.is_receiving,
            "quality": self.quality,
            "chunks_received": self.chunks_received,
            "chunks_rejected": self.chunks_rejected,
            "segments_scheduled": self.segments_scheduled,
            "underruns": self.underruns,
        }
