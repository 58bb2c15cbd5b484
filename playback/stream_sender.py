"""Sender side of live audio streaming.

Captured frames arrive on the capture device's thread, are handed to the
event loop thread-safely, and are sent in capture order as one
``audio-stream-data`` message per frame, bracketed by ``stream-started`` and
``stream-stopped``.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

import numpy as np

from playback.audio_chunk import StreamChunk
from playback.quality import StreamQuality, get_quality_settings
from playback.scheduler import wall_clock_ms
from server.interfaces.playback import IAudioSource

logger = logging.getLogger(__name__)

SendFn = Callable[[dict[str, Any]], Union[Awaitable[Any], Any]]

# Sentinel that ends the send loop
_STOP = object()


class StreamSender:
    """Streams frames from an audio source through a send capability."""

    def __init__(
        self,
        source: IAudioSource,
        send: SendFn,
        quality: str = "medium",
        now_ms: Optional[Callable[[], float]] = None,
    ):
        """Initialize stream sender.

        Args:
            source: Capture device
            send: Capability used to emit messages to the room
            quality: "low", "medium" or "high"
            now_ms: Wall clock in ms since epoch (injectable for tests)

        Raises:
            ConfigurationError: Unknown quality name
        """
        self.source = source
        self.send = send
        self.settings: StreamQuality = get_quality_settings(quality)
        self._now_ms = now_ms or wall_clock_ms

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

        self.frames_captured = 0
        self.frames_sent = 0

    @property
    def is_streaming(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Announce the stream and start capturing.

        Raises:
            StreamError: If the capture device cannot be opened
        """
        if self._running:
            logger.warning("Stream sender already running")
            return

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()

        await self._send({"type": "stream-started", "quality": self.settings.name})

        self._running = True
        self._task = asyncio.create_task(self._send_loop())
        try:
            self.source.start(self.settings.sample_rate, self.settings.buffer_size, self._on_frame)
        except Exception:
            self._running = False
            self._queue.put_nowait(_STOP)
            await self._task
            self._task = None
            await self._send({"type": "stream-stopped", "quality": self.settings.name})
            raise

        logger.info(
            f"Streaming started: quality={self.settings.name}, "
            f"{self.settings.sample_rate}Hz, {self.settings.buffer_size} samples/frame "
            f"({self.settings.frame_duration_ms:.1f}ms)"
        )

    async def stop(self) -> None:
        """Stop capturing, flush queued frames and announce the stop."""
        if not self._running:
            return

        self._running = False
        self.source.stop()

        if self._task is not None:
            self._queue.put_nowait(_STOP)
            await self._task
            self._task = None

        await self._send({"type": "stream-stopped", "quality": self.settings.name})
        logger.info(
            f"Streaming stopped (captured: {self.frames_captured}, sent: {self.frames_sent})"
        )

    def _on_frame(self, samples: np.ndarray) -> None:
        """Receive a captured frame; may be called from the device thread."""
        if not self._running or self._loop is None:
            return
        frame = np.array(samples, dtype=np.float32).reshape(-1)
        self._loop.call_soon_threadsafe(self._enqueue, frame, self._now_ms())

    def _enqueue(self, frame: np.ndarray, captured_at: float) -> None:
        self.frames_captured += 1
        if self._running:
            self._queue.put_nowait((frame, captured_at))

    async def _send_loop(self) -> None:
        """Send queued frames in capture order."""
        while True:
            item = await self._queue.get()
            if item is _STOP:
                break

            frame, captured_at = item
            chunk = StreamChunk(samples=frame, timestamp=captured_at, quality=self.settings.name)
            try:
                await self._send(chunk.to_message())
                self.frames_sent += 1
            except Exception as e:
                logger.warning(f"Failed to send audio frame: {e}")

    async def _send(self, message: dict[str, Any]) -> None:
        result = self.send(message)
        if inspect.isawaitable(result):
            await result
