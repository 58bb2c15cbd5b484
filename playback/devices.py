"""Sound-card backends built on sounddevice (PortAudio)."""

import logging
import threading
from typing import Optional, Union

import numpy as np
import sounddevice

from server.exceptions import StreamError
from server.interfaces.playback import FrameCallback, IAudioOutput, IAudioSource

logger = logging.getLogger(__name__)

DeviceSpec = Optional[Union[int, str]]


def resample(samples: np.ndarray, from_rate: int, to_rate: int) -> np.ndarray:
    """Linearly resample mono audio."""
    if from_rate == to_rate or len(samples) == 0:
        return samples.astype(np.float32, copy=False)
    n_out = max(1, int(round(len(samples) * to_rate / from_rate)))
    src_t = np.arange(len(samples)) / from_rate
    dst_t = np.arange(n_out) / to_rate
    return np.interp(dst_t, src_t, samples).astype(np.float32)


class SoundDeviceOutput(IAudioOutput):
    """Mono output stream that mixes segments at scheduled stream times.

    The audio clock is the PortAudio stream time; a segment scheduled for
    ``start_time`` begins at the output sample whose DAC time matches it.
    """

    def __init__(
        self,
        sample_rate: int = 48000,
        device: DeviceSpec = None,
        blocksize: int = 512,
    ):
        """Open and start the output stream.

        Args:
            sample_rate: Output sample rate in Hz
            device: PortAudio device index or name (None for default)
            blocksize: Frames per callback

        Raises:
            StreamError: If the device cannot be opened
        """
        self.sample_rate = sample_rate
        self._gain = 1.0
        self._segments: list[tuple[float, np.ndarray]] = []
        self._lock = threading.Lock()

        try:
            self._stream = sounddevice.OutputStream(
                samplerate=sample_rate,
                channels=1,
                dtype="float32",
                blocksize=blocksize,
                callback=self._callback,
                device=device,
                latency="low",
            )
            self._stream.start()
        except sounddevice.PortAudioError as e:
            raise StreamError(f"Cannot open output device {device!r}: {e}") from e

        logger.info(f"Audio output started: {sample_rate}Hz, blocksize={blocksize}, device={device}")

    @property
    def current_time(self) -> float:
        return self._stream.time

    def schedule(self, samples: np.ndarray, sample_rate: int, start_time: float) -> None:
        data = resample(np.asarray(samples, dtype=np.float32), sample_rate, self.sample_rate)
        with self._lock:
            self._segments.append((start_time, data))

    def set_gain(self, gain: float) -> None:
        self._gain = min(max(gain, 0.0), 1.0)

    def _callback(self, outdata: np.ndarray, frames: int, time_info, status) -> None:
        if status:
            logger.debug(f"Output callback status: {status}")

        outdata.fill(0.0)
        block_start = time_info.outputBufferDacTime or self._stream.time
        out = outdata[:, 0]

        with self._lock:
            remaining = []
            for start_time, data in self._segments:
                # Block frame index where the segment's first sample lands
                first = int(round((start_time - block_start) * self.sample_rate))
                lo = max(0, first)
                hi = min(frames, first + len(data))
                if lo < hi:
                    out[lo:hi] += data[lo - first:hi - first]
                if first + len(data) > frames:
                    remaining.append((start_time, data))
            self._segments = remaining

        out *= self._gain
        np.clip(out, -1.0, 1.0, out=out)

    def close(self) -> None:
        try:
            self._stream.stop()
            self._stream.close()
        except sounddevice.PortAudioError as e:
            logger.warning(f"Error closing output stream: {e}")
        with self._lock:
            self._segments.clear()
        logger.info("Audio output closed")


class SoundDeviceCapture(IAudioSource):
    """Mono float32 capture from a PortAudio input device."""

    def __init__(self, device: DeviceSpec = None):
        """Initialize capture.

        Args:
            device: PortAudio device index or name (None for default)
        """
        self.device = device
        self._stream: Optional[sounddevice.InputStream] = None
        self._on_frame: Optional[FrameCallback] = None

    def start(self, sample_rate: int, frame_size: int, on_frame: FrameCallback) -> None:
        if self._stream is not None:
            logger.warning("Capture already running")
            return

        self._on_frame = on_frame
        try:
            self._stream = sounddevice.InputStream(
                samplerate=sample_rate,
                channels=1,
                dtype="float32",
                blocksize=frame_size,
                callback=self._callback,
                device=self.device,
            )
            self._stream.start()
        except sounddevice.PortAudioError as e:
            self._stream = None
            raise StreamError(f"Cannot open capture device {self.device!r}: {e}") from e

        logger.info(
            f"Capture started: {sample_rate}Hz, {frame_size} samples/frame, device={self.device}"
        )

    def _callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        if status:
            logger.debug(f"Capture callback status: {status}")
        if self._on_frame is not None:
            self._on_frame(indata[:, 0].copy())

    def stop(self) -> None:
        if self._stream is None:
            return
        try:
            self._stream.stop()
            self._stream.close()
        except sounddevice.PortAudioError as e:
            logger.warning(f"Error closing capture stream: {e}")
        finally:
            self._stream = None
            self._on_frame = None
        logger.info("Capture stopped")
