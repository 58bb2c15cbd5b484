"""Streamed audio chunk data structure and PCM wire codec."""

import base64
import binascii
from dataclasses import dataclass
from typing import Any, Union

import numpy as np

from playback.quality import get_quality_settings
from server.exceptions import MalformedMessageError

# float32 little-endian mono
PCM_DTYPE = np.dtype("<f4")


def encode_pcm(samples: np.ndarray) -> str:
    """Encode mono float32 samples as a base64 string.

    Args:
        samples: Mono audio, range [-1.0, 1.0]

    Returns:
        Base64 of float32 little-endian PCM bytes
    """
    data = np.clip(np.asarray(samples, dtype=np.float32).reshape(-1), -1.0, 1.0)
    return base64.b64encode(data.astype(PCM_DTYPE).tobytes()).decode("ascii")


def decode_pcm(buffer: Union[str, bytes, list[int]]) -> np.ndarray:
    """Decode a chunk buffer into mono float32 samples.

    Args:
        buffer: Base64 string, raw bytes or list of byte values

    Returns:
        Mono samples, dtype float32

    Raises:
        MalformedMessageError: Invalid base64 or a length that is not a
            whole number of float32 samples
    """
    if isinstance(buffer, str):
        try:
            raw = base64.b64decode(buffer, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedMessageError(f"Invalid base64 audio buffer: {e}") from e
    elif isinstance(buffer, bytes):
        raw = buffer
    else:
        raw = bytes(buffer)

    if len(raw) % PCM_DTYPE.itemsize != 0:
        raise MalformedMessageError(
            f"Audio buffer length {len(raw)} is not a multiple of {PCM_DTYPE.itemsize}"
        )

    return np.frombuffer(raw, dtype=PCM_DTYPE).astype(np.float32)


@dataclass
class StreamChunk:
    """One frame of streamed audio.

    Attributes:
        samples: Mono PCM, shape (num_samples,), dtype float32
        timestamp: Capture time (ms since epoch)
        quality: Stream quality name ("low", "medium", "high")
    """

    samples: np.ndarray
    timestamp: float
    quality: str

    @property
    def sample_rate(self) -> int:
        """Sample rate implied by the chunk's quality."""
        return get_quality_settings(self.quality).sample_rate

    @property
    def duration_sec(self) -> float:
        """Playback duration in seconds."""
        return len(self.samples) / self.sample_rate

    def to_base64(self) -> str:
        """Encode samples as base64 float32 little-endian PCM."""
        return encode_pcm(self.samples)

    def to_message(self) -> dict[str, Any]:
        """Convert to an ``audio-stream-data`` envelope."""
        return {
            "type": "audio-stream-data",
            "buffer": self.to_base64(),
            "timestamp": self.timestamp,
            "quality": self.quality,
        }

    @classmethod
    def from_message(cls, message: Any) -> "StreamChunk":
        """Create a StreamChunk from a validated ``audio-stream-data`` message.

        Args:
            message: AudioStreamDataMessage

        Returns:
            StreamChunk with decoded float32 samples
        """
        return cls(
            samples=decode_pcm(message.buffer),
            timestamp=message.timestamp,
            quality=message.quality,
        )
