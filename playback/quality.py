"""Stream quality presets and connection-quality classification."""

from dataclasses import dataclass
from typing import Literal

from server.exceptions import ConfigurationError

ConnectionQuality = Literal["excellent", "good", "fair", "poor", "disconnected"]

# Latency thresholds (ms), checked in order
EXCELLENT_LATENCY_MS = 50.0
GOOD_LATENCY_MS = 100.0
FAIR_LATENCY_MS = 200.0


@dataclass(frozen=True)
class StreamQuality:
    """Capture settings for one stream quality level.

    Attributes:
        name: Quality name used on the wire
        sample_rate: Sample rate in Hz
        buffer_size: Samples per captured frame
        bit_rate: Nominal bit rate in bits/s
    """

    name: str
    sample_rate: int
    buffer_size: int
    bit_rate: int

    @property
    def frame_duration_ms(self) -> float:
        """Duration of one captured frame in milliseconds."""
        return self.buffer_size / self.sample_rate * 1000.0


STREAM_QUALITIES: dict[str, StreamQuality] = {
    "low": StreamQuality("low", sample_rate=22050, buffer_size=1024, bit_rate=64000),
    "medium": StreamQuality("medium", sample_rate=44100, buffer_size=2048, bit_rate=128000),
    "high": StreamQuality("high", sample_rate=48000, buffer_size=4096, bit_rate=256000),
}


def get_quality_settings(name: str) -> StreamQuality:
    """Look up a quality preset by name.

    Raises:
        ConfigurationError: Unknown quality name
    """
    try:
        return STREAM_QUALITIES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown stream quality: {name!r} (must be one of {list(STREAM_QUALITIES)})"
        ) from None


def classify_connection(latency_ms: float, is_receiving: bool) -> ConnectionQuality:
    """Classify a stream by its last measured chunk latency."""
    if not is_receiving:
        return "disconnected"
    if latency_ms < EXCELLENT_LATENCY_MS:
        return "excellent"
    if latency_ms < GOOD_LATENCY_MS:
        return "good"
    if latency_ms < FAIR_LATENCY_MS:
        return "fair"
    return "poor"
