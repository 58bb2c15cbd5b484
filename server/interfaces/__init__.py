"""Internal interfaces for SurroundSync components.

Abstract Base Classes (ABCs) defining contracts for the registry, metrics
collection, and the device-side playback seams.
"""

from server.interfaces.registry import IRoomRegistry
from server.interfaces.metrics import IMetricsCollector
from server.interfaces.jitter import IJitterBuffer
from server.interfaces.playback import IAudioOutput, IAudioSource, IPlaybackTarget

__all__ = [
    # Registry interfaces
    "IRoomRegistry",
    # Metrics interfaces
    "IMetricsCollector",
    # Device-side interfaces
    "IJitterBuffer",
    "IPlaybackTarget",
    "IAudioOutput",
    "IAudioSource",
]
