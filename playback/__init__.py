"""SurroundSync Playback - Device-side synchronization and streaming engine.

This module contains the delayed-task scheduler, playback synchronizer,
jitter buffer, stream sender and relay client run on each participant
device. Sound-card backends live in ``playback.devices`` and are imported
on demand.
"""

from playback.audio_chunk import StreamChunk, decode_pcm, encode_pcm
from playback.jitter_buffer import AudioSegment, JitterBuffer
from playback.player import Track, TrackPlayer
from playback.quality import StreamQuality, classify_connection, get_quality_settings
from playback.relay_client import RelayClient
from playback.scheduler import DelayedTaskQueue, ScheduledTask
from playback.stream_sender import StreamSender
from playback.synchronizer import PlaybackSynchronizer

__version__ = "1.0.0"

__all__ = [
    "AudioSegment",
    "DelayedTaskQueue",
    "JitterBuffer",
    "PlaybackSynchronizer",
    "RelayClient",
    "ScheduledTask",
    "StreamChunk",
    "StreamQuality",
    "StreamSender",
    "Track",
    "TrackPlayer",
    "classify_connection",
    "decode_pcm",
    "encode_pcm",
    "get_quality_settings",
]
