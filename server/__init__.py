"""SurroundSync Server - Room synchronization and playback coordination relay.

This module contains the FastAPI server, room/device registry, spatial role
assignment, realtime relay and all server-side logic for SurroundSync.
"""

from server.config import SurroundSyncConfig, get_config
from server.metrics import RelayMetrics
from server.models import Device, Room
from server.registry import RegistrySweeper, RoomRegistry
from server.relay import RelaySession, RoomRelay
from server.spatial import SpatialAssignment, assign_positions

__version__ = "1.0.0"

__all__ = [
    # Core components
    "RoomRegistry",
    "RegistrySweeper",
    "RoomRelay",
    "RelaySession",
    # Data structures
    "Room",
    "Device",
    "SpatialAssignment",
    "assign_positions",
    # Configuration
    "SurroundSyncConfig",
    "get_config",
    # Metrics
    "RelayMetrics",
]
