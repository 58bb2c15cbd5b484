"""Dependency injection container for relay components.

Provides centralized management of service instances with proper lifecycle
and dependency resolution.
"""

import logging
from datetime import timedelta
from typing import Any, Optional

from server.config import SurroundSyncConfig, get_config
from server.metrics import RelayMetrics
from server.registry import RegistrySweeper, RoomRegistry
from server.relay import RoomRelay

logger = logging.getLogger(__name__)


class DIContainer:
    """Dependency injection container for relay components."""

    def __init__(self, config: Optional[SurroundSyncConfig] = None) -> None:
        """Initialize DI container.

        Args:
            config: Configuration override; defaults to the global instance
        """
        self._config = config or get_config()
        self._instances: dict[str, Any] = {}

        logger.info("DI container initialized")

    def get_config(self) -> SurroundSyncConfig:
        """Get configuration instance."""
        return self._config

    def get_registry(self) -> RoomRegistry:
        """Get or create room registry instance."""
        if "registry" not in self._instances:
            self._instances["registry"] = RoomRegistry(
                room_ttl=timedelta(hours=self._config.room_ttl_hours),
                otp_max_attempts=self._config.otp_max_attempts,
                default_volume=self._config.default_volume,
            )
        return self._instances["registry"]

    def get_metrics(self) -> RelayMetrics:
        """Get or create metrics collector instance."""
        if "metrics" not in self._instances:
            self._instances["metrics"] = RelayMetrics()
        return self._instances["metrics"]

    def get_relay(self) -> RoomRelay:
        """Get or create room relay instance."""
        if "relay" not in self._instances:
            self._instances["relay"] = RoomRelay(
                registry=self.get_registry(), metrics=self.get_metrics()
            )
        return self._instances["relay"]

    def get_sweeper(self) -> RegistrySweeper:
        """Get or create registry sweeper instance."""
        if "sweeper" not in self._instances:
            self._instances["sweeper"] = RegistrySweeper(
                self.get_registry(), interval_sec=self._config.sweep_interval_sec
            )
        return self._instances["sweeper"]

    def cleanup(self) -> None:
        """Clean up all managed instances."""
        logger.info("Cleaning up DI container")
        self._instances.clear()
        logger.info("DI container cleaned up")


# Global container instance
_container: Optional[DIContainer] = None


def get_container() -> DIContainer:
    """Get the global DI container instance.

    Returns:
        DIContainer singleton
    """
    global _container
    if _container is None:
        _container = DIContainer()
    return _container


def cleanup_container() -> None:
    """Clean up the global DI container."""
    global _container
    if _container is not None:
        _container.cleanup()
        _container = None
