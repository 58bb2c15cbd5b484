"""FastAPI server entrypoint for SurroundSync.

Main application with the realtime relay endpoint, the room/device HTTP
boundary and status/metrics endpoints.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from server.api import rooms_router
from server.di_container import cleanup_container, get_container
from server.logging_config import setup_logging

# Initialize logging
setup_logging()
logger = logging.getLogger(__name__)

# Global startup timestamp
_startup_time = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager (startup/shutdown).

    Args:
        app: FastAPI application instance

    Yields:
        Control during application lifetime
    """
    global _startup_time

    logger.info("=" * 60)
    logger.info("Starting SurroundSync relay...")
    _startup_time = time.time()

    container = get_container()
    config = container.get_config()

    logger.info(f"Environment: {config.env}")
    logger.info(f"Host: {config.host}:{config.port}")
    logger.info(f"Room TTL: {config.room_ttl_hours}h, sweep every {config.sweep_interval_sec:.0f}s")

    sweeper = container.get_sweeper()
    await sweeper.start()

    logger.info("SurroundSync relay ready!")
    logger.info("=" * 60)

    yield

    logger.info("Shutting down SurroundSync relay...")

    try:
        await sweeper.stop()
    except Exception as e:
        logger.warning(f"Error stopping registry sweeper: {e}")

    cleanup_container()
    logger.info("SurroundSync relay stopped")


app = FastAPI(
    title="SurroundSync API",
    version="1.0.0",
    description="Room synchronization and playback coordination relay",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)


@app.get("/api/status")
async def get_status() -> dict[str, Any]:
    """Get relay status.

    Returns:
        Dictionary with uptime, sessions and registry occupancy
    """
    container = get_container()
    relay = container.get_relay()

    return {
        "uptime_sec": time.time() - _startup_time,
        "active_connections": relay.get_active_connections(),
        "room_sessions": relay.get_room_session_counts(),
        "registry": container.get_registry().get_stats(),
        "sweeper_running": container.get_sweeper().is_running(),
        "timestamp": time.time(),
    }


@app.get("/api/metrics")
async def get_metrics() -> dict[str, Any]:
    """Get relay metrics snapshot."""
    return get_container().get_metrics().get_snapshot()


@app.websocket("/ws")
async def websocket_relay(websocket: WebSocket) -> None:
    """WebSocket endpoint for the realtime relay.

    Args:
        websocket: WebSocket connection
    """
    await get_container().get_relay().handle_connection(websocket)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": "surround-sync"}
