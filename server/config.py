"""Configuration management for the SurroundSync relay.

Loads and validates environment variables using Pydantic settings.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class SurroundSyncConfig(BaseSettings):
    """SurroundSync configuration loaded from environment variables."""

    # Server settings
    env: Literal["development", "production", "test"] = Field(
        default="development", alias="SURROUND_ENV"
    )
    host: str = Field(default="0.0.0.0", alias="SURROUND_HOST")
    port: int = Field(default=8000, alias="SURROUND_PORT", ge=1024, le=65535)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", alias="SURROUND_LOG_LEVEL"
    )

    # Registry
    room_ttl_hours: int = Field(
        default=24, alias="SURROUND_ROOM_TTL_HOURS", ge=1, le=168
    )
    sweep_interval_sec: float = Field(
        default=300.0, alias="SURROUND_SWEEP_INTERVAL_SEC", ge=1.0, le=3600.0
    )
    otp_max_attempts: int = Field(
        default=100, alias="SURROUND_OTP_MAX_ATTEMPTS", ge=1, le=10000
    )
    default_volume: int = Field(
        default=75, alias="SURROUND_DEFAULT_VOLUME", ge=0, le=100
    )

    # Playback timing
    sync_lead_ms: float = Field(
        default=100.0, alias="SURROUND_SYNC_LEAD_MS", ge=0.0, le=5000.0
    )
    jitter_lookahead_ms: float = Field(
        default=50.0, alias="SURROUND_JITTER_LOOKAHEAD_MS", ge=0.0, le=1000.0
    )

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Reject an empty bind address."""
        if not v.strip():
            raise ValueError("host must not be empty")
        return v.strip()

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Singleton configuration instance
_config: SurroundSyncConfig | None = None


def get_config() -> SurroundSyncConfig:
    """Get the global configuration instance.

    Returns:
        SurroundSyncConfig: Configuration singleton
    """
    global _config
    if _config is None:
        _config = SurroundSyncConfig()
    return _config
