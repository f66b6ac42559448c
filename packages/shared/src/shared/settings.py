"""
Pydantic Settings for environment configuration.

This module provides type-safe environment variable loading and validation
for the load tester CLI.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LiveKitSettings(BaseSettings):
    """LiveKit server credentials."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    livekit_url: str | None = Field(
        default=None, description="LiveKit server URL (e.g., wss://your-project.livekit.cloud)"
    )
    livekit_api_key: str | None = Field(default=None, description="LiveKit API key")
    livekit_api_secret: str | None = Field(default=None, description="LiveKit API secret")


class LoadTestSettings(BaseSettings):
    """Load tester configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LOADTEST_",
        case_sensitive=False,
        extra="ignore",
    )

    # Scenario defaults
    num_per_second: float = Field(
        default=5.0, gt=0, le=10, description="Testers to start every second"
    )
    layout: str = Field(default="speaker", description="Subscriber layout to simulate")
    video_resolution: str = Field(default="high", description="Published video resolution")

    # Tester behaviour
    connect_attempts: int = Field(default=10, ge=1, le=100, description="Join attempts per tester")
    connect_retry_delay: float = Field(
        default=1.0, ge=0, le=30, description="Seconds between join attempts"
    )
    speaker_pause: float = Field(
        default=1.0, gt=0, le=60, description="Seconds between simulated speaker updates"
    )

    # Platform credentials (nested settings)
    livekit: LiveKitSettings = Field(default_factory=LiveKitSettings)

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
