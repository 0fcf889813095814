"""Central configuration for the flashsum controller service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class FullscreenSettings(BaseModel):
    """Pre-start fullscreen confirmation polling."""
    poll_interval_ms: int = Field(25, description="Delay between fullscreen state queries (ms)")
    poll_attempts: int = Field(30, description="Maximum number of fullscreen state queries before giving up")


class AutoRepeatSettings(BaseModel):
    """Local auto-repeat countdown bridge."""
    bridge_interval_seconds: float = Field(
        0.2, description="Refresh period of the locally derived seconds-left before the first backend tick"
    )


class SessionDefaults(BaseModel):
    """Form defaults offered to the foreground surface."""
    digits_per_number: int = Field(1, description="Digits per flashed number")
    number_duration_seconds: float = Field(0.5, description="Flash duration per number (seconds)")
    delay_between_numbers_seconds: float = Field(0.0, description="Blank gap between numbers (seconds)")
    total_numbers: int = Field(5, description="Numbers per session")
    allow_negative_numbers: bool = Field(False, description="Allow negative values after the first number")
    auto_repeat_repeats: int = Field(5, description="Auto-repeat count")
    auto_repeat_delay_seconds: int = Field(5, description="Delay before the next auto-repeated session (seconds)")


class PerformanceSettings(BaseModel):
    """Queue tuning."""
    ui_event_queue_size: int = Field(16, description="Max buffered UI state snapshots per subscriber")


class Settings(BaseSettings):
    """Environment-driven settings for controller subsystems."""

    # Backend
    backend_api_url: str = Field("http://127.0.0.1:8765", description="Trainer backend command base URL")
    backend_ws_url: str = Field("ws://127.0.0.1:8765/events", description="Trainer backend push event URL")
    shell_api_url: str = Field("http://127.0.0.1:8765", description="Host shell base URL exposing the window API")
    command_timeout_seconds: float = Field(15.0, description="HTTP timeout for backend commands")
    event_reconnect_seconds: float = Field(2.0, description="Delay before re-attaching to the event channel")

    # Controller HTTP Server
    controller_host: str = Field("127.0.0.1", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")
    window_mode: Literal["shell", "headless"] = Field(
        "shell", description="Window adapter: host shell window API or in-memory headless window"
    )

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    fullscreen: FullscreenSettings = Field(default_factory=FullscreenSettings, description="Fullscreen enforcement")
    auto_repeat: AutoRepeatSettings = Field(default_factory=AutoRepeatSettings, description="Auto-repeat bridge")
    defaults: SessionDefaults = Field(default_factory=SessionDefaults, description="Session form defaults")
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings, description="Performance tuning")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper() or "INFO"
        return value

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
