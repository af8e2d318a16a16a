# src/rentarb/config/settings.py
"""
Settings - Pydantic-based Configuration Management

Provides centralized configuration management using Pydantic Settings.
Values come from environment variables or a .env file; every field has a
default so the package imports without any configuration.

Files that USE this module:
- rentarb.app (logging, ledger file and transport settings)
- rentarb.adapters.binance.* (endpoint URLs, timeouts, reconnect policy)
- rentarb.application.rate_engine (publish interval, update buffer size)
- rentarb.application.health (staleness threshold)

Files that this module USES:
- rentarb.shared.validators (validation functions for settings)
"""

from __future__ import annotations  # Enable postponed evaluation of annotations

from pathlib import Path  # Object-oriented filesystem paths
from typing import Optional  # Type hints for optional values

from pydantic import Field, field_validator  # Data validation and field configuration
from pydantic_settings import BaseSettings, SettingsConfigDict  # Settings management with Pydantic

from rentarb.shared.validators import (
    validate_http_url,  # Validate REST endpoint URLs
    validate_log_level,  # Validate logging level names
    validate_ws_url,  # Validate websocket endpoint URLs
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # --- Binance market data ---
    binance_ws_url: str = Field(default="wss://stream.binance.com:9443/ws", alias="BINANCE_WS_URL")
    binance_rest_url: str = Field(
        default="https://api.binance.com/api/v3/ticker/price", alias="BINANCE_REST_URL"
    )
    track_direct_usdt_ars: bool = Field(default=True, alias="TRACK_DIRECT_USDT_ARS")

    # --- Rate engine ---
    publish_interval_ms: int = Field(default=500, alias="PUBLISH_INTERVAL_MS", ge=50, le=60_000)
    stale_after_seconds: int = Field(default=60, alias="STALE_AFTER_SECONDS", ge=1, le=86_400)
    update_queue_size: int = Field(default=16, alias="UPDATE_QUEUE_SIZE", ge=1, le=10_000)

    # --- Transport reconnect policy ---
    reconnect_base_delay_ms: int = Field(default=1000, alias="RECONNECT_BASE_DELAY_MS", ge=10)
    reconnect_max_delay_ms: int = Field(default=60_000, alias="RECONNECT_MAX_DELAY_MS", ge=10)
    max_reconnect_attempts: int = Field(default=10, alias="MAX_RECONNECT_ATTEMPTS", ge=0, le=1000)
    ws_ping_interval_seconds: float = Field(default=20.0, alias="WS_PING_INTERVAL_SECONDS", gt=0)

    # --- HTTP Settings ---
    http_timeout_seconds: int = Field(default=10, alias="HTTP_TIMEOUT_SECONDS", ge=1, le=60)
    rest_cache_seconds: int = Field(default=5, alias="REST_CACHE_SECONDS", ge=0, le=3600)

    # --- Persistence ---
    ledger_file: Path = Field(default=Path("./data/ledger.json"), alias="LEDGER_FILE")

    # --- Logging (for server deployment) ---
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[str] = Field(default=None, alias="LOG_FILE")
    log_dir: Optional[str] = Field(default=None, alias="LOG_DIR")
    log_stdout: bool = Field(default=True, alias="RENTARB_LOG_STDOUT")
    log_max_bytes: int = Field(default=10 * 1024 * 1024, alias="LOG_MAX_BYTES")  # 10MB
    log_backup_count: int = Field(default=5, alias="LOG_BACKUP_COUNT")

    @property
    def publish_interval_seconds(self) -> float:
        return self.publish_interval_ms / 1000.0

    @property
    def reconnect_base_delay_seconds(self) -> float:
        return self.reconnect_base_delay_ms / 1000.0

    @property
    def reconnect_max_delay_seconds(self) -> float:
        return self.reconnect_max_delay_ms / 1000.0

    @field_validator("binance_ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate websocket URL format."""
        if not validate_ws_url(v):
            raise ValueError("BINANCE_WS_URL must be a ws:// or wss:// URL")
        return v.rstrip("/")

    @field_validator("binance_rest_url")
    @classmethod
    def validate_rest_url(cls, v: str) -> str:
        """Validate REST URL format."""
        if not validate_http_url(v):
            raise ValueError("BINANCE_REST_URL must be an http:// or https:// URL")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        if not validate_log_level(v):
            raise ValueError("LOG_LEVEL must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL")
        return v.upper()


# Global settings instance
settings = Settings()
