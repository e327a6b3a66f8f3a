"""Centralized configuration for StreamRelay.

Uses Pydantic BaseSettings with environment variable loading and validation.
All SR_* environment variables are validated at import time.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = {"env_prefix": "SR_", "case_sensitive": False, "extra": "ignore"}

    # Broadcaster
    broadcaster_type: str = Field(default="memory", description="Broadcaster backend: memory or redis")
    max_listeners: int = Field(
        default=100, ge=1, description="Listener count per topic above which a warning is logged"
    )
    keep_alive_seconds: float = Field(
        default=30.0, gt=0, description="Idle wake-up interval for topic subscriptions"
    )
    redis_url: str | None = Field(default=None, description="Redis URL (redis broadcaster)")
    redis_token: str | None = Field(default=None, description="Redis token (redis broadcaster)")

    # Channels
    channel_key_prefix: str = Field(default="resource", description="Channel key prefix segment")
    channel_key_suffix: str = Field(default="", description="Channel key suffix segment")
    session_queue_size: int = Field(
        default=100, ge=0, description="Per-session pending event limit (0 = unbounded)"
    )
    heartbeat_interval: float = Field(
        default=15.0, gt=0, description="Seconds of idle time before an SSE heartbeat is sent"
    )

    # Client reconnection defaults
    reconnect_base_delay_ms: int = Field(default=1000, gt=0, description="Backoff base delay (ms)")
    reconnect_max_delay_ms: int = Field(default=30000, gt=0, description="Backoff delay cap (ms)")

    # Logging
    log_format: str = Field(default="text", description="Log format: text or json")
    log_level: str = Field(default="INFO", description="Python log level")

    # Server
    host: str = Field(default="0.0.0.0", description="Server bind host")  # noqa: S104
    port: int = Field(default=8000, ge=1, le=65535, description="Server bind port")
    cors_origins: str = Field(default="*", description="Comma-separated CORS origins")

    @field_validator("broadcaster_type")
    @classmethod
    def validate_broadcaster_type(cls, v: str) -> str:
        v = v.lower()
        if v not in ("memory", "redis"):
            msg = f"SR_BROADCASTER_TYPE must be 'memory' or 'redis', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "json"):
            msg = f"SR_LOG_FORMAT must be 'text' or 'json', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        import logging

        v = v.upper()
        if not isinstance(getattr(logging, v, None), int):
            msg = f"SR_LOG_LEVEL must be a valid Python log level, got '{v}'"
            raise ValueError(msg)
        return v

    def broadcaster_config(self) -> dict[str, Any]:
        """Return the mapping accepted by ``create_event_broadcaster``."""
        if self.broadcaster_type == "redis":
            return {"type": "redis", "url": self.redis_url or "", "token": self.redis_token or ""}
        return {
            "type": "memory",
            "max_listeners": self.max_listeners,
            "keep_alive_seconds": self.keep_alive_seconds,
        }

    @property
    def cors_origin_list(self) -> list[str]:
        """Return parsed list of CORS origins."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


# Singleton, validated at import time.
settings = Settings()
