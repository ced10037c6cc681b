"""
Configuration management using Pydantic Settings.

Every knob can be set through a ``CONDUCTOR_``-prefixed environment variable or
a ``.env`` file.
"""
import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with validation and environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="CONDUCTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Conductor", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Environment: development, staging, production")
    debug: bool = Field(default=False, description="Debug mode")

    # Orchestration
    task_timeout: float = Field(default=30.0, gt=0, description="Per-dispatch timeout in seconds")
    max_concurrent_tasks: int = Field(default=5, ge=1, description="Advisory limit on in-flight dispatches")
    cancel_on_timeout: bool = Field(default=False, description="Cancel agent execution when a dispatch times out")
    register_builtin_agents: bool = Field(default=True, description="Register the built-in echo agent at startup")

    # Event bus
    event_history_size: int = Field(default=100, ge=1, description="Event history ring buffer capacity")

    # Monitor
    monitor_refresh_interval: float = Field(default=2.0, gt=0, description="Monitor refresh interval in seconds")
    monitor_event_limit: int = Field(default=20, ge=1, description="Recent events shown per monitor snapshot")

    # Persistence
    state_path: Optional[str] = Field(default=None, description="JSON file for manager state; unset disables persistence")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log format: json or text")
    log_file: Optional[str] = Field(default=None, description="Log file path")

    # API
    api_host: str = Field(default="127.0.0.1", description="API host")
    api_port: int = Field(default=8300, ge=1024, le=65535, description="API port")
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="Allowed CORS origins",
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of allowed values."""
        allowed = ["development", "staging", "production", "test"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"Log level must be one of {allowed}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is valid."""
        allowed = ["json", "text"]
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"Log format must be one of {allowed}")
        return v_lower

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def task_timeout_ms(self) -> int:
        return int(self.task_timeout * 1000)

    def get_log_level(self) -> int:
        """Get logging level as integer."""
        return getattr(logging, self.log_level)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings
    """
    return Settings()
