"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_log_settings() -> "LogSettings":
    """Build logging settings from environment."""

    return LogSettings()


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment."""

    return AppSettings()


def _build_engine_settings() -> "EngineSettings":
    """Build engine settings from environment."""

    return EngineSettings()


def _build_redis_settings() -> "RedisSettings":
    """Build Redis settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    Static type checkers may treat fields as constructor arguments, which is
    not how BaseSettings is intended to be used.
    """

    return RedisSettings()  # type: ignore[call-arg]


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: 'json' or 'plain'")
    output: str = Field("stdout", description="Log output: 'stdout' or 'file'")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether admin routes require API key authentication",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid admin API keys",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers in responses",
    )
    trust_proxy_headers: bool = Field(
        False,
        description=(
            "Read client identity (X-Forwarded-For, X-User-Id, X-User-Roles, "
            "X-Service) from request headers in rate-limited routes. Enable "
            "only behind a proxy that overwrites them."
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class EngineSettings(BaseSettings):
    """Admission engine tuning.

    Defaults follow the production values: 5 minute policy cache, 60 second
    exemption cache, breaker opening after 5 consecutive backend errors for
    60 seconds, and a local fallback store bounded at 10,000 keys.
    """

    counter_backend: Literal["local", "redis"] = Field(
        "local",
        description="Primary counter store: 'local' (in-process) or 'redis' (shared)",
    )
    backend_timeout_ms: int = Field(
        50,
        description="Timeout applied to every counter store call, in milliseconds",
        ge=1,
    )
    local_max_keys: int = Field(
        10_000,
        description="Maximum number of live keys held by the in-process counter store",
        ge=1,
    )
    sweep_interval_seconds: float = Field(
        60.0,
        description="Interval between sweeps of idle in-process counters",
        gt=0,
    )
    idle_grace_seconds: float = Field(
        300.0,
        description="Idle time after which an in-process counter is dropped",
        gt=0,
    )
    policy_cache_ttl_seconds: float = Field(
        300.0,
        description="TTL of resolved policies",
        ge=0,
    )
    exemption_cache_ttl_seconds: float = Field(
        60.0,
        description="TTL of exemption decisions",
        ge=0,
    )
    cache_max_entries: int = Field(
        10_000,
        description="Maximum entries per resolver cache",
        ge=1,
    )
    breaker_error_threshold: int = Field(
        5,
        description="Consecutive backend errors that open a limit key's circuit breaker",
        ge=1,
    )
    breaker_open_seconds: float = Field(
        60.0,
        description="How long an open circuit breaker bypasses the backend",
        gt=0,
    )
    throttle_max_delay_seconds: float = Field(
        5.0,
        description="Upper bound of the artificial delay applied by 'throttle' policies",
        ge=0,
    )
    metrics_buffer_size: int = Field(
        10_000,
        description="Number of recent decisions kept for metrics queries",
        ge=1,
    )
    default_environment: str | None = Field(
        None,
        description="Environment used when a request does not carry one (defaults to APP_ENV)",
    )
    seed_default_policies: bool = Field(
        False,
        description="Seed the built-in policy set into the policy store at startup",
    )

    model_config = SettingsConfigDict(
        env_prefix="ENGINE_",
        case_sensitive=False,
    )

    @property
    def backend_timeout_seconds(self) -> float:
        return self.backend_timeout_ms / 1000.0


class RedisSettings(BaseSettings):
    """Shared counter store connection."""

    url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL",
    )
    key_prefix: str = Field(
        "rate_limit:",
        description="Prefix applied to every counter key",
    )
    socket_timeout_seconds: float = Field(
        0.25,
        description="Socket read/write timeout in seconds",
        gt=0,
    )
    socket_connect_timeout_seconds: float = Field(
        0.25,
        description="Socket connect timeout in seconds",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    log: LogSettings = Field(default_factory=_build_log_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)
    engine: EngineSettings = Field(default_factory=_build_engine_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
