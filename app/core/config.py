"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Quota policies themselves live in a separate policy file (see
``app.schemas.policy``); this module only carries where to find it and how
the gate should behave around it.
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


def _build_gate_settings() -> "GateSettings":
    """Build gate settings from environment."""

    return GateSettings()


def _build_log_settings() -> "LogSettings":
    """Build logging settings from environment."""

    return LogSettings()


class GateSettings(BaseSettings):
    """Quota gate configuration."""

    enabled: bool = Field(
        True,
        description="Enable quota enforcement for inbound requests",
    )
    policies_file: str | None = Field(
        None,
        description="Path to the YAML or JSON policy file; no file means no policies",
    )
    filter_order: int | None = Field(
        None,
        description="Overrides the policy file's filterOrder (lower runs earlier)",
    )
    fail_open: bool = Field(
        False,
        description="Let requests through when the quota store is unavailable",
    )
    store_backend: Literal["memory", "redis"] = Field(
        "memory",
        description="Quota store implementation (memory is per-process only)",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL used when store_backend=redis",
    )
    store_timeout_seconds: float = Field(
        0.25,
        description="Socket/connect timeout for a single quota store call",
        gt=0,
    )
    key_prefix: str = Field(
        "quota-gate",
        description="Namespace prepended to every quota store key",
        min_length=1,
    )
    matcher_cache_size: int = Field(
        4096,
        description="Maximum (uri, method) pairs kept in the policy resolution cache",
        ge=1,
    )
    include_headers: bool = Field(
        True,
        description="Include Retry-After and X-RateLimit-* headers when rejecting",
    )

    model_config = SettingsConfigDict(
        env_prefix="GATE_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated log files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to accept and echo the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    gate: GateSettings = Field(default_factory=_build_gate_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
