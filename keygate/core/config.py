"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

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

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level (DEBUG, INFO, WARNING, ...)")
    format: str = Field("json", description="Log format: 'json' or 'plain'")
    output: str = Field("stdout", description="Log destination: 'stdout' or 'file'")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class KeySettings(BaseSettings):
    """Credential issuance and admission policy."""

    default_rate_limit: int = Field(
        1000,
        description="Requests per minute granted to newly issued keys",
        ge=1,
    )
    key_prefix_length: int = Field(
        16,
        description="Number of leading key characters stored for display/audit",
        ge=1,
    )
    default_project: str = Field(
        "main",
        description="Project recorded when the issuance request names none",
    )
    window_seconds: int = Field(
        60,
        description="Length of the fixed rate window (the requests_1m bucket)",
        ge=1,
    )
    cache_slack_seconds: float = Field(
        1.0,
        description="Extra lifetime of a cache entry beyond one window",
        ge=0,
    )
    cache_stripes: int = Field(
        64,
        description="Number of lock stripes guarding the rate window cache",
        ge=1,
    )
    cache_sweep_interval_seconds: float = Field(
        30.0,
        description="How often expired rate windows are evicted from memory",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="KEYS_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Durable credential store configuration."""

    backend: str = Field(
        "sql",
        description="Credential store backend: 'sql' or 'memory'",
    )
    database_url: str = Field(
        "sqlite+aiosqlite:///./keygate.db",
        description="SQLAlchemy async database URL",
    )
    echo: bool = Field(False, description="Echo SQL statements (debugging)")
    timeout_seconds: float = Field(
        5.0,
        description="Upper bound for any single store call",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class IssuerSettings(BaseSettings):
    """Upstream credential-issuing service."""

    base_url: str = Field(
        "https://pigment-api.onrender.com",
        description="Base URL of the upstream issuing service",
    )
    users_path: str = Field("/v1/users", description="Path of the user creation endpoint")
    email_domain: str = Field(
        "key.pigment",
        description="Domain of the placeholder email used when the caller gives none",
    )
    timeout_seconds: float = Field(10.0, description="Request timeout in seconds", gt=0)

    model_config = SettingsConfigDict(
        env_prefix="ISSUER_",
        case_sensitive=False,
    )


class NotifySettings(BaseSettings):
    """Fire-and-forget key creation notifications."""

    github_token: str | None = Field(
        None,
        description="Token for the GitHub repository_dispatch webhook; unset disables notifications",
    )
    dispatch_url: str = Field(
        "https://api.github.com/repos/PIGMENT-ORG/PIGMENT-V6/dispatches",
        description="repository_dispatch endpoint",
    )
    event_type: str = Field("new-api-key", description="repository_dispatch event_type")
    queue_size: int = Field(100, description="Bounded notification queue capacity", ge=1)
    timeout_seconds: float = Field(5.0, description="Webhook request timeout", gt=0)

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        case_sensitive=False,
    )


class CorsSettings(BaseSettings):
    """Per-route CORS policy."""

    keys_allowed_origin: str = Field(
        "https://pigment-org.github.io",
        description="Single origin allowed to call the issuance endpoint",
    )
    verify_allowed_origin: str = Field(
        "*",
        description="Origin allowed to call the verification endpoint",
    )

    model_config = SettingsConfigDict(
        env_prefix="CORS_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    log: LogSettings = Field(default_factory=LogSettings)
    keys: KeySettings = Field(default_factory=KeySettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    issuer: IssuerSettings = Field(default_factory=IssuerSettings)
    notify: NotifySettings = Field(default_factory=NotifySettings)
    cors: CorsSettings = Field(default_factory=CorsSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
