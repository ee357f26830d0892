"""
Centralized configuration for the historical order sync.

This module provides a single source of truth for all configuration values.
Configuration is loaded from environment variables with sensible defaults.

Usage:
    from amzsync.config import config

    endpoint = config.spapi.endpoint
    delay = config.sync.inter_batch_delay_seconds
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


@dataclass(frozen=True)
class SPAPIConfig:
    """Selling Partner API configuration."""

    endpoint: str = field(
        default_factory=lambda: os.getenv(
            "SPAPI_ENDPOINT", "https://sellingpartnerapi-na.amazon.com"
        )
    )
    token_url: str = field(
        default_factory=lambda: os.getenv("SPAPI_TOKEN_URL", "https://api.amazon.com/auth/o2/token")
    )
    report_type: str = "GET_AMAZON_FULFILLED_SHIPMENTS_DATA_GENERAL"
    reports_path: str = "/reports/2021-06-30"

    # Timeouts (seconds)
    api_timeout: float = 60.0
    download_timeout: float = 120.0
    token_timeout: float = 30.0


@dataclass(frozen=True)
class CredentialsConfig:
    """Seller credentials from the environment (fallback to the store)."""

    seller_id: str = field(default_factory=lambda: os.getenv("SPAPI_SELLER_ID", ""))
    client_id: str = field(default_factory=lambda: os.getenv("SPAPI_CLIENT_ID", ""))
    client_secret: str = field(default_factory=lambda: os.getenv("SPAPI_CLIENT_SECRET", ""))
    refresh_token: str = field(default_factory=lambda: os.getenv("SPAPI_REFRESH_TOKEN", ""))
    marketplace_id: str = field(
        default_factory=lambda: os.getenv("SPAPI_MARKETPLACE_ID", "ATVPDKIKX0DER")
    )

    @property
    def is_complete(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)


@dataclass(frozen=True)
class SyncConfig:
    """Historical batched sync timings and limits."""

    default_batch_size_days: int = 90
    default_total_days: int = 720
    # "newest_first" or "oldest_first"
    batch_order: str = field(default_factory=lambda: os.getenv("SYNC_BATCH_ORDER", "newest_first"))

    # Waits (seconds). The provider allows ~15 report requests per hour.
    inter_batch_delay_seconds: float = field(
        default_factory=lambda: _env_float("SYNC_INTER_BATCH_DELAY_SECONDS", 240.0)
    )
    error_delay_seconds: float = field(
        default_factory=lambda: _env_float("SYNC_ERROR_DELAY_SECONDS", 300.0)
    )
    empty_batch_delay_seconds: float = field(
        default_factory=lambda: _env_float("SYNC_EMPTY_BATCH_DELAY_SECONDS", 5.0)
    )
    poll_interval_seconds: float = field(
        default_factory=lambda: _env_float("SYNC_POLL_INTERVAL_SECONDS", 15.0)
    )
    max_report_wait_seconds: float = field(
        default_factory=lambda: _env_float("SYNC_MAX_REPORT_WAIT_SECONDS", 900.0)
    )
    status_rate_limit_wait_seconds: float = field(
        default_factory=lambda: _env_float("SYNC_STATUS_RATE_LIMIT_WAIT_SECONDS", 60.0)
    )
    # Countdown granularity for long waits
    tick_seconds: float = 1.0

    # Create-report backoff: min(step * attempt, cap) minutes
    max_create_attempts: int = field(default_factory=lambda: _env_int("SYNC_MAX_CREATE_ATTEMPTS", 5))
    backoff_step_minutes: float = 2.0
    backoff_cap_minutes: float = 10.0
    seconds_per_minute: float = 60.0

    token_refresh_seconds: float = 30 * 60
    merge_chunk_size: int = 50

    # Progress streaming
    stream_interval_seconds: float = 0.5
    stream_max_lifetime_seconds: float = 3 * 60 * 60
    stream_queue_size: int = 16


@dataclass(frozen=True)
class StoreConfig:
    """DuckDB store configuration."""

    db_path: Path = field(
        default_factory=lambda: Path(
            os.getenv("AMZSYNC_DB_PATH", str(Path(__file__).parent.parent / "data" / "amzsync.duckdb"))
        )
    )
    query_timeout: float = 30.0


@dataclass(frozen=True)
class WebConfig:
    """Control surface configuration."""

    host: str = field(default_factory=lambda: os.getenv("WEB_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("WEB_PORT", 8080))
    start_rate_limit: str = "10/minute"
    status_rate_limit: str = "120/minute"


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "0.3.0"
    spapi: SPAPIConfig = field(default_factory=SPAPIConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    web: WebConfig = field(default_factory=WebConfig)


# Global config instance
config = AppConfig()

VERSION = config.version


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(cfg: AppConfig = None) -> None:
    """
    Validate configuration values.

    Credentials are not required here: they may live in the store and are
    only resolved when a run starts.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    cfg = cfg or config
    errors = []

    if cfg.sync.batch_order not in ("newest_first", "oldest_first"):
        errors.append(
            f"SYNC_BATCH_ORDER must be 'newest_first' or 'oldest_first' (got {cfg.sync.batch_order!r})"
        )

    if cfg.sync.max_create_attempts < 1:
        errors.append("SYNC_MAX_CREATE_ATTEMPTS must be at least 1")

    if cfg.sync.poll_interval_seconds <= 0:
        errors.append("SYNC_POLL_INTERVAL_SECONDS must be positive")

    if not cfg.spapi.endpoint.startswith("http"):
        errors.append(f"SPAPI_ENDPOINT appears to be invalid: {cfg.spapi.endpoint!r}")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
