"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
prediction market scanner, loading and validating environment
variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


def _validate_http_url(v: str) -> str:
    if not v.startswith(("http://", "https://")):
        raise ValueError("API base URL must be an HTTP(S) endpoint")
    return v.rstrip("/")


class HttpSettings(BaseSettings):
    """Outbound HTTP settings shared by every venue adapter."""

    model_config = SettingsConfigDict(env_prefix="HTTP_", extra="ignore")

    timeout_seconds: float = Field(
        default=8.0,
        alias="HTTP_TIMEOUT_SECONDS",
        ge=0.5,
        le=120.0,
        description="Hard timeout for every outbound request",
    )
    requests_per_second: float = Field(
        default=40.0,
        alias="HTTP_REQUESTS_PER_SECOND",
        ge=0.1,
        le=1000.0,
        description="Request start rate across all venues",
    )
    max_concurrency: int = Field(
        default=25,
        alias="HTTP_MAX_CONCURRENCY",
        ge=1,
        le=500,
        description="Maximum in-flight requests",
    )
    user_agent: str = Field(
        default="prediction-market-scanner/0.1",
        alias="HTTP_USER_AGENT",
        description="User-Agent header sent to venues",
    )


class RedisSettings(BaseSettings):
    """Redis connection settings (optional shared cache mirror)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; unset keeps the cache in-process",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class PolymarketSettings(BaseSettings):
    """Venue-P (Polymarket) API settings."""

    model_config = SettingsConfigDict(env_prefix="POLYMARKET_", extra="ignore")

    gamma_url: str = Field(
        default="https://gamma-api.polymarket.com",
        alias="POLYMARKET_GAMMA_URL",
        description="Market metadata API",
    )
    data_url: str = Field(
        default="https://data-api.polymarket.com",
        alias="POLYMARKET_DATA_URL",
        description="Trades, holders, positions and activity API",
    )
    clob_url: str = Field(
        default="https://clob.polymarket.com",
        alias="POLYMARKET_CLOB_URL",
        description="CLOB API used for price history",
    )
    crawl_page_size: int = Field(
        default=100,
        alias="POLYMARKET_CRAWL_PAGE_SIZE",
        ge=10,
        le=500,
        description="Page size for the paginated market crawl",
    )
    crawl_max_failures: int = Field(
        default=3,
        alias="POLYMARKET_CRAWL_MAX_FAILURES",
        ge=1,
        le=20,
        description="Failed pages tolerated before the crawl stops",
    )

    @field_validator("gamma_url", "data_url", "clob_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate API URL format."""
        return _validate_http_url(v)


class KalshiSettings(BaseSettings):
    """Venue-K (Kalshi) API settings."""

    model_config = SettingsConfigDict(env_prefix="KALSHI_", extra="ignore")

    api_url: str = Field(
        default="https://api.elections.kalshi.com/trade-api/v2",
        alias="KALSHI_API_URL",
        description="Kalshi trade API base",
    )
    batch_size: int = Field(
        default=25,
        alias="KALSHI_BATCH_SIZE",
        ge=1,
        le=100,
        description="Concurrent per-event market fetches",
    )
    batch_delay_ms: int = Field(
        default=120,
        alias="KALSHI_BATCH_DELAY_MS",
        ge=0,
        le=10_000,
        description="Delay between market-fetch batches",
    )
    page_delay_ms: int = Field(
        default=150,
        alias="KALSHI_PAGE_DELAY_MS",
        ge=0,
        le=10_000,
        description="Delay between cursor pages",
    )
    max_pages: int = Field(
        default=20,
        alias="KALSHI_MAX_PAGES",
        ge=1,
        le=500,
        description="Upper bound on cursor pages per crawl",
    )
    exclude_sports: bool = Field(
        default=True,
        alias="KALSHI_EXCLUDE_SPORTS",
        description="Drop sports tickers (KXNBA, KXNFL, ...) in the adapter",
    )

    @field_validator("api_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate API URL format."""
        return _validate_http_url(v)


class CacheSettings(BaseSettings):
    """TTL cache bucket settings (seconds)."""

    model_config = SettingsConfigDict(env_prefix="CACHE_", extra="ignore")

    market_list_ttl: int = Field(default=900, alias="CACHE_MARKET_LIST_TTL", ge=1)
    trades_ttl: int = Field(default=300, alias="CACHE_TRADES_TTL", ge=1)
    whale_ttl: int = Field(
        default=600,
        alias="CACHE_WHALE_TTL",
        ge=1,
        description="holders_*, positions_* and whale_trades_* buckets",
    )
    activity_ttl: int = Field(default=900, alias="CACHE_ACTIVITY_TTL", ge=1)
    correlation_ttl: int = Field(default=900, alias="CACHE_CORRELATION_TTL", ge=1)
    slug_ttl: int = Field(default=900, alias="CACHE_SLUG_TTL", ge=1)
    stale_retention: int = Field(
        default=86_400,
        alias="CACHE_STALE_RETENTION",
        ge=60,
        description="How long an expired entry stays available for stale-on-error",
    )
    key_prefix: str = Field(
        default="pms:cache:",
        alias="CACHE_KEY_PREFIX",
        description="Redis key prefix for mirrored entries",
    )


class ScanSettings(BaseSettings):
    """Deep/lightweight scan settings."""

    model_config = SettingsConfigDict(env_prefix="SCAN_", extra="ignore")

    default_limit: int = Field(default=100, alias="SCAN_DEFAULT_LIMIT", ge=1, le=500)
    max_limit: int = Field(default=500, alias="SCAN_MAX_LIMIT", ge=1, le=5000)
    deep_limit: int = Field(
        default=50,
        alias="SCAN_DEEP_LIMIT",
        ge=1,
        le=500,
        description="Top-N markets by 24h volume that get trade analysis",
    )
    trade_batch_size: int = Field(default=20, alias="SCAN_TRADE_BATCH_SIZE", ge=1, le=200)
    trade_fetch_limit: int = Field(default=300, alias="SCAN_TRADE_FETCH_LIMIT", ge=3, le=1000)
    whale_enabled: bool = Field(
        default=False,
        alias="SCAN_WHALE_ENABLED",
        description="Attach whale intelligence to deep entries",
    )
    whale_batch_size: int = Field(default=10, alias="SCAN_WHALE_BATCH_SIZE", ge=1, le=100)
    velocity_enabled: bool = Field(
        default=True,
        alias="SCAN_VELOCITY_ENABLED",
        description="Attach velocity scoring to deep entries",
    )


class CorrelationSettings(BaseSettings):
    """Cross-market correlation settings."""

    model_config = SettingsConfigDict(env_prefix="CORRELATION_", extra="ignore")

    window_hours: int = Field(default=24, alias="CORRELATION_WINDOW_HOURS", ge=1, le=72)
    min_shared_wallets: int = Field(default=5, alias="CORRELATION_MIN_SHARED_WALLETS", ge=2, le=20)
    max_markets: int = Field(default=80, alias="CORRELATION_MAX_MARKETS", ge=10, le=150)
    batch_size: int = Field(default=15, alias="CORRELATION_BATCH_SIZE", ge=1, le=100)
    trade_fetch_limit: int = Field(default=500, alias="CORRELATION_TRADE_FETCH_LIMIT", ge=10, le=1000)


class SignalSettings(BaseSettings):
    """Trading-signal generation settings."""

    model_config = SettingsConfigDict(env_prefix="SIGNAL_", extra="ignore")

    min_edge: float = Field(default=0.05, alias="SIGNAL_MIN_EDGE", ge=0.0, le=1.0)
    max_days: int = Field(default=90, alias="SIGNAL_MAX_DAYS", ge=1, le=3650)
    default_limit: int = Field(default=20, alias="SIGNAL_DEFAULT_LIMIT", ge=1, le=50)
    max_limit: int = Field(default=50, alias="SIGNAL_MAX_LIMIT", ge=1, le=500)
    deep_limit: int = Field(default=50, alias="SIGNAL_DEEP_LIMIT", ge=1, le=500)
    kalshi_limit: int = Field(default=30, alias="SIGNAL_KALSHI_LIMIT", ge=0, le=500)
    batch_size: int = Field(default=15, alias="SIGNAL_BATCH_SIZE", ge=1, le=100)


class CallSettings(BaseSettings):
    """Call selection settings for the signal log writer."""

    model_config = SettingsConfigDict(env_prefix="CALLS_", extra="ignore")

    max_posts_per_day: int = Field(default=3, alias="CALLS_MAX_POSTS_PER_DAY", ge=0, le=100)
    min_call_score: int = Field(default=6, alias="CALLS_MIN_CALL_SCORE", ge=0, le=9)
    scan_limit: int = Field(default=50, alias="CALLS_SCAN_LIMIT", ge=1, le=500)


class StorageSettings(BaseSettings):
    """Append-only signal/resolution log locations."""

    model_config = SettingsConfigDict(env_prefix="SIGNALS_", extra="ignore")

    directory: Path = Field(
        default=Path("signals"),
        alias="SIGNALS_DIR",
        description="Directory holding the JSON log files",
    )
    post_log_name: str = Field(default="telegram-post-log.json", alias="SIGNALS_POST_LOG_NAME")
    receipts_name: str = Field(default="resolution-receipts.json", alias="SIGNALS_RECEIPTS_NAME")
    scorecard_name: str = Field(default="scorecard-data.json", alias="SIGNALS_SCORECARD_NAME")

    @property
    def post_log_path(self) -> Path:
        return self.directory / self.post_log_name

    @property
    def receipts_path(self) -> Path:
        return self.directory / self.receipts_name

    @property
    def scorecard_path(self) -> Path:
        return self.directory / self.scorecard_name


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from prediction_market_scanner.config import get_settings

        settings = get_settings()
        print(settings.polymarket.gamma_url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    http: HttpSettings = Field(
        default_factory=lambda: HttpSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    polymarket: PolymarketSettings = Field(
        default_factory=lambda: PolymarketSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    kalshi: KalshiSettings = Field(
        default_factory=lambda: KalshiSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    cache: CacheSettings = Field(
        default_factory=lambda: CacheSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scan: ScanSettings = Field(
        default_factory=lambda: ScanSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    correlation: CorrelationSettings = Field(
        default_factory=lambda: CorrelationSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    signals: SignalSettings = Field(
        default_factory=lambda: SignalSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    calls: CallSettings = Field(
        default_factory=lambda: CallSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    storage: StorageSettings = Field(
        default_factory=lambda: StorageSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Compute calls and receipts without appending to the signal log",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "polymarket": {
                "gamma_url": self.polymarket.gamma_url,
                "data_url": self.polymarket.data_url,
                "clob_url": self.polymarket.clob_url,
            },
            "kalshi": {
                "api_url": self.kalshi.api_url,
                "exclude_sports": str(self.kalshi.exclude_sports),
            },
            "http": {
                "timeout_seconds": str(self.http.timeout_seconds),
                "max_concurrency": str(self.http.max_concurrency),
            },
            "scan": {
                "deep_limit": str(self.scan.deep_limit),
                "whale_enabled": str(self.scan.whale_enabled),
                "velocity_enabled": str(self.scan.velocity_enabled),
            },
            "signals_dir": str(self.storage.directory),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
