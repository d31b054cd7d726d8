import logging
import os
import sys
from typing import Optional

from pydantic import computed_field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from catalogfeed.definitions import DATA_DIR


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    # Infrastructure dependencies
    postgres_user: str = "postgres"
    postgres_host: str = "localhost"
    postgres_password: str = "postgres"
    postgres_port: int = 5432
    postgres_db: str = "catalogfeed"
    # Used verbatim instead of the postgres url when set (e.g. sqlite in tests)
    database_url_override: Optional[str] = None

    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: Optional[int] = None
    redis_conn_timeout: int = 5
    redis_conn_retries: int = 5
    redis_conn_retry_delay: int = 1
    redis_retry_on_timeout: bool = True
    redis_max_connections: Optional[int] = 50
    redis_socket_keepalive: bool = True
    redis_health_check_interval: int = 30

    # Queue cache
    queue_cache_prefix: str = "catalogfeed_background_job"
    queue_cache_ttl_seconds: int = 30  # Short enough for a stuck slot to self-heal

    # Feed files
    feed_directory: str = str(DATA_DIR / "catalogfeed")
    feed_file_secret: Optional[str] = None  # Derived from feed name and directory when unset
    feed_write_buffer_size: int = 500  # Rows buffered before each flush
    feed_progress_interval: int = 1000  # Rows between progress updates on the job

    # Feed scheduling
    feed_generation_enabled: bool = True
    feed_generation_interval_seconds: int = 60 * 60  # Minimum time between successful runs
    feed_generation_max_seconds: int = 60 * 60 * 2  # Wall-clock budget per run
    feed_stale_job_threshold_minutes: int = 60 * 3  # Active jobs without progress for this long are failed
    feed_countries: list[str] = []  # Countries that get a country override feed
    feed_tick_minutes: set[int] = {0, 15, 30, 45}
    job_retention_days: int = 14

    # Remote catalog endpoint
    catalog_api_base_url: str = "https://graph.facebook.com"
    catalog_api_version: str = "v21.0"
    catalog_access_token: Optional[str] = None
    catalog_id: Optional[str] = None
    catalog_product_feed_id: Optional[str] = None
    catalog_api_timeout_seconds: float = 10.0
    catalog_upload_enabled: bool = False
    feed_public_base_url: Optional[str] = None  # Where the published feed files are served from

    # Worker configuration
    worker_max_jobs: int = 10

    # Dev
    testing: bool = False

    @field_validator("feed_countries", mode="after")
    @classmethod
    def normalize_countries(cls, countries: list[str]) -> list[str]:
        return [country.strip().lower() for country in countries if country.strip()]

    @model_validator(mode="after")
    def validate_queue_cache_settings(self):
        if self.queue_cache_ttl_seconds <= 0:
            logging.error(
                "QUEUE_CACHE_TTL_SECONDS must be greater than zero. Current value: %s",
                self.queue_cache_ttl_seconds,
            )
            sys.exit(1)

        if not self.queue_cache_prefix:
            logging.error("QUEUE_CACHE_PREFIX cannot be empty")
            sys.exit(1)

        return self

    @model_validator(mode="after")
    def validate_feed_settings(self):
        """Ensure feed generation configuration values are sane."""
        if self.feed_write_buffer_size <= 0:
            logging.error(
                "FEED_WRITE_BUFFER_SIZE must be greater than zero. Current value: %s",
                self.feed_write_buffer_size,
            )
            sys.exit(1)

        if self.feed_progress_interval <= 0:
            logging.error(
                "FEED_PROGRESS_INTERVAL must be greater than zero. Current value: %s",
                self.feed_progress_interval,
            )
            sys.exit(1)

        if self.feed_generation_interval_seconds < 0:
            logging.error(
                "FEED_GENERATION_INTERVAL_SECONDS cannot be negative. Current value: %s",
                self.feed_generation_interval_seconds,
            )
            sys.exit(1)

        if self.feed_generation_max_seconds <= 0:
            logging.error(
                "FEED_GENERATION_MAX_SECONDS must be greater than zero. Current value: %s",
                self.feed_generation_max_seconds,
            )
            sys.exit(1)

        if self.feed_stale_job_threshold_minutes * 60 < self.feed_generation_max_seconds:
            logging.error(
                "FEED_STALE_JOB_THRESHOLD_MINUTES (%s) is shorter than FEED_GENERATION_MAX_SECONDS (%s)."
                " Increase the threshold to cover the longest run to avoid reaping live jobs.",
                self.feed_stale_job_threshold_minutes,
                self.feed_generation_max_seconds,
            )
            sys.exit(1)

        if self.job_retention_days <= 0:
            logging.error(
                "JOB_RETENTION_DAYS must be greater than zero. Current value: %s",
                self.job_retention_days,
            )
            sys.exit(1)

        if self.catalog_upload_enabled and not self.feed_public_base_url:
            logging.warning(
                "CATALOG_UPLOAD_ENABLED is set but FEED_PUBLIC_BASE_URL is missing. "
                "Upload requests will be skipped."
            )

        return self

    @computed_field
    @property
    def sync_database_url(self) -> str:
        return (
            f"postgresql://{self.postgres_user}:"
            f"{self.postgres_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    @computed_field
    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override

        return (
            f"postgresql+asyncpg://{self.postgres_user}:"
            f"{self.postgres_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings singleton, creating it if needed.

    Returns:
        Settings: The application settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Override settings (primarily for testing).

    Args:
        settings: The Settings instance to use.
    """
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Reset settings to None (for test cleanup)."""
    global _settings
    _settings = None


def get_loglevel():
    loglevel = os.getenv("LOGLEVEL", "INFO")

    match loglevel:
        case "INFO":
            return logging.INFO
        case "WARNING":
            return logging.WARNING
        case "ERROR":
            return logging.ERROR
        case "CRITICAL":
            return logging.CRITICAL
        case "DEBUG":
            return logging.DEBUG
        case _:
            return logging.INFO
