"""Settings validation and singleton behaviour."""

import pytest

from catalogfeed.main.config import Settings, get_settings, reset_settings, set_settings


def test_settings_lazy_initialization():
    reset_settings()

    first = get_settings()
    second = get_settings()

    assert first is second


def test_settings_can_be_overridden(test_settings):
    assert get_settings() is test_settings

    custom = test_settings.model_copy(update={"queue_cache_ttl_seconds": 99})
    set_settings(custom)

    assert get_settings().queue_cache_ttl_seconds == 99


def test_database_url_override_wins():
    settings = Settings(database_url_override="sqlite+aiosqlite://")

    assert settings.database_url == "sqlite+aiosqlite://"


def test_database_urls_from_postgres_fields():
    settings = Settings(
        postgres_user="u", postgres_password="p", postgres_host="db", postgres_port=5433, postgres_db="feeds"
    )

    assert settings.database_url == "postgresql+asyncpg://u:p@db:5433/feeds"
    assert settings.sync_database_url == "postgresql://u:p@db:5433/feeds"


def test_feed_countries_are_normalized():
    settings = Settings(feed_countries=[" DE", "fr", ""])

    assert settings.feed_countries == ["de", "fr"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"queue_cache_ttl_seconds": 0},
        {"queue_cache_prefix": ""},
        {"feed_write_buffer_size": 0},
        {"feed_progress_interval": 0},
        {"feed_generation_interval_seconds": -1},
        {"feed_generation_max_seconds": 0},
        {"feed_generation_max_seconds": 600, "feed_stale_job_threshold_minutes": 5},
        {"job_retention_days": 0},
    ],
)
def test_invalid_settings_exit(overrides):
    with pytest.raises(SystemExit):
        Settings(**overrides)


def test_upload_without_public_url_is_allowed():
    settings = Settings(catalog_upload_enabled=True, feed_public_base_url=None)

    assert settings.catalog_upload_enabled is True
