from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

from catalogfeed.database.database import DatabaseSessionManager
from catalogfeed.database.tables import Base, ProductCountryPrices, Products
from catalogfeed.jobs.job_repo import JobRepository
from catalogfeed.jobs.job_service import JobService
from catalogfeed.jobs.queue_cache import build_queue_caches
from catalogfeed.main.config import Settings, reset_settings, set_settings


class FakeRedis:
    """In-memory stand-in for the handful of redis.asyncio calls the cache makes."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise ConnectionError("redis is down")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def aclose(self):
        pass


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Isolated settings: in-memory sqlite, temp feed directory, short budgets."""
    settings = Settings(
        postgres_user="unit_test_user",
        postgres_host="localhost",
        postgres_password="unit_test_password",
        postgres_port=5432,
        postgres_db="unit_test_db",
        database_url_override="sqlite+aiosqlite://",
        redis_host="localhost",
        redis_port=6379,
        queue_cache_prefix="test_background_job",
        queue_cache_ttl_seconds=30,
        feed_directory=str(tmp_path / "feeds"),
        feed_file_secret=None,
        feed_write_buffer_size=2,
        feed_progress_interval=2,
        feed_generation_enabled=True,
        feed_generation_interval_seconds=3600,
        feed_generation_max_seconds=60,
        feed_stale_job_threshold_minutes=5,
        feed_countries=[],
        catalog_api_base_url="https://catalog.example.com",
        catalog_api_version="v1.0",
        catalog_access_token="test-token",
        catalog_id="1234",
        catalog_product_feed_id="5678",
        catalog_upload_enabled=False,
        feed_public_base_url=None,
        testing=True,
    )
    set_settings(settings)
    return settings


@pytest.fixture(autouse=True)
def reset_settings_after_test():
    """Reset settings after each test to prevent state leakage."""
    yield
    reset_settings()


@pytest.fixture
async def sessionmanager(test_settings):
    manager = DatabaseSessionManager()
    manager.init(
        test_settings.database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with manager.connect() as connection:
        await connection.run_sync(Base.metadata.create_all)

    yield manager

    await manager.close()


@pytest.fixture
def redis_client(test_settings):
    return FakeRedis()


@pytest.fixture
def job_repo(sessionmanager):
    return JobRepository(sessionmanager)


@pytest.fixture
def queue_caches(redis_client, job_repo):
    return build_queue_caches(redis_client, job_repo)


@pytest.fixture
def job_service(job_repo, queue_caches):
    return JobService(job_repo, queue_caches)


@pytest.fixture
async def seeded_products(sessionmanager):
    """Five visible products (one out of stock, one without price) plus a hidden one."""
    products = [
        Products(id="sku-1", title="Red Shirt", price=Decimal("19.99"), currency="USD"),
        Products(
            id="sku-2",
            title="Blue Shirt",
            description="Soft\ncotton",
            price=Decimal("24.5"),
            currency="USD",
            item_group_id="shirts",
        ),
        Products(id="sku-3", title="Hat", price=Decimal("9"), currency="USD", in_stock=False),
        Products(id="sku-4", title="Broken", price=None, currency="USD"),
        Products(id="sku-5", title="Socks", price=Decimal("4.995"), currency="EUR"),
        Products(id="sku-hidden", title="Hidden", price=Decimal("1"), visible=False),
    ]
    overrides = [
        ProductCountryPrices(product_id="sku-1", country_code="de", price=Decimal("18.5"), currency="EUR"),
        ProductCountryPrices(product_id="sku-5", country_code="de", price=Decimal("3"), currency="EUR"),
        ProductCountryPrices(product_id="sku-2", country_code="fr", price=Decimal("22"), currency="EUR"),
    ]

    async with sessionmanager.session() as session, session.begin():
        session.add_all(products)
        await session.flush()
        session.add_all(overrides)

    return products
