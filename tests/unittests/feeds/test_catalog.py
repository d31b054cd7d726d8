"""Unit tests for DatabaseProductCatalog."""

from decimal import Decimal

import pytest

from catalogfeed.feeds.catalog import DatabaseProductCatalog
from catalogfeed.feeds.feed_rows import Availability
from catalogfeed.jobs.job_models import ProductFilter
from catalogfeed.main.exceptions import ProductResolutionException


@pytest.fixture
def catalog(sessionmanager, seeded_products):
    # Small batches so pagination crosses page boundaries
    return DatabaseProductCatalog(sessionmanager, batch_size=2)


async def collect(iterator):
    return [item async for item in iterator]


async def test_list_product_ids_pages_in_id_order(catalog):
    ids = await collect(catalog.list_product_ids(ProductFilter()))

    assert ids == ["sku-1", "sku-2", "sku-3", "sku-4", "sku-5"]


async def test_list_product_ids_can_include_hidden_and_filter_stock(catalog):
    everything = await collect(catalog.list_product_ids(ProductFilter(visible_only=False)))
    in_stock = await collect(catalog.list_product_ids(ProductFilter(in_stock_only=True)))

    assert "sku-hidden" in everything
    assert "sku-3" not in in_stock


async def test_list_product_ids_restricted_to_ids(catalog):
    ids = await collect(catalog.list_product_ids(ProductFilter(product_ids=["sku-5", "sku-1"])))

    assert ids == ["sku-1", "sku-5"]


async def test_resolve_builds_feed_row(catalog):
    row = await catalog.resolve("sku-3")

    assert row.title == "Hat"
    assert row.price == Decimal("9")
    assert row.availability == Availability.OUT_OF_STOCK


async def test_resolve_missing_product_returns_none(catalog):
    assert await catalog.resolve("does-not-exist") is None


async def test_resolve_without_price_raises(catalog):
    with pytest.raises(ProductResolutionException):
        await catalog.resolve("sku-4")


async def test_country_product_ids_and_override(catalog):
    ids = await collect(catalog.list_country_product_ids("DE"))
    override = await catalog.resolve_country_override("sku-1", "de")

    assert ids == ["sku-1", "sku-5"]
    assert override.to_csv_row() == ["sku-1", "DE", "18.50 EUR"]
    assert await catalog.resolve_country_override("sku-2", "de") is None
