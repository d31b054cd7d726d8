from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from catalogfeed.feeds.feed_rows import (
    CATALOG_FEED_COLUMNS,
    COUNTRY_OVERRIDE_FEED_COLUMNS,
    Availability,
    CountryOverrideRow,
    FeedRow,
    format_price,
)


@pytest.mark.parametrize(
    "amount,currency,expected",
    [
        (Decimal("19.99"), "USD", "19.99 USD"),
        (Decimal("24.5"), "usd", "24.50 USD"),
        (Decimal("4.995"), "EUR", "5.00 EUR"),
        (Decimal("1234567.1"), "SEK", "1234567.10 SEK"),
        (None, "USD", ""),
    ],
)
def test_format_price(amount, currency, expected):
    assert format_price(amount, currency) == expected


def test_catalog_row_matches_column_count():
    row = FeedRow(id="sku-1", title="Red Shirt", price=Decimal("10"))

    assert len(row.to_csv_row()) == len(CATALOG_FEED_COLUMNS)


def test_catalog_row_fields_land_in_their_columns():
    row = FeedRow(
        id="sku-2",
        title="Blue\nShirt",
        price=Decimal("24.5"),
        currency="USD",
        availability=Availability.OUT_OF_STOCK,
        item_group_id="shirts",
        sale_price=Decimal("20"),
        sale_price_starts_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        sale_price_ends_at=datetime(2026, 1, 31, tzinfo=timezone.utc),
    )

    values = dict(zip(CATALOG_FEED_COLUMNS, row.to_csv_row()))

    assert values["title"] == "Blue Shirt"
    assert values["price"] == "24.50 USD"
    assert values["sale_price"] == "20.00 USD"
    assert values["availability"] == "out of stock"
    assert values["sale_price_effective_date"] == "2026-01-01T00:00:00+00:00/2026-01-31T00:00:00+00:00"
    assert values["variant"] == "true"
    assert values["external_variant_id"] == "sku-2"


def test_group_parent_is_not_a_variant():
    row = FeedRow(id="shirts", title="Shirts", price=Decimal("1"), item_group_id="shirts")

    assert row.is_variant is False


def test_negative_price_is_rejected():
    with pytest.raises(ValidationError):
        FeedRow(id="sku-1", title="Red Shirt", price=Decimal("-1"))


def test_country_override_row():
    row = CountryOverrideRow(id="sku-1", country_code="de", price=Decimal("18.5"), currency="EUR")

    assert row.to_csv_row() == ["sku-1", "DE", "18.50 EUR"]
    assert len(row.to_csv_row()) == len(COUNTRY_OVERRIDE_FEED_COLUMNS)
