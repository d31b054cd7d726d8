"""Feed row models and the column contracts of each feed file.

Column order is part of the contract with the remote catalog endpoint.
Append new columns at the end; never reorder or rename existing ones.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

CATALOG_FEED_COLUMNS = [
    "id",
    "title",
    "description",
    "rich_text_description",
    "image_link",
    "additional_image_link",
    "link",
    "product_type",
    "brand",
    "price",
    "availability",
    "item_group_id",
    "checkout_url",
    "video",
    "sale_price_effective_date",
    "sale_price",
    "condition",
    "visibility",
    "gender",
    "color",
    "size",
    "pattern",
    "google_product_category",
    "default_product",
    "variant",
    "gtin",
    "quantity_to_sell_on_facebook",
    "internal_label",
    "external_variant_id",
]

COUNTRY_OVERRIDE_FEED_COLUMNS = ["id", "override", "price"]

PRICE_QUANTUM = Decimal("0.01")


def format_price(amount: Decimal | None, currency: str) -> str:
    """Fixed two-decimal price with currency code, e.g. ``19.99 USD``.

    Never locale formatted: no grouping separators, always a dot.
    """
    if amount is None:
        return ""
    quantized = Decimal(amount).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)
    return f"{quantized:f} {currency.upper()}"


def _single_line(value: Optional[str]) -> str:
    # Embedded newlines would split a row across lines
    if not value:
        return ""
    return " ".join(value.splitlines()).strip()


class Availability(str, Enum):
    IN_STOCK = "in stock"
    OUT_OF_STOCK = "out of stock"


class Visibility(str, Enum):
    PUBLISHED = "published"
    HIDDEN = "hidden"


class FeedRow(BaseModel):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = ""
    rich_text_description: str = ""
    image_link: str = ""
    additional_image_links: list[str] = []
    link: str = ""
    product_type: str = ""
    brand: str = ""
    price: Decimal
    currency: str = Field(default="USD", min_length=3, max_length=3)
    availability: Availability = Availability.IN_STOCK
    item_group_id: str = ""
    checkout_url: str = ""
    video: str = ""
    sale_price: Optional[Decimal] = None
    sale_price_starts_at: Optional[datetime] = None
    sale_price_ends_at: Optional[datetime] = None
    condition: str = "new"
    visibility: Visibility = Visibility.PUBLISHED
    gender: str = ""
    color: str = ""
    size: str = ""
    pattern: str = ""
    google_product_category: str = ""
    default_product: bool = False
    gtin: str = ""
    quantity_to_sell: Optional[int] = None
    internal_labels: list[str] = []

    @field_validator("price", "sale_price")
    @classmethod
    def non_negative(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        if value is not None and value < 0:
            raise ValueError("price cannot be negative")
        return value

    @property
    def is_variant(self) -> bool:
        return bool(self.item_group_id) and self.item_group_id != self.id

    def sale_price_effective_date(self) -> str:
        if self.sale_price is None or not (self.sale_price_starts_at or self.sale_price_ends_at):
            return ""
        start = _iso8601(self.sale_price_starts_at)
        end = _iso8601(self.sale_price_ends_at)
        return f"{start}/{end}"

    def to_csv_row(self) -> list[str]:
        """Serialize in CATALOG_FEED_COLUMNS order."""
        return [
            self.id,
            _single_line(self.title),
            _single_line(self.description),
            _single_line(self.rich_text_description),
            self.image_link,
            ",".join(self.additional_image_links),
            self.link,
            _single_line(self.product_type),
            _single_line(self.brand),
            format_price(self.price, self.currency),
            self.availability.value,
            self.item_group_id,
            self.checkout_url,
            self.video,
            self.sale_price_effective_date(),
            format_price(self.sale_price, self.currency),
            self.condition,
            self.visibility.value,
            self.gender,
            _single_line(self.color),
            _single_line(self.size),
            _single_line(self.pattern),
            self.google_product_category,
            "true" if self.default_product else "",
            "true" if self.is_variant else "",
            self.gtin,
            "" if self.quantity_to_sell is None else str(max(self.quantity_to_sell, 0)),
            ",".join(_single_line(label) for label in self.internal_labels),
            self.id if self.is_variant else "",
        ]


class CountryOverrideRow(BaseModel):
    id: str = Field(min_length=1)
    country_code: str = Field(min_length=2, max_length=2)
    price: Decimal
    currency: str = Field(min_length=3, max_length=3)

    def to_csv_row(self) -> list[str]:
        """Serialize in COUNTRY_OVERRIDE_FEED_COLUMNS order."""
        return [self.id, self.country_code.upper(), format_price(self.price, self.currency)]


def _iso8601(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S+00:00")
