from datetime import datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from catalogfeed.database.tables.base_class import Base, JSONType, utcnow


class Products(Base):
    """Catalog products as exposed to the feed pipeline.

    Keyed by the shop's own product identifier so feed rows keep
    stable ids across regenerations.
    """

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    title: Mapped[str] = mapped_column(sa.Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    rich_text_description: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    link: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    image_link: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    additional_image_links: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    video_link: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    brand: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    product_type: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    google_product_category: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    price: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(12, 2), nullable=True)
    sale_price: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(12, 2), nullable=True)
    sale_price_starts_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    sale_price_ends_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    currency: Mapped[str] = mapped_column(sa.String(3), nullable=False, default="USD")

    in_stock: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    inventory: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    condition: Mapped[str] = mapped_column(sa.String(16), nullable=False, default="new")
    visible: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)

    item_group_id: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    is_default_variant: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    gender: Mapped[Optional[str]] = mapped_column(sa.String(16), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    size: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    pattern: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    gtin: Mapped[Optional[str]] = mapped_column(sa.String(32), nullable=True)
    internal_labels: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class ProductCountryPrices(Base):
    __tablename__ = "product_country_prices"

    product_id: Mapped[str] = mapped_column(
        sa.ForeignKey(Products.id, ondelete="CASCADE"), primary_key=True
    )
    country_code: Mapped[str] = mapped_column(sa.String(2), primary_key=True)
    price: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(sa.String(3), nullable=False)
