"""Product enumeration: the source of product ids and feed rows."""

from abc import ABC, abstractmethod
from typing import AsyncIterator

import sqlalchemy as sa
from pydantic import ValidationError

from catalogfeed.database.database import DatabaseSessionManager
from catalogfeed.database.tables.product_table import ProductCountryPrices, Products
from catalogfeed.feeds.feed_rows import Availability, CountryOverrideRow, FeedRow, Visibility
from catalogfeed.jobs.job_models import ProductFilter
from catalogfeed.main.exceptions import ProductResolutionException


class ProductCatalog(ABC):
    @abstractmethod
    def list_product_ids(self, product_filter: ProductFilter) -> AsyncIterator[str]:
        """Yield product ids in feed order."""

    @abstractmethod
    async def resolve(self, product_id: str) -> FeedRow | None:
        """Return the feed row for ``product_id``, or None if it no longer exists.

        Raises:
            ProductResolutionException: the product exists but cannot be
                turned into a valid row.
        """

    @abstractmethod
    def list_country_product_ids(self, country_code: str) -> AsyncIterator[str]:
        """Yield ids of products that carry a price override for ``country_code``."""

    @abstractmethod
    async def resolve_country_override(
        self, product_id: str, country_code: str
    ) -> CountryOverrideRow | None:
        pass


class DatabaseProductCatalog(ProductCatalog):
    """Reads products with keyset pagination, one short session per batch."""

    def __init__(self, sessionmanager: DatabaseSessionManager, batch_size: int = 500):
        self.sessionmanager = sessionmanager
        self.batch_size = batch_size

    async def list_product_ids(self, product_filter: ProductFilter) -> AsyncIterator[str]:
        conditions = []
        if product_filter.visible_only:
            conditions.append(Products.visible.is_(True))
        if product_filter.in_stock_only:
            conditions.append(Products.in_stock.is_(True))
        if product_filter.product_ids is not None:
            conditions.append(Products.id.in_(product_filter.product_ids))

        async for product_id in self._paginate(sa.select(Products.id).where(*conditions), Products.id):
            yield product_id

    async def resolve(self, product_id: str) -> FeedRow | None:
        async with self.sessionmanager.session() as session, session.begin():
            product = await session.get(Products, product_id)
            if product is None:
                return None

            try:
                return self._to_feed_row(product)
            except ValidationError as e:
                raise ProductResolutionException(
                    f"Product {product_id} cannot be exported: {e.error_count()} invalid field(s)"
                ) from e

    async def list_country_product_ids(self, country_code: str) -> AsyncIterator[str]:
        stmt = (
            sa.select(ProductCountryPrices.product_id)
            .join(Products, Products.id == ProductCountryPrices.product_id)
            .where(ProductCountryPrices.country_code == country_code.lower())
            .where(Products.visible.is_(True))
        )
        async for product_id in self._paginate(stmt, ProductCountryPrices.product_id):
            yield product_id

    async def resolve_country_override(
        self, product_id: str, country_code: str
    ) -> CountryOverrideRow | None:
        async with self.sessionmanager.session() as session, session.begin():
            override = await session.get(
                ProductCountryPrices, (product_id, country_code.lower())
            )
            if override is None:
                return None

            try:
                return CountryOverrideRow(
                    id=override.product_id,
                    country_code=override.country_code,
                    price=override.price,
                    currency=override.currency,
                )
            except ValidationError as e:
                raise ProductResolutionException(
                    f"Country override for {product_id} cannot be exported"
                ) from e

    async def _paginate(self, stmt: sa.Select, key_column) -> AsyncIterator[str]:
        last_key = None
        while True:
            page = stmt if last_key is None else stmt.where(key_column > last_key)
            page = page.order_by(key_column).limit(self.batch_size)

            async with self.sessionmanager.session() as session, session.begin():
                keys = list(await session.scalars(page))

            for key in keys:
                yield key

            if len(keys) < self.batch_size:
                return
            last_key = keys[-1]

    @staticmethod
    def _to_feed_row(product: Products) -> FeedRow:
        if product.price is None:
            raise ProductResolutionException(f"Product {product.id} has no price")

        return FeedRow(
            id=product.id,
            title=product.title,
            description=product.description or "",
            rich_text_description=product.rich_text_description or "",
            image_link=product.image_link or "",
            additional_image_links=list(product.additional_image_links or []),
            link=product.link or "",
            product_type=product.product_type or "",
            brand=product.brand or "",
            price=product.price,
            currency=product.currency,
            availability=Availability.IN_STOCK if product.in_stock else Availability.OUT_OF_STOCK,
            item_group_id=product.item_group_id or "",
            video=product.video_link or "",
            sale_price=product.sale_price,
            sale_price_starts_at=product.sale_price_starts_at,
            sale_price_ends_at=product.sale_price_ends_at,
            condition=product.condition,
            visibility=Visibility.PUBLISHED if product.visible else Visibility.HIDDEN,
            gender=product.gender or "",
            color=product.color or "",
            size=product.size or "",
            pattern=product.pattern or "",
            google_product_category=product.google_product_category or "",
            default_product=product.is_default_variant,
            gtin=product.gtin or "",
            quantity_to_sell=product.inventory,
            internal_labels=list(product.internal_labels or []),
        )
