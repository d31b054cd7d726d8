"""create feed jobs and product tables

Revision ID: 20261019_create_feed_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000

Creates:
- feed_jobs: background feed jobs, at most one active per concurrency_key
- products: catalog products exposed to the feed pipeline
- product_country_prices: per-country price overrides
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic
revision = "20261019_create_feed_tables"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_STATUS_CLAUSE = "status IN ('queued', 'processing')"


def upgrade() -> None:
    op.create_table(
        "feed_jobs",
        sa.Column(
            "id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("job_type", sa.String(32), nullable=False),
        sa.Column("concurrency_key", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("payload", JSONB, nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total", sa.Integer(), nullable=True),
        sa.Column("skipped_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("result_location", sa.Text(), nullable=True),
        sa.Column("upload_reference", sa.String(255), nullable=True),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("finished_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    # Backs the single-active-job rule when two workers race on create
    op.create_index(
        "uq_feed_jobs_active_concurrency_key",
        "feed_jobs",
        ["concurrency_key"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_STATUS_CLAUSE),
    )
    op.create_index("ix_feed_jobs_status_job_type", "feed_jobs", ["status", "job_type"])
    op.create_index("ix_feed_jobs_updated_at", "feed_jobs", ["updated_at"])

    op.create_table(
        "products",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("rich_text_description", sa.Text(), nullable=True),
        sa.Column("link", sa.Text(), nullable=True),
        sa.Column("image_link", sa.Text(), nullable=True),
        sa.Column(
            "additional_image_links", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")
        ),
        sa.Column("video_link", sa.Text(), nullable=True),
        sa.Column("brand", sa.Text(), nullable=True),
        sa.Column("product_type", sa.Text(), nullable=True),
        sa.Column("google_product_category", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("sale_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("sale_price_starts_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("sale_price_ends_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("in_stock", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("inventory", sa.Integer(), nullable=True),
        sa.Column("condition", sa.String(16), nullable=False, server_default="new"),
        sa.Column("visible", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("item_group_id", sa.String(64), nullable=True),
        sa.Column("is_default_variant", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("gender", sa.String(16), nullable=True),
        sa.Column("color", sa.Text(), nullable=True),
        sa.Column("size", sa.Text(), nullable=True),
        sa.Column("pattern", sa.Text(), nullable=True),
        sa.Column("gtin", sa.String(32), nullable=True),
        sa.Column(
            "internal_labels", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "product_country_prices",
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("country_code", sa.String(2), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("product_id", "country_code"),
    )
    op.create_index(
        "ix_product_country_prices_country_code", "product_country_prices", ["country_code"]
    )


def downgrade() -> None:
    op.drop_index("ix_product_country_prices_country_code", table_name="product_country_prices")
    op.drop_table("product_country_prices")
    op.drop_table("products")
    op.drop_index("ix_feed_jobs_updated_at", table_name="feed_jobs")
    op.drop_index("ix_feed_jobs_status_job_type", table_name="feed_jobs")
    op.drop_index("uq_feed_jobs_active_concurrency_key", table_name="feed_jobs")
    op.drop_table("feed_jobs")
