"""Scrape runs, competitors and ad creatives"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_scrape_pipeline"
down_revision = None
branch_labels = None
depends_on = None


def _creative_columns() -> list[sa.Column]:
    text_array = postgresql.ARRAY(sa.Text())
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("run_id", sa.Text(), nullable=False),
        sa.Column("organisation_id", sa.String(length=64), nullable=False),
        sa.Column("ad_archive_id", sa.String(length=255), nullable=False),
        sa.Column("page_id", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("page_name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("page_profile_picture_url", sa.Text(), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("link_url", sa.Text(), nullable=True),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column("cta_text", sa.String(length=100), nullable=True),
        sa.Column("display_format", sa.String(length=50), nullable=True),
        sa.Column("resized_image_urls", text_array, nullable=True),
        sa.Column("original_image_urls", text_array, nullable=True),
        sa.Column("video_hd_urls", text_array, nullable=True),
        sa.Column("video_sd_urls", text_array, nullable=True),
        sa.Column("image_urls", text_array, nullable=True),
        sa.Column("publisher_platforms", text_array, nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("raw_data", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.execute("CREATE TYPE scrape_ad_type AS ENUM ('competitor','self');")
    ad_type_enum = postgresql.ENUM(name="scrape_ad_type", create_type=False)

    op.create_table(
        "runner_scrapers",
        sa.Column("run_id", sa.Text(), primary_key=True),
        sa.Column("organisation_id", sa.String(length=64), nullable=False),
        sa.Column("ad_type", ad_type_enum, nullable=False, server_default="competitor"),
        sa.Column("competitor_url", sa.Text(), nullable=True),
        sa.Column("meta_ad_library_url", sa.Text(), nullable=True),
        sa.Column("ads_scraped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_runner_scrapers_organisation_id", "runner_scrapers", ["organisation_id"])
    op.create_index("ix_runner_scrapers_competitor_url", "runner_scrapers", ["competitor_url"])

    op.create_table(
        "competitors",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("organisation_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("meta_ad_library_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("organisation_id", "url", name="uq_competitors_org_url"),
    )
    op.create_index("ix_competitors_organisation_id", "competitors", ["organisation_id"])

    op.create_table(
        "competitor_ad_creatives",
        *_creative_columns(),
        sa.Column("competitor_id", sa.String(length=36), nullable=True),
        sa.UniqueConstraint("ad_archive_id", "organisation_id", name="uq_competitor_ad_creatives_archive_org"),
    )
    op.create_table(
        "self_ad_creatives",
        *_creative_columns(),
        sa.UniqueConstraint("ad_archive_id", "organisation_id", name="uq_self_ad_creatives_archive_org"),
    )
    for table in ("competitor_ad_creatives", "self_ad_creatives"):
        op.create_index(f"ix_{table}_run_id", table, ["run_id"])
        op.create_index(f"ix_{table}_organisation_id", table, ["organisation_id"])
    op.create_index(
        "ix_competitor_ad_creatives_competitor_id", "competitor_ad_creatives", ["competitor_id"]
    )


def downgrade() -> None:
    op.drop_table("self_ad_creatives")
    op.drop_table("competitor_ad_creatives")
    op.drop_table("competitors")
    op.drop_table("runner_scrapers")
    op.execute("DROP TYPE IF EXISTS scrape_ad_type;")
