from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from adscrape.db.base import Base
from adscrape.db.enums import AdTypeEnum

# TEXT[] / JSONB on Postgres; plain JSON on SQLite so tests run without a server.
TextArray = sa.JSON().with_variant(ARRAY(Text), "postgresql")
JsonBlob = sa.JSON().with_variant(JSONB, "postgresql")


class ScrapeRun(Base):
    __tablename__ = "runner_scrapers"

    run_id: Mapped[str] = mapped_column(Text, primary_key=True)
    organisation_id: Mapped[str] = mapped_column(String(length=64), nullable=False, index=True)
    ad_type: Mapped[AdTypeEnum] = mapped_column(
        sa.Enum(AdTypeEnum, name="scrape_ad_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AdTypeEnum.competitor,
        server_default=AdTypeEnum.competitor.value,
    )
    competitor_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True, index=True)
    meta_ad_library_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ads_scraped: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    @property
    def completed(self) -> bool:
        return bool(self.ads_scraped)

    @property
    def is_active(self) -> bool:
        return not self.ads_scraped and self.completed_at is None


class Competitor(Base):
    __tablename__ = "competitors"
    __table_args__ = (UniqueConstraint("organisation_id", "url", name="uq_competitors_org_url"),)

    id: Mapped[str] = mapped_column(String(length=36), primary_key=True, default=lambda: str(uuid4()))
    organisation_id: Mapped[str] = mapped_column(String(length=64), nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    meta_ad_library_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class _AdCreativeColumns:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    organisation_id: Mapped[str] = mapped_column(String(length=64), nullable=False, index=True)
    ad_archive_id: Mapped[str] = mapped_column(String(length=255), nullable=False)
    page_id: Mapped[str] = mapped_column(String(length=255), nullable=False, default="")
    page_name: Mapped[Optional[str]] = mapped_column(String(length=255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=sa.true())
    page_profile_picture_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    link_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    caption: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cta_text: Mapped[Optional[str]] = mapped_column(String(length=100), nullable=True)
    display_format: Mapped[Optional[str]] = mapped_column(String(length=50), nullable=True)
    resized_image_urls: Mapped[Optional[list[str]]] = mapped_column(TextArray, nullable=True)
    original_image_urls: Mapped[Optional[list[str]]] = mapped_column(TextArray, nullable=True)
    video_hd_urls: Mapped[Optional[list[str]]] = mapped_column(TextArray, nullable=True)
    video_sd_urls: Mapped[Optional[list[str]]] = mapped_column(TextArray, nullable=True)
    image_urls: Mapped[Optional[list[str]]] = mapped_column(TextArray, nullable=True)
    publisher_platforms: Mapped[Optional[list[str]]] = mapped_column(TextArray, nullable=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    raw_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JsonBlob, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class CompetitorAdCreative(_AdCreativeColumns, Base):
    __tablename__ = "competitor_ad_creatives"
    __table_args__ = (
        UniqueConstraint("ad_archive_id", "organisation_id", name="uq_competitor_ad_creatives_archive_org"),
    )

    competitor_id: Mapped[Optional[str]] = mapped_column(String(length=36), nullable=True, index=True)


class SelfAdCreative(_AdCreativeColumns, Base):
    __tablename__ = "self_ad_creatives"
    __table_args__ = (
        UniqueConstraint("ad_archive_id", "organisation_id", name="uq_self_ad_creatives_archive_org"),
    )


AD_CREATIVE_MODELS: dict[AdTypeEnum, type[CompetitorAdCreative] | type[SelfAdCreative]] = {
    AdTypeEnum.competitor: CompetitorAdCreative,
    AdTypeEnum.self_: SelfAdCreative,
}
