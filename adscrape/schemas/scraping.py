from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from adscrape.db.enums import AdTypeEnum
from adscrape.services.scrape_jobs import validate_target_url


class _UrlRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class StartCompetitorScrapeRequest(_UrlRequest):
    competitor_url: str
    meta_ad_library_url: str

    @field_validator("competitor_url", "meta_ad_library_url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        return validate_target_url(value)


class StartSelfScrapeRequest(_UrlRequest):
    company_url: str
    meta_ad_dashboard_url: str

    @field_validator("company_url", "meta_ad_dashboard_url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        return validate_target_url(value)


class ScrapeResultRequest(_UrlRequest):
    url: str = Field(min_length=1)


class StartScrapeData(BaseModel):
    run_id: str
    polling_status: str


class StartScrapeResponse(BaseModel):
    success: bool = True
    message: str
    data: StartScrapeData


class AdCreativeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ad_archive_id: str
    run_id: str
    organisation_id: str
    competitor_id: Optional[str] = None
    page_id: str
    page_name: Optional[str] = None
    is_active: bool
    page_profile_picture_url: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    link_url: Optional[str] = None
    caption: Optional[str] = None
    cta_text: Optional[str] = None
    display_format: Optional[str] = None
    resized_image_urls: Optional[List[str]] = None
    original_image_urls: Optional[List[str]] = None
    video_hd_urls: Optional[List[str]] = None
    video_sd_urls: Optional[List[str]] = None
    image_urls: Optional[List[str]] = None
    publisher_platforms: Optional[List[str]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    raw_data: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ScrapeResultResponse(BaseModel):
    error: bool = False
    success: bool = True
    message: str
    data: Optional[List[AdCreativeOut]] = None
    count: int = 0
    isScraping: bool = False


class ScrapeRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    run_id: str
    organisation_id: str
    ad_type: AdTypeEnum
    competitor_url: Optional[str] = None
    meta_ad_library_url: Optional[str] = None
    completed: bool
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ScrapeRunStatusResponse(BaseModel):
    run: ScrapeRunOut
    polling: bool
    outcome: Optional[str] = None
    message: str
    creatives: List[AdCreativeOut] = []


class QueueStatusResponse(BaseModel):
    activeCount: int
    activeRunIds: List[str]
    timestamp: datetime
