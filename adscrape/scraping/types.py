from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from adscrape.db.enums import AdTypeEnum


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


class ScrapedSnapshot(BaseModel):
    """The ``snapshot`` object the Meta Ads Library actor attaches to each ad."""

    model_config = ConfigDict(extra="allow")

    cards: Optional[List[Any]] = None
    images: List[Any] = []
    videos: List[Any] = []
    page_id: Optional[Any] = None
    page_name: Optional[Any] = None
    current_page_name: Optional[Any] = None
    page_profile_picture_url: Optional[Any] = None
    title: Optional[Any] = None
    body: Optional[Any] = None
    link_url: Optional[Any] = None
    caption: Optional[Any] = None
    cta_text: Optional[Any] = None
    display_format: Optional[Any] = None

    @field_validator("cards", mode="before")
    @classmethod
    def _cards(cls, value: Any) -> Optional[list]:
        return value if isinstance(value, list) else None

    @field_validator("images", "videos", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list:
        return _as_list(value)

    @property
    def body_text(self) -> Optional[Any]:
        if isinstance(self.body, dict):
            return self.body.get("text")
        return None


class ScrapedAd(BaseModel):
    """One dataset item as returned by the provider. Unknown keys are kept as-is."""

    model_config = ConfigDict(extra="allow")

    ad_archive_id: Optional[Any] = None
    ad_id: Optional[Any] = None
    page_id: Optional[Any] = None
    page_name: Optional[Any] = None
    is_active: Optional[bool] = None
    page_profile_picture_url: Optional[Any] = None
    title: Optional[Any] = None
    body: Optional[Any] = None
    link_url: Optional[Any] = None
    caption: Optional[Any] = None
    cta_text: Optional[Any] = None
    display_format: Optional[Any] = None
    image_urls: Optional[Any] = None
    publisher_platform: Optional[Any] = None
    start_date: Optional[Any] = None
    end_date: Optional[Any] = None
    snapshot: ScrapedSnapshot = ScrapedSnapshot()
    raw_snapshot: Optional[Dict[str, Any]] = None

    @field_validator("snapshot", mode="before")
    @classmethod
    def _snapshot(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, ScrapedSnapshot)) else {}

    @field_validator("is_active", mode="before")
    @classmethod
    def _is_active(cls, value: Any) -> Optional[bool]:
        return value if isinstance(value, bool) else None

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "ScrapedAd":
        snapshot = raw.get("snapshot")
        return cls.model_validate(
            {**raw, "raw_snapshot": snapshot if isinstance(snapshot, dict) else None}
        )

    @property
    def external_id(self) -> Optional[str]:
        value = self.ad_archive_id or self.ad_id
        return str(value) if value else None


@dataclass
class MediaUrls:
    resized_image_urls: List[str] = field(default_factory=list)
    original_image_urls: List[str] = field(default_factory=list)
    video_hd_urls: List[str] = field(default_factory=list)
    video_sd_urls: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.resized_image_urls or self.original_image_urls or self.video_hd_urls or self.video_sd_urls
        )


@dataclass
class ClassificationStats:
    total: int = 0
    with_ids: int = 0
    with_media: int = 0
    skipped: int = 0


@dataclass
class ClassificationResult:
    valid_ads: List[ScrapedAd]
    stats: ClassificationStats


@dataclass
class AdCreativeRecord:
    """A creative ready for the sink; field names match the creative table columns."""

    run_id: str
    organisation_id: str
    ad_archive_id: str
    ad_type: AdTypeEnum
    page_id: str = ""
    page_name: Optional[str] = None
    is_active: bool = True
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
    raw_data: Optional[Dict[str, Any]] = None
    competitor_id: Optional[str] = None

    def column_values(self) -> Dict[str, Any]:
        values = {
            "run_id": self.run_id,
            "organisation_id": self.organisation_id,
            "ad_archive_id": self.ad_archive_id,
            "page_id": self.page_id,
            "page_name": self.page_name,
            "is_active": self.is_active,
            "page_profile_picture_url": self.page_profile_picture_url,
            "title": self.title,
            "body": self.body,
            "link_url": self.link_url,
            "caption": self.caption,
            "cta_text": self.cta_text,
            "display_format": self.display_format,
            "resized_image_urls": self.resized_image_urls,
            "original_image_urls": self.original_image_urls,
            "video_hd_urls": self.video_hd_urls,
            "video_sd_urls": self.video_sd_urls,
            "image_urls": self.image_urls,
            "publisher_platforms": self.publisher_platforms,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "raw_data": self.raw_data,
        }
        if self.ad_type == AdTypeEnum.competitor:
            values["competitor_id"] = self.competitor_id
        return values
