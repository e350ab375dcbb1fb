"""
Validation and mapping of Meta Ads Library dataset items into creative records.

Two payload shapes exist in the wild: ads whose ``snapshot`` carries a ``cards`` list (carousels,
DCO) and ads that only carry flat ``images`` / ``videos`` arrays. Media is resolved once into
:class:`MediaUrls` regardless of the shape.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from adscrape.db.enums import AdTypeEnum
from adscrape.errors import ScrapeProcessingError
from adscrape.scraping.types import (
    AdCreativeRecord,
    ClassificationResult,
    ClassificationStats,
    MediaUrls,
    ScrapedAd,
)

logger = logging.getLogger(__name__)


def _clean_url(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def filter_valid_urls(values: Any) -> Optional[List[str]]:
    """Keep non-blank string entries; ``None`` when nothing is left."""
    if not isinstance(values, list):
        return None
    filtered = [value for value in values if _clean_url(value)]
    return filtered or None


def _append(target: List[str], value: Any) -> None:
    url = _clean_url(value)
    if url:
        target.append(url)


def _media_from_cards(cards: Sequence[Any]) -> MediaUrls:
    media = MediaUrls()
    for card in cards:
        if not isinstance(card, dict):
            continue
        _append(media.resized_image_urls, card.get("resized_image_url"))
        _append(media.original_image_urls, card.get("original_image_url"))
        _append(media.video_hd_urls, card.get("video_hd_url"))
        _append(media.video_sd_urls, card.get("video_sd_url"))
    return media


def _media_from_arrays(images: Iterable[Any], videos: Iterable[Any]) -> MediaUrls:
    media = MediaUrls()
    for img in images:
        if isinstance(img, str):
            _append(media.original_image_urls, img)
        elif isinstance(img, dict):
            _append(media.resized_image_urls, img.get("resized_image_url"))
            _append(media.original_image_urls, img.get("original_image_url"))
    for video in videos:
        if isinstance(video, str):
            _append(media.video_hd_urls, video)
        elif isinstance(video, dict):
            _append(media.video_hd_urls, video.get("video_hd_url"))
            _append(media.video_sd_urls, video.get("video_sd_url"))
    return media


def extract_media(ad: ScrapedAd) -> MediaUrls:
    snapshot = ad.snapshot
    if snapshot.cards is not None:
        return _media_from_cards(snapshot.cards)
    return _media_from_arrays(snapshot.images, snapshot.videos)


def classify(raw_results: Sequence[Any], run_id: str) -> ClassificationResult:
    """Drop items without an archive id, then items without any usable media."""
    stats = ClassificationStats(total=len(raw_results))
    with_ids: List[ScrapedAd] = []
    for raw in raw_results:
        if not isinstance(raw, dict):
            stats.skipped += 1
            continue
        ad = ScrapedAd.from_raw(raw)
        if ad.external_id:
            stats.with_ids += 1
            with_ids.append(ad)
        else:
            stats.skipped += 1

    valid: List[ScrapedAd] = []
    for ad in with_ids:
        if extract_media(ad).is_empty() and not filter_valid_urls(ad.image_urls):
            continue
        stats.with_media += 1
        valid.append(ad)

    logger.info(
        "scrape_classifier.classified",
        extra={
            "run_id": run_id,
            "total": stats.total,
            "with_ids": stats.with_ids,
            "with_media": stats.with_media,
            "skipped": stats.skipped,
        },
    )
    return ClassificationResult(valid_ads=valid, stats=stats)


def epoch_to_datetime(value: Any) -> Optional[datetime]:
    if not value or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except ValueError:
            return None
    return None


def _text(*candidates: Any) -> Optional[str]:
    for candidate in candidates:
        if candidate is None or candidate == "":
            continue
        if isinstance(candidate, (dict, list)):
            continue
        return str(candidate)
    return None


def transform(
    ad: ScrapedAd,
    *,
    run_id: str,
    organisation_id: str,
    ad_type: AdTypeEnum,
    competitor_id: Optional[str] = None,
) -> AdCreativeRecord:
    external_id = ad.external_id
    if not external_id:
        raise ValueError("Cannot map scraped ad: missing ad_archive_id/ad_id")

    snapshot = ad.snapshot
    media = extract_media(ad)
    platforms = ad.publisher_platform
    if isinstance(platforms, str):
        platforms = [platforms]

    return AdCreativeRecord(
        run_id=run_id,
        organisation_id=organisation_id,
        ad_archive_id=external_id,
        ad_type=ad_type,
        page_id=_text(ad.page_id, snapshot.page_id) or "",
        page_name=_text(ad.page_name, snapshot.page_name, snapshot.current_page_name),
        is_active=True if ad.is_active is None else ad.is_active,
        page_profile_picture_url=_clean_url(ad.page_profile_picture_url)
        or _clean_url(snapshot.page_profile_picture_url),
        title=_text(ad.title, snapshot.title),
        body=_text(ad.body, snapshot.body_text),
        link_url=_text(ad.link_url, snapshot.link_url),
        caption=_text(ad.caption, snapshot.caption),
        cta_text=_text(ad.cta_text, snapshot.cta_text),
        display_format=_text(ad.display_format, snapshot.display_format),
        resized_image_urls=media.resized_image_urls or None,
        original_image_urls=media.original_image_urls or None,
        video_hd_urls=media.video_hd_urls or None,
        video_sd_urls=media.video_sd_urls or None,
        image_urls=filter_valid_urls(ad.image_urls) or (media.original_image_urls or None),
        publisher_platforms=filter_valid_urls(platforms),
        start_date=epoch_to_datetime(ad.start_date),
        end_date=epoch_to_datetime(ad.end_date),
        raw_data=ad.raw_snapshot,
        competitor_id=competitor_id if ad_type == AdTypeEnum.competitor else None,
    )


def transform_all(
    ads: Sequence[ScrapedAd],
    *,
    run_id: str,
    organisation_id: str,
    ad_type: AdTypeEnum,
    competitor_id: Optional[str] = None,
) -> List[AdCreativeRecord]:
    records: List[AdCreativeRecord] = []
    errors = 0
    for ad in ads:
        try:
            records.append(
                transform(
                    ad,
                    run_id=run_id,
                    organisation_id=organisation_id,
                    ad_type=ad_type,
                    competitor_id=competitor_id,
                )
            )
        except (ValueError, TypeError, OverflowError, OSError) as exc:
            errors += 1
            logger.error(
                "scrape_classifier.transform_failed",
                extra={"run_id": run_id, "ad_archive_id": ad.external_id, "error": str(exc)},
            )
    logger.info(
        "scrape_classifier.transformed",
        extra={"run_id": run_id, "transformed": len(records), "valid": len(ads), "errors": errors},
    )
    if not records:
        raise ScrapeProcessingError(f"No ads could be transformed for run_id: {run_id}")
    return records


def all_media_urls(records: Iterable[AdCreativeRecord]) -> List[str]:
    """Every distinct media URL referenced by the records, profile pictures included, in first-seen order."""
    seen: Dict[str, None] = {}
    for record in records:
        for url in (
            *(record.resized_image_urls or []),
            *(record.original_image_urls or []),
            *(record.video_hd_urls or []),
            *(record.video_sd_urls or []),
            *(record.image_urls or []),
            record.page_profile_picture_url,
        ):
            if _clean_url(url):
                seen.setdefault(url, None)
    return list(seen)


def _swap(urls: Optional[List[str]], mapping: Mapping[str, str]) -> Optional[List[str]]:
    if urls is None:
        return None
    return filter_valid_urls([mapping.get(url, url) for url in urls])


def replace_urls(records: Iterable[AdCreativeRecord], mapping: Mapping[str, str]) -> List[AdCreativeRecord]:
    """Copies of ``records`` with mirrored URLs swapped in; unmapped URLs are left untouched."""
    replaced: List[AdCreativeRecord] = []
    for record in records:
        profile = record.page_profile_picture_url
        replaced.append(
            replace(
                record,
                resized_image_urls=_swap(record.resized_image_urls, mapping),
                original_image_urls=_swap(record.original_image_urls, mapping),
                video_hd_urls=_swap(record.video_hd_urls, mapping),
                video_sd_urls=_swap(record.video_sd_urls, mapping),
                image_urls=_swap(record.image_urls, mapping),
                page_profile_picture_url=mapping.get(profile, profile) if profile else profile,
            )
        )
    return replaced
