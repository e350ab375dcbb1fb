from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from adscrape.db.base import SessionLocal, session_scope
from adscrape.db.enums import AdTypeEnum
from adscrape.db.repositories import AdCreativesRepository, CompetitorsRepository, ScrapeRunsRepository
from adscrape.errors import ScrapeProcessingError
from adscrape.scraping import classifier
from adscrape.scraping.types import AdCreativeRecord
from adscrape.services.media_mirror import MediaMirrorService, MirrorResult
from adscrape.services.media_storage import MediaStorageConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    run_id: str
    organisation_id: str
    ad_type: AdTypeEnum
    competitor_url: Optional[str]


@dataclass
class ProcessingSummary:
    run_id: str
    total: int
    valid: int
    stored: int
    mirrored: int
    mirror_failed: int


class ScrapeResultProcessor:
    """
    Turns one finished result set into stored creatives and marks the run complete.

    Creatives are stored twice: first with the provider's URLs so they are visible right away,
    then again with mirrored URLs once media has been copied into our bucket. The run is
    only marked complete after the second write.
    """

    def __init__(
        self,
        *,
        session_factory: Callable = SessionLocal,
        mirror_factory: Callable[[], MediaMirrorService] = MediaMirrorService,
    ) -> None:
        self.session_factory = session_factory
        self.mirror_factory = mirror_factory

    async def process(self, run_id: str, raw_results: Sequence[Any]) -> ProcessingSummary:
        run = await asyncio.to_thread(self._load_run, run_id)

        classification = classifier.classify(raw_results, run_id)
        if not classification.valid_ads:
            logger.info("scrape_pipeline.no_valid_ads", extra={"run_id": run_id, "total": len(raw_results)})
            await asyncio.to_thread(self._mark_complete, run_id)
            return ProcessingSummary(
                run_id=run_id, total=len(raw_results), valid=0, stored=0, mirrored=0, mirror_failed=0
            )

        competitor_id = None
        if run.ad_type == AdTypeEnum.competitor:
            competitor_id = await asyncio.to_thread(self._competitor_id, run)

        records = classifier.transform_all(
            classification.valid_ads,
            run_id=run_id,
            organisation_id=run.organisation_id,
            ad_type=run.ad_type,
            competitor_id=competitor_id,
        )

        stored = await asyncio.to_thread(self._upsert, run.ad_type, records)
        logger.info("scrape_pipeline.fast_pass_stored", extra={"run_id": run_id, "stored": stored})

        mirror = await self._mirror(run, records)
        if mirror.url_mapping:
            mirrored_records = classifier.replace_urls(records, mirror.url_mapping)
            stored = await asyncio.to_thread(self._upsert, run.ad_type, mirrored_records)
            logger.info(
                "scrape_pipeline.mirrored_pass_stored",
                extra={"run_id": run_id, "stored": stored, "mirrored_urls": len(mirror.url_mapping)},
            )

        await asyncio.to_thread(self._mark_complete, run_id)
        logger.info("scrape_pipeline.completed", extra={"run_id": run_id, "stored": stored})
        return ProcessingSummary(
            run_id=run_id,
            total=len(raw_results),
            valid=len(classification.valid_ads),
            stored=stored,
            mirrored=len(mirror.successful),
            mirror_failed=len(mirror.failed),
        )

    async def _mirror(self, run: RunContext, records: Sequence[AdCreativeRecord]) -> MirrorResult:
        urls = classifier.all_media_urls(records)
        if not urls:
            return MirrorResult()
        try:
            service = self.mirror_factory()
        except MediaStorageConfigurationError as exc:
            logger.warning("scrape_pipeline.mirror_unavailable", extra={"run_id": run.run_id, "error": str(exc)})
            return MirrorResult()
        try:
            return await service.mirror(urls, organisation_id=run.organisation_id, ad_type=run.ad_type.value)
        except Exception:  # noqa: BLE001
            # Mirrored URLs are an upgrade; creatives already stored with provider URLs stay usable.
            logger.exception("scrape_pipeline.mirror_failed", extra={"run_id": run.run_id})
            return MirrorResult()

    def _load_run(self, run_id: str) -> RunContext:
        with session_scope(self.session_factory) as session:
            run = ScrapeRunsRepository(session).get(run_id)
            if run is None:
                raise ScrapeProcessingError(f"Unknown run_id: {run_id}")
            return RunContext(
                run_id=run.run_id,
                organisation_id=run.organisation_id,
                ad_type=run.ad_type,
                competitor_url=run.competitor_url,
            )

    def _competitor_id(self, run: RunContext) -> Optional[str]:
        if not run.competitor_url:
            logger.warning("scrape_pipeline.competitor_url_missing", extra={"run_id": run.run_id})
            return None
        try:
            with session_scope(self.session_factory) as session:
                competitor = CompetitorsRepository(session).get_by_url(
                    url=run.competitor_url, organisation_id=run.organisation_id
                )
        except SQLAlchemyError as exc:
            logger.warning("scrape_pipeline.competitor_lookup_failed", extra={"run_id": run.run_id, "error": str(exc)})
            return None
        if competitor is None:
            logger.warning(
                "scrape_pipeline.competitor_not_found",
                extra={"run_id": run.run_id, "competitor_url": run.competitor_url},
            )
            return None
        return competitor.id

    def _upsert(self, ad_type: AdTypeEnum, records: Sequence[AdCreativeRecord]) -> int:
        with session_scope(self.session_factory) as session:
            return AdCreativesRepository(session, ad_type).bulk_upsert(records)

    def _mark_complete(self, run_id: str) -> None:
        with session_scope(self.session_factory) as session:
            ScrapeRunsRepository(session).mark_complete(run_id)
