from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional
from urllib.parse import urlparse

from adscrape.db.base import SessionLocal, session_scope
from adscrape.db.enums import AdTypeEnum
from adscrape.db.models import ScrapeRun
from adscrape.db.repositories import AdCreativesRepository, ScrapeRunsRepository
from adscrape.scraping.meta_ads_library import MetaAdsLibraryScraper
from adscrape.services.result_poller import PollingScheduler

logger = logging.getLogger(__name__)


@dataclass
class StartRunResult:
    run_id: str
    polling_status: str


@dataclass
class RunStatus:
    run: ScrapeRun
    polling: bool
    creatives: List = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.run.completed:
            return "Scraping completed."
        if self.polling:
            return "Scraping in progress. Background polling is active."
        return "Scraping not completed yet."


@dataclass
class ResultsPage:
    creatives: List
    total: int
    is_scraping: bool
    message: str
    run_id: Optional[str] = None


def validate_target_url(url: str) -> str:
    candidate = (url or "").strip()
    parsed = urlparse(candidate)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError(f"Invalid URL: {url!r}")
    return candidate


class ScrapeJobService:
    """Entry point for starting scrape runs and reading back what they produced."""

    def __init__(
        self,
        *,
        scraper: MetaAdsLibraryScraper,
        scheduler: PollingScheduler,
        session_factory: Callable = SessionLocal,
    ) -> None:
        self.scraper = scraper
        self.scheduler = scheduler
        self.session_factory = session_factory

    async def start_run(
        self,
        *,
        target_url: str,
        organisation_id: str,
        ad_type: AdTypeEnum,
        scrape_url: str | None = None,
    ) -> StartRunResult:
        """
        Submit a scrape for ``scrape_url`` (defaults to ``target_url``) and start polling for it.

        A run already in flight for the organisation does not block a new one; results of the
        newer run overwrite creatives with the same archive id. Nothing is recorded when the
        provider refuses the submission.
        """
        target_url = validate_target_url(target_url)
        scrape_url = validate_target_url(scrape_url) if scrape_url else target_url

        if await asyncio.to_thread(self._has_active_run, organisation_id):
            logger.info(
                "scrape_jobs.active_run_overwritten",
                extra={"organisation_id": organisation_id, "target_url": target_url},
            )

        run_id = await self.scraper.submit(scrape_url)
        await asyncio.to_thread(
            self._record_run,
            run_id=run_id,
            organisation_id=organisation_id,
            ad_type=ad_type,
            target_url=target_url,
            scrape_url=scrape_url,
        )
        started = self.scheduler.start(run_id)
        logger.info(
            "scrape_jobs.started",
            extra={
                "run_id": run_id,
                "organisation_id": organisation_id,
                "ad_type": ad_type.value,
                "target_url": target_url,
            },
        )
        return StartRunResult(run_id=run_id, polling_status="started" if started else "already_polling")

    def _has_active_run(self, organisation_id: str) -> bool:
        with session_scope(self.session_factory) as session:
            return ScrapeRunsRepository(session).has_active_run(organisation_id)

    def _record_run(
        self,
        *,
        run_id: str,
        organisation_id: str,
        ad_type: AdTypeEnum,
        target_url: str,
        scrape_url: str,
    ) -> None:
        with session_scope(self.session_factory) as session:
            ScrapeRunsRepository(session).create(
                run_id=run_id,
                organisation_id=organisation_id,
                ad_type=ad_type,
                competitor_url=target_url,
                meta_ad_library_url=scrape_url,
            )

    def get_run_status(self, run_id: str, organisation_id: str) -> Optional[RunStatus]:
        with session_scope(self.session_factory) as session:
            run = ScrapeRunsRepository(session).get(run_id)
            if run is None or run.organisation_id != organisation_id:
                return None
            creatives = []
            if run.completed:
                creatives = AdCreativesRepository(session, run.ad_type).list_by_run(run_id)
        return RunStatus(run=run, polling=self.scheduler.is_active(run_id), creatives=creatives)

    def get_results_by_url(
        self, url: str, organisation_id: str, *, limit: int = 50, offset: int = 0
    ) -> ResultsPage:
        """
        Creatives of ``organisation_id`` once it has scraped ``url`` to completion, newest first.

        Runs of other organisations for the same URL are never consulted. Both creative tables
        are combined before ``offset``/``limit`` are applied.
        """
        with session_scope(self.session_factory) as session:
            runs = ScrapeRunsRepository(session)
            completed = runs.latest_completed_for_target(url, organisation_id)
            if completed is None:
                in_flight = runs.latest_for_target(url, organisation_id)
                if in_flight is not None and in_flight.is_active:
                    return ResultsPage(
                        creatives=[],
                        total=0,
                        is_scraping=True,
                        message="Scraping is still in progress. Please try again later.",
                        run_id=in_flight.run_id,
                    )
                return ResultsPage(creatives=[], total=0, is_scraping=False, message="No scraping found for this URL.")

            window = offset + limit
            combined = []
            total = 0
            for ad_type in (AdTypeEnum.competitor, AdTypeEnum.self_):
                rows, count = AdCreativesRepository(session, ad_type).list_by_organisation(
                    organisation_id, limit=window
                )
                combined.extend(rows)
                total += count
            combined.sort(key=lambda row: row.created_at, reverse=True)
            page = combined[offset:window]

            latest = runs.latest_for_organisation(organisation_id)
            is_scraping = bool(latest and latest.is_active) and not page

        message = "Ad scraping results retrieved successfully." if page else "No ad results found for this URL."
        return ResultsPage(
            creatives=page,
            total=total,
            is_scraping=is_scraping,
            message=message,
            run_id=completed.run_id,
        )
