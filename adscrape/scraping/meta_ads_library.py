from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from adscrape.config import settings
from adscrape.errors import ApifyApiError, ScrapeSubmissionError
from adscrape.scraping.apify_client import ApifyClient

logger = logging.getLogger(__name__)

_FINISHED_STATUSES = {"SUCCEEDED"}


class MetaAdsLibraryScraper:
    """Submits Meta Ads Library scrapes to the Apify actor and reads back their datasets."""

    def __init__(
        self,
        apify_client: ApifyClient,
        *,
        actor_id: str | None = None,
        results_limit: int | None = None,
        active_status: str | None = None,
    ) -> None:
        self.apify_client = apify_client
        self.actor_id = actor_id or settings.APIFY_META_ACTOR_ID
        self.results_limit = results_limit or settings.APIFY_RESULTS_LIMIT
        self.active_status = active_status or settings.APIFY_META_ACTIVE_STATUS

    def build_input(self, url: str) -> Dict[str, Any]:
        return {
            "urls": [{"url": url, "method": "GET"}],
            "count": self.results_limit,
            "scrapeAdDetails": True,
            "scrapePageAds.activeStatus": self.active_status,
        }

    async def submit(self, url: str) -> str:
        """Start an actor run for ``url`` and return the provider run id."""
        try:
            run = await self.apify_client.start_actor_run(self.actor_id, input_payload=self.build_input(url))
        except ApifyApiError as exc:
            logger.error("meta_ads_scraper.submit_failed", extra={"url": url, "error": str(exc)})
            raise ScrapeSubmissionError("Failed to start scraping job") from exc
        run_id = run.get("id") or run.get("runId")
        if not run_id:
            raise ScrapeSubmissionError("Apify actor run did not return an id")
        logger.info("meta_ads_scraper.submitted", extra={"url": url, "run_id": run_id, "actor_id": self.actor_id})
        return str(run_id)

    async def fetch_results(self, run_id: str) -> Optional[List[Dict[str, Any]]]:
        """
        Dataset items for a finished run, or ``None`` while the run is still going.

        A finished run whose dataset is empty is also reported as ``None``: the actor
        occasionally flips to SUCCEEDED before its items become readable.
        """
        run = await self.apify_client.fetch_run(run_id)
        status = (run.get("status") or "").upper()
        if not run.get("finishedAt") and status not in _FINISHED_STATUSES:
            return None
        dataset_id = run.get("defaultDatasetId")
        if not dataset_id:
            return None
        items = await self.apify_client.fetch_dataset_items(dataset_id)
        return items or None
