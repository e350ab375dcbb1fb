from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from adscrape.config import settings
from adscrape.db.base import SessionLocal, session_scope
from adscrape.db.enums import PollOutcomeEnum
from adscrape.db.repositories import ScrapeRunsRepository
from adscrape.errors import ApifyApiError
from adscrape.services.scrape_pipeline import ScrapeResultProcessor

logger = logging.getLogger(__name__)

FetchResults = Callable[[str], Awaitable[Optional[List[Dict[str, Any]]]]]

# Outcomes of finished pollers kept for the status endpoint.
_OUTCOME_HISTORY = 500


@dataclass
class PollingJob:
    run_id: str
    started_at: datetime
    attempts: int = 0
    task: Optional[asyncio.Task] = field(default=None, repr=False)


@dataclass
class QueueStatus:
    active_count: int
    active_run_ids: List[str]
    timestamp: datetime


class PollingScheduler:
    """
    One background poller per provider run, at most one per ``run_id``.

    Each poller asks the provider for results every ``delay_seconds`` for up to ``max_attempts``
    attempts, then hands the result set to the processor exactly once. Pollers live only in this
    process; a restart drops them (see ``resume_incomplete``).
    """

    def __init__(
        self,
        *,
        fetch_results: FetchResults,
        processor: ScrapeResultProcessor,
        max_attempts: int | None = None,
        delay_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.fetch_results = fetch_results
        self.processor = processor
        self.max_attempts = max(1, int(max_attempts or settings.SCRAPE_POLL_MAX_ATTEMPTS))
        self.delay_seconds = settings.SCRAPE_POLL_DELAY_SECONDS if delay_seconds is None else delay_seconds
        self._sleep = sleep
        self._jobs: Dict[str, PollingJob] = {}
        self._outcomes: "OrderedDict[str, PollOutcomeEnum]" = OrderedDict()

    def start(self, run_id: str) -> bool:
        """Start polling ``run_id``; returns False when a poller for it is already running."""
        if run_id in self._jobs:
            logger.info("scrape_poller.already_active", extra={"run_id": run_id})
            return False
        job = PollingJob(run_id=run_id, started_at=datetime.now(timezone.utc))
        self._jobs[run_id] = job
        job.task = asyncio.get_running_loop().create_task(self._run(job), name=f"scrape-poller:{run_id}")
        job.task.add_done_callback(lambda task, run_id=run_id: self._finished(run_id, task))
        logger.info(
            "scrape_poller.started",
            extra={"run_id": run_id, "active_count": len(self._jobs), "max_attempts": self.max_attempts},
        )
        return True

    def is_active(self, run_id: str) -> bool:
        return run_id in self._jobs

    def active_run_ids(self) -> List[str]:
        return list(self._jobs)

    def outcome(self, run_id: str) -> Optional[PollOutcomeEnum]:
        return self._outcomes.get(run_id)

    def status(self) -> QueueStatus:
        run_ids = self.active_run_ids()
        return QueueStatus(active_count=len(run_ids), active_run_ids=run_ids, timestamp=datetime.now(timezone.utc))

    async def wait(self, run_id: str | None = None) -> None:
        """Block until the given poller (or every poller) has reached a terminal state."""
        if run_id is not None:
            job = self._jobs.get(run_id)
            tasks = [job.task] if job and job.task else []
        else:
            tasks = [job.task for job in self._jobs.values() if job.task]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = [job.task for job in self._jobs.values() if job.task and not job.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("scrape_poller.shutdown", extra={"cancelled": len(tasks)})

    async def _run(self, job: PollingJob) -> PollOutcomeEnum:
        try:
            outcome = await self._poll(job)
        except asyncio.CancelledError:
            self._record(job.run_id, PollOutcomeEnum.CANCELLED)
            logger.info("scrape_poller.cancelled", extra={"run_id": job.run_id, "attempts": job.attempts})
            raise
        self._record(job.run_id, outcome)
        return outcome

    async def _poll(self, job: PollingJob) -> PollOutcomeEnum:
        run_id = job.run_id
        results = None
        while job.attempts < self.max_attempts:
            job.attempts += 1
            try:
                results = await self.fetch_results(run_id)
            except (ApifyApiError, httpx.HTTPError) as exc:
                logger.warning(
                    "scrape_poller.attempt_failed",
                    extra={"run_id": run_id, "attempt": job.attempts, "error": str(exc)},
                )
                results = None
            except Exception:  # noqa: BLE001
                # Any fetch failure only costs an attempt; the budget still bounds the loop.
                logger.exception("scrape_poller.fetch_crashed", extra={"run_id": run_id, "attempt": job.attempts})
                results = None

            if results is not None:
                break
            if job.attempts < self.max_attempts:
                logger.info(
                    "scrape_poller.pending",
                    extra={"run_id": run_id, "attempt": job.attempts, "max_attempts": self.max_attempts},
                )
                await self._sleep(self.delay_seconds)

        if results is None:
            logger.warning("scrape_poller.timed_out", extra={"run_id": run_id, "attempts": job.attempts})
            return PollOutcomeEnum.TIMED_OUT

        try:
            summary = await self.processor.process(run_id, results)
        except Exception:  # noqa: BLE001
            logger.exception("scrape_poller.processing_failed", extra={"run_id": run_id, "attempts": job.attempts})
            return PollOutcomeEnum.FAILED

        logger.info("scrape_poller.completed", extra={**asdict(summary), "attempts": job.attempts})
        return PollOutcomeEnum.COMPLETED

    def _record(self, run_id: str, outcome: PollOutcomeEnum) -> None:
        self._outcomes[run_id] = outcome
        self._outcomes.move_to_end(run_id)
        while len(self._outcomes) > _OUTCOME_HISTORY:
            self._outcomes.popitem(last=False)

    def _finished(self, run_id: str, task: asyncio.Task) -> None:
        job = self._jobs.get(run_id)
        if job is not None and job.task is task:
            del self._jobs[run_id]
        logger.info("scrape_poller.removed", extra={"run_id": run_id, "active_count": len(self._jobs)})

    async def resume_incomplete(
        self,
        *,
        window_minutes: int | None = None,
        session_factory: Callable = SessionLocal,
    ) -> List[str]:
        """Re-attach pollers to runs that were still incomplete when the process last stopped."""
        window = settings.SCRAPE_RESUME_WINDOW_MINUTES if window_minutes is None else window_minutes
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=window)

        def _load() -> List[str]:
            with session_scope(session_factory) as session:
                return [run.run_id for run in ScrapeRunsRepository(session).list_incomplete(created_after=cutoff)]

        run_ids = await asyncio.to_thread(_load)
        resumed = [run_id for run_id in run_ids if self.start(run_id)]
        logger.info("scrape_poller.resumed", extra={"resumed": len(resumed), "window_minutes": window})
        return resumed
