import asyncio

from sqlalchemy import select

from adscrape.db.base import SessionLocal
from adscrape.db.enums import AdTypeEnum, PollOutcomeEnum
from adscrape.db.models import CompetitorAdCreative, ScrapeRun, SelfAdCreative
from adscrape.db.repositories import AdCreativesRepository, CompetitorsRepository, ScrapeRunsRepository
from adscrape.errors import PersistenceError
from adscrape.services.result_poller import PollingScheduler
from adscrape.services.scrape_jobs import ScrapeJobService
from adscrape.services.scrape_pipeline import ScrapeResultProcessor

from conftest import TEST_ORG_ID, FakeMirror, FakeScraper, ad_payload


def _seed_run(session, run_id: str, ad_type=AdTypeEnum.competitor, target="https://shoeco.com") -> None:
    ScrapeRunsRepository(session).create(
        run_id=run_id,
        organisation_id=TEST_ORG_ID,
        ad_type=ad_type,
        competitor_url=target,
        meta_ad_library_url=target,
    )


def _scheduler(scraper, sleep, mirror=None, max_attempts=25, delay_seconds=10.0) -> PollingScheduler:
    mirror = mirror or FakeMirror()
    processor = ScrapeResultProcessor(session_factory=SessionLocal, mirror_factory=lambda: mirror)
    return PollingScheduler(
        fetch_results=scraper.fetch_results,
        processor=processor,
        max_attempts=max_attempts,
        delay_seconds=delay_seconds,
        sleep=sleep,
    )


def _run(session, run_id: str) -> ScrapeRun:
    session.expire_all()
    return session.get(ScrapeRun, run_id)


def test_poller_gives_up_after_max_attempts(db_session, fake_sleep):
    _seed_run(db_session, "r1")
    scraper = FakeScraper(responses={"r1": [None, None, None, None]})
    scheduler = _scheduler(scraper, fake_sleep, max_attempts=3, delay_seconds=7.0)

    async def scenario():
        assert scheduler.start("r1") is True
        await scheduler.wait("r1")

    asyncio.run(scenario())

    assert scraper.fetches == ["r1", "r1", "r1"]
    assert fake_sleep.delays == [7.0, 7.0]
    assert scheduler.outcome("r1") == PollOutcomeEnum.TIMED_OUT
    assert scheduler.is_active("r1") is False
    assert _run(db_session, "r1").completed is False


def test_transient_fetch_errors_are_retried(db_session, fake_sleep, transient_error):
    _seed_run(db_session, "r1")
    scraper = FakeScraper(responses={"r1": [transient_error, None, [ad_payload("A1")]]})
    scheduler = _scheduler(scraper, fake_sleep)

    async def scenario():
        scheduler.start("r1")
        await scheduler.wait()

    asyncio.run(scenario())

    assert len(scraper.fetches) == 3
    assert scheduler.outcome("r1") == PollOutcomeEnum.COMPLETED
    assert _run(db_session, "r1").completed is True


def test_starting_the_same_run_twice_keeps_one_poller(db_session, fake_sleep):
    _seed_run(db_session, "r1")
    scraper = FakeScraper(responses={"r1": [None, [ad_payload("A1")]]})
    scheduler = _scheduler(scraper, fake_sleep)

    async def scenario():
        first = scheduler.start("r1")
        second = scheduler.start("r1")
        status = scheduler.status()
        await scheduler.wait()
        return first, second, status

    first, second, status = asyncio.run(scenario())

    assert (first, second) == (True, False)
    assert status.active_count == 1
    assert status.active_run_ids == ["r1"]
    assert scraper.fetches == ["r1", "r1"]
    assert scheduler.status().active_count == 0


def test_results_without_valid_media_complete_the_run_without_storing(db_session, fake_sleep):
    _seed_run(db_session, "r1")
    mirror = FakeMirror()
    scraper = FakeScraper(responses={"r1": [[ad_payload("A1", image_url=None), {"page_name": "no id"}]]})
    scheduler = _scheduler(scraper, fake_sleep, mirror=mirror)

    async def scenario():
        scheduler.start("r1")
        await scheduler.wait()

    asyncio.run(scenario())

    assert scheduler.outcome("r1") == PollOutcomeEnum.COMPLETED
    assert _run(db_session, "r1").completed is True
    assert mirror.calls == []
    assert db_session.scalars(select(CompetitorAdCreative)).all() == []


def test_unreachable_media_keeps_provider_urls(db_session, fake_sleep):
    _seed_run(db_session, "r1", ad_type=AdTypeEnum.self_)
    scraper = FakeScraper(responses={"r1": [[ad_payload("A1")]]})
    scheduler = _scheduler(scraper, fake_sleep, mirror=FakeMirror())

    async def scenario():
        scheduler.start("r1")
        await scheduler.wait()

    asyncio.run(scenario())

    row = db_session.scalars(select(SelfAdCreative)).one()
    assert row.original_image_urls == ["https://cdn.example/x.jpg"]
    assert _run(db_session, "r1").completed is True


def test_unexpected_fetch_errors_only_cost_an_attempt(db_session, fake_sleep):
    _seed_run(db_session, "r1")
    scraper = FakeScraper(responses={"r1": [KeyError("defaultDatasetId"), [ad_payload("A1")]]})
    scheduler = _scheduler(scraper, fake_sleep, delay_seconds=5.0)

    async def scenario():
        scheduler.start("r1")
        await scheduler.wait()

    asyncio.run(scenario())

    assert scraper.fetches == ["r1", "r1"]
    assert fake_sleep.delays == [5.0]
    assert scheduler.outcome("r1") == PollOutcomeEnum.COMPLETED
    assert _run(db_session, "r1").completed is True


def test_unexpected_fetch_errors_still_time_out(db_session, fake_sleep):
    _seed_run(db_session, "r1")
    scraper = FakeScraper(responses={"r1": [ValueError("bad payload")] * 3})
    scheduler = _scheduler(scraper, fake_sleep, max_attempts=3)

    async def scenario():
        scheduler.start("r1")
        await scheduler.wait()

    asyncio.run(scenario())

    assert len(scraper.fetches) == 3
    assert scheduler.outcome("r1") == PollOutcomeEnum.TIMED_OUT
    assert _run(db_session, "r1").completed is False


def test_failed_mirrored_write_aborts_the_run_but_keeps_the_first_write(db_session, fake_sleep, monkeypatch):
    _seed_run(db_session, "r1")
    mirror = FakeMirror({"https://cdn.example/x.jpg": "https://storage.example/org_test_1/competitor/1_abc123.jpg"})
    scraper = FakeScraper(responses={"r1": [[ad_payload("A1")]]})
    scheduler = _scheduler(scraper, fake_sleep, mirror=mirror)

    original_upsert = AdCreativesRepository.bulk_upsert
    calls = []

    def upsert_then_fail(self, records):
        calls.append(len(records))
        if len(calls) > 1:
            raise PersistenceError("database unavailable")
        return original_upsert(self, records)

    monkeypatch.setattr(AdCreativesRepository, "bulk_upsert", upsert_then_fail)

    async def scenario():
        scheduler.start("r1")
        await scheduler.wait()

    asyncio.run(scenario())

    assert calls == [1, 1]
    assert scheduler.outcome("r1") == PollOutcomeEnum.FAILED
    assert scheduler.is_active("r1") is False
    assert _run(db_session, "r1").completed is False
    assert _run(db_session, "r1").completed_at is None

    row = db_session.scalars(select(CompetitorAdCreative)).one()
    assert row.ad_archive_id == "A1"
    assert row.original_image_urls == ["https://cdn.example/x.jpg"]


def test_processing_failure_leaves_the_run_incomplete(db_session, fake_sleep):
    # No ScrapeRun row: the processor cannot resolve the organisation.
    scraper = FakeScraper(responses={"ghost": [[ad_payload("A1")]]})
    scheduler = _scheduler(scraper, fake_sleep)

    async def scenario():
        scheduler.start("ghost")
        await scheduler.wait()

    asyncio.run(scenario())

    assert scheduler.outcome("ghost") == PollOutcomeEnum.FAILED
    assert scheduler.is_active("ghost") is False


def test_shutdown_cancels_pollers(db_session):
    _seed_run(db_session, "r1")
    scraper = FakeScraper(responses={"r1": [None] * 10})

    async def scenario():
        scheduler = _scheduler(scraper, asyncio.sleep, delay_seconds=60.0)
        scheduler.start("r1")
        await asyncio.sleep(0)
        await scheduler.shutdown()
        return scheduler

    scheduler = asyncio.run(scenario())

    assert scheduler.outcome("r1") == PollOutcomeEnum.CANCELLED
    assert scheduler.active_run_ids() == []
    assert _run(db_session, "r1").completed is False


def test_resume_incomplete_reattaches_recent_runs(db_session, fake_sleep):
    _seed_run(db_session, "r1")
    _seed_run(db_session, "r2")
    ScrapeRunsRepository(db_session).mark_complete("r2")
    scraper = FakeScraper(responses={"r1": [[ad_payload("A1")]]})
    scheduler = _scheduler(scraper, fake_sleep)

    async def scenario():
        resumed = await scheduler.resume_incomplete(window_minutes=60)
        await scheduler.wait()
        return resumed

    assert asyncio.run(scenario()) == ["r1"]
    assert _run(db_session, "r1").completed is True


def test_end_to_end_competitor_scrape(db_session, fake_sleep):
    CompetitorsRepository(db_session).create(organisation_id=TEST_ORG_ID, url="https://shoeco.com", name="Shoe Co")
    mirrored_url = "https://storage.example/org_test_1/competitor/1700000000000_abc123.jpg"
    mirror = FakeMirror({"https://cdn.example/x.jpg": mirrored_url})
    scraper = FakeScraper(run_ids=["r1"], responses={"r1": [None, [ad_payload("A1")]]})
    scheduler = _scheduler(scraper, fake_sleep, mirror=mirror)
    jobs = ScrapeJobService(scraper=scraper, scheduler=scheduler, session_factory=SessionLocal)

    async def scenario():
        result = await jobs.start_run(
            target_url="https://shoeco.com",
            organisation_id=TEST_ORG_ID,
            ad_type=AdTypeEnum.competitor,
        )
        await scheduler.wait()
        return result

    result = asyncio.run(scenario())

    assert result.run_id == "r1"
    assert result.polling_status == "started"
    assert scraper.submitted == ["https://shoeco.com"]
    assert fake_sleep.delays == [10.0]

    row = db_session.scalars(select(CompetitorAdCreative)).one()
    assert row.ad_archive_id == "A1"
    assert row.run_id == "r1"
    assert row.original_image_urls == [mirrored_url]
    assert row.competitor_id is not None
    assert mirror.calls[0]["organisation_id"] == TEST_ORG_ID
    assert mirror.calls[0]["ad_type"] == "competitor"

    run = _run(db_session, "r1")
    assert run.completed is True
    assert run.competitor_url == "https://shoeco.com"

    status = jobs.get_run_status("r1", TEST_ORG_ID)
    assert status.message == "Scraping completed."
    assert [creative.ad_archive_id for creative in status.creatives] == ["A1"]
    assert jobs.get_run_status("r1", "org_other") is None
