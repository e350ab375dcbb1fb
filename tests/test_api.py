import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from adscrape.auth.dependencies import AuthContext, get_current_user
from adscrape.db.base import SessionLocal
from adscrape.db.enums import AdTypeEnum
from adscrape.db.models import ScrapeRun
from adscrape.db.repositories import AdCreativesRepository, ScrapeRunsRepository
from adscrape.errors import ScrapeSubmissionError
from adscrape.main import build_scrape_services, create_app
from adscrape.scraping import classifier
from adscrape.scraping.types import ScrapedAd
from adscrape.services.scrape_pipeline import ScrapeResultProcessor

from conftest import TEST_ORG_ID, FakeMirror, FakeScraper, ad_payload


async def _never_sleep(_delay: float) -> None:
    return None


@pytest.fixture()
def scraper() -> FakeScraper:
    return FakeScraper(run_ids=["run_1", "run_2"])


@pytest.fixture()
def api_client(db_session, scraper):
    app = create_app()
    processor = ScrapeResultProcessor(session_factory=SessionLocal, mirror_factory=FakeMirror)
    scheduler, jobs = build_scrape_services(scraper=scraper, processor=processor)
    scheduler._sleep = _never_sleep
    app.state.scrape_scheduler = scheduler
    app.state.scrape_jobs = jobs
    app.dependency_overrides[get_current_user] = lambda: AuthContext(user_id="user_1", org_id=TEST_ORG_ID)
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def test_start_competitor_scrape_records_the_run(api_client, db_session, scraper):
    resp = api_client.post(
        "/scrape/meta-ads/start",
        json={
            "competitor_url": "https://shoeco.com",
            "meta_ad_library_url": "https://www.facebook.com/ads/library/?q=shoeco",
        },
    )

    assert resp.status_code == 202
    body = resp.json()
    assert body["success"] is True
    assert body["data"] == {"run_id": "run_1", "polling_status": "started"}
    assert scraper.submitted == ["https://www.facebook.com/ads/library/?q=shoeco"]

    run = db_session.get(ScrapeRun, "run_1")
    assert run.organisation_id == TEST_ORG_ID
    assert run.ad_type == AdTypeEnum.competitor
    assert run.competitor_url == "https://shoeco.com"
    assert run.meta_ad_library_url == "https://www.facebook.com/ads/library/?q=shoeco"


def test_start_self_scrape_uses_the_self_table(api_client, db_session):
    resp = api_client.post(
        "/scrape/self-ads/start",
        json={"company_url": "https://shoeco.com", "meta_ad_dashboard_url": "https://www.facebook.com/shoeco"},
    )

    assert resp.status_code == 202
    assert db_session.get(ScrapeRun, "run_1").ad_type == AdTypeEnum.self_


def test_start_rejects_invalid_urls(api_client, db_session):
    resp = api_client.post(
        "/scrape/meta-ads/start",
        json={"competitor_url": "shoeco", "meta_ad_library_url": "https://www.facebook.com/ads/library/"},
    )

    assert resp.status_code == 422
    assert db_session.scalars(select(ScrapeRun)).all() == []


def test_provider_failure_returns_502_and_records_nothing(api_client, db_session, scraper):
    scraper.submit_error = ScrapeSubmissionError("Failed to start scraping job")

    resp = api_client.post(
        "/scrape/meta-ads/start",
        json={"competitor_url": "https://shoeco.com", "meta_ad_library_url": "https://www.facebook.com/ads/library/"},
    )

    assert resp.status_code == 502
    assert "Failed to start scraping job" in resp.json()["detail"]
    assert db_session.scalars(select(ScrapeRun)).all() == []


def test_queue_status_shape(api_client):
    resp = api_client.get("/scrape/queue/status")

    assert resp.status_code == 200
    body = resp.json()
    assert body["activeCount"] == 0
    assert body["activeRunIds"] == []
    assert "timestamp" in body


def test_run_status_is_scoped_to_the_callers_organisation(api_client, db_session):
    runs = ScrapeRunsRepository(db_session)
    runs.create(
        run_id="mine",
        organisation_id=TEST_ORG_ID,
        ad_type=AdTypeEnum.competitor,
        competitor_url="https://shoeco.com",
        meta_ad_library_url=None,
    )
    runs.create(
        run_id="theirs",
        organisation_id="org_other",
        ad_type=AdTypeEnum.competitor,
        competitor_url="https://shoeco.com",
        meta_ad_library_url=None,
    )

    mine = api_client.get("/scrape/runs/mine")
    assert mine.status_code == 200
    assert mine.json()["run"]["completed"] is False
    assert mine.json()["message"] == "Scraping not completed yet."

    assert api_client.get("/scrape/runs/theirs").status_code == 404
    assert api_client.get("/scrape/runs/unknown").status_code == 404


def test_results_by_url(api_client, db_session):
    resp = api_client.post("/scrape/ads/result", json={"url": "https://shoeco.com"})
    assert resp.status_code == 200
    assert resp.json()["data"] is None
    assert resp.json()["message"] == "No scraping found for this URL."

    runs = ScrapeRunsRepository(db_session)
    runs.create(
        run_id="r1",
        organisation_id=TEST_ORG_ID,
        ad_type=AdTypeEnum.competitor,
        competitor_url="https://shoeco.com",
        meta_ad_library_url=None,
    )
    in_progress = api_client.post("/scrape/ads/result", json={"url": "https://shoeco.com"})
    assert in_progress.status_code == 202
    assert in_progress.json()["isScraping"] is True

    ad = ScrapedAd.from_raw(ad_payload("A1"))
    record = classifier.transform(ad, run_id="r1", organisation_id=TEST_ORG_ID, ad_type=AdTypeEnum.competitor)
    AdCreativesRepository(db_session, AdTypeEnum.competitor).bulk_upsert([record])
    runs.mark_complete("r1")

    done = api_client.post("/scrape/ads/result", json={"url": "https://shoeco.com"})
    assert done.status_code == 200
    body = done.json()
    assert body["isScraping"] is False
    assert body["count"] == 1
    assert [item["ad_archive_id"] for item in body["data"]] == ["A1"]


def test_results_by_url_never_return_another_organisations_creatives(api_client, db_session):
    runs = ScrapeRunsRepository(db_session)
    runs.create(
        run_id="rA",
        organisation_id="org_A",
        ad_type=AdTypeEnum.competitor,
        competitor_url="https://shoeco.com",
        meta_ad_library_url=None,
    )
    ad = ScrapedAd.from_raw(ad_payload("SECRET"))
    record = classifier.transform(ad, run_id="rA", organisation_id="org_A", ad_type=AdTypeEnum.competitor)
    AdCreativesRepository(db_session, AdTypeEnum.competitor).bulk_upsert([record])
    runs.mark_complete("rA")

    resp = api_client.post("/scrape/ads/result", json={"url": "https://shoeco.com"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["data"] is None
    assert body["isScraping"] is False
    assert body["message"] == "No scraping found for this URL."

    runs.create(
        run_id="rB",
        organisation_id="org_B",
        ad_type=AdTypeEnum.competitor,
        competitor_url="https://shoeco.com",
        meta_ad_library_url=None,
    )
    still_none = api_client.post("/scrape/ads/result", json={"url": "https://shoeco.com"})
    assert still_none.status_code == 200
    assert still_none.json()["isScraping"] is False


def test_routes_require_authentication(db_session):
    app = create_app()
    with TestClient(app) as client:
        resp = client.get("/scrape/queue/status")
    assert resp.status_code == 401
