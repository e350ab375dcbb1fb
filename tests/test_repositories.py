from dataclasses import replace

from sqlalchemy import func, select

from adscrape.db.enums import AdTypeEnum
from adscrape.db.models import CompetitorAdCreative, ScrapeRun
from adscrape.db.repositories import AdCreativesRepository, CompetitorsRepository, ScrapeRunsRepository
from adscrape.scraping import classifier
from adscrape.scraping.types import ScrapedAd

from conftest import TEST_ORG_ID, ad_payload


def _record(ad_archive_id: str, run_id: str = "r1", **extra):
    ad = ScrapedAd.from_raw(ad_payload(ad_archive_id, **extra))
    return classifier.transform(ad, run_id=run_id, organisation_id=TEST_ORG_ID, ad_type=AdTypeEnum.competitor)


def _count(session, model) -> int:
    return session.scalar(select(func.count()).select_from(model))


def test_bulk_upsert_is_idempotent_and_updates_in_place(db_session):
    repo = AdCreativesRepository(db_session, AdTypeEnum.competitor)

    assert repo.bulk_upsert([_record("A1"), _record("A2")]) == 2
    assert repo.bulk_upsert([_record("A1"), _record("A2")]) == 2
    assert _count(db_session, CompetitorAdCreative) == 2

    updated = replace(_record("A1", run_id="r2"), original_image_urls=["https://storage.example/a.jpg"])
    repo.bulk_upsert([updated])
    db_session.expire_all()

    row = repo.get(ad_archive_id="A1", organisation_id=TEST_ORG_ID)
    assert row.run_id == "r2"
    assert row.original_image_urls == ["https://storage.example/a.jpg"]
    assert _count(db_session, CompetitorAdCreative) == 2


def test_bulk_upsert_collapses_duplicates_within_a_batch_to_the_last_record(db_session):
    repo = AdCreativesRepository(db_session, AdTypeEnum.competitor)
    first = _record("A1", run_id="r1")
    last = replace(_record("A1", run_id="r1"), title="Latest title")

    assert repo.bulk_upsert([first, last]) == 1

    row = repo.get(ad_archive_id="A1", organisation_id=TEST_ORG_ID)
    assert row.title == "Latest title"


def test_same_archive_id_in_another_organisation_is_a_separate_row(db_session):
    repo = AdCreativesRepository(db_session, AdTypeEnum.competitor)
    other = replace(_record("A1"), organisation_id="org_other")

    repo.bulk_upsert([_record("A1"), other])

    assert _count(db_session, CompetitorAdCreative) == 2
    rows, total = repo.list_by_organisation(TEST_ORG_ID)
    assert total == 1
    assert [row.ad_archive_id for row in rows] == ["A1"]


def test_list_by_run_and_pagination(db_session):
    repo = AdCreativesRepository(db_session, AdTypeEnum.competitor)
    repo.bulk_upsert([_record(f"A{i}") for i in range(5)])

    assert len(repo.list_by_run("r1")) == 5
    rows, total = repo.list_by_organisation(TEST_ORG_ID, limit=2, offset=1)
    assert total == 5
    assert len(rows) == 2


def test_has_active_run_only_looks_at_the_most_recent_run(db_session):
    runs = ScrapeRunsRepository(db_session)
    runs.create(
        run_id="old",
        organisation_id=TEST_ORG_ID,
        ad_type=AdTypeEnum.competitor,
        competitor_url="https://shoeco.com",
        meta_ad_library_url="https://www.facebook.com/ads/library/?q=shoeco",
    )
    assert runs.has_active_run(TEST_ORG_ID) is True

    runs.create(
        run_id="new",
        organisation_id=TEST_ORG_ID,
        ad_type=AdTypeEnum.competitor,
        competitor_url="https://shoeco.com",
        meta_ad_library_url="https://www.facebook.com/ads/library/?q=shoeco",
    )
    assert runs.mark_complete("new") is True

    # "old" is still incomplete but is no longer the most recent run.
    assert runs.has_active_run(TEST_ORG_ID) is False
    assert runs.has_active_run("org_without_runs") is False


def test_mark_complete_and_latest_completed_for_target(db_session):
    runs = ScrapeRunsRepository(db_session)
    run = runs.create(
        run_id="r1",
        organisation_id=TEST_ORG_ID,
        ad_type=AdTypeEnum.self_,
        competitor_url="https://shoeco.com",
        meta_ad_library_url=None,
    )
    assert run.is_active
    assert runs.latest_completed_for_target("https://shoeco.com", TEST_ORG_ID) is None
    assert [r.run_id for r in runs.list_incomplete()] == ["r1"]

    runs.mark_complete("r1")
    db_session.expire_all()

    stored = db_session.get(ScrapeRun, "r1")
    assert stored.completed is True
    assert stored.completed_at is not None
    assert stored.ad_type == AdTypeEnum.self_
    assert runs.latest_completed_for_target("https://shoeco.com", TEST_ORG_ID).run_id == "r1"
    assert runs.latest_completed_for_target("https://shoeco.com", "org_other") is None
    assert runs.latest_for_target("https://shoeco.com", "org_other") is None
    assert runs.list_incomplete() == []
    assert runs.mark_complete("missing") is False


def test_competitor_lookup_is_scoped_to_the_organisation(db_session):
    competitors = CompetitorsRepository(db_session)
    created = competitors.create(organisation_id=TEST_ORG_ID, url="https://shoeco.com", name="Shoe Co")

    assert competitors.get_by_url(url="https://shoeco.com", organisation_id=TEST_ORG_ID).id == created.id
    assert competitors.get_by_url(url="https://shoeco.com", organisation_id="org_other") is None
