import os
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_adscrape.db")
os.environ.setdefault("CLERK_JWT_ISSUER", "https://clerk.test")
os.environ.setdefault("CLERK_JWKS_URL", "https://clerk.test/.well-known/jwks.json")
os.environ.setdefault("APIFY_API_TOKEN", "apify_test_token")
os.environ.setdefault("MEDIA_STORAGE_BUCKET", "test-bucket")
os.environ.setdefault("MEDIA_STORAGE_PUBLIC_BASE_URL", "https://storage.example")
os.environ.setdefault("MEDIA_MIRROR_BLOCK_PRIVATE_NETWORKS", "false")

import pytest  # noqa: E402
from sqlalchemy import delete  # noqa: E402

from adscrape.db.base import SessionLocal, init_db  # noqa: E402
from adscrape.db.models import (  # noqa: E402
    Competitor,
    CompetitorAdCreative,
    ScrapeRun,
    SelfAdCreative,
)
from adscrape.errors import ApifyApiError  # noqa: E402
from adscrape.services.media_mirror import MirrorFailure, MirroredMedia, MirrorResult  # noqa: E402

TEST_ORG_ID = "org_test_1"

_TABLES = (CompetitorAdCreative, SelfAdCreative, Competitor, ScrapeRun)


def _clear_tables(session) -> None:
    for model in _TABLES:
        session.execute(delete(model))
    session.commit()


@pytest.fixture()
def db_session():
    init_db()
    session = SessionLocal()
    _clear_tables(session)
    try:
        yield session
    finally:
        session.rollback()
        _clear_tables(session)
        session.close()


class FakeScraper:
    """Stands in for MetaAdsLibraryScraper; each run id replays a scripted list of poll responses."""

    def __init__(self, run_ids=None, responses=None, submit_error=None) -> None:
        self._run_ids = list(run_ids or ["run_1"])
        self.responses = {key: list(value) for key, value in (responses or {}).items()}
        self.submit_error = submit_error
        self.submitted: list[str] = []
        self.fetches: list[str] = []

    async def submit(self, url: str) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(url)
        return self._run_ids.pop(0)

    async def fetch_results(self, run_id: str):
        self.fetches.append(run_id)
        queue = self.responses.get(run_id) or []
        response = queue.pop(0) if queue else None
        if isinstance(response, Exception):
            raise response
        return response


class FakeMirror:
    def __init__(self, mapping=None) -> None:
        self.mapping = dict(mapping or {})
        self.calls: list[dict] = []

    async def mirror(self, urls, *, organisation_id: str, ad_type: str) -> MirrorResult:
        urls = list(urls)
        self.calls.append({"urls": urls, "organisation_id": organisation_id, "ad_type": ad_type})
        result = MirrorResult()
        for url in urls:
            if url in self.mapping:
                result.successful.append(
                    MirroredMedia(
                        original_url=url,
                        mirrored_url=self.mapping[url],
                        key=self.mapping[url].rsplit("/", 3)[-1],
                        size_bytes=1,
                        content_type="image/jpeg",
                    )
                )
                result.url_mapping[url] = self.mapping[url]
            else:
                result.failed.append(MirrorFailure(url=url, error="unreachable"))
        return result


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture()
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def transient_error() -> ApifyApiError:
    return ApifyApiError(message="Apify API call failed (503): upstream unavailable")


def ad_payload(ad_archive_id: str, *, image_url: str | None = "https://cdn.example/x.jpg", **extra) -> dict:
    cards = [{"original_image_url": image_url}] if image_url else []
    payload = {
        "ad_archive_id": ad_archive_id,
        "page_id": "page_1",
        "page_name": "Shoe Co",
        "snapshot": {"cards": cards, "title": "Run faster", "body": {"text": "New season shoes"}},
    }
    payload.update(extra)
    return payload
