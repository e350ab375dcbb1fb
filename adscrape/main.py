import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy import text

from adscrape.config import settings
from adscrape.db.base import SessionLocal, engine
from adscrape.errors import ScrapeSubmissionError
from adscrape.routers import scraping
from adscrape.scraping.apify_client import ApifyClient
from adscrape.scraping.meta_ads_library import MetaAdsLibraryScraper
from adscrape.services.media_storage import MediaStorageConfigurationError
from adscrape.services.result_poller import PollingScheduler
from adscrape.services.scrape_jobs import ScrapeJobService
from adscrape.services.scrape_pipeline import ScrapeResultProcessor

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s %(message)s")
    logging.getLogger("adscrape").setLevel(settings.LOG_LEVEL.upper())


def build_scrape_services(
    *,
    scraper: MetaAdsLibraryScraper | None = None,
    processor: ScrapeResultProcessor | None = None,
    session_factory=SessionLocal,
) -> tuple[PollingScheduler, ScrapeJobService]:
    scraper = scraper or MetaAdsLibraryScraper(ApifyClient())
    scheduler = PollingScheduler(
        fetch_results=scraper.fetch_results,
        processor=processor or ScrapeResultProcessor(session_factory=session_factory),
    )
    jobs = ScrapeJobService(scraper=scraper, scheduler=scheduler, session_factory=session_factory)
    return scheduler, jobs


@asynccontextmanager
async def _app_lifespan(app: FastAPI) -> AsyncIterator[None]:
    if not hasattr(app.state, "scrape_jobs"):
        app.state.scrape_scheduler, app.state.scrape_jobs = build_scrape_services()
    scheduler: PollingScheduler = app.state.scrape_scheduler
    if settings.SCRAPE_RESUME_ON_STARTUP:
        await scheduler.resume_incomplete()
    try:
        yield
    finally:
        await scheduler.shutdown()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Ad Scrape API",
        default_response_class=ORJSONResponse,
        lifespan=_app_lifespan,
    )

    allow_origins = sorted(set(settings.BACKEND_CORS_ORIGINS))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ScrapeSubmissionError)
    async def scrape_submission_error_handler(_request: Request, exc: ScrapeSubmissionError) -> ORJSONResponse:
        logger.warning("scrape_submission_failed", extra={"error": str(exc)})
        return ORJSONResponse(
            status_code=502,
            content={"success": False, "detail": "Failed to start scraping job. Please try again later."},
        )

    @app.exception_handler(MediaStorageConfigurationError)
    async def media_storage_configuration_error_handler(
        _request: Request, exc: MediaStorageConfigurationError
    ) -> ORJSONResponse:
        return ORJSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"detail": "Internal server error."})

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/health/db")
    def health_db() -> dict[str, str]:
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return {"db": "ok"}
        except Exception as exc:  # pragma: no cover - simple runtime check
            return {"db": f"error: {exc}"}

    app.include_router(scraping.router)

    return app


app = create_app()
