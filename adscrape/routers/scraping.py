from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import ORJSONResponse

from adscrape.auth.dependencies import AuthContext, get_current_user
from adscrape.db.enums import AdTypeEnum
from adscrape.schemas.scraping import (
    AdCreativeOut,
    QueueStatusResponse,
    ScrapeResultRequest,
    ScrapeResultResponse,
    ScrapeRunOut,
    ScrapeRunStatusResponse,
    StartCompetitorScrapeRequest,
    StartScrapeData,
    StartScrapeResponse,
    StartSelfScrapeRequest,
)
from adscrape.services.result_poller import PollingScheduler
from adscrape.services.scrape_jobs import ScrapeJobService


router = APIRouter(prefix="/scrape", tags=["scraping"], dependencies=[Depends(get_current_user)])


def get_scrape_jobs(request: Request) -> ScrapeJobService:
    return request.app.state.scrape_jobs


def get_scheduler(request: Request) -> PollingScheduler:
    return request.app.state.scrape_scheduler


@router.post("/meta-ads/start", status_code=status.HTTP_202_ACCEPTED, response_model=StartScrapeResponse)
async def start_competitor_scrape(
    payload: StartCompetitorScrapeRequest,
    auth: AuthContext = Depends(get_current_user),
    jobs: ScrapeJobService = Depends(get_scrape_jobs),
) -> StartScrapeResponse:
    try:
        result = await jobs.start_run(
            target_url=payload.competitor_url,
            scrape_url=payload.meta_ad_library_url,
            organisation_id=auth.org_id,
            ad_type=AdTypeEnum.competitor,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return StartScrapeResponse(
        message="Scraping initiated successfully with background polling started",
        data=StartScrapeData(run_id=result.run_id, polling_status=result.polling_status),
    )


@router.post("/self-ads/start", status_code=status.HTTP_202_ACCEPTED, response_model=StartScrapeResponse)
async def start_self_scrape(
    payload: StartSelfScrapeRequest,
    auth: AuthContext = Depends(get_current_user),
    jobs: ScrapeJobService = Depends(get_scrape_jobs),
) -> StartScrapeResponse:
    try:
        result = await jobs.start_run(
            target_url=payload.company_url,
            scrape_url=payload.meta_ad_dashboard_url,
            organisation_id=auth.org_id,
            ad_type=AdTypeEnum.self_,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return StartScrapeResponse(
        message="Self ad scraping initiated successfully with background polling started",
        data=StartScrapeData(run_id=result.run_id, polling_status=result.polling_status),
    )


@router.post("/ads/result", response_model=ScrapeResultResponse)
def get_scrape_results(
    payload: ScrapeResultRequest,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_current_user),
    jobs: ScrapeJobService = Depends(get_scrape_jobs),
):
    page = jobs.get_results_by_url(payload.url, auth.org_id, limit=limit, offset=offset)
    if page.is_scraping:
        body = ScrapeResultResponse(message=page.message, isScraping=True)
        return ORJSONResponse(status_code=status.HTTP_202_ACCEPTED, content=body.model_dump(mode="json"))
    if not page.creatives:
        return ScrapeResultResponse(message=page.message, count=page.total)
    return ScrapeResultResponse(
        message=page.message,
        data=[AdCreativeOut.model_validate(row) for row in page.creatives],
        count=page.total,
    )


@router.get("/runs/{run_id}", response_model=ScrapeRunStatusResponse)
def get_run_status(
    run_id: str,
    auth: AuthContext = Depends(get_current_user),
    jobs: ScrapeJobService = Depends(get_scrape_jobs),
) -> ScrapeRunStatusResponse:
    run_status = jobs.get_run_status(run_id, auth.org_id)
    if run_status is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scrape run not found")
    outcome = jobs.scheduler.outcome(run_id)
    return ScrapeRunStatusResponse(
        run=ScrapeRunOut.model_validate(run_status.run),
        polling=run_status.polling,
        outcome=outcome.value if outcome else None,
        message=run_status.message,
        creatives=[AdCreativeOut.model_validate(row) for row in run_status.creatives],
    )


@router.get("/queue/status", response_model=QueueStatusResponse)
async def get_queue_status(scheduler: PollingScheduler = Depends(get_scheduler)) -> QueueStatusResponse:
    queue = scheduler.status()
    return QueueStatusResponse(
        activeCount=queue.active_count,
        activeRunIds=queue.active_run_ids,
        timestamp=queue.timestamp,
    )
