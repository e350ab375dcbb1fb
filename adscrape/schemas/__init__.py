from adscrape.schemas.scraping import (
    AdCreativeOut,
    QueueStatusResponse,
    ScrapeResultRequest,
    ScrapeResultResponse,
    ScrapeRunStatusResponse,
    StartCompetitorScrapeRequest,
    StartScrapeResponse,
    StartSelfScrapeRequest,
)
