from adscrape.db.repositories.ad_creatives import AdCreativesRepository
from adscrape.db.repositories.base import Repository
from adscrape.db.repositories.competitors import CompetitorsRepository
from adscrape.db.repositories.scrape_runs import ScrapeRunsRepository

__all__ = [
    "Repository",
    "AdCreativesRepository",
    "CompetitorsRepository",
    "ScrapeRunsRepository",
]
