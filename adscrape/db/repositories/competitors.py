from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from adscrape.db.models import Competitor
from adscrape.db.repositories.base import Repository


class CompetitorsRepository(Repository):
    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def get_by_url(self, *, url: str, organisation_id: str) -> Optional[Competitor]:
        stmt = select(Competitor).where(Competitor.url == url, Competitor.organisation_id == organisation_id)
        return self.session.scalars(stmt).first()

    def create(
        self,
        *,
        organisation_id: str,
        url: str,
        name: Optional[str] = None,
        meta_ad_library_url: Optional[str] = None,
    ) -> Competitor:
        competitor = Competitor(
            organisation_id=organisation_id,
            url=url,
            name=name,
            meta_ad_library_url=meta_ad_library_url,
        )
        return self.save(competitor)
