from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from adscrape.db.enums import AdTypeEnum
from adscrape.db.models import ScrapeRun
from adscrape.db.repositories.base import Repository


class ScrapeRunsRepository(Repository):
    """Run registry: one row per provider run, flipped to completed exactly once."""

    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def get(self, run_id: str) -> Optional[ScrapeRun]:
        return self.session.get(ScrapeRun, run_id)

    def create(
        self,
        *,
        run_id: str,
        organisation_id: str,
        ad_type: AdTypeEnum,
        competitor_url: Optional[str],
        meta_ad_library_url: Optional[str],
    ) -> ScrapeRun:
        """
        Record a freshly submitted run.

        Provider run ids are unique, but a replayed submission overwrites the previous row and
        resets it to active.
        """
        now = datetime.now(timezone.utc)
        values = {
            "run_id": run_id,
            "organisation_id": organisation_id,
            "ad_type": ad_type,
            "competitor_url": competitor_url,
            "meta_ad_library_url": meta_ad_library_url,
            "ads_scraped": 0,
            "completed_at": None,
            "created_at": now,
            "updated_at": now,
        }
        stmt = self._insert(ScrapeRun).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ScrapeRun.run_id],
            set_={key: stmt.excluded[key] for key in values if key != "run_id"},
        )
        self.session.execute(stmt)
        self.session.commit()
        run = self.get(run_id)
        self.session.refresh(run)
        return run

    def latest_for_organisation(self, organisation_id: str) -> Optional[ScrapeRun]:
        stmt = (
            select(ScrapeRun)
            .where(ScrapeRun.organisation_id == organisation_id)
            .order_by(ScrapeRun.created_at.desc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def has_active_run(self, organisation_id: str) -> bool:
        # Only the most recent run counts; older incomplete runs are not blocking.
        latest = self.latest_for_organisation(organisation_id)
        return bool(latest and latest.is_active)

    def latest_completed_for_target(self, competitor_url: str, organisation_id: str) -> Optional[ScrapeRun]:
        stmt = (
            select(ScrapeRun)
            .where(
                ScrapeRun.competitor_url == competitor_url,
                ScrapeRun.organisation_id == organisation_id,
                ScrapeRun.ads_scraped == 1,
            )
            .order_by(ScrapeRun.created_at.desc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def mark_complete(self, run_id: str) -> bool:
        now = datetime.now(timezone.utc)
        result = self.session.execute(
            update(ScrapeRun)
            .where(ScrapeRun.run_id == run_id)
            .values(ads_scraped=1, completed_at=now, updated_at=now)
        )
        self.session.commit()
        return bool(result.rowcount)

    def list_incomplete(
        self,
        *,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
    ) -> list[ScrapeRun]:
        stmt = select(ScrapeRun).where(ScrapeRun.ads_scraped == 0, ScrapeRun.completed_at.is_(None))
        if created_after is not None:
            stmt = stmt.where(ScrapeRun.created_at >= created_after)
        if created_before is not None:
            stmt = stmt.where(ScrapeRun.created_at < created_before)
        return list(self.session.scalars(stmt.order_by(ScrapeRun.created_at.asc())).all())

    def latest_for_target(self, competitor_url: str, organisation_id: str) -> Optional[ScrapeRun]:
        stmt = (
            select(ScrapeRun)
            .where(ScrapeRun.competitor_url == competitor_url, ScrapeRun.organisation_id == organisation_id)
            .order_by(ScrapeRun.created_at.desc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()
