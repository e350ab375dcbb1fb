from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adscrape.db.enums import AdTypeEnum
from adscrape.db.models import AD_CREATIVE_MODELS
from adscrape.db.repositories.base import Repository
from adscrape.errors import PersistenceError
from adscrape.scraping.types import AdCreativeRecord

logger = logging.getLogger(__name__)

# Columns refreshed when an (ad_archive_id, organisation_id) pair is seen again.
_UPDATE_COLUMNS = (
    "run_id",
    "page_id",
    "page_name",
    "is_active",
    "page_profile_picture_url",
    "title",
    "body",
    "link_url",
    "caption",
    "cta_text",
    "display_format",
    "resized_image_urls",
    "original_image_urls",
    "video_hd_urls",
    "video_sd_urls",
    "image_urls",
    "publisher_platforms",
    "start_date",
    "end_date",
    "raw_data",
    "updated_at",
)


class AdCreativesRepository(Repository):
    def __init__(self, session: Session, ad_type: AdTypeEnum) -> None:
        super().__init__(session)
        self.ad_type = ad_type
        self.model = AD_CREATIVE_MODELS[ad_type]

    def bulk_upsert(self, records: Sequence[AdCreativeRecord]) -> int:
        """
        Insert or update creatives keyed on (ad_archive_id, organisation_id).

        Postgres rejects a single INSERT .. ON CONFLICT that touches the same key twice, so
        duplicates inside the batch collapse to the last occurrence first.
        """
        if not records:
            return 0
        now = datetime.now(timezone.utc)
        deduped: dict[tuple[str, str], dict] = {}
        for record in records:
            values = record.column_values()
            values["created_at"] = now
            values["updated_at"] = now
            deduped[(record.ad_archive_id, record.organisation_id)] = values
        rows = list(deduped.values())

        update_columns = list(_UPDATE_COLUMNS)
        if self.ad_type == AdTypeEnum.competitor:
            update_columns.append("competitor_id")

        stmt = self._insert(self.model).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=[self.model.ad_archive_id, self.model.organisation_id],
            set_={column: stmt.excluded[column] for column in update_columns},
        )
        try:
            self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(
                "ad_creatives.upsert_failed",
                extra={"ad_type": self.ad_type.value, "count": len(rows), "error": str(exc)},
            )
            raise PersistenceError(f"Failed to upsert {len(rows)} {self.ad_type.value} creatives") from exc
        return len(rows)

    def list_by_run(self, run_id: str) -> list:
        stmt = select(self.model).where(self.model.run_id == run_id).order_by(self.model.id.asc())
        return list(self.session.scalars(stmt).all())

    def list_by_organisation(self, organisation_id: str, *, limit: int | None = None, offset: int = 0) -> tuple[list, int]:
        total = self.session.scalar(
            select(func.count()).select_from(self.model).where(self.model.organisation_id == organisation_id)
        )
        stmt = (
            select(self.model)
            .where(self.model.organisation_id == organisation_id)
            .order_by(self.model.created_at.desc(), self.model.id.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all()), int(total or 0)

    def get(self, *, ad_archive_id: str, organisation_id: str):
        stmt = select(self.model).where(
            self.model.ad_archive_id == ad_archive_id,
            self.model.organisation_id == organisation_id,
        )
        return self.session.scalars(stmt).first()
