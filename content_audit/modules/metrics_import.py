"""
Search-performance import.

Pulls the top pages for a project's Search Console property and upserts
them by (project, url). Each row commits on its own so a bad row never
undoes the rest of the batch. On update the metrics being replaced move to
the ``prev_*`` columns, which the alert evaluator compares against.
"""

import datetime
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from loguru import logger
from sqlalchemy.orm import Session

from content_audit.config.settings import IMPORT
from content_audit.database.models import AuditPage, AuditProject, SessionLocal
from content_audit.errors import NotFoundError
from content_audit.modules.access import get_owned_project
from content_audit.providers.base import MetricsSource, PageMetrics
from content_audit.utils.helpers import get_date_range, is_excluded_path


@dataclass
class ImportSummary:
    imported: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class MetricsImporter:
    """Import top pages and their 30-day metrics into a project."""

    def __init__(
        self,
        source: MetricsSource,
        session_factory: Callable[[], Session] = SessionLocal,
        lookback_days: int = IMPORT["lookback_days"],
    ) -> None:
        self.source = source
        self.session_factory = session_factory
        self.lookback_days = lookback_days

    async def import_pages(
        self,
        project_id: int,
        user_id: Optional[str] = None,
        start_date: Optional[datetime.date] = None,
        end_date: Optional[datetime.date] = None,
    ) -> ImportSummary:
        property_url, excluded_paths, max_pages = self._load_project(project_id, user_id)

        if start_date is None or end_date is None:
            default_start, default_end = get_date_range(self.lookback_days, end_date)
            start_date = start_date or default_start
            end_date = end_date or default_end

        logger.info(
            "Importing up to {} pages for project {} ({} to {})",
            max_pages, project_id, start_date, end_date,
        )
        rows = await self.source.fetch_top_pages(property_url, start_date, end_date, max_pages)

        summary = ImportSummary()
        db = self.session_factory()
        try:
            for row in rows[:max_pages]:
                if is_excluded_path(row.url, excluded_paths):
                    summary.skipped += 1
                    continue
                try:
                    self._upsert_row(db, project_id, row)
                    db.commit()
                    summary.imported += 1
                except Exception:
                    db.rollback()
                    summary.failed += 1
                    logger.exception("Failed to import {}", row.url)
        finally:
            db.close()

        logger.info(
            "Project {} import done: {} imported, {} skipped, {} failed",
            project_id, summary.imported, summary.skipped, summary.failed,
        )
        return summary

    def _load_project(self, project_id: int, user_id: Optional[str]) -> tuple:
        db = self.session_factory()
        try:
            if user_id is None:
                project = db.get(AuditProject, project_id)
                if project is None:
                    raise NotFoundError(f"Project not found: {project_id}")
            else:
                project = get_owned_project(db, user_id, project_id)
            property_url = project.gsc_property or f"sc-domain:{project.site_domain}"
            return property_url, list(project.excluded_paths or []), project.max_pages or 100
        finally:
            db.close()

    @staticmethod
    def _upsert_row(db: Session, project_id: int, row: PageMetrics) -> AuditPage:
        page = (
            db.query(AuditPage)
            .filter(AuditPage.project_id == project_id, AuditPage.url == row.url)
            .one_or_none()
        )
        if page is None:
            page = AuditPage(project_id=project_id, url=row.url)
            db.add(page)
        else:
            page.prev_clicks_30d = page.clicks_30d
            page.prev_impressions_30d = page.impressions_30d

        page.clicks_30d = row.clicks
        page.impressions_30d = row.impressions
        page.ctr_30d = row.ctr
        page.avg_position = row.position
        db.flush()
        return page
