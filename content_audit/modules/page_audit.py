"""
Page & Project Operations
=========================

User-facing operations over audit projects and their pages: project
registration, filtered page listings, content edits, on-demand analysis,
and the periodic fan-out that feeds the job queue.
"""

import datetime
from typing import Any, Callable, Optional

from loguru import logger
from sqlalchemy import or_
from sqlalchemy.orm import Session

from content_audit.config.settings import SCHEDULE
from content_audit.database.models import (
    Alert, AuditPage, AuditProject, SessionLocal, utcnow,
)
from content_audit.errors import PreconditionFailedError, ValidationError
from content_audit.modules.access import get_owned_page, get_owned_project
from content_audit.modules.guideline_synthesizer import GuidelineSynthesizer
from content_audit.scheduler.jobs import (
    EvaluateProjectChangesJob, ImportPagesJob, ScorePageJob,
)
from content_audit.scheduler.queue import JobQueue
from content_audit.utils.helpers import extract_domain

MAX_PAGE_SIZE = 100


def project_to_dict(project: AuditProject) -> dict[str, Any]:
    return {
        "id": project.id,
        "site_domain": project.site_domain,
        "owner_id": project.owner_id,
        "gsc_property": project.gsc_property,
        "primary_country": project.primary_country,
        "language_code": project.language_code,
        "max_pages": project.max_pages,
        "excluded_paths": list(project.excluded_paths or []),
    }


def page_to_dict(page: AuditPage, include_content: bool = False) -> dict[str, Any]:
    data = {
        "id": page.id,
        "project_id": page.project_id,
        "url": page.url,
        "title": page.title,
        "main_keyword": page.main_keyword,
        "clicks_30d": page.clicks_30d,
        "impressions_30d": page.impressions_30d,
        "ctr_30d": page.ctr_30d,
        "avg_position": page.avg_position,
        "content_score": page.content_score,
        "recommendation": page.recommendation,
        "recommendation_score": page.recommendation_score,
        "scoring_state": page.scoring_state,
        "last_analysed_at": page.last_analysed_at.isoformat() if page.last_analysed_at else None,
    }
    if include_content:
        data["meta_description"] = page.meta_description
        data["content"] = page.content
        guidelines = page.guidelines
        data["guidelines"] = None if guidelines is None else {
            "keyword": guidelines.keyword,
            "min_words": guidelines.min_words,
            "max_words": guidelines.max_words,
            "avg_words": guidelines.avg_words,
            "competitor_count": guidelines.competitor_count,
            "is_fallback": guidelines.is_fallback,
            "important_terms": guidelines.important_terms or [],
        }
    return data


def _normalize_domain(site_domain: str) -> str:
    site_domain = (site_domain or "").strip().lower()
    if "://" in site_domain:
        site_domain = extract_domain(site_domain)
    return site_domain.rstrip("/")


class PageAuditService:
    """Project and page operations for one deployment."""

    def __init__(
        self,
        queue: JobQueue,
        synthesizer: Optional[GuidelineSynthesizer] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self.queue = queue
        self.synthesizer = synthesizer
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(
        self,
        owner_id: str,
        site_domain: str,
        gsc_property: Optional[str] = None,
        primary_country: str = "us",
        language_code: str = "en",
        max_pages: int = 100,
        excluded_paths: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        """Register a site. Each domain can be audited by one project only."""
        domain = _normalize_domain(site_domain)
        if not domain:
            raise ValidationError("site_domain is required")
        if max_pages < 1:
            raise ValidationError("max_pages must be at least 1")

        db = self.session_factory()
        try:
            existing = db.query(AuditProject).filter(AuditProject.site_domain == domain).first()
            if existing is not None:
                raise PreconditionFailedError(f"A project already exists for {domain}")

            project = AuditProject(
                site_domain=domain,
                owner_id=owner_id,
                gsc_property=gsc_property,
                primary_country=primary_country,
                language_code=language_code,
                max_pages=max_pages,
                excluded_paths=list(excluded_paths or []),
            )
            db.add(project)
            db.commit()
            logger.info("Created audit project {} for {}", project.id, domain)
            return project_to_dict(project)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def list_projects(self, owner_id: str) -> list[dict[str, Any]]:
        db = self.session_factory()
        try:
            projects = (
                db.query(AuditProject)
                .filter(AuditProject.owner_id == owner_id)
                .order_by(AuditProject.id)
                .all()
            )
            return [project_to_dict(p) for p in projects]
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    def get_page(self, user_id: str, page_id: int) -> dict[str, Any]:
        db = self.session_factory()
        try:
            return page_to_dict(get_owned_page(db, user_id, page_id), include_content=True)
        finally:
            db.close()

    def list_pages(
        self,
        user_id: str,
        project_id: int,
        search: Optional[str] = None,
        min_score: Optional[int] = None,
        max_score: Optional[int] = None,
        min_position: Optional[float] = None,
        max_position: Optional[float] = None,
        recommendation: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict[str, Any]:
        """Filtered, paginated pages with the worst performers first."""
        page = max(1, page)
        page_size = max(1, min(MAX_PAGE_SIZE, page_size))

        db = self.session_factory()
        try:
            get_owned_project(db, user_id, project_id)

            query = db.query(AuditPage).filter(AuditPage.project_id == project_id)
            if search:
                pattern = f"%{search}%"
                query = query.filter(or_(AuditPage.url.ilike(pattern), AuditPage.title.ilike(pattern)))
            if min_score is not None:
                query = query.filter(AuditPage.content_score >= min_score)
            if max_score is not None:
                query = query.filter(AuditPage.content_score <= max_score)
            if min_position is not None:
                query = query.filter(AuditPage.avg_position >= min_position)
            if max_position is not None:
                query = query.filter(AuditPage.avg_position <= max_position)
            if recommendation:
                query = query.filter(AuditPage.recommendation == recommendation)

            total = query.count()
            rows = (
                query.order_by(AuditPage.recommendation_score.desc().nullslast(), AuditPage.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )
            return {
                "items": [page_to_dict(row) for row in rows],
                "total": total,
                "page": page,
                "page_size": page_size,
            }
        finally:
            db.close()

    def update_page_content(
        self,
        user_id: str,
        page_id: int,
        content: Optional[str] = None,
        title: Optional[str] = None,
        main_keyword: Optional[str] = None,
        meta_description: Optional[str] = None,
    ) -> dict[str, Any]:
        """Overwrite cached page fields; ``None`` leaves a field unchanged."""
        db = self.session_factory()
        try:
            page = get_owned_page(db, user_id, page_id)
            if content is not None:
                page.content = content
            if title is not None:
                page.title = title
            if main_keyword is not None:
                page.main_keyword = main_keyword.strip() or None
            if meta_description is not None:
                page.meta_description = meta_description
            db.commit()
            logger.info("Updated content of page {}", page_id)
            return page_to_dict(page, include_content=True)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def refresh_page_analysis(self, user_id: str, page_id: int) -> dict[str, Any]:
        db = self.session_factory()
        try:
            get_owned_page(db, user_id, page_id)
        finally:
            db.close()

        self.queue.enqueue(ScorePageJob(page_id=page_id, follow_up_alerts=True))
        return {"status": "queued", "page_id": page_id}

    async def run_keyword_analysis(
        self,
        user_id: str,
        page_id: int,
        keyword: Optional[str] = None,
        country: Optional[str] = None,
        language_code: Optional[str] = None,
    ) -> dict[str, Any]:
        """Synthesize guidelines now instead of waiting for the queue."""
        if self.synthesizer is None:
            raise PreconditionFailedError("Keyword analysis is not configured")

        db = self.session_factory()
        try:
            page = get_owned_page(db, user_id, page_id)
            keyword = (keyword or page.main_keyword or page.title or "").strip()
            country = country or page.project.primary_country or "us"
            language_code = language_code or page.project.language_code or "en"
        finally:
            db.close()
        if not keyword:
            raise ValidationError("A keyword is required for pages without a main keyword")

        guidelines = await self.synthesizer.synthesize(page_id, keyword, country, language_code)
        self.queue.enqueue(ScorePageJob(page_id=page_id))
        return {
            "page_id": page_id,
            "keyword": guidelines.keyword,
            "min_words": guidelines.min_words,
            "max_words": guidelines.max_words,
            "competitor_count": guidelines.competitor_count,
            "is_fallback": guidelines.is_fallback,
            "important_terms": guidelines.important_terms,
        }

    def list_alerts(
        self, user_id: str, project_id: int, unresolved_only: bool = True
    ) -> list[dict[str, Any]]:
        db = self.session_factory()
        try:
            get_owned_project(db, user_id, project_id)
            query = (
                db.query(Alert)
                .join(AuditPage, Alert.page_id == AuditPage.id)
                .filter(AuditPage.project_id == project_id)
            )
            if unresolved_only:
                query = query.filter(Alert.is_resolved.is_(False))
            return [
                {
                    "id": alert.id,
                    "page_id": alert.page_id,
                    "alert_type": alert.alert_type,
                    "severity": alert.severity,
                    "title": alert.title,
                    "message": alert.message,
                    "data": alert.data,
                    "created_at": alert.created_at.isoformat() if alert.created_at else None,
                }
                for alert in query.order_by(Alert.id.desc()).all()
            ]
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Periodic fan-out
    # ------------------------------------------------------------------

    def queue_stale_pages(
        self,
        days: int = SCHEDULE["stale_after_days"],
        limit: int = SCHEDULE["re_analysis_batch"],
    ) -> int:
        """Queue re-scoring for pages not analysed in *days*, oldest first."""
        cutoff = utcnow() - datetime.timedelta(days=days)
        db = self.session_factory()
        try:
            page_ids = [
                row.id
                for row in db.query(AuditPage.id)
                .filter(or_(AuditPage.last_analysed_at.is_(None), AuditPage.last_analysed_at < cutoff))
                .order_by(AuditPage.last_analysed_at.asc().nullsfirst(), AuditPage.id)
                .limit(limit)
                .all()
            ]
        finally:
            db.close()

        for page_id in page_ids:
            self.queue.enqueue(ScorePageJob(page_id=page_id, follow_up_alerts=True))
        logger.info("Queued {} stale pages for re-analysis", len(page_ids))
        return len(page_ids)

    def queue_metrics_import(self) -> int:
        """Queue an ``import-pages`` job for every project."""
        projects = self._all_projects()
        for project_id, owner_id in projects:
            self.queue.enqueue(ImportPagesJob(project_id=project_id, user_id=owner_id))
        logger.info("Queued metrics import for {} projects", len(projects))
        return len(projects)

    def queue_alert_evaluation(self) -> int:
        projects = self._all_projects()
        for project_id, _ in projects:
            self.queue.enqueue(EvaluateProjectChangesJob(project_id=project_id))
        logger.info("Queued alert evaluation for {} projects", len(projects))
        return len(projects)

    def _all_projects(self) -> list[tuple[int, str]]:
        db = self.session_factory()
        try:
            return [
                (row.id, row.owner_id)
                for row in db.query(AuditProject.id, AuditProject.owner_id).order_by(AuditProject.id)
            ]
        finally:
            db.close()
