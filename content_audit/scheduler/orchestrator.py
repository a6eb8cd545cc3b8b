"""
Job Orchestrator
================

Runs the audit pipeline one job at a time:

    import-pages -> evaluate-project-changes
    score-page --(no guidelines)--> analyze-keyword -> score-page
    score-page --(follow_up_alerts)--> evaluate-page-changes
    generate-suggestions

Handlers are async and stateless between calls; all state lives in the
database. ``score-page`` holds a per-page lease while it runs so two
deliveries of the same job never write a score concurrently.
"""

import asyncio
import os
import socket
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Optional

from loguru import logger
from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from content_audit.config.settings import FETCH_TIMEOUT_SECONDS, LEASE_TTL_SECONDS
from content_audit.database.models import (
    AuditPage, ContentGuidelines, ScoringState, SessionLocal, utcnow,
)
from content_audit.errors import ExternalServiceError, LeaseHeldError, NotFoundError
from content_audit.modules.alerts import AlertEvaluator
from content_audit.modules.auto_optimizer import AutoOptimizer
from content_audit.modules.content_scorer import ContentScore, ContentScorer
from content_audit.modules.guideline_synthesizer import GuidelineSynthesizer
from content_audit.modules.internal_linking import InternalLinker
from content_audit.modules.metrics_import import MetricsImporter
from content_audit.modules.text_analyzer import TextAnalyzer
from content_audit.providers.base import (
    ContentFetcher, FetchedPage, MetricsSource, RankingLookup, SuggestionGenerator,
)
from content_audit.providers.html_fetcher import HtmlContentFetcher
from content_audit.providers.openai_suggester import OpenAISuggestionGenerator
from content_audit.providers.search_console import SearchConsoleMetricsSource
from content_audit.providers.serper import SerperRankingLookup
from content_audit.scheduler.jobs import (
    AnalyzeKeywordJob, EvaluatePageChangesJob, EvaluateProjectChangesJob,
    GenerateSuggestionsJob, ImportPagesJob, Job, ScorePageJob, decode_job,
)
from content_audit.scheduler.queue import InMemoryJobQueue, JobQueue

DEFAULT_KEYWORD = "seo"


@dataclass
class _ScoringSnapshot:
    url: str
    title: Optional[str]
    main_keyword: Optional[str]
    content: Optional[str]
    country: str
    language_code: str
    guidelines: Optional[ContentGuidelines]

    @property
    def fallback_keyword(self) -> str:
        return self.main_keyword or self.title or self.url or DEFAULT_KEYWORD


def lease_owner() -> str:
    """Identity written to a page lease for one handler invocation."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class Orchestrator:
    """Wire the pipeline components and run queued jobs."""

    def __init__(
        self,
        analyzer: TextAnalyzer,
        fetcher: ContentFetcher,
        ranking: RankingLookup,
        generator: SuggestionGenerator,
        metrics: MetricsSource,
        queue: JobQueue,
        session_factory: Callable[[], Session] = SessionLocal,
        lease_ttl: int = LEASE_TTL_SECONDS,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self.analyzer = analyzer
        self.fetcher = fetcher
        self.queue = queue
        self.session_factory = session_factory
        self.lease_ttl = lease_ttl
        self.fetch_timeout = fetch_timeout

        self.synthesizer = GuidelineSynthesizer(
            analyzer, fetcher, ranking, session_factory=session_factory, fetch_timeout=fetch_timeout
        )
        self.scorer = ContentScorer(analyzer)
        self.auto_optimizer = AutoOptimizer(
            analyzer, generator, fetcher, session_factory=session_factory, fetch_timeout=fetch_timeout
        )
        self.linker = InternalLinker(session_factory=session_factory)
        self.alerts = AlertEvaluator(session_factory=session_factory)
        self.importer = MetricsImporter(metrics, session_factory=session_factory)

        self._handlers = {
            ScorePageJob: self.score_page,
            AnalyzeKeywordJob: self.analyze_keyword,
            ImportPagesJob: self.import_pages,
            EvaluatePageChangesJob: self.evaluate_page_changes,
            EvaluateProjectChangesJob: self.evaluate_project_changes,
            GenerateSuggestionsJob: self.generate_suggestions,
        }

    async def handle(self, name: str, payload: Any) -> dict[str, Any]:
        """Decode a raw ``(name, payload)`` pair and run it."""
        return await self.dispatch(decode_job(name, payload))

    async def dispatch(self, job: Job) -> dict[str, Any]:
        logger.debug("Running {} {}", job.name, job.to_payload())
        return await self._handlers[type(job)](job)

    async def drain(self, queue: InMemoryJobQueue, max_jobs: int = 50) -> list[dict[str, Any]]:
        """Run jobs from an in-process queue, follow-ups included, until it is empty."""
        results = []
        while len(queue) and len(results) < max_jobs:
            results.append(await self.dispatch(queue.pop()))
        if len(queue):
            logger.warning("Stopped after {} jobs with {} still queued", max_jobs, len(queue))
        return results

    # ------------------------------------------------------------------
    # score-page
    # ------------------------------------------------------------------

    async def score_page(self, job: ScorePageJob) -> dict[str, Any]:
        owner = lease_owner()
        self.acquire_lease(job.page_id, owner)
        try:
            snapshot = self._load_for_scoring(job.page_id)

            page_text = job.page_text or snapshot.content
            if not page_text:
                page_text = await self._fetch_and_cache(job.page_id, snapshot.url)

            if snapshot.guidelines is None:
                self._set_state(job.page_id, ScoringState.AWAITING_GUIDELINE)
                self.queue.enqueue(AnalyzeKeywordJob(
                    page_id=job.page_id,
                    keyword=snapshot.fallback_keyword,
                    country=snapshot.country,
                    language=snapshot.language_code,
                ))
                logger.info("Page {} has no guidelines yet; analysis queued", job.page_id)
                return {"status": "deferred", "reason": "waiting_for_guidelines", "page_id": job.page_id}

            result = self.scorer.score(page_text, snapshot.guidelines, snapshot.guidelines.language_code)
            self._write_score(job.page_id, result)
        finally:
            self.release_lease(job.page_id, owner)

        logger.info(
            "Page {} scored {} ({})", job.page_id, result.content_score, result.recommendation
        )
        if job.follow_up_alerts:
            self.queue.enqueue(EvaluatePageChangesJob(page_id=job.page_id))

        return {
            "status": "scored",
            "page_id": job.page_id,
            "content_score": result.content_score,
            "recommendation": result.recommendation,
            "recommendation_score": result.recommendation_score,
        }

    def acquire_lease(self, page_id: int, owner: str) -> None:
        """Claim the page for *owner* unless an unexpired lease exists."""
        now = utcnow()
        db = self.session_factory()
        try:
            result = db.execute(
                update(AuditPage)
                .where(
                    AuditPage.id == page_id,
                    or_(AuditPage.lease_expires_at.is_(None), AuditPage.lease_expires_at < now),
                )
                .values(lease_owner=owner, lease_expires_at=now + timedelta(seconds=self.lease_ttl))
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount == 1:
                return
            if db.get(AuditPage, page_id) is None:
                raise NotFoundError(f"Page not found: {page_id}")
            raise LeaseHeldError(f"Page {page_id} is being scored by another worker")
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def release_lease(self, page_id: int, owner: str) -> None:
        db = self.session_factory()
        try:
            db.execute(
                update(AuditPage)
                .where(AuditPage.id == page_id, AuditPage.lease_owner == owner)
                .values(lease_owner=None, lease_expires_at=None)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _load_for_scoring(self, page_id: int) -> _ScoringSnapshot:
        db = self.session_factory()
        try:
            page = db.get(AuditPage, page_id)
            if page is None:
                raise NotFoundError(f"Page not found: {page_id}")
            guidelines = page.guidelines
            if guidelines is not None:
                db.expunge(guidelines)
            return _ScoringSnapshot(
                url=page.url,
                title=page.title,
                main_keyword=page.main_keyword,
                content=page.content,
                country=page.project.primary_country or "us",
                language_code=page.project.language_code or "en",
                guidelines=guidelines,
            )
        finally:
            db.close()

    async def _fetch_and_cache(self, page_id: int, url: str) -> str:
        try:
            fetched: Optional[FetchedPage] = await asyncio.wait_for(
                self.fetcher.fetch(url), timeout=self.fetch_timeout
            )
        except asyncio.TimeoutError as exc:
            raise ExternalServiceError(f"Timed out fetching page content: {url}") from exc
        if fetched is None or not fetched.body_text:
            raise ExternalServiceError(f"Could not fetch page content: {url}")

        db = self.session_factory()
        try:
            page = db.get(AuditPage, page_id)
            if page is None:
                raise NotFoundError(f"Page not found: {page_id}")
            page.content = fetched.body_text
            page.title = page.title or fetched.title or None
            page.meta_description = page.meta_description or fetched.meta_description or None
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        return fetched.body_text

    def _set_state(self, page_id: int, state: ScoringState) -> None:
        db = self.session_factory()
        try:
            page = db.get(AuditPage, page_id)
            if page is None:
                raise NotFoundError(f"Page not found: {page_id}")
            page.scoring_state = state.value
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _write_score(self, page_id: int, result: ContentScore) -> None:
        db = self.session_factory()
        try:
            page = db.get(AuditPage, page_id)
            if page is None:
                raise NotFoundError(f"Page not found: {page_id}")
            page.content_score = result.content_score
            page.recommendation = result.recommendation
            page.recommendation_score = result.recommendation_score
            page.scoring_state = ScoringState.SCORED.value
            page.last_analysed_at = utcnow()
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # analyze-keyword
    # ------------------------------------------------------------------

    async def analyze_keyword(self, job: AnalyzeKeywordJob) -> dict[str, Any]:
        guidelines = await self.synthesizer.synthesize(
            job.page_id, job.keyword, country=job.country, language_code=job.language
        )
        self.queue.enqueue(ScorePageJob(page_id=job.page_id))
        return {
            "status": "analyzed",
            "page_id": job.page_id,
            "guidelines_id": guidelines.id,
            "competitor_count": guidelines.competitor_count,
            "is_fallback": guidelines.is_fallback,
        }

    # ------------------------------------------------------------------
    # import-pages
    # ------------------------------------------------------------------

    async def import_pages(self, job: ImportPagesJob) -> dict[str, Any]:
        summary = await self.importer.import_pages(
            job.project_id, job.user_id, start_date=job.start_date, end_date=job.end_date
        )
        self.queue.enqueue(EvaluateProjectChangesJob(project_id=job.project_id))
        return {"status": "imported", "project_id": job.project_id, **summary.to_dict()}

    # ------------------------------------------------------------------
    # evaluate-*-changes
    # ------------------------------------------------------------------

    async def evaluate_page_changes(self, job: EvaluatePageChangesJob) -> dict[str, Any]:
        alerts = self.alerts.evaluate_page(job.page_id)
        return {"status": "evaluated", "page_id": job.page_id, "alerts": len(alerts)}

    async def evaluate_project_changes(self, job: EvaluateProjectChangesJob) -> dict[str, Any]:
        result = self.alerts.evaluate_project(job.project_id)
        return {"status": "evaluated", "project_id": job.project_id, **result}

    # ------------------------------------------------------------------
    # generate-suggestions
    # ------------------------------------------------------------------

    async def generate_suggestions(self, job: GenerateSuggestionsJob) -> dict[str, Any]:
        result: dict[str, Any] = {"status": "generated", "page_id": job.page_id}
        if job.auto_optimize:
            changes = await self.auto_optimizer.generate_suggestions(job.user_id, job.page_id)
            result["changes"] = len(changes)
        if job.internal_links:
            links = self.linker.generate_suggestions(job.user_id, job.page_id)
            result["links"] = len(links)
        return result


def build_default_orchestrator(queue: JobQueue) -> Orchestrator:
    """Orchestrator wired to the configured HTTP, search and AI providers."""
    return Orchestrator(
        analyzer=TextAnalyzer(),
        fetcher=HtmlContentFetcher(),
        ranking=SerperRankingLookup(),
        generator=OpenAISuggestionGenerator(),
        metrics=SearchConsoleMetricsSource(),
        queue=queue,
    )
