"""
Auto-Optimize Suggestions
=========================

Finds guideline terms a page never uses or uses far less than the
competitors do, asks the suggestion generator for concrete edits and stores
them as ``suggested`` changes. Regenerating replaces every change that is
still ``suggested``; applied and rejected changes are kept.
"""

import asyncio
import math
from dataclasses import asdict, dataclass, is_dataclass
from typing import Any, Callable, Optional

from loguru import logger
from sqlalchemy.orm import Session

from content_audit.config.settings import FETCH_TIMEOUT_SECONDS, SUGGESTIONS
from content_audit.database.models import (
    AutoOptimizeChange, ChangeStatus, SessionLocal,
)
from content_audit.errors import (
    ExternalServiceError, PreconditionFailedError, ValidationError,
)
from content_audit.modules.access import get_owned_page, get_owned_suggestion, transition
from content_audit.modules.guideline_synthesizer import ImportantTerm, load_important_terms
from content_audit.modules.text_analyzer import TextAnalyzer, normalize_text
from content_audit.providers.base import (
    ChangeDraft, ContentFetcher, SuggestionGenerator, SuggestionRequest,
)


@dataclass
class TermGap:
    term: str
    importance: float
    current_count: int
    avg_count: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "term": self.term,
            "importance": self.importance,
            "current_count": self.current_count,
            "target_count": math.ceil(self.avg_count) if self.avg_count else 1,
        }


@dataclass
class _PageSnapshot:
    url: str
    content: Optional[str]
    language_code: str
    keyword: str
    min_words: Optional[int]
    max_words: Optional[int]
    avg_words: Optional[int]
    terms: list[ImportantTerm]


def change_to_dict(change: AutoOptimizeChange) -> dict[str, Any]:
    return {
        "id": change.id,
        "page_id": change.page_id,
        "change_type": change.change_type,
        "location": change.location,
        "original_text": change.original_text,
        "suggested_text": change.suggested_text,
        "reasoning": change.reasoning,
        "status": change.status,
    }


class AutoOptimizer:
    """Generate and manage AI content-change suggestions for audited pages."""

    def __init__(
        self,
        analyzer: TextAnalyzer,
        generator: SuggestionGenerator,
        fetcher: ContentFetcher,
        session_factory: Callable[[], Session] = SessionLocal,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self.analyzer = analyzer
        self.generator = generator
        self.fetcher = fetcher
        self.session_factory = session_factory
        self.fetch_timeout = fetch_timeout

    # ------------------------------------------------------------------
    # Term gaps
    # ------------------------------------------------------------------

    def find_term_gaps(
        self, page_text: str, terms: list[ImportantTerm], language_code: str = "en"
    ) -> tuple[list[TermGap], list[TermGap]]:
        """Split guideline terms into missing and underused gaps.

        Single-word counts come from the page's key terms; phrases, which
        never appear there, are counted as substrings.
        """
        key_terms = self.analyzer.extract_key_terms(
            page_text, SUGGESTIONS["page_key_terms_limit"], language_code
        )
        page_counts = {key_term.term: key_term.count for key_term in key_terms}

        missing: list[TermGap] = []
        underused: list[TermGap] = []
        for term in terms:
            normalized = term.term_normalized or normalize_text(term.term)
            count = page_counts.get(normalized)
            if count is None:
                count = self.analyzer.count_occurrences(page_text, normalized)

            gap = TermGap(
                term=term.term,
                importance=term.importance,
                current_count=count,
                avg_count=term.avg_count,
            )
            if count == 0 and term.importance > SUGGESTIONS["missing_term_importance"]:
                missing.append(gap)
            elif (
                count < term.avg_count * SUGGESTIONS["underused_ratio"]
                and term.importance > SUGGESTIONS["underused_term_importance"]
            ):
                underused.append(gap)

        limit = SUGGESTIONS["max_terms_per_category"]
        missing = sorted(missing, key=lambda gap: gap.importance, reverse=True)[:limit]
        underused = sorted(underused, key=lambda gap: gap.importance, reverse=True)[:limit]
        return missing, underused

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_suggestions(self, user_id: str, page_id: int) -> list[dict[str, Any]]:
        """Regenerate the ``suggested`` changes for a page the user owns."""
        snapshot = self._load_snapshot(user_id, page_id)

        page_text = snapshot.content
        if not page_text:
            page_text = await self._fetch_text(snapshot.url)

        missing, underused = self.find_term_gaps(page_text, snapshot.terms, snapshot.language_code)
        logger.info(
            "Page {}: {} missing and {} underused terms", page_id, len(missing), len(underused)
        )

        min_words, max_words = self._length_guidance(snapshot)
        request = SuggestionRequest(
            page_text=page_text,
            keyword=snapshot.keyword,
            language_code=snapshot.language_code,
            missing_terms=[gap.to_dict() for gap in missing],
            underused_terms=[gap.to_dict() for gap in underused],
            recommended_min_words=min_words,
            recommended_max_words=max_words,
            current_word_count=self.analyzer.analyze(page_text, snapshot.language_code).word_count,
        )

        drafts = await self.generator.generate(request)
        valid = self._revalidate(drafts)
        return self._replace_suggested(page_id, valid)

    def _load_snapshot(self, user_id: str, page_id: int) -> _PageSnapshot:
        db = self.session_factory()
        try:
            page = get_owned_page(db, user_id, page_id)
            guidelines = page.guidelines
            if guidelines is None:
                raise PreconditionFailedError(
                    "No content guidelines for this page. Please run analysis first."
                )
            return _PageSnapshot(
                url=page.url,
                content=page.content,
                language_code=guidelines.language_code or page.project.language_code or "en",
                keyword=guidelines.keyword,
                min_words=guidelines.min_words,
                max_words=guidelines.max_words,
                avg_words=guidelines.avg_words,
                terms=load_important_terms(guidelines),
            )
        finally:
            db.close()

    async def _fetch_text(self, url: str) -> str:
        try:
            fetched = await asyncio.wait_for(self.fetcher.fetch(url), timeout=self.fetch_timeout)
        except asyncio.TimeoutError as exc:
            raise ExternalServiceError(f"Timed out fetching page content: {url}") from exc
        if fetched is None or not fetched.body_text:
            raise ExternalServiceError(f"Could not fetch page content: {url}")
        return fetched.body_text

    @staticmethod
    def _length_guidance(snapshot: _PageSnapshot) -> tuple[Optional[int], Optional[int]]:
        min_words, max_words = snapshot.min_words, snapshot.max_words
        if snapshot.avg_words:
            min_words = min_words or math.floor(snapshot.avg_words * 0.8)
            max_words = max_words or math.floor(snapshot.avg_words * 1.2)
        return min_words, max_words

    @staticmethod
    def _revalidate(drafts: list[Any]) -> list[ChangeDraft]:
        valid = []
        for draft in drafts or []:
            raw = asdict(draft) if is_dataclass(draft) else draft
            try:
                valid.append(ChangeDraft.from_dict(raw))
            except ValidationError as exc:
                logger.warning("Dropping invalid change draft: {}", exc)
        return valid

    def _replace_suggested(self, page_id: int, drafts: list[ChangeDraft]) -> list[dict[str, Any]]:
        db = self.session_factory()
        try:
            deleted = (
                db.query(AutoOptimizeChange)
                .filter(
                    AutoOptimizeChange.page_id == page_id,
                    AutoOptimizeChange.status == ChangeStatus.SUGGESTED.value,
                )
                .delete(synchronize_session=False)
            )

            changes = [
                AutoOptimizeChange(
                    page_id=page_id,
                    change_type=draft.change_type,
                    location=draft.location,
                    original_text=draft.original_text,
                    suggested_text=draft.suggested_text,
                    reasoning=draft.reasoning,
                    status=ChangeStatus.SUGGESTED.value,
                )
                for draft in drafts
            ]
            db.add_all(changes)
            db.commit()

            logger.info("Page {}: replaced {} suggested changes with {}", page_id, deleted, len(changes))
            return [change_to_dict(change) for change in changes]
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def list_changes(
        self, user_id: str, page_id: int, status: Optional[str] = None
    ) -> list[dict[str, Any]]:
        db = self.session_factory()
        try:
            get_owned_page(db, user_id, page_id)
            query = db.query(AutoOptimizeChange).filter(AutoOptimizeChange.page_id == page_id)
            if status:
                query = query.filter(AutoOptimizeChange.status == status)
            return [change_to_dict(c) for c in query.order_by(AutoOptimizeChange.id).all()]
        finally:
            db.close()

    def apply_change(self, user_id: str, change_id: int) -> dict[str, Any]:
        return self._set_status(user_id, change_id, ChangeStatus.APPLIED)

    def reject_change(self, user_id: str, change_id: int) -> dict[str, Any]:
        return self._set_status(user_id, change_id, ChangeStatus.REJECTED)

    def _set_status(self, user_id: str, change_id: int, status: ChangeStatus) -> dict[str, Any]:
        db = self.session_factory()
        try:
            change = get_owned_suggestion(db, AutoOptimizeChange, user_id, change_id)
            transition(change, status)
            db.commit()
            logger.info("Change {} marked {}", change_id, status.value)
            return change_to_dict(change)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
