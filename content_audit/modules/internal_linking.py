"""
Internal link suggestions between pages of the same project.

Relevance is scored from keyword similarity and the overlap of the pages'
high-importance guideline terms. Only pages that already have guidelines
take part, as source or target.
"""

from typing import Any, Callable, Optional

from loguru import logger
from sqlalchemy.orm import Session

from content_audit.config.settings import SUGGESTIONS
from content_audit.database.models import (
    AuditPage, ChangeStatus, ContentGuidelines, InternalLinkSuggestion, SessionLocal,
)
from content_audit.errors import PreconditionFailedError
from content_audit.modules.access import get_owned_page, get_owned_suggestion, transition
from content_audit.modules.text_analyzer import normalize_text
from content_audit.utils.helpers import round_half_up, truncate_text

LINK_MODES = ("basic", "semantic")
DEFAULT_ANCHOR = "related content"


def high_importance_terms(important_terms: Optional[list[dict[str, Any]]]) -> list[str]:
    """Normalized terms above the importance cut-off, in stored order."""
    selected = [
        term for term in (important_terms or [])
        if (term.get("importance") or 0) > SUGGESTIONS["link_term_importance"]
    ]
    return [
        term.get("term_normalized") or normalize_text(term.get("term", ""))
        for term in selected[: SUGGESTIONS["link_terms_per_page"]]
    ]


def relevance_score(
    source_keyword: Optional[str],
    source_terms: list[str],
    target_keyword: Optional[str],
    target_terms: list[str],
) -> int:
    """0-100 relevance of linking from source to target.

    50 for identical keywords or 25 when one contains the other, plus up to
    30 for term overlap, plus a flat 20 for sharing the site.
    """
    score = 0.0
    source_kw = normalize_text(source_keyword or "")
    target_kw = normalize_text(target_keyword or "")
    if source_kw and target_kw:
        if source_kw == target_kw:
            score += 50
        elif source_kw in target_kw or target_kw in source_kw:
            score += 25

    source_set, target_set = set(source_terms), set(target_terms)
    if source_set and target_set:
        overlap = len(source_set & target_set) / max(len(source_set), len(target_set))
        score += overlap * 30

    score += 20
    return min(100, round_half_up(score))


def anchor_text(main_keyword: Optional[str], title: Optional[str]) -> str:
    if main_keyword:
        return main_keyword
    if title:
        return truncate_text(title, SUGGESTIONS["anchor_max_length"])
    return DEFAULT_ANCHOR


def link_to_dict(link: InternalLinkSuggestion) -> dict[str, Any]:
    return {
        "id": link.id,
        "page_id": link.page_id,
        "source_url": link.source_url,
        "target_url": link.target_url,
        "anchor_text": link.anchor_text,
        "relevance_score": link.relevance_score,
        "mode": link.mode,
        "status": link.status,
    }


class InternalLinker:
    """Suggest, apply and reject internal links for audited pages."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self.session_factory = session_factory

    def generate_suggestions(
        self, user_id: str, page_id: int, mode: str = "basic"
    ) -> list[dict[str, Any]]:
        """Replace the page's ``suggested`` links with freshly scored ones."""
        if mode not in LINK_MODES:
            raise PreconditionFailedError(f"Unknown link mode: {mode}")
        if mode == "semantic":
            raise PreconditionFailedError("Semantic link suggestions are not available")

        db = self.session_factory()
        try:
            source = get_owned_page(db, user_id, page_id)
            if source.guidelines is None:
                raise PreconditionFailedError(
                    "No content guidelines for this page. Please run analysis first."
                )

            source_keyword = source.main_keyword
            source_terms = high_importance_terms(source.guidelines.important_terms)

            targets = (
                db.query(AuditPage)
                .join(ContentGuidelines, ContentGuidelines.page_id == AuditPage.id)
                .filter(AuditPage.project_id == source.project_id, AuditPage.id != source.id)
                .all()
            )

            scored = []
            for target in targets:
                score = relevance_score(
                    source_keyword,
                    source_terms,
                    target.main_keyword,
                    high_importance_terms(target.guidelines.important_terms),
                )
                if score >= SUGGESTIONS["link_relevance_threshold"]:
                    scored.append((score, target))

            # sort() is stable, so equal scores keep query order
            scored.sort(key=lambda item: item[0], reverse=True)
            scored = scored[: SUGGESTIONS["max_link_suggestions"]]

            db.query(InternalLinkSuggestion).filter(
                InternalLinkSuggestion.page_id == page_id,
                InternalLinkSuggestion.status == ChangeStatus.SUGGESTED.value,
            ).delete(synchronize_session=False)

            links = [
                InternalLinkSuggestion(
                    page_id=page_id,
                    source_url=source.url,
                    target_url=target.url,
                    anchor_text=anchor_text(target.main_keyword, target.title),
                    relevance_score=score,
                    mode=mode,
                    status=ChangeStatus.SUGGESTED.value,
                )
                for score, target in scored
            ]
            db.add_all(links)
            db.commit()

            logger.info(
                "Page {}: {} link suggestions from {} candidates", page_id, len(links), len(targets)
            )
            return [link_to_dict(link) for link in links]
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def list_links(
        self, user_id: str, page_id: int, status: Optional[str] = None
    ) -> list[dict[str, Any]]:
        db = self.session_factory()
        try:
            get_owned_page(db, user_id, page_id)
            query = db.query(InternalLinkSuggestion).filter(InternalLinkSuggestion.page_id == page_id)
            if status:
                query = query.filter(InternalLinkSuggestion.status == status)
            query = query.order_by(
                InternalLinkSuggestion.relevance_score.desc(), InternalLinkSuggestion.id
            )
            return [link_to_dict(link) for link in query.all()]
        finally:
            db.close()

    def apply_link(self, user_id: str, link_id: int) -> dict[str, Any]:
        return self._set_status(user_id, link_id, ChangeStatus.APPLIED)

    def reject_link(self, user_id: str, link_id: int) -> dict[str, Any]:
        return self._set_status(user_id, link_id, ChangeStatus.REJECTED)

    def _set_status(self, user_id: str, link_id: int, status: ChangeStatus) -> dict[str, Any]:
        db = self.session_factory()
        try:
            link = get_owned_suggestion(db, InternalLinkSuggestion, user_id, link_id)
            transition(link, status)
            db.commit()
            logger.info("Link suggestion {} marked {}", link_id, status.value)
            return link_to_dict(link)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
