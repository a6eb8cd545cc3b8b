"""
Guideline Synthesizer
=====================

Builds the competitive benchmark ("content guidelines") for one audited
page: looks up the ranking pages for its keyword, fetches up to five of
them, aggregates length, heading and term statistics, and upserts the
result keyed by page id.

A competitor that fails to fetch is skipped. When none can be fetched the
profile is built from ``fallback_competitor`` placeholder statistics so that
scoring keeps working; retrying would not change that outcome.
"""

import asyncio
import statistics
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Iterable, Optional

from loguru import logger
from sqlalchemy.orm import Session

from content_audit.config.settings import FETCH_TIMEOUT_SECONDS, GUIDELINES
from content_audit.database.models import (
    AuditPage, ContentGuidelines, ScoringState, SessionLocal, utcnow,
)
from content_audit.errors import NotFoundError
from content_audit.modules.text_analyzer import TextAnalyzer, normalize_text
from content_audit.providers.base import ContentFetcher, FetchedPage, RankingLookup
from content_audit.utils.helpers import round_half_up


@dataclass
class ImportantTerm:
    """Competitive signal for one term within a single guideline profile."""
    term: str
    term_normalized: str
    importance: float
    min_count: int = 0
    max_count: int = 0
    avg_count: float = 0.0
    percentage_present: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImportantTerm":
        term = data.get("term", "")
        return cls(
            term=term,
            term_normalized=data.get("term_normalized") or normalize_text(term),
            importance=float(data.get("importance", 0.0)),
            min_count=int(data.get("min_count", 0)),
            max_count=int(data.get("max_count", 0)),
            avg_count=float(data.get("avg_count", 0.0)),
            percentage_present=float(data.get("percentage_present", 0.0)),
        )


@dataclass
class GuidelineProfile:
    """Aggregated statistics before they are written to the database."""
    keyword: str
    min_words: int
    max_words: int
    avg_words: int
    avg_h1_count: int
    avg_h2_count: int
    avg_h3_count: int
    competitor_count: int
    important_terms: list[ImportantTerm] = field(default_factory=list)
    is_fallback: bool = False


def fallback_competitor(keyword: str) -> FetchedPage:
    """Placeholder competitor used when every fetch failed."""
    return FetchedPage(
        url="",
        title=keyword,
        headings={
            "h1": [keyword] * GUIDELINES["fallback_h1_count"],
            "h2": [keyword] * GUIDELINES["fallback_h2_count"],
            "h3": [keyword] * GUIDELINES["fallback_h3_count"],
        },
        body_text=keyword,
        word_count=GUIDELINES["fallback_word_count"],
    )


def load_important_terms(guidelines: ContentGuidelines) -> list[ImportantTerm]:
    """Decode the JSON term list stored on a guideline row."""
    return [ImportantTerm.from_dict(item) for item in (guidelines.important_terms or [])]


class GuidelineSynthesizer:
    """Derive and persist content guidelines from competitor pages."""

    def __init__(
        self,
        analyzer: TextAnalyzer,
        fetcher: ContentFetcher,
        ranking: RankingLookup,
        session_factory: Callable[[], Session] = SessionLocal,
        max_competitors: int = GUIDELINES["max_competitors"],
        max_key_terms: int = GUIDELINES["max_key_terms"],
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self.analyzer = analyzer
        self.fetcher = fetcher
        self.ranking = ranking
        self.session_factory = session_factory
        self.max_competitors = max_competitors
        self.max_key_terms = max_key_terms
        self.fetch_timeout = fetch_timeout

    async def synthesize(
        self,
        page_id: int,
        keyword: str,
        country: str = "us",
        language_code: str = "en",
        competitor_sources: Optional[Iterable[str]] = None,
    ) -> ContentGuidelines:
        """Build and upsert the guideline profile for *page_id*.

        Ranking-lookup errors propagate to the caller; individual competitor
        fetch failures do not.
        """
        logger.info("Analyzing keyword '{}' for page {}", keyword, page_id)
        self._require_page(page_id)

        if competitor_sources is None:
            results = await self.ranking.search(keyword, country, language_code)
            competitor_sources = [result.url for result in results]
        sources = list(competitor_sources)[: self.max_competitors]

        competitors = await self.fetch_competitors(sources)
        logger.info("Fetched {}/{} competitor pages for '{}'", len(competitors), len(sources), keyword)

        profile = self.build_profile(keyword, competitors, language_code)
        return self._upsert(page_id, country, language_code, profile)

    async def fetch_competitors(self, urls: list[str]) -> list[FetchedPage]:
        """Fetch *urls* concurrently, keeping only the successes in input order."""
        results = await asyncio.gather(*(self._fetch_one(url) for url in urls))
        return [page for page in results if page is not None]

    async def _fetch_one(self, url: str) -> Optional[FetchedPage]:
        try:
            return await asyncio.wait_for(self.fetcher.fetch(url), timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning("Competitor fetch timed out: {}", url)
        except Exception as exc:
            # A raising fetcher counts as a failed fetch
            logger.warning("Competitor fetch failed for {}: {}", url, exc)
        return None

    def build_profile(
        self, keyword: str, competitors: list[FetchedPage], language_code: str = "en"
    ) -> GuidelineProfile:
        """Aggregate competitor statistics into a guideline profile."""
        is_fallback = not competitors
        if is_fallback:
            logger.warning("No competitor content for '{}'; using fallback guideline", keyword)
            competitors = [fallback_competitor(keyword)]

        word_counts = [page.word_count for page in competitors]
        count = len(competitors)

        def avg_headings(level: str) -> int:
            return round_half_up(sum(page.heading_count(level) for page in competitors) / count)

        combined = " ".join(page.body_text for page in competitors)
        key_terms = self.analyzer.extract_key_terms(combined, self.max_key_terms, language_code)
        terms = [
            self._term_statistics(key_term.term, key_term.importance / 10, competitors)
            for key_term in key_terms
        ]

        keyword_normalized = normalize_text(keyword)
        if keyword_normalized and not any(t.term_normalized == keyword_normalized for t in terms):
            terms.insert(0, self._term_statistics(keyword_normalized, 1.0, competitors))

        return GuidelineProfile(
            keyword=keyword,
            min_words=round_half_up(min(word_counts) * GUIDELINES["min_words_factor"]),
            max_words=round_half_up(max(word_counts) * GUIDELINES["max_words_factor"]),
            avg_words=round_half_up(statistics.mean(word_counts)),
            avg_h1_count=avg_headings("h1"),
            avg_h2_count=avg_headings("h2"),
            avg_h3_count=avg_headings("h3"),
            competitor_count=0 if is_fallback else count,
            important_terms=terms,
            is_fallback=is_fallback,
        )

    def _term_statistics(
        self, term: str, importance: float, competitors: list[FetchedPage]
    ) -> ImportantTerm:
        counts = [self.analyzer.count_occurrences(page.body_text, term) for page in competitors]
        present = sum(1 for c in counts if c > 0)
        return ImportantTerm(
            term=term,
            term_normalized=normalize_text(term),
            importance=round(importance, 2),
            min_count=min(counts),
            max_count=max(counts),
            avg_count=round(statistics.mean(counts), 2),
            percentage_present=round(present / len(counts) * 100, 1),
        )

    def _require_page(self, page_id: int) -> None:
        db = self.session_factory()
        try:
            if db.get(AuditPage, page_id) is None:
                raise NotFoundError(f"Page not found: {page_id}")
        finally:
            db.close()

    def _upsert(
        self, page_id: int, country: str, language_code: str, profile: GuidelineProfile
    ) -> ContentGuidelines:
        db = self.session_factory()
        try:
            page = db.get(AuditPage, page_id)
            if page is None:
                raise NotFoundError(f"Page not found: {page_id}")

            guidelines = (
                db.query(ContentGuidelines).filter(ContentGuidelines.page_id == page_id).one_or_none()
            )
            if guidelines is None:
                guidelines = ContentGuidelines(page_id=page_id)
                db.add(guidelines)

            guidelines.keyword = profile.keyword
            guidelines.language_code = language_code
            guidelines.country = country
            guidelines.min_words = profile.min_words
            guidelines.max_words = profile.max_words
            guidelines.avg_words = profile.avg_words
            guidelines.avg_h1_count = profile.avg_h1_count
            guidelines.avg_h2_count = profile.avg_h2_count
            guidelines.avg_h3_count = profile.avg_h3_count
            guidelines.competitor_count = profile.competitor_count
            guidelines.is_fallback = profile.is_fallback
            guidelines.important_terms = [term.to_dict() for term in profile.important_terms]
            guidelines.last_updated = utcnow()

            page.scoring_state = ScoringState.READY.value

            db.commit()
            db.refresh(guidelines)
            db.expunge(guidelines)
            logger.info(
                "Guidelines saved for page {} ({} terms, {} competitors{})",
                page_id,
                len(profile.important_terms),
                profile.competitor_count,
                ", fallback" if profile.is_fallback else "",
            )
            return guidelines
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
