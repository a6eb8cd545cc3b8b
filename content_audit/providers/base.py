"""
Capability interfaces consumed by the audit pipeline.

The pipeline only talks to these protocols; the default adapters in this
package (aiohttp page fetcher, Serper ranking lookup, OpenAI suggestion
generator, Search Console metrics source) are one implementation each.
"""

from __future__ import annotations

import datetime
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from content_audit.errors import ValidationError

CHANGE_TYPES = ("insert", "replace", "delete")


@dataclass
class FetchedPage:
    """Extracted content of one web page."""
    url: str
    title: str = ""
    meta_description: str = ""
    headings: dict[str, list[str]] = field(default_factory=lambda: {"h1": [], "h2": [], "h3": []})
    body_text: str = ""
    word_count: int = 0

    def heading_count(self, level: str) -> int:
        return len(self.headings.get(level, []))


@dataclass
class SearchResult:
    """One organic result from a ranking lookup."""
    position: int
    url: str
    title: str = ""
    snippet: str = ""


@dataclass
class PageMetrics:
    """Search performance of one URL over a reporting window."""
    url: str
    clicks: int = 0
    impressions: int = 0
    ctr: float = 0.0
    position: float = 0.0


@dataclass
class SuggestionRequest:
    """Everything the generative model needs to draft content edits."""
    page_text: str
    keyword: str
    language_code: str
    missing_terms: list[dict[str, Any]] = field(default_factory=list)
    underused_terms: list[dict[str, Any]] = field(default_factory=list)
    recommended_min_words: Optional[int] = None
    recommended_max_words: Optional[int] = None
    current_word_count: int = 0


@dataclass
class ChangeDraft:
    """A proposed edit returned by a suggestion generator.

    ``location`` is JSON text; the core never interprets it.
    """
    change_type: str
    location: str
    suggested_text: str
    original_text: Optional[str] = None
    reasoning: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Any) -> "ChangeDraft":
        """Validate a raw draft, raising ``ValidationError`` when malformed.

        A structured location (object or list) is serialized to JSON text;
        a string location must already parse as JSON.
        """
        if not isinstance(raw, dict):
            raise ValidationError(f"change draft must be an object, got {type(raw).__name__}")

        change_type = raw.get("changeType", raw.get("change_type"))
        suggested_text = raw.get("suggestedText", raw.get("suggested_text"))
        if not change_type or not suggested_text:
            raise ValidationError("change draft is missing changeType or suggestedText")
        if change_type not in CHANGE_TYPES:
            raise ValidationError(f"invalid changeType: {change_type!r}")
        if not isinstance(suggested_text, str):
            raise ValidationError("suggestedText must be a string")

        location = raw.get("location")
        if location is None:
            location = "{}"
        elif isinstance(location, (dict, list)):
            location = json.dumps(location)
        elif isinstance(location, str):
            try:
                json.loads(location)
            except ValueError as exc:
                raise ValidationError(f"location is not valid JSON: {location!r}") from exc
        else:
            raise ValidationError(f"unsupported location type: {type(location).__name__}")

        original_text = raw.get("originalText", raw.get("original_text"))
        reasoning = raw.get("reasoning")
        return cls(
            change_type=change_type,
            location=location,
            suggested_text=suggested_text,
            original_text=original_text if isinstance(original_text, str) else None,
            reasoning=reasoning if isinstance(reasoning, str) else None,
        )


@runtime_checkable
class ContentFetcher(Protocol):
    async def fetch(self, url: str) -> Optional[FetchedPage]:
        """Fetch and extract a page; ``None`` on any failure, never raises."""


@runtime_checkable
class RankingLookup(Protocol):
    async def search(self, keyword: str, country: str = "us", language: str = "en") -> list[SearchResult]:
        """Ordered organic results; raises ``ExternalServiceError`` on failure."""


@runtime_checkable
class SuggestionGenerator(Protocol):
    async def generate(self, request: SuggestionRequest) -> list[ChangeDraft]:
        """Validated change drafts; malformed items are dropped, not coerced."""


@runtime_checkable
class MetricsSource(Protocol):
    async def fetch_top_pages(
        self,
        property_url: str,
        start_date: datetime.date,
        end_date: datetime.date,
        limit: int,
    ) -> list[PageMetrics]:
        """Top pages by clicks for a property over the date range."""
