from content_audit.providers.base import (
    ChangeDraft,
    ContentFetcher,
    FetchedPage,
    MetricsSource,
    PageMetrics,
    RankingLookup,
    SearchResult,
    SuggestionGenerator,
    SuggestionRequest,
)

__all__ = [
    "ChangeDraft",
    "ContentFetcher",
    "FetchedPage",
    "MetricsSource",
    "PageMetrics",
    "RankingLookup",
    "SearchResult",
    "SuggestionGenerator",
    "SuggestionRequest",
]
