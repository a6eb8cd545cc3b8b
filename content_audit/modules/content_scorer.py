"""
Content Scorer
==============

Scores page text against a guideline profile:

    content_score = round(0.5 * term_coverage + 0.3 * length + 0.2 * headings)

The scorer is a pure function of its inputs. Heading structure is not
analysed yet and always contributes a full 100.
"""

from dataclasses import dataclass
from typing import Any, Optional

from content_audit.config.settings import SCORING
from content_audit.modules.text_analyzer import TextAnalyzer
from content_audit.utils.helpers import round_half_up

PERFORMING_WELL = "Performing Well"
MONITOR = "Monitor"
NEEDS_OPTIMIZATION = "Needs Optimization"


@dataclass(frozen=True)
class ScoreBreakdown:
    term_coverage_score: float
    length_score: float
    headings_score: float
    term_coverage_weight: float
    length_weight: float
    headings_weight: float


@dataclass(frozen=True)
class ContentScore:
    content_score: int
    recommendation: str
    recommendation_score: int
    breakdown: ScoreBreakdown


def length_score(actual: int, min_words: Optional[int], max_words: Optional[int]) -> float:
    """Score word count against the guideline range.

    Thin content loses a point per percent under the minimum; overage is
    penalized at half that rate. A max of zero means no upper bound.
    """
    min_words = min_words or 0
    max_words = max_words or 0

    if min_words == 0 and max_words == 0:
        return 100.0
    if actual >= min_words and (max_words == 0 or actual <= max_words):
        return 100.0
    if actual < min_words:
        return max(0.0, 100 - (min_words - actual) / min_words * 100)
    return max(0.0, 100 - (actual - max_words) / max_words * 50)


def recommendation_label(score: int) -> str:
    if score >= SCORING["performing_well_threshold"]:
        return PERFORMING_WELL
    if score >= SCORING["monitor_threshold"]:
        return MONITOR
    return NEEDS_OPTIMIZATION


class ContentScorer:
    """Weighted composite of term coverage, length and headings."""

    def __init__(
        self,
        analyzer: TextAnalyzer,
        term_coverage_weight: float = SCORING["term_coverage_weight"],
        length_weight: float = SCORING["length_weight"],
        headings_weight: float = SCORING["headings_weight"],
    ) -> None:
        self.analyzer = analyzer
        self.term_coverage_weight = term_coverage_weight
        self.length_weight = length_weight
        self.headings_weight = headings_weight

    def score(self, page_text: str, guidelines: Any, language_code: Optional[str] = None) -> ContentScore:
        """Score *page_text* against *guidelines*.

        *guidelines* is a ``ContentGuidelines`` row or any object exposing
        ``important_terms``, ``min_words`` and ``max_words``.
        """
        important_terms = getattr(guidelines, "important_terms", None)
        if not isinstance(important_terms, list):
            raise ValueError("guidelines.important_terms must be a list")
        language_code = language_code or getattr(guidelines, "language_code", None) or "en"

        coverage = self.analyzer.term_coverage(page_text, important_terms, language_code)
        stats = self.analyzer.analyze(page_text, language_code)

        term_score = float(coverage.score)
        words_score = length_score(
            stats.word_count,
            getattr(guidelines, "min_words", None),
            getattr(guidelines, "max_words", None),
        )
        headings_score = 100.0

        total = round_half_up(
            term_score * self.term_coverage_weight
            + words_score * self.length_weight
            + headings_score * self.headings_weight
        )
        total = max(0, min(100, total))

        return ContentScore(
            content_score=total,
            recommendation=recommendation_label(total),
            recommendation_score=100 - total,
            breakdown=ScoreBreakdown(
                term_coverage_score=term_score,
                length_score=words_score,
                headings_score=headings_score,
                term_coverage_weight=self.term_coverage_weight,
                length_weight=self.length_weight,
                headings_weight=self.headings_weight,
            ),
        )
