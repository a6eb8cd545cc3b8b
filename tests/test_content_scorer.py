"""Tests for the content scorer."""

from types import SimpleNamespace

import pytest

from content_audit.modules.content_scorer import (
    MONITOR, NEEDS_OPTIMIZATION, PERFORMING_WELL, ContentScorer, length_score,
    recommendation_label,
)


def guidelines(terms, min_words=1, max_words=1000, language_code="en"):
    return SimpleNamespace(
        important_terms=terms,
        min_words=min_words,
        max_words=max_words,
        language_code=language_code,
    )


@pytest.fixture
def scorer(analyzer):
    return ContentScorer(analyzer)


class TestLengthScore:
    """Word count against the guideline range."""

    def test_inside_range_is_full(self):
        assert length_score(1000, 800, 1200) == 100
        assert length_score(800, 800, 1200) == 100
        assert length_score(1200, 800, 1200) == 100

    def test_under_minimum_loses_a_point_per_percent(self):
        assert length_score(400, 800, 1200) == 50
        assert length_score(0, 800, 1200) == 0

    def test_just_under_minimum(self):
        assert length_score(999, 1000, 2000) == pytest.approx(99.9)

    def test_over_maximum_is_penalized_at_half_rate(self):
        assert length_score(1500, 800, 1200) == pytest.approx(87.5)
        assert length_score(3600, 800, 1200) == 0
        assert length_score(10000, 800, 1200) == 0

    def test_no_bounds_is_full(self):
        assert length_score(5, 0, 0) == 100
        assert length_score(5, None, None) == 100

    def test_zero_maximum_means_unbounded(self):
        assert length_score(50000, 100, 0) == 100


class TestRecommendationLabel:

    @pytest.mark.parametrize("score,label", [
        (100, PERFORMING_WELL),
        (80, PERFORMING_WELL),
        (79, MONITOR),
        (50, MONITOR),
        (49, NEEDS_OPTIMIZATION),
        (0, NEEDS_OPTIMIZATION),
    ])
    def test_thresholds(self, score, label):
        assert recommendation_label(score) == label


class TestContentScorer:
    """Weighted composite scoring."""

    def test_composite_formula(self, scorer):
        terms = [{"term": t, "importance": 1.0} for t in ("alpha", "beta", "gamma", "delta", "omega")]
        text = "alpha beta gamma delta and some other words"

        result = scorer.score(text, guidelines(terms))

        assert result.breakdown.term_coverage_score == 80
        assert result.breakdown.length_score == 100
        assert result.breakdown.headings_score == 100
        assert result.content_score == 90
        assert result.recommendation == PERFORMING_WELL
        assert result.recommendation_score == 10

    def test_near_perfect_length_rounds_up(self, scorer):
        text = " ".join(["word"] * 999)
        result = scorer.score(text, guidelines([], min_words=1000, max_words=2000))

        assert result.breakdown.length_score == pytest.approx(99.9)
        assert result.content_score == 100

    def test_empty_terms_score_full_coverage(self, scorer):
        result = scorer.score("short text", guidelines([], min_words=0, max_words=0))
        assert result.content_score == 100
        assert result.recommendation_score == 0

    def test_thin_page_without_terms_needs_optimization(self, scorer):
        terms = [{"term": "apostille", "importance": 1.0}, {"term": "notary", "importance": 1.0}]
        result = scorer.score("hello", guidelines(terms, min_words=1000, max_words=1500))

        # 0.5 * 0 + 0.3 * 0.1 + 0.2 * 100
        assert result.content_score == 20
        assert result.recommendation == NEEDS_OPTIMIZATION
        assert result.recommendation_score == 80

    def test_score_is_bounded_and_deterministic(self, scorer):
        terms = [{"term": "apostille", "importance": 0.7}]
        g = guidelines(terms, min_words=3, max_words=5)
        first = scorer.score("apostille services today", g)
        second = scorer.score("apostille services today", g)

        assert first == second
        assert 0 <= first.content_score <= 100

    def test_custom_weights(self, analyzer):
        scorer = ContentScorer(analyzer, term_coverage_weight=1.0, length_weight=0.0, headings_weight=0.0)
        terms = [{"term": "alpha", "importance": 1.0}, {"term": "beta", "importance": 1.0}]
        assert scorer.score("alpha", guidelines(terms)).content_score == 50

    def test_terms_must_be_a_list(self, scorer):
        with pytest.raises(ValueError):
            scorer.score("text", guidelines("not a list"))
