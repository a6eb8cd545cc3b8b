"""Tests for auto-optimize suggestions."""

import pytest

from content_audit.database.models import AutoOptimizeChange
from content_audit.errors import ExternalServiceError, NotFoundError, PreconditionFailedError
from content_audit.modules.auto_optimizer import AutoOptimizer, TermGap
from content_audit.modules.guideline_synthesizer import ImportantTerm
from tests.fakes import FakeFetcher, FakeGenerator, draft

PAGE_TEXT = "Apostille services in every state. We notarize documents quickly."


def term(name, importance, avg_count=2.0):
    return ImportantTerm(term=name, term_normalized=name, importance=importance, avg_count=avg_count)


@pytest.fixture
def optimizer(analyzer, generator, fetcher):
    return AutoOptimizer(analyzer, generator, fetcher)


@pytest.fixture
def page_with_guidelines(make_project, make_page, make_guidelines):
    page_id = make_page(make_project(), content=PAGE_TEXT)
    make_guidelines(
        page_id,
        terms=[term("apostille", 1.0, avg_count=4.0), term("birth certificate", 0.9)],
        min_words=None,
        max_words=None,
        avg_words=500,
    )
    return page_id


class TestFindTermGaps:
    """Missing and underused term detection."""

    def test_missing_terms_need_high_importance(self, optimizer):
        terms = [term("diplomas", 0.9), term("courier", 0.5), term("apostille", 1.0, avg_count=1.0)]

        missing, underused = optimizer.find_term_gaps("apostille services", terms)

        assert [gap.term for gap in missing] == ["diplomas"]
        assert underused == []

    def test_underused_terms(self, optimizer):
        terms = [term("apostille", 0.8, avg_count=6.0), term("notary", 0.4, avg_count=6.0)]

        missing, underused = optimizer.find_term_gaps("apostille and notary", terms)

        assert missing == []
        assert underused == [TermGap(term="apostille", importance=0.8, current_count=1, avg_count=6.0)]

    def test_phrases_are_counted_as_substrings(self, optimizer):
        terms = [term("notary public", 0.9, avg_count=1.0)]

        missing, underused = optimizer.find_term_gaps("Find a Notary Public today", terms)

        assert missing == [] and underused == []

    def test_each_category_is_capped_and_sorted(self, optimizer):
        terms = [term(f"term{i}", 0.61 + i * 0.05) for i in range(7)]

        missing, _ = optimizer.find_term_gaps("nothing matches", terms)

        assert len(missing) == 5
        assert [gap.term for gap in missing] == ["term6", "term5", "term4", "term3", "term2"]

    def test_target_count_rounds_up(self):
        gap = TermGap(term="apostille", importance=0.9, current_count=0, avg_count=2.2)
        assert gap.to_dict()["target_count"] == 3
        assert TermGap("x", 0.9, 0, 0.0).to_dict()["target_count"] == 1


class TestGenerateSuggestions:
    """Generation and replacement of suggested changes."""

    @pytest.mark.asyncio
    async def test_stores_generated_changes(self, optimizer, generator, page_with_guidelines):
        changes = await optimizer.generate_suggestions("user-1", page_with_guidelines)

        assert len(changes) == 2
        assert all(change["status"] == "suggested" for change in changes)
        assert changes[0]["location"] == '{"paragraphIndex": 0}'

        request = generator.requests[0]
        assert request.keyword == "apostille services"
        assert [t["term"] for t in request.missing_terms] == ["birth certificate"]
        assert [t["term"] for t in request.underused_terms] == ["apostille"]
        assert request.recommended_min_words == 400
        assert request.recommended_max_words == 600
        assert request.current_word_count == 9

    @pytest.mark.asyncio
    async def test_regeneration_replaces_only_suggested(
        self, optimizer, page_with_guidelines, db_session
    ):
        first = await optimizer.generate_suggestions("user-1", page_with_guidelines)
        optimizer.apply_change("user-1", first[0]["id"])

        await optimizer.generate_suggestions("user-1", page_with_guidelines)

        rows = db_session.query(AutoOptimizeChange).filter_by(page_id=page_with_guidelines).all()
        statuses = sorted(row.status for row in rows)
        assert statuses == ["applied", "suggested", "suggested"]

    @pytest.mark.asyncio
    async def test_invalid_drafts_are_dropped(
        self, analyzer, fetcher, page_with_guidelines
    ):
        drafts = [draft(), {"changeType": "rewrite", "suggestedText": "x"}, {"location": "{}"}]
        optimizer = AutoOptimizer(analyzer, FakeGenerator(drafts), fetcher)

        changes = await optimizer.generate_suggestions("user-1", page_with_guidelines)

        assert len(changes) == 1

    @pytest.mark.asyncio
    async def test_requires_guidelines(self, optimizer, make_project, make_page):
        page_id = make_page(make_project(), content=PAGE_TEXT)

        with pytest.raises(PreconditionFailedError, match="run analysis first"):
            await optimizer.generate_suggestions("user-1", page_id)

    @pytest.mark.asyncio
    async def test_other_owner_sees_not_found(self, optimizer, page_with_guidelines):
        with pytest.raises(NotFoundError):
            await optimizer.generate_suggestions("user-2", page_with_guidelines)

    @pytest.mark.asyncio
    async def test_fetches_text_when_none_cached(
        self, analyzer, generator, make_project, make_page, make_guidelines
    ):
        url = "https://example.com/fees"
        page_id = make_page(make_project(), url=url)
        make_guidelines(page_id)
        fetcher = FakeFetcher({url: None})
        optimizer = AutoOptimizer(analyzer, generator, fetcher)

        with pytest.raises(ExternalServiceError):
            await optimizer.generate_suggestions("user-1", page_id)
        assert fetcher.fetched == [url]


class TestChangeLifecycle:
    """Apply and reject transitions."""

    @pytest.mark.asyncio
    async def test_apply_then_reject_fails(self, optimizer, page_with_guidelines):
        changes = await optimizer.generate_suggestions("user-1", page_with_guidelines)
        change_id = changes[0]["id"]

        applied = optimizer.apply_change("user-1", change_id)
        assert applied["status"] == "applied"

        with pytest.raises(PreconditionFailedError):
            optimizer.reject_change("user-1", change_id)

    @pytest.mark.asyncio
    async def test_reject_and_list_by_status(self, optimizer, page_with_guidelines):
        changes = await optimizer.generate_suggestions("user-1", page_with_guidelines)
        optimizer.reject_change("user-1", changes[1]["id"])

        rejected = optimizer.list_changes("user-1", page_with_guidelines, status="rejected")
        everything = optimizer.list_changes("user-1", page_with_guidelines)

        assert [c["id"] for c in rejected] == [changes[1]["id"]]
        assert len(everything) == 2

    @pytest.mark.asyncio
    async def test_other_owner_cannot_apply(self, optimizer, page_with_guidelines):
        changes = await optimizer.generate_suggestions("user-1", page_with_guidelines)

        with pytest.raises(NotFoundError):
            optimizer.apply_change("user-2", changes[0]["id"])

    def test_unknown_change(self, optimizer):
        with pytest.raises(NotFoundError):
            optimizer.apply_change("user-1", 31337)
