"""Tests for the default provider adapters."""

import asyncio
import datetime
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from content_audit.errors import ExternalServiceError, PreconditionFailedError, ValidationError
from content_audit.providers.base import ChangeDraft, SuggestionRequest
from content_audit.providers.html_fetcher import HtmlContentFetcher, parse_html
from content_audit.providers.openai_suggester import (
    OpenAISuggestionGenerator, build_prompt, parse_change_drafts,
)
from content_audit.providers.search_console import SearchConsoleMetricsSource
from content_audit.providers.serper import SerperRankingLookup

SAMPLE_HTML = """
<html>
  <head>
    <title> Apostille Services | Example </title>
    <meta name="description" content="Fast apostille help.">
    <script>var tracking = "ignore me";</script>
  </head>
  <body>
    <nav>Home About Contact</nav>
    <main>
      <h1>Apostille Services</h1>
      <h2>Birth certificates</h2>
      <h2>Diplomas</h2>
      <h2></h2>
      <p>We apostille   documents
         for every state.</p>
    </main>
  </body>
</html>
"""

DRAFT = {
    "changeType": "insert",
    "location": {"paragraphIndex": 1},
    "suggestedText": "Processing takes two days.",
    "reasoning": "Adds timing",
}


def fake_client_session(status=200, body=b"", charset="utf-8", read_error=None):
    """Patch target for aiohttp.ClientSession serving a single response."""
    response = MagicMock(status=status, charset=charset)
    response.read = AsyncMock(return_value=body, side_effect=read_error)
    session = MagicMock()
    session.get.return_value.__aenter__.return_value = response
    client = MagicMock()
    client.return_value.__aenter__.return_value = session
    return client


def request(**fields):
    values = {"page_text": "Some page text.", "keyword": "apostille", "language_code": "en"}
    values.update(fields)
    return SuggestionRequest(**values)


class TestParseHtml:
    """Content extraction from raw HTML."""

    def test_extracts_metadata_and_headings(self):
        page = parse_html("https://example.com/", SAMPLE_HTML)

        assert page.title == "Apostille Services | Example"
        assert page.meta_description == "Fast apostille help."
        assert page.headings["h1"] == ["Apostille Services"]
        assert page.headings["h2"] == ["Birth certificates", "Diplomas"]
        assert page.heading_count("h3") == 0

    def test_body_prefers_main_and_drops_scripts(self):
        page = parse_html("https://example.com/", SAMPLE_HTML)

        assert "Home About" not in page.body_text
        assert "tracking" not in page.body_text
        assert "We apostille documents for every state." in page.body_text
        assert page.word_count == len(page.body_text.split())

    def test_empty_document(self):
        page = parse_html("https://example.com/", "")
        assert page.body_text == ""
        assert page.word_count == 0


class TestHtmlContentFetcher:
    """Network failures and undecodable bodies become None or best-effort text."""

    async def _fetch(self, **response):
        with patch("aiohttp.ClientSession", fake_client_session(**response)):
            return await HtmlContentFetcher(timeout=1).fetch("https://example.com/")

    @pytest.mark.asyncio
    async def test_bytes_that_do_not_match_the_declared_charset(self):
        page = await self._fetch(body=b"<html><body><p>caf\xe9 \xff\xfe ok</p></body></html>")

        assert page is not None
        assert page.body_text.startswith("caf")
        assert page.body_text.endswith("ok")

    @pytest.mark.asyncio
    async def test_unknown_charset(self):
        page = await self._fetch(body=b"<p>hello world</p>", charset="x-no-such-charset")
        assert page.body_text == "hello world"

    @pytest.mark.asyncio
    async def test_non_200_status(self):
        assert await self._fetch(status=404) is None

    @pytest.mark.asyncio
    async def test_timeout(self):
        assert await self._fetch(read_error=asyncio.TimeoutError()) is None


class TestChangeDraft:

    def test_structured_location_is_serialized(self):
        draft = ChangeDraft.from_dict(DRAFT)
        assert json.loads(draft.location) == {"paragraphIndex": 1}
        assert draft.original_text is None

    def test_snake_case_keys_are_accepted(self):
        draft = ChangeDraft.from_dict({
            "change_type": "replace",
            "location": '{"paragraphIndex": 0}',
            "original_text": "old",
            "suggested_text": "new",
        })
        assert (draft.change_type, draft.original_text) == ("replace", "old")

    def test_missing_location_defaults_to_empty_object(self):
        assert ChangeDraft.from_dict({"changeType": "insert", "suggestedText": "x"}).location == "{}"

    @pytest.mark.parametrize("raw", [
        "not a dict",
        {"suggestedText": "x"},
        {"changeType": "insert"},
        {"changeType": "rewrite", "suggestedText": "x"},
        {"changeType": "insert", "suggestedText": 5},
        {"changeType": "insert", "suggestedText": "x", "location": "{not json"},
        {"changeType": "insert", "suggestedText": "x", "location": 3},
    ])
    def test_rejects_malformed_drafts(self, raw):
        with pytest.raises(ValidationError):
            ChangeDraft.from_dict(raw)


class TestParseChangeDrafts:
    """Tolerant parsing of model output."""

    def test_plain_array(self):
        assert len(parse_change_drafts(json.dumps([DRAFT, DRAFT]))) == 2

    def test_code_fence_and_wrapper(self):
        text = "```json\n" + json.dumps({"changes": [DRAFT]}) + "\n```"
        assert len(parse_change_drafts(text)) == 1

    def test_array_embedded_in_prose(self):
        text = "Here you go:\n" + json.dumps([DRAFT]) + "\nHope this helps."
        assert parse_change_drafts(text)[0].suggested_text == "Processing takes two days."

    def test_invalid_items_are_dropped(self):
        assert len(parse_change_drafts(json.dumps([DRAFT, {"changeType": "insert"}, 42]))) == 1

    @pytest.mark.parametrize("text", ["", "no json here", '{"unexpected": true}', "[not, json]"])
    def test_unusable_responses_raise(self, text):
        with pytest.raises(ExternalServiceError):
            parse_change_drafts(text)


class TestBuildPrompt:

    def test_includes_terms_and_length_guidance(self):
        prompt = build_prompt(request(
            missing_terms=[{"term": "diplomas", "importance": 0.9}],
            underused_terms=[{"term": "apostille", "current_count": 1, "target_count": 4}],
            recommended_min_words=400,
            recommended_max_words=600,
            current_word_count=3,
        ))

        assert '- "diplomas" (importance: 0.90)' in prompt
        assert '- "apostille" (current: 1, recommended: 4)' in prompt
        assert "Recommended: 400-600 words" in prompt
        assert "Some page text." in prompt

    def test_without_guidance(self):
        prompt = build_prompt(request())
        assert "No specific word count guidance" in prompt
        assert "(none)" in prompt


class TestOpenAISuggestionGenerator:

    @pytest.mark.asyncio
    async def test_generates_drafts_from_completion(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=json.dumps([DRAFT])))]
        ))
        generator = OpenAISuggestionGenerator(client=client, model="test-model")

        drafts = await generator.generate(request())

        assert [d.change_type for d in drafts] == ["insert"]
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["messages"][1]["role"] == "user"

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        with pytest.raises(PreconditionFailedError):
            await OpenAISuggestionGenerator(api_key="").generate(request())


class TestSerperRankingLookup:

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        with pytest.raises(PreconditionFailedError):
            await SerperRankingLookup(api_key="").search("apostille")

    @pytest.mark.asyncio
    async def test_maps_organic_results(self):
        lookup = SerperRankingLookup(api_key="key")
        data = {"organic": [
            {"position": 1, "link": "https://a.com/", "title": "A"},
            {"title": "no link"},
            {"link": "https://c.com/"},
        ]}
        with patch.object(lookup, "_post", AsyncMock(return_value=data)) as post:
            results = await lookup.search("apostille", country="de", language="de")

        post.assert_awaited_once_with({"q": "apostille", "gl": "de", "hl": "de"})
        assert [(r.position, r.url) for r in results] == [(1, "https://a.com/"), (3, "https://c.com/")]


class TestSearchConsoleMetricsSource:

    @pytest.mark.asyncio
    async def test_missing_token(self):
        source = SearchConsoleMetricsSource(access_token="")
        with pytest.raises(PreconditionFailedError):
            await source.fetch_top_pages(
                "sc-domain:example.com", datetime.date(2024, 1, 1), datetime.date(2024, 1, 31), 10
            )
