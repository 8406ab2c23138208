"""Research stage tests: source extraction, search-call bound, retrieval failure."""

import os
import sys

# Ensure the backend package is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio
from unittest.mock import AsyncMock, patch

from idea_viability.errors import GenerationError, RetrievalError
from idea_viability.services.research_stage import (
    analyze_idea,
    extract_source_urls,
    find_urls_in_text,
)
from idea_viability.services.web_search import SearchHit, parse_search_results

_SEARCH = "idea_viability.services.research_stage.search_web"
_SUMMARY = "idea_viability.services.research_stage.call_openai_chat_async"
_EXTRACT = "idea_viability.services.extraction_stage.call_openai_chat_async"

_EXTRACTED = {
    "title": "Support chatbots",
    "summary": "Users want faster answers.",
    "solutions": ["Triage with an LLM", "Hand off to humans"],
    "sources": ["https://a.io/1"],
}


def _hits(*urls):
    return [SearchHit(url=u, title=u, snippet="snippet") for u in urls]


# ---------------------------------------------------------------------------
# Source extraction
# ---------------------------------------------------------------------------

def test_urls_in_text_strip_trailing_punctuation():
    text = "See https://a.io/x, and (https://b.io/y). Also <https://c.io/z>]"
    assert find_urls_in_text(text) == ["https://a.io/x", "https://b.io/y", "https://c.io/z"]


def test_extract_source_urls_union_first_occurrence_wins():
    structured = [{"url": "https://a.io"}, {"url": "https://b.io"}, {"title": "no url"}]
    text = "Found at https://b.io and https://c.io."
    assert extract_source_urls(structured, text) == ["https://a.io", "https://b.io", "https://c.io"]


def test_extract_source_urls_from_json_tool_payload():
    payload = '{"results": [{"url": "https://a.io"}, {"url": "https://a.io"}]}'
    assert extract_source_urls(payload, "") == ["https://a.io"]


def test_extract_source_urls_accepts_search_hits():
    assert extract_source_urls(_hits("https://a.io"), "no links here") == ["https://a.io"]


def test_parse_search_results_skips_entries_without_url():
    hits = parse_search_results(
        {"results": [{"url": "https://a.io", "title": "A", "content": "body"}, {"title": "B"}]}
    )
    assert hits == [SearchHit(url="https://a.io", title="A", snippet="body")]


# ---------------------------------------------------------------------------
# analyze_idea
# ---------------------------------------------------------------------------

def test_analyze_idea_single_search():
    search = AsyncMock(return_value=_hits("https://a.io/1", "https://a.io/2"))
    summary = {"summary": "Findings, see https://z.io/extra.", "needs_more_research": False}
    with patch(_SEARCH, search), \
         patch(_SUMMARY, AsyncMock(return_value=summary)), \
         patch(_EXTRACT, AsyncMock(return_value=_EXTRACTED)):
        outcome = asyncio.run(analyze_idea("support chatbots"))

    assert search.await_count == 1
    assert outcome.retrieval_error is None
    assert outcome.sources == ["https://a.io/1", "https://a.io/2", "https://z.io/extra"]
    assert outcome.analysis.title == "Support chatbots"


def test_analyze_idea_never_exceeds_two_searches():
    search = AsyncMock(side_effect=[_hits("https://a.io"), _hits("https://b.io"), _hits("https://c.io")])
    summary = {"summary": "Thin results", "needs_more_research": True, "follow_up_query": "more"}
    with patch(_SEARCH, search), \
         patch(_SUMMARY, AsyncMock(return_value=summary)), \
         patch(_EXTRACT, AsyncMock(return_value=_EXTRACTED)):
        outcome = asyncio.run(analyze_idea("support chatbots"))

    assert search.await_count == 2
    assert outcome.search_calls == 2
    assert outcome.sources == ["https://a.io", "https://b.io"]
    assert "Supplementary findings" in outcome.text


def test_analyze_idea_summary_failure_uses_snippets():
    with patch(_SEARCH, AsyncMock(return_value=_hits("https://a.io"))), \
         patch(_SUMMARY, AsyncMock(side_effect=GenerationError("down"))), \
         patch(_EXTRACT, AsyncMock(return_value=_EXTRACTED)):
        outcome = asyncio.run(analyze_idea("support chatbots"))

    assert "URL: https://a.io" in outcome.text
    assert outcome.retrieval_error is None


def test_analyze_idea_recovers_from_retrieval_error():
    extract = AsyncMock(return_value=_EXTRACTED)
    with patch(_SEARCH, AsyncMock(side_effect=RetrievalError("Tavily HTTP 401"))), \
         patch(_EXTRACT, extract):
        outcome = asyncio.run(analyze_idea("support chatbots"))

    assert outcome.sources == []
    assert outcome.retrieval_error == "Tavily HTTP 401"
    assert "unavailable" in outcome.text
    assert outcome.analysis.title.startswith("Problem Analysis:")
    extract.assert_not_awaited()
