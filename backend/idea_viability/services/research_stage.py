"""
Research Stage (web search → structured IdeaAnalysis)

Structure:
START -> research_problem -> analyze_and_structure -> END

research_problem
    At most FETCH_LIMITS["max_search_calls"] web searches: one well-formed
    query up front, and one supplementary query only when the summarising
    generation step asks for it.  Sources are the de-duplicated union of the
    structured search results and any URLs found in the summary text.

analyze_and_structure
    Hands the research text + sources to the Extraction stage.

A failed first search is recovered here: the outcome carries empty sources,
placeholder text and ``retrieval_error`` so the dispatcher can mark the
branch as failed.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, List, Optional, TypedDict

from langgraph.graph import END, START, StateGraph
from pydantic import BaseModel, Field

from ..constants import FETCH_LIMITS
from ..errors import ConfigurationError, GenerationError, RetrievalError
from ..schemas.analysis_schema import IdeaAnalysis
from ..schemas.pipeline_schema import dedupe_preserving_order
from ..timing import async_timer
from .extraction_stage import extract_idea_analysis, fallback_idea_analysis
from .openai_client import call_openai_chat_async
from .web_search import SearchHit, search_web

logger = logging.getLogger(__name__)

_URL_PATTERN = re.compile(r"https?://[^\s)>\]]+", re.IGNORECASE)
_TRAILING_PUNCTUATION = ",.;:!?)]}>'\""

_SUMMARY_SYSTEM_PROMPT = """You are an expert problem analyzer and researcher.
You receive web search results for a research question.

Summarize the key findings and include ALL relevant URLs from the results in your summary.
If the results are clearly insufficient to answer the question, you may request ONE
supplementary search by setting "needs_more_research" to true and giving a focused
"follow_up_query".

You MUST respond with ONLY a valid JSON object:
{"summary": "<string>", "needs_more_research": <true|false>, "follow_up_query": "<string or empty>"}"""


class ResearchState(TypedDict, total=False):
    user_query: str
    research_data: str
    sources: List[str]
    search_calls: int
    retrieval_error: Optional[str]
    analysis: Optional[IdeaAnalysis]


class ResearchOutcome(BaseModel):
    """Text, sources and structured analysis produced for one query."""

    query: str
    text: str = ""
    sources: List[str] = Field(default_factory=list)
    analysis: IdeaAnalysis
    search_calls: int = 0
    retrieval_error: Optional[str] = None


# ===================================================================== #
#  Source extraction                                                      #
# ===================================================================== #

def _structured_urls(structured_results: Any) -> List[str]:
    """URL fields of search results given as hits, dicts, or a JSON string."""
    if isinstance(structured_results, str):
        try:
            structured_results = json.loads(structured_results)
        except json.JSONDecodeError:
            return []
    if isinstance(structured_results, dict):
        structured_results = structured_results.get("results", [])
    if not isinstance(structured_results, list):
        return []

    urls: List[str] = []
    for item in structured_results:
        if isinstance(item, SearchHit):
            urls.append(item.url)
        elif isinstance(item, dict) and isinstance(item.get("url"), str):
            urls.append(item["url"].strip())
    return urls


def find_urls_in_text(text: str) -> List[str]:
    """URL-shaped substrings of *text* with trailing punctuation stripped."""
    urls = []
    for match in _URL_PATTERN.findall(text or ""):
        cleaned = match.rstrip(_TRAILING_PUNCTUATION)
        if len(cleaned) > len("https://"):
            urls.append(cleaned)
    return urls


def extract_source_urls(structured_results: Any, text: str) -> List[str]:
    """Union of structured-result URLs and URLs in free text; first occurrence wins."""
    return dedupe_preserving_order(_structured_urls(structured_results) + find_urls_in_text(text))


def format_search_hits(hits: Iterable[SearchHit]) -> str:
    """Plain-text rendering of hits, used in prompts and as a summary fallback."""
    blocks = []
    for index, hit in enumerate(hits, start=1):
        title = hit.title or hit.url
        blocks.append(f"[{index}] {title}\nURL: {hit.url}\n{hit.snippet}".strip())
    return "\n\n".join(blocks)


# ===================================================================== #
#  Graph nodes                                                            #
# ===================================================================== #

async def _summarize_hits(query: str, hits: List[SearchHit]) -> tuple[str, Optional[str]]:
    """Return (summary, follow_up_query or None)."""
    hits_text = format_search_hits(hits) or "No results were returned."
    messages = [
        {"role": "system", "content": _SUMMARY_SYSTEM_PROMPT},
        {"role": "user", "content": f"Research question: {query}\n\nSearch results:\n{hits_text}"},
    ]
    try:
        raw = await call_openai_chat_async(messages=messages, json_mode=True, max_completion_tokens=1500)
    except (GenerationError, ConfigurationError) as exc:
        logger.warning("Research summary failed for %r: %s", query, exc)
        return hits_text, None

    summary = raw.get("summary") if isinstance(raw, dict) else None
    if not isinstance(summary, str) or not summary.strip():
        summary = hits_text

    follow_up = None
    if isinstance(raw, dict) and raw.get("needs_more_research") is True:
        candidate = raw.get("follow_up_query")
        if isinstance(candidate, str) and candidate.strip():
            follow_up = candidate.strip()
    return summary, follow_up


async def research_problem(state: ResearchState) -> dict:
    query = state["user_query"]
    max_calls = FETCH_LIMITS["max_search_calls"]
    per_call = FETCH_LIMITS["search_results_per_call"]
    print(f"🔍 [RESEARCH] Starting research for {query[:80]!r}")

    try:
        hits = await search_web(query, per_call)
    except (RetrievalError, ConfigurationError) as exc:
        print(f"❌ [RESEARCH] Search failed for {query[:60]!r}: {exc}")
        logger.warning("Web search failed for %r: %s", query, exc)
        return {
            "research_data": f"Web research unavailable for: {query}",
            "sources": [],
            "search_calls": 1,
            "retrieval_error": str(exc),
        }

    calls = 1
    summary, follow_up = await _summarize_hits(query, hits)

    if follow_up and calls < max_calls:
        calls += 1
        print(f"🔍 [RESEARCH] Supplementary search: {follow_up!r}")
        try:
            extra = await search_web(follow_up, per_call)
        except (RetrievalError, ConfigurationError) as exc:
            logger.warning("Supplementary search failed for %r: %s", follow_up, exc)
            extra = []
        if extra:
            hits = hits + extra
            summary = f"{summary}\n\nSupplementary findings:\n{format_search_hits(extra)}"

    sources = extract_source_urls(hits, summary)
    print(f"✅ [RESEARCH] {calls} search call(s), {len(sources)} sources")
    return {
        "research_data": summary,
        "sources": sources,
        "search_calls": calls,
        "retrieval_error": None,
    }


async def analyze_and_structure(state: ResearchState) -> dict:
    query = state["user_query"]
    if state.get("retrieval_error"):
        return {"analysis": fallback_idea_analysis(query, state.get("research_data", ""), state.get("sources"))}
    analysis = await extract_idea_analysis(query, state.get("research_data", ""), state.get("sources"))
    return {"analysis": analysis}


def create_research_graph() -> StateGraph:
    """Two-step research workflow: search/summarise, then structure."""
    graph = StateGraph(ResearchState)

    graph.add_node("research_problem", research_problem)
    graph.add_node("analyze_and_structure", analyze_and_structure)

    graph.add_edge(START, "research_problem")
    graph.add_edge("research_problem", "analyze_and_structure")
    graph.add_edge("analyze_and_structure", END)

    return graph


research_graph = create_research_graph().compile()


async def analyze_idea(query: str) -> ResearchOutcome:
    """Research *query* on the web and return text, sources and an IdeaAnalysis."""
    async with async_timer("research", f"analyze_idea {query[:40]!r}"):
        state = await research_graph.ainvoke({"user_query": query, "sources": [], "search_calls": 0})

    analysis = state.get("analysis") or fallback_idea_analysis(query, state.get("research_data", ""))
    return ResearchOutcome(
        query=query,
        text=state.get("research_data", ""),
        sources=state.get("sources", []),
        analysis=analysis,
        search_calls=state.get("search_calls", 0),
        retrieval_error=state.get("retrieval_error"),
    )
