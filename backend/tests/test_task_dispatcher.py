"""Task dispatcher tests: state machine, branch isolation, notification events.

Collaborators are injected or the external capabilities are patched; no
network access.
"""

import os
import sys

# Ensure the backend package is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from idea_viability.errors import ConfigurationError, FusionError, RetrievalError
from idea_viability.schemas.analysis_schema import (
    AnalysisMetadata,
    CompetitorInsights,
    ComprehensiveAnalysis,
    CustomerFeedback,
    IdeaAnalysis,
    IndustryNews,
)
from idea_viability.schemas.notification_schema import notification_event_adapter
from idea_viability.schemas.pipeline_schema import (
    AnalysisRequest,
    BranchStatus,
    PipelineState,
    SourceId,
)
from idea_viability.services.okr_agent import ReferenceDocumentCache
from idea_viability.services.research_stage import ResearchOutcome
from idea_viability.services.task_dispatcher import (
    TaskDispatcher,
    build_failure_event,
    build_notification_event,
)
from idea_viability.services.web_search import SearchHit


@pytest.fixture(autouse=True)
def credentials(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-openai")
    monkeypatch.setenv("TAVILY_API_KEY", "test-tavily")


def _outcome(query, error=None):
    analysis = IdeaAnalysis(title="t", summary="s", solutions=["a"], sources=["https://a.io"])
    return ResearchOutcome(
        query=query,
        text="research text",
        sources=[] if error else ["https://a.io"],
        analysis=analysis,
        retrieval_error=error,
    )


async def _research_ok(query):
    return _outcome(query)


async def _okr_ok(question, cache):
    return "OKR answer"


async def _fusion_echo(request, branches):
    return ComprehensiveAnalysis(
        metadata=AnalysisMetadata(input_prompt=request.prompt, generated_at="now"),
        customer_feedback=CustomerFeedback.empty(),
        industry_news=IndustryNews.empty(),
        competitor_insights=CompetitorInsights(competitor_count=3, source_urls=["https://rival.io"]),
    )


def _dispatcher(**overrides):
    kwargs = dict(
        research=_research_ok,
        okr=_okr_ok,
        fusion=_fusion_echo,
        cache=ReferenceDocumentCache(loader=lambda: "Objective"),
        branch_timeout=1.0,
    )
    kwargs.update(overrides)
    return TaskDispatcher(**kwargs)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

def test_all_branches_ok_completes():
    dispatcher = _dispatcher()
    report = asyncio.run(dispatcher.run("AI support chatbot"))

    assert report.state == PipelineState.COMPLETED
    assert report.failed_branches == []
    assert [b.source_id for b in report.branches] == [
        SourceId.FEEDBACK, SourceId.NEWS, SourceId.COMPETITORS, SourceId.OKR,
    ]
    assert dispatcher.last_run.transitions == [
        PipelineState.PENDING,
        PipelineState.DISPATCHING,
        PipelineState.AWAITING_BRANCHES,
        PipelineState.FUSING,
        PipelineState.COMPLETED,
    ]


def test_branch_queries_embed_prompt():
    seen = []

    async def research(query):
        seen.append(query)
        return _outcome(query)

    asyncio.run(_dispatcher(research=research).run("meal kits"))
    assert len(seen) == 3
    assert all("meal kits" in q for q in seen)


def test_retrieval_failure_degrades_branch():
    async def research(query):
        if "industry news" in query:
            return _outcome(query, error="Tavily HTTP 503")
        return _outcome(query)

    report = asyncio.run(_dispatcher(research=research).run("AI support chatbot"))

    assert report.state == PipelineState.DEGRADED_COMPLETED
    assert report.degraded
    assert report.failed_branches == [SourceId.NEWS]
    news = next(b for b in report.branches if b.source_id == SourceId.NEWS)
    assert news.status == BranchStatus.FAILED
    assert news.error == "Tavily HTTP 503"


def test_timeout_becomes_failed_branch():
    async def research(query):
        if "competitors" in query:
            await asyncio.sleep(5)
        return _outcome(query)

    report = asyncio.run(_dispatcher(research=research, branch_timeout=0.05).run("AI support chatbot"))

    assert report.failed_branches == [SourceId.COMPETITORS]
    competitors = next(b for b in report.branches if b.source_id == SourceId.COMPETITORS)
    assert competitors.error == "timeout after 0.05s"


def test_raising_branch_does_not_cancel_siblings():
    async def okr(question, cache):
        raise ConfigurationError("OKR_DOCUMENT_PATH environment variable not set")

    report = asyncio.run(_dispatcher(okr=okr).run("AI support chatbot"))

    assert report.state == PipelineState.DEGRADED_COMPLETED
    assert report.failed_branches == [SourceId.OKR]
    assert sum(1 for b in report.branches if b.ok) == 3


def test_missing_credentials_fail_before_dispatch(monkeypatch):
    monkeypatch.delenv("TAVILY_API_KEY")
    research = AsyncMock(side_effect=_research_ok)
    dispatcher = _dispatcher(research=research)

    with pytest.raises(ConfigurationError) as exc_info:
        asyncio.run(dispatcher.run("AI support chatbot"))

    assert exc_info.value.missing_keys == ["TAVILY_API_KEY"]
    research.assert_not_called()
    assert dispatcher.last_run.state == PipelineState.PENDING


def test_fusion_failure_ends_in_failed_state():
    async def fusion(request, branches):
        raise FusionError("fusion generation failed")

    dispatcher = _dispatcher(fusion=fusion)
    with pytest.raises(FusionError):
        asyncio.run(dispatcher.run("AI support chatbot"))

    assert dispatcher.last_run.state == PipelineState.FAILED
    assert dispatcher.last_run.transitions[-2:] == [PipelineState.FUSING, PipelineState.FAILED]


def test_unexpected_fusion_exception_surfaces_as_fusion_error():
    async def fusion(request, branches):
        raise KeyError("choices")

    dispatcher = _dispatcher(fusion=fusion)
    with pytest.raises(FusionError) as exc_info:
        asyncio.run(dispatcher.run("AI support chatbot"))

    assert isinstance(exc_info.value.__cause__, KeyError)
    assert exc_info.value.context["cause"] == "KeyError"
    assert dispatcher.last_run.state == PipelineState.FAILED
    assert dispatcher.last_run.transitions[-2:] == [PipelineState.FUSING, PipelineState.FAILED]


# ---------------------------------------------------------------------------
# End to end with real stages, capabilities patched
# ---------------------------------------------------------------------------

def test_news_search_failure_still_produces_full_report():
    async def search(query, max_results=3):
        if "industry news" in query:
            raise RetrievalError("Tavily HTTP 500")
        return [SearchHit(url="https://reviews.io/1", title="Reviews", snippet="users like it")]

    extracted = {"title": "t", "summary": "s", "solutions": "Build it", "sources": []}
    fused = {
        "metadata": {},
        "customer_feedback": {"total_feedback_count": 4},
        "okr": [],
        "industry_news": {"article_count": 9, "top_topics": [{"topic": "made up"}]},
        "competitor_insights": {"competitor_count": 1},
    }
    cache = ReferenceDocumentCache(loader=lambda: "Objective: support automation")

    with patch("idea_viability.services.research_stage.search_web", side_effect=search), \
         patch("idea_viability.services.research_stage.call_openai_chat_async",
               AsyncMock(return_value={"summary": "Summary", "needs_more_research": False})), \
         patch("idea_viability.services.extraction_stage.call_openai_chat_async",
               AsyncMock(return_value=extracted)), \
         patch("idea_viability.services.okr_agent.call_openai_chat_async",
               AsyncMock(return_value="Aligned with O1")), \
         patch("idea_viability.services.fusion_stage.call_openai_chat_async",
               AsyncMock(return_value=fused)):
        report = asyncio.run(TaskDispatcher(cache=cache, branch_timeout=5).run("AI support chatbot"))

    assert report.state == PipelineState.DEGRADED_COMPLETED
    assert report.failed_branches == [SourceId.NEWS]
    assert report.analysis.industry_news == IndustryNews.empty()
    assert report.analysis.customer_feedback.total_feedback_count == 4
    assert report.analysis.customer_feedback.source_urls == ["https://reviews.io/1"]
    assert "search_agent_news" not in report.analysis.metadata.sources_used
    feedback = report.branches[0]
    assert feedback.analysis.solutions == ["Build it"]


# ---------------------------------------------------------------------------
# Notification events
# ---------------------------------------------------------------------------

def test_completed_event():
    report = asyncio.run(_dispatcher().run("AI support chatbot"))
    event = build_notification_event(report)

    assert event.kind == "analysis_completed"
    assert event.competitor_count == 3
    assert event.source_urls == ["https://rival.io"]


def test_degraded_event_lists_failed_branches():
    async def research(query):
        return _outcome(query, error="down") if "customer feedback" in query else _outcome(query)

    report = asyncio.run(_dispatcher(research=research).run("AI support chatbot"))
    event = build_notification_event(report)

    assert event.kind == "analysis_degraded"
    assert event.failed_branches == [SourceId.FEEDBACK]


def test_failure_event_round_trips_through_union():
    event = build_failure_event(AnalysisRequest(prompt="idea"), FusionError("lost"))
    parsed = notification_event_adapter.validate_python(event.model_dump())

    assert parsed.kind == "analysis_failed"
    assert parsed.error_code == "FUSION_ERROR"
    assert parsed.error_message == "lost"
