"""Fusion Stage: combine the four branch results into one report.

Runs once per pipeline, after every branch has reported (ok or failed).

STRICT RULES:
  - Exactly one generation call against the full ComprehensiveAnalysis shape
  - metadata is never trusted from the model: prompt, timestamp and
    sources_used are written here
  - A failed branch contributes "<section> analysis unavailable" to the
    prompt and its section is reset to the empty placeholder afterwards
  - Any failure raises FusionError; there is no fallback document
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Sequence

from pydantic import ValidationError

from ..constants import BRANCH_SOURCE_NAMES, SECTION_LABELS
from ..errors import ConfigurationError, FusionError, GenerationError
from ..schemas.analysis_schema import (
    AnalysisMetadata,
    CompetitorInsights,
    ComprehensiveAnalysis,
    CustomerFeedback,
    IndustryNews,
)
from ..schemas.pipeline_schema import AnalysisRequest, SourceId, SourceResult
from ..schemas.result_schema import Result
from ..timing import async_timer
from .openai_client import call_openai_chat_async

logger = logging.getLogger(__name__)

# Branch → field of ComprehensiveAnalysis, with its empty placeholder
_SECTION_FIELDS: Dict[SourceId, str] = {
    SourceId.FEEDBACK: "customer_feedback",
    SourceId.NEWS: "industry_news",
    SourceId.COMPETITORS: "competitor_insights",
    SourceId.OKR: "okr",
}

_EMPTY_SECTIONS = {
    SourceId.FEEDBACK: CustomerFeedback.empty,
    SourceId.NEWS: IndustryNews.empty,
    SourceId.COMPETITORS: CompetitorInsights.empty,
    SourceId.OKR: list,
}

_PROMPT_ORDER = (SourceId.OKR, SourceId.FEEDBACK, SourceId.NEWS, SourceId.COMPETITORS)

_HEADINGS = {
    SourceId.OKR: "OKR ANALYSIS",
    SourceId.FEEDBACK: "CUSTOMER FEEDBACK RESEARCH",
    SourceId.NEWS: "INDUSTRY NEWS RESEARCH",
    SourceId.COMPETITORS: "COMPETITOR INSIGHTS RESEARCH",
}

_SYSTEM_PROMPT = "You are a data analyst structuring research data into a comprehensive JSON report for visualization. Respond with ONLY a valid JSON object."


def unavailable_text(source_id: SourceId) -> str:
    return f"{SECTION_LABELS[source_id.value]} analysis unavailable"


def _render_branch(branch: SourceResult) -> str:
    if not branch.ok:
        return unavailable_text(branch.source_id)
    if branch.analysis is not None:
        a = branch.analysis
        return (
            f"Title: {a.title}\n"
            f"Summary: {a.summary}\n"
            f"Solutions: {', '.join(a.solutions)}\n"
            f"Sources: {', '.join(branch.sources or a.sources)}"
        )
    return branch.text or "No data available"


def sources_used_for(branches: Sequence[SourceResult]) -> List[str]:
    """Agent names of the branches that succeeded, in branch order."""
    return [BRANCH_SOURCE_NAMES[b.source_id.value] for b in branches if b.ok]


def build_fusion_prompt(
    request: AnalysisRequest,
    branches: Sequence[SourceResult],
    sources_used: Sequence[str],
) -> str:
    """Render every branch (or its unavailability) plus the target schema."""
    by_id = {b.source_id: b for b in branches}
    blocks = []
    for source_id in _PROMPT_ORDER:
        branch = by_id.get(source_id)
        body = _render_branch(branch) if branch else unavailable_text(source_id)
        blocks.append(f"=== {_HEADINGS[source_id]} ===\n{body}")

    schema = json.dumps(ComprehensiveAnalysis.model_json_schema())
    return f"""ORIGINAL PROMPT: {request.prompt}

DATA COLLECTED:

{chr(10).join(blocks)}

INSTRUCTIONS:
Create a JSON object that follows this JSON schema exactly:
{schema}

1. metadata: use timestamp "{request.requested_at.isoformat()}" and sources {json.dumps(list(sources_used))}
2. customer_feedback: sentiment breakdown, themes, pain points, delighters, sample quotes, segment summaries
3. okr: one entry per relevant objective, alignment High/Medium/Low/None with rationale and a 0.0-1.0 score
4. industry_news: article counts, top topics, sentiment and trends, source summaries
5. competitor_insights: competitors, their activity and strategic focus, impact level, market estimates

RULES:
- Numerical fields must be numbers, not strings
- Sentiment scores are between -1.0 and 1.0; percentages are 0-100
- When a section's data is unavailable, return zero counts and empty arrays for it
- Each section's source_urls MUST list the http(s) URLs from that section's "Sources:" line"""


def _empty_section_value(source_id: SourceId) -> Any:
    placeholder = _EMPTY_SECTIONS[source_id]()
    return placeholder if isinstance(placeholder, list) else placeholder.model_dump()


def coerce_comprehensive_analysis(
    raw: Any,
    metadata: AnalysisMetadata,
    failed: Sequence[SourceId] = (),
) -> Result[ComprehensiveAnalysis]:
    """Validate generator output with deterministic metadata written in.

    Sections of *failed* branches are replaced by their empty placeholder
    before validation, so whatever the model put there cannot reject the
    document.
    """
    if not isinstance(raw, dict):
        return Result.failure(GenerationError(f"Expected a JSON object, got {type(raw).__name__}"))
    candidate = dict(raw)
    candidate["metadata"] = metadata.model_dump()
    for source_id in failed:
        candidate[_SECTION_FIELDS[source_id]] = _empty_section_value(source_id)
    try:
        return Result.success(ComprehensiveAnalysis.model_validate(candidate))
    except ValidationError as exc:
        return Result.failure(
            GenerationError(
                "Fusion output does not match ComprehensiveAnalysis",
                context={"errors": exc.errors(include_url=False, include_context=False)},
            )
        )


def _web_urls(sources: Sequence[str]) -> List[str]:
    return [s for s in sources if s.startswith(("http://", "https://"))]


def apply_branch_outcomes(
    analysis: ComprehensiveAnalysis,
    branches: Sequence[SourceResult],
) -> ComprehensiveAnalysis:
    """Reset sections of failed branches and fill missing source URLs."""
    updates: Dict[str, Any] = {}
    for branch in branches:
        field = _SECTION_FIELDS[branch.source_id]
        if not branch.ok:
            updates[field] = _EMPTY_SECTIONS[branch.source_id]()
            continue
        if branch.source_id == SourceId.OKR:
            continue
        section = getattr(analysis, field)
        if not section.source_urls:
            urls = _web_urls(branch.sources)
            if urls:
                updates[field] = section.model_copy(update={"source_urls": urls})
    return analysis.model_copy(update=updates) if updates else analysis


async def fuse_results(
    request: AnalysisRequest,
    branches: Sequence[SourceResult],
) -> ComprehensiveAnalysis:
    """Combine all branch results into one ComprehensiveAnalysis.

    Raises
    ------
    FusionError
        The generation call failed or its output could not be validated.
    """
    sources_used = sources_used_for(branches)
    metadata = AnalysisMetadata(
        input_prompt=request.prompt,
        generated_at=request.requested_at.isoformat(),
        sources_used=sources_used,
    )
    messages = [
        {"role": "system", "content": _SYSTEM_PROMPT},
        {"role": "user", "content": build_fusion_prompt(request, branches, sources_used)},
    ]

    async with async_timer("fusion", "fuse_results"):
        try:
            raw = await call_openai_chat_async(messages=messages, json_mode=True)
        except (GenerationError, ConfigurationError) as exc:
            print(f"❌ [FUSION] Generation failed: {exc}")
            raise FusionError(f"Fusion generation failed: {exc}", context={"cause": exc.code}) from exc

    failed = [b.source_id for b in branches if not b.ok]
    result = coerce_comprehensive_analysis(raw, metadata, failed)
    if not result.ok:
        print(f"❌ [FUSION] Output rejected: {result.error}")
        raise FusionError(
            "Fusion output could not be validated",
            context=result.error.context,
        ) from result.error

    analysis = apply_branch_outcomes(result.unwrap(), branches)
    logger.info("Fused report for %r from %s", request.prompt[:60], sources_used)
    print(f"✅ [FUSION] Report ready ({len(sources_used)}/{len(branches)} branches)")
    return analysis
