"""Structured extraction of research text into an ``IdeaAnalysis``.

Sends the research context plus the target shape to the text-generation
capability exactly once, then validates-or-coerces the answer.

STRICT RULES:
  - No internal retry (retries belong to the capability)
  - A scalar ``solutions`` value becomes a one-element list, never dropped
  - Callers never see an exception: any failure yields the deterministic
    fallback built from the query, the context and the known sources
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from ..constants import FALLBACK_SOLUTIONS, FALLBACK_SOURCE
from ..errors import ConfigurationError, GenerationError
from ..schemas.analysis_schema import IdeaAnalysis
from ..schemas.pipeline_schema import dedupe_preserving_order
from ..schemas.result_schema import Result
from .openai_client import call_openai_chat_async

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """You are an expert at analyzing problems and providing structured solutions.

Based on the research data provided, create an analysis with:
1. A clear, concise title that captures the essence of the problem
2. A summary covering the core problem, key insights from the research, and the overall solution approach
3. An array of 3-5 specific, actionable solutions
4. An array of the sources used (you will receive them)

You MUST respond with ONLY a valid JSON object:
{"title": "<string>", "summary": "<string>", "solutions": ["<string>", ...], "sources": ["<url>", ...]}"""

_NO_CONTEXT_SUMMARY = "Unable to complete analysis. Please try again."


def _build_user_prompt(query: str, context: str, sources: Sequence[str]) -> str:
    source_line = ", ".join(sources) if sources else FALLBACK_SOURCE
    return f"""Original User Query: {query}

Research Findings:
{context}

Sources Found: {source_line}

Provide the structured analysis. Use the sources found above for the sources field."""


def fallback_idea_analysis(
    query: str,
    context: str = "",
    sources: Optional[Sequence[str]] = None,
) -> IdeaAnalysis:
    """Deterministic stand-in used whenever extraction fails."""
    return IdeaAnalysis(
        title=f"Problem Analysis: {query[:50]}",
        summary=context.strip() or _NO_CONTEXT_SUMMARY,
        solutions=list(FALLBACK_SOLUTIONS),
        sources=list(sources) if sources else [FALLBACK_SOURCE],
    )


def coerce_idea_analysis(raw: Any) -> Result[IdeaAnalysis]:
    """Validate-or-coerce raw generator output into an IdeaAnalysis."""
    if isinstance(raw, IdeaAnalysis):
        return Result.success(raw)
    if not isinstance(raw, dict):
        return Result.failure(
            GenerationError(f"Expected a JSON object, got {type(raw).__name__}")
        )
    try:
        return Result.success(IdeaAnalysis.model_validate(raw))
    except ValidationError as exc:
        return Result.failure(
            GenerationError(
                "Extraction output does not match IdeaAnalysis",
                context={"errors": exc.errors(include_url=False, include_context=False)},
            )
        )


async def extract_idea_analysis(
    query: str,
    context: str,
    sources: Optional[Sequence[str]] = None,
) -> IdeaAnalysis:
    """Turn research text into an IdeaAnalysis; never raises on generation trouble."""
    known_sources = dedupe_preserving_order(list(sources or []))
    print(f"🧠 [EXTRACT] Structuring research for {query[:60]!r}")

    messages = [
        {"role": "system", "content": _SYSTEM_PROMPT},
        {"role": "user", "content": _build_user_prompt(query, context, known_sources)},
    ]

    try:
        raw = await call_openai_chat_async(messages=messages, json_mode=True, max_completion_tokens=1500)
    except (GenerationError, ConfigurationError) as exc:
        print(f"⚠️  [EXTRACT] Generation failed: using fallback: {exc}")
        logger.warning("Extraction generation failed for %r: %s", query, exc)
        return fallback_idea_analysis(query, context, known_sources)

    result = coerce_idea_analysis(raw)
    if not result.ok:
        print(f"⚠️  [EXTRACT] Non-conforming output: using fallback: {result.error}")
        logger.warning("Extraction output rejected for %r: %s", query, result.error)
        return fallback_idea_analysis(query, context, known_sources)

    analysis = result.unwrap()
    if not analysis.sources:
        analysis = analysis.model_copy(update={"sources": known_sources or [FALLBACK_SOURCE]})

    print(f"✅ [EXTRACT] {len(analysis.solutions)} solutions, {len(analysis.sources)} sources")
    return analysis
