"""Centralized constants shared across the research pipeline and scoring.

This module is the SINGLE SOURCE OF TRUTH for scoring weights, insight
limits and fetch limits. Reused by:
  - Scoring Engine
  - Research / Fusion stages
  - Task Dispatcher
"""

from __future__ import annotations

# ── Source Weights ──────────────────────────────────────────────────────
# Weighted sum of the three component signals of an insight.
# Intended to sum to 1.0; config.validate_config() warns when they don't.

SOURCE_WEIGHTS: dict[str, float] = {
    "reddit": 0.40,
    "competitors": 0.35,
    "industry_trends": 0.25,
}

# ── Intensity Mapping ───────────────────────────────────────────────────
INTENSITY_WEIGHTS: dict[str, float] = {
    "low": 0.3,
    "medium": 0.6,
    "high": 1.0,
}

# ── Trend stance → component value ──────────────────────────────────────
TREND_STANCE_VALUES: dict[str, float] = {
    "supportive": 1.0,
    "neutral": 0.5,
    "risky": 0.0,
}
NEUTRAL_TREND_VALUE: float = 0.5

# ── Insight Generation ──────────────────────────────────────────────────
INSIGHT_CONFIG: dict[str, float] = {
    "min_insights": 3,
    "max_insights": 7,
    "min_score_threshold": 0.15,  # insights below this may be filtered out
    "top_insights_for_viability": 5,
}

# Risk penalties applied inside the top-N slice
HIGH_RISK_PENALTY: float = 0.15
MEDIUM_RISK_PENALTY: float = 0.05

# Used when all three components are zero (sums to exactly 1.00)
FALLBACK_CONTRIBUTIONS: dict[str, float] = {
    "reddit": 0.33,
    "competitors": 0.33,
    "industry_trends": 0.34,
}

# ── Data Fetching Limits ────────────────────────────────────────────────
FETCH_LIMITS: dict[str, int] = {
    "search_results_per_call": 3,
    "max_search_calls": 2,
    "okr_chunk_size": 1500,
    "okr_chunk_overlap": 300,
    "okr_top_chunks": 3,
    "okr_full_text_max_chunks": 5,
}

# ── Branches ────────────────────────────────────────────────────────────
# Human-readable section labels used in prompts and placeholder text.
SECTION_LABELS: dict[str, str] = {
    "feedback": "Customer feedback",
    "news": "Industry news",
    "competitors": "Competitor insights",
    "okr": "OKR",
}

# Query templates for each research branch
BRANCH_QUERIES: dict[str, str] = {
    "feedback": "Find customer feedback, reviews, and user opinions about: {prompt}",
    "news": "Find recent industry news and trends related to: {prompt}",
    "competitors": "Find information about competitors and what they are doing related to: {prompt}",
    "okr": 'How does "{prompt}" align with our current objectives and key results?',
}

# Name recorded in metadata.sources_used when a branch succeeds
BRANCH_SOURCE_NAMES: dict[str, str] = {
    "feedback": "search_agent_feedback",
    "news": "search_agent_news",
    "competitors": "search_agent_competitors",
    "okr": "okr_agent",
}

DEFAULT_BRANCH_TIMEOUT_SECONDS: float = 60.0

# ── Extraction fallback ─────────────────────────────────────────────────
FALLBACK_SOLUTIONS: list[str] = [
    "Review the research findings in the summary",
    "Break down the problem into smaller components",
    "Consult with domain experts for guidance",
]
FALLBACK_SOURCE: str = "General knowledge base"
