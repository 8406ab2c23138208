"""Schemas for generated research output.

``IdeaAnalysis`` is the per-branch extraction shape; ``ComprehensiveAnalysis``
is the fused terminal artifact.  Both are the boundary at which untrusted
generative output is validated, so the validators here coerce the common
near-misses (scalar instead of list, lower-case enum labels) instead of
rejecting them.
"""

from __future__ import annotations

from typing import Any, List, Literal

from pydantic import BaseModel, Field, field_validator

MAX_SOLUTIONS = 5


def _as_list(value: Any) -> Any:
    """Wrap a scalar string in a list; leave everything else to pydantic."""
    if isinstance(value, str):
        return [value]
    return value


def _capitalized(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().capitalize()
    return value


def _lowered(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


# ===================================================================== #
#  Per-branch extraction                                                  #
# ===================================================================== #

class IdeaAnalysis(BaseModel):
    """Structured result of researching one query."""

    title: str = Field(..., description="The title of the identified problem")
    summary: str = Field(
        ...,
        description="Summary of the problem and the solution approach from research",
    )
    solutions: List[str] = Field(
        ...,
        min_length=1,
        description="3-5 potential solutions; a single string is coerced to one element",
    )
    sources: List[str] = Field(
        default_factory=list,
        description="URLs or references used during research",
    )

    @field_validator("solutions", "sources", mode="before")
    @classmethod
    def coerce_scalar_to_list(cls, v: Any) -> Any:
        return _as_list(v)

    @field_validator("solutions")
    @classmethod
    def drop_blank_solutions(cls, v: List[str]) -> List[str]:
        cleaned = [s.strip() for s in v if s and s.strip()]
        if not cleaned:
            raise ValueError("solutions must contain at least one non-empty entry")
        return cleaned[:MAX_SOLUTIONS]


# ===================================================================== #
#  Fused report sections                                                  #
# ===================================================================== #

class AnalysisMetadata(BaseModel):
    input_prompt: str
    generated_at: str
    sources_used: List[str] = Field(default_factory=list)


class SentimentBreakdown(BaseModel):
    positive: float = 0
    neutral: float = 0
    negative: float = 0


class FeedbackTheme(BaseModel):
    name: str
    description: str = ""
    mention_count: int = 0
    example_ids: List[str] = Field(default_factory=list)


class PainPoint(BaseModel):
    summary: str
    occurrence_count: int = 0
    severity: Literal["High", "Medium", "Low"] = "Medium"
    segments_most_affected: List[str] = Field(default_factory=list)

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, v: Any) -> Any:
        return _capitalized(v)


class Delighter(BaseModel):
    summary: str
    why_users_love_this: str = ""
    mention_count: int = 0


class SampleQuote(BaseModel):
    id: str
    segment: str = ""
    quote: str
    sentiment: Literal["positive", "neutral", "negative"] = "neutral"

    @field_validator("sentiment", mode="before")
    @classmethod
    def normalize_sentiment(cls, v: Any) -> Any:
        return _lowered(v)


class SegmentSummary(BaseModel):
    segment: str
    feedback_count: int = 0
    avg_sentiment_score: float = 0.0
    common_themes: List[str] = Field(default_factory=list)


class CustomerFeedback(BaseModel):
    total_feedback_count: int = 0
    sentiment_breakdown: SentimentBreakdown = Field(default_factory=SentimentBreakdown)
    average_sentiment_score: float = Field(0.0, ge=-1.0, le=1.0)
    themes: List[FeedbackTheme] = Field(default_factory=list)
    top_pain_points: List[PainPoint] = Field(default_factory=list)
    top_delighters: List[Delighter] = Field(default_factory=list)
    sample_quotes: List[SampleQuote] = Field(default_factory=list)
    segments_summary: List[SegmentSummary] = Field(default_factory=list)
    source_urls: List[str] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "CustomerFeedback":
        return cls()


class OkrAlignment(BaseModel):
    id: str
    title: str
    primary_okrs: List[str] = Field(default_factory=list)
    alignment: Literal["High", "Medium", "Low", "None"] = "None"
    rationale: str = ""
    alignment_score: float = Field(0.0, ge=0.0, le=1.0)
    okr_progress_percent: float = Field(0.0, ge=0.0, le=100.0)

    @field_validator("alignment", mode="before")
    @classmethod
    def normalize_alignment(cls, v: Any) -> Any:
        return _capitalized(v)

    @field_validator("primary_okrs", mode="before")
    @classmethod
    def coerce_okrs(cls, v: Any) -> Any:
        return _as_list(v)


class NewsTopic(BaseModel):
    topic: str
    mention_count: int = 0
    avg_sentiment_score: float = 0.0
    trend_change_percent: float = 0.0


class NewsSourceSummary(BaseModel):
    source: str
    article_count: int = 0
    avg_sentiment_score: float = 0.0


class IndustryNews(BaseModel):
    article_count: int = 0
    time_window_days: int = 30
    top_topics: List[NewsTopic] = Field(default_factory=list)
    sources_summary: List[NewsSourceSummary] = Field(default_factory=list)
    source_urls: List[str] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "IndustryNews":
        return cls()


class CompetitorActivity(BaseModel):
    competitor_name: str
    activity_summary: str = ""
    strategic_focus: str = ""
    impact_level: Literal["High", "Medium", "Low"] = "Medium"
    recent_launches_count: int = 0
    growth_rate_percent: float = 0.0
    share_of_mentions_percent: float = 0.0
    user_sentiment_score: float = 0.0

    @field_validator("impact_level", mode="before")
    @classmethod
    def normalize_impact(cls, v: Any) -> Any:
        return _capitalized(v)


class CompetitorTrendSummary(BaseModel):
    rising_competitors: List[str] = Field(default_factory=list)
    declining_competitors: List[str] = Field(default_factory=list)


class CompetitorInsights(BaseModel):
    competitor_count: int = 0
    average_market_share_percent: float = 0.0
    competitors: List[CompetitorActivity] = Field(default_factory=list)
    trend_summary: CompetitorTrendSummary = Field(default_factory=CompetitorTrendSummary)
    source_urls: List[str] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "CompetitorInsights":
        return cls()


class ComprehensiveAnalysis(BaseModel):
    """Terminal artifact of the Fusion stage, returned to the caller."""

    metadata: AnalysisMetadata
    customer_feedback: CustomerFeedback
    okr: List[OkrAlignment] = Field(default_factory=list)
    industry_news: IndustryNews
    competitor_insights: CompetitorInsights
