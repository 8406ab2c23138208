from typing import Literal, Optional

from pydantic import BaseModel, Field

Intensity = Literal["low", "medium", "high"]
TrendStance = Literal["supportive", "neutral", "risky"]
RiskLevel = Literal["low", "medium", "high"]


class ComponentScores(BaseModel):
    """The three component signals behind an insight score, each 0-1."""

    reddit_component: float = Field(..., ge=0.0, le=1.0)
    competitor_component: float = Field(..., ge=0.0, le=1.0)
    trend_component: float = Field(..., ge=0.0, le=1.0)


class SourceContributions(BaseModel):
    """Normalised share of an insight's score attributable to each source."""

    reddit: float = Field(..., ge=0.0, le=1.0)
    competitors: float = Field(..., ge=0.0, le=1.0)
    industry_trends: float = Field(..., ge=0.0, le=1.0)


class InsightMetrics(BaseModel):
    mentions_total: int = Field(0, ge=0)
    num_competitors_addressing: int = Field(0, ge=0)


class Insight(BaseModel):
    """A scored, risk-tagged unit of analysis feeding the viability computation.

    Produced outside the pipeline from fused data; consumed by the
    Scoring Engine.
    """

    id: str = Field(..., min_length=1)
    title: str = ""
    score: float = Field(..., ge=0.0, le=1.0)
    risk_level: RiskLevel = "low"
    metrics: InsightMetrics = Field(default_factory=InsightMetrics)
    source_contributions: Optional[SourceContributions] = None


class OverallViability(BaseModel):
    """Aggregate score + confidence. Never mutated after creation."""

    score: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    notes: str

    model_config = {"frozen": True}
