from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .analysis_schema import ComprehensiveAnalysis
from .insight_schema import Insight, OverallViability
from .pipeline_schema import PipelineState, SourceId


class AnalysisRunRequest(BaseModel):
    """Request body for POST /analysis."""

    prompt: str = Field(
        ...,
        min_length=3,
        max_length=2000,
        description="The product idea to analyse.",
        examples=["AI-powered customer support chatbot"],
    )

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, v: str) -> str:
        stripped = v.strip()
        if len(stripped) < 3:
            raise ValueError("prompt must contain at least 3 non-whitespace characters")
        return stripped


class AnalysisRunResponse(BaseModel):
    success: bool = True
    state: PipelineState
    failed_branches: List[SourceId] = Field(default_factory=list)
    data: ComprehensiveAnalysis
    message: str = "Comprehensive analysis completed successfully"


class ViabilityRequest(BaseModel):
    """Request body for POST /analysis/viability."""

    insights: List[Insight] = Field(default_factory=list)
    apply_threshold: bool = Field(
        default=True,
        description="Drop insights below the configured minimum score before scoring",
    )


class ViabilityResponse(BaseModel):
    overall_viability: OverallViability
    insights: List[Insight] = Field(default_factory=list)
    average_score: float = 0.0
    note: Optional[str] = None
