from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .analysis_schema import ComprehensiveAnalysis, IdeaAnalysis


class SourceId(str, Enum):
    FEEDBACK = "feedback"
    NEWS = "news"
    COMPETITORS = "competitors"
    OKR = "okr"


class BranchStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"


class PipelineState(str, Enum):
    PENDING = "pending"
    DISPATCHING = "dispatching"
    AWAITING_BRANCHES = "awaiting_branches"
    FUSING = "fusing"
    COMPLETED = "completed"
    DEGRADED_COMPLETED = "degraded_completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {PipelineState.COMPLETED, PipelineState.DEGRADED_COMPLETED, PipelineState.FAILED}
)


def dedupe_preserving_order(items: List[str]) -> List[str]:
    """Drop duplicates and blanks; the first occurrence wins."""
    seen: set[str] = set()
    unique: List[str] = []
    for item in items:
        if not item or item in seen:
            continue
        seen.add(item)
        unique.append(item)
    return unique


class AnalysisRequest(BaseModel):
    """One invocation of the pipeline. Immutable."""

    prompt: str = Field(..., min_length=1)
    requested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("prompt must not be blank")
        return stripped


class SourceResult(BaseModel):
    """Outcome of one dispatched branch; discarded after fusion."""

    source_id: SourceId
    status: BranchStatus
    text: str = ""
    sources: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    analysis: Optional[IdeaAnalysis] = None

    @field_validator("sources")
    @classmethod
    def unique_sources(cls, v: List[str]) -> List[str]:
        return dedupe_preserving_order(v)

    @property
    def ok(self) -> bool:
        return self.status == BranchStatus.OK


class AnalysisReport(BaseModel):
    """What ``run_analysis`` hands back: the fused document plus run status."""

    request: AnalysisRequest
    state: PipelineState
    analysis: ComprehensiveAnalysis
    branches: List[SourceResult] = Field(default_factory=list)
    failed_branches: List[SourceId] = Field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def degraded(self) -> bool:
        return self.state == PipelineState.DEGRADED_COMPLETED
