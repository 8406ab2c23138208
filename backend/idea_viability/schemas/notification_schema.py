"""Events handed to notification collaborators (chat, email).

One variant per event kind, discriminated on ``kind``; each variant carries
only the fields that kind needs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from .pipeline_schema import SourceId


class _EventBase(BaseModel):
    prompt: str
    occurred_at: datetime

    model_config = {"frozen": True}


class AnalysisCompletedEvent(_EventBase):
    kind: Literal["analysis_completed"] = "analysis_completed"
    competitor_count: int = Field(0, ge=0)
    source_urls: List[str] = Field(default_factory=list)


class AnalysisDegradedEvent(_EventBase):
    kind: Literal["analysis_degraded"] = "analysis_degraded"
    failed_branches: List[SourceId] = Field(..., min_length=1)
    source_urls: List[str] = Field(default_factory=list)


class AnalysisFailedEvent(_EventBase):
    kind: Literal["analysis_failed"] = "analysis_failed"
    error_code: str
    error_message: str


NotificationEvent = Annotated[
    Union[AnalysisCompletedEvent, AnalysisDegradedEvent, AnalysisFailedEvent],
    Field(discriminator="kind"),
]

notification_event_adapter: TypeAdapter[NotificationEvent] = TypeAdapter(NotificationEvent)
