# Schemas package
from .analysis_schema import ComprehensiveAnalysis, IdeaAnalysis
from .insight_schema import ComponentScores, Insight, InsightMetrics, OverallViability, SourceContributions
from .notification_schema import NotificationEvent
from .pipeline_schema import AnalysisReport, AnalysisRequest, BranchStatus, PipelineState, SourceId, SourceResult

__all__ = [
    "IdeaAnalysis",
    "ComprehensiveAnalysis",
    "ComponentScores",
    "SourceContributions",
    "InsightMetrics",
    "Insight",
    "OverallViability",
    "NotificationEvent",
    "AnalysisRequest",
    "AnalysisReport",
    "BranchStatus",
    "PipelineState",
    "SourceId",
    "SourceResult",
]
