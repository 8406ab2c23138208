"""
Analysis Router

POST   /analysis            run the research pipeline for one prompt
POST   /analysis/viability  score a set of insights
DELETE /analysis/okr-cache  drop the cached OKR reference document
GET    /analysis/health     configuration check
"""

import time

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from ..config import get_scoring_config, validate_config
from ..errors import ConfigurationError, FusionError
from ..schemas.request_schema import (
    AnalysisRunRequest,
    AnalysisRunResponse,
    ViabilityRequest,
    ViabilityResponse,
)
from ..services.scoring_engine import (
    calculate_average_score,
    compute_overall_viability,
    filter_insights_by_threshold,
    limit_insights,
)
from ..services.task_dispatcher import okr_cache, run_analysis

router = APIRouter(
    prefix="/analysis",
    tags=["Analysis"],
    responses={
        500: {"description": "Configuration missing or fusion failed"}
    }
)


@router.post(
    "",
    response_model=AnalysisRunResponse,
    status_code=status.HTTP_200_OK,
    summary="Run a Comprehensive Analysis",
    response_description="Fused report with the run's terminal state",
)
async def run_comprehensive_analysis(request: AnalysisRunRequest):
    """Fan the prompt out to all branches and return the fused report."""
    start_time = time.perf_counter()
    print("[TIMING] analysis_endpoint: START")

    try:
        report = await run_analysis(request.prompt)
    except (ConfigurationError, FusionError) as e:
        duration = (time.perf_counter() - start_time) * 1000
        print(f"[TIMING] analysis_endpoint: ERROR after {duration:.0f}ms: {e.code}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": e.to_dict()},
        )

    duration = (time.perf_counter() - start_time) * 1000
    print(f"[TIMING] analysis_endpoint: END: duration={duration:.0f}ms")

    message = "Comprehensive analysis completed successfully"
    if report.degraded:
        failed = ", ".join(s.value for s in report.failed_branches)
        message = f"Analysis completed with unavailable sections: {failed}"

    return AnalysisRunResponse(
        state=report.state,
        failed_branches=report.failed_branches,
        data=report.analysis,
        message=message,
    )


@router.post(
    "/viability",
    response_model=ViabilityResponse,
    summary="Score Insights",
)
async def score_viability(request: ViabilityRequest) -> ViabilityResponse:
    """Overall viability for the given insights (deterministic, no LLM)."""
    config = get_scoring_config()
    insights = request.insights
    if request.apply_threshold:
        insights = filter_insights_by_threshold(insights, config)
    insights = limit_insights(insights, config)

    note = None
    if request.insights and not insights:
        note = "All insights fell below the minimum score threshold."

    return ViabilityResponse(
        overall_viability=compute_overall_viability(insights, config),
        insights=insights,
        average_score=round(calculate_average_score(insights), 4),
        note=note,
    )


@router.delete(
    "/okr-cache",
    summary="Clear OKR Cache",
)
async def clear_okr_cache():
    okr_cache.invalidate()
    return {"success": True, "message": "OKR cache cleared"}


@router.get(
    "/health",
    summary="Analysis Health Check",
)
async def health_check():
    problems = validate_config()
    return {
        "status": "healthy" if not problems else "degraded",
        "service": "analysis",
        "okr_cache_loaded": okr_cache.is_loaded,
        "problems": problems,
    }
