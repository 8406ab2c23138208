"""Task Dispatcher: runs one analysis request end to end.

State machine per request:

    pending → dispatching → awaiting_branches → fusing
            → completed | degraded_completed | failed

Rules:
  - Credentials are checked before any branch starts (ConfigurationError)
  - The four branches run concurrently, each under its own deadline
  - A branch that raises or times out becomes a failed SourceResult; it
    never cancels its siblings
  - Fusion runs once, after every branch has reported
  - Any fusion failure moves the run to ``failed`` and surfaces as
    FusionError
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence

from ..config import get_branch_timeout, require_credentials
from ..constants import BRANCH_QUERIES
from ..errors import FusionError, ViabilityError, get_error_message
from ..schemas.analysis_schema import ComprehensiveAnalysis
from ..schemas.notification_schema import (
    AnalysisCompletedEvent,
    AnalysisDegradedEvent,
    AnalysisFailedEvent,
)
from ..schemas.pipeline_schema import (
    TERMINAL_STATES,
    AnalysisReport,
    AnalysisRequest,
    BranchStatus,
    PipelineState,
    SourceId,
    SourceResult,
    dedupe_preserving_order,
)
from ..timing import StepTimer
from .fusion_stage import fuse_results
from .okr_agent import ReferenceDocumentCache, analyze_okr
from .research_stage import ResearchOutcome, analyze_idea

logger = logging.getLogger(__name__)

ResearchFn = Callable[[str], Awaitable[ResearchOutcome]]
OkrFn = Callable[[str, ReferenceDocumentCache], Awaitable[str]]
FusionFn = Callable[[AnalysisRequest, Sequence[SourceResult]], Awaitable[ComprehensiveAnalysis]]

_RESEARCH_BRANCHES = (SourceId.FEEDBACK, SourceId.NEWS, SourceId.COMPETITORS)

# Shared by every run in the process
okr_cache = ReferenceDocumentCache()


def branch_query(source_id: SourceId, prompt: str) -> str:
    return BRANCH_QUERIES[source_id.value].format(prompt=prompt)


class PipelineRun:
    """Mutable bookkeeping for one request: current state and its history."""

    def __init__(self, request: AnalysisRequest):
        self.request = request
        self.state = PipelineState.PENDING
        self.transitions: List[PipelineState] = [PipelineState.PENDING]

    def advance(self, new_state: PipelineState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Run already finished in state {self.state.value}")
        logger.info("Pipeline %s → %s", self.state.value, new_state.value)
        print(f"🔀 [DISPATCH] {self.state.value} → {new_state.value}")
        self.state = new_state
        self.transitions.append(new_state)


class TaskDispatcher:
    """Fans a prompt out to the four branches and fuses their results."""

    def __init__(
        self,
        *,
        research: ResearchFn = analyze_idea,
        okr: OkrFn = analyze_okr,
        fusion: FusionFn = fuse_results,
        cache: Optional[ReferenceDocumentCache] = None,
        branch_timeout: Optional[float] = None,
    ):
        self._research = research
        self._okr = okr
        self._fusion = fusion
        self.cache = cache if cache is not None else okr_cache
        self.branch_timeout = branch_timeout if branch_timeout is not None else get_branch_timeout()
        # Most recently started run; inspection only.
        self.last_run: Optional[PipelineRun] = None

    # ----------------------------------------------------------------- #
    #  Branches                                                           #
    # ----------------------------------------------------------------- #

    async def _research_branch(self, source_id: SourceId, prompt: str) -> SourceResult:
        outcome = await self._research(branch_query(source_id, prompt))
        if outcome.retrieval_error:
            return SourceResult(
                source_id=source_id,
                status=BranchStatus.FAILED,
                text=outcome.text,
                error=outcome.retrieval_error,
            )
        return SourceResult(
            source_id=source_id,
            status=BranchStatus.OK,
            text=outcome.text,
            sources=outcome.sources or outcome.analysis.sources,
            analysis=outcome.analysis,
        )

    async def _okr_branch(self, prompt: str) -> SourceResult:
        text = await self._okr(branch_query(SourceId.OKR, prompt), self.cache)
        return SourceResult(source_id=SourceId.OKR, status=BranchStatus.OK, text=text)

    async def _guarded(self, source_id: SourceId, branch: Awaitable[SourceResult]) -> SourceResult:
        """Run one branch under the deadline; any failure becomes a failed result."""
        try:
            result = await asyncio.wait_for(branch, timeout=self.branch_timeout)
        except asyncio.TimeoutError:
            error = f"timeout after {self.branch_timeout:g}s"
            print(f"⏱️  [DISPATCH] {source_id.value} branch {error}")
            logger.warning("Branch %s %s", source_id.value, error)
            return SourceResult(source_id=source_id, status=BranchStatus.FAILED, error=error)
        except Exception as exc:
            print(f"❌ [DISPATCH] {source_id.value} branch failed: {exc}")
            logger.warning("Branch %s failed: %s", source_id.value, exc, exc_info=True)
            return SourceResult(
                source_id=source_id,
                status=BranchStatus.FAILED,
                error=get_error_message(exc),
            )

        mark = "✅" if result.ok else "⚠️ "
        print(f"{mark} [DISPATCH] {source_id.value} branch {result.status.value} ({len(result.sources)} sources)")
        return result

    # ----------------------------------------------------------------- #
    #  Run                                                                #
    # ----------------------------------------------------------------- #

    async def run(self, prompt: str) -> AnalysisReport:
        """Run the full pipeline for one prompt.

        Raises
        ------
        ConfigurationError
            A capability credential is missing; no branch was started.
        FusionError
            The combining step failed; the run ends in ``failed``.
        """
        request = AnalysisRequest(prompt=prompt)
        run = PipelineRun(request)
        self.last_run = run
        timer = StepTimer("dispatch")

        require_credentials()

        run.advance(PipelineState.DISPATCHING)
        branches = [self._guarded(s, self._research_branch(s, request.prompt)) for s in _RESEARCH_BRANCHES]
        branches.append(self._guarded(SourceId.OKR, self._okr_branch(request.prompt)))

        run.advance(PipelineState.AWAITING_BRANCHES)
        async with timer.async_step("branches"):
            results: List[SourceResult] = list(await asyncio.gather(*branches))

        failed = [r.source_id for r in results if not r.ok]

        run.advance(PipelineState.FUSING)
        try:
            async with timer.async_step("fusion"):
                analysis = await self._fusion(request, results)
        except FusionError:
            run.advance(PipelineState.FAILED)
            timer.summary()
            raise
        except Exception as exc:
            run.advance(PipelineState.FAILED)
            timer.summary()
            raise FusionError(
                f"Fusion failed: {get_error_message(exc)}",
                context={"cause": exc.__class__.__name__},
            ) from exc

        run.advance(PipelineState.DEGRADED_COMPLETED if failed else PipelineState.COMPLETED)
        report = AnalysisReport(
            request=request,
            state=run.state,
            analysis=analysis,
            branches=results,
            failed_branches=failed,
            duration_ms=timer.summary(),
        )
        if failed:
            logger.warning("Analysis degraded; failed branches: %s", [s.value for s in failed])
        return report


_default_dispatcher: Optional[TaskDispatcher] = None


def get_dispatcher() -> TaskDispatcher:
    """Process-wide dispatcher, built on first use so env is read late."""
    global _default_dispatcher
    if _default_dispatcher is None:
        _default_dispatcher = TaskDispatcher()
    return _default_dispatcher


async def run_analysis(prompt: str) -> AnalysisReport:
    """The outbound operation: prompt in, report (or an explicit error) out."""
    return await get_dispatcher().run(prompt)


# ===================================================================== #
#  Notification events                                                    #
# ===================================================================== #

def _report_urls(analysis: ComprehensiveAnalysis) -> List[str]:
    return dedupe_preserving_order(
        analysis.customer_feedback.source_urls
        + analysis.industry_news.source_urls
        + analysis.competitor_insights.source_urls
    )


def build_notification_event(report: AnalysisReport):
    """Completed or degraded event for a finished report."""
    now = datetime.now(timezone.utc)
    if report.failed_branches:
        return AnalysisDegradedEvent(
            prompt=report.request.prompt,
            occurred_at=now,
            failed_branches=report.failed_branches,
            source_urls=_report_urls(report.analysis),
        )
    return AnalysisCompletedEvent(
        prompt=report.request.prompt,
        occurred_at=now,
        competitor_count=report.analysis.competitor_insights.competitor_count,
        source_urls=_report_urls(report.analysis),
    )


def build_failure_event(request: AnalysisRequest, error: BaseException) -> AnalysisFailedEvent:
    code = error.code if isinstance(error, ViabilityError) else error.__class__.__name__
    return AnalysisFailedEvent(
        prompt=request.prompt,
        occurred_at=datetime.now(timezone.utc),
        error_code=code,
        error_message=get_error_message(error),
    )
