"""Orchestrator driving an execution plan phase by phase for one job."""
from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Union

from aeo_orchestrator.config import OrchestratorSettings
from aeo_orchestrator.core.context import JobContext, PayloadSummarizer
from aeo_orchestrator.core.errors import ContextOverflowError, UnknownAgentError
from aeo_orchestrator.core.models import (
    AgentResult,
    AgentSummary,
    ExecutionPlan,
    Phase,
    PhaseAborted,
    PhaseOutcome,
    ReasoningFailed,
    ReasoningOutcome,
    ReasoningReport,
    ReasoningSucceeded,
)
from aeo_orchestrator.orchestration.phase_executor import PhaseExecutor

if TYPE_CHECKING:
    from aeo_orchestrator.orchestration.reasoner import ResultReasoner

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, Dict[str, AgentSummary]], Union[Awaitable[None], None]]


class OrchestratorState(Enum):
    """Lifecycle of one orchestrator instance; there is no pause or resume."""

    INITIALIZED = auto()
    EXECUTING = auto()
    PHASE_FAILED = auto()
    COMPLETED = auto()


class Orchestrator:
    """Execute a plan for one job, reporting progress after every phase.

    Only ``PhaseAbortError`` and ``UnknownAgentError`` escape ``execute``.
    Skips, exhausted retries, reasoning failures and compression shortfalls
    are absorbed into the job context and the logs.
    """

    def __init__(
        self,
        *,
        context: JobContext,
        executor: PhaseExecutor,
        reasoner: Optional[ResultReasoner] = None,
        settings: Optional[OrchestratorSettings] = None,
        summarizer: Optional[PayloadSummarizer] = None,
    ) -> None:
        self._context = context
        self._executor = executor
        self._reasoner = reasoner
        self._settings = settings or OrchestratorSettings()
        self._summarizer = summarizer
        self.state = OrchestratorState.INITIALIZED
        self.phase_index: Optional[int] = None
        self.phase_outcomes: List[PhaseOutcome] = []
        self.reasoning_reports: List[ReasoningReport] = []

    @property
    def context(self) -> JobContext:
        return self._context

    async def execute(
        self,
        plan: ExecutionPlan,
        on_phase_complete: Optional[ProgressCallback] = None,
    ) -> List[PhaseOutcome]:
        """Run every phase in order.

        Raises:
            UnknownAgentError: the plan references an agent that is not registered.
            PhaseAbortError: a fail-policy agent aborted its phase; later phases never start.
        """
        if self.state is not OrchestratorState.INITIALIZED:
            raise RuntimeError(f"Orchestrator already used (state: {self.state.name})")

        try:
            for agent_id in plan.agent_ids:
                self._executor.resolve(agent_id)
        except UnknownAgentError:
            self.state = OrchestratorState.PHASE_FAILED
            raise

        for agent_id in plan.agent_ids:
            self._context.record_pending(agent_id)

        self.state = OrchestratorState.EXECUTING
        total = len(plan.phases)
        for index, phase in enumerate(plan.phases):
            self.phase_index = index
            logger.info("Executing phase %d/%d: %s (job %s)", index + 1, total, phase.name, self._context.job_id)

            for agent_id in phase.agent_ids:
                self._context.record_running(agent_id)

            try:
                outcome = await self._executor.run(phase, self._context)
            except UnknownAgentError:
                self.state = OrchestratorState.PHASE_FAILED
                raise
            self.phase_outcomes.append(outcome)

            if isinstance(outcome, PhaseAborted):
                self.state = OrchestratorState.PHASE_FAILED
                logger.error("Phase %s failed: %s", phase.name, outcome.error)
                raise outcome.error

            # Progress goes out before reasoning so a reasoning failure
            # cannot swallow an update that reflects finished work.
            await self._report_progress(phase, on_phase_complete)
            await self._reason(phase)
            await self._maybe_compress()

        self.state = OrchestratorState.COMPLETED
        logger.info("Job %s completed all %d phases", self._context.job_id, total)
        return list(self.phase_outcomes)

    async def _report_progress(self, phase: Phase, on_phase_complete: Optional[ProgressCallback]) -> None:
        if on_phase_complete is None:
            return
        try:
            maybe_awaitable = on_phase_complete(phase.name, self._context.all_summaries())
            if inspect.isawaitable(maybe_awaitable):
                await maybe_awaitable
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("onPhaseComplete callback failed for phase %s", phase.name)

    async def _reason(self, phase: Phase) -> Optional[ReasoningReport]:
        if self._reasoner is None:
            return None

        reasoner = self._reasoner

        async def gated_reason() -> ReasoningOutcome:
            async with self._executor.limiter.slot():
                return await reasoner.reason(self._context)

        report: ReasoningReport
        try:
            # The timeout covers the wait for a limiter slot as well.
            outcome = await asyncio.wait_for(gated_reason(), timeout=self._settings.reasoning_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("Phase %s reasoning failed (continuing): %s", phase.name, exc)
            report = ReasoningFailed(phase_name=phase.name, error=exc)
        else:
            report = ReasoningSucceeded(phase_name=phase.name, outcome=outcome)
            logger.info("Phase %s completed. Insights: %s", phase.name, list(outcome.insights))
            if outcome.adjustments:
                logger.info("Adjustments suggested: %s", list(outcome.adjustments))
            if not outcome.should_continue:
                logger.info(
                    "Reasoning suggests stopping, continuing with remaining phases. Next steps: %s",
                    list(outcome.next_steps),
                )

        self.reasoning_reports.append(report)
        return report

    async def _maybe_compress(self) -> None:
        settings = self._settings
        if not self._context.is_approaching_limit(settings.context_limit_bytes, settings.context_limit_fraction):
            return

        budget = int(settings.context_limit_bytes * settings.context_limit_fraction)
        logger.info("Compressing context for job %s (%d bytes)", self._context.job_id, self._context.size_estimate)
        summarizer = self._gated(self._summarizer) if self._summarizer is not None else None
        try:
            await asyncio.wait_for(
                self._context.compress(budget, summarizer=summarizer),
                timeout=settings.compression_timeout,
            )
        except ContextOverflowError as exc:
            logger.warning("Context still over budget, continuing: %s", exc)
        except asyncio.TimeoutError:
            logger.warning("Context compression timed out after %ss, continuing", settings.compression_timeout)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("Context compression failed for job %s, continuing", self._context.job_id)

    def _gated(self, summarizer: PayloadSummarizer) -> PayloadSummarizer:
        limiter = self._executor.limiter

        async def summarize(agent_id: str, result: AgentResult) -> Any:
            async with limiter.slot():
                return await summarizer(agent_id, result)

        return summarize
