"""Execution of a single plan phase against the catalog and the job context."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Set

from aeo_orchestrator.agents.base import AgentInvocation, AgentWork
from aeo_orchestrator.core.catalog import AgentCatalog
from aeo_orchestrator.core.context import JobContext
from aeo_orchestrator.core.errors import (
    AgentExecutionError,
    DependencyNotSatisfiedError,
    PhaseAbortError,
    UnknownAgentError,
)
from aeo_orchestrator.core.models import (
    AgentDescriptor,
    AgentResult,
    FailurePolicy,
    Phase,
    PhaseAborted,
    PhaseCompleted,
    PhaseCompletedWithSkips,
    PhaseOutcome,
)
from aeo_orchestrator.services.limiter import DEFAULT_TIMEOUT, ConcurrencyLimiter

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BACKOFF = 1.0


@dataclass
class _PhaseRun:
    """Book-keeping for one execution of one phase."""

    phase: Phase
    context: JobContext
    abort: asyncio.Event = field(default_factory=asyncio.Event)
    started: Set[str] = field(default_factory=set)
    finished: Set[str] = field(default_factory=set)
    results: Dict[str, AgentResult] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    failure: Optional[AgentExecutionError] = None

    def outcome(self) -> PhaseOutcome:
        name = self.phase.name
        if self.failure is not None:
            return PhaseAborted(phase_name=name, error=PhaseAbortError(name, self.failure))
        if self.skipped:
            return PhaseCompletedWithSkips(
                phase_name=name,
                results=dict(self.results),
                skipped_ids=tuple(self.skipped),
            )
        return PhaseCompleted(phase_name=name, results=dict(self.results))


class PhaseExecutor:
    """Run the agents of one phase, honouring each agent's failure policy."""

    def __init__(
        self,
        catalog: AgentCatalog,
        limiter: ConcurrencyLimiter,
        agents: Mapping[str, AgentWork],
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        acquire_timeout: Optional[float] = DEFAULT_TIMEOUT,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        self._catalog = catalog
        self._limiter = limiter
        self._agents = dict(agents)
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff
        self._acquire_timeout = acquire_timeout

    @property
    def catalog(self) -> AgentCatalog:
        return self._catalog

    @property
    def limiter(self) -> ConcurrencyLimiter:
        return self._limiter

    def resolve(self, agent_id: str) -> AgentWork:
        """Return the work bound to ``agent_id`` or raise ``UnknownAgentError``."""
        self._catalog.require(agent_id)
        work = self._agents.get(agent_id)
        if work is None:
            raise UnknownAgentError(agent_id)
        return work

    async def run(self, phase: Phase, context: JobContext) -> PhaseOutcome:
        for agent_id in phase.agent_ids:
            self.resolve(agent_id)

        run = _PhaseRun(phase=phase, context=context)
        logger.info(
            "Running phase %s: %s (parallel: %s)",
            phase.name,
            ", ".join(phase.agent_ids),
            phase.run_in_parallel,
        )
        if phase.run_in_parallel:
            await self._run_parallel(run)
        else:
            await self._run_sequential(run)
        return run.outcome()

    async def _run_sequential(self, run: _PhaseRun) -> None:
        for agent_id in run.phase.agent_ids:
            if run.abort.is_set():
                break
            await self._run_agent(agent_id, run)

    async def _run_parallel(self, run: _PhaseRun) -> None:
        remaining = list(run.phase.agent_ids)
        while remaining and not run.abort.is_set():
            resolved = run.context.resolved_ids()
            batch = self._catalog.eligible_for_parallel_run(remaining, resolved)
            if not batch:
                # Agents that may not overlap with siblings run one at a time.
                solo = next(
                    (a for a in remaining if self._catalog.dependencies_satisfied(a, resolved)),
                    None,
                )
                if solo is None:
                    break
                batch = [solo]
            remaining = [agent_id for agent_id in remaining if agent_id not in batch]
            await asyncio.gather(*(self._run_agent(agent_id, run) for agent_id in batch))

        # Whatever is left can never become ready in this phase.
        for agent_id in remaining:
            if run.abort.is_set():
                break
            await self._run_agent(agent_id, run)

    async def _run_agent(self, agent_id: str, run: _PhaseRun) -> None:
        descriptor = self._catalog.require(agent_id)
        work = self.resolve(agent_id)
        context = run.context

        resolved = context.resolved_ids()
        if not self._catalog.dependencies_satisfied(agent_id, resolved):
            missing = self._catalog.missing_dependencies(agent_id, resolved)
            self._handle_failure(descriptor, DependencyNotSatisfiedError(agent_id, missing), run)
            return

        attempt = 0
        while True:
            if run.abort.is_set():
                self._record_aborted(agent_id, run)
                return
            try:
                async with self._limiter.slot(self._acquire_timeout):
                    if run.abort.is_set():
                        self._record_aborted(agent_id, run)
                        return
                    run.started.add(agent_id)
                    result = await work.run(
                        AgentInvocation(
                            descriptor=descriptor,
                            context=context,
                            attempt=attempt + 1,
                            abort=run.abort,
                        )
                    )
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                error = exc if isinstance(exc, AgentExecutionError) else AgentExecutionError(agent_id, exc)
                if self._should_retry(descriptor, attempt):
                    attempt += 1
                    delay = self._retry_backoff * (2 ** (attempt - 1))
                    logger.warning(
                        "Agent %s attempt %d failed, retrying in %.2fs: %s",
                        agent_id,
                        attempt,
                        delay,
                        error.detail,
                    )
                    if delay > 0:
                        await asyncio.sleep(delay)
                    continue
                self._handle_failure(descriptor, error, run, attempts=attempt + 1)
                return

            context.record_result(agent_id, result)
            run.results[agent_id] = result
            run.finished.add(agent_id)
            return

    def _should_retry(self, descriptor: AgentDescriptor, attempt: int) -> bool:
        return (
            descriptor.failure_policy is FailurePolicy.RETRY
            and descriptor.retryable
            and attempt < self._max_retries
        )

    def _handle_failure(
        self,
        descriptor: AgentDescriptor,
        error: AgentExecutionError,
        run: _PhaseRun,
        attempts: int = 1,
    ) -> None:
        policy = descriptor.failure_policy
        if policy is FailurePolicy.RETRY:
            policy = descriptor.retry_fallback
            logger.warning(
                "Agent %s gave up after %d attempt(s), falling back to '%s': %s",
                descriptor.id,
                attempts,
                policy.value,
                error.detail,
            )

        run.finished.add(descriptor.id)
        if policy is FailurePolicy.SKIP:
            logger.warning("Agent %s skipped: %s", descriptor.id, error.detail)
            run.context.record_skipped(descriptor.id, error.detail)
            run.skipped.append(descriptor.id)
            return

        logger.error("Agent %s failed, aborting phase %s: %s", descriptor.id, run.phase.name, error.detail)
        run.context.record_failed(descriptor.id, error.detail)
        self._abort(run, error)

    def _abort(self, run: _PhaseRun, error: AgentExecutionError) -> None:
        if run.failure is None:
            run.failure = error
        run.abort.set()
        for agent_id in run.phase.agent_ids:
            if agent_id not in run.started and agent_id not in run.finished:
                self._record_aborted(agent_id, run)

    def _record_aborted(self, agent_id: str, run: _PhaseRun) -> None:
        if agent_id in run.finished:
            return
        run.finished.add(agent_id)
        cause = run.failure.agent_id if run.failure is not None else "unknown"
        run.context.record_failed(agent_id, f"phase '{run.phase.name}' aborted after '{cause}' failed")
