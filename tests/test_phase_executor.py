"""Tests for phase execution: failure policies, retries, dependencies and the limiter."""
from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Optional

import pytest

from aeo_orchestrator.agents.base import AgentInvocation, AgentWork
from aeo_orchestrator.agents.echo import EchoAgent
from aeo_orchestrator.core.catalog import AgentCatalog
from aeo_orchestrator.core.context import JobContext
from aeo_orchestrator.core.models import (
    AgentCategory,
    AgentDescriptor,
    AgentResult,
    AgentStatus,
    FailurePolicy,
    Phase,
    PhaseAborted,
    PhaseCompleted,
    PhaseCompletedWithSkips,
)
from aeo_orchestrator.orchestration.phase_executor import PhaseExecutor
from aeo_orchestrator.services.limiter import ConcurrencyLimiter


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class ScriptedAgent(AgentWork):
    """Fails for the first ``failures`` attempts, then succeeds."""

    def __init__(self, failures: int = 0, delay: float = 0.0, log: Optional[List[str]] = None) -> None:
        self.failures = failures
        self.delay = delay
        self.log = log
        self.attempts: List[int] = []

    @property
    def calls(self) -> int:
        return len(self.attempts)

    async def run(self, invocation: AgentInvocation) -> AgentResult:
        self.attempts.append(invocation.attempt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.log is not None:
            self.log.append(invocation.agent_id)
        if len(self.attempts) <= self.failures:
            raise RuntimeError(f"{invocation.agent_id} boom #{len(self.attempts)}")
        return AgentResult(summary=f"{invocation.agent_id} ok", key_findings=["finding"])


class AlwaysFails(ScriptedAgent):
    def __init__(self) -> None:
        super().__init__(failures=10**6)


def _descriptor(
    agent_id: str,
    *,
    inputs: Iterable[str] = (),
    policy: FailurePolicy = FailurePolicy.FAIL,
    parallel: bool = True,
    retryable: bool = True,
    fallback: FailurePolicy = FailurePolicy.SKIP,
) -> AgentDescriptor:
    return AgentDescriptor(
        id=agent_id,
        name=agent_id.title(),
        category=AgentCategory.RESEARCH,
        inputs=frozenset(inputs),
        parallel_capable=parallel,
        failure_policy=policy,
        retryable=retryable,
        retry_fallback=fallback,
    )


def _setup(
    descriptors: List[AgentDescriptor],
    agents: Dict[str, AgentWork],
    *,
    capacity: int = 3,
    queue_timeout: Optional[float] = None,
    max_retries: int = 2,
):
    catalog = AgentCatalog(descriptors)
    limiter = ConcurrencyLimiter(capacity, queue_timeout=queue_timeout)
    executor = PhaseExecutor(catalog, limiter, agents, max_retries=max_retries, retry_backoff=0.0)
    context = JobContext("job-1", "tenant-1", "example.com", catalog)
    return executor, context, limiter


@pytest.mark.anyio
async def test_sequential_fail_aborts_and_marks_remaining_failed() -> None:
    a, b, c = AlwaysFails(), ScriptedAgent(), ScriptedAgent()
    executor, context, _ = _setup(
        [_descriptor("a", parallel=False), _descriptor("b", parallel=False), _descriptor("c", parallel=False)],
        {"a": a, "b": b, "c": c},
    )

    outcome = await executor.run(Phase("Discovery", ("a", "b", "c")), context)

    assert isinstance(outcome, PhaseAborted)
    assert outcome.error.agent_id == "a"
    assert outcome.error.phase_name == "Discovery"
    assert (b.calls, c.calls) == (0, 0)
    assert context.status("a") is AgentStatus.FAILED
    assert context.status("b") is AgentStatus.FAILED
    assert context.status("c") is AgentStatus.FAILED
    assert "aborted" in context.errors["b"]


@pytest.mark.anyio
async def test_skip_policy_in_parallel_phase_yields_completed_with_skips() -> None:
    executor, context, _ = _setup(
        [_descriptor("a", policy=FailurePolicy.SKIP), _descriptor("b", policy=FailurePolicy.SKIP)],
        {"a": ScriptedAgent(), "b": AlwaysFails()},
    )

    outcome = await executor.run(Phase("Research", ("a", "b"), run_in_parallel=True), context)

    assert isinstance(outcome, PhaseCompletedWithSkips)
    assert outcome.skipped_ids == ("b",)
    assert set(outcome.results) == {"a"}
    assert context.status("a") is AgentStatus.COMPLETED
    assert context.status("b") is AgentStatus.SKIPPED
    assert "boom" in context.errors["b"]


@pytest.mark.anyio
async def test_all_success_yields_completed() -> None:
    executor, context, _ = _setup(
        [_descriptor("a"), _descriptor("b")],
        {"a": EchoAgent(), "b": EchoAgent()},
    )

    outcome = await executor.run(Phase("Research", ("a", "b"), run_in_parallel=True), context)

    assert isinstance(outcome, PhaseCompleted)
    assert set(outcome.results) == {"a", "b"}
    assert context.completed_ids() == {"a", "b"}


@pytest.mark.anyio
async def test_retry_succeeds_on_third_attempt() -> None:
    flaky = ScriptedAgent(failures=2)
    executor, context, _ = _setup([_descriptor("a", policy=FailurePolicy.RETRY)], {"a": flaky})

    outcome = await executor.run(Phase("Research", ("a",)), context)

    assert isinstance(outcome, PhaseCompleted)
    assert flaky.attempts == [1, 2, 3]
    assert context.status("a") is AgentStatus.COMPLETED


@pytest.mark.anyio
async def test_exhausted_retries_fall_back_to_skip() -> None:
    broken = AlwaysFails()
    executor, context, _ = _setup([_descriptor("a", policy=FailurePolicy.RETRY)], {"a": broken})

    outcome = await executor.run(Phase("Research", ("a",)), context)

    assert isinstance(outcome, PhaseCompletedWithSkips)
    assert broken.calls == 3
    assert context.status("a") is AgentStatus.SKIPPED


@pytest.mark.anyio
async def test_exhausted_retries_can_fall_back_to_fail() -> None:
    broken = AlwaysFails()
    executor, context, _ = _setup(
        [_descriptor("a", policy=FailurePolicy.RETRY, fallback=FailurePolicy.FAIL)],
        {"a": broken},
        max_retries=1,
    )

    outcome = await executor.run(Phase("Discovery", ("a",)), context)

    assert isinstance(outcome, PhaseAborted)
    assert broken.calls == 2
    assert context.status("a") is AgentStatus.FAILED


@pytest.mark.anyio
async def test_non_retryable_agent_runs_once() -> None:
    broken = AlwaysFails()
    executor, context, _ = _setup(
        [_descriptor("a", policy=FailurePolicy.RETRY, retryable=False)],
        {"a": broken},
    )

    outcome = await executor.run(Phase("Research", ("a",)), context)

    assert broken.calls == 1
    assert isinstance(outcome, PhaseCompletedWithSkips)


@pytest.mark.anyio
async def test_missing_dependency_is_skipped_without_running() -> None:
    dependent = ScriptedAgent()
    executor, context, _ = _setup(
        [_descriptor("a"), _descriptor("b", inputs={"a"}, policy=FailurePolicy.SKIP)],
        {"a": ScriptedAgent(), "b": dependent},
    )

    outcome = await executor.run(Phase("Analysis", ("b",)), context)

    assert isinstance(outcome, PhaseCompletedWithSkips)
    assert dependent.calls == 0
    assert context.status("b") is AgentStatus.SKIPPED
    assert "dependencies not satisfied: a" in context.errors["b"]


@pytest.mark.anyio
async def test_missing_dependency_with_fail_policy_aborts_without_retry() -> None:
    dependent = ScriptedAgent()
    executor, context, _ = _setup(
        [_descriptor("a"), _descriptor("b", inputs={"a"}, policy=FailurePolicy.RETRY, fallback=FailurePolicy.FAIL)],
        {"a": ScriptedAgent(), "b": dependent},
    )

    outcome = await executor.run(Phase("Analysis", ("b",)), context)

    assert isinstance(outcome, PhaseAborted)
    assert dependent.calls == 0


@pytest.mark.anyio
async def test_skipped_dependency_does_not_block_dependent() -> None:
    downstream = ScriptedAgent()
    executor, context, _ = _setup(
        [
            _descriptor("a", policy=FailurePolicy.SKIP, parallel=False),
            _descriptor("b", inputs={"a"}, parallel=False),
        ],
        {"a": AlwaysFails(), "b": downstream},
    )

    outcome = await executor.run(Phase("Scoring", ("a", "b")), context)

    assert isinstance(outcome, PhaseCompletedWithSkips)
    assert downstream.calls == 1
    assert context.status("a") is AgentStatus.SKIPPED
    assert context.status("b") is AgentStatus.COMPLETED


@pytest.mark.anyio
async def test_parallel_phase_runs_dependents_after_their_inputs() -> None:
    order: List[str] = []
    agents = {name: ScriptedAgent(delay=0.01, log=order) for name in ("a", "b", "c")}
    executor, context, _ = _setup(
        [_descriptor("a"), _descriptor("b"), _descriptor("c", inputs={"a", "b"})],
        agents,
    )

    outcome = await executor.run(Phase("Analysis", ("c", "a", "b"), run_in_parallel=True), context)

    assert isinstance(outcome, PhaseCompleted)
    assert order[-1] == "c"
    assert sorted(order[:2]) == ["a", "b"]


@pytest.mark.anyio
async def test_non_parallel_capable_agents_run_alone() -> None:
    active = 0
    peak = 0

    class Tracking(AgentWork):
        async def run(self, invocation: AgentInvocation) -> AgentResult:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return AgentResult(summary="ok")

    executor, context, _ = _setup(
        [_descriptor("a", parallel=False), _descriptor("b", parallel=False)],
        {"a": Tracking(), "b": Tracking()},
    )

    outcome = await executor.run(Phase("Research", ("a", "b"), run_in_parallel=True), context)

    assert isinstance(outcome, PhaseCompleted)
    assert peak == 1


@pytest.mark.anyio
async def test_parallel_phase_respects_limiter_capacity() -> None:
    active = 0
    peak = 0

    class Tracking(AgentWork):
        async def run(self, invocation: AgentInvocation) -> AgentResult:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return AgentResult(summary="ok")

    ids = [f"agent-{i}" for i in range(6)]
    executor, context, limiter = _setup(
        [_descriptor(agent_id) for agent_id in ids],
        {agent_id: Tracking() for agent_id in ids},
        capacity=2,
    )

    outcome = await executor.run(Phase("Research", tuple(ids), run_in_parallel=True), context)

    assert isinstance(outcome, PhaseCompleted)
    assert peak == 2
    assert limiter.status().running == 0


@pytest.mark.anyio
async def test_limiter_timeout_is_an_agent_failure() -> None:
    starved = ScriptedAgent()
    executor, context, limiter = _setup(
        [_descriptor("a", policy=FailurePolicy.SKIP)],
        {"a": starved},
        capacity=1,
        queue_timeout=0.05,
    )
    await limiter.acquire()

    outcome = await executor.run(Phase("Research", ("a",)), context)

    assert isinstance(outcome, PhaseCompletedWithSkips)
    assert starved.calls == 0
    assert "timeout" in context.errors["a"].lower()
    limiter.release()


@pytest.mark.anyio
async def test_abort_in_parallel_phase_cancels_queued_agents() -> None:
    waiting = ScriptedAgent()
    executor, context, limiter = _setup(
        [_descriptor("a"), _descriptor("b", policy=FailurePolicy.SKIP)],
        {"a": AlwaysFails(), "b": waiting},
        capacity=1,
    )

    outcome = await executor.run(Phase("Research", ("a", "b"), run_in_parallel=True), context)

    assert isinstance(outcome, PhaseAborted)
    assert outcome.error.agent_id == "a"
    assert waiting.calls == 0
    assert context.status("b") is AgentStatus.FAILED
    assert limiter.status().running == 0
