"""Application runtime composition helpers."""
from __future__ import annotations

import asyncio
import logging
import uuid
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional, Set

from aeo_orchestrator.agents.base import AgentWork
from aeo_orchestrator.agents.echo import EchoAgent
from aeo_orchestrator.agents.llm_agent import GenerationAgent
from aeo_orchestrator.config import OrchestratorSettings, config
from aeo_orchestrator.core.catalog import AgentCatalog, default_catalog
from aeo_orchestrator.core.context import JobContext
from aeo_orchestrator.core.errors import PhaseAbortError, UnknownAgentError
from aeo_orchestrator.core.models import AgentSummary, ExecutionPlan, JobStatus
from aeo_orchestrator.orchestration.orchestrator import Orchestrator
from aeo_orchestrator.orchestration.phase_executor import PhaseExecutor
from aeo_orchestrator.orchestration.reasoner import ResultReasoner
from aeo_orchestrator.services.generation import GenerationService, OpenAIGenerationService, payload_summarizer
from aeo_orchestrator.services.job_store import InMemoryJobStore
from aeo_orchestrator.services.limiter import ConcurrencyLimiter

logger = logging.getLogger(__name__)

# Strong references to in-flight job tasks so they are not garbage collected.
_JOB_TASKS: Set[asyncio.Task] = set()


@lru_cache
def get_catalog() -> AgentCatalog:
    return default_catalog()


@lru_cache
def get_limiter() -> ConcurrencyLimiter:
    return ConcurrencyLimiter(
        capacity=config.limiter.max_concurrent,
        queue_timeout=config.limiter.queue_timeout,
    )


@lru_cache
def get_generation_service() -> Optional[GenerationService]:
    if config.generation is None:
        return None
    return OpenAIGenerationService(config.generation)


@lru_cache
def get_job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


def build_agents(catalog: AgentCatalog, generation: Optional[GenerationService]) -> Dict[str, AgentWork]:
    """Bind every catalog entry to work: generation-backed when configured, echo otherwise."""
    if generation is None:
        return {descriptor.id: EchoAgent() for descriptor in catalog}
    return {
        descriptor.id: GenerationAgent(generation, instructions=f"Task: {descriptor.description}.")
        for descriptor in catalog
    }


async def run_job(
    *,
    job_id: str,
    tenant_id: str,
    target_domain: str,
    plan: ExecutionPlan,
    catalog: AgentCatalog,
    limiter: ConcurrencyLimiter,
    agents: Mapping[str, AgentWork],
    store: InMemoryJobStore,
    settings: Optional[OrchestratorSettings] = None,
    generation: Optional[GenerationService] = None,
    job_inputs: Optional[Mapping[str, Any]] = None,
) -> JobContext:
    """Orchestrate one job and map its outcome onto the job store."""
    settings = settings or config.orchestrator
    context = JobContext(job_id, tenant_id, target_domain, catalog, job_inputs=job_inputs)
    executor = PhaseExecutor(
        catalog,
        limiter,
        agents,
        max_retries=settings.max_retries,
        retry_backoff=settings.retry_backoff,
    )
    orchestrator = Orchestrator(
        context=context,
        executor=executor,
        reasoner=ResultReasoner(generation) if generation is not None else None,
        settings=settings,
        summarizer=payload_summarizer(generation) if generation is not None else None,
    )

    async def on_phase_complete(phase_name: str, summaries: Dict[str, AgentSummary]) -> None:
        await store.set_snapshot(job_id, context.snapshot(), phase_name=phase_name)

    await store.set_status(job_id, JobStatus.ANALYZING)
    try:
        await orchestrator.execute(plan, on_phase_complete)
    except (PhaseAbortError, UnknownAgentError) as exc:
        logger.error("Job %s failed: %s", job_id, exc)
        await store.set_snapshot(job_id, context.snapshot())
        await store.set_status(job_id, JobStatus.FAILED, error=str(exc))
        return context
    except Exception as exc:
        await store.set_status(job_id, JobStatus.FAILED, error=str(exc))
        raise

    await store.set_snapshot(job_id, context.snapshot())
    await store.set_status(job_id, JobStatus.COMPLETED)
    return context


async def start_job(
    *,
    tenant_id: str,
    target_domain: str,
    plan: ExecutionPlan,
    job_inputs: Optional[Mapping[str, Any]] = None,
) -> str:
    """Register a job and run it in the background using the process-wide services."""
    job_id = str(uuid.uuid4())
    store = get_job_store()
    await store.create(job_id)
    catalog = get_catalog()
    generation = get_generation_service()
    task = asyncio.create_task(
        run_job(
            job_id=job_id,
            tenant_id=tenant_id,
            target_domain=target_domain,
            plan=plan,
            catalog=catalog,
            limiter=get_limiter(),
            agents=build_agents(catalog, generation),
            store=store,
            generation=generation,
            job_inputs=job_inputs,
        ),
        name=f"job-{job_id}",
    )
    _JOB_TASKS.add(task)
    task.add_done_callback(_on_job_done)
    return job_id


def _on_job_done(task: asyncio.Task) -> None:
    _JOB_TASKS.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("Job task %s crashed", task.get_name(), exc_info=task.exception())


async def shutdown_jobs() -> None:
    """Cancel every in-flight job task and wait for them to unwind."""
    tasks = list(_JOB_TASKS)
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
