"""HTTP API exposing job orchestration and limiter status."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from aeo_orchestrator.core.catalog import AgentCatalog
from aeo_orchestrator.core.errors import UnknownAgentError
from aeo_orchestrator.core.models import ExecutionPlan, Phase
from aeo_orchestrator.orchestration.plans import default_plan, validate_plan
from aeo_orchestrator.runtime import get_catalog, get_job_store, get_limiter, start_job
from aeo_orchestrator.services.job_store import InMemoryJobStore, JobRecord
from aeo_orchestrator.services.limiter import ConcurrencyLimiter

router = APIRouter(tags=["jobs"])


class PhaseRequest(BaseModel):
    name: str = Field(..., description="Phase name shown in progress updates")
    agents: List[str] = Field(..., description="Catalog agent ids, in execution order")
    run_in_parallel: bool = False


class JobCreateRequest(BaseModel):
    target_domain: str = Field(..., description="Domain under analysis")
    tenant_id: str = Field("default", description="Owning tenant")
    target_url: Optional[str] = None
    phases: Optional[List[PhaseRequest]] = Field(
        default=None,
        description="Execution plan; the default static plan is used when omitted",
    )

    def to_plan(self) -> ExecutionPlan:
        if not self.phases:
            return default_plan()
        return ExecutionPlan(
            phases=tuple(Phase(p.name, tuple(p.agents), p.run_in_parallel) for p in self.phases)
        )


class JobCreatedResponse(BaseModel):
    job_id: str
    status: str


class JobResponse(BaseModel):
    job_id: str
    status: str
    error: Optional[str]
    last_phase: Optional[str]
    agents: Dict[str, Dict[str, Any]]

    @classmethod
    def from_record(cls, record: JobRecord) -> "JobResponse":
        return cls(
            job_id=record.job_id,
            status=record.status.value,
            error=record.error,
            last_phase=record.last_phase,
            agents=dict(record.snapshot.get("agents", {})),
        )


class LimiterResponse(BaseModel):
    capacity: int
    running: int
    queued: int


@router.post("/jobs", response_model=JobCreatedResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_job(
    request: JobCreateRequest,
    catalog: AgentCatalog = Depends(get_catalog),
) -> JobCreatedResponse:
    plan = request.to_plan()
    try:
        validate_plan(plan, catalog)
    except (UnknownAgentError, ValueError) as exc:
        detail = exc.args[0] if exc.args else str(exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail) from exc

    job_inputs = {"target_url": request.target_url} if request.target_url else {}
    job_id = await start_job(
        tenant_id=request.tenant_id,
        target_domain=request.target_domain,
        plan=plan,
        job_inputs=job_inputs,
    )
    return JobCreatedResponse(job_id=job_id, status="queued")


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, store: InMemoryJobStore = Depends(get_job_store)) -> JobResponse:
    record = store.get(job_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown job")
    return JobResponse.from_record(record)


@router.get("/limiter", response_model=LimiterResponse)
async def limiter_status(limiter: ConcurrencyLimiter = Depends(get_limiter)) -> LimiterResponse:
    snapshot = limiter.status()
    return LimiterResponse(capacity=snapshot.capacity, running=snapshot.running, queued=snapshot.queued)
