"""In-memory stand-in for the external job status store."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aeo_orchestrator.core.models import JobStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class JobRecord:
    """Coarse job state as seen by API callers."""

    job_id: str
    status: JobStatus = JobStatus.PENDING
    error: Optional[str] = None
    snapshot: Dict[str, Any] = field(default_factory=dict)
    last_phase: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)


class InMemoryJobStore:
    """Keeps job records for the lifetime of the process."""

    def __init__(self) -> None:
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = asyncio.Lock()

    async def create(self, job_id: str, status: JobStatus = JobStatus.QUEUED) -> JobRecord:
        async with self._lock:
            if job_id in self._jobs:
                raise KeyError(f"Job '{job_id}' already exists")
            record = JobRecord(job_id=job_id, status=status)
            self._jobs[job_id] = record
            return record

    async def set_status(self, job_id: str, status: JobStatus, error: Optional[str] = None) -> None:
        async with self._lock:
            record = self._require(job_id)
            record.status = status
            record.error = error
            record.updated_at = _utcnow()

    async def set_snapshot(self, job_id: str, snapshot: Dict[str, Any], phase_name: Optional[str] = None) -> None:
        async with self._lock:
            record = self._require(job_id)
            record.snapshot = snapshot
            if phase_name is not None:
                record.last_phase = phase_name
            record.updated_at = _utcnow()

    def get(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get(job_id)

    def _require(self, job_id: str) -> JobRecord:
        if job_id not in self._jobs:
            raise KeyError(f"Unknown job '{job_id}'")
        return self._jobs[job_id]
