"""FastAPI entry-point exposing job orchestration."""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from aeo_orchestrator.api.jobs import router as jobs_router
from aeo_orchestrator.config import config
from aeo_orchestrator.logging_config import setup_logging
from aeo_orchestrator.runtime import shutdown_jobs


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application."""
    setup_logging(config.log_level, config.log_format)
    yield
    # Shutdown: cancel jobs still running
    await shutdown_jobs()


app = FastAPI(title="AEO Orchestrator", lifespan=lifespan)
app.include_router(jobs_router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
