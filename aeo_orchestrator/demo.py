"""CLI demonstration of a full pipeline run with local echo agents."""
from __future__ import annotations

import argparse
import asyncio
import json
from typing import Dict, NoReturn, Optional, Sequence

from aeo_orchestrator.agents.echo import EchoAgent
from aeo_orchestrator.config import OrchestratorSettings
from aeo_orchestrator.core.catalog import default_catalog
from aeo_orchestrator.core.context import JobContext
from aeo_orchestrator.core.models import AgentSummary
from aeo_orchestrator.logging_config import setup_logging
from aeo_orchestrator.orchestration.orchestrator import Orchestrator
from aeo_orchestrator.orchestration.phase_executor import PhaseExecutor
from aeo_orchestrator.orchestration.plans import default_plan
from aeo_orchestrator.services.limiter import ConcurrencyLimiter


async def main(domain: str, capacity: int, delay: float) -> None:
    catalog = default_catalog()
    limiter = ConcurrencyLimiter(capacity=capacity, queue_timeout=30)
    context = JobContext("demo-job", "demo-tenant", domain, catalog)
    executor = PhaseExecutor(
        catalog,
        limiter,
        {descriptor.id: EchoAgent(delay=delay) for descriptor in catalog},
        retry_backoff=0.1,
    )
    orchestrator = Orchestrator(context=context, executor=executor, settings=OrchestratorSettings())

    def on_phase_complete(phase_name: str, summaries: Dict[str, AgentSummary]) -> None:
        done = sum(1 for s in summaries.values() if s.status.terminal)
        print(f"Phase {phase_name} complete: {done}/{len(summaries)} agents finished")

    await orchestrator.execute(default_plan(), on_phase_complete)
    print(json.dumps(context.snapshot(), indent=2))


def run(argv: Optional[Sequence[str]] = None) -> NoReturn:
    parser = argparse.ArgumentParser(description="Run the default AEO plan with echo agents")
    parser.add_argument("domain", nargs="?", default="example.com")
    parser.add_argument("--capacity", type=int, default=3)
    parser.add_argument("--delay", type=float, default=0.1)
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    asyncio.run(main(args.domain, args.capacity, args.delay))
    raise SystemExit(0)


if __name__ == "__main__":
    run()
