"""Default execution plan and plan validation.

Plans are normally produced by the external planner; the static plan here
is what the demo and the HTTP API fall back to when none is supplied.
"""
from __future__ import annotations

from typing import Set

from aeo_orchestrator.core.catalog import AgentCatalog
from aeo_orchestrator.core.errors import UnknownAgentError
from aeo_orchestrator.core.models import ExecutionPlan, Phase


def default_plan() -> ExecutionPlan:
    """Deterministic plan with dependency-correct phase ordering."""
    return ExecutionPlan(
        phases=(
            Phase("Discovery", ("page-analysis", "query-generation", "competitor-discovery")),
            Phase(
                "Research",
                ("tavily-research", "google-aio", "perplexity", "community-signals"),
                run_in_parallel=True,
            ),
            Phase("Analysis", ("citation-analysis", "content-comparison"), run_in_parallel=True),
            Phase("Scoring", ("visibility-scoring",)),
            Phase("Output", ("recommendations", "cursor-prompt")),
        ),
        reasoning="Full pipeline with search research and community engagement discovery",
    )


def validate_plan(plan: ExecutionPlan, catalog: AgentCatalog) -> None:
    """Reject plans the engine cannot execute.

    Raises:
        UnknownAgentError: a phase references an id absent from the catalog.
        ValueError: the plan is empty, a phase is empty, or an agent appears twice.
    """
    if not plan.phases:
        raise ValueError("Execution plan has no phases")
    seen: Set[str] = set()
    for phase in plan.phases:
        if not phase.agent_ids:
            raise ValueError(f"Phase '{phase.name}' has no agents")
        for agent_id in phase.agent_ids:
            if agent_id not in catalog:
                raise UnknownAgentError(agent_id)
            if agent_id in seen:
                raise ValueError(f"Agent '{agent_id}' appears more than once in the plan")
            seen.add(agent_id)
