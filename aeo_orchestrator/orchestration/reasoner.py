"""Best-effort reasoning over intermediate results between phases."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List

from pydantic import BaseModel, Field

from aeo_orchestrator.core.models import AgentStatus, ReasoningOutcome

if TYPE_CHECKING:
    from aeo_orchestrator.core.context import JobContext
    from aeo_orchestrator.services.generation import GenerationService

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert analyst reviewing intermediate results from an AEO analysis pipeline.

Your task is to:
1. Analyze the current state of the analysis
2. Identify patterns and insights
3. Determine if we should continue or adjust the plan
4. Suggest next steps

Be strategic and data-driven."""


class ReasoningResult(BaseModel):
    should_continue: bool = Field(..., description="Whether to continue with the plan")
    next_steps: List[str] = Field(default_factory=list, description="Recommended next steps")
    adjustments: List[str] = Field(default_factory=list, description="Suggested adjustments to the plan")
    insights: List[str] = Field(default_factory=list, description="Key insights from current results")
    confidence: float = Field(0, ge=0, le=100, description="Confidence in current results (0-100)")


def build_results_summary(context: JobContext) -> str:
    """Render completed, failed, skipped and running agents as prompt text."""
    summaries = context.all_summaries()

    def ids_with(status: AgentStatus) -> List[str]:
        return [agent_id for agent_id, s in summaries.items() if s.status is status]

    completed_blocks = []
    for agent_id in ids_with(AgentStatus.COMPLETED):
        summary = summaries[agent_id]
        findings = ", ".join((summary.key_findings or [])[:3])
        completed_blocks.append(f"**{agent_id}**:\n- Summary: {summary.summary}\n- Key Findings: {findings}")

    def listing(status: AgentStatus) -> str:
        lines = [f"- {agent_id}: {summaries[agent_id].error}" for agent_id in ids_with(status)]
        return "\n".join(lines) or "None"

    running = ids_with(AgentStatus.RUNNING)
    return (
        f"Completed Agents ({len(completed_blocks)}):\n{chr(10).join(completed_blocks) or 'None'}\n\n"
        f"Failed Agents ({len(ids_with(AgentStatus.FAILED))}):\n{listing(AgentStatus.FAILED)}\n\n"
        f"Skipped Agents ({len(ids_with(AgentStatus.SKIPPED))}):\n{listing(AgentStatus.SKIPPED)}\n\n"
        f"Running Agents ({len(running)}):\n{', '.join(running) or 'None'}"
    )


class ResultReasoner:
    """Asks the generation service whether the plan still looks right."""

    def __init__(self, generation: GenerationService) -> None:
        self._generation = generation

    async def reason(self, context: JobContext) -> ReasoningOutcome:
        prompt = (
            "Analyze these intermediate results:\n\n"
            f"{build_results_summary(context)}\n\n"
            "Should we continue with the current plan? What are the key insights, "
            "what adjustments (if any) should we make, what are the next steps, "
            "and how confident are we so far?"
        )
        generated = await self._generation.generate(prompt, ReasoningResult, system=SYSTEM_PROMPT)
        data = generated.data
        return ReasoningOutcome(
            should_continue=data.should_continue,
            next_steps=tuple(data.next_steps),
            adjustments=tuple(data.adjustments),
            insights=tuple(data.insights),
            confidence=data.confidence,
        )
