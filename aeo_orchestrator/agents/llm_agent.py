"""LLM-powered agent that turns upstream summaries into a structured result."""
from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, Field

from aeo_orchestrator.agents.base import AgentInvocation, AgentWork
from aeo_orchestrator.core.models import AgentResult

if TYPE_CHECKING:
    from aeo_orchestrator.services.generation import GenerationService

MAX_SUMMARY_CHARS = 600


class AgentResultSchema(BaseModel):
    summary: str = Field(..., description="A concise 2-3 sentence summary of the result")
    key_findings: List[str] = Field(default_factory=list, description="Top 3-5 key findings")
    next_steps: List[str] = Field(default_factory=list, description="Suggested next steps")
    details: Dict[str, Any] = Field(default_factory=dict, description="Full structured output")


class GenerationAgent(AgentWork):
    """Agent that asks the generation service to perform its analysis step."""

    def __init__(
        self,
        generation: GenerationService,
        instructions: str,
        system_prompt: Optional[str] = None,
    ) -> None:
        self._generation = generation
        self.instructions = instructions
        self.system_prompt = system_prompt or (
            "You are one step of an answer-engine-optimization analysis pipeline."
        )

    def build_prompt(self, invocation: AgentInvocation) -> str:
        context = invocation.context
        upstream = {
            agent_id: summary.to_dict() for agent_id, summary in invocation.upstream_summaries().items()
        }
        return (
            f"Step: {invocation.descriptor.name} ({invocation.agent_id})\n"
            f"Target domain: {context.target_domain}\n"
            f"Job inputs: {json.dumps(context.job_inputs, default=str)}\n"
            f"Upstream results: {json.dumps(upstream, default=str)}\n\n"
            f"{self.instructions}"
        )

    async def run(self, invocation: AgentInvocation) -> AgentResult:
        generated = await self._generation.generate(
            self.build_prompt(invocation),
            AgentResultSchema,
            system=self.system_prompt,
        )
        data = generated.data
        return AgentResult(
            summary=data.summary[:MAX_SUMMARY_CHARS],
            key_findings=list(data.key_findings),
            next_steps=list(data.next_steps),
            payload=data.details,
        )
