"""Base agent definition used by the phase executor."""
from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass
from typing import Dict

from aeo_orchestrator.core.context import JobContext
from aeo_orchestrator.core.models import AgentDescriptor, AgentResult, AgentSummary


@dataclass(slots=True)
class AgentInvocation:
    """Everything one attempt of an agent gets to see."""

    descriptor: AgentDescriptor
    context: JobContext
    attempt: int
    # Set when the phase is aborting; long-running work may check it and bail out.
    abort: asyncio.Event

    @property
    def agent_id(self) -> str:
        return self.descriptor.id

    def upstream_summaries(self) -> Dict[str, AgentSummary]:
        """Summaries of this agent's declared inputs that have a recorded status."""
        summaries = self.context.all_summaries()
        return {agent_id: summaries[agent_id] for agent_id in sorted(self.descriptor.inputs) if agent_id in summaries}


class AgentWork(abc.ABC):
    """Abstract unit of work bound to one catalog entry."""

    @abc.abstractmethod
    async def run(self, invocation: AgentInvocation) -> AgentResult:
        """Produce the agent's result or raise."""
