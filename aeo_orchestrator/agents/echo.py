"""Deterministic local agent used by the demo and in tests."""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from aeo_orchestrator.agents.base import AgentInvocation, AgentWork
from aeo_orchestrator.core.models import AgentResult


class EchoAgent(AgentWork):
    """Agent that reports what it received, optionally after a simulated delay."""

    def __init__(self, delay: float = 0.0, payload: Optional[Any] = None) -> None:
        self._delay = delay
        self._payload = payload

    async def run(self, invocation: AgentInvocation) -> AgentResult:
        if self._delay:
            await asyncio.sleep(self._delay)  # Simulate work
        upstream = invocation.upstream_summaries()
        context = invocation.context
        return AgentResult(
            summary=f"{invocation.descriptor.name} processed {context.target_domain}",
            key_findings=[f"{agent_id}: {summary.status.value}" for agent_id, summary in upstream.items()],
            next_steps=[],
            payload=self._payload
            if self._payload is not None
            else {"agent": invocation.agent_id, "attempt": invocation.attempt, "inputs": sorted(upstream)},
        )
