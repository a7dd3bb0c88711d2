"""Exception taxonomy for the orchestration engine.

Only ``PhaseAbortError`` and ``UnknownAgentError`` escape
``Orchestrator.execute``; everything else is recovered locally and
surfaced through the job context and logs.
"""
from __future__ import annotations

from typing import Optional


class OrchestrationError(Exception):
    """Base class for all engine errors."""


class UnknownAgentError(OrchestrationError, LookupError):
    """A plan or a context write referenced an id absent from the catalog."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Unknown agent: '{agent_id}'")
        self.agent_id = agent_id


class LimiterTimeoutError(OrchestrationError, TimeoutError):
    """Waiting for a limiter slot exceeded its deadline."""

    def __init__(self, timeout: float, queued: int) -> None:
        super().__init__(
            f"Limiter queue timeout after {timeout:.3f}s (queued: {queued})"
        )
        self.timeout = timeout
        self.queued = queued


class AgentExecutionError(OrchestrationError):
    """Wraps an error raised while running an agent's work."""

    def __init__(self, agent_id: str, cause: Optional[BaseException] = None, message: Optional[str] = None) -> None:
        detail = message or (str(cause) if cause is not None else "agent failed")
        super().__init__(f"Agent '{agent_id}' failed: {detail}")
        self.agent_id = agent_id
        self.cause = cause
        self.detail = detail


class DependencyNotSatisfiedError(AgentExecutionError):
    """An agent's declared inputs were not resolved when its turn came."""

    def __init__(self, agent_id: str, missing: frozenset) -> None:
        names = ", ".join(sorted(missing))
        super().__init__(agent_id, message=f"dependencies not satisfied: {names}")
        self.missing = missing


class PhaseAbortError(OrchestrationError):
    """A fail-policy agent errored and aborted its phase."""

    def __init__(self, phase_name: str, cause: AgentExecutionError) -> None:
        super().__init__(f"Phase '{phase_name}' aborted: {cause}")
        self.phase_name = phase_name
        self.cause = cause

    @property
    def agent_id(self) -> str:
        return self.cause.agent_id


class ContextOverflowError(OrchestrationError):
    """Compression could not bring the context under its budget."""

    def __init__(self, size: int, budget: int) -> None:
        super().__init__(f"Context size {size} bytes exceeds budget {budget} bytes after compression")
        self.size = size
        self.budget = budget


class GenerationError(OrchestrationError):
    """The external generation service failed or returned unusable output."""
