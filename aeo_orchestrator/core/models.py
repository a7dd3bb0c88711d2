"""Core data models shared across orchestration components."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, List, Optional, Tuple, Union

if TYPE_CHECKING:
    from .errors import PhaseAbortError


class AgentCategory(str, Enum):
    """Informational grouping of agents in the pipeline."""

    DISCOVERY = "discovery"
    RESEARCH = "research"
    ANALYSIS = "analysis"
    OUTPUT = "output"


class FailurePolicy(str, Enum):
    """Behaviour applied when an agent's work raises."""

    FAIL = "fail"
    SKIP = "skip"
    RETRY = "retry"


class AgentStatus(str, Enum):
    """Per-job lifecycle state of a single agent."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (AgentStatus.COMPLETED, AgentStatus.FAILED, AgentStatus.SKIPPED)


class JobStatus(str, Enum):
    """Coarse job status owned by the external job store."""

    PENDING = "pending"
    QUEUED = "queued"
    CRAWLING = "crawling"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"


@dataclass(frozen=True, slots=True)
class AgentDescriptor:
    """Static metadata for one agent in the catalog."""

    id: str
    name: str
    category: AgentCategory
    inputs: FrozenSet[str] = frozenset()
    parallel_capable: bool = False
    failure_policy: FailurePolicy = FailurePolicy.FAIL
    retryable: bool = False
    # Policy applied once retries are exhausted; only FAIL or SKIP make sense.
    retry_fallback: FailurePolicy = FailurePolicy.SKIP
    description: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.inputs, frozenset):
            object.__setattr__(self, "inputs", frozenset(self.inputs))
        if self.retry_fallback is FailurePolicy.RETRY:
            raise ValueError(f"Agent '{self.id}': retry_fallback cannot be 'retry'")
        if self.id in self.inputs:
            raise ValueError(f"Agent '{self.id}' cannot depend on itself")


@dataclass(frozen=True, slots=True)
class Phase:
    """One group of agents from the execution plan."""

    name: str
    agent_ids: Tuple[str, ...]
    run_in_parallel: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.agent_ids, tuple):
            object.__setattr__(self, "agent_ids", tuple(self.agent_ids))


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    """Ordered list of phases produced by the external planner."""

    phases: Tuple[Phase, ...]
    reasoning: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.phases, tuple):
            object.__setattr__(self, "phases", tuple(self.phases))

    @property
    def agent_ids(self) -> List[str]:
        return [agent_id for phase in self.phases for agent_id in phase.agent_ids]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ExecutionPlan:
        """Parse the planner's JSON shape: {"phases": [{"name", "agents", "runInParallel"}]}."""
        phases = [
            Phase(
                name=str(raw["name"]),
                agent_ids=tuple(raw.get("agents") or raw.get("agent_ids") or ()),
                run_in_parallel=bool(raw.get("runInParallel", raw.get("run_in_parallel", False))),
            )
            for raw in data.get("phases", [])
        ]
        return cls(phases=tuple(phases), reasoning=str(data.get("reasoning", "")))


@dataclass(slots=True)
class AgentResult:
    """Output of one agent; only ``payload`` may be discarded by compression."""

    summary: str
    key_findings: List[str] = field(default_factory=list)
    next_steps: List[str] = field(default_factory=list)
    payload: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "key_findings": list(self.key_findings),
            "next_steps": list(self.next_steps),
            "payload": self.payload,
        }


@dataclass(frozen=True, slots=True)
class AgentSummary:
    """Compact projection of an agent exposed to progress callbacks."""

    status: AgentStatus
    summary: Optional[str] = None
    key_findings: Optional[List[str]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status.value}
        if self.summary is not None:
            data["summary"] = self.summary
        if self.key_findings is not None:
            data["key_findings"] = list(self.key_findings)
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True, slots=True)
class LimiterStatus:
    """Point-in-time view of the concurrency limiter."""

    capacity: int
    running: int
    queued: int


@dataclass(frozen=True, slots=True)
class LimiterToken:
    """Proof of a held limiter slot."""

    waited: float = 0.0


# Phase outcomes -----------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PhaseCompleted:
    phase_name: str
    results: Dict[str, AgentResult]


@dataclass(frozen=True, slots=True)
class PhaseCompletedWithSkips:
    phase_name: str
    results: Dict[str, AgentResult]
    skipped_ids: Tuple[str, ...]


@dataclass(frozen=True, slots=True)
class PhaseAborted:
    phase_name: str
    error: PhaseAbortError


PhaseOutcome = Union[PhaseCompleted, PhaseCompletedWithSkips, PhaseAborted]


# Reasoning ----------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ReasoningOutcome:
    """Advisory result of the post-phase reasoning step."""

    should_continue: bool = True
    next_steps: Tuple[str, ...] = ()
    adjustments: Tuple[str, ...] = ()
    insights: Tuple[str, ...] = ()
    confidence: float = 0.0

    @property
    def actionable(self) -> bool:
        """True when the reasoner suggested a stop or a plan adjustment."""
        return not self.should_continue or bool(self.adjustments)


@dataclass(frozen=True, slots=True)
class ReasoningSucceeded:
    phase_name: str
    outcome: ReasoningOutcome


@dataclass(frozen=True, slots=True)
class ReasoningFailed:
    phase_name: str
    error: BaseException


ReasoningReport = Union[ReasoningSucceeded, ReasoningFailed]
