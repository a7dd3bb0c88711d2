"""Static registry of pipeline agents and their dependency metadata."""
from __future__ import annotations

from typing import AbstractSet, Dict, Iterable, Iterator, List, Optional

from .errors import UnknownAgentError
from .models import AgentCategory, AgentDescriptor, FailurePolicy


class AgentCatalog:
    """Read-only mapping of agent id to descriptor."""

    def __init__(self, descriptors: Iterable[AgentDescriptor]) -> None:
        self._descriptors: Dict[str, AgentDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.id in self._descriptors:
                raise ValueError(f"Duplicate agent id in catalog: '{descriptor.id}'")
            self._descriptors[descriptor.id] = descriptor

        for descriptor in self._descriptors.values():
            unknown = descriptor.inputs - self._descriptors.keys()
            if unknown:
                raise ValueError(
                    f"Agent '{descriptor.id}' depends on unknown agents: {', '.join(sorted(unknown))}"
                )

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._descriptors

    def __iter__(self) -> Iterator[AgentDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)

    def ids(self) -> List[str]:
        return list(self._descriptors)

    def get(self, agent_id: str) -> Optional[AgentDescriptor]:
        return self._descriptors.get(agent_id)

    def require(self, agent_id: str) -> AgentDescriptor:
        descriptor = self._descriptors.get(agent_id)
        if descriptor is None:
            raise UnknownAgentError(agent_id)
        return descriptor

    def by_category(self, category: AgentCategory) -> List[AgentDescriptor]:
        return [d for d in self._descriptors.values() if d.category is category]

    def dependencies_satisfied(self, agent_id: str, completed: AbstractSet[str]) -> bool:
        """True iff the agent exists and every declared input is in ``completed``."""
        descriptor = self._descriptors.get(agent_id)
        if descriptor is None:
            return False
        return descriptor.inputs <= completed

    def missing_dependencies(self, agent_id: str, completed: AbstractSet[str]) -> frozenset:
        descriptor = self.require(agent_id)
        return frozenset(descriptor.inputs - completed)

    def eligible_for_parallel_run(
        self,
        candidate_ids: Iterable[str],
        completed: AbstractSet[str],
    ) -> List[str]:
        """Filter candidates to parallel-capable agents whose inputs are complete."""
        eligible = []
        for agent_id in candidate_ids:
            descriptor = self._descriptors.get(agent_id)
            if descriptor is None or not descriptor.parallel_capable:
                continue
            if self.dependencies_satisfied(agent_id, completed):
                eligible.append(agent_id)
        return eligible


def _agent(
    agent_id: str,
    name: str,
    category: AgentCategory,
    inputs: Iterable[str],
    *,
    parallel: bool,
    policy: FailurePolicy,
    description: str,
    retry_fallback: FailurePolicy = FailurePolicy.SKIP,
) -> AgentDescriptor:
    return AgentDescriptor(
        id=agent_id,
        name=name,
        category=category,
        inputs=frozenset(inputs),
        parallel_capable=parallel,
        failure_policy=policy,
        retryable=True,
        retry_fallback=retry_fallback,
        description=description,
    )


# Discovery steps feed everything downstream, so exhausting their retries
# fails the job instead of degrading silently.
DEFAULT_AGENTS = (
    _agent(
        "page-analysis", "Page Analysis", AgentCategory.DISCOVERY, [],
        parallel=False, policy=FailurePolicy.RETRY, retry_fallback=FailurePolicy.FAIL,
        description="Analyzes page content to extract topic, intent, and entities",
    ),
    _agent(
        "query-generation", "Query Generation", AgentCategory.DISCOVERY, ["page-analysis"],
        parallel=False, policy=FailurePolicy.RETRY, retry_fallback=FailurePolicy.FAIL,
        description="Generates target queries the page should answer",
    ),
    _agent(
        "competitor-discovery", "Competitor Discovery", AgentCategory.DISCOVERY, ["query-generation"],
        parallel=False, policy=FailurePolicy.SKIP,
        description="Identifies competing domains from search results",
    ),
    _agent(
        "tavily-research", "Tavily Research", AgentCategory.RESEARCH, ["query-generation"],
        parallel=True, policy=FailurePolicy.RETRY,
        description="Searches target queries via the Tavily API",
    ),
    _agent(
        "google-aio", "Google AI Overviews", AgentCategory.RESEARCH, ["query-generation"],
        parallel=True, policy=FailurePolicy.SKIP,
        description="Collects Google AI Overview results",
    ),
    _agent(
        "perplexity", "Perplexity Research", AgentCategory.RESEARCH, ["query-generation"],
        parallel=True, policy=FailurePolicy.SKIP,
        description="Queries Perplexity for citations",
    ),
    _agent(
        "community-signals", "Community Signals", AgentCategory.RESEARCH, ["query-generation"],
        parallel=True, policy=FailurePolicy.SKIP,
        description="Monitors Reddit, HN and GitHub for mentions",
    ),
    _agent(
        "citation-analysis", "Citation Analysis", AgentCategory.ANALYSIS,
        ["tavily-research", "google-aio", "perplexity"],
        parallel=True, policy=FailurePolicy.RETRY,
        description="Analyzes citation patterns and frequency",
    ),
    _agent(
        "content-comparison", "Content Comparison", AgentCategory.ANALYSIS,
        ["page-analysis", "competitor-discovery"],
        parallel=True, policy=FailurePolicy.RETRY,
        description="Compares content against competitors",
    ),
    _agent(
        "visibility-scoring", "Visibility Scoring", AgentCategory.ANALYSIS,
        ["citation-analysis", "content-comparison"],
        parallel=False, policy=FailurePolicy.RETRY,
        description="Calculates the AEO visibility score",
    ),
    _agent(
        "recommendations", "Recommendations", AgentCategory.OUTPUT,
        ["visibility-scoring", "content-comparison"],
        parallel=False, policy=FailurePolicy.RETRY,
        description="Generates prioritized recommendations",
    ),
    _agent(
        "cursor-prompt", "Cursor Prompt", AgentCategory.OUTPUT, ["recommendations"],
        parallel=False, policy=FailurePolicy.RETRY,
        description="Generates a ready-to-use Cursor prompt",
    ),
    _agent(
        "report-generator", "Report Generator", AgentCategory.OUTPUT,
        ["cursor-prompt", "recommendations"],
        parallel=False, policy=FailurePolicy.RETRY,
        description="Generates the final AEO report",
    ),
)


def default_catalog() -> AgentCatalog:
    return AgentCatalog(DEFAULT_AGENTS)
