"""Per-job aggregate of agent statuses and results."""
from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

from .catalog import AgentCatalog
from .errors import ContextOverflowError, UnknownAgentError
from .models import AgentResult, AgentStatus, AgentSummary

logger = logging.getLogger(__name__)

# Characters of serialized payload kept by the local truncation heuristic.
DEFAULT_PAYLOAD_PREVIEW_CHARS = 2000
DEFAULT_LIMIT_FRACTION = 0.8

PayloadSummarizer = Callable[[str, AgentResult], Awaitable[Any]]


def _serialize(value: Any) -> str:
    return json.dumps(value, default=str, ensure_ascii=False, sort_keys=True)


def _byte_size(value: Any) -> int:
    return len(_serialize(value).encode("utf-8"))


def truncate_payload(payload: Any, max_chars: int = DEFAULT_PAYLOAD_PREVIEW_CHARS) -> Any:
    """Shrink a payload to a JSON preview; small payloads are returned unchanged."""
    if payload is None:
        return None
    if isinstance(payload, dict) and payload.get("truncated") is True:
        return payload
    text = _serialize(payload)
    if len(text) <= max_chars:
        return payload
    return {
        "truncated": True,
        "preview": text[:max_chars],
        "original_bytes": len(text.encode("utf-8")),
    }


class JobContext:
    """Mutable state owned by one job's orchestrator.

    ``size_estimate`` is the UTF-8 size of every agent's serialized entry
    (status, result and error). It is recomputed after every write and
    after every compression.
    """

    def __init__(
        self,
        job_id: str,
        tenant_id: str,
        target_domain: str,
        catalog: AgentCatalog,
        job_inputs: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.job_id = job_id
        self.tenant_id = tenant_id
        self.target_domain = target_domain
        self.job_inputs: Dict[str, Any] = dict(job_inputs or {})
        self._catalog = catalog
        self._statuses: Dict[str, AgentStatus] = {}
        self._results: Dict[str, AgentResult] = {}
        self._errors: Dict[str, str] = {}
        self._entry_sizes: Dict[str, int] = {}
        self.size_estimate = 0
        self.compression_count = 0

    @property
    def catalog(self) -> AgentCatalog:
        return self._catalog

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_pending(self, agent_id: str) -> None:
        self._transition(agent_id, AgentStatus.PENDING)

    def record_running(self, agent_id: str) -> None:
        self._transition(agent_id, AgentStatus.RUNNING)

    def record_result(self, agent_id: str, result: AgentResult) -> None:
        self._check_known(agent_id)
        self._results[agent_id] = result
        self._errors.pop(agent_id, None)
        self._transition(agent_id, AgentStatus.COMPLETED)
        logger.info("Agent %s completed (job %s)", agent_id, self.job_id)

    def record_failed(self, agent_id: str, reason: str) -> None:
        self._check_known(agent_id)
        self._results.pop(agent_id, None)
        self._errors[agent_id] = reason
        self._transition(agent_id, AgentStatus.FAILED)
        logger.info("Agent %s failed (job %s): %s", agent_id, self.job_id, reason)

    def record_skipped(self, agent_id: str, reason: str) -> None:
        self._check_known(agent_id)
        self._results.pop(agent_id, None)
        self._errors[agent_id] = reason
        self._transition(agent_id, AgentStatus.SKIPPED)
        logger.info("Agent %s skipped (job %s): %s", agent_id, self.job_id, reason)

    def _check_known(self, agent_id: str) -> None:
        if agent_id not in self._catalog:
            raise UnknownAgentError(agent_id)

    def _transition(self, agent_id: str, status: AgentStatus) -> None:
        self._check_known(agent_id)
        self._statuses[agent_id] = status
        self._recompute_entry(agent_id)

    def _recompute_entry(self, agent_id: str) -> None:
        entry: Dict[str, Any] = {"status": self._statuses[agent_id].value}
        result = self._results.get(agent_id)
        if result is not None:
            entry["result"] = result.to_dict()
        error = self._errors.get(agent_id)
        if error is not None:
            entry["error"] = error
        previous = self._entry_sizes.get(agent_id, 0)
        current = _byte_size({agent_id: entry})
        self._entry_sizes[agent_id] = current
        self.size_estimate += current - previous

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def status(self, agent_id: str) -> Optional[AgentStatus]:
        return self._statuses.get(agent_id)

    @property
    def statuses(self) -> Dict[str, AgentStatus]:
        return dict(self._statuses)

    @property
    def results(self) -> Dict[str, AgentResult]:
        return dict(self._results)

    @property
    def errors(self) -> Dict[str, str]:
        return dict(self._errors)

    def result(self, agent_id: str) -> Optional[AgentResult]:
        return self._results.get(agent_id)

    def _ids_with(self, status: AgentStatus) -> Set[str]:
        return {agent_id for agent_id, value in self._statuses.items() if value is status}

    def completed_ids(self) -> Set[str]:
        return self._ids_with(AgentStatus.COMPLETED)

    def skipped_ids(self) -> Set[str]:
        return self._ids_with(AgentStatus.SKIPPED)

    def resolved_ids(self) -> Set[str]:
        """Agents whose dependents may run: completed, or skipped as optional."""
        return self.completed_ids() | self.skipped_ids()

    def all_summaries(self) -> Dict[str, AgentSummary]:
        """Compact per-agent view for progress sinks; payloads are never included."""
        summaries: Dict[str, AgentSummary] = {}
        for agent_id, status in self._statuses.items():
            result = self._results.get(agent_id)
            summaries[agent_id] = AgentSummary(
                status=status,
                summary=result.summary if result else None,
                key_findings=list(result.key_findings) if result else None,
                error=self._errors.get(agent_id),
            )
        return summaries

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe summary snapshot for external persistence."""
        return {
            "job_id": self.job_id,
            "tenant_id": self.tenant_id,
            "target_domain": self.target_domain,
            "agents": {agent_id: s.to_dict() for agent_id, s in self.all_summaries().items()},
            "size_estimate": self.size_estimate,
            "compression_count": self.compression_count,
        }

    # ------------------------------------------------------------------
    # Size management
    # ------------------------------------------------------------------

    def is_approaching_limit(self, limit_bytes: int, fraction: float = DEFAULT_LIMIT_FRACTION) -> bool:
        return self.size_estimate > limit_bytes * fraction

    async def compress(
        self,
        budget_bytes: int,
        summarizer: Optional[PayloadSummarizer] = None,
        max_preview_chars: int = DEFAULT_PAYLOAD_PREVIEW_CHARS,
    ) -> None:
        """Shrink the payload of every completed result.

        ``summary``, ``key_findings``, ``next_steps`` and all statuses are left
        untouched. A failing summarizer falls back to local truncation for
        that agent.

        Raises:
            ContextOverflowError: the compressed size still exceeds ``budget_bytes``.
        """
        before = self.size_estimate
        compressed: List[str] = []
        for agent_id in sorted(self.completed_ids()):
            result = self._results.get(agent_id)
            if result is None or result.payload is None:
                continue
            original_size = _byte_size(result.payload)
            candidate = None
            if summarizer is not None:
                try:
                    candidate = await summarizer(agent_id, result)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Payload summarization failed for %s, truncating: %s", agent_id, exc)
            if candidate is None or _byte_size(candidate) >= original_size:
                candidate = truncate_payload(result.payload, max_preview_chars)
            # A replacement is only kept when it is strictly smaller.
            if _byte_size(candidate) >= original_size:
                continue
            result.payload = candidate
            self._recompute_entry(agent_id)
            compressed.append(agent_id)

        self.compression_count += 1
        logger.info(
            "Compressed context for job %s: %d -> %d bytes (%d agents, run %d)",
            self.job_id,
            before,
            self.size_estimate,
            len(compressed),
            self.compression_count,
        )
        if self.size_estimate > budget_bytes:
            raise ContextOverflowError(self.size_estimate, budget_bytes)
